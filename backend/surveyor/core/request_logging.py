"""
Request logging middleware.
Records every mutating call to the sync and scoring endpoints so field supervisors can
reconstruct what a device did while offline.
"""
import logging
import time
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

logger = logging.getLogger(__name__)

LOGGED_PATH_PREFIXES = (
    "/api/v1/sync",
    "/api/v1/scoring",
)

MUTATING_METHODS = ("POST", "PUT", "PATCH", "DELETE")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs method, path, status and duration of mutating core API calls."""

    async def dispatch(self, request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)

        path = request.url.path
        if not any(path.startswith(prefix) for prefix in LOGGED_PATH_PREFIXES):
            return response
        if request.method not in MUTATING_METHODS:
            return response

        client = request.client.host if request.client else None
        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(
            "%s %s -> %s in %.1fms (client=%s)",
            request.method, path, response.status_code, elapsed_ms, client,
        )
        return response
