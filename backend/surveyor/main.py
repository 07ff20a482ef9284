"""
RSU Surveyor - offline sync & vulnerability scoring core.
Local service consumed by the field-collection app shell: durable outbox for records
captured offline and on-device vulnerability scoring.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api import scoring, sync
from .core.config import Settings, settings as default_settings
from .core.request_logging import RequestLoggingMiddleware
from .services.connectivity import ConnectivityMonitor, SyncScheduler
from .services.local_store import LocalStore
from .services.offline_sync import SyncQueueManager
from .services.registry_client import RegistryClient
from .services.scoring_service import VulnerabilityScoringService
from .services.vulnerability_engine import VulnerabilityEngine

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)


class Services:
    """Every long-lived service, built once per process and passed where needed."""

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self.store = LocalStore(settings.DATABASE_URL, namespace=settings.STORAGE_NAMESPACE)
        self.client = RegistryClient(settings, transport=transport)
        self.monitor = ConnectivityMonitor()
        self.sync_manager = SyncQueueManager(
            self.store,
            self.client,
            max_attempts=settings.SYNC_MAX_ATTEMPTS,
            dead_letter_on_rejection=settings.SYNC_DEAD_LETTER_ON_REJECTION,
        )
        self.scheduler = SyncScheduler(self.sync_manager, self.monitor, interval=settings.SYNC_INTERVAL_SECONDS)
        self.scoring_service = VulnerabilityScoringService(
            self.client,
            self.store,
            engine=VulnerabilityEngine(),
            monitor=self.monitor,
            persist_profile=settings.PERSIST_WEIGHTING_PROFILE,
        )

    async def aclose(self) -> None:
        await self.scheduler.stop()
        await self.client.aclose()
        self.store.close()


def create_app(settings: Optional[Settings] = None, transport: Optional[httpx.AsyncBaseTransport] = None) -> FastAPI:
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        services = Services(settings, transport=transport)
        app.state.services = services
        app.state.store = services.store
        app.state.monitor = services.monitor
        app.state.sync_manager = services.sync_manager
        app.state.scheduler = services.scheduler
        app.state.scoring_service = services.scoring_service
        if settings.SYNC_AUTO_START:
            services.scheduler.start()
        logger.info("%s %s started (store=%s)", settings.APP_NAME, settings.VERSION, settings.DATABASE_URL)
        try:
            yield
        finally:
            await services.aclose()

    app = FastAPI(
        title="RSU Surveyor Sync API",
        description=(
            "Offline synchronization queue and vulnerability scoring for "
            "RSU social-registry field surveys."
        ),
        version=settings.VERSION,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.include_router(sync.router, prefix="/api/v1")
    app.include_router(scoring.router, prefix="/api/v1")

    @app.get("/health")
    async def health_check():
        return {"status": "healthy", "service": settings.APP_NAME, "version": settings.VERSION}

    return app


def build_app() -> FastAPI:
    """ASGI factory with logging configured from the environment settings."""
    configure_logging(default_settings.LOG_LEVEL)
    return create_app(default_settings)
