"""
Remote registry API client.
Async HTTP calls to the RSU backend for identity records, survey sessions, document
uploads and server-side vulnerability scoring.
"""
import asyncio
import logging
import mimetypes
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx

from ..core.config import Settings

logger = logging.getLogger(__name__)

# Rejections that will never succeed on retry (408/429 are transient)
TRANSIENT_CLIENT_STATUSES = {408, 425, 429}


class RemoteServiceError(Exception):
    """The registry backend rejected a call or returned an unusable response."""

    def __init__(self, message: str, status_code: Optional[int] = None, detail: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail

    @property
    def permanent(self) -> bool:
        return (
            self.status_code is not None
            and 400 <= self.status_code < 500
            and self.status_code not in TRANSIENT_CLIENT_STATUSES
        )


class NetworkError(RemoteServiceError):
    """No connectivity, DNS failure or timeout."""


class RegistryClient:
    """HTTP client for the registry backend endpoints the device depends on."""

    PERSONS_PATH = "/identity/persons/"
    HOUSEHOLDS_PATH = "/identity/households/"
    SURVEY_SESSIONS_PATH = "/surveys/sessions/"
    UPLOAD_DOCUMENT_PATH = "/identity/persons/upload-document/"
    CALCULATE_PATH = "/services/vulnerability-assessments/calculate/"
    BULK_CALCULATE_PATH = "/services/vulnerability-assessments/bulk_calculate/"
    WEIGHTING_PROFILE_PATH = "/services/vulnerability-assessments/weighting-profile/"

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = settings.API_BASE_URL.rstrip("/")
        self.api_key = settings.API_TOKEN
        self.timeout = settings.REQUEST_TIMEOUT
        self.upload_timeout = settings.UPLOAD_TIMEOUT
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=self.timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Identity & surveys
    # ------------------------------------------------------------------

    async def create_person(self, payload: Dict) -> Dict:
        return await self._request("POST", self.PERSONS_PATH, json=payload)

    async def update_person(self, payload: Dict) -> Dict:
        person_id = payload.get("id")
        if not person_id:
            raise RemoteServiceError("UPDATE_PERSON payload has no person id", status_code=400)
        return await self._request("PATCH", f"{self.PERSONS_PATH}{person_id}/", json=payload)

    async def create_household(self, payload: Dict) -> Dict:
        return await self._request("POST", self.HOUSEHOLDS_PATH, json=payload)

    async def submit_survey(self, payload: Dict) -> Dict:
        return await self._request("POST", self.SURVEY_SESSIONS_PATH, json=payload)

    async def upload_document(self, payload: Dict) -> Dict:
        """
        Upload a captured document for a person.
        ``payload`` holds ``file_path`` plus form fields (``person_id``, ``document_type``, ...).
        """
        fields = dict(payload)
        file_path = fields.pop("file_path", None)
        if not file_path:
            raise RemoteServiceError("UPLOAD_DOCUMENT payload has no file_path", status_code=400)
        path = Path(file_path)
        try:
            content = await asyncio.to_thread(path.read_bytes)
        except OSError as exc:
            # The capture may have been cleaned up; retrying will not bring it back
            raise RemoteServiceError(f"Document file unreadable: {exc}", status_code=410) from exc

        mime_type = fields.pop("mime_type", None) or mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        files = {"file": (path.name, content, mime_type)}
        data = {k: str(v) for k, v in fields.items() if v is not None}
        return await self._request(
            "POST", self.UPLOAD_DOCUMENT_PATH, files=files, data=data, timeout=self.upload_timeout
        )

    # ------------------------------------------------------------------
    # Vulnerability scoring
    # ------------------------------------------------------------------

    async def calculate_assessment(self, person_id: str, force_recalculate: bool = False) -> Dict:
        return await self._request(
            "POST",
            self.CALCULATE_PATH,
            json={"person_id": person_id, "force_recalculate": force_recalculate},
        )

    async def bulk_calculate(self, person_ids: List[str]) -> List[Dict]:
        data = await self._request("POST", self.BULK_CALCULATE_PATH, json={"person_ids": list(person_ids)})
        # Some deployments wrap batch responses in {"results": [...]}
        if isinstance(data, dict):
            data = data.get("results", [])
        if not isinstance(data, list):
            raise RemoteServiceError("Unexpected bulk_calculate response shape")
        return data

    async def get_weighting_profile(self) -> Dict:
        return await self._request("GET", self.WEIGHTING_PROFILE_PATH)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _request(self, method: str, path: str, timeout: Optional[float] = None, **kwargs) -> Any:
        try:
            resp = await self._client.request(method, path, timeout=timeout or self.timeout, **kwargs)
            resp.raise_for_status()
        except httpx.TimeoutException as exc:
            logger.warning("Registry %s %s timed out", method, path)
            raise NetworkError(f"Timeout calling {path}") from exc
        except httpx.TransportError as exc:
            logger.warning("Registry %s %s unreachable: %s", method, path, exc)
            raise NetworkError(f"Network error calling {path}: {exc}") from exc
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            detail = _safe_json(exc.response)
            logger.warning("Registry %s %s returned %s", method, path, status)
            raise RemoteServiceError(f"{method} {path} failed with {status}", status_code=status, detail=detail) from exc

        if resp.status_code == 204 or not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError as exc:
            raise RemoteServiceError(f"Invalid JSON from {path}", status_code=resp.status_code) from exc


def _safe_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text
