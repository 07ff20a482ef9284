"""Shared fixtures: temp-file local store and a fake registry backend."""
import json
from typing import Callable, Dict, List, Optional

import httpx
import pytest

from surveyor.core.config import Settings
from surveyor.services.local_store import LocalStore
from surveyor.services.offline_sync import SyncQueueManager
from surveyor.services.registry_client import RegistryClient

API_BASE_URL = "http://registry.test/api/v1"
API_PREFIX = "/api/v1"


class FakeRegistry:
    """
    In-process stand-in for the registry backend, served through httpx.MockTransport.

    ``fail_if`` may return an HTTP status to answer with, ``"network"`` to raise a
    connection error, or None to answer normally.
    """

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.fail_if: Optional[Callable[[httpx.Request], object]] = None
        self.assessments: Dict[str, dict] = {}
        self.profile: Optional[dict] = None
        self.gate = None  # asyncio.Event; when set, requests wait on it
        self.started = None  # asyncio.Event; set when the first request arrives
        self._next_id = 0

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def bodies(self, path: Optional[str] = None) -> List[dict]:
        return [
            json.loads(r.content)
            for r in self.requests
            if (path is None or self.path(r) == path) and r.headers.get("content-type") == "application/json"
        ]

    @staticmethod
    def path(request: httpx.Request) -> str:
        return request.url.path[len(API_PREFIX):]

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.started is not None:
            self.started.set()
        if self.gate is not None:
            await self.gate.wait()

        if self.fail_if is not None:
            outcome = self.fail_if(request)
            if outcome == "network":
                raise httpx.ConnectError("network unreachable", request=request)
            if outcome == "timeout":
                raise httpx.ReadTimeout("timed out", request=request)
            if outcome:
                return httpx.Response(outcome, json={"detail": "rejected"})

        path = self.path(request)
        if path == "/services/vulnerability-assessments/weighting-profile/":
            if self.profile is None:
                return httpx.Response(503, json={"detail": "unavailable"})
            return httpx.Response(200, json=self.profile)
        if path == "/services/vulnerability-assessments/calculate/":
            person_id = json.loads(request.content)["person_id"]
            if person_id not in self.assessments:
                return httpx.Response(404, json={"detail": "unknown person"})
            return httpx.Response(200, json=self.assessments[person_id])
        if path == "/services/vulnerability-assessments/bulk_calculate/":
            ids = json.loads(request.content)["person_ids"]
            return httpx.Response(200, json=[self.assessments[i] for i in ids if i in self.assessments])

        self._next_id += 1
        if request.headers.get("content-type") == "application/json":
            body = json.loads(request.content)
        else:
            body = {}
        return httpx.Response(201, json={**body, "id": body.get("id") or f"srv-{self._next_id}"})


def remote_assessment(person_id: str, score: float = 72.5, level: str = "HIGH") -> dict:
    """Assessment payload in the registry's field naming."""
    return {
        "person_id": person_id,
        "vulnerability_score": score,
        "risk_level": level,
        "dimension_scores": {
            "economic": 80.0,
            "housing": 70.0,
            "health": 60.0,
            "education": 50.0,
            "social": 40.0,
        },
        "vulnerability_factors": ["extreme_poverty"],
        "recommendations": ["PRIORITY_2_INTERVENTION"],
        "calculated_at": "2026-03-01T10:00:00",
    }


@pytest.fixture()
def settings(tmp_path) -> Settings:
    return Settings(
        DATABASE_URL=f"sqlite:///{tmp_path / 'device.db'}",
        API_BASE_URL=API_BASE_URL,
        API_TOKEN="field-token",
        SYNC_AUTO_START=False,
        SYNC_INTERVAL_SECONDS=0.01,
    )


@pytest.fixture()
def store(settings):
    local_store = LocalStore(settings.DATABASE_URL, namespace=settings.STORAGE_NAMESPACE)
    yield local_store
    local_store.close()


@pytest.fixture()
def registry() -> FakeRegistry:
    return FakeRegistry()


@pytest.fixture()
def client(settings, registry) -> RegistryClient:
    return RegistryClient(settings, transport=registry.transport)


@pytest.fixture()
def manager(store, client) -> SyncQueueManager:
    return SyncQueueManager(store, client)
