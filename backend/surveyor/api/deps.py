from fastapi import Request

from ..services.connectivity import ConnectivityMonitor, SyncScheduler
from ..services.offline_sync import SyncQueueManager
from ..services.scoring_service import VulnerabilityScoringService


def get_sync_manager(request: Request) -> SyncQueueManager:
    return request.app.state.sync_manager


def get_scoring_service(request: Request) -> VulnerabilityScoringService:
    return request.app.state.scoring_service


def get_monitor(request: Request) -> ConnectivityMonitor:
    return request.app.state.monitor


def get_scheduler(request: Request) -> SyncScheduler:
    return request.app.state.scheduler
