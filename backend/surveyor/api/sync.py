from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from ..services.connectivity import ConnectivityMonitor, SyncScheduler
from ..services.offline_sync import QueueItemType, SyncQueueManager, SyncStatus
from .deps import get_monitor, get_scheduler, get_sync_manager

router = APIRouter(prefix="/sync", tags=["sync"])


class QueueItemResponse(BaseModel):
    id: str
    type: QueueItemType
    payload: Dict[str, Any]
    created_at: datetime
    attempts: int
    status: SyncStatus
    last_error: Optional[str]
    last_attempt_at: Optional[datetime]


class EnqueueRequest(BaseModel):
    type: QueueItemType
    payload: Dict[str, Any]


class DrainResponse(BaseModel):
    synced: int
    failed: int
    total: int
    dead_lettered: int
    skipped: bool


class ConnectivityUpdate(BaseModel):
    is_connected: bool
    is_internet_reachable: Optional[bool] = None


class SyncStatusResponse(BaseModel):
    is_online: bool
    syncing: bool
    pending_count: int
    dead_letter_count: int
    last_sync_at: Optional[datetime]


@router.get("/queue", response_model=List[QueueItemResponse])
async def get_queue(manager: SyncQueueManager = Depends(get_sync_manager)):
    return [item.to_dict() for item in await manager.get_queue()]


@router.post("/queue", response_model=QueueItemResponse, status_code=status.HTTP_201_CREATED)
async def enqueue(body: EnqueueRequest, manager: SyncQueueManager = Depends(get_sync_manager)):
    item = await manager.enqueue(body.type, body.payload)
    if item is None:
        raise HTTPException(status_code=503, detail="Local storage unavailable; item not queued")
    return item.to_dict()


@router.delete("/queue/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_item(item_id: str, manager: SyncQueueManager = Depends(get_sync_manager)):
    if not await manager.remove(item_id):
        raise HTTPException(status_code=404, detail="Queue item not found")


@router.get("/pending-count")
async def pending_count(manager: SyncQueueManager = Depends(get_sync_manager)):
    return {"pending_count": await manager.pending_count()}


@router.get("/status", response_model=SyncStatusResponse)
async def sync_status(
    manager: SyncQueueManager = Depends(get_sync_manager),
    monitor: ConnectivityMonitor = Depends(get_monitor),
    scheduler: SyncScheduler = Depends(get_scheduler),
):
    return SyncStatusResponse(
        is_online=monitor.is_online,
        syncing=manager.is_draining,
        pending_count=await manager.pending_count(),
        dead_letter_count=await manager.dead_letter_count(),
        last_sync_at=scheduler.last_sync_at,
    )


@router.post("/drain", response_model=DrainResponse)
async def drain(
    manager: SyncQueueManager = Depends(get_sync_manager),
    monitor: ConnectivityMonitor = Depends(get_monitor),
):
    """Manual "sync now"; refused while the device is offline."""
    if not monitor.is_online:
        raise HTTPException(status_code=409, detail="No internet connection")
    result = await manager.drain()
    return result.to_dict()


@router.post("/connectivity", response_model=SyncStatusResponse)
async def report_connectivity(
    body: ConnectivityUpdate,
    manager: SyncQueueManager = Depends(get_sync_manager),
    monitor: ConnectivityMonitor = Depends(get_monitor),
    scheduler: SyncScheduler = Depends(get_scheduler),
):
    await monitor.update(body.is_connected, body.is_internet_reachable)
    return SyncStatusResponse(
        is_online=monitor.is_online,
        syncing=manager.is_draining,
        pending_count=await manager.pending_count(),
        dead_letter_count=await manager.dead_letter_count(),
        last_sync_at=scheduler.last_sync_at,
    )


@router.post("/dead-letters/requeue")
async def requeue_dead_letters(manager: SyncQueueManager = Depends(get_sync_manager)):
    return {"requeued": await manager.requeue_dead_letters()}
