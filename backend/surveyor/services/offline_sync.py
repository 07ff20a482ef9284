"""
Offline Mode & Sync Service.
Records captured in dead zones (rural villages, no coverage) are queued on the device
and replayed against the registry backend, oldest first, once connectivity returns.
"""
import asyncio
import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from .local_store import LocalStore, StorageReadError
from .registry_client import RegistryClient, RemoteServiceError

logger = logging.getLogger(__name__)


class QueueItemType(str, Enum):
    CREATE_PERSON = "CREATE_PERSON"
    UPDATE_PERSON = "UPDATE_PERSON"
    CREATE_HOUSEHOLD = "CREATE_HOUSEHOLD"
    SUBMIT_SURVEY = "SUBMIT_SURVEY"
    UPLOAD_DOCUMENT = "UPLOAD_DOCUMENT"


class SyncStatus(str, Enum):
    PENDING = "PENDING"
    IN_FLIGHT = "IN_FLIGHT"
    FAILED = "FAILED"
    SYNCED = "SYNCED"
    DEAD_LETTER = "DEAD_LETTER"


RETRYABLE_STATUSES = (SyncStatus.PENDING, SyncStatus.FAILED)


@dataclass
class QueueItem:
    """A locally-stored mutation waiting to be synced."""
    type: QueueItemType
    payload: Dict[str, Any]
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=datetime.utcnow)
    attempts: int = 0
    status: SyncStatus = SyncStatus.PENDING
    last_error: Optional[str] = None
    last_attempt_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["type"] = self.type.value
        data["status"] = self.status.value
        data["created_at"] = self.created_at.isoformat()
        data["last_attempt_at"] = self.last_attempt_at.isoformat() if self.last_attempt_at else None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QueueItem":
        last_attempt = data.get("last_attempt_at")
        return cls(
            id=data["id"],
            type=QueueItemType(data["type"]),
            payload=data.get("payload") or {},
            created_at=datetime.fromisoformat(data["created_at"]),
            attempts=int(data.get("attempts", 0)),
            status=SyncStatus(data.get("status", SyncStatus.PENDING.value)),
            last_error=data.get("last_error"),
            last_attempt_at=datetime.fromisoformat(last_attempt) if last_attempt else None,
        )


@dataclass
class DrainResult:
    synced: int = 0
    failed: int = 0
    total: int = 0
    dead_lettered: int = 0
    skipped: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SubmitResult:
    delivered: bool
    response: Optional[Dict[str, Any]] = None
    queued_item: Optional[QueueItem] = None


class SyncQueueManager:
    """
    Durable FIFO outbox of pending registry mutations.

    The stored list under ``<namespace>:sync_queue`` is the single source of truth;
    nothing is cached in memory between calls. One drain runs at a time and handles
    one item at a time, so a household is never sent before the person queued ahead
    of it.
    """

    def __init__(
        self,
        store: LocalStore,
        client: RegistryClient,
        max_attempts: Optional[int] = None,
        dead_letter_on_rejection: bool = False,
    ):
        self.store = store
        self.client = client
        self.max_attempts = max_attempts
        self.dead_letter_on_rejection = dead_letter_on_rejection
        self.queue_key = store.key("sync_queue")
        self._drain_lock = asyncio.Lock()
        self._write_lock = asyncio.Lock()
        self._dispatch: Dict[QueueItemType, Callable[[Dict], Awaitable[Dict]]] = {
            QueueItemType.CREATE_PERSON: client.create_person,
            QueueItemType.UPDATE_PERSON: client.update_person,
            QueueItemType.CREATE_HOUSEHOLD: client.create_household,
            QueueItemType.SUBMIT_SURVEY: client.submit_survey,
            QueueItemType.UPLOAD_DOCUMENT: client.upload_document,
        }
        missing = set(QueueItemType) - set(self._dispatch)
        if missing:
            raise RuntimeError(f"No sync handler for {sorted(t.value for t in missing)}")

    @property
    def is_draining(self) -> bool:
        return self._drain_lock.locked()

    # ------------------------------------------------------------------
    # Queue operations
    # ------------------------------------------------------------------

    async def enqueue(self, item_type, payload: Dict[str, Any]) -> Optional[QueueItem]:
        """
        Append a mutation to the durable queue.
        Returns the stored item, or None when the store could not be read or written.
        """
        item = QueueItem(type=QueueItemType(item_type), payload=dict(payload))
        saved = await self._rewrite(lambda items: items.append(item))
        if saved is None:
            logger.error("Could not persist %s item %s; it is NOT queued", item.type.value, item.id)
            return None
        logger.info("Queued %s item %s (%d in queue)", item.type.value, item.id, len(saved))
        return item

    async def submit(self, item_type, payload: Dict[str, Any]) -> SubmitResult:
        """Send a mutation directly, falling back to the queue on any remote failure."""
        item_type = QueueItemType(item_type)
        try:
            response = await self._dispatch[item_type](payload)
            return SubmitResult(delivered=True, response=response)
        except RemoteServiceError as exc:
            logger.info("Direct %s submission failed (%s); saving offline", item_type.value, exc)
            queued = await self.enqueue(item_type, payload)
            return SubmitResult(delivered=False, queued_item=queued)

    async def pending_count(self) -> int:
        """Number of PENDING + FAILED items, read from the store."""
        items = await self._load()
        return sum(1 for i in items if i.status in RETRYABLE_STATUSES)

    async def dead_letter_count(self) -> int:
        items = await self._load()
        return sum(1 for i in items if i.status == SyncStatus.DEAD_LETTER)

    async def get_queue(self) -> List[QueueItem]:
        """Ordered snapshot of the queue for display."""
        return self._ordered(await self._load())

    async def remove(self, item_id: str) -> bool:
        return await self._rewrite(self._without(item_id)) is not None

    async def requeue_dead_letters(self) -> int:
        """Give dead-lettered items a fresh start."""
        requeued = []

        def reset(items: List[QueueItem]) -> bool:
            for item in items:
                if item.status == SyncStatus.DEAD_LETTER:
                    item.status = SyncStatus.PENDING
                    item.attempts = 0
                    item.last_error = None
                    requeued.append(item.id)
            return bool(requeued)

        if await self._rewrite(reset) is None:
            return 0
        return len(requeued)

    async def drain(self) -> DrainResult:
        """
        Sync every eligible item in creation order.

        A drain that starts while another is running returns immediately with
        ``skipped=True``. Failures are recorded per item and never raised.
        """
        if self._drain_lock.locked():
            logger.debug("Drain already in progress; skipping")
            return DrainResult(skipped=True)

        async with self._drain_lock:
            await self._recover_in_flight()
            eligible = [i for i in self._ordered(await self._load()) if i.status in RETRYABLE_STATUSES]
            result = DrainResult(total=len(eligible))
            if not eligible:
                return result

            logger.info("Draining %d queued item(s)", len(eligible))
            for item in eligible:
                outcome = await self._sync_item(item)
                if outcome == SyncStatus.SYNCED:
                    result.synced += 1
                elif outcome == SyncStatus.DEAD_LETTER:
                    result.dead_lettered += 1
                else:
                    result.failed += 1

            logger.info(
                "Drain finished: %d synced, %d failed, %d dead-lettered of %d",
                result.synced, result.failed, result.dead_lettered, result.total,
            )
            return result

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _sync_item(self, item: QueueItem) -> SyncStatus:
        if not await self._update(item.id, status=SyncStatus.IN_FLIGHT, last_attempt_at=datetime.utcnow()):
            logger.warning("Item %s could not be marked in flight; leaving it for the next drain", item.id)
            return SyncStatus.FAILED
        try:
            await self._dispatch[item.type](item.payload)
        except RemoteServiceError as exc:
            return await self._mark_failed(item, exc)
        except Exception as exc:
            logger.exception("Unexpected error syncing %s item %s", item.type.value, item.id)
            return await self._mark_failed(item, exc)

        if await self._rewrite(self._without(item.id)) is None:
            # Stays IN_FLIGHT, so the next drain recovers and resends it
            logger.warning("Synced %s item %s but could not remove it from the queue", item.type.value, item.id)
        else:
            logger.info("Synced %s item %s", item.type.value, item.id)
        return SyncStatus.SYNCED

    async def _mark_failed(self, item: QueueItem, error: Exception) -> SyncStatus:
        attempts = item.attempts + 1
        status = SyncStatus.FAILED
        if self.dead_letter_on_rejection and getattr(error, "permanent", False):
            status = SyncStatus.DEAD_LETTER
        elif self.max_attempts is not None and attempts >= self.max_attempts:
            status = SyncStatus.DEAD_LETTER

        await self._update(item.id, status=status, attempts=attempts, last_error=str(error))
        if status == SyncStatus.DEAD_LETTER:
            logger.error("Item %s moved to dead letter after %d attempt(s): %s", item.id, attempts, error)
        else:
            logger.warning("Item %s failed (attempt %d), will retry: %s", item.id, attempts, error)
        return status

    async def _recover_in_flight(self) -> None:
        # Only one drain runs per process, so IN_FLIGHT here means a previous run died mid-call
        stale = []

        def reset(items: List[QueueItem]) -> bool:
            for item in items:
                if item.status == SyncStatus.IN_FLIGHT:
                    item.status = SyncStatus.PENDING
                    stale.append(item.id)
            return bool(stale)

        if await self._rewrite(reset) is not None:
            logger.warning("Recovered %d interrupted item(s)", len(stale))

    async def _update(self, item_id: str, **changes) -> bool:
        def apply(items: List[QueueItem]) -> bool:
            for item in items:
                if item.id == item_id:
                    for name, value in changes.items():
                        setattr(item, name, value)
                    return True
            return False

        return await self._rewrite(apply) is not None

    async def _rewrite(self, change: Callable[[List[QueueItem]], Optional[bool]]) -> Optional[List[QueueItem]]:
        """
        Apply ``change`` to the stored list under the write lock and save the result.

        ``change`` edits the list in place and returns False when there is nothing to
        save. Returns the saved list, or None when nothing was written. A failed read
        aborts the write: the stored queue is never replaced by a partial view of it.
        """
        async with self._write_lock:
            try:
                items, unreadable = await self._read()
            except StorageReadError as exc:
                logger.error("Queue left untouched: %s", exc)
                return None
            if change(items) is False:
                return None
            if not await self._save(items, unreadable):
                return None
            return items

    async def _read(self) -> Tuple[List[QueueItem], List[Any]]:
        """Parsed items plus the raw entries that could not be parsed, which are kept as-is."""
        raw = await self.store.read_json(self.queue_key, default=[])
        if not isinstance(raw, list):
            raise StorageReadError(f"{self.queue_key} does not hold a list")
        items, unreadable = [], []
        for entry in raw:
            try:
                items.append(QueueItem.from_dict(entry))
            except (KeyError, ValueError, TypeError) as exc:
                logger.warning("Skipping unreadable queue entry %r: %s", entry, exc)
                unreadable.append(entry)
        return items, unreadable

    async def _load(self) -> List[QueueItem]:
        try:
            items, _ = await self._read()
        except StorageReadError as exc:
            logger.error("%s", exc)
            return []
        return items

    async def _save(self, items: List[QueueItem], unreadable: List[Any]) -> bool:
        return await self.store.set_json(self.queue_key, [i.to_dict() for i in items] + unreadable)

    @staticmethod
    def _without(item_id: str) -> Callable[[List[QueueItem]], bool]:
        def drop(items: List[QueueItem]) -> bool:
            before = len(items)
            items[:] = [i for i in items if i.id != item_id]
            return len(items) < before

        return drop

    @staticmethod
    def _ordered(items: List[QueueItem]) -> List[QueueItem]:
        return sorted(items, key=lambda i: i.created_at)
