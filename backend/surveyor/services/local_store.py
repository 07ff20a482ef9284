"""
Local durable key-value store.
Device-side persistence for the sync queue and cached assessments; every access is async
so callers never block the event loop, and storage failures degrade to negative results.
"""
import asyncio
import json
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from ..models.base import Base, make_engine, make_session_factory
from ..models.stored_item import StoredItem

logger = logging.getLogger(__name__)


class StorageReadError(Exception):
    """A stored value could not be read back (storage failure or corrupt JSON)."""


class LocalStore:
    """
    Async key-value store on top of SQLAlchemy.

    All ORM work runs on a single dedicated worker thread, so reads and writes are
    applied in the order they were awaited. Errors are logged and reported as
    ``None`` / ``False`` / ``[]`` rather than raised, except by ``read_json``, which
    must let writers tell a failed read from an empty one.
    """

    def __init__(self, database_url: str, namespace: str = "rsu"):
        self.namespace = namespace
        self.engine = make_engine(database_url)
        self._session_factory = make_session_factory(self.engine)
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="local-store")
        Base.metadata.create_all(bind=self.engine)

    def key(self, *parts: str) -> str:
        """Build a namespaced key, e.g. ``rsu:assessment:<person_id>``."""
        return ":".join((self.namespace,) + tuple(str(p) for p in parts))

    async def _run(self, fn, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, fn, *args)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get_item(self, key: str) -> Optional[str]:
        try:
            return await self._run(self._get_sync, key)
        except SQLAlchemyError as exc:
            logger.error("Store read failed for %s: %s", key, exc)
            return None

    async def set_item(self, key: str, value: str) -> bool:
        try:
            await self._run(self._set_sync, key, value)
            return True
        except SQLAlchemyError as exc:
            logger.error("Store write failed for %s: %s", key, exc)
            return False

    async def remove_item(self, key: str) -> bool:
        try:
            await self._run(self._remove_sync, key)
            return True
        except SQLAlchemyError as exc:
            logger.error("Store delete failed for %s: %s", key, exc)
            return False

    async def get_all_keys(self, prefix: Optional[str] = None) -> List[str]:
        try:
            return await self._run(self._keys_sync, prefix)
        except SQLAlchemyError as exc:
            logger.error("Store key listing failed: %s", exc)
            return []

    async def clear(self) -> bool:
        try:
            await self._run(self._clear_sync)
            return True
        except SQLAlchemyError as exc:
            logger.error("Store clear failed: %s", exc)
            return False

    async def get_json(self, key: str, default: Any = None) -> Any:
        try:
            return await self.read_json(key, default)
        except StorageReadError as exc:
            logger.error("%s", exc)
            return default

    async def read_json(self, key: str, default: Any = None) -> Any:
        """
        Strict variant of get_json for read-modify-write callers.
        Returns ``default`` only when the key is absent; raises StorageReadError when the
        read fails or the stored text is not JSON.
        """
        try:
            raw = await self._run(self._get_sync, key)
        except SQLAlchemyError as exc:
            raise StorageReadError(f"Store read failed for {key}: {exc}") from exc
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except ValueError as exc:
            raise StorageReadError(f"Unreadable JSON stored under {key}") from exc

    async def set_json(self, key: str, value: Any) -> bool:
        return await self.set_item(key, json.dumps(value))

    def close(self) -> None:
        self._executor.shutdown(wait=True)
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Blocking helpers (worker thread only)
    # ------------------------------------------------------------------

    def _get_sync(self, key: str) -> Optional[str]:
        with self._session_factory() as db:
            row = db.get(StoredItem, key)
            return row.value if row else None

    def _set_sync(self, key: str, value: str) -> None:
        with self._session_factory() as db:
            row = db.get(StoredItem, key)
            if row is None:
                db.add(StoredItem(key=key, value=value))
            else:
                row.value = value
                row.updated_at = datetime.utcnow()
            db.commit()

    def _remove_sync(self, key: str) -> None:
        with self._session_factory() as db:
            db.query(StoredItem).filter(StoredItem.key == key).delete()
            db.commit()

    def _keys_sync(self, prefix: Optional[str]) -> List[str]:
        with self._session_factory() as db:
            q = db.query(StoredItem.key)
            if prefix:
                q = q.filter(StoredItem.key.startswith(prefix, autoescape=True))
            return [k for (k,) in q.order_by(StoredItem.key).all()]

    def _clear_sync(self) -> None:
        with self._session_factory() as db:
            db.query(StoredItem).delete()
            db.commit()
