import pytest
from sqlalchemy.exc import OperationalError

from surveyor.services.local_store import LocalStore, StorageReadError


class TestLocalStore:
    @pytest.mark.asyncio
    async def test_set_get_overwrite(self, store):
        assert await store.get_item("rsu:missing") is None
        assert await store.set_item("rsu:a", "1") is True
        assert await store.set_item("rsu:a", "2") is True
        assert await store.get_item("rsu:a") == "2"

    @pytest.mark.asyncio
    async def test_remove_is_idempotent(self, store):
        await store.set_item("rsu:a", "1")
        assert await store.remove_item("rsu:a") is True
        assert await store.remove_item("rsu:a") is True
        assert await store.get_item("rsu:a") is None

    @pytest.mark.asyncio
    async def test_keys_by_prefix(self, store):
        await store.set_item(store.key("assessment", "p2"), "{}")
        await store.set_item(store.key("assessment", "p1"), "{}")
        await store.set_item(store.key("sync_queue"), "[]")
        await store.set_item("rsu_other:x", "1")

        assert await store.get_all_keys(store.key("assessment", "")) == ["rsu:assessment:p1", "rsu:assessment:p2"]
        assert len(await store.get_all_keys()) == 4

    @pytest.mark.asyncio
    async def test_prefix_wildcards_are_literal(self, store):
        await store.set_item("rsu:a_b", "1")
        await store.set_item("rsu:axb", "1")
        assert await store.get_all_keys("rsu:a_") == ["rsu:a_b"]

    @pytest.mark.asyncio
    async def test_clear(self, store):
        await store.set_item("rsu:a", "1")
        await store.set_item("rsu:b", "1")
        assert await store.clear() is True
        assert await store.get_all_keys() == []

    @pytest.mark.asyncio
    async def test_json_helpers(self, store):
        await store.set_json("rsu:doc", {"items": [1, 2], "name": "Libreville"})
        assert await store.get_json("rsu:doc") == {"items": [1, 2], "name": "Libreville"}
        assert await store.get_json("rsu:none", default=[]) == []

    @pytest.mark.asyncio
    async def test_corrupt_json_returns_default(self, store):
        await store.set_item("rsu:doc", "{not json")
        assert await store.get_json("rsu:doc", default=[]) == []

    @pytest.mark.asyncio
    async def test_read_json_distinguishes_missing_from_broken(self, store, monkeypatch):
        assert await store.read_json("rsu:none", default=[]) == []

        await store.set_item("rsu:doc", "{not json")
        with pytest.raises(StorageReadError):
            await store.read_json("rsu:doc", default=[])

        def broken(*args):
            raise OperationalError("SELECT", {}, Exception("disk I/O error"))

        monkeypatch.setattr(store, "_get_sync", broken)
        with pytest.raises(StorageReadError):
            await store.read_json("rsu:none", default=[])
        assert await store.get_json("rsu:none", default=[]) == []

    @pytest.mark.asyncio
    async def test_in_memory_store(self):
        memory = LocalStore("sqlite://", namespace="test")
        try:
            await memory.set_item(memory.key("k"), "v")
            assert await memory.get_item("test:k") == "v"
        finally:
            memory.close()

    def test_key_namespacing(self, store):
        assert store.key("assessment", 42) == "rsu:assessment:42"
