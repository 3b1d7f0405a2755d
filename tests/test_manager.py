"""
Database Manager Tests

🏭 Named connections, adapter factories and bulk close.
"""

import pytest

from polydb.persistence.adapters.memory import MemoryAdapter
from polydb.persistence.adapters.sqlite import SQLiteAdapter
from polydb.persistence.errors import ConfigurationError, ConnectionError, ConnectionNotFoundError
from polydb.persistence.manager import AdapterRegistry, DatabaseManager


class RecordingMemoryAdapter(MemoryAdapter):
    created = []

    def __init__(self, name=None):
        super().__init__(name)
        RecordingMemoryAdapter.created.append(name)


class FailingCloseAdapter(MemoryAdapter):
    async def close(self):
        await super().close()
        raise RuntimeError("close failed")


class TestAdapterRegistry:

    def test_default_backends(self):
        assert AdapterRegistry().list_backends() == ["memory", "mongodb", "mysql", "postgresql", "sqlite"]

    def test_unknown_backend(self):
        with pytest.raises(ConfigurationError):
            AdapterRegistry().get_factory("redis")

    def test_create_builds_unconnected_adapter(self):
        adapter = AdapterRegistry().create("sqlite", "files")
        assert isinstance(adapter, SQLiteAdapter)
        assert adapter.name == "files"
        assert not adapter.is_connected()


class TestDatabaseManager:

    @pytest.mark.asyncio
    async def test_connect_default_name(self):
        manager = DatabaseManager()
        status = await manager.connect({"type": "memory"})

        assert status.name == "default"
        assert status.type == "memory"
        assert status.connected
        assert manager.has_connection()
        assert manager.get_connection_names() == ["default"]
        await manager.close_all()

    @pytest.mark.asyncio
    async def test_named_connections(self, sqlite_config):
        manager = DatabaseManager()
        await manager.connect({"type": "memory"}, "cache")
        status = await manager.connect(sqlite_config, "files")

        assert status.filename == sqlite_config["connection"]["filename"]
        assert isinstance(manager.get_connection("files"), SQLiteAdapter)
        assert sorted(manager.get_connection_names()) == ["cache", "files"]
        await manager.close_all()

    @pytest.mark.asyncio
    async def test_missing_connection(self):
        manager = DatabaseManager()
        with pytest.raises(ConnectionNotFoundError):
            manager.get_connection("nope")
        assert not manager.has_connection("nope")

    @pytest.mark.asyncio
    async def test_reconnect_replaces_and_closes_previous(self):
        manager = DatabaseManager()
        await manager.connect({"type": "memory"})
        first = manager.get_connection()
        await manager.connect({"type": "memory"})
        second = manager.get_connection()

        assert first is not second
        assert not first.is_connected()
        assert second.is_connected()
        await manager.close_all()

    @pytest.mark.asyncio
    async def test_failed_connect_leaves_registry_untouched(self, tmp_path):
        manager = DatabaseManager()
        with pytest.raises(ConnectionError):
            await manager.connect({
                "type": "sqlite",
                "connection": {"filename": str(tmp_path / "absent.db")},
                "sqliteOptions": {"fileMustExist": True},
            })
        assert manager.get_connection_names() == []

    @pytest.mark.asyncio
    async def test_set_adapter_factory(self):
        manager = DatabaseManager()
        RecordingMemoryAdapter.created.clear()
        manager.set_adapter_factory("memory", RecordingMemoryAdapter)

        await manager.connect({"type": "memory"}, "custom")
        assert isinstance(manager.get_connection("custom"), RecordingMemoryAdapter)
        assert RecordingMemoryAdapter.created == ["custom"]
        await manager.close_all()

    @pytest.mark.asyncio
    async def test_close_unknown_name_is_noop(self):
        manager = DatabaseManager()
        await manager.close("ghost")

    @pytest.mark.asyncio
    async def test_close_one(self):
        manager = DatabaseManager()
        await manager.connect({"type": "memory"}, "a")
        adapter = manager.get_connection("a")
        await manager.close("a")

        assert not manager.has_connection("a")
        assert not adapter.is_connected()

    @pytest.mark.asyncio
    async def test_close_all_survives_failing_adapter(self):
        manager = DatabaseManager()
        manager.set_adapter_factory("memory", FailingCloseAdapter)
        await manager.connect({"type": "memory"}, "a")
        await manager.connect({"type": "memory"}, "b")

        await manager.close_all()
        assert manager.get_connection_names() == []

    @pytest.mark.asyncio
    async def test_health_check_all(self):
        manager = DatabaseManager()
        await manager.connect({"type": "memory"}, "a")
        results = await manager.health_check_all()
        assert results["a"].healthy
        await manager.close_all()
