"""
Memory Adapter Tests

🧠 Exercises the shared adapter contract on the in-process backend:
connect retries, reads and writes, transactions, pool status, health and
close semantics.
"""

import asyncio

import pytest

from polydb.persistence.adapters.memory import DuplicateRecordError, MemoryAdapter
from polydb.persistence.config import MemoryConfig, PoolOptions
from polydb.persistence.errors import (
    ConfigurationError, ConnectionError, ExecuteError, IntegrityError, NotConnectedError,
    TransactionError,
)
from polydb.persistence.query_logger import QueryLogger


class FlakyMemoryAdapter(MemoryAdapter):
    """Fails the first `failures` connect attempts"""

    def __init__(self, failures: int):
        super().__init__("flaky")
        self.failures = failures
        self.discarded = 0

    async def _open(self, config):
        if self.failures:
            self.failures -= 1
            raise OSError("connection refused")
        await super()._open(config)

    async def _discard(self):
        self.discarded += 1
        await super()._discard()


def retrying(max_retries: int) -> MemoryConfig:
    return MemoryConfig(pool=PoolOptions(max_retries=max_retries, retry_delay=0))


class TestConnect:
    """Retry policy and lifecycle"""

    @pytest.mark.asyncio
    async def test_retries_until_success(self):
        adapter = FlakyMemoryAdapter(failures=2)
        await adapter.connect(retrying(2))

        assert adapter.is_connected()
        assert adapter.metrics.connect_attempts == 3
        assert adapter.discarded == 2
        await adapter.close()

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_connection_error(self):
        adapter = FlakyMemoryAdapter(failures=5)
        with pytest.raises(ConnectionError) as exc_info:
            await adapter.connect(retrying(1))

        assert isinstance(exc_info.value.original_error, OSError)
        assert isinstance(exc_info.value.__cause__, OSError)
        assert adapter.metrics.connect_attempts == 2
        assert adapter.discarded == 2
        assert not adapter.is_connected()

    @pytest.mark.asyncio
    async def test_zero_retries_fails_fast(self):
        adapter = FlakyMemoryAdapter(failures=1)
        with pytest.raises(ConnectionError):
            await adapter.connect(retrying(0))
        assert adapter.metrics.connect_attempts == 1

    @pytest.mark.asyncio
    async def test_rejects_other_backend_config(self):
        adapter = MemoryAdapter()
        with pytest.raises(ConfigurationError):
            await adapter.connect({"type": "sqlite", "connection": {"filename": "x.db"}})

    @pytest.mark.asyncio
    async def test_closed_adapter_cannot_reconnect(self, memory_adapter):
        await memory_adapter.close()
        with pytest.raises(ConnectionError):
            await memory_adapter.connect({"type": "memory"})


class TestReadsAndWrites:
    """Where-mapping reads and execute operations"""

    @pytest.mark.asyncio
    async def test_insert_assigns_increasing_ids(self, memory_adapter):
        first = await memory_adapter.insert("users", {"name": "Ada"})
        second = await memory_adapter.insert("users", {"name": "Grace"})
        assert (first.inserted_id, second.inserted_id) == (1, 2)

    @pytest.mark.asyncio
    async def test_query_with_options(self, memory_adapter):
        await memory_adapter.execute("insert_many", "users", {"documents": [
            {"name": "a", "age": 30}, {"name": "b", "age": 20}, {"name": "c", "age": 40},
        ]})
        rows = await memory_adapter.query("users", {"age": {"$gte": 25}}, {"sort": [("age", -1)]})
        assert [r["name"] for r in rows] == ["c", "a"]

        rows = await memory_adapter.query("users", None, {"sort": [("age", 1)], "skip": 1, "limit": 1})
        assert [r["name"] for r in rows] == ["a"]

    @pytest.mark.asyncio
    async def test_update_and_delete(self, memory_adapter):
        await memory_adapter.insert("users", {"name": "a", "active": True})
        await memory_adapter.insert("users", {"name": "b", "active": True})

        result = await memory_adapter.update("users", {"active": True}, {"active": False})
        assert result.affected_rows == 2
        result = await memory_adapter.execute("update", "users", {
            "filter": {"name": "a"}, "update": {"$set": {"active": True}},
        })
        assert result.affected_rows == 1
        assert await memory_adapter.exists("users", {"name": "a", "active": True})

        result = await memory_adapter.delete("users", {"active": False})
        assert result.affected_rows == 1
        assert [r["name"] for r in await memory_adapter.find("users")] == ["a"]

    @pytest.mark.asyncio
    async def test_returned_records_are_copies(self, memory_adapter):
        await memory_adapter.insert("users", {"name": "a"})
        row = await memory_adapter.find_one("users", {"name": "a"})
        row["name"] = "changed"
        assert await memory_adapter.find_one("users", {"name": "changed"}) is None

    @pytest.mark.asyncio
    async def test_unique_index_raises_integrity_error(self, memory_adapter):
        memory_adapter.create_index("users", "email")
        await memory_adapter.insert("users", {"email": "a@b.com"})

        with pytest.raises(IntegrityError) as exc_info:
            await memory_adapter.insert("users", {"email": "a@b.com"})
        assert isinstance(exc_info.value.original_error, DuplicateRecordError)
        assert memory_adapter.metrics.failed_operations == 1

    @pytest.mark.asyncio
    async def test_unknown_operation(self, memory_adapter):
        with pytest.raises(ExecuteError):
            await memory_adapter.execute("truncate", "users")

    @pytest.mark.asyncio
    async def test_query_logger_receives_operations(self, memory_adapter):
        query_logger = QueryLogger()
        memory_adapter.set_query_logger(query_logger)
        await memory_adapter.insert("users", {"name": "a"})
        await memory_adapter.find("users")

        assert [e.type for e in query_logger.get_logs()] == ["execute", "query"]
        assert memory_adapter.get_metrics()["queries_executed"] == 1


class TestTransactions:
    """Atomicity and nested session reuse"""

    @pytest.mark.asyncio
    async def test_failed_callback_rolls_back(self, memory_adapter):
        async def work(tx):
            await tx.insert("orders", {"sku": "A-1"})
            raise RuntimeError("payment declined")

        with pytest.raises(TransactionError) as exc_info:
            await memory_adapter.transaction(work)

        assert isinstance(exc_info.value.original_error, RuntimeError)
        assert exc_info.value.rollback_error is None
        assert await memory_adapter.find("orders", {"sku": "A-1"}) == []

    @pytest.mark.asyncio
    async def test_success_commits(self, memory_adapter):
        async def work(tx):
            await tx.insert("orders", {"sku": "A-1"})
            return "done"

        assert await memory_adapter.transaction(work) == "done"
        assert len(await memory_adapter.find("orders")) == 1
        assert memory_adapter.metrics.transactions_committed == 1

    @pytest.mark.asyncio
    async def test_nested_transaction_reuses_session(self, memory_adapter):
        seen = []

        async def inner(tx):
            seen.append(tx)
            await tx.insert("orders", {"sku": "B-2"})

        async def outer(tx):
            seen.append(tx)
            await tx.transaction(inner)
            raise RuntimeError("abort everything")

        with pytest.raises(TransactionError):
            await memory_adapter.transaction(outer)

        assert seen[0] is seen[1]
        assert seen[0].in_transaction
        assert await memory_adapter.find("orders") == []
        assert memory_adapter.metrics.transactions_started == 1

    @pytest.mark.asyncio
    async def test_rollback_keeps_writes_made_outside_the_session(self, memory_adapter):
        await memory_adapter.insert("items", {"name": "kept", "qty": 1})
        await memory_adapter.insert("items", {"name": "gone", "qty": 1})
        started = asyncio.Event()
        outside_done = asyncio.Event()

        async def work(tx):
            await tx.insert("items", {"name": "inside"})
            await tx.update("items", {"name": "kept"}, {"qty": 5})
            await tx.delete("items", {"name": "gone"})
            started.set()
            await outside_done.wait()
            raise RuntimeError("abort")

        async def outside():
            await started.wait()
            await memory_adapter.insert("items", {"name": "outside"})
            outside_done.set()

        results = await asyncio.gather(memory_adapter.transaction(work), outside(), return_exceptions=True)

        assert isinstance(results[0], TransactionError)
        rows = await memory_adapter.find("items")
        assert [r["name"] for r in rows] == ["kept", "gone", "outside"]
        assert rows[0]["qty"] == 1

    @pytest.mark.asyncio
    async def test_view_cannot_close_adapter(self, memory_adapter):
        async def work(tx):
            await tx.close()

        with pytest.raises(TransactionError):
            await memory_adapter.transaction(work)
        assert memory_adapter.is_connected()

    @pytest.mark.asyncio
    async def test_pool_reports_active_transaction(self, memory_adapter):
        statuses = []

        async def work(tx):
            statuses.append(tx.get_pool_status())

        await memory_adapter.transaction(work)
        assert statuses[0].active == 1
        assert memory_adapter.get_pool_status().active == 0


class TestHealthAndClose:
    """Pool status, health checks and close semantics"""

    @pytest.mark.asyncio
    async def test_healthy_adapter(self, memory_adapter):
        result = await memory_adapter.health_check()
        assert result.healthy
        assert result.latency is not None
        assert memory_adapter.last_health_check is result

    @pytest.mark.asyncio
    async def test_pool_status_invariant(self, memory_adapter):
        status = memory_adapter.get_pool_status()
        assert status.active + status.idle <= status.total
        assert status.waiting >= 0

    @pytest.mark.asyncio
    async def test_after_close(self, memory_adapter):
        await memory_adapter.close()
        await memory_adapter.close()

        assert not memory_adapter.is_connected()
        assert (await memory_adapter.health_check()).healthy is False
        assert memory_adapter.get_pool_status().to_dict() == {"total": 0, "active": 0, "idle": 0, "waiting": 0}
        with pytest.raises(NotConnectedError):
            await memory_adapter.find("users")
        with pytest.raises(NotConnectedError):
            await memory_adapter.insert("users", {"name": "a"})
        with pytest.raises(NotConnectedError):
            await memory_adapter.transaction(lambda tx: tx.find("users"))

    @pytest.mark.asyncio
    async def test_unopened_adapter(self):
        adapter = MemoryAdapter()
        assert (await adapter.health_check()).healthy is False
        with pytest.raises(NotConnectedError):
            await adapter.find("users")
