"""
SQLite Adapter Tests

🗄️ The SQL adapter family on a real SQLite file: raw statements with
positional binds, Core-built reads and writes, constraint translation,
transactions and savepoints.
"""

import pytest

from polydb.entities.validation import ValidationContext, ValidationEngine, build_schema
from polydb.persistence.adapters.sqlite import SQLiteAdapter
from polydb.persistence.errors import (
    AggregateValidationError, ConnectionError, ErrorCode, IntegrityError, NotConnectedError,
    QueryError, TransactionError,
)


class TestStatements:
    """query() / execute() and the where-mapping helpers"""

    @pytest.mark.asyncio
    async def test_execute_and_query(self, sqlite_adapter):
        result = await sqlite_adapter.execute(
            "INSERT INTO users (email, name, age) VALUES (?, ?, ?)", ["ada@example.com", "Ada", 36]
        )
        assert result.affected_rows == 1
        assert result.inserted_id == 1

        rows = await sqlite_adapter.query("SELECT email, age FROM users WHERE name = ?", ["Ada"])
        assert rows == [{"email": "ada@example.com", "age": 36}]

    @pytest.mark.asyncio
    async def test_named_binds(self, sqlite_adapter):
        await sqlite_adapter.execute("INSERT INTO users (email) VALUES (:email)", {"email": "a@b.com"})
        rows = await sqlite_adapter.query("SELECT COUNT(*) AS n FROM users")
        assert rows[0]["n"] == 1

    @pytest.mark.asyncio
    async def test_insert_find_update_delete(self, sqlite_adapter):
        inserted = await sqlite_adapter.insert("users", {"email": "a@b.com", "name": "A", "age": 17})
        await sqlite_adapter.insert("users", {"email": "c@d.com", "name": "C", "age": 40})
        assert inserted.inserted_id == 1

        adults = await sqlite_adapter.find("users", {"age": {"$gte": 18}})
        assert [r["email"] for r in adults] == ["c@d.com"]

        updated = await sqlite_adapter.update("users", {"id": 1}, {"age": 18})
        assert updated.affected_rows == 1
        assert len(await sqlite_adapter.find("users", {"age": {"$gte": 18}})) == 2

        deleted = await sqlite_adapter.delete("users", {"email": {"$in": ["a@b.com"]}})
        assert deleted.affected_rows == 1
        assert await sqlite_adapter.find_one("users", {"id": 1}) is None

    @pytest.mark.asyncio
    async def test_table_name_query_delegates_to_find(self, sqlite_adapter):
        await sqlite_adapter.insert("users", {"email": "a@b.com"})
        rows = await sqlite_adapter.query("users", {"email": "a@b.com"})
        assert rows[0]["id"] == 1

    @pytest.mark.asyncio
    async def test_constraint_violation(self, sqlite_adapter):
        await sqlite_adapter.insert("users", {"email": "a@b.com"})
        with pytest.raises(IntegrityError) as exc_info:
            await sqlite_adapter.execute("INSERT INTO users (email) VALUES (?)", ["a@b.com"])
        assert exc_info.value.original_error is not None
        assert exc_info.value.__cause__ is exc_info.value.original_error

    @pytest.mark.asyncio
    async def test_bad_sql(self, sqlite_adapter):
        with pytest.raises(QueryError):
            await sqlite_adapter.query("SELECT * FROM missing_table")

    @pytest.mark.asyncio
    async def test_param_mismatch(self, sqlite_adapter):
        with pytest.raises(QueryError) as exc_info:
            await sqlite_adapter.query("SELECT ? AS a, ? AS b", [1])
        assert exc_info.value.code == ErrorCode.QUERY_PARAM_ERROR


class TestTransactions:
    """BEGIN / COMMIT / ROLLBACK and savepoints"""

    @pytest.mark.asyncio
    async def test_rollback_leaves_no_rows(self, sqlite_adapter):
        async def work(tx):
            await tx.insert("users", {"email": "a@b.com"})
            assert len(await tx.find("users")) == 1
            raise RuntimeError("abort")

        with pytest.raises(TransactionError):
            await sqlite_adapter.transaction(work)
        assert await sqlite_adapter.find("users") == []

    @pytest.mark.asyncio
    async def test_commit(self, sqlite_adapter):
        async def work(tx):
            await tx.execute("INSERT INTO users (email) VALUES (?)", ["a@b.com"])
            await tx.execute("INSERT INTO users (email) VALUES (?)", ["c@d.com"])

        await sqlite_adapter.transaction(work)
        assert len(await sqlite_adapter.find("users")) == 2

    @pytest.mark.asyncio
    async def test_integrity_error_inside_transaction(self, sqlite_adapter):
        await sqlite_adapter.insert("users", {"email": "a@b.com"})

        async def work(tx):
            await tx.insert("users", {"email": "new@b.com"})
            await tx.insert("users", {"email": "a@b.com"})

        with pytest.raises(TransactionError) as exc_info:
            await sqlite_adapter.transaction(work)
        assert isinstance(exc_info.value.original_error, IntegrityError)
        assert await sqlite_adapter.find("users", {"email": "new@b.com"}) == []

    @pytest.mark.asyncio
    async def test_nested_transaction_uses_savepoint(self, sqlite_adapter):
        async def inner(tx):
            await tx.insert("users", {"email": "inner@b.com"})
            raise RuntimeError("inner failure")

        async def outer(tx):
            await tx.insert("users", {"email": "outer@b.com"})
            with pytest.raises(RuntimeError):
                await tx.transaction(inner)

        await sqlite_adapter.transaction(outer)
        emails = [r["email"] for r in await sqlite_adapter.find("users")]
        assert emails == ["outer@b.com"]

    @pytest.mark.asyncio
    async def test_manual_savepoints(self, sqlite_adapter):
        async def work(tx):
            await tx.insert("users", {"email": "kept@b.com"})
            await tx.create_savepoint("before_extra")
            await tx.insert("users", {"email": "dropped@b.com"})
            await tx.rollback_to_savepoint("before_extra")
            await tx.release_savepoint("before_extra")

        await sqlite_adapter.transaction(work)
        emails = [r["email"] for r in await sqlite_adapter.find("users")]
        assert emails == ["kept@b.com"]

    @pytest.mark.asyncio
    async def test_savepoint_requires_transaction(self, sqlite_adapter):
        with pytest.raises(TransactionError) as exc_info:
            await sqlite_adapter.create_savepoint("sp1")
        assert exc_info.value.code == ErrorCode.SAVEPOINT_FAILED

    @pytest.mark.asyncio
    async def test_validation_reads_through_the_session(self, sqlite_adapter):
        schema = build_schema({"email": {"validate": {"unique": True}}})
        engine = ValidationEngine()

        async def work(tx):
            await tx.insert("users", {"email": "pending@b.com"})
            context = ValidationContext(adapter=tx, collection="users")
            await engine.validate({"email": "pending@b.com"}, schema, context=context)

        with pytest.raises(TransactionError) as exc_info:
            await sqlite_adapter.transaction(work)
        violation = exc_info.value.original_error.violations[0]
        assert isinstance(exc_info.value.original_error, AggregateValidationError)
        assert (violation.field, violation.rule) == ("email", "unique")


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_health_and_close(self, sqlite_adapter):
        assert (await sqlite_adapter.health_check()).healthy
        status = sqlite_adapter.get_pool_status()
        assert status.active + status.idle <= status.total

        assert status.active == 0

        await sqlite_adapter.close()
        assert (await sqlite_adapter.health_check()).healthy is False
        assert sqlite_adapter.get_pool_status().total == 0
        with pytest.raises(NotConnectedError):
            await sqlite_adapter.query("SELECT 1")

    @pytest.mark.asyncio
    async def test_pool_counts_checked_out_connections(self, sqlite_adapter):
        statuses = []

        async def work(tx):
            await tx.insert("users", {"email": "pool@b.com"})
            statuses.append(tx.get_pool_status())

        await sqlite_adapter.transaction(work)
        assert statuses[0].active == 1
        idle = sqlite_adapter.get_pool_status()
        assert idle.active == 0
        assert idle.idle == idle.total >= 1

    @pytest.mark.asyncio
    async def test_missing_file_with_file_must_exist(self, tmp_path):
        adapter = SQLiteAdapter()
        with pytest.raises(ConnectionError) as exc_info:
            await adapter.connect({
                "type": "sqlite",
                "connection": {"filename": str(tmp_path / "absent.db")},
                "sqliteOptions": {"fileMustExist": True},
            })
        assert isinstance(exc_info.value.original_error, FileNotFoundError)
        assert adapter.engine is None
