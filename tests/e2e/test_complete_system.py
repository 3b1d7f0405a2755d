"""
PolyDB End-to-End System Tests

🧪 Full Workflow:
Connections come from a config loader, migrations create the SQLite schema,
models validate and write through it, and transactions span models sharing
one connection. The memory backend runs alongside as a second named
connection.
"""

import pytest

from polydb.entities import ModelBuilder
from polydb.persistence import (
    AggregateValidationError, DatabaseContext, Migration, MigrationManager,
    QueryLogger, TransactionError,
)

CREATE_USERS = (
    "CREATE TABLE users ("
    "id INTEGER PRIMARY KEY AUTOINCREMENT, "
    "email VARCHAR(255) NOT NULL UNIQUE, "
    "name VARCHAR(100), "
    "plan VARCHAR(20))"
)
CREATE_ORDERS = (
    "CREATE TABLE orders ("
    "id INTEGER PRIMARY KEY AUTOINCREMENT, "
    "user_id INTEGER NOT NULL, "
    "items INTEGER NOT NULL)"
)


async def create_users(adapter):
    await adapter.execute(CREATE_USERS)


async def drop_users(adapter):
    await adapter.execute("DROP TABLE users")


async def create_orders(adapter):
    await adapter.execute(CREATE_ORDERS)


async def drop_orders(adapter):
    await adapter.execute("DROP TABLE orders")


MIGRATIONS = [
    Migration("001_create_users", create_users, drop_users),
    Migration("002_create_orders", create_orders, drop_orders),
]


def build_models(context):
    users = (ModelBuilder("users")
             .schema({
                 "email": {"type": "string", "validate": {
                     "required": True, "trim": True, "toLowerCase": True,
                     "format": "email", "unique": True,
                 }},
                 "name": {"type": "string", "validate": {"max": 100}},
                 "plan": {"type": "enum", "enum": ["free", "pro"], "default": "free"},
             })
             .scope("pro", {"plan": "pro"})
             .bind(context=context, connection="main"))
    orders = (ModelBuilder("orders")
              .schema({
                  "user_id": {"type": "number", "validate": {
                      "required": True, "exists": {"collection": "users", "where": {"id": None}},
                  }},
                  "items": {"type": "number", "convert": True, "validate": {"integer": True, "positive": True}},
              })
              .bind(context=context, connection="main"))
    return users, orders


class TestCompleteSystem:

    @pytest.mark.asyncio
    async def test_workflow(self, tmp_path):
        context = DatabaseContext(config_loader=lambda: {
            "main": {"type": "sqlite", "connection": {"filename": str(tmp_path / "app.db")}},
            "cache": {"type": "memory"},
        })
        main = await context.get_database_async("main")
        query_logger = QueryLogger()
        main.set_query_logger(query_logger)

        migrations = MigrationManager(main)
        assert await migrations.up(MIGRATIONS) == ["001_create_users", "002_create_orders"]

        users, orders = build_models(context)
        ann = await users.create({"email": "  Ann@Example.com ", "name": "Ann"})
        assert ann["email"] == "ann@example.com"
        assert ann["plan"] == "free"

        with pytest.raises(AggregateValidationError) as exc_info:
            await users.create({"email": "ANN@example.com"})
        assert exc_info.value.violations[0].rule == "unique"

        order = await orders.create({"user_id": ann["id"], "items": "3"})
        assert order["items"] == 3
        with pytest.raises(AggregateValidationError) as exc_info:
            await orders.create({"user_id": 99, "items": 1})
        assert exc_info.value.violations[0].message == "user_id does not exist in users"

        await users.update(ann["id"], {"plan": "pro"})
        assert [u["email"] for u in await users.scope("pro").find()] == ["ann@example.com"]

        cache = context.get_database("cache")
        await cache.insert("sessions", {"user_id": ann["id"]})
        assert await cache.exists("sessions", {"user_id": ann["id"]})

        assert query_logger.get_stats()["total"] > 0
        await context.close_database()
        assert not main.is_connected()

    @pytest.mark.asyncio
    async def test_transaction_spans_models(self, tmp_path):
        context = DatabaseContext()
        await context.init_database(
            {"type": "sqlite", "connection": {"filename": str(tmp_path / "tx.db")}}, "main"
        )
        main = context.get_database("main")
        await MigrationManager(main).up(MIGRATIONS)
        users, orders = build_models(context)

        async def sign_up(tx):
            user = await users.with_session(tx).create({"email": "bob@example.com"})
            # the new user is visible to the exists rule inside the transaction
            await orders.with_session(tx).create({"user_id": user["id"], "items": 1})
            await orders.with_session(tx).create({"user_id": user["id"], "items": 0})

        with pytest.raises(TransactionError):
            await main.transaction(sign_up)

        assert await users.count() == 0
        assert await orders.count() == 0
        await context.close_database()
