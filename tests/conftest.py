"""
Shared fixtures for the polydb test suite.

Adapters run against in-process backends only: MemoryAdapter and SQLite
files under pytest's tmp_path.
"""

import pytest
import pytest_asyncio

from polydb.persistence.access import reset_default_context
from polydb.persistence.adapters.memory import MemoryAdapter
from polydb.persistence.adapters.sqlite import SQLiteAdapter

USERS_DDL = (
    "CREATE TABLE users ("
    "id INTEGER PRIMARY KEY AUTOINCREMENT, "
    "email VARCHAR(255) UNIQUE, "
    "name VARCHAR(100), "
    "age INTEGER)"
)


@pytest.fixture(autouse=True)
def fresh_default_context():
    """Every test starts without a process-wide database context"""
    reset_default_context()
    yield
    reset_default_context()


@pytest_asyncio.fixture
async def memory_adapter():
    adapter = MemoryAdapter("test")
    await adapter.connect({"type": "memory"})
    yield adapter
    await adapter.close()


@pytest.fixture
def sqlite_config(tmp_path):
    return {"type": "sqlite", "connection": {"filename": str(tmp_path / "polydb.sqlite")}}


@pytest_asyncio.fixture
async def sqlite_adapter(sqlite_config):
    adapter = SQLiteAdapter("test")
    await adapter.connect(sqlite_config)
    await adapter.execute(USERS_DDL)
    yield adapter
    await adapter.close()
