"""
SQLite Adapter

📁 File-Backed Relational Storage:
SQLite through the aiosqlite driver. The driver's implicit transaction
handling is switched off so that BEGIN, SAVEPOINT and ROLLBACK are emitted
exactly when the adapter asks for them.
"""

from typing import Any, Dict
import os

from sqlalchemy import event
from sqlalchemy.engine import URL
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.pool import StaticPool

from .interface import PoolStatus
from .sql import SQLAdapter


class SQLiteAdapter(SQLAdapter):
    """SQLite adapter (`sqlite+aiosqlite`)"""

    backend_type = "sqlite"

    def _build_url(self, config: Any) -> URL:
        options = config.options
        filename = config.connection.filename
        if options.file_must_exist and filename != ":memory:" and not os.path.exists(filename):
            raise FileNotFoundError(f"SQLite database file does not exist: {filename}")
        if options.readonly and filename != ":memory:":
            return URL.create("sqlite+aiosqlite", database=f"file:{filename}",
                              query={"mode": "ro", "uri": "true"})
        return URL.create("sqlite+aiosqlite", database=filename)

    def _engine_options(self, config: Any) -> Dict[str, Any]:
        return {"connect_args": {"timeout": config.options.timeout}}

    def _connect_timeout(self, config: Any) -> float:
        return config.options.timeout

    def _configure_engine(self, engine: AsyncEngine):
        @event.listens_for(engine.sync_engine, "connect")
        def do_connect(dbapi_connection, connection_record):
            # Let the adapter emit BEGIN itself so savepoints behave
            dbapi_connection.isolation_level = None

        @event.listens_for(engine.sync_engine, "begin")
        def do_begin(conn):
            conn.exec_driver_sql("BEGIN")

    def _last_row_id(self, result: Any) -> Any:
        return result.lastrowid or None

    def _pool_status(self) -> PoolStatus:
        if isinstance(self.engine.pool, StaticPool):
            # ":memory:" engines hold one connection and keep no checkout counters
            return PoolStatus(total=1, active=0, idle=1, waiting=0)
        return super()._pool_status()


# Export main components
__all__ = ["SQLiteAdapter"]
