"""
Migrations - Applied Migration History

📜 Persisted History:
Migrations are plain objects with async `up`/`down` steps that receive an
adapter. The MigrationManager applies pending migrations in name order,
one transaction per migration, and records `{name, batch, applied_at}` in a
history table (SQL) or collection (document stores) through the adapter's
`execute` primitive, so a failed step leaves no history entry behind.
"""

from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional
from dataclasses import dataclass
from datetime import datetime
import logging

from .adapters.interface import DatabaseAdapter, Record
from .adapters.sql import SQLAdapter, is_table_name
from .errors import ConfigurationError, ErrorCode, MigrationError

logger = logging.getLogger(__name__)

MigrationStep = Callable[[DatabaseAdapter], Awaitable[Any]]

_HISTORY_DDL = {
    "sqlite": "id INTEGER PRIMARY KEY AUTOINCREMENT",
    "postgresql": "id SERIAL PRIMARY KEY",
    "mysql": "id INTEGER AUTO_INCREMENT PRIMARY KEY",
}


@dataclass
class Migration:
    """One schema or data change; `down` is optional"""
    name: str
    up: MigrationStep
    down: Optional[MigrationStep] = None


@dataclass
class MigrationStatus:
    name: str
    applied: bool
    batch: Optional[int] = None
    applied_at: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "applied": self.applied,
            "batch": self.batch,
            "applied_at": self.applied_at,
        }


class MigrationManager:
    """
    Applies and reverts migrations against one adapter.

    Args:
        adapter: Connected adapter the migrations run against
        table_name: History table/collection name
        use_transactions: Run each migration inside adapter.transaction();
            disable for document deployments without transaction support
    """

    def __init__(self, adapter: DatabaseAdapter, table_name: str = "migrations",
                 use_transactions: bool = True):
        if not is_table_name(table_name):
            raise ConfigurationError(f"Invalid migration history table name: {table_name}")
        self.adapter = adapter
        self.table_name = table_name
        self.use_transactions = use_transactions

    @property
    def is_sql(self) -> bool:
        return isinstance(self.adapter, SQLAdapter)

    async def ensure_history(self):
        """Create the history table on SQL backends; collections are implicit"""
        if not self.is_sql:
            return
        id_column = _HISTORY_DDL.get(self.adapter.backend_type, _HISTORY_DDL["postgresql"])
        await self.adapter.execute(
            f"CREATE TABLE IF NOT EXISTS {self.table_name} ("
            f"{id_column}, "
            f"name VARCHAR(255) NOT NULL UNIQUE, "
            f"batch INTEGER NOT NULL, "
            f"applied_at VARCHAR(40) NOT NULL)"
        )

    async def get_applied(self) -> List[Record]:
        """History entries ordered by batch, then name"""
        await self.ensure_history()
        rows = await self.adapter.find(self.table_name)
        applied = []
        for row in rows:
            applied_at = row.get("applied_at")
            if isinstance(applied_at, str):
                applied_at = datetime.fromisoformat(applied_at)
            applied.append({"name": row["name"], "batch": int(row["batch"]), "applied_at": applied_at})
        return sorted(applied, key=lambda r: (r["batch"], r["name"]))

    async def _next_batch(self) -> int:
        applied = await self.get_applied()
        return max((r["batch"] for r in applied), default=0) + 1

    async def _record(self, adapter: DatabaseAdapter, name: str, batch: int):
        now = datetime.now()
        if self.is_sql:
            await adapter.execute(
                f"INSERT INTO {self.table_name} (name, batch, applied_at) VALUES (?, ?, ?)",
                [name, batch, now.isoformat()],
            )
        else:
            await adapter.execute("insert", self.table_name, {
                "document": {"name": name, "batch": batch, "applied_at": now},
            })

    async def _forget(self, adapter: DatabaseAdapter, name: str):
        if self.is_sql:
            await adapter.execute(f"DELETE FROM {self.table_name} WHERE name = ?", [name])
        else:
            await adapter.execute("delete", self.table_name, {"filter": {"name": name}})

    async def _run(self, fn: Callable[[DatabaseAdapter], Awaitable[Any]]):
        if self.use_transactions:
            return await self.adapter.transaction(fn)
        return await fn(self.adapter)

    def _index(self, migrations: Iterable[Migration]) -> Dict[str, Migration]:
        by_name: Dict[str, Migration] = {}
        for migration in migrations:
            if migration.name in by_name:
                raise ConfigurationError(f"Duplicate migration name: {migration.name}")
            by_name[migration.name] = migration
        return by_name

    async def up(self, migrations: Iterable[Migration], count: Optional[int] = None) -> List[str]:
        """
        Apply pending migrations in name order under one new batch number.

        Returns:
            Names of the applied migrations

        Raises:
            MigrationError: A migration failed; earlier ones stay applied
        """
        by_name = self._index(migrations)
        applied = {r["name"] for r in await self.get_applied()}
        pending = sorted(name for name in by_name if name not in applied)
        if not pending:
            logger.info("No pending migrations")
            return []

        to_run = pending[:count] if count is not None else pending
        if not to_run:
            return []
        batch = await self._next_batch()
        for name in to_run:
            migration = by_name[name]
            logger.info(f"Running migration {name}")

            async def apply(adapter: DatabaseAdapter, migration: Migration = migration):
                await migration.up(adapter)
                await self._record(adapter, migration.name, batch)

            try:
                await self._run(apply)
            except Exception as e:
                logger.error(f"Migration {name} failed: {e}")
                raise MigrationError(
                    f"Migration {name} failed: {e}", migration=name, original_error=e
                ) from e
            logger.info(f"Migration {name} completed")
        return to_run

    async def down(self, migrations: Iterable[Migration], count: int = 1) -> List[str]:
        """
        Revert the most recently applied migrations.

        Returns:
            Names of the reverted migrations, most recent first
        """
        by_name = self._index(migrations)
        applied = await self.get_applied()
        if not applied:
            logger.info("No migrations to roll back")
            return []

        reverted = []
        for record in list(reversed(applied))[:count]:
            name = record["name"]
            migration = by_name.get(name)
            if migration is None:
                raise MigrationError(
                    f"Applied migration {name} is not among the known migrations",
                    code=ErrorCode.MIGRATION_NOT_FOUND,
                    migration=name,
                )
            if migration.down is None:
                raise MigrationError(f"Migration {name} has no down step", migration=name)
            logger.info(f"Rolling back migration {name}")

            async def revert(adapter: DatabaseAdapter, migration: Migration = migration):
                await migration.down(adapter)
                await self._forget(adapter, migration.name)

            try:
                await self._run(revert)
            except Exception as e:
                logger.error(f"Rollback of migration {name} failed: {e}")
                raise MigrationError(
                    f"Rollback of migration {name} failed: {e}", migration=name, original_error=e
                ) from e
            logger.info(f"Migration {name} rolled back")
            reverted.append(name)
        return reverted

    async def status(self, migrations: Iterable[Migration]) -> List[MigrationStatus]:
        """Applied and pending state of every known or recorded migration"""
        history = {r["name"]: r for r in await self.get_applied()}
        names = sorted(set(self._index(migrations)) | set(history))
        statuses = []
        for name in names:
            record = history.get(name)
            statuses.append(MigrationStatus(
                name=name,
                applied=record is not None,
                batch=record["batch"] if record else None,
                applied_at=record["applied_at"] if record else None,
            ))
        return statuses


# Export main components
__all__ = ["Migration", "MigrationManager", "MigrationStatus", "MigrationStep"]
