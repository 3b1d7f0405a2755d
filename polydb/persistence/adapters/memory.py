"""
Memory Adapter - In-Process Document Backend

🧠 In-Memory Storage:
A document adapter that keeps collections in process memory. It
implements the full adapter contract (where-mapping reads, write operations,
unique indexes raising IntegrityError, undo-log transactions) so
models, validation and migrations can run without a database server.
"""

from typing import Any, Dict, List, Mapping, Optional, Set, Tuple
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
import logging
import uuid

from .base import BaseAdapter
from .interface import ExecuteResult, PoolStatus, Record, match_where, values_equal
from ..errors import ExecuteError

logger = logging.getLogger(__name__)


class DuplicateRecordError(Exception):
    """Raised by the store when a unique index would be violated"""
    pass


@dataclass
class MemoryTransaction:
    """
    Undo log of one transaction.

    Each write issued through the session appends an entry; rollback replays
    them newest first, so writes made outside the session survive.
    """
    transaction_id: str
    undo_log: List[Tuple[str, str, Any]] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.now)
    is_committed: bool = False
    is_rolled_back: bool = False


class MemoryAdapter(BaseAdapter):
    """
    In-memory document adapter.

    `execute(operation, collection, payload)` operations:
    insert, insert_many, update, update_many, replace, delete, delete_many.
    Records inserted without a primary key receive an increasing integer id.
    """

    backend_type = "memory"

    def __init__(self, name: Optional[str] = None):
        super().__init__(name)
        self._collections: Dict[str, List[Record]] = defaultdict(list)
        self._counters: Dict[str, int] = defaultdict(int)
        self._unique_indexes: Dict[str, Set[str]] = defaultdict(set)
        self._active_transactions = 0

    def _is_integrity_error(self, error: BaseException) -> bool:
        return isinstance(error, DuplicateRecordError)

    # Lifecycle hooks
    async def _open(self, config: Any):
        logger.debug(f"MemoryAdapter opened with {len(self._collections)} collection(s)")

    async def _discard(self):
        self._collections.clear()
        self._counters.clear()
        self._active_transactions = 0

    async def _ping(self):
        pass

    def _pool_status(self) -> PoolStatus:
        active = 1 if self._active_transactions else 0
        return PoolStatus(total=1, active=active, idle=1 - active, waiting=0)

    # Sessions
    async def _begin_session(self) -> MemoryTransaction:
        self._active_transactions += 1
        return MemoryTransaction(transaction_id=str(uuid.uuid4()))

    async def _commit_session(self, session: MemoryTransaction):
        session.undo_log.clear()
        session.is_committed = True

    async def _rollback_session(self, session: MemoryTransaction):
        # Generated ids are not reused, like an autoincrement column
        for action, collection, data in reversed(session.undo_log):
            rows = self._collections[collection]
            if action == "insert":
                self._collections[collection] = [r for r in rows if r is not data]
            elif action == "update":
                record, previous = data
                record.clear()
                record.update(previous)
            elif action == "delete":
                for index, record in data:
                    rows.insert(min(index, len(rows)), record)
        logger.debug(f"Rolled back {len(session.undo_log)} write(s) of transaction {session.transaction_id}")
        session.undo_log.clear()
        session.is_rolled_back = True

    def _log_undo(self, action: str, collection: str, data: Any):
        if self._tx_session is not None:
            self._tx_session.undo_log.append((action, collection, data))

    async def _end_session(self, session: MemoryTransaction):
        self._active_transactions = max(self._active_transactions - 1, 0)

    # Index management
    def create_index(self, collection: str, field_name: str, unique: bool = True):
        """Declare a unique index enforced on insert and update"""
        if unique:
            self._unique_indexes[collection].add(field_name)

    def _check_unique(self, collection: str, record: Record, ignore: Optional[Record] = None):
        for field_name in self._unique_indexes.get(collection, ()):
            value = record.get(field_name)
            if value is None:
                continue
            for existing in self._collections[collection]:
                if existing is ignore:
                    continue
                if values_equal(existing.get(field_name), value):
                    raise DuplicateRecordError(
                        f"Duplicate value {value!r} for unique field '{field_name}' in '{collection}'"
                    )

    # Reads
    async def query(self, target: str, criteria: Any = None,
                    options: Optional[Dict[str, Any]] = None) -> List[Record]:
        options = options or {}

        async def run():
            rows = [dict(r) for r in self._collections.get(target, []) if match_where(r, criteria)]
            for key, direction in reversed(options.get("sort") or []):
                rows.sort(key=lambda r: (r.get(key) is None, r.get(key)), reverse=direction < 0)
            skip = options.get("skip", 0)
            limit = options.get("limit")
            rows = rows[skip:]
            return rows[:limit] if limit else rows

        return await self._observe("query", f"{target}.find", criteria, run)

    async def find(self, target: str, where: Optional[Mapping[str, Any]] = None,
                   limit: Optional[int] = None) -> List[Record]:
        return await self.query(target, where, {"limit": limit})

    # Writes
    async def execute(self, operation: str, collection: str = None,
                      payload: Optional[Mapping[str, Any]] = None) -> ExecuteResult:
        payload = dict(payload or {})
        if collection is None:
            raise ExecuteError(f"Memory {operation} requires a collection name")

        async def run():
            return self._dispatch(operation, collection, payload)

        return await self._observe("execute", f"{collection}.{operation}", payload, run)

    def _dispatch(self, operation: str, collection: str, payload: Dict[str, Any]) -> ExecuteResult:
        primary_key = payload.get("primary_key", "id")
        where = payload.get("filter") or {}

        if operation == "insert":
            record_id = self._insert(collection, payload["document"], primary_key)
            return ExecuteResult(affected_rows=1, inserted_id=record_id)
        if operation == "insert_many":
            ids = [self._insert(collection, doc, primary_key) for doc in payload["documents"]]
            return ExecuteResult(affected_rows=len(ids), inserted_ids=ids)
        if operation in ("update", "update_many", "replace"):
            matches = [r for r in self._collections[collection] if match_where(r, where)]
            if operation != "update_many":
                matches = matches[:1]
            for record in matches:
                if operation == "replace":
                    updated = dict(payload["document"])
                    updated.setdefault(primary_key, record.get(primary_key))
                else:
                    updated = {**record, **self._changes(payload["update"])}
                self._check_unique(collection, updated, ignore=record)
                self._log_undo("update", collection, (record, dict(record)))
                record.clear()
                record.update(updated)
            return ExecuteResult(affected_rows=len(matches))
        if operation in ("delete", "delete_many"):
            rows = self._collections[collection]
            matches = [(i, r) for i, r in enumerate(rows) if match_where(r, where)]
            if operation == "delete":
                matches = matches[:1]
            if matches:
                self._log_undo("delete", collection, matches)
            self._collections[collection] = [r for r in rows if not any(r is m for _, m in matches)]
            return ExecuteResult(affected_rows=len(matches))
        raise ExecuteError(f"Unsupported memory operation: {operation}")

    def _changes(self, update: Mapping[str, Any]) -> Dict[str, Any]:
        if "$set" in update:
            return dict(update["$set"])
        return dict(update)

    def _insert(self, collection: str, document: Mapping[str, Any], primary_key: str) -> Any:
        record = dict(document)
        if record.get(primary_key) is None:
            self._counters[collection] += 1
            record[primary_key] = self._counters[collection]
        self._check_unique(collection, record)
        self._collections[collection].append(record)
        self._log_undo("insert", collection, record)
        return record[primary_key]

    async def insert(self, target: str, record: Mapping[str, Any],
                     primary_key: str = "id") -> ExecuteResult:
        return await self.execute("insert", target, {"document": dict(record), "primary_key": primary_key})

    async def update(self, target: str, where: Mapping[str, Any],
                     changes: Mapping[str, Any]) -> ExecuteResult:
        return await self.execute("update_many", target, {"filter": dict(where), "update": dict(changes)})

    async def delete(self, target: str, where: Mapping[str, Any]) -> ExecuteResult:
        return await self.execute("delete_many", target, {"filter": dict(where)})


# Export main components
__all__ = ["MemoryAdapter", "MemoryTransaction", "DuplicateRecordError"]
