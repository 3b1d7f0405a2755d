"""
MongoDB Adapter

🍃 Document Store Access:
MongoDB through PyMongo's native asyncio client. Multi-document
transactions use a client session (replica set or sharded cluster only);
the session-scoped view passes that session to every collection call so
validation reads observe the pending writes.

Pool counters come from a CMAP event listener, since the driver keeps its
own counters private.
"""

from typing import Any, Dict, List, Mapping, Optional, Tuple
from urllib.parse import quote_plus, urlencode
import asyncio
import logging
import threading

from bson import ObjectId
from pymongo import AsyncMongoClient
from pymongo.errors import BulkWriteError, DuplicateKeyError
from pymongo.monitoring import ConnectionPoolListener

from .base import BaseAdapter
from .interface import ExecuteResult, PoolStatus, Record
from ..errors import ExecuteError, TransactionNotSupportedError

logger = logging.getLogger(__name__)

UPDATE_OPERATIONS = ("update", "update_many", "find_one_and_update")


class MongoPoolMonitor(ConnectionPoolListener):
    """Counts pool connections from driver CMAP events"""

    def __init__(self):
        self._lock = threading.Lock()
        self.open = 0
        self.checked_out = 0
        self.waiting = 0

    def _bump(self, attr: str, delta: int):
        with self._lock:
            setattr(self, attr, max(getattr(self, attr) + delta, 0))

    def pool_created(self, event):
        pass

    def pool_ready(self, event):
        pass

    def pool_cleared(self, event):
        pass

    def pool_closed(self, event):
        with self._lock:
            self.open = self.checked_out = self.waiting = 0

    def connection_created(self, event):
        self._bump("open", 1)

    def connection_ready(self, event):
        pass

    def connection_closed(self, event):
        self._bump("open", -1)

    def connection_check_out_started(self, event):
        self._bump("waiting", 1)

    def connection_check_out_failed(self, event):
        self._bump("waiting", -1)

    def connection_checked_out(self, event):
        self._bump("waiting", -1)
        self._bump("checked_out", 1)

    def connection_checked_in(self, event):
        self._bump("checked_out", -1)

    def snapshot(self) -> PoolStatus:
        with self._lock:
            return PoolStatus(
                total=self.open,
                active=self.checked_out,
                idle=self.open - self.checked_out,
                waiting=self.waiting,
            )


def build_mongo_url(config: Any) -> str:
    """Build a mongodb:// URL from discrete connection params"""
    conn = config.connection
    if conn.url:
        return conn.url
    credentials = ""
    if conn.username:
        credentials = quote_plus(conn.username)
        if conn.password:
            credentials += f":{quote_plus(conn.password)}"
        credentials += "@"
    query: Dict[str, str] = {}
    if config.options.auth_source:
        query["authSource"] = config.options.auth_source
    elif conn.username:
        query["authSource"] = "admin"
    if config.options.replica_set:
        query["replicaSet"] = config.options.replica_set
    url = f"mongodb://{credentials}{conn.host}:{conn.port or 27017}/{conn.database}"
    if query:
        url += f"?{urlencode(query)}"
    return url


def _object_id(value: Any) -> Any:
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    if isinstance(value, list):
        return [_object_id(v) for v in value]
    if isinstance(value, Mapping):
        # operator documents such as {"$in": [...]} or {"$ne": ...}
        return {k: _object_id(v) for k, v in value.items()}
    return value


def normalize_id(filter_doc: Any) -> Any:
    """
    Turn 24-hex strings under `_id` into ObjectId so string ids match stored ids.

    Other fields keep their values even when they look like an ObjectId;
    `$and` / `$or` / `$nor` branches are searched for `_id` as well.
    """
    if isinstance(filter_doc, list):
        return [normalize_id(v) for v in filter_doc]
    if not isinstance(filter_doc, Mapping):
        return filter_doc
    return {
        k: _object_id(v) if k == "_id" else normalize_id(v) if k in ("$and", "$or", "$nor") else v
        for k, v in filter_doc.items()
    }


class MongoDBAdapter(BaseAdapter):
    """
    MongoDB adapter.

    `execute(operation, collection, payload)` operations:
    insert, insert_many, update, update_many, replace, delete, delete_many,
    find_one_and_update, find_one_and_replace, find_one_and_delete.
    """

    backend_type = "mongodb"
    native_primary_key = "_id"
    close_timeout = 1.0

    def __init__(self, name: Optional[str] = None):
        super().__init__(name)
        self.client: Optional[AsyncMongoClient] = None
        self.db = None
        self.pool_monitor = MongoPoolMonitor()
        self._supports_transactions: Optional[bool] = None

    def _retry_policy(self, config: Any) -> Tuple[int, float]:
        return config.options.max_retries, config.options.retry_delay

    def _is_integrity_error(self, error: BaseException) -> bool:
        if isinstance(error, DuplicateKeyError):
            return True
        if isinstance(error, BulkWriteError):
            return any(e.get("code") == 11000 for e in error.details.get("writeErrors", []))
        return False

    # Lifecycle hooks
    async def _open(self, config: Any):
        options = config.options
        kwargs: Dict[str, Any] = {
            "maxPoolSize": options.max_pool_size,
            "minPoolSize": options.min_pool_size,
            "serverSelectionTimeoutMS": options.server_selection_timeout_ms,
            "connectTimeoutMS": options.connect_timeout_ms,
            "socketTimeoutMS": options.socket_timeout_ms,
            "event_listeners": [self.pool_monitor],
        }
        if options.direct_connection is not None:
            kwargs["directConnection"] = options.direct_connection
        if options.timezone:
            kwargs["tz_aware"] = True

        self.client = AsyncMongoClient(build_mongo_url(config), **kwargs)
        database = config.connection.database or self.client.get_default_database().name
        self.db = self.client[database]
        await self.client.admin.command("ping")

    async def _discard(self):
        client = self.client
        self.client = None
        self.db = None
        if client is not None:
            try:
                await asyncio.wait_for(client.close(), timeout=self.close_timeout)
            except asyncio.TimeoutError:
                self._logger.warning(f"MongoDB client did not close within {self.close_timeout}s")

    async def _ping(self):
        await self.client.admin.command("ping")

    def _pool_status(self) -> PoolStatus:
        return self.pool_monitor.snapshot()

    def get_database(self):
        """Native database handle for operations outside the contract"""
        self._ensure_connected()
        return self.db

    # Sessions
    async def _check_transaction_support(self) -> bool:
        if self._root._supports_transactions is None:
            hello = await self.client.admin.command("hello")
            self._root._supports_transactions = bool(
                hello.get("setName") or hello.get("msg") == "isdbgrid"
            )
        return self._root._supports_transactions

    async def _begin_session(self):
        if not await self._check_transaction_support():
            raise TransactionNotSupportedError(
                "MongoDB transactions require a replica set or sharded cluster",
                connection_name=self.name,
            )
        session = self.client.start_session()
        await session.start_transaction()
        return session

    async def _commit_session(self, session):
        await session.commit_transaction()

    async def _rollback_session(self, session):
        await session.abort_transaction()

    async def _end_session(self, session):
        await session.end_session()

    # Reads
    async def query(self, target: str, criteria: Any = None,
                    options: Optional[Dict[str, Any]] = None) -> List[Record]:
        """
        Read documents from a collection.

        Args:
            target: Collection name
            criteria: Filter document
            options: projection, sort, skip, limit, or pipeline (aggregation)
        """
        options = dict(options or {})
        collection = target
        filter_doc = normalize_id(dict(criteria or {}))

        async def run():
            coll = self.db[collection]
            if options.get("pipeline") is not None:
                pipeline = list(options["pipeline"])
                if filter_doc:
                    pipeline.insert(0, {"$match": filter_doc})
                cursor = await coll.aggregate(pipeline, session=self._tx_session)
                return await cursor.to_list(None)
            cursor = coll.find(
                filter_doc,
                projection=options.get("projection"),
                sort=options.get("sort"),
                skip=options.get("skip", 0),
                limit=options.get("limit", 0),
                session=self._tx_session,
            )
            return await cursor.to_list(None)

        return await self._observe("query", f"{collection}.find", filter_doc, run)

    async def find(self, target: str, where: Optional[Mapping[str, Any]] = None,
                   limit: Optional[int] = None) -> List[Record]:
        return await self.query(target, where, {"limit": limit or 0})

    # Writes
    async def execute(self, operation: str, collection: str = None,
                      payload: Optional[Mapping[str, Any]] = None) -> ExecuteResult:
        """
        Run a write operation on a collection.

        Raises:
            IntegrityError: On a duplicate key
            ExecuteError: On an unknown operation or driver failure
        """
        payload = dict(payload or {})
        if collection is None:
            raise ExecuteError(f"MongoDB {operation} requires a collection name")

        async def run():
            return await self._dispatch(operation, self.db[collection], payload)

        return await self._observe("execute", f"{collection}.{operation}", payload, run)

    async def _dispatch(self, operation: str, coll: Any, payload: Dict[str, Any]) -> ExecuteResult:
        session = self._tx_session
        filter_doc = normalize_id(payload.get("filter") or {})
        update_doc = payload.get("update")
        if operation in UPDATE_OPERATIONS and update_doc is not None:
            if not any(str(k).startswith("$") for k in update_doc):
                update_doc = {"$set": update_doc}

        if operation == "insert":
            result = await coll.insert_one(payload["document"], session=session)
            return ExecuteResult(affected_rows=1, inserted_id=result.inserted_id, raw=result)
        if operation == "insert_many":
            result = await coll.insert_many(payload["documents"], session=session)
            return ExecuteResult(affected_rows=len(result.inserted_ids),
                                 inserted_ids=list(result.inserted_ids), raw=result)
        if operation == "update":
            result = await coll.update_one(filter_doc, update_doc, upsert=payload.get("upsert", False),
                                           session=session)
            return ExecuteResult(affected_rows=result.matched_count, inserted_id=result.upserted_id, raw=result)
        if operation == "update_many":
            result = await coll.update_many(filter_doc, update_doc, upsert=payload.get("upsert", False),
                                            session=session)
            return ExecuteResult(affected_rows=result.matched_count, inserted_id=result.upserted_id, raw=result)
        if operation == "replace":
            result = await coll.replace_one(filter_doc, payload["document"],
                                            upsert=payload.get("upsert", False), session=session)
            return ExecuteResult(affected_rows=result.matched_count, inserted_id=result.upserted_id, raw=result)
        if operation == "delete":
            result = await coll.delete_one(filter_doc, session=session)
            return ExecuteResult(affected_rows=result.deleted_count, raw=result)
        if operation == "delete_many":
            result = await coll.delete_many(filter_doc, session=session)
            return ExecuteResult(affected_rows=result.deleted_count, raw=result)
        if operation == "find_one_and_update":
            doc = await coll.find_one_and_update(filter_doc, update_doc, session=session)
            return ExecuteResult(affected_rows=1 if doc else 0, raw=doc)
        if operation == "find_one_and_replace":
            doc = await coll.find_one_and_replace(filter_doc, payload["document"], session=session)
            return ExecuteResult(affected_rows=1 if doc else 0, raw=doc)
        if operation == "find_one_and_delete":
            doc = await coll.find_one_and_delete(filter_doc, session=session)
            return ExecuteResult(affected_rows=1 if doc else 0, raw=doc)
        raise ExecuteError(f"Unsupported MongoDB operation: {operation}")

    async def insert(self, target: str, record: Mapping[str, Any],
                     primary_key: str = "_id") -> ExecuteResult:
        """Insert one document; a primary key other than `_id` mirrors the `_id` value"""
        document = dict(record)
        if primary_key != "_id":
            if document.get(primary_key) is None:
                document[primary_key] = document.get("_id") or ObjectId()
            document.setdefault("_id", document[primary_key])
        result = await self.execute("insert", target, {"document": document})
        if primary_key != "_id":
            result.inserted_id = document[primary_key]
        return result

    async def update(self, target: str, where: Mapping[str, Any],
                     changes: Mapping[str, Any]) -> ExecuteResult:
        return await self.execute("update_many", target, {"filter": dict(where), "update": dict(changes)})

    async def delete(self, target: str, where: Mapping[str, Any]) -> ExecuteResult:
        return await self.execute("delete_many", target, {"filter": dict(where)})


# Export main components
__all__ = ["MongoDBAdapter", "MongoPoolMonitor", "build_mongo_url", "normalize_id"]
