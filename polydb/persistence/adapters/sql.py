"""
SQL Adapter - SQLAlchemy Async Backend Family

🗄️ Relational Persistence:
Shared implementation for the relational backends. Statements run on an
async SQLAlchemy engine through AsyncSession objects; outside a transaction
every call gets its own short-lived session that commits on success, inside
a transaction the session-scoped view reuses one session and nested
transactions become savepoints.

Dialect specifics (URL, pool arguments, returning support) live in the
SQLite, PostgreSQL and MySQL subclasses.
"""

from abc import abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Sequence, Tuple
import asyncio
import logging
import re
import uuid

from sqlalchemy import and_, column, delete, insert, literal_column, select, table, text, update
from sqlalchemy.engine import URL
from sqlalchemy.exc import IntegrityError as SQLAlchemyIntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .base import BaseAdapter
from .interface import ExecuteResult, PoolStatus, QueryFilter, QueryOperator, Record, parse_where
from ..errors import ErrorCode, QueryError, TransactionError

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")


def convert_placeholders(sql: str, params: Any) -> Tuple[str, Dict[str, Any]]:
    """
    Rewrite positional `?` placeholders into named binds.

    `?` inside quoted literals is left alone. Mapping params are passed
    through unchanged for statements already using `:name` binds.

    Raises:
        QueryError: If the number of `?` does not match the params
    """
    if params is None:
        return sql, {}
    if isinstance(params, Mapping):
        return sql, dict(params)

    values = list(params)
    out: List[str] = []
    bound: Dict[str, Any] = {}
    quote: Optional[str] = None
    index = 0
    for char in sql:
        if quote:
            if char == quote:
                quote = None
            out.append(char)
        elif char in ("'", '"'):
            quote = char
            out.append(char)
        elif char == "?":
            if index >= len(values):
                raise QueryError(
                    f"Statement has more placeholders than the {len(values)} params given",
                    code=ErrorCode.QUERY_PARAM_ERROR, sql=sql, params=params,
                )
            name = f"p{index}"
            bound[name] = values[index]
            out.append(f":{name}")
            index += 1
        else:
            out.append(char)

    if index != len(values):
        raise QueryError(
            f"Statement has {index} placeholders but {len(values)} params were given",
            code=ErrorCode.QUERY_PARAM_ERROR, sql=sql, params=params,
        )
    return "".join(out), bound


def is_table_name(target: str) -> bool:
    return bool(_IDENTIFIER.match(target))


class SQLAdapter(BaseAdapter):
    """
    Relational adapter on SQLAlchemy's asyncio extension.

    `query()`/`execute()` accept raw statements with `?` or `:name` binds;
    `find()`/`insert()`/`update()`/`delete()` build Core statements from a
    table name and a where-mapping.
    """

    supports_returning = False
    default_pool_recycle = 3600

    def __init__(self, name: Optional[str] = None):
        super().__init__(name)
        self.engine: Optional[AsyncEngine] = None
        self.session_factory: Optional[async_sessionmaker] = None

    @abstractmethod
    def _build_url(self, config: Any) -> URL:
        pass

    def _engine_options(self, config: Any) -> Dict[str, Any]:
        pool = config.pool
        return {
            "pool_size": pool.max,
            "max_overflow": 0,
            "pool_timeout": pool.idle_timeout,
            "pool_recycle": self.default_pool_recycle,
        }

    def _connect_timeout(self, config: Any) -> float:
        return config.options.connection_timeout

    def _configure_engine(self, engine: AsyncEngine):
        """Hook for dialect event listeners"""
        pass

    def _is_integrity_error(self, error: BaseException) -> bool:
        return isinstance(error, SQLAlchemyIntegrityError)

    # Lifecycle hooks
    async def _open(self, config: Any):
        url = config.connection.url or self._build_url(config)
        self.engine = create_async_engine(url, echo=config.echo, **self._engine_options(config))
        self._configure_engine(self.engine)
        self.session_factory = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )
        await asyncio.wait_for(self._ping(), timeout=self._connect_timeout(config))

    async def _discard(self):
        engine = self.engine
        self.engine = None
        self.session_factory = None
        if engine is not None:
            await engine.dispose()

    async def _ping(self):
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    def _pool_status(self) -> PoolStatus:
        pool = self.engine.pool
        checked_out = pool.checkedout() if hasattr(pool, "checkedout") else 0
        checked_in = pool.checkedin() if hasattr(pool, "checkedin") else 0
        return PoolStatus(
            total=checked_out + checked_in,
            active=checked_out,
            idle=checked_in,
            waiting=0,
        )

    # Sessions
    async def _begin_session(self) -> AsyncSession:
        return self.session_factory()

    async def _commit_session(self, session: AsyncSession):
        await session.commit()

    async def _rollback_session(self, session: AsyncSession):
        await session.rollback()

    async def _end_session(self, session: AsyncSession):
        await session.close()

    @asynccontextmanager
    async def _session_scope(self, commit: bool) -> AsyncIterator[AsyncSession]:
        """Reuse the transaction session, or open one that commits on exit"""
        if self._tx_session is not None:
            yield self._tx_session
            return

        session = self.session_factory()
        try:
            yield session
            if commit:
                await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    # Reads
    async def query(self, target: str, criteria: Any = None,
                    options: Optional[Dict[str, Any]] = None) -> List[Record]:
        """
        Run a read.

        Args:
            target: A SELECT statement, or a table name
            criteria: Statement params (sequence for `?`, mapping for `:name`),
                or a where-mapping when target is a table name
            options: `limit` when reading a table

        Returns:
            Rows as dictionaries
        """
        if is_table_name(target):
            return await self.find(target, criteria, limit=(options or {}).get("limit"))

        sql, params = convert_placeholders(target, criteria)

        async def run():
            async with self._session_scope(commit=False) as session:
                result = await session.execute(text(sql), params)
                return [dict(row) for row in result.mappings().all()]

        return await self._observe("query", sql, params, run)

    async def find(self, target: str, where: Optional[Mapping[str, Any]] = None,
                   limit: Optional[int] = None) -> List[Record]:
        filters = parse_where(where)
        tbl = self._table(target, [f.field for f in filters])
        stmt = select(literal_column("*")).select_from(tbl)
        clause = self._build_where_clause(tbl, filters)
        if clause is not None:
            stmt = stmt.where(clause)
        if limit is not None:
            stmt = stmt.limit(limit)

        async def run():
            async with self._session_scope(commit=False) as session:
                result = await session.execute(stmt)
                return [dict(row) for row in result.mappings().all()]

        return await self._observe("query", str(stmt), dict(where or {}), run)

    # Writes
    async def execute(self, operation: str, params: Any = None) -> ExecuteResult:
        """
        Run a mutating statement.

        Raises:
            IntegrityError: On a constraint violation
            ExecuteError: On any other driver failure
        """
        sql, bound = convert_placeholders(operation, params)
        return await self._run_statement(text(sql), sql, bound, bind=bound)

    async def insert(self, target: str, record: Mapping[str, Any],
                     primary_key: str = "id") -> ExecuteResult:
        returning = self.supports_returning and primary_key not in record
        tbl = self._table(target, list(record) + ([primary_key] if returning else []))
        stmt = insert(tbl).values(**dict(record))
        if returning:
            stmt = stmt.returning(tbl.c[primary_key])
        result = await self._run_statement(stmt, str(stmt), dict(record), returning=returning)
        if primary_key in record:
            result.inserted_id = record[primary_key]
        elif returning and result.raw:
            result.inserted_id = result.raw[0].get(primary_key)
        return result

    async def update(self, target: str, where: Mapping[str, Any],
                     changes: Mapping[str, Any]) -> ExecuteResult:
        filters = parse_where(where)
        tbl = self._table(target, [f.field for f in filters] + list(changes))
        stmt = update(tbl).values(**dict(changes))
        clause = self._build_where_clause(tbl, filters)
        if clause is not None:
            stmt = stmt.where(clause)
        return await self._run_statement(stmt, str(stmt), {"where": dict(where), "changes": dict(changes)})

    async def delete(self, target: str, where: Mapping[str, Any]) -> ExecuteResult:
        filters = parse_where(where)
        tbl = self._table(target, [f.field for f in filters])
        stmt = delete(tbl)
        clause = self._build_where_clause(tbl, filters)
        if clause is not None:
            stmt = stmt.where(clause)
        return await self._run_statement(stmt, str(stmt), dict(where))

    async def _run_statement(self, stmt: Any, description: str, params: Any,
                             bind: Optional[Dict[str, Any]] = None,
                             returning: bool = False) -> ExecuteResult:

        async def run():
            async with self._session_scope(commit=True) as session:
                if bind is not None:
                    result = await session.execute(stmt, bind)
                else:
                    result = await session.execute(stmt)
                rows = [dict(row) for row in result.mappings().all()] if result.returns_rows else None
                return ExecuteResult(
                    affected_rows=max(result.rowcount or 0, 0) if not returning else len(rows or []),
                    inserted_id=self._last_row_id(result),
                    raw=rows,
                )

        return await self._observe("execute", description, params, run)

    def _last_row_id(self, result: Any) -> Any:
        return None

    # Statement building
    def _table(self, target: str, columns: Sequence[str]):
        schema, _, name = target.rpartition(".")
        seen: List[str] = []
        for name_ in columns:
            if name_ not in seen:
                seen.append(name_)
        return table(name, *[column(c) for c in seen], schema=schema or None)

    def _build_where_clause(self, tbl: Any, filters: List[QueryFilter]):
        """Build a SQLAlchemy where clause from where-mapping filters"""
        if not filters:
            return None

        conditions = []
        for filter_condition in filters:
            field_attr = tbl.c[filter_condition.field]
            value = filter_condition.value
            op = filter_condition.operator

            if op == QueryOperator.EQUALS:
                conditions.append(field_attr.is_(None) if value is None else field_attr == value)
            elif op == QueryOperator.NOT_EQUALS:
                conditions.append(field_attr.is_not(None) if value is None else field_attr != value)
            elif op == QueryOperator.GREATER_THAN:
                conditions.append(field_attr > value)
            elif op == QueryOperator.GREATER_THAN_OR_EQUAL:
                conditions.append(field_attr >= value)
            elif op == QueryOperator.LESS_THAN:
                conditions.append(field_attr < value)
            elif op == QueryOperator.LESS_THAN_OR_EQUAL:
                conditions.append(field_attr <= value)
            elif op == QueryOperator.IN:
                conditions.append(field_attr.in_(value))
            elif op == QueryOperator.NOT_IN:
                conditions.append(~field_attr.in_(value))

        return and_(*conditions) if len(conditions) > 1 else conditions[0]

    # Savepoints
    def _require_transaction(self):
        if not self.in_transaction:
            raise TransactionError("Savepoints are only available inside a transaction",
                                   code=ErrorCode.SAVEPOINT_FAILED)

    async def _savepoint_statement(self, sql: str):
        self._require_transaction()
        try:
            await self._tx_session.execute(text(sql))
        except Exception as e:
            logger.error(f"Error running '{sql}': {e}")
            raise TransactionError(f"Savepoint operation failed: {e}",
                                   code=ErrorCode.SAVEPOINT_FAILED, original_error=e) from e

    async def create_savepoint(self, name: str):
        if not is_table_name(name) or "." in name:
            raise TransactionError(f"Invalid savepoint name: {name}", code=ErrorCode.SAVEPOINT_FAILED)
        await self._savepoint_statement(f"SAVEPOINT {name}")

    async def rollback_to_savepoint(self, name: str):
        await self._savepoint_statement(f"ROLLBACK TO SAVEPOINT {name}")

    async def release_savepoint(self, name: str):
        await self._savepoint_statement(f"RELEASE SAVEPOINT {name}")

    async def _nested_transaction(self, fn):
        """Nested work runs inside a savepoint of the open session"""
        name = f"nested_{uuid.uuid4().hex[:12]}"
        await self.create_savepoint(name)
        try:
            result = await fn(self)
        except Exception:
            try:
                await self.rollback_to_savepoint(name)
            except TransactionError as rollback_error:
                self._logger.error(f"Error rolling back savepoint {name}: {rollback_error}")
            raise
        await self.release_savepoint(name)
        return result


# Export main components
__all__ = ["SQLAdapter", "convert_placeholders", "is_table_name"]
