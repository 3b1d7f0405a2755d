"""
Base Adapter - Common Adapter Functionality

🏗️ Shared Adapter Foundation:
This module provides the lifecycle and bookkeeping that every backend
adapter shares: bounded connect retries with linear backoff, connection
state checks, error translation, query logging, metrics, the transaction
template and the never-raising health check. Concrete adapters only fill in
the native hooks (_open, _discard, _ping, _begin_session, ...).
"""

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Tuple
from dataclasses import dataclass
from datetime import datetime
import asyncio
import copy
import logging
import time

from .interface import (
    DatabaseAdapter, HealthCheckResult, PoolStatus, Record, T
)
from ..config import parse_config
from ..errors import (
    ConfigurationError, ConnectionError, DatabaseError, ErrorCode, ExecuteError,
    IntegrityError, NotConnectedError, QueryError, TransactionError
)
from ..query_logger import QueryLogger

logger = logging.getLogger(__name__)


@dataclass
class AdapterMetrics:
    """Counters collected by adapter implementations"""
    connect_attempts: int = 0
    queries_executed: int = 0
    statements_executed: int = 0
    failed_operations: int = 0
    transactions_started: int = 0
    transactions_committed: int = 0
    transactions_rolled_back: int = 0
    query_time_total_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        operations = self.queries_executed + self.statements_executed
        return {
            "connect_attempts": self.connect_attempts,
            "queries_executed": self.queries_executed,
            "statements_executed": self.statements_executed,
            "failed_operations": self.failed_operations,
            "transactions_started": self.transactions_started,
            "transactions_committed": self.transactions_committed,
            "transactions_rolled_back": self.transactions_rolled_back,
            "average_response_time_ms": self.query_time_total_ms / max(operations, 1),
        }


class BaseAdapter(DatabaseAdapter, ABC):
    """
    Base adapter implementation providing common functionality.

    This class provides:
    - Connect retry policy and partial-resource cleanup
    - Connection state checks (NotConnectedError after close)
    - Native error translation into the DatabaseError taxonomy
    - Query logging and metrics
    - Transaction template with session-scoped views
    """

    health_check_interval: int = 30  # seconds
    health_check_timeout: float = 5.0

    def __init__(self, name: Optional[str] = None):
        self.name = name
        self.config: Any = None
        self.metrics = AdapterMetrics()
        self.query_logger: Optional[QueryLogger] = None
        self.last_health_check: Optional[HealthCheckResult] = None
        self.connected_at: Optional[datetime] = None
        self._connected = False
        self._closed = False
        self._root: 'BaseAdapter' = self
        self._tx_session: Any = None
        self._logger = logging.getLogger(f"{self.__class__.__module__}.{self.__class__.__name__}")

    # Native hooks
    @abstractmethod
    async def _open(self, config: Any):
        """Open the native client/pool and prove it with one round trip"""
        pass

    @abstractmethod
    async def _discard(self):
        """Release whatever a failed or finished _open left behind"""
        pass

    @abstractmethod
    async def _ping(self):
        pass

    @abstractmethod
    def _pool_status(self) -> PoolStatus:
        pass

    @abstractmethod
    async def _begin_session(self) -> Any:
        pass

    @abstractmethod
    async def _commit_session(self, session: Any):
        pass

    @abstractmethod
    async def _rollback_session(self, session: Any):
        pass

    async def _end_session(self, session: Any):
        """Release a session after commit or rollback"""
        pass

    def _retry_policy(self, config: Any) -> Tuple[int, float]:
        """(max_retries, retry_delay seconds) for connect"""
        pool = getattr(config, "pool", None)
        if pool is not None:
            return pool.max_retries, pool.retry_delay
        return 0, 0.0

    def _is_integrity_error(self, error: BaseException) -> bool:
        return False

    # Lifecycle
    async def connect(self, config: Any) -> 'BaseAdapter':
        """
        Connect using a typed config (or a mapping parsed into one).

        Retries up to `max_retries` times with a delay of
        `retry_delay * attempt` between attempts. Resources opened by a failed
        attempt are released before the next attempt and before the error
        propagates.

        Raises:
            ConfigurationError: If the config targets another backend
            ConnectionError: Once every attempt failed
        """
        config = parse_config(config)
        if config.type != self.backend_type:
            raise ConfigurationError(
                f"{self.__class__.__name__} cannot connect with a '{config.type}' config"
            )
        if self._closed:
            raise ConnectionError(
                f"{self.__class__.__name__} was closed and cannot be reopened; create a new adapter",
                connection_name=self.name,
            )
        if self._connected:
            return self

        max_retries, retry_delay = self._retry_policy(config)
        last_error: Optional[BaseException] = None

        for attempt in range(max_retries + 1):
            self.metrics.connect_attempts += 1
            try:
                await self._open(config)
                self.config = config
                self._connected = True
                self.connected_at = datetime.now()
                self._logger.info(f"Connected {self.backend_type} adapter {self._describe(config)}")
                return self
            except Exception as e:
                last_error = e
                try:
                    await self._discard()
                except Exception as cleanup_error:
                    self._logger.error(f"Error releasing failed connection: {cleanup_error}")
                if attempt < max_retries:
                    delay = retry_delay * (attempt + 1)
                    self._logger.warning(
                        f"Connect attempt {attempt + 1}/{max_retries + 1} failed: {e}; retrying in {delay}s"
                    )
                    await asyncio.sleep(delay)

        self._logger.error(f"Error connecting {self.backend_type} adapter after {max_retries + 1} attempts: {last_error}")
        code = ErrorCode.CONNECTION_TIMEOUT if isinstance(last_error, asyncio.TimeoutError) else None
        raise ConnectionError(
            f"Failed to connect to {self.backend_type} after {max_retries + 1} attempt(s): {last_error}",
            code=code,
            connection_name=self.name,
            original_error=last_error,
        ) from last_error

    async def close(self):
        """Release pool resources; repeated calls are no-ops"""
        if self.in_transaction:
            raise TransactionError("Cannot close the adapter inside a transaction")
        if self._closed:
            return
        was_connected = self._connected
        self._connected = False
        self._closed = True
        if was_connected:
            self._logger.info(f"Closing {self.backend_type} adapter")
        await self._discard()

    def is_connected(self) -> bool:
        return self._root._connected

    @property
    def in_transaction(self) -> bool:
        return self._tx_session is not None

    @property
    def session(self) -> Any:
        """Native session of a transaction view, None outside a transaction"""
        return self._tx_session

    @property
    def root(self) -> 'BaseAdapter':
        """The connected adapter a transaction view was derived from"""
        return self._root

    def get_config(self) -> Any:
        return self._root.config

    def set_query_logger(self, query_logger: Optional[QueryLogger]):
        self._root.query_logger = query_logger

    def get_metrics(self) -> Dict[str, Any]:
        return self.metrics.to_dict()

    def _describe(self, config: Any) -> str:
        conn = config.connection
        if conn.filename:
            return f"({conn.filename})"
        if conn.url:
            return "(url)"
        return f"({conn.host}:{conn.port or ''}/{conn.database})"

    def _ensure_connected(self):
        if not self.is_connected():
            raise NotConnectedError(
                f"{self.backend_type} adapter is not connected",
                connection_name=self.name,
            )

    # Observability
    async def _observe(self, kind: str, statement: str, params: Any,
                       operation: Callable[[], Awaitable[Any]]) -> Any:
        """Run one native operation with state check, logging, metrics and error translation"""
        self._ensure_connected()
        start = time.perf_counter()
        try:
            result = await operation()
        except DatabaseError:
            self.metrics.failed_operations += 1
            raise
        except Exception as e:
            duration = time.perf_counter() - start
            self.metrics.failed_operations += 1
            self._log_query(kind, statement, params, duration, e)
            self._logger.error(f"Error running {kind} on {self.backend_type}: {e}")
            raise self._translate_error(kind, statement, params, e) from e

        duration = time.perf_counter() - start
        if kind == "query":
            self.metrics.queries_executed += 1
        else:
            self.metrics.statements_executed += 1
        self.metrics.query_time_total_ms += duration * 1000
        self._log_query(kind, statement, params, duration, None)
        return result

    def _log_query(self, kind: str, statement: str, params: Any, duration: float,
                   error: Optional[BaseException]):
        query_logger = self._root.query_logger
        if query_logger is not None:
            query_logger.log(kind, statement, params, duration, error)

    def _translate_error(self, kind: str, statement: str, params: Any,
                         error: BaseException) -> DatabaseError:
        message = f"{self.backend_type} {kind} failed: {error}"
        if kind != "query" and self._is_integrity_error(error):
            cls = IntegrityError
        elif kind == "query":
            cls = QueryError
        else:
            cls = ExecuteError
        return cls(message, sql=statement, params=params,
                   connection_name=self.name, original_error=error)

    # Convenience reads built on find()
    async def find_one(self, target: str, where: Optional[Mapping[str, Any]] = None) -> Optional[Record]:
        rows = await self.find(target, where, limit=1)
        return rows[0] if rows else None

    async def exists(self, target: str, where: Optional[Mapping[str, Any]] = None) -> bool:
        return await self.find_one(target, where) is not None

    # Transactions
    def _session_view(self, session: Any) -> 'BaseAdapter':
        """Shallow copy bound to a native session; shares state with the root adapter"""
        view = copy.copy(self)
        view._tx_session = session
        return view

    async def _nested_transaction(self, fn: Callable[['BaseAdapter'], Awaitable[T]]) -> T:
        """Nested transaction on a view; reuses the open session"""
        return await fn(self)

    async def transaction(self, fn: Callable[['BaseAdapter'], Awaitable[T]]) -> T:
        """
        Run fn against a session-scoped adapter view.

        Writes issued through the view commit together when fn returns and
        are rolled back when it raises. Calling transaction() on the view
        reuses the same session.

        Raises:
            TransactionError: fn (or the commit) failed; the cause is chained
                and a failed rollback is reported in `rollback_error`
        """
        self._ensure_connected()
        if self.in_transaction:
            return await self._nested_transaction(fn)

        session = await self._begin_session()
        self.metrics.transactions_started += 1
        view = self._session_view(session)
        try:
            try:
                result = await fn(view)
            except Exception as e:
                rollback_error = await self._safe_rollback(session)
                raise TransactionError(
                    f"Transaction failed and was rolled back: {e}",
                    original_error=e,
                    rollback_error=rollback_error,
                    connection_name=self.name,
                ) from e

            try:
                await self._commit_session(session)
            except Exception as e:
                self._logger.error(f"Error committing transaction: {e}")
                rollback_error = await self._safe_rollback(session)
                if self._is_integrity_error(e):
                    raise IntegrityError(
                        f"Transaction commit violated a constraint: {e}",
                        connection_name=self.name,
                        original_error=e,
                    ) from e
                raise TransactionError(
                    f"Transaction commit failed: {e}",
                    code=ErrorCode.TRANSACTION_COMMIT_FAILED,
                    original_error=e,
                    rollback_error=rollback_error,
                    connection_name=self.name,
                ) from e
            self.metrics.transactions_committed += 1
            return result
        finally:
            await self._end_session(session)

    async def _safe_rollback(self, session: Any) -> Optional[BaseException]:
        """Roll back, returning the rollback failure instead of raising it"""
        self.metrics.transactions_rolled_back += 1
        try:
            await self._rollback_session(session)
        except Exception as e:
            self._logger.error(f"Error rolling back transaction: {e}")
            return e
        return None

    # Pool and health
    def get_pool_status(self) -> PoolStatus:
        """Driver counters, or all zeros when not connected"""
        if not self.is_connected():
            return PoolStatus()
        return self._root._pool_status()

    async def health_check(self) -> HealthCheckResult:
        if not self.is_connected():
            result = HealthCheckResult(healthy=False, error="Not connected")
        else:
            start = time.perf_counter()
            try:
                await asyncio.wait_for(self._root._ping(), timeout=self.health_check_timeout)
                result = HealthCheckResult(
                    healthy=True,
                    latency=(time.perf_counter() - start) * 1000,
                )
            except Exception as e:
                self._logger.warning(f"Health check failed for {self.backend_type}: {e}")
                result = HealthCheckResult(
                    healthy=False,
                    latency=(time.perf_counter() - start) * 1000,
                    error=str(e) or e.__class__.__name__,
                )
        self._root.last_health_check = result
        return result


# Export main components
__all__ = ["BaseAdapter", "AdapterMetrics"]
