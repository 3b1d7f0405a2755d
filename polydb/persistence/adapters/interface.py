"""
Database Adapter Interface

💾 Standard Data Access Contract:
This module defines the contract that every backend adapter implements,
so application code can switch between document and relational stores
without rewriting query, validation or transaction logic.

Key Features:
- DatabaseAdapter: lifecycle, reads, writes, transactions, pool and health
- PoolStatus / HealthCheckResult / ExecuteResult value objects
- QueryFilter: backend-neutral where-mapping conditions ($ne, $in, $gt, ...)
"""

from abc import ABC, abstractmethod
from typing import (
    Any, Awaitable, Callable, Dict, List, Mapping, Optional, TypeVar
)
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

T = TypeVar('T')

Record = Dict[str, Any]


class QueryOperator(Enum):
    """Where-mapping operators understood by every adapter"""
    EQUALS = "$eq"
    NOT_EQUALS = "$ne"
    GREATER_THAN = "$gt"
    GREATER_THAN_OR_EQUAL = "$gte"
    LESS_THAN = "$lt"
    LESS_THAN_OR_EQUAL = "$lte"
    IN = "$in"
    NOT_IN = "$nin"


def values_equal(left: Any, right: Any) -> bool:
    """Equality that treats an id and its string form as the same value"""
    if left == right:
        return True
    if left is None or right is None:
        return False
    if isinstance(left, str) or isinstance(right, str):
        return str(left) == str(right)
    return False


@dataclass
class QueryFilter:
    """A single condition of a where-mapping"""
    field: str
    operator: QueryOperator
    value: Any = None

    def __post_init__(self):
        if self.operator in (QueryOperator.IN, QueryOperator.NOT_IN):
            if not isinstance(self.value, (list, tuple, set, frozenset)):
                raise ValueError(f"Operator {self.operator.value} requires a sequence value")
            self.value = list(self.value)

    def matches(self, record: Mapping[str, Any]) -> bool:
        """Evaluate the condition against an in-process record"""
        actual = record.get(self.field)
        op = self.operator
        if op == QueryOperator.EQUALS:
            return values_equal(actual, self.value)
        if op == QueryOperator.NOT_EQUALS:
            return not values_equal(actual, self.value)
        if op == QueryOperator.IN:
            return any(values_equal(actual, v) for v in self.value)
        if op == QueryOperator.NOT_IN:
            return not any(values_equal(actual, v) for v in self.value)
        if actual is None or self.value is None:
            return False
        try:
            if op == QueryOperator.GREATER_THAN:
                return actual > self.value
            if op == QueryOperator.GREATER_THAN_OR_EQUAL:
                return actual >= self.value
            if op == QueryOperator.LESS_THAN:
                return actual < self.value
            if op == QueryOperator.LESS_THAN_OR_EQUAL:
                return actual <= self.value
        except TypeError:
            return False
        return False


def parse_where(where: Optional[Mapping[str, Any]]) -> List[QueryFilter]:
    """
    Turn a where-mapping into filters.

    `{"age": {"$gte": 18}, "status": "active"}` yields two filters. A plain
    value means equality.

    Raises:
        ValueError: On an unknown `$` operator
    """
    filters: List[QueryFilter] = []
    for field_name, condition in (where or {}).items():
        if isinstance(condition, Mapping) and condition and all(
            isinstance(k, str) and k.startswith("$") for k in condition
        ):
            for op_key, value in condition.items():
                try:
                    operator = QueryOperator(op_key)
                except ValueError:
                    raise ValueError(f"Unsupported operator {op_key} on field {field_name}")
                filters.append(QueryFilter(field_name, operator, value))
        else:
            filters.append(QueryFilter(field_name, QueryOperator.EQUALS, condition))
    return filters


def match_where(record: Mapping[str, Any], where: Optional[Mapping[str, Any]]) -> bool:
    return all(f.matches(record) for f in parse_where(where))


@dataclass
class PoolStatus:
    """Point-in-time pool counters; active + idle never exceeds total"""
    total: int = 0
    active: int = 0
    idle: int = 0
    waiting: int = 0

    def __post_init__(self):
        self.total = max(self.total, 0)
        self.active = min(max(self.active, 0), self.total)
        self.idle = min(max(self.idle, 0), self.total - self.active)
        self.waiting = max(self.waiting, 0)

    def to_dict(self) -> Dict[str, int]:
        return {"total": self.total, "active": self.active, "idle": self.idle, "waiting": self.waiting}


@dataclass
class HealthCheckResult:
    """Outcome of a health check"""
    healthy: bool
    latency: Optional[float] = None  # milliseconds
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "healthy": self.healthy,
            "latency": self.latency,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class ExecuteResult:
    """Result descriptor of a write"""
    affected_rows: int = 0
    inserted_id: Any = None
    inserted_ids: List[Any] = field(default_factory=list)
    raw: Any = None


class DatabaseAdapter(ABC):
    """
    Abstract contract implemented by every backend adapter.

    An adapter moves from disconnected to connected on a successful
    connect() and back on close(); a closed adapter is never reopened.
    All I/O methods are coroutines.
    """

    backend_type: str = "abstract"
    # Key the backend assigns to every record; models default to it
    native_primary_key: str = "id"

    @abstractmethod
    async def connect(self, config: Any) -> 'DatabaseAdapter':
        """Open the native pool, retrying with backoff"""
        pass

    @abstractmethod
    async def query(self, target: str, criteria: Any = None,
                    options: Optional[Dict[str, Any]] = None) -> List[Record]:
        """Run a read and return a fully materialized list of records"""
        pass

    @abstractmethod
    async def execute(self, operation: str, *args, **kwargs) -> ExecuteResult:
        """Run a mutating operation"""
        pass

    @abstractmethod
    async def transaction(self, fn: Callable[['DatabaseAdapter'], Awaitable[T]]) -> T:
        """Run fn against a session-scoped view, committing on success"""
        pass

    @abstractmethod
    async def find(self, target: str, where: Optional[Mapping[str, Any]] = None,
                   limit: Optional[int] = None) -> List[Record]:
        """Read records of a table/collection matching a where-mapping"""
        pass

    @abstractmethod
    async def insert(self, target: str, record: Mapping[str, Any]) -> ExecuteResult:
        pass

    @abstractmethod
    async def update(self, target: str, where: Mapping[str, Any],
                     changes: Mapping[str, Any]) -> ExecuteResult:
        pass

    @abstractmethod
    async def delete(self, target: str, where: Mapping[str, Any]) -> ExecuteResult:
        pass

    @abstractmethod
    def get_pool_status(self) -> PoolStatus:
        pass

    @abstractmethod
    async def health_check(self) -> HealthCheckResult:
        """Cheapest round trip; never raises"""
        pass

    @abstractmethod
    async def close(self):
        """Release pool resources; safe to call repeatedly"""
        pass

    @abstractmethod
    def is_connected(self) -> bool:
        pass


# Export main components
__all__ = [
    "DatabaseAdapter", "PoolStatus", "HealthCheckResult", "ExecuteResult",
    "QueryOperator", "QueryFilter", "parse_where", "match_where",
    "values_equal", "Record"
]
