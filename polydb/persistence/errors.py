"""
Persistence Errors - Database Error Taxonomy

🚨 Typed Failure Reporting:
Every failure raised by an adapter, the connection manager or the database
facade is a DatabaseError carrying a numeric code. The leading digit of the
code names the error family (connection, query, execute, transaction, config)
so callers can branch on `error_type` without string matching.
"""

from enum import IntEnum
from typing import Any, Dict, List, Optional


class ErrorCode(IntEnum):
    """Numeric error codes grouped by family"""
    # Connection errors
    CONNECTION_FAILED = 1001
    CONNECTION_TIMEOUT = 1002
    CONNECTION_CLOSED = 1003
    CONNECTION_NOT_INITIALIZED = 1004
    POOL_EXHAUSTED = 1005

    # Query errors
    QUERY_FAILED = 2001
    QUERY_TIMEOUT = 2002
    QUERY_SYNTAX_ERROR = 2003
    QUERY_PARAM_ERROR = 2004

    # Execute errors
    EXECUTE_FAILED = 3001
    EXECUTE_TIMEOUT = 3002
    CONSTRAINT_VIOLATION = 3003

    # Transaction errors
    TRANSACTION_FAILED = 4001
    TRANSACTION_ROLLBACK_FAILED = 4002
    TRANSACTION_COMMIT_FAILED = 4003
    SAVEPOINT_FAILED = 4004
    TRANSACTION_ALREADY_STARTED = 4005
    TRANSACTION_NOT_SUPPORTED = 4006

    # Config errors
    CONFIG_INVALID = 5001
    CONFIG_MISSING = 5002

    # Migration errors (6xxx)
    MIGRATION_FAILED = 6001
    MIGRATION_NOT_FOUND = 6002

    UNKNOWN_ERROR = 9001


_ERROR_TYPES = {
    1: "connection",
    2: "query",
    3: "execute",
    4: "transaction",
    5: "config",
    6: "migration",
}


class DatabaseError(Exception):
    """Base exception for all persistence failures"""

    default_code = ErrorCode.UNKNOWN_ERROR

    def __init__(self, message: str, code: Optional[ErrorCode] = None,
                 sql: Optional[str] = None, params: Any = None,
                 connection_name: Optional[str] = None,
                 original_error: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.code = code if code is not None else self.default_code
        self.sql = sql
        self.params = params
        self.connection_name = connection_name
        self.original_error = original_error

    @property
    def error_type(self) -> str:
        """Error family derived from the leading digit of the code"""
        return _ERROR_TYPES.get(int(self.code) // 1000, "unknown")

    def get_details(self) -> str:
        """Human readable multi-line description"""
        lines = [f"[{self.code.name}] {self.message}"]
        if self.connection_name:
            lines.append(f"Connection: {self.connection_name}")
        if self.sql:
            lines.append(f"SQL: {self.sql}")
        if self.params is not None:
            lines.append(f"Params: {self.params!r}")
        if self.original_error is not None:
            lines.append(f"Caused by: {self.original_error!r}")
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.__class__.__name__,
            "message": self.message,
            "code": int(self.code),
            "error_type": self.error_type,
            "sql": self.sql,
            "params": self.params,
            "connection_name": self.connection_name,
            "original_error": str(self.original_error) if self.original_error else None,
        }


class ConnectionError(DatabaseError):
    """Raised when a connection cannot be established after all retries"""
    default_code = ErrorCode.CONNECTION_FAILED


class NotConnectedError(DatabaseError):
    """Raised when an operation is issued on a closed or never-opened adapter"""
    default_code = ErrorCode.CONNECTION_CLOSED


class ConnectionNotFoundError(DatabaseError):
    """Raised when a named connection is not registered"""
    default_code = ErrorCode.CONNECTION_NOT_INITIALIZED

    def __init__(self, name: str, message: Optional[str] = None):
        super().__init__(
            message or f"Connection '{name}' not found. Call connect() or init_database() first.",
            connection_name=name,
        )


class ConfigurationError(DatabaseError):
    """Raised when a connection configuration is invalid"""
    default_code = ErrorCode.CONFIG_INVALID


class ConfigLoaderNotSetError(DatabaseError):
    """Raised when lazy initialization is requested without a config source"""
    default_code = ErrorCode.CONFIG_MISSING

    def __init__(self, message: Optional[str] = None):
        super().__init__(
            message or (
                "Database is not initialized and no config loader is set. "
                "Call init_database() or set_database_config_loader() first."
            )
        )


class QueryError(DatabaseError):
    """Raised when a read fails"""
    default_code = ErrorCode.QUERY_FAILED


class ExecuteError(DatabaseError):
    """Raised when a write fails"""
    default_code = ErrorCode.EXECUTE_FAILED


class IntegrityError(ExecuteError):
    """Raised when the backend rejects a write on a constraint"""
    default_code = ErrorCode.CONSTRAINT_VIOLATION


class TransactionError(DatabaseError):
    """
    Raised when a transaction callback fails.

    The original callback error is chained as `original_error`; if the
    rollback itself failed that failure is kept in `rollback_error`.
    """
    default_code = ErrorCode.TRANSACTION_FAILED

    def __init__(self, message: str, code: Optional[ErrorCode] = None,
                 original_error: Optional[BaseException] = None,
                 rollback_error: Optional[BaseException] = None, **kwargs):
        super().__init__(message, code=code, original_error=original_error, **kwargs)
        self.rollback_error = rollback_error

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["rollback_error"] = str(self.rollback_error) if self.rollback_error else None
        return data


class TransactionNotSupportedError(TransactionError):
    """Raised when the backend deployment cannot run multi-statement transactions"""
    default_code = ErrorCode.TRANSACTION_NOT_SUPPORTED


class MigrationError(DatabaseError):
    """Raised when applying or reverting a migration fails"""
    default_code = ErrorCode.MIGRATION_FAILED

    def __init__(self, message: str, migration: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.migration = migration


class AggregateValidationError(Exception):
    """Raised when one or more validation rules fail for a record"""

    def __init__(self, violations: List[Any]):
        self.violations = list(violations)
        summary = "; ".join(f"{v.field}: {v.message}" for v in self.violations)
        super().__init__(f"Validation failed: {summary}")

    def fields(self) -> List[str]:
        """Distinct failing field names in report order"""
        seen: List[str] = []
        for violation in self.violations:
            if violation.field not in seen:
                seen.append(violation.field)
        return seen

    def get_violations(self, field: str) -> List[Any]:
        return [v for v in self.violations if v.field == field]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": str(self),
            "violations": [v.to_dict() for v in self.violations],
        }


# Export main components
__all__ = [
    "ErrorCode", "DatabaseError", "ConnectionError", "NotConnectedError",
    "ConnectionNotFoundError", "ConfigurationError", "ConfigLoaderNotSetError",
    "QueryError", "ExecuteError", "IntegrityError", "TransactionError",
    "TransactionNotSupportedError", "MigrationError", "AggregateValidationError"
]
