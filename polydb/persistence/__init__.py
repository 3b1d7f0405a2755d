"""
PolyDB Persistence

Connection configuration, adapters, the connection manager and the
database access facade, plus the migration history runner.
"""

from .errors import (
    AggregateValidationError, ConfigLoaderNotSetError, ConfigurationError, ConnectionError,
    ConnectionNotFoundError, DatabaseError, ErrorCode, ExecuteError, IntegrityError,
    MigrationError, NotConnectedError, QueryError, TransactionError, TransactionNotSupportedError,
)
from .config import (
    ConnectionConfig, ConnectionParams, MemoryConfig, MongoDBConfig, MySQLConfig, PoolOptions,
    PostgreSQLConfig, SQLiteConfig, parse_config, parse_config_map,
)
from .query_logger import QueryLogEntry, QueryLogger
from .adapters import (
    BaseAdapter, DatabaseAdapter, ExecuteResult, HealthCheckResult, MemoryAdapter,
    MongoDBAdapter, MySQLAdapter, PoolStatus, PostgreSQLAdapter, SQLiteAdapter,
)
from .manager import DEFAULT_CONNECTION, AdapterRegistry, ConnectionStatus, DatabaseManager
from .access import (
    DatabaseContext, close_database, get_database, get_database_async, get_database_manager,
    get_default_context, has_connection, init_database, init_database_from_config,
    is_database_initialized, reset_default_context, set_database_config_loader,
)
from .migrations import Migration, MigrationManager, MigrationStatus

__all__ = [
    # Errors
    'ErrorCode',
    'DatabaseError',
    'ConnectionError',
    'NotConnectedError',
    'ConnectionNotFoundError',
    'ConfigurationError',
    'ConfigLoaderNotSetError',
    'QueryError',
    'ExecuteError',
    'IntegrityError',
    'TransactionError',
    'TransactionNotSupportedError',
    'MigrationError',
    'AggregateValidationError',

    # Configuration
    'ConnectionConfig',
    'ConnectionParams',
    'PoolOptions',
    'SQLiteConfig',
    'PostgreSQLConfig',
    'MySQLConfig',
    'MongoDBConfig',
    'MemoryConfig',
    'parse_config',
    'parse_config_map',

    # Query logging
    'QueryLogger',
    'QueryLogEntry',

    # Adapters
    'DatabaseAdapter',
    'BaseAdapter',
    'PoolStatus',
    'HealthCheckResult',
    'ExecuteResult',
    'SQLiteAdapter',
    'PostgreSQLAdapter',
    'MySQLAdapter',
    'MongoDBAdapter',
    'MemoryAdapter',

    # Connections
    'DatabaseManager',
    'AdapterRegistry',
    'ConnectionStatus',
    'DEFAULT_CONNECTION',
    'DatabaseContext',
    'get_default_context',
    'reset_default_context',
    'set_database_config_loader',
    'init_database',
    'init_database_from_config',
    'get_database',
    'get_database_async',
    'get_database_manager',
    'has_connection',
    'is_database_initialized',
    'close_database',

    # Migrations
    'Migration',
    'MigrationManager',
    'MigrationStatus',
]
