"""
PolyDB Adapters

🔌 One Contract, Many Backends:
Every backend implements DatabaseAdapter. The SQL family shares SQLAdapter
on SQLAlchemy's asyncio engine; MongoDB runs on pymongo's async client and
MemoryAdapter keeps documents in process.
"""

from .interface import (
    DatabaseAdapter, ExecuteResult, HealthCheckResult, PoolStatus, QueryFilter,
    QueryOperator, Record, match_where, parse_where,
)
from .base import AdapterMetrics, BaseAdapter
from .sql import SQLAdapter, convert_placeholders
from .sqlite import SQLiteAdapter
from .postgresql import PostgreSQLAdapter
from .mysql import MySQLAdapter
from .mongodb import MongoDBAdapter, MongoPoolMonitor, build_mongo_url
from .memory import MemoryAdapter

__all__ = [
    # Contract
    'DatabaseAdapter',
    'BaseAdapter',
    'AdapterMetrics',
    'PoolStatus',
    'HealthCheckResult',
    'ExecuteResult',
    'QueryFilter',
    'QueryOperator',
    'Record',
    'parse_where',
    'match_where',

    # SQL family
    'SQLAdapter',
    'SQLiteAdapter',
    'PostgreSQLAdapter',
    'MySQLAdapter',
    'convert_placeholders',

    # Document stores
    'MongoDBAdapter',
    'MongoPoolMonitor',
    'build_mongo_url',
    'MemoryAdapter',
]
