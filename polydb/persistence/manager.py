"""
Database Manager - Adapter Factory and Connection Registry

🏭 Named Connections:
This module provides the registry of adapter factories keyed by backend
type and the DatabaseManager that owns named, connected adapters. The
manager is the only place adapters are created and the only writer of the
connection registry.
"""

from typing import Any, Callable, Dict, List, Optional
from dataclasses import dataclass
import asyncio
import logging

from .adapters.base import BaseAdapter
from .adapters.interface import DatabaseAdapter, HealthCheckResult
from .adapters.memory import MemoryAdapter
from .adapters.mongodb import MongoDBAdapter
from .adapters.mysql import MySQLAdapter
from .adapters.postgresql import PostgreSQLAdapter
from .adapters.sqlite import SQLiteAdapter
from .config import parse_config
from .errors import ConfigurationError, ConnectionNotFoundError

logger = logging.getLogger(__name__)

AdapterFactory = Callable[[Optional[str]], DatabaseAdapter]

DEFAULT_CONNECTION = "default"


@dataclass
class ConnectionStatus:
    """Summary of a registered connection"""
    name: str
    type: str
    connected: bool
    host: Optional[str] = None
    database: Optional[str] = None
    filename: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type,
            "connected": self.connected,
            "host": self.host,
            "database": self.database,
            "filename": self.filename,
        }


class AdapterRegistry:
    """
    Registry of adapter factories.

    Maps a backend type ("sqlite", "postgresql", ...) to a callable that
    builds a fresh, unconnected adapter, enabling pluggable backends.
    """

    def __init__(self):
        self._factories: Dict[str, AdapterFactory] = self._get_default_factories()

    def register(self, backend_type: str, factory: AdapterFactory):
        """Register or replace the factory for a backend type"""
        self._factories[backend_type] = factory
        logger.info(f"Registered adapter factory for {backend_type}: {getattr(factory, '__name__', factory)}")

    def get_factory(self, backend_type: str) -> AdapterFactory:
        factory = self._factories.get(backend_type)
        if factory is None:
            raise ConfigurationError(
                f"No adapter registered for backend type '{backend_type}'. "
                f"Available: {', '.join(sorted(self._factories))}"
            )
        return factory

    def create(self, backend_type: str, name: Optional[str] = None) -> DatabaseAdapter:
        return self.get_factory(backend_type)(name)

    def list_backends(self) -> List[str]:
        return sorted(self._factories)

    def _get_default_factories(self) -> Dict[str, AdapterFactory]:
        return {
            "sqlite": SQLiteAdapter,
            "postgresql": PostgreSQLAdapter,
            "mysql": MySQLAdapter,
            "mongodb": MongoDBAdapter,
            "memory": MemoryAdapter,
        }


class DatabaseManager:
    """
    Owner of named database connections.

    Connecting under an existing name replaces the registered adapter
    (the replaced adapter is closed); closing an unknown name is a no-op.
    """

    def __init__(self, registry: Optional[AdapterRegistry] = None):
        self.registry = registry or AdapterRegistry()
        self._adapters: Dict[str, DatabaseAdapter] = {}

    def set_adapter_factory(self, backend_type: str, factory: AdapterFactory):
        self.registry.register(backend_type, factory)

    async def connect(self, config: Any, name: str = DEFAULT_CONNECTION) -> ConnectionStatus:
        """
        Create an adapter for the config's backend type and connect it.

        Args:
            config: A ConnectionConfig variant or an equivalent mapping
            name: Registry name, "default" when omitted

        Returns:
            ConnectionStatus of the new connection

        Raises:
            ConfigurationError: Invalid config or unknown backend type
            ConnectionError: The adapter could not connect
        """
        config = parse_config(config)
        adapter = self.registry.create(config.type, name)
        logger.info(f"Connecting '{name}' ({config.type})")
        await adapter.connect(config)

        previous = self._adapters.get(name)
        self._adapters[name] = adapter
        if previous is not None and previous is not adapter:
            logger.info(f"Replacing existing connection '{name}'")
            await previous.close()
        return self.get_status(name)

    def get_connection(self, name: str = DEFAULT_CONNECTION) -> DatabaseAdapter:
        adapter = self._adapters.get(name)
        if adapter is None:
            raise ConnectionNotFoundError(name)
        return adapter

    def has_connection(self, name: str = DEFAULT_CONNECTION) -> bool:
        return name in self._adapters

    def get_connection_names(self) -> List[str]:
        return list(self._adapters)

    def get_status(self, name: str = DEFAULT_CONNECTION) -> ConnectionStatus:
        adapter = self.get_connection(name)
        config = adapter.get_config() if isinstance(adapter, BaseAdapter) else getattr(adapter, "config", None)
        conn = getattr(config, "connection", None)
        return ConnectionStatus(
            name=name,
            type=adapter.backend_type,
            connected=adapter.is_connected(),
            host=getattr(conn, "host", None),
            database=getattr(conn, "database", None),
            filename=getattr(conn, "filename", None),
        )

    async def close(self, name: str = DEFAULT_CONNECTION):
        """Close and unregister one connection; unknown names are ignored"""
        adapter = self._adapters.pop(name, None)
        if adapter is None:
            return
        logger.info(f"Closing connection '{name}'")
        await adapter.close()

    async def close_all(self):
        """Close every connection concurrently, then clear the registry"""
        adapters = dict(self._adapters)
        self._adapters.clear()
        if not adapters:
            return

        logger.info(f"Closing {len(adapters)} connection(s)")
        results = await asyncio.gather(
            *(adapter.close() for adapter in adapters.values()),
            return_exceptions=True
        )
        for name, result in zip(adapters, results):
            if isinstance(result, Exception):
                logger.error(f"Error closing connection '{name}': {result}")

    async def health_check_all(self) -> Dict[str, HealthCheckResult]:
        names = list(self._adapters)
        results = await asyncio.gather(*(self._adapters[n].health_check() for n in names))
        return dict(zip(names, results))


# Export main components
__all__ = [
    "DatabaseManager", "AdapterRegistry", "ConnectionStatus", "AdapterFactory",
    "DEFAULT_CONNECTION"
]
