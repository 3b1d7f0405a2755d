"""
Database Access - Explicit Context and Process Facade

🔌 Getting a Database Handle:
A DatabaseContext bundles a DatabaseManager with an optional config loader.
Application entry points create one and pass it to their collaborators;
the module-level functions delegate to a single process-wide default
context for code that prefers a global accessor.

Key Features:
- init_database / init_database_from_config for eager setup
- get_database (sync) for already-initialized connections
- get_database_async for lazy setup through a registered config loader
"""

from typing import Any, Awaitable, Callable, List, Mapping, Optional, Union
import asyncio
import inspect
import logging

from .adapters.interface import DatabaseAdapter
from .config import parse_config_map
from .errors import ConfigLoaderNotSetError, ConfigurationError, ConnectionNotFoundError, ErrorCode
from .manager import DEFAULT_CONNECTION, ConnectionStatus, DatabaseManager

logger = logging.getLogger(__name__)

ConfigLoader = Callable[[], Union[Mapping[str, Any], Awaitable[Mapping[str, Any]]]]


class DatabaseContext:
    """
    Connection registry plus configuration source for one application.

    Args:
        manager: Manager to own; a fresh one is created when omitted
        config_loader: Sync or async callable returning either one
            connection config or a `{name: config}` mapping
    """

    def __init__(self, manager: Optional[DatabaseManager] = None,
                 config_loader: Optional[ConfigLoader] = None):
        self.manager = manager or DatabaseManager()
        self._config_loader = config_loader
        self._initialized = False
        self._init_lock = asyncio.Lock()

    def set_config_loader(self, loader: Optional[ConfigLoader]):
        self._config_loader = loader

    @property
    def config_loader(self) -> Optional[ConfigLoader]:
        return self._config_loader

    async def init_database(self, config: Any, name: str = DEFAULT_CONNECTION) -> ConnectionStatus:
        status = await self.manager.connect(config, name)
        self._initialized = True
        return status

    async def init_database_from_config(self, data: Mapping[str, Any]) -> List[ConnectionStatus]:
        """Connect every entry of a single config or a `{name: config}` mapping"""
        statuses = []
        for name, config in parse_config_map(data).items():
            statuses.append(await self.init_database(config, name))
        return statuses

    async def auto_init(self, name: str = DEFAULT_CONNECTION) -> List[ConnectionStatus]:
        """
        Initialize from the registered config loader.

        A single config is connected under `name`; for a `{name: config}`
        mapping every entry not registered yet is connected. Connections that
        already exist are left untouched.

        Raises:
            ConfigLoaderNotSetError: No loader registered
            ConfigurationError: The loader returned nothing usable
        """
        if self._config_loader is None:
            raise ConfigLoaderNotSetError()

        data = self._config_loader()
        if inspect.isawaitable(data):
            data = await data
        if not data:
            raise ConfigurationError(
                "Config loader returned no database configuration",
                code=ErrorCode.CONFIG_MISSING,
            )
        logger.info(f"Initializing database connection '{name}' from config loader")
        statuses = []
        for config_name, config in parse_config_map(data, default_name=name).items():
            if self.manager.has_connection(config_name):
                continue
            statuses.append(await self.init_database(config, config_name))
        return statuses

    def get_database(self, name: str = DEFAULT_CONNECTION) -> DatabaseAdapter:
        """
        Synchronous accessor for an initialized connection.

        Raises:
            ConnectionNotFoundError: Nothing registered under name
        """
        if not self.manager.has_connection(name):
            raise ConnectionNotFoundError(
                name,
                f"Database connection '{name}' is not initialized. Call init_database() first, "
                f"or use get_database_async() to initialize it from the config loader.",
            )
        return self.manager.get_connection(name)

    async def get_database_async(self, name: str = DEFAULT_CONNECTION) -> DatabaseAdapter:
        """
        Accessor that initializes lazily through the config loader.

        Raises:
            ConfigLoaderNotSetError: Not initialized and no loader registered
            ConnectionNotFoundError: The loader did not configure `name`
        """
        if self.manager.has_connection(name):
            return self.manager.get_connection(name)
        if self._config_loader is None:
            if not self._initialized:
                raise ConfigLoaderNotSetError()
            raise ConnectionNotFoundError(name)

        async with self._init_lock:
            if not self.manager.has_connection(name):
                await self.auto_init(name)
        return self.manager.get_connection(name)

    def has_connection(self, name: str = DEFAULT_CONNECTION) -> bool:
        return self.manager.has_connection(name)

    def is_initialized(self) -> bool:
        return self._initialized and bool(self.manager.get_connection_names())

    async def close_database(self):
        """Close all connections and forget the config loader"""
        await self.manager.close_all()
        self._config_loader = None
        self._initialized = False


_default_context: Optional[DatabaseContext] = None


def get_default_context() -> DatabaseContext:
    """The process-wide context, created on first use"""
    global _default_context
    if _default_context is None:
        _default_context = DatabaseContext()
    return _default_context


def reset_default_context(context: Optional[DatabaseContext] = None):
    """Replace (or drop) the process-wide context; the old one is not closed"""
    global _default_context
    _default_context = context


def set_database_config_loader(loader: Optional[ConfigLoader]):
    get_default_context().set_config_loader(loader)


async def init_database(config: Any, name: str = DEFAULT_CONNECTION) -> ConnectionStatus:
    return await get_default_context().init_database(config, name)


async def init_database_from_config(data: Mapping[str, Any]) -> List[ConnectionStatus]:
    return await get_default_context().init_database_from_config(data)


def get_database(name: str = DEFAULT_CONNECTION) -> DatabaseAdapter:
    return get_default_context().get_database(name)


async def get_database_async(name: str = DEFAULT_CONNECTION) -> DatabaseAdapter:
    return await get_default_context().get_database_async(name)


def get_database_manager() -> DatabaseManager:
    return get_default_context().manager


def has_connection(name: str = DEFAULT_CONNECTION) -> bool:
    return get_default_context().has_connection(name)


def is_database_initialized() -> bool:
    return get_default_context().is_initialized()


async def close_database():
    await get_default_context().close_database()


# Export main components
__all__ = [
    "DatabaseContext", "ConfigLoader", "get_default_context", "reset_default_context",
    "set_database_config_loader", "init_database", "init_database_from_config",
    "get_database", "get_database_async", "get_database_manager", "has_connection",
    "is_database_initialized", "close_database"
]
