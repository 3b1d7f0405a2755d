"""
Connection Configuration - Typed Backend Settings

🔧 Tagged Connection Variants:
Each backend family has its own frozen pydantic model keyed by the `type`
discriminator. Backend-specific knobs (pool bounds, timeouts, replica set
options, SQLite file flags) live in a per-variant options block instead of
free-form dictionaries, so a configuration is fully validated before an
adapter ever touches the network.

Key Features:
- Discriminated union over sqlite / postgresql / mysql / mongodb / memory
- Immutable after creation
- parse_config() turns plain mappings into the right variant
"""

from typing import Annotated, Any, Dict, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, model_validator

from .errors import ConfigurationError


class _FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)


class ConnectionParams(_FrozenModel):
    """Where to connect: network coordinates, a full URL, or a file"""
    host: Optional[str] = None
    port: Optional[int] = None
    database: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    filename: Optional[str] = None
    url: Optional[str] = None


class PoolOptions(_FrozenModel):
    """Pool bounds and connect retry policy shared by networked backends"""
    min: int = Field(default=1, ge=0)
    max: int = Field(default=10, ge=1)
    idle_timeout: float = Field(default=30.0, alias="idleTimeout")
    max_retries: int = Field(default=3, ge=0, alias="maxRetries")
    retry_delay: float = Field(default=1.0, ge=0, alias="retryDelay")

    @model_validator(mode="after")
    def _check_bounds(self):
        if self.min > self.max:
            raise ValueError(f"pool min ({self.min}) exceeds max ({self.max})")
        return self


class SQLiteOptions(_FrozenModel):
    readonly: bool = False
    file_must_exist: bool = Field(default=False, alias="fileMustExist")
    timeout: float = 5.0
    verbose: bool = False


class PostgreSQLOptions(_FrozenModel):
    connection_timeout: float = Field(default=5.0, alias="connectionTimeout")
    ssl: Optional[Any] = None
    application_name: Optional[str] = Field(default=None, alias="applicationName")
    statement_cache_size: Optional[int] = Field(default=None, alias="statementCacheSize")


class MySQLOptions(_FrozenModel):
    connection_timeout: float = Field(default=10.0, alias="connectionTimeout")
    charset: str = "utf8mb4"
    ssl: Optional[Any] = None


class MongoOptions(_FrozenModel):
    max_pool_size: int = Field(default=10, ge=1, alias="maxPoolSize")
    min_pool_size: int = Field(default=1, ge=0, alias="minPoolSize")
    server_selection_timeout_ms: int = Field(default=30000, alias="serverSelectionTimeoutMS")
    connect_timeout_ms: int = Field(default=5000, alias="connectTimeoutMS")
    socket_timeout_ms: int = Field(default=5000, alias="socketTimeoutMS")
    max_retries: int = Field(default=3, ge=0, alias="maxRetries")
    retry_delay: float = Field(default=1.0, ge=0, alias="retryDelay")
    auth_source: Optional[str] = Field(default=None, alias="authSource")
    replica_set: Optional[str] = Field(default=None, alias="replicaSet")
    direct_connection: Optional[bool] = Field(default=None, alias="directConnection")
    timezone: Optional[str] = None


class _NetworkConfig(_FrozenModel):
    connection: ConnectionParams = Field(default_factory=ConnectionParams)
    pool: PoolOptions = Field(default_factory=PoolOptions)

    @model_validator(mode="after")
    def _require_target(self):
        conn = self.connection
        if not conn.url and not (conn.host and conn.database):
            raise ValueError(f"{self.type} connection requires host and database (or url)")
        return self


class SQLiteConfig(_FrozenModel):
    type: Literal["sqlite"] = "sqlite"
    connection: ConnectionParams
    options: SQLiteOptions = Field(default_factory=SQLiteOptions, alias="sqliteOptions")
    echo: bool = False

    @model_validator(mode="after")
    def _require_filename(self):
        if not self.connection.filename and not self.connection.url:
            raise ValueError("sqlite connection requires filename")
        return self


class PostgreSQLConfig(_NetworkConfig):
    type: Literal["postgresql"] = "postgresql"
    options: PostgreSQLOptions = Field(default_factory=PostgreSQLOptions, alias="postgresqlOptions")
    echo: bool = False


class MySQLConfig(_NetworkConfig):
    type: Literal["mysql"] = "mysql"
    options: MySQLOptions = Field(default_factory=MySQLOptions, alias="mysqlOptions")
    echo: bool = False


class MongoDBConfig(_FrozenModel):
    type: Literal["mongodb"] = "mongodb"
    connection: ConnectionParams
    options: MongoOptions = Field(default_factory=MongoOptions, alias="mongoOptions")

    @model_validator(mode="after")
    def _require_target(self):
        conn = self.connection
        if not conn.url and not (conn.host and conn.database):
            raise ValueError("mongodb connection requires host and database (or url)")
        return self


class MemoryConfig(_FrozenModel):
    type: Literal["memory"] = "memory"
    connection: ConnectionParams = Field(default_factory=ConnectionParams)
    pool: PoolOptions = Field(default_factory=lambda: PoolOptions(max_retries=0, retry_delay=0.0))


ConnectionConfig = Annotated[
    Union[SQLiteConfig, PostgreSQLConfig, MySQLConfig, MongoDBConfig, MemoryConfig],
    Field(discriminator="type"),
]

_config_adapter = TypeAdapter(ConnectionConfig)


def parse_config(data: Union[Mapping[str, Any], BaseModel]) -> ConnectionConfig:
    """
    Validate a plain mapping into its ConnectionConfig variant.

    Args:
        data: A mapping with a `type` key, or an already-built config model

    Returns:
        The frozen config variant

    Raises:
        ConfigurationError: If the mapping does not describe a valid config
    """
    if isinstance(data, BaseModel):
        return data
    try:
        return _config_adapter.validate_python(dict(data))
    except ValidationError as e:
        raise ConfigurationError(f"Invalid connection config: {e}", original_error=e) from e
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid connection config: {e}", original_error=e) from e


def parse_config_map(data: Mapping[str, Any],
                     default_name: str = "default") -> Dict[str, ConnectionConfig]:
    """Parse either a single config or a `{name: config}` mapping"""
    if "type" in data:
        return {default_name: parse_config(data)}
    return {name: parse_config(value) for name, value in data.items()}


# Export main components
__all__ = [
    "ConnectionParams", "PoolOptions", "SQLiteOptions", "PostgreSQLOptions",
    "MySQLOptions", "MongoOptions", "SQLiteConfig", "PostgreSQLConfig",
    "MySQLConfig", "MongoDBConfig", "MemoryConfig", "ConnectionConfig",
    "parse_config", "parse_config_map"
]
