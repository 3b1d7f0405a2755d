"""
PostgreSQL Adapter

🐘 Pooled PostgreSQL Access:
PostgreSQL through asyncpg on SQLAlchemy's async engine, with pool bounds
and connect timeout taken from the typed configuration.
"""

from typing import Any, Dict

from sqlalchemy.engine import URL

from .sql import SQLAdapter


class PostgreSQLAdapter(SQLAdapter):
    """PostgreSQL adapter (`postgresql+asyncpg`)"""

    backend_type = "postgresql"
    supports_returning = True

    def _build_url(self, config: Any) -> URL:
        conn = config.connection
        return URL.create(
            "postgresql+asyncpg",
            username=conn.username,
            password=conn.password,
            host=conn.host,
            port=conn.port or 5432,
            database=conn.database,
        )

    def _engine_options(self, config: Any) -> Dict[str, Any]:
        options = super()._engine_options(config)
        connect_args: Dict[str, Any] = {"timeout": config.options.connection_timeout}
        if config.options.application_name:
            connect_args["server_settings"] = {"application_name": config.options.application_name}
        if config.options.ssl is not None:
            connect_args["ssl"] = config.options.ssl
        if config.options.statement_cache_size is not None:
            connect_args["statement_cache_size"] = config.options.statement_cache_size
        options["connect_args"] = connect_args
        return options


# Export main components
__all__ = ["PostgreSQLAdapter"]
