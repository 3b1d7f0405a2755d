"""
MySQL Adapter

🐬 Pooled MySQL Access:
MySQL through aiomysql on SQLAlchemy's async engine.
"""

from typing import Any, Dict

from sqlalchemy.engine import URL

from .sql import SQLAdapter


class MySQLAdapter(SQLAdapter):
    """MySQL adapter (`mysql+aiomysql`)"""

    backend_type = "mysql"

    def _build_url(self, config: Any) -> URL:
        conn = config.connection
        return URL.create(
            "mysql+aiomysql",
            username=conn.username,
            password=conn.password,
            host=conn.host,
            port=conn.port or 3306,
            database=conn.database,
            query={"charset": config.options.charset},
        )

    def _engine_options(self, config: Any) -> Dict[str, Any]:
        options = super()._engine_options(config)
        connect_args: Dict[str, Any] = {"connect_timeout": config.options.connection_timeout}
        if config.options.ssl is not None:
            connect_args["ssl"] = config.options.ssl
        options["connect_args"] = connect_args
        return options

    def _last_row_id(self, result: Any) -> Any:
        return result.lastrowid or None


# Export main components
__all__ = ["MySQLAdapter"]
