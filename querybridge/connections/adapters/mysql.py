from __future__ import annotations

import ssl
from typing import Optional

from pymysql.constants import CR, ER
from sqlalchemy.engine import URL
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine

from querybridge.connections.adapters.base import SqlDialect
from querybridge.connections.schemas import SqlConnectionConfig
from querybridge.core.config import Settings


# MySQL reports both server and client failures as OperationalError; only these
# error numbers mean the server could not be reached or refused the login.
_CONNECTIVITY_ERRNOS = frozenset(
    {
        CR.CR_CONNECTION_ERROR,
        CR.CR_CONN_HOST_ERROR,
        CR.CR_UNKNOWN_HOST,
        CR.CR_SERVER_GONE_ERROR,
        CR.CR_SERVER_LOST,
        ER.ACCESS_DENIED_ERROR,
        ER.DBACCESS_DENIED_ERROR,
        ER.CON_COUNT_ERROR,
        ER.HOST_IS_BLOCKED,
        ER.BAD_DB_ERROR,
    }
)

# information_schema column names come back upper-case on MySQL 8; alias them all.
_TABLE_COLUMNS = "table_schema AS table_schema, table_name AS table_name, table_type AS table_type"

_LIST_TABLES_SQL = f"""
    SELECT {_TABLE_COLUMNS}
    FROM information_schema.tables
    WHERE table_schema = DATABASE()
    ORDER BY table_name
"""

_SEARCH_TABLES_SQL = f"""
    SELECT {_TABLE_COLUMNS}
    FROM information_schema.tables
    WHERE table_schema = DATABASE() AND table_name LIKE :pattern
    ORDER BY table_name
"""

_COLUMNS_SQL = """
    SELECT
        column_name AS column_name,
        data_type AS data_type,
        column_type AS column_type,
        is_nullable AS is_nullable,
        column_default AS column_default,
        character_maximum_length AS character_maximum_length,
        column_key AS column_key
    FROM information_schema.columns
    WHERE table_schema = COALESCE(:schema, DATABASE()) AND table_name = :table
    ORDER BY ordinal_position
"""

_FOREIGN_KEYS_SQL = """
    SELECT
        kcu.column_name AS column_name,
        kcu.referenced_table_schema AS referenced_schema,
        kcu.referenced_table_name AS referenced_table,
        kcu.referenced_column_name AS referenced_column,
        rc.update_rule AS update_rule,
        rc.delete_rule AS delete_rule
    FROM information_schema.key_column_usage kcu
    JOIN information_schema.referential_constraints rc
      ON rc.constraint_schema = kcu.constraint_schema AND rc.constraint_name = kcu.constraint_name
    WHERE kcu.table_schema = COALESCE(:schema, DATABASE())
      AND kcu.table_name = :table
      AND kcu.referenced_table_name IS NOT NULL
    ORDER BY kcu.ordinal_position
"""


class MySQLDialect(SqlDialect):
    kind = "mysql"
    display_name = "MySQL"
    drivername = "mysql+aiomysql"
    default_port = 3306
    # None means the connection's current database
    default_schema = None
    quote_char = "`"

    def build_url(self, config: SqlConnectionConfig) -> URL:
        return super().build_url(config).update_query_dict({"charset": "utf8mb4"})

    def connect_args(self, config: SqlConnectionConfig, settings: Settings) -> dict:
        args: dict = {"connect_timeout": settings.connect_timeout_s}
        if config.ssl or (config.ssl_mode and config.ssl_mode != "disable"):
            context = ssl.create_default_context()
            if config.ssl_mode not in ("verify-ca", "verify-full"):
                context.check_hostname = False
                context.verify_mode = ssl.CERT_NONE
            args["ssl"] = context
        return args

    def is_connectivity_error(self, exc: BaseException) -> bool:
        if isinstance(exc, OperationalError) and not exc.connection_invalidated:
            errno = _errno(exc)
            if errno is not None:
                return errno in _CONNECTIVITY_ERRNOS
        return super().is_connectivity_error(exc)

    async def list_tables(self, engine: AsyncEngine) -> list[dict]:
        rows = await self.fetch_all(engine, _LIST_TABLES_SQL)
        return [self._table_entry(r) for r in rows]

    async def search_tables(self, engine: AsyncEngine, pattern: str) -> list[dict]:
        rows = await self.fetch_all(engine, _SEARCH_TABLES_SQL, {"pattern": f"%{pattern}%"})
        return [self._table_entry(r) for r in rows]

    async def get_columns(self, engine: AsyncEngine, table: str, schema: Optional[str] = None) -> list[dict]:
        rows = await self.fetch_all(engine, _COLUMNS_SQL, {"schema": schema, "table": table})
        return [
            self._column_entry(r, declared=r["column_type"] or r["data_type"], is_primary_key=r["column_key"] == "PRI")
            for r in rows
        ]

    async def get_foreign_keys(self, engine: AsyncEngine, table: str, schema: Optional[str] = None) -> list[dict]:
        rows = await self.fetch_all(engine, _FOREIGN_KEYS_SQL, {"schema": schema, "table": table})
        return [self._foreign_key_entry(r) for r in rows]


def _errno(exc: DBAPIError) -> Optional[int]:
    args = getattr(exc.orig, "args", ())
    if args and isinstance(args[0], int):
        return args[0]
    return None
