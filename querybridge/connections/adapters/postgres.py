from __future__ import annotations

from typing import Optional

from psycopg import errors as pg_errors
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncEngine

from querybridge.connections.adapters.base import SqlDialect
from querybridge.connections.schemas import SqlConnectionConfig
from querybridge.core.config import Settings
from querybridge.core.exceptions import QueryBridgeError
from querybridge.core.logging import get_logger


logger = get_logger(__name__)

_SYSTEM_SCHEMA_FILTER = "table_schema NOT IN ('pg_catalog', 'information_schema') AND table_schema NOT LIKE 'pg_toast%'"

_LIST_TABLES_SQL = f"""
    SELECT table_schema, table_name, table_type
    FROM information_schema.tables
    WHERE {_SYSTEM_SCHEMA_FILTER}
    ORDER BY table_schema, table_name
"""

_SEARCH_TABLES_SQL = f"""
    SELECT table_schema, table_name, table_type
    FROM information_schema.tables
    WHERE {_SYSTEM_SCHEMA_FILTER} AND table_name ILIKE :pattern
    ORDER BY table_schema, table_name
"""

_COLUMNS_SQL = """
    SELECT column_name, data_type, udt_name, is_nullable, column_default, character_maximum_length
    FROM information_schema.columns
    WHERE table_schema = :schema AND table_name = :table
    ORDER BY ordinal_position
"""

_PRIMARY_KEY_SQL = """
    SELECT kcu.column_name
    FROM information_schema.table_constraints tc
    JOIN information_schema.key_column_usage kcu
      ON tc.constraint_name = kcu.constraint_name AND tc.table_schema = kcu.table_schema
    WHERE tc.constraint_type = 'PRIMARY KEY' AND tc.table_schema = :schema AND tc.table_name = :table
"""

_FOREIGN_KEYS_SQL = """
    SELECT
        kcu.column_name,
        ccu.table_schema AS referenced_schema,
        ccu.table_name AS referenced_table,
        ccu.column_name AS referenced_column,
        rc.update_rule,
        rc.delete_rule
    FROM information_schema.table_constraints tc
    JOIN information_schema.key_column_usage kcu
      ON tc.constraint_name = kcu.constraint_name AND tc.table_schema = kcu.table_schema
    JOIN information_schema.referential_constraints rc
      ON rc.constraint_name = tc.constraint_name AND rc.constraint_schema = tc.table_schema
    JOIN information_schema.constraint_column_usage ccu
      ON ccu.constraint_name = tc.constraint_name AND ccu.constraint_schema = tc.table_schema
    WHERE tc.constraint_type = 'FOREIGN KEY' AND tc.table_schema = :schema AND tc.table_name = :table
    ORDER BY kcu.ordinal_position
"""


class PostgresDialect(SqlDialect):
    kind = "postgres"
    display_name = "PostgreSQL"
    drivername = "postgresql+psycopg"
    default_port = 5432
    default_schema = "public"

    def connect_args(self, config: SqlConnectionConfig, settings: Settings) -> dict:
        return {
            "connect_timeout": settings.connect_timeout_s,
            "sslmode": config.ssl_mode or ("require" if config.ssl else "disable"),
            "application_name": settings.app_name,
        }

    def is_connectivity_error(self, exc: BaseException) -> bool:
        # statement_timeout and user cancellation surface as OperationalError too
        if isinstance(exc, DBAPIError) and isinstance(exc.orig, pg_errors.QueryCanceled):
            return False
        return super().is_connectivity_error(exc)

    async def list_tables(self, engine: AsyncEngine) -> list[dict]:
        rows = await self.fetch_all(engine, _LIST_TABLES_SQL)
        return [self._table_entry(r) for r in rows]

    async def search_tables(self, engine: AsyncEngine, pattern: str) -> list[dict]:
        rows = await self.fetch_all(engine, _SEARCH_TABLES_SQL, {"pattern": f"%{pattern}%"})
        return [self._table_entry(r) for r in rows]

    async def get_columns(self, engine: AsyncEngine, table: str, schema: Optional[str] = None) -> list[dict]:
        params = {"schema": schema or self.default_schema, "table": table}
        rows = await self.fetch_all(engine, _COLUMNS_SQL, params)
        if not rows:
            return []
        primary_keys = await self._primary_keys(engine, params)
        columns = []
        for r in rows:
            # enums and domains report USER-DEFINED; udt_name is more useful there
            declared = r["udt_name"] if r["data_type"] in ("USER-DEFINED", "ARRAY") else r["data_type"]
            columns.append(self._column_entry(r, declared=declared, is_primary_key=r["column_name"] in primary_keys))
        return columns

    async def _primary_keys(self, engine: AsyncEngine, params: dict) -> set[str]:
        try:
            rows = await self.fetch_all(engine, _PRIMARY_KEY_SQL, params)
        except QueryBridgeError as exc:
            logger.warning("Primary key lookup failed: %s", exc, extra={"kind": self.kind, "table": params["table"]})
            return set()
        return {r["column_name"] for r in rows}

    async def get_foreign_keys(self, engine: AsyncEngine, table: str, schema: Optional[str] = None) -> list[dict]:
        rows = await self.fetch_all(engine, _FOREIGN_KEYS_SQL, {"schema": schema or self.default_schema, "table": table})
        return [self._foreign_key_entry(r) for r in rows]
