from __future__ import annotations

import re
from typing import Any, Mapping, Optional, Sequence

from sqlalchemy.engine import URL
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncEngine

from querybridge.connections.adapters.base import SqlDialect, _error_text
from querybridge.connections.schemas import SqlConnectionConfig
from querybridge.core.config import Settings
from querybridge.core.exceptions import ConfigurationError


_LENGTH_RE = re.compile(r"\(\s*(\d+)\s*(?:,\s*\d+\s*)?\)")

_LIST_TABLES_SQL = """
    SELECT name AS table_name, type AS table_type
    FROM sqlite_master
    WHERE type IN ('table', 'view') AND name NOT LIKE 'sqlite_%'
    ORDER BY name
"""

_SEARCH_TABLES_SQL = """
    SELECT name AS table_name, type AS table_type
    FROM sqlite_master
    WHERE type IN ('table', 'view') AND name NOT LIKE 'sqlite_%' AND name LIKE :pattern
    ORDER BY name
"""

_COLUMNS_SQL = """
    SELECT name, type, "notnull" AS not_null, dflt_value, pk
    FROM pragma_table_info(:table, :schema)
    ORDER BY cid
"""

_FOREIGN_KEYS_SQL = """
    SELECT "from" AS column_name, "table" AS referenced_table, "to" AS referenced_column,
           on_update AS update_rule, on_delete AS delete_rule
    FROM pragma_foreign_key_list(:table, :schema)
    ORDER BY id, seq
"""


class SQLiteDialect(SqlDialect):
    kind = "sqlite"
    display_name = "SQLite"
    drivername = "sqlite+aiosqlite"
    default_schema = "main"

    def build_url(self, config: SqlConnectionConfig) -> URL:
        if not config.database:
            raise ConfigurationError("SQLite connection requires a database file path")
        return URL.create(self.drivername, database=config.database)

    def connect_args(self, config: SqlConnectionConfig, settings: Settings) -> dict:
        return {"timeout": settings.connect_timeout_s}

    def engine_options(self, config: SqlConnectionConfig, settings: Settings) -> dict:
        if _is_memory(config.database):
            # in-memory databases get a StaticPool, which takes no sizing options
            return {}
        return super().engine_options(config, settings)

    def is_connectivity_error(self, exc: BaseException) -> bool:
        # sqlite raises OperationalError for syntax errors and missing tables too
        if isinstance(exc, DBAPIError) and not exc.connection_invalidated:
            return "unable to open database" in _error_text(exc).lower()
        return super().is_connectivity_error(exc)

    def field_type(self, type_code: Any, column: str, rows: Sequence[Mapping[str, Any]]) -> str:
        # sqlite cursors carry no type code; use the first non-null value
        if type_code is None:
            for row in rows:
                value = row.get(column)
                if value is not None:
                    return self.type_names.resolve(self.kind, type(value).__name__)
        return super().field_type(type_code, column, rows)

    async def list_tables(self, engine: AsyncEngine) -> list[dict]:
        rows = await self.fetch_all(engine, _LIST_TABLES_SQL)
        return [self._table_entry(r) for r in rows]

    async def search_tables(self, engine: AsyncEngine, pattern: str) -> list[dict]:
        rows = await self.fetch_all(engine, _SEARCH_TABLES_SQL, {"pattern": f"%{pattern}%"})
        return [self._table_entry(r) for r in rows]

    async def get_columns(self, engine: AsyncEngine, table: str, schema: Optional[str] = None) -> list[dict]:
        rows = await self.fetch_all(engine, _COLUMNS_SQL, {"table": table, "schema": schema or self.default_schema})
        columns = []
        for r in rows:
            declared = r["type"] or ""
            length = _LENGTH_RE.search(declared)
            entry = {
                "column_name": r["name"],
                "is_nullable": not r["not_null"] and not r["pk"],
                "column_default": r["dflt_value"],
                "character_maximum_length": int(length.group(1)) if length else None,
            }
            columns.append(self._column_entry(entry, declared=declared, is_primary_key=bool(r["pk"])))
        return columns

    async def get_foreign_keys(self, engine: AsyncEngine, table: str, schema: Optional[str] = None) -> list[dict]:
        rows = await self.fetch_all(engine, _FOREIGN_KEYS_SQL, {"table": table, "schema": schema or self.default_schema})
        return [self._foreign_key_entry(r) for r in rows]


def _is_memory(database: Optional[str]) -> bool:
    return not database or database == ":memory:" or "mode=memory" in database
