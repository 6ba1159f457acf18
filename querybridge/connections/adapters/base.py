from __future__ import annotations

import asyncio
import re
import time
from typing import Any, Iterable, Mapping, Optional, Sequence

from sqlalchemy import TextClause, text
from sqlalchemy.engine import URL, Connection as SyncConnection
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

from querybridge.connections.schemas import SqlConnectionConfig
from querybridge.connections.type_names import TypeNameResolver
from querybridge.connections.utils import REDACTED
from querybridge.core.config import Settings, get_settings
from querybridge.core.exceptions import ConfigurationError, ConnectivityError, ExecutionError, QueryBridgeError
from querybridge.shared.schemas import FieldInfo, QueryResult


DRIVER_ERRORS = (SQLAlchemyError, OSError, asyncio.TimeoutError)

# Same lookbehind text() uses to spot bind markers; escaped colons are sent literally.
_BIND_MARKER_RE = re.compile(r"(?<![:\w\\]):(?=\w)")


def literal_text(sql: str) -> TextClause:
    """A ``text()`` construct with no bind parameters: every colon reaches the driver as written."""

    return text(_BIND_MARKER_RE.sub(r"\\:", sql))


def _run_statement(sync_conn: SyncConnection, sql: str, params: dict) -> tuple[list[tuple[str, Any]], list[dict]]:
    statement = text(sql) if params else literal_text(sql)
    result = sync_conn.execute(statement, params)
    if not result.returns_rows:
        return [], []
    # Description must be read before the rows are drained.
    columns = [(col[0], col[1]) for col in result.cursor.description]
    rows = [dict(row) for row in result.mappings()]
    return columns, rows


async def _ping(engine: AsyncEngine) -> None:
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1 AS test"))


def _error_text(exc: BaseException) -> str:
    if isinstance(exc, DBAPIError) and exc.orig is not None:
        message = str(exc.orig)
    elif isinstance(exc, asyncio.TimeoutError):
        message = "timed out"
    else:
        message = str(exc)
    return " ".join(message.split()) or exc.__class__.__name__


class SqlDialect:
    """Shared engine construction, execution and error mapping for SQL kinds.

    Subclasses provide the driver name, identifier quoting and the catalog
    queries used for introspection.
    """

    kind: str = ""
    display_name: str = ""
    drivername: str = ""
    default_port: Optional[int] = None
    default_schema: Optional[str] = None
    quote_char: str = '"'

    def __init__(self, type_names: Optional[TypeNameResolver] = None) -> None:
        self.type_names = type_names or TypeNameResolver()

    # Engine construction
    def build_url(self, config: SqlConnectionConfig) -> URL:
        if not config.host or not config.database:
            raise ConfigurationError(f"{self.display_name} connection requires host and database")
        return URL.create(
            self.drivername,
            username=config.username,
            password=config.password.get_secret_value() if config.password else None,
            host=config.host,
            port=config.port or self.default_port,
            database=config.database,
        )

    def connect_args(self, config: SqlConnectionConfig, settings: Settings) -> dict:
        return {}

    def engine_options(self, config: SqlConnectionConfig, settings: Settings) -> dict:
        return {
            "pool_size": settings.pool_max_connections,
            "max_overflow": settings.pool_max_overflow,
            "pool_timeout": settings.pool_acquire_timeout_s,
            "pool_recycle": settings.pool_idle_timeout_s,
            "pool_pre_ping": True,
        }

    def create_engine(
        self,
        config: SqlConnectionConfig,
        settings: Optional[Settings] = None,
        *,
        pooled: bool = True,
    ) -> AsyncEngine:
        settings = settings or get_settings()
        options = self.engine_options(config, settings) if pooled else {"poolclass": NullPool}
        return create_async_engine(
            self.build_url(config),
            connect_args=self.connect_args(config, settings),
            **options,
        )

    # Identifiers
    def quote_identifier(self, name: str) -> str:
        q = self.quote_char
        return f"{q}{name.replace(q, q + q)}{q}"

    def qualified_name(self, table: str, schema: Optional[str] = None) -> str:
        if not table:
            raise ConfigurationError("Table name is required")
        if schema:
            return f"{self.quote_identifier(schema)}.{self.quote_identifier(table)}"
        return self.quote_identifier(table)

    def select_all(self, table: str, schema: Optional[str] = None, limit: Optional[int] = None) -> str:
        sql = f"SELECT * FROM {self.qualified_name(table, schema)}"
        if limit is not None:
            sql += f" LIMIT {max(0, int(limit))}"
        return sql

    # Error mapping
    def is_connectivity_error(self, exc: BaseException) -> bool:
        if isinstance(exc, DBAPIError) and exc.connection_invalidated:
            return True
        return isinstance(exc, (OperationalError, InterfaceError, PoolTimeoutError, OSError, asyncio.TimeoutError))

    def classify_error(self, exc: BaseException, secrets: Iterable[str] = ()) -> QueryBridgeError:
        message = _error_text(exc)
        for secret in secrets:
            if secret:
                message = message.replace(secret, REDACTED)
        if self.is_connectivity_error(exc):
            return ConnectivityError(f"Could not connect to {self.display_name} database: {message}")
        return ExecutionError(f"Query execution failed: {message}")

    def _secrets(self, engine: AsyncEngine) -> tuple[str, ...]:
        password = engine.url.password
        return (str(password),) if password else ()

    # Execution
    async def execute(self, engine: AsyncEngine, sql: str, params: Optional[Mapping[str, Any]] = None) -> QueryResult:
        """Run one statement and normalize its result.

        With ``params``, ``sql`` uses ``:name`` bind markers and the driver renders
        them in its own placeholder style. Without, the text runs as written, so
        literals such as ``'{"qty":5}'`` keep their colons.
        """
        started = time.perf_counter()
        try:
            async with engine.connect() as conn:
                columns, rows = await conn.run_sync(_run_statement, sql, dict(params or {}))
                await conn.commit()
        except DRIVER_ERRORS as exc:
            raise self.classify_error(exc, self._secrets(engine)) from exc
        fields = [FieldInfo(name=str(name), type=self.field_type(type_code, name, rows)) for name, type_code in columns]
        return QueryResult.build(rows, fields, started=started)

    def field_type(self, type_code: Any, column: str, rows: Sequence[Mapping[str, Any]]) -> str:
        return self.type_names.resolve(self.kind, type_code)

    async def fetch_all(self, engine: AsyncEngine, sql: str, params: Optional[Mapping[str, Any]] = None) -> list[dict]:
        try:
            async with engine.connect() as conn:
                result = await conn.execute(text(sql), dict(params or {}))
                return [dict(row) for row in result.mappings()]
        except DRIVER_ERRORS as exc:
            raise self.classify_error(exc, self._secrets(engine)) from exc

    async def test(self, config: SqlConnectionConfig, settings: Optional[Settings] = None) -> dict:
        settings = settings or get_settings()
        start = time.perf_counter()
        engine: Optional[AsyncEngine] = None
        try:
            engine = self.create_engine(config, settings, pooled=False)
            await asyncio.wait_for(_ping(engine), timeout=settings.connect_timeout_s * 2)
            latency_ms = int((time.perf_counter() - start) * 1000)
            return {"ok": True, "message": "Connection successful", "latency_ms": latency_ms}
        except ConfigurationError as exc:
            return {"ok": False, "message": exc.message, "latency_ms": 0, "code": "DS_VALIDATION_ERROR"}
        except DRIVER_ERRORS as exc:
            latency_ms = int((time.perf_counter() - start) * 1000)
            secrets = [config.password.get_secret_value()] if config.password else []
            error = self.classify_error(exc, secrets)
            return {"ok": False, "message": error.message, "latency_ms": latency_ms, "code": self._test_failure_code(exc, error)}
        finally:
            if engine is not None:
                await engine.dispose()

    def _test_failure_code(self, exc: BaseException, error: QueryBridgeError) -> str:
        detail_text = error.message.lower()
        if "authentication failed" in detail_text or "access denied" in detail_text:
            return "DS_AUTH_FAILED"
        if "timeout" in detail_text or "timed out" in detail_text or isinstance(exc, asyncio.TimeoutError):
            return "DS_TIMEOUT"
        if isinstance(error, ConnectivityError):
            return "DS_UNREACHABLE"
        return "DS_QUERY_FAILED"

    # Introspection
    async def list_tables(self, engine: AsyncEngine) -> list[dict]:
        raise NotImplementedError

    async def search_tables(self, engine: AsyncEngine, pattern: str) -> list[dict]:
        raise NotImplementedError

    async def get_columns(self, engine: AsyncEngine, table: str, schema: Optional[str] = None) -> list[dict]:
        raise NotImplementedError

    async def get_foreign_keys(self, engine: AsyncEngine, table: str, schema: Optional[str] = None) -> list[dict]:
        raise NotImplementedError

    async def count_rows(self, engine: AsyncEngine, table: str, schema: Optional[str] = None) -> int:
        rows = await self.fetch_all(engine, f"SELECT COUNT(*) AS row_count FROM {self.qualified_name(table, schema)}")
        return int(rows[0]["row_count"]) if rows else 0

    # Row shaping shared by the catalog queries
    def _table_entry(self, row: Mapping[str, Any]) -> dict:
        table_type = str(row.get("table_type") or "").lower()
        return {
            "schema": row.get("table_schema") or self.default_schema,
            "name": row["table_name"],
            "kind": "view" if "view" in table_type else "table",
        }

    def _column_entry(self, row: Mapping[str, Any], *, declared: str, is_primary_key: bool) -> dict:
        max_length = row.get("character_maximum_length")
        return {
            "name": row["column_name"],
            "type": declared,
            "canonical_type": self.type_names.resolve(self.kind, declared),
            "nullable": _is_nullable(row.get("is_nullable")),
            "default": row.get("column_default"),
            "max_length": int(max_length) if max_length is not None else None,
            "is_primary_key": is_primary_key,
        }

    @staticmethod
    def _foreign_key_entry(row: Mapping[str, Any]) -> dict:
        return {
            "column": row["column_name"],
            "referenced_schema": row.get("referenced_schema"),
            "referenced_table": row["referenced_table"],
            "referenced_column": row["referenced_column"],
            "on_update": row.get("update_rule"),
            "on_delete": row.get("delete_rule"),
        }


def _is_nullable(value: Any) -> bool:
    if isinstance(value, str):
        return value.upper() == "YES"
    return bool(value)
