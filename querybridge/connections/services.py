from __future__ import annotations

from typing import Any, Awaitable, Callable, Mapping, Optional, TypeVar

from sqlalchemy.ext.asyncio import AsyncEngine

from querybridge.connections.adapters import DialectRegistry, registry as default_dialects
from querybridge.connections.adapters.base import SqlDialect
from querybridge.connections.pool import ConnectionPoolRegistry
from querybridge.connections.schemas import Connection, SqlConnectionConfig
from querybridge.connections.utils import EXTERNAL_KINDS, SQL_KINDS
from querybridge.core.config import Settings, get_settings
from querybridge.core.exceptions import ConfigurationError, ConnectivityError
from querybridge.core.logging import get_logger
from querybridge.shared.schemas import QueryResult
from querybridge.sources.adapters import SourceAdapterRegistry, registry as default_sources
from querybridge.sources.adapters.base import ExternalSourceAdapter


logger = get_logger(__name__)

T = TypeVar("T")


class ConnectionService:
    """Single entry point for talking to a registered connection.

    SQL kinds go through a pooled engine and their dialect; external kinds go
    through a stateless source adapter. A connectivity failure on a pooled
    engine evicts that engine so the next call reconnects.
    """

    def __init__(
        self,
        pools: Optional[ConnectionPoolRegistry] = None,
        dialects: Optional[DialectRegistry] = None,
        sources: Optional[SourceAdapterRegistry] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.dialects = dialects or default_dialects
        self.sources = sources or default_sources
        self.pools = pools or ConnectionPoolRegistry(self.dialects, self.settings)

    def dialect_for(self, connection: Connection) -> SqlDialect:
        if connection.kind not in SQL_KINDS:
            raise ConfigurationError(f"Connection {connection.id} is a {connection.kind} connection, not a SQL database")
        return self.dialects.require(connection.kind)

    def source_for(self, connection: Connection) -> ExternalSourceAdapter:
        if connection.kind not in EXTERNAL_KINDS:
            raise ConfigurationError(f"Connection {connection.id} is a {connection.kind} database, not an external source")
        return self.sources.require(connection.kind)

    async def _with_engine(self, connection: Connection, call: Callable[[SqlDialect, AsyncEngine], Awaitable[T]]) -> T:
        dialect = self.dialect_for(connection)
        engine = await self.pools.acquire(connection)
        try:
            return await call(dialect, engine)
        except ConnectivityError as exc:
            logger.warning("Connectivity failure, evicting pool: %s", exc.message, extra={"connection_id": connection.id, "kind": connection.kind})
            await self.pools.invalidate(connection.id)
            raise

    async def test_connection(self, connection: Connection) -> dict:
        if connection.kind in SQL_KINDS:
            assert isinstance(connection.config, SqlConnectionConfig)
            result = await self.dialect_for(connection).test(connection.config, self.settings)
            if not result["ok"]:
                # a cached pool may hold the stale credentials that just failed
                await self.pools.invalidate(connection.id)
            return result
        return await self.source_for(connection).test(connection.config)

    async def execute(self, connection: Connection, sql: str, params: Optional[Mapping[str, Any]] = None) -> QueryResult:
        if not sql or not sql.strip():
            raise ConfigurationError("SQL query is required")
        return await self._with_engine(connection, lambda dialect, engine: dialect.execute(engine, sql, params))

    async def fetch_source(self, connection: Connection) -> QueryResult:
        return await self.source_for(connection).fetch(connection.config)

    # Schema explorer
    async def list_tables(self, connection: Connection) -> list[dict]:
        return await self._with_engine(connection, lambda dialect, engine: dialect.list_tables(engine))

    async def search_tables(self, connection: Connection, pattern: str) -> list[dict]:
        return await self._with_engine(connection, lambda dialect, engine: dialect.search_tables(engine, pattern or ""))

    async def get_columns(self, connection: Connection, table: str, schema: Optional[str] = None) -> list[dict]:
        return await self._with_engine(connection, lambda dialect, engine: dialect.get_columns(engine, table, schema))

    async def get_foreign_keys(self, connection: Connection, table: str, schema: Optional[str] = None) -> list[dict]:
        return await self._with_engine(connection, lambda dialect, engine: dialect.get_foreign_keys(engine, table, schema))

    async def get_table_stats(self, connection: Connection, table: str, schema: Optional[str] = None) -> dict:
        async def _stats(dialect: SqlDialect, engine: AsyncEngine) -> dict:
            columns = await dialect.get_columns(engine, table, schema)
            row_count = await dialect.count_rows(engine, table, schema)
            return {
                "table": table,
                "schema": schema or dialect.default_schema,
                "row_count": row_count,
                "column_count": len(columns),
            }

        return await self._with_engine(connection, _stats)

    async def get_sample_data(
        self, connection: Connection, table: str, schema: Optional[str] = None, limit: int = 10
    ) -> QueryResult:
        limit = max(1, min(int(limit), self.settings.sample_row_limit_max))
        return await self._with_engine(
            connection, lambda dialect, engine: dialect.execute(engine, dialect.select_all(table, schema, limit))
        )

    # Lifecycle
    async def forget(self, connection_id: str) -> bool:
        """Drop any pooled engine for a connection that was edited or deleted."""
        return await self.pools.invalidate(connection_id)

    async def close(self) -> None:
        await self.pools.close_all()
