from __future__ import annotations

import asyncio
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from querybridge.connections.adapters import DialectRegistry, registry as default_dialects
from querybridge.connections.schemas import Connection, SqlConnectionConfig
from querybridge.connections.utils import SQL_KINDS, config_fingerprint
from querybridge.core.config import Settings, get_settings
from querybridge.core.exceptions import UnsupportedSourceError
from querybridge.core.logging import get_logger


logger = get_logger(__name__)

EngineFactory = Callable[[Connection, Settings], AsyncEngine]


class ConnectionPoolRegistry:
    """Owns one pooled ``AsyncEngine`` per SQL connection id.

    Engines are built lazily on first ``acquire`` and rebuilt when the
    connection's parameters change. Callers borrow an engine for a single call
    and never dispose it themselves.
    """

    def __init__(
        self,
        dialects: Optional[DialectRegistry] = None,
        settings: Optional[Settings] = None,
        engine_factory: Optional[EngineFactory] = None,
    ) -> None:
        self.dialects = dialects or default_dialects
        self.settings = settings or get_settings()
        self._engine_factory = engine_factory or self._build_engine
        self._engines: dict[str, tuple[str, AsyncEngine]] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._engines)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._engines

    def _build_engine(self, connection: Connection, settings: Settings) -> AsyncEngine:
        assert isinstance(connection.config, SqlConnectionConfig)
        return self.dialects.require(connection.kind).create_engine(connection.config, settings)

    async def acquire(self, connection: Connection) -> AsyncEngine:
        if connection.kind not in SQL_KINDS:
            raise UnsupportedSourceError(
                f"Connection type {connection.kind!r} is not pooled; expected one of: {', '.join(SQL_KINDS)}"
            )
        fingerprint = f"{connection.kind}:{config_fingerprint(connection.config)}"
        cached = self._engines.get(connection.id)
        if cached is not None and cached[0] == fingerprint:
            return cached[1]

        async with self._lock:
            cached = self._engines.get(connection.id)
            if cached is not None:
                if cached[0] == fingerprint:
                    return cached[1]
                logger.info("Connection parameters changed, rebuilding pool", extra={"connection_id": connection.id})
                del self._engines[connection.id]
                await self._dispose(connection.id, cached[1])
            engine = self._engine_factory(connection, self.settings)
            self._engines[connection.id] = (fingerprint, engine)
            logger.info(
                "Created connection pool",
                extra={"connection_id": connection.id, "kind": connection.kind, "pool_size": self.settings.pool_max_connections},
            )
            return engine

    async def invalidate(self, connection_id: str) -> bool:
        """Evict and dispose the engine for ``connection_id``; returns whether one existed."""

        async with self._lock:
            cached = self._engines.pop(connection_id, None)
            if cached is None:
                return False
            await self._dispose(connection_id, cached[1])
            return True

    async def close_all(self) -> None:
        async with self._lock:
            engines = list(self._engines.items())
            self._engines.clear()
            for connection_id, (_, engine) in engines:
                await self._dispose(connection_id, engine)

    async def _dispose(self, connection_id: str, engine: AsyncEngine) -> None:
        try:
            await engine.dispose()
        except (SQLAlchemyError, OSError):
            logger.warning("Failed to dispose connection pool", exc_info=True, extra={"connection_id": connection_id})
        else:
            logger.info("Disposed connection pool", extra={"connection_id": connection_id})
