from __future__ import annotations

from pathlib import Path

import httpx
import pytest

from querybridge.connections.schemas import Connection
from querybridge.connections.services import ConnectionService
from querybridge.core.config import Settings
from querybridge.core.exceptions import ConfigurationError, ConnectivityError
from querybridge.sources.adapters import SourceAdapterRegistry
from querybridge.sources.adapters.http_api import HttpApiAdapter


def _unreachable(tmp_path: Path, connection_id: str = "conn-sqlite") -> Connection:
    return Connection(id=connection_id, kind="sqlite", config={"database": str(tmp_path / "missing" / "x.db")})


@pytest.mark.anyio
async def test_connectivity_failure_evicts_pool(service: ConnectionService, tmp_path: Path) -> None:
    broken = _unreachable(tmp_path)

    with pytest.raises(ConnectivityError, match="Could not connect to SQLite database"):
        await service.execute(broken, "SELECT 1")

    assert broken.id not in service.pools


@pytest.mark.anyio
async def test_failed_connection_test_evicts_cached_pool(
    service: ConnectionService, sqlite_connection: Connection, tmp_path: Path
) -> None:
    await service.execute(sqlite_connection, "SELECT 1")
    assert sqlite_connection.id in service.pools

    result = await service.test_connection(_unreachable(tmp_path, sqlite_connection.id))

    assert result["ok"] is False
    assert sqlite_connection.id not in service.pools


@pytest.mark.anyio
async def test_successful_connection_test_keeps_pool(service: ConnectionService, sqlite_connection: Connection) -> None:
    await service.execute(sqlite_connection, "SELECT 1")

    assert (await service.test_connection(sqlite_connection))["ok"] is True
    assert sqlite_connection.id in service.pools


@pytest.mark.anyio
async def test_edited_connection_gets_new_engine(service: ConnectionService, sqlite_connection: Connection, tmp_path: Path) -> None:
    await service.execute(sqlite_connection, "SELECT 1")
    first = await service.pools.acquire(sqlite_connection)

    moved = sqlite_connection.model_copy(update={"config": sqlite_connection.config.model_copy(update={"database": str(tmp_path / "other.db")})})
    result = await service.execute(moved, "SELECT 2 AS two")

    assert result.rows == [{"two": 2}]
    assert await service.pools.acquire(moved) is not first


@pytest.mark.anyio
async def test_kind_mismatch_and_blank_sql(service: ConnectionService, sqlite_connection: Connection) -> None:
    api = Connection(id="conn-api", kind="http_api", config={"url": "https://api.test"})

    with pytest.raises(ConfigurationError, match="not a SQL database"):
        await service.execute(api, "SELECT 1")
    with pytest.raises(ConfigurationError, match="not an external source"):
        await service.fetch_source(sqlite_connection)
    with pytest.raises(ConfigurationError, match="SQL query is required"):
        await service.execute(sqlite_connection, "   ")


@pytest.mark.anyio
async def test_external_connection_test_and_fetch(settings: Settings) -> None:
    sources = SourceAdapterRegistry()
    sources.register(HttpApiAdapter(transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"items": [{"a": 1}]})), settings=settings))
    service = ConnectionService(sources=sources, settings=settings)
    api = Connection(id="conn-api", kind="http_api", config={"url": "https://api.test"})

    assert (await service.test_connection(api))["ok"] is True
    assert (await service.fetch_source(api)).rows == [{"a": 1}]
    assert len(service.pools) == 0


@pytest.mark.anyio
async def test_forget_drops_engine(service: ConnectionService, sqlite_connection: Connection) -> None:
    await service.execute(sqlite_connection, "SELECT 1")

    assert await service.forget(sqlite_connection.id) is True
    assert await service.forget(sqlite_connection.id) is False
