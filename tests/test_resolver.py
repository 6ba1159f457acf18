from __future__ import annotations

import httpx
import pytest

from conftest import FakeConnections, FakeDatasets
from querybridge.connections.schemas import Connection
from querybridge.connections.services import ConnectionService
from querybridge.core.config import Settings
from querybridge.core.exceptions import ConfigurationError, ExecutionError
from querybridge.datasets.schemas import ColumnInfo, Dataset
from querybridge.datasets.services import DatasetResolver
from querybridge.sources.adapters import SourceAdapterRegistry
from querybridge.sources.adapters.http_api import HttpApiAdapter


FILTERED_SQL = (
    "SELECT id, amount FROM orders WHERE 1=1"
    "{% if filters.status %} AND status = '{{ filters.status | safe_string }}'{% endif %}"
    "{% if filters.min_amount %} AND amount >= {{ filters.min_amount | safe_number }}{% endif %}"
    " ORDER BY id;"
)


@pytest.fixture
def resolver(service: ConnectionService, sqlite_connection: Connection, postgres_connection: Connection, settings: Settings) -> DatasetResolver:
    return DatasetResolver(FakeConnections(sqlite_connection, postgres_connection), service=service, settings=settings)


def _physical(**overrides) -> Dataset:
    return Dataset(id="ds-orders", connection_id="conn-sqlite", table_name="orders", **overrides)


def _virtual(sql: str = FILTERED_SQL) -> Dataset:
    return Dataset(id="ds-filtered", connection_id="conn-sqlite", dataset_type="virtual", sql_query=sql)


@pytest.mark.anyio
async def test_physical_dataset_reads_whole_table(resolver: DatasetResolver) -> None:
    result = await resolver.resolve(_physical())

    assert result.row_count == 5
    assert [f.name for f in result.fields] == ["id", "customer_id", "customer", "amount", "status", "created_at"]


@pytest.mark.anyio
async def test_build_query_qualifies_schema(resolver: DatasetResolver) -> None:
    dataset = Dataset(id="pg", connection_id="conn-pg", table_name="orders", table_schema="public")

    assert await resolver.build_query(dataset) == 'SELECT * FROM "public"."orders"'


@pytest.mark.anyio
async def test_virtual_dataset_applies_filters(resolver: DatasetResolver) -> None:
    paid = await resolver.resolve(_virtual(), {"status": "paid"})
    big_paid = await resolver.resolve(_virtual(), {"status": "paid", "min_amount": "40"})
    unfiltered = await resolver.resolve(_virtual())

    assert [r["id"] for r in paid.rows] == [1, 3, 5]
    assert [r["id"] for r in big_paid.rows] == [1, 3]
    assert unfiltered.row_count == 5


@pytest.mark.anyio
async def test_injection_attempt_stays_a_literal(resolver: DatasetResolver) -> None:
    result = await resolver.resolve(_virtual(), {"status": "paid' OR '1'='1"})

    assert result.row_count == 0


@pytest.mark.anyio
async def test_limit_wraps_virtual_query(resolver: DatasetResolver) -> None:
    sql = await resolver.build_query(_virtual(), {"status": "paid"})
    assert sql.endswith("ORDER BY id;")

    result = await resolver.resolve(_virtual(), {"status": "paid"}, limit=2)
    assert [r["id"] for r in result.rows] == [1, 3]


@pytest.mark.anyio
async def test_preview_uses_configured_limit(resolver: DatasetResolver) -> None:
    assert (await resolver.preview(_physical())).row_count == 3
    assert (await resolver.preview(_virtual())).row_count == 3


@pytest.mark.anyio
async def test_plain_sql_is_not_rendered(resolver: DatasetResolver) -> None:
    # no template markers, so the braces-free text runs untouched
    result = await resolver.resolve(_virtual("SELECT COUNT(*) AS n FROM orders WHERE status = 'refunded'"))

    assert result.rows == [{"n": 1}]


@pytest.mark.anyio
async def test_execution_failure_propagates(resolver: DatasetResolver) -> None:
    with pytest.raises(ExecutionError):
        await resolver.resolve(_virtual("SELECT nope FROM orders"))


@pytest.mark.anyio
async def test_configuration_errors(resolver: DatasetResolver) -> None:
    with pytest.raises(ConfigurationError, match="has no connection"):
        await resolver.resolve(Dataset(id="d", table_name="orders"))
    with pytest.raises(ConfigurationError, match="not found"):
        await resolver.resolve(Dataset(id="d", connection_id="gone", table_name="orders"))
    with pytest.raises(ConfigurationError, match="has no SQL query"):
        await resolver.resolve(Dataset(id="d", connection_id="conn-sqlite", dataset_type="virtual"))
    with pytest.raises(ConfigurationError, match="has no table name"):
        await resolver.resolve(Dataset(id="d", connection_id="conn-sqlite"))
    with pytest.raises(ConfigurationError, match="is a api dataset but connection conn-sqlite"):
        await resolver.resolve(Dataset(id="d", source_type="api", connection_id="conn-sqlite"))


@pytest.mark.anyio
async def test_resolve_by_id(service: ConnectionService, sqlite_connection: Connection, settings: Settings) -> None:
    resolver = DatasetResolver(
        FakeConnections(sqlite_connection), service=service, datasets=FakeDatasets(_physical()), settings=settings
    )

    assert (await resolver.resolve_by_id("ds-orders", limit=1)).row_count == 1
    with pytest.raises(ConfigurationError, match="Dataset missing not found"):
        await resolver.resolve_by_id("missing")


@pytest.mark.anyio
async def test_resolve_by_id_without_lookup(resolver: DatasetResolver) -> None:
    with pytest.raises(ConfigurationError, match="No dataset lookup"):
        await resolver.resolve_by_id("ds-orders")


@pytest.mark.anyio
async def test_api_dataset_ignores_filters_and_truncates(settings: Settings) -> None:
    sources = SourceAdapterRegistry()
    sources.register(HttpApiAdapter(transport=httpx.MockTransport(lambda r: httpx.Response(200, json=[{"n": i} for i in range(6)])), settings=settings))
    api = Connection(id="conn-api", kind="http_api", config={"url": "https://api.test/numbers"})
    service = ConnectionService(sources=sources, settings=settings)
    resolver = DatasetResolver(FakeConnections(api), service=service, settings=settings)
    dataset = Dataset(id="ds-api", source_type="api", connection_id="conn-api")

    try:
        assert (await resolver.resolve(dataset, {"status": "ignored"})).row_count == 6
        assert (await resolver.preview(dataset)).rows == [{"n": 0}, {"n": 1}, {"n": 2}]
        assert await resolver.discover_columns(dataset) == [ColumnInfo(name="n", type="text")]
        with pytest.raises(ConfigurationError, match="has no SQL"):
            await resolver.build_query(dataset)
    finally:
        await service.close()


@pytest.mark.anyio
async def test_discover_columns_physical(resolver: DatasetResolver) -> None:
    columns = await resolver.discover_columns(_physical())

    assert columns == [
        ColumnInfo(name="id", type="int8"),
        ColumnInfo(name="customer_id", type="int8"),
        ColumnInfo(name="customer", type="text"),
        ColumnInfo(name="amount", type="float8"),
        ColumnInfo(name="status", type="text"),
        ColumnInfo(name="created_at", type="date"),
    ]


@pytest.mark.anyio
async def test_discover_columns_virtual_renders_without_filters(resolver: DatasetResolver) -> None:
    columns = await resolver.discover_columns(_virtual())

    assert [c.name for c in columns] == ["id", "amount"]


@pytest.mark.anyio
async def test_json_literal_keeps_its_colons(resolver: DatasetResolver) -> None:
    result = await resolver.resolve(_virtual("""SELECT json_extract('{"a":1}', '$.a') AS v"""))

    assert result.rows == [{"v": 1}]


@pytest.mark.anyio
async def test_filter_value_with_colon_word_is_plain_text(resolver: DatasetResolver) -> None:
    sql = await resolver.build_query(_virtual(), {"status": "ref (:urgent)"})
    result = await resolver.resolve(_virtual(), {"status": "ref (:urgent)"})

    assert "status = 'ref (:urgent)'" in sql
    assert result.row_count == 0
