from __future__ import annotations

from typing import Any, Mapping, Optional

from querybridge.connections.adapters.base import SqlDialect
from querybridge.connections.schemas import Connection, ConnectionLookup
from querybridge.connections.services import ConnectionService
from querybridge.core.config import Settings, get_settings
from querybridge.core.exceptions import ConfigurationError
from querybridge.core.logging import get_logger
from querybridge.datasets.schemas import SOURCE_CONNECTION_KINDS, ColumnInfo, Dataset, DatasetLookup
from querybridge.datasets.templating import FilterTemplateEngine
from querybridge.datasets.utils import wrap_with_limit
from querybridge.shared.schemas import QueryResult


logger = get_logger(__name__)

FilterContext = Mapping[str, Any]


class DatasetResolver:
    """Turns a dataset definition into a ``QueryResult`` from its single source.

    Physical SQL datasets read the whole table; virtual ones run their
    (optionally templated) query text; API and spreadsheet datasets fetch
    through the external source adapters and ignore filters.
    """

    def __init__(
        self,
        connections: ConnectionLookup,
        service: Optional[ConnectionService] = None,
        templates: Optional[FilterTemplateEngine] = None,
        datasets: Optional[DatasetLookup] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.connections = connections
        self.service = service or ConnectionService(settings=self.settings)
        self.templates = templates or FilterTemplateEngine()
        self.datasets = datasets

    async def connection_for(self, dataset: Dataset) -> Connection:
        if not dataset.connection_id:
            raise ConfigurationError(f"Dataset {dataset.id} has no connection")
        connection = await self.connections.get_connection(dataset.connection_id)
        if connection is None:
            raise ConfigurationError(f"Connection {dataset.connection_id} not found")
        allowed = SOURCE_CONNECTION_KINDS[dataset.source_type]
        if connection.kind not in allowed:
            raise ConfigurationError(
                f"Dataset {dataset.id} is a {dataset.source_type} dataset but connection "
                f"{connection.id} is a {connection.kind} connection"
            )
        return connection

    def _sql_text(self, dataset: Dataset, filter_context: Optional[FilterContext]) -> str:
        if not dataset.sql_query:
            raise ConfigurationError(f"Virtual dataset {dataset.id} has no SQL query")
        if self.templates.has_template_variables(dataset.sql_query):
            return self.templates.render(dataset.sql_query, filter_context)
        return dataset.sql_query

    def _build_sql(
        self,
        dataset: Dataset,
        dialect: SqlDialect,
        filter_context: Optional[FilterContext] = None,
        limit: Optional[int] = None,
    ) -> str:
        if dataset.is_virtual:
            sql = self._sql_text(dataset, filter_context)
            return wrap_with_limit(sql, limit) if limit is not None else sql
        if not dataset.table_name:
            raise ConfigurationError(f"Physical dataset {dataset.id} has no table name")
        return dialect.select_all(dataset.table_name, dataset.table_schema, limit)

    async def build_query(self, dataset: Dataset, filter_context: Optional[FilterContext] = None) -> str:
        """The SQL text ``resolve`` would run for ``dataset``, without running it."""

        if not dataset.is_sql:
            raise ConfigurationError(f"Dataset {dataset.id} is a {dataset.source_type} dataset and has no SQL")
        connection = await self.connection_for(dataset)
        return self._build_sql(dataset, self.service.dialect_for(connection), filter_context)

    async def resolve(
        self,
        dataset: Dataset,
        filter_context: Optional[FilterContext] = None,
        *,
        limit: Optional[int] = None,
    ) -> QueryResult:
        connection = await self.connection_for(dataset)
        logger.debug(
            "Resolving dataset",
            extra={"dataset_id": dataset.id, "connection_id": connection.id, "kind": connection.kind},
        )
        if dataset.is_sql:
            sql = self._build_sql(dataset, self.service.dialect_for(connection), filter_context, limit)
            return await self.service.execute(connection, sql)

        result = await self.service.fetch_source(connection)
        return result.truncated(limit) if limit is not None else result

    async def resolve_by_id(
        self,
        dataset_id: str,
        filter_context: Optional[FilterContext] = None,
        *,
        limit: Optional[int] = None,
    ) -> QueryResult:
        return await self.resolve(await self.get_dataset(dataset_id), filter_context, limit=limit)

    async def get_dataset(self, dataset_id: str) -> Dataset:
        if self.datasets is None:
            raise ConfigurationError("No dataset lookup is configured")
        dataset = await self.datasets.get_dataset(dataset_id)
        if dataset is None:
            raise ConfigurationError(f"Dataset {dataset_id} not found")
        return dataset

    async def preview(self, dataset: Dataset, filter_context: Optional[FilterContext] = None) -> QueryResult:
        return await self.resolve(dataset, filter_context, limit=self.settings.preview_row_limit)

    async def discover_columns(self, dataset: Dataset) -> list[ColumnInfo]:
        """Column names and canonical types, for the dataset's column cache."""

        connection = await self.connection_for(dataset)
        if not dataset.is_sql:
            result = await self.service.fetch_source(connection)
            return [ColumnInfo(name=f.name, type=f.type) for f in result.fields]

        if dataset.is_virtual:
            empty_sql = wrap_with_limit(self._sql_text(dataset, {}), 0, alias="subq")
            result = await self.service.execute(connection, empty_sql)
            return [ColumnInfo(name=f.name, type=f.type) for f in result.fields]

        if not dataset.table_name:
            raise ConfigurationError(f"Physical dataset {dataset.id} has no table name")
        columns = await self.service.get_columns(connection, dataset.table_name, dataset.table_schema)
        return [ColumnInfo(name=c["name"], type=c["canonical_type"]) for c in columns]
