from __future__ import annotations

from typing import Optional

from querybridge.core.exceptions import ConfigurationError
from querybridge.datasets.schemas import Dataset


# Dataset fields whose change invalidates the cached column list.
SHAPE_FIELDS = ("source_type", "dataset_type", "connection_id", "table_name", "table_schema", "sql_query")


def columns_need_refresh(previous: Optional[Dataset], updated: Dataset) -> bool:
    if previous is None or updated.columns is None:
        return True
    return any(getattr(previous, f) != getattr(updated, f) for f in SHAPE_FIELDS)


def wrap_with_limit(sql: str, limit: int, alias: str = "preview_subquery") -> str:
    inner = sql.strip().rstrip(";").rstrip()
    return f"SELECT * FROM ({inner}) AS {alias} LIMIT {max(0, int(limit))}"


def legacy_virtual_dataset(
    connection_id: Optional[str],
    sql_query: Optional[str] = None,
    *,
    saved_query_sql: Optional[str] = None,
    key: Optional[str] = None,
) -> Dataset:
    """Synthesize a virtual dataset for charts that predate datasets.

    Such charts carry a connection id plus either inline SQL or a saved query;
    inline SQL wins when both are present.
    """
    sql = sql_query if sql_query and sql_query.strip() else saved_query_sql
    if not sql or not sql.strip():
        raise ConfigurationError("No query")
    if not connection_id:
        raise ConfigurationError("No connection")
    return Dataset(
        id=f"legacy:{key or connection_id}",
        source_type="sql",
        dataset_type="virtual",
        connection_id=str(connection_id),
        sql_query=sql,
    )
