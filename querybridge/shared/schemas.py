from __future__ import annotations

import time
from typing import Any, Iterable, Mapping, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, model_validator


UNKNOWN_TYPE = "unknown"
TEXT_TYPE = "text"


class FieldInfo(BaseModel):
    name: str
    type: str = UNKNOWN_TYPE


class QueryResult(BaseModel):
    """Canonical tabular result produced by every adapter."""

    model_config = ConfigDict(populate_by_name=True)

    rows: list[dict[str, Any]] = Field(default_factory=list)
    fields: list[FieldInfo] = Field(default_factory=list)
    row_count: int = Field(0, alias="rowCount")
    execution_time: int = Field(0, alias="executionTime", description="Milliseconds")

    @model_validator(mode="after")
    def _check_row_count(self) -> "QueryResult":
        if self.row_count != len(self.rows):
            raise ValueError(f"row_count ({self.row_count}) does not match number of rows ({len(self.rows)})")
        return self

    @classmethod
    def build(
        cls,
        rows: Iterable[Mapping[str, Any]],
        fields: Optional[Sequence[FieldInfo]] = None,
        *,
        started: Optional[float] = None,
        default_type: str = UNKNOWN_TYPE,
    ) -> "QueryResult":
        """Assemble a result, deriving ``fields`` from the first row when the source gave none.

        ``started`` is a ``time.perf_counter()`` reading taken before the fetch.
        """
        materialized = [dict(r) for r in rows]
        if fields is None:
            fields = fields_from_rows(materialized, default_type)
        elapsed = int((time.perf_counter() - started) * 1000) if started is not None else 0
        return cls(rows=materialized, fields=list(fields), row_count=len(materialized), execution_time=elapsed)

    def truncated(self, limit: int) -> "QueryResult":
        rows = self.rows[: max(0, limit)]
        return QueryResult(rows=rows, fields=self.fields, row_count=len(rows), execution_time=self.execution_time)

    def to_contract(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


def fields_from_rows(rows: Sequence[Mapping[str, Any]], type_name: str = UNKNOWN_TYPE) -> list[FieldInfo]:
    if not rows:
        return []
    return [FieldInfo(name=str(name), type=type_name) for name in rows[0].keys()]
