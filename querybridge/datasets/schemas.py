from __future__ import annotations

import json
from typing import Any, List, Literal, Mapping, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from querybridge.core.exceptions import ConfigurationError, UnsupportedSourceError
from querybridge.shared.schemas import UNKNOWN_TYPE


SOURCE_TYPES = ("sql", "api", "spreadsheet")
DATASET_TYPES = ("physical", "virtual")

SourceType = Literal["sql", "api", "spreadsheet"]
DatasetType = Literal["physical", "virtual"]

_SOURCE_ALIASES = {
    "database": "sql",
    "http_api": "api",
    "rest": "api",
    "googlesheet": "spreadsheet",
    "googlesheets": "spreadsheet",
    "google_sheets": "spreadsheet",
}

# Connection kinds each dataset source type may point at.
SOURCE_CONNECTION_KINDS = {
    "sql": ("postgres", "mysql", "sqlite"),
    "api": ("http_api",),
    "spreadsheet": ("spreadsheet",),
}


def normalize_source_type(value: str) -> str:
    lowered = (value or "").strip().lower()
    return _SOURCE_ALIASES.get(lowered, lowered)


class ColumnInfo(BaseModel):
    name: str
    type: str = UNKNOWN_TYPE


class Dataset(BaseModel):
    """Logical dataset: a whole table (physical) or query text (virtual) on one connection."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: Optional[str] = None
    source_type: SourceType = "sql"
    dataset_type: DatasetType = "physical"
    connection_id: Optional[str] = None
    table_name: Optional[str] = None
    table_schema: Optional[str] = None
    sql_query: Optional[str] = None
    columns: Optional[List[ColumnInfo]] = Field(default=None, description="Cached column list; recomputed on edit")

    @field_validator("source_type", mode="before")
    @classmethod
    def _normalize_source(cls, v: Any) -> Any:
        return normalize_source_type(v) if isinstance(v, str) else v

    @field_validator("dataset_type", mode="before")
    @classmethod
    def _normalize_dataset_type(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("table_name", "table_schema", "sql_query")
    @classmethod
    def _blank_is_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        return v

    @field_validator("columns", mode="before")
    @classmethod
    def _decode_columns(cls, v: Any) -> Any:
        if isinstance(v, str):
            return json.loads(v) if v.strip() else None
        return v

    @property
    def is_virtual(self) -> bool:
        return self.dataset_type == "virtual"

    @property
    def is_sql(self) -> bool:
        return self.source_type == "sql"

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Dataset":
        source_type = normalize_source_type(str(record.get("source_type") or "sql"))
        if source_type not in SOURCE_TYPES:
            raise UnsupportedSourceError(
                f"Unsupported dataset source type: {record.get('source_type')!r}; expected one of: {', '.join(SOURCE_TYPES)}"
            )
        dataset_type = str(record.get("dataset_type") or "physical").strip().lower()
        if dataset_type not in DATASET_TYPES:
            raise UnsupportedSourceError(
                f"Unsupported dataset type: {record.get('dataset_type')!r}; expected one of: {', '.join(DATASET_TYPES)}"
            )
        fields = {key: record[key] for key in cls.model_fields if key in record}
        fields.update(source_type=source_type, dataset_type=dataset_type)
        if "id" in fields:
            fields["id"] = str(fields["id"])
        if fields.get("connection_id") is not None:
            fields["connection_id"] = str(fields["connection_id"])
        try:
            return cls(**fields)
        except (ValidationError, ValueError) as exc:
            raise ConfigurationError(f"Invalid dataset definition: {exc}") from exc


class DatasetLookup(Protocol):
    """Read access to stored datasets, owned by the persistence layer."""

    async def get_dataset(self, dataset_id: str) -> Optional[Dataset]: ...
