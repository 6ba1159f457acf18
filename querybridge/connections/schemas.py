from __future__ import annotations

import json
import re
from typing import Any, Dict, Literal, Mapping, Optional, Protocol, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, SecretStr, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from querybridge.connections.utils import CONNECTION_KINDS, EXTERNAL_KINDS, SQL_KINDS, normalize_kind
from querybridge.core.exceptions import ConfigurationError, UnsupportedSourceError


ConnectionKind = Literal["postgres", "mysql", "sqlite", "http_api", "spreadsheet"]
SslMode = Literal["disable", "allow", "prefer", "require", "verify-ca", "verify-full"]
AuthType = Literal["none", "api_key", "bearer", "basic"]

_SPREADSHEET_ID_RE = re.compile(r"^[a-zA-Z0-9_-]{30,50}$")
_SPREADSHEET_URL_RE = re.compile(r"/spreadsheets/d/([a-zA-Z0-9_-]+)")


class _ConfigModel(BaseModel):
    # Stored configs use snake_case, UI payloads use camelCase; accept both.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore", frozen=True)


class SqlConnectionConfig(_ConfigModel):
    host: Optional[str] = None
    port: Optional[int] = Field(default=None, ge=1, le=65535)
    database: Optional[str] = None
    username: Optional[str] = None
    password: Optional[SecretStr] = None
    ssl: bool = False
    ssl_mode: Optional[SslMode] = None

    @field_validator("host", "database", "username")
    @classmethod
    def _strip(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None


class ApiConnectionConfig(_ConfigModel):
    url: str
    method: str = "GET"
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Any = None
    auth_type: AuthType = "none"
    api_key: Optional[SecretStr] = None
    api_key_location: Literal["header", "query"] = "header"
    api_key_name: Optional[str] = None
    bearer_token: Optional[SecretStr] = None
    username: Optional[str] = None
    password: Optional[SecretStr] = None
    data_path: Optional[str] = None

    @field_validator("url")
    @classmethod
    def _url_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("API URL is required")
        return v

    @field_validator("method")
    @classmethod
    def _upper(cls, v: str) -> str:
        return (v or "GET").strip().upper()

    @field_validator("auth_type", mode="before")
    @classmethod
    def _auth_default(cls, v: Any) -> Any:
        return v or "none"


class SpreadsheetConnectionConfig(_ConfigModel):
    spreadsheet_id: str
    sheet_name: Optional[str] = None
    gid: Optional[str] = Field(default=None, validation_alias=AliasChoices("gid", "sheet_gid", "sheetGid"))
    range: Optional[str] = None
    api_key: Optional[SecretStr] = None

    @field_validator("spreadsheet_id")
    @classmethod
    def _extract_id(cls, v: str) -> str:
        v = extract_spreadsheet_id(v)
        if not v:
            raise ValueError("Spreadsheet ID is required")
        return v

    @field_validator("gid", mode="before")
    @classmethod
    def _gid_as_text(cls, v: Any) -> Any:
        return None if v is None or v == "" else str(v)


ConnectionConfig = Union[SqlConnectionConfig, ApiConnectionConfig, SpreadsheetConnectionConfig]

_CONFIG_TYPES: dict[str, type[_ConfigModel]] = {
    **{kind: SqlConnectionConfig for kind in SQL_KINDS},
    "http_api": ApiConnectionConfig,
    "spreadsheet": SpreadsheetConnectionConfig,
}

# Columns of the stored connection row that carry SQL connectivity parameters.
_FLAT_SQL_COLUMNS = {
    "host": "host",
    "port": "port",
    "database_name": "database",
    "database": "database",
    "username": "username",
    "password": "password",
    "ssl": "ssl",
}


class Connection(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: Optional[str] = None
    kind: ConnectionKind
    config: ConnectionConfig

    @field_validator("kind", mode="before")
    @classmethod
    def _normalize_kind(cls, v: Any) -> Any:
        return normalize_kind(v) if isinstance(v, str) else v

    @field_validator("config", mode="before")
    @classmethod
    def _decode_config(cls, v: Any, info) -> Any:
        kind = info.data.get("kind")
        config_type = _CONFIG_TYPES.get(kind or "")
        if config_type is None or isinstance(v, config_type):
            return v
        if isinstance(v, str):
            v = json.loads(v) if v.strip() else {}
        if isinstance(v, BaseModel):
            v = v.model_dump()
        return config_type.model_validate(v or {})

    @property
    def is_sql(self) -> bool:
        return self.kind in SQL_KINDS

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Connection":
        """Decode a stored connection row into a typed ``Connection``.

        The row may carry its config as JSON text and, for SQL kinds, as flat
        columns (``host``, ``database_name``...). Decoding happens once here so the
        rest of the package only ever sees typed configs.
        """
        raw_kind = record.get("kind") or record.get("type") or ""
        kind = normalize_kind(str(raw_kind))
        if kind not in CONNECTION_KINDS:
            raise UnsupportedSourceError(
                f"Unsupported connection type: {raw_kind!r}; expected one of: {', '.join(CONNECTION_KINDS)}"
            )

        config: Any = record.get("config")
        if isinstance(config, str):
            try:
                config = json.loads(config) if config.strip() else {}
            except json.JSONDecodeError as exc:
                raise ConfigurationError(f"Connection config is not valid JSON: {exc.msg}") from exc
        config = dict(config or {})
        if kind not in EXTERNAL_KINDS:
            for column, key in _FLAT_SQL_COLUMNS.items():
                value = record.get(column)
                if value is not None and key not in config:
                    config[key] = bool(value) if key == "ssl" else value

        if record.get("id") is None:
            raise ConfigurationError("Connection record has no id")
        try:
            typed = _CONFIG_TYPES[kind].model_validate(config)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid {kind} connection config: {_describe_validation(exc)}") from exc
        return cls(id=str(record["id"]), name=record.get("name"), kind=kind, config=typed)


def extract_spreadsheet_id(url_or_id: str) -> str:
    value = (url_or_id or "").strip()
    if _SPREADSHEET_ID_RE.match(value):
        return value
    match = _SPREADSHEET_URL_RE.search(value)
    return match.group(1) if match else value


def _describe_validation(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors(include_input=False):
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "; ".join(parts)


class ConnectionLookup(Protocol):
    """Read access to stored connections, owned by the persistence layer."""

    async def get_connection(self, connection_id: str) -> Optional[Connection]: ...
