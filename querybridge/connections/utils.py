from __future__ import annotations

import hashlib
import json
from typing import Any, Iterable

from pydantic import BaseModel, SecretStr


REDACTED = "__REDACTED__"

SQL_KINDS = ("postgres", "mysql", "sqlite")
EXTERNAL_KINDS = ("http_api", "spreadsheet")
CONNECTION_KINDS = SQL_KINDS + EXTERNAL_KINDS

_KIND_ALIASES = {
    "postgresql": "postgres",
    "pg": "postgres",
    "mariadb": "mysql",
    "sqlite3": "sqlite",
    "api": "http_api",
    "rest": "http_api",
    "googlesheet": "spreadsheet",
    "googlesheets": "spreadsheet",
    "google_sheets": "spreadsheet",
}


def normalize_kind(kind: str) -> str:
    lowered = (kind or "").strip().lower()
    return _KIND_ALIASES.get(lowered, lowered)


def iter_secrets(config: BaseModel) -> Iterable[str]:
    for value in config.__dict__.values():
        if isinstance(value, SecretStr):
            secret = value.get_secret_value()
            if secret:
                yield secret


def redact_config(config: BaseModel) -> dict:
    """Plain dict view of a config with every secret replaced by ``REDACTED``."""

    redacted: dict[str, Any] = {}
    for key, value in config.__dict__.items():
        if isinstance(value, SecretStr):
            redacted[key] = REDACTED if value.get_secret_value() else None
        elif key == "headers" and isinstance(value, dict):
            redacted[key] = {h: REDACTED for h in value}
        else:
            redacted[key] = value
    return redacted


def scrub_secrets(message: str, config: BaseModel) -> str:
    for secret in iter_secrets(config):
        message = message.replace(secret, REDACTED)
    return message


def config_fingerprint(config: BaseModel) -> str:
    """Stable digest of a config including secret values; used to detect edits."""

    payload: dict[str, Any] = {}
    for key, value in config.__dict__.items():
        payload[key] = value.get_secret_value() if isinstance(value, SecretStr) else value
    raw = json.dumps(payload, sort_keys=True, default=str).encode("utf-8")
    return hashlib.sha256(raw).hexdigest()
