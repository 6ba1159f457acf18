"""
Logging helpers shared by every querybridge module.

Modules call :func:`get_logger` with ``__name__`` and pass structured context via
``extra``; the formatter appends those values as ``key=value`` pairs so pool and
fetch events stay greppable without a JSON log pipeline.
"""

from __future__ import annotations

import json
import logging
import sys
from logging import LoggerAdapter
from typing import Any, Iterable, Mapping, Optional

from querybridge.core.config import get_settings

DEFAULT_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Context keys printed first, in this order, when present on a record.
_FOCUS_KEYS = ("connection_id", "kind", "dataset_id", "key", "url", "status_code", "duration_ms")

_RESERVED_ATTRS = set(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {"message", "asctime"}

_configured = False


def _iter_extras(record: logging.LogRecord) -> Iterable[tuple[str, Any]]:
    payload = {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RESERVED_ATTRS and not key.startswith("_") and value is not None
    }
    for key in _FOCUS_KEYS:
        if key in payload:
            yield key, payload.pop(key)
    for key in sorted(payload):
        yield key, payload[key]


def _format_value(value: Any) -> str:
    if isinstance(value, Mapping):
        try:
            return json.dumps(value, ensure_ascii=False, default=str)
        except TypeError:
            return repr(dict(value))
    if isinstance(value, (list, tuple, set)):
        return "[" + ", ".join(_format_value(item) for item in value) + "]"
    if isinstance(value, float):
        return f"{value:.4g}"
    return str(value)


class StructuredLogFormatter(logging.Formatter):
    """Formatter that appends ``extra`` fields after the message."""

    def __init__(self) -> None:
        super().__init__(DEFAULT_FORMAT, datefmt=DEFAULT_DATE_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        extras = " ".join(f"{key}={_format_value(value)}" for key, value in _iter_extras(record))
        return f"{base} | {extras}" if extras else base


def configure_logging(level: Optional[int | str] = None, *, force: bool = False) -> None:
    """Install the structured stderr handler on the root logger once."""

    global _configured
    if _configured and not force:
        return
    resolved = level if level is not None else get_settings().log_level
    if isinstance(resolved, str):
        resolved = logging.getLevelName(resolved.upper())
        if not isinstance(resolved, int):
            resolved = logging.INFO
    handler = logging.StreamHandler(stream=sys.stderr)
    handler.setFormatter(StructuredLogFormatter())
    logging.basicConfig(level=resolved, handlers=[handler], force=force)
    _configured = True


class ContextLoggerAdapter(LoggerAdapter):
    """Adapter that merges its bound context with per-call ``extra``."""

    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        kwargs["extra"] = {**(self.extra or {}), **(kwargs.get("extra") or {})}
        return msg, kwargs


def get_logger(name: str, *, extra: Optional[Mapping[str, object]] = None) -> LoggerAdapter:
    configure_logging()
    context = {key: value for key, value in (extra or {}).items() if value is not None}
    return ContextLoggerAdapter(logging.getLogger(name), context)
