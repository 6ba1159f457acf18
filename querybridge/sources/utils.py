from __future__ import annotations

import csv
import io
import json
from typing import Any, Optional
from urllib.parse import urlsplit, urlunsplit

from querybridge.core.exceptions import ExecutionError


CONVENTIONAL_ARRAY_KEYS = ("data", "items", "results", "records", "rows", "entries")


def strip_query(url: str) -> str:
    """URL without query string or fragment, safe to log and show in errors."""

    parts = urlsplit(url)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


def follow_path(payload: Any, data_path: Optional[str]) -> Any:
    """Value at a dotted path, or ``None`` as soon as a segment cannot be followed."""

    if not data_path:
        return payload
    current = payload
    for part in data_path.split("."):
        if isinstance(current, dict):
            current = current.get(part)
        elif isinstance(current, list) and part.isdigit():
            index = int(part)
            current = current[index] if index < len(current) else None
        else:
            return None
    return current


def _as_row(item: Any) -> dict:
    return dict(item) if isinstance(item, dict) else {"value": item}


def normalize_to_rows(payload: Any, data_path: Optional[str] = None) -> list[dict]:
    """Coerce a decoded JSON body into a list of row dicts.

    ``data_path`` is followed first; then a top-level list is used as is, or
    the first conventional array key (``data``, ``items``...) of an object.
    Any other object becomes a single row. Scalar members are wrapped as
    ``{"value": x}``.
    """
    data = follow_path(payload, data_path)
    if isinstance(data, list):
        return [_as_row(item) for item in data]
    if isinstance(data, dict):
        for key in CONVENTIONAL_ARRAY_KEYS:
            if isinstance(data.get(key), list):
                return [_as_row(item) for item in data[key]]
        return [dict(data)]
    return []


def parse_csv(body: str) -> list[dict]:
    """Parse CSV text with a header row; quoted fields may hold commas, quotes and newlines."""

    text = body.strip()
    if not text:
        return []
    reader = csv.reader(io.StringIO(text))
    headers: Optional[list[str]] = None
    rows: list[dict] = []
    for record in reader:
        if not any(value.strip() for value in record):
            continue
        values = [value.strip() for value in record]
        if headers is None:
            headers = values
            continue
        rows.append({header: values[i] if i < len(values) else "" for i, header in enumerate(headers)})
    return rows


def looks_like_html(body: str) -> bool:
    head = body.lstrip()[:64].lower()
    return head.startswith("<!doctype") or head.startswith("<html")


def decode_body(body: str, content_type: str) -> Any:
    """Decode a response body by content type: JSON, CSV, or JSON as a fallback."""

    content_type = (content_type or "").lower()
    if "text/csv" in content_type or "application/csv" in content_type:
        return parse_csv(body)
    try:
        return json.loads(body)
    except ValueError as exc:
        if "json" in content_type:
            raise ExecutionError(f"Malformed JSON response: {exc}") from exc
        raise ExecutionError("Unsupported response format. Expected JSON or CSV.") from exc
