from __future__ import annotations

import time
from typing import Any, Optional

import httpx
from pydantic import BaseModel

from querybridge.core.config import Settings, get_settings
from querybridge.core.exceptions import ConnectivityError, ExecutionError, QueryBridgeError
from querybridge.core.logging import get_logger
from querybridge.shared.schemas import QueryResult
from querybridge.sources.utils import strip_query


logger = get_logger(__name__)

SAMPLE_ROWS = 5


class ExternalSourceAdapter:
    """Base for stateless HTTP-backed sources.

    Every fetch opens its own ``httpx.AsyncClient``; ``transport`` may be
    injected (``httpx.MockTransport`` in tests).
    """

    kind: str
    display_name: str = ""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None, settings: Optional[Settings] = None) -> None:
        self._transport = transport
        self._settings = settings

    @property
    def settings(self) -> Settings:
        return self._settings or get_settings()

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=self._transport,
            timeout=self.settings.http_timeout_s,
            follow_redirects=True,
        )

    async def fetch(self, config: Any) -> QueryResult:  # pragma: no cover - implemented by concrete adapters
        raise NotImplementedError

    async def test(self, config: BaseModel) -> dict:
        try:
            result = await self.fetch(config)
        except QueryBridgeError as exc:
            return {"ok": False, "message": exc.message}
        return {
            "ok": True,
            "message": self.describe_success(result),
            "row_count": result.row_count,
            "sample_data": result.rows[:SAMPLE_ROWS],
            "fields": [f.model_dump() for f in result.fields],
        }

    def describe_success(self, result: QueryResult) -> str:
        return f"Connected successfully. Found {result.row_count} records."

    async def send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Issue one request, mapping transport failures to ``ConnectivityError``."""

        safe_url = strip_query(url)
        started = time.perf_counter()
        logger.info("Fetching external source", extra={"kind": self.kind, "url": safe_url})
        try:
            async with self.client() as client:
                response = await client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise ConnectivityError(f"Request to {safe_url} timed out") from exc
        except httpx.HTTPError as exc:
            raise ConnectivityError(f"Failed to connect to {self.display_name or 'source'}: {safe_url}") from exc
        logger.debug(
            "External source responded",
            extra={
                "kind": self.kind,
                "url": safe_url,
                "status_code": response.status_code,
                "duration_ms": int((time.perf_counter() - started) * 1000),
            },
        )
        return response


def raise_for_status(response: httpx.Response, prefix: str) -> None:
    """Map a non-2xx response: 401/403 are connectivity failures, the rest execution failures."""

    if response.is_success:
        return
    message = f"{prefix}: {response.status_code} {response.reason_phrase}".rstrip()
    if response.status_code in (401, 403):
        raise ConnectivityError(message)
    raise ExecutionError(message)
