from __future__ import annotations

import asyncio
from typing import Any, Iterable, Mapping, Optional, Union

from pydantic import ValidationError

from querybridge.core.config import Settings, get_settings
from querybridge.core.exceptions import ConfigurationError, QueryBridgeError
from querybridge.core.logging import get_logger
from querybridge.dashboards.schemas import FanoutItem, FanoutOutcome
from querybridge.datasets.services import DatasetResolver


logger = get_logger(__name__)

GENERIC_FAILURE = "Failed to fetch data"


class FanoutAggregator:
    """Fetches many datasets concurrently, isolating each item's failure in its own outcome."""

    def __init__(self, resolver: DatasetResolver, max_concurrency: Optional[int] = None, settings: Optional[Settings] = None) -> None:
        self.resolver = resolver
        settings = settings or get_settings()
        self.max_concurrency = max_concurrency or settings.fanout_max_concurrency

    async def fetch_all(self, items: Iterable[Union[FanoutItem, Mapping[str, Any]]]) -> list[FanoutOutcome]:
        """One outcome per item, in input order; never raises for a single item's failure."""

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _bounded(raw: Union[FanoutItem, Mapping[str, Any]]) -> FanoutOutcome:
            async with semaphore:
                return await self._fetch_one(raw)

        return list(await asyncio.gather(*(_bounded(raw) for raw in items)))

    async def _fetch_one(self, raw: Union[FanoutItem, Mapping[str, Any]]) -> FanoutOutcome:
        key = raw.key if isinstance(raw, FanoutItem) else str(raw.get("key", ""))
        try:
            item = raw if isinstance(raw, FanoutItem) else _coerce_item(raw)
            if item.dataset is not None:
                result = await self.resolver.resolve(item.dataset, item.filter_context)
            else:
                assert item.dataset_id is not None
                result = await self.resolver.resolve_by_id(item.dataset_id, item.filter_context)
        except QueryBridgeError as exc:
            logger.warning("Fan-out item failed: %s", exc.message, extra={"key": key, "code": exc.code})
            return FanoutOutcome(key=key, error=exc.message, error_code=exc.code)
        except Exception:
            logger.exception("Unexpected fan-out failure", extra={"key": key})
            return FanoutOutcome(key=key, error=GENERIC_FAILURE, error_code=QueryBridgeError.code)
        return FanoutOutcome(key=key, result=result)


def _coerce_item(raw: Mapping[str, Any]) -> FanoutItem:
    try:
        return FanoutItem.model_validate(raw)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid fan-out item: {exc.errors(include_input=False)[0]['msg']}") from exc
