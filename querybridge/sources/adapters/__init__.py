from __future__ import annotations

from typing import Optional

from querybridge.connections.utils import EXTERNAL_KINDS
from querybridge.core.exceptions import UnsupportedSourceError

from .base import ExternalSourceAdapter
from .http_api import HttpApiAdapter
from .spreadsheet import SpreadsheetAdapter


class SourceAdapterRegistry:
    def __init__(self) -> None:
        self._adapters: dict[str, ExternalSourceAdapter] = {}

    def register(self, adapter: ExternalSourceAdapter) -> None:
        self._adapters[adapter.kind] = adapter

    def get(self, kind: str) -> Optional[ExternalSourceAdapter]:
        return self._adapters.get(kind)

    def require(self, kind: str) -> ExternalSourceAdapter:
        adapter = self._adapters.get(kind)
        if adapter is None:
            supported = ", ".join(sorted(self._adapters) or EXTERNAL_KINDS)
            raise UnsupportedSourceError(f"Unsupported external source type: {kind!r}; expected one of: {supported}")
        return adapter

    def list(self) -> list[dict]:
        return [{"kind": k, "display_name": v.display_name, "adapter": type(v).__name__} for k, v in self._adapters.items()]


registry = SourceAdapterRegistry()
registry.register(HttpApiAdapter())
registry.register(SpreadsheetAdapter())
