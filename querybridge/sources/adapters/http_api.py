from __future__ import annotations

import time
from typing import Any

import httpx

from querybridge.connections.schemas import ApiConnectionConfig
from querybridge.shared.schemas import TEXT_TYPE, QueryResult
from querybridge.sources.adapters.base import ExternalSourceAdapter, raise_for_status
from querybridge.sources.utils import decode_body, normalize_to_rows


BODY_METHODS = ("POST", "PUT", "PATCH")
DEFAULT_KEY_HEADER = "X-API-Key"
DEFAULT_KEY_PARAM = "api_key"


class HttpApiAdapter(ExternalSourceAdapter):
    kind = "http_api"
    display_name = "API"

    def build_request(self, config: ApiConnectionConfig) -> dict[str, Any]:
        headers = {"Accept": "application/json, text/csv;q=0.9, */*;q=0.1", **config.headers}
        params: dict[str, str] = {}
        request: dict[str, Any] = {"method": config.method, "url": config.url}

        if config.auth_type == "api_key" and config.api_key:
            key = config.api_key.get_secret_value()
            if config.api_key_location == "query":
                params[config.api_key_name or DEFAULT_KEY_PARAM] = key
            else:
                headers[config.api_key_name or DEFAULT_KEY_HEADER] = key
        elif config.auth_type == "bearer" and config.bearer_token:
            headers["Authorization"] = f"Bearer {config.bearer_token.get_secret_value()}"
        elif config.auth_type == "basic" and config.username and config.password:
            request["auth"] = httpx.BasicAuth(config.username, config.password.get_secret_value())

        if config.body is not None and config.method in BODY_METHODS:
            if isinstance(config.body, str):
                request["content"] = config.body
                headers.setdefault("Content-Type", "application/json")
            else:
                request["json"] = config.body

        request["headers"] = headers
        if params:
            request["params"] = params
        return request

    async def fetch(self, config: ApiConnectionConfig) -> QueryResult:
        started = time.perf_counter()
        request = self.build_request(config)
        response = await self.send(**request)
        raise_for_status(response, "API request failed")
        payload = decode_body(response.text, response.headers.get("content-type", ""))
        rows = normalize_to_rows(payload, config.data_path)
        return QueryResult.build(rows, started=started, default_type=TEXT_TYPE)
