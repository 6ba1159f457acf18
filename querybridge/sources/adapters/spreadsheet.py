from __future__ import annotations

import time
from urllib.parse import quote

import httpx

from querybridge.connections.schemas import SpreadsheetConnectionConfig
from querybridge.core.exceptions import ConnectivityError, ExecutionError
from querybridge.shared.schemas import TEXT_TYPE, FieldInfo, QueryResult
from querybridge.sources.adapters.base import ExternalSourceAdapter
from querybridge.sources.utils import looks_like_html, parse_csv


SHEETS_API_URL = "https://sheets.googleapis.com/v4/spreadsheets/{spreadsheet_id}/values/{range}"
CSV_EXPORT_URL = "https://docs.google.com/spreadsheets/d/{spreadsheet_id}/export"

NOT_PUBLIC_MESSAGE = "Cannot access spreadsheet. Make sure it's set to \"Anyone with the link can view\"."


class SpreadsheetAdapter(ExternalSourceAdapter):
    """Reads a spreadsheet through the Sheets v4 values API, or its public CSV export when no API key is set."""

    kind = "spreadsheet"
    display_name = "Google Sheets"

    def describe_success(self, result: QueryResult) -> str:
        return f"Connected successfully. Found {result.row_count} rows with {len(result.fields)} columns."

    async def fetch(self, config: SpreadsheetConnectionConfig) -> QueryResult:
        if config.api_key:
            return await self._fetch_values(config)
        return await self._fetch_csv(config)

    async def _fetch_values(self, config: SpreadsheetConnectionConfig) -> QueryResult:
        started = time.perf_counter()
        sheet_range = config.range or f"{config.sheet_name or 'Sheet1'}!A:ZZ"
        url = SHEETS_API_URL.format(spreadsheet_id=config.spreadsheet_id, range=quote(sheet_range, safe=""))
        assert config.api_key is not None
        response = await self.send("GET", url, params={"key": config.api_key.get_secret_value()})

        if response.status_code in (401, 403):
            raise ConnectivityError("Access denied. Make sure the spreadsheet is public or the API key has access.")
        if response.status_code == 404:
            raise ExecutionError("Spreadsheet not found. Check the Spreadsheet ID.")
        if not response.is_success:
            raise ExecutionError(_api_error_message(response))

        try:
            values = response.json().get("values") or []
        except ValueError as exc:
            raise ExecutionError(f"Malformed Sheets API response: {exc}") from exc
        if not values:
            return QueryResult.build([], [], started=started)

        headers = [str(h) if h not in (None, "") else f"Column{i + 1}" for i, h in enumerate(values[0])]
        rows = [
            {header: row[i] if i < len(row) else "" for i, header in enumerate(headers)}
            for row in values[1:]
        ]
        fields = [FieldInfo(name=h, type=TEXT_TYPE) for h in headers]
        return QueryResult.build(rows, fields, started=started)

    async def _fetch_csv(self, config: SpreadsheetConnectionConfig) -> QueryResult:
        started = time.perf_counter()
        url = CSV_EXPORT_URL.format(spreadsheet_id=config.spreadsheet_id)
        response = await self.send("GET", url, params={"format": "csv", "gid": config.gid or "0"})

        if response.status_code == 404:
            raise ExecutionError("Spreadsheet not found. Check the Spreadsheet ID and make sure it's publicly accessible.")
        if response.status_code in (401, 403):
            raise ConnectivityError(NOT_PUBLIC_MESSAGE)
        if not response.is_success:
            raise ExecutionError(f"Failed to fetch spreadsheet: {response.status_code}")

        body = response.text
        # private sheets answer 200 with a sign-in page
        if looks_like_html(body):
            raise ConnectivityError(NOT_PUBLIC_MESSAGE)
        return QueryResult.build(parse_csv(body), started=started, default_type=TEXT_TYPE)


def _api_error_message(response: httpx.Response) -> str:
    try:
        message = (response.json().get("error") or {}).get("message")
    except (ValueError, AttributeError):
        message = None
    return message or f"Sheets API error: {response.status_code}"
