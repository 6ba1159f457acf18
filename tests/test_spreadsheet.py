from __future__ import annotations

import httpx
import pytest

from querybridge.connections.schemas import SpreadsheetConnectionConfig
from querybridge.core.config import Settings
from querybridge.core.exceptions import ConnectivityError, ExecutionError
from querybridge.sources.adapters.spreadsheet import NOT_PUBLIC_MESSAGE, SpreadsheetAdapter


SHEET_ID = "1BxiMVs0XRA5nFMdKvBdBZjgmUUqptlbs74OgvE2upms"


def _adapter(handler, settings: Settings) -> SpreadsheetAdapter:
    return SpreadsheetAdapter(transport=httpx.MockTransport(handler), settings=settings)


@pytest.mark.anyio
async def test_values_api_fills_blank_headers_and_short_rows(settings: Settings) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"values": [["Region", "", "Total"], ["North", "x", "10"], ["South"]]})

    config = SpreadsheetConnectionConfig(spreadsheet_id=SHEET_ID, sheet_name="Q1 Sales", api_key="AIza-key")
    result = await _adapter(handler, settings).fetch(config)

    assert [f.name for f in result.fields] == ["Region", "Column2", "Total"]
    assert all(f.type == "text" for f in result.fields)
    assert result.rows == [
        {"Region": "North", "Column2": "x", "Total": "10"},
        {"Region": "South", "Column2": "", "Total": ""},
    ]
    assert seen[0].url.host == "sheets.googleapis.com"
    assert seen[0].url.path.endswith("/values/Q1 Sales!A:ZZ")
    assert seen[0].url.params["key"] == "AIza-key"


@pytest.mark.anyio
async def test_values_api_empty_sheet(settings: Settings) -> None:
    adapter = _adapter(lambda request: httpx.Response(200, json={"range": "Sheet1!A1:ZZ1000"}), settings)

    result = await adapter.fetch(SpreadsheetConnectionConfig(spreadsheet_id=SHEET_ID, api_key="k"))

    assert result.rows == [] and result.fields == []


@pytest.mark.anyio
async def test_values_api_errors(settings: Settings) -> None:
    config = SpreadsheetConnectionConfig(spreadsheet_id=SHEET_ID, api_key="k")

    with pytest.raises(ConnectivityError, match="Access denied"):
        await _adapter(lambda request: httpx.Response(403), settings).fetch(config)
    with pytest.raises(ExecutionError, match="Spreadsheet not found"):
        await _adapter(lambda request: httpx.Response(404), settings).fetch(config)

    bad_range = _adapter(lambda request: httpx.Response(400, json={"error": {"message": "Unable to parse range"}}), settings)
    with pytest.raises(ExecutionError, match="Unable to parse range"):
        await bad_range.fetch(config)

    with pytest.raises(ExecutionError, match="Sheets API error: 500"):
        await _adapter(lambda request: httpx.Response(500, text="boom"), settings).fetch(config)


@pytest.mark.anyio
async def test_csv_export_defaults_to_first_tab(settings: Settings) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, text="name,score\nada,3\ngrace,5\n", headers={"content-type": "text/csv"})

    adapter = _adapter(handler, settings)
    result = await adapter.fetch(SpreadsheetConnectionConfig(spreadsheet_id=SHEET_ID))
    await adapter.fetch(SpreadsheetConnectionConfig(spreadsheet_id=SHEET_ID, gid=77))

    assert result.rows == [{"name": "ada", "score": "3"}, {"name": "grace", "score": "5"}]
    assert seen[0].url.path == f"/spreadsheets/d/{SHEET_ID}/export"
    assert seen[0].url.params["format"] == "csv"
    assert seen[0].url.params["gid"] == "0"
    assert seen[1].url.params["gid"] == "77"


@pytest.mark.anyio
async def test_private_sheet_sign_in_page_is_rejected(settings: Settings) -> None:
    page = "<!DOCTYPE html><html><body>Sign in</body></html>"
    adapter = _adapter(lambda request: httpx.Response(200, text=page, headers={"content-type": "text/html"}), settings)

    with pytest.raises(ConnectivityError) as excinfo:
        await adapter.fetch(SpreadsheetConnectionConfig(spreadsheet_id=SHEET_ID))
    assert excinfo.value.message == NOT_PUBLIC_MESSAGE


@pytest.mark.anyio
async def test_csv_export_status_mapping(settings: Settings) -> None:
    config = SpreadsheetConnectionConfig(spreadsheet_id=SHEET_ID)

    with pytest.raises(ExecutionError, match="Spreadsheet not found"):
        await _adapter(lambda request: httpx.Response(404), settings).fetch(config)
    with pytest.raises(ConnectivityError):
        await _adapter(lambda request: httpx.Response(401), settings).fetch(config)
    with pytest.raises(ExecutionError, match="Failed to fetch spreadsheet: 503"):
        await _adapter(lambda request: httpx.Response(503), settings).fetch(config)


@pytest.mark.anyio
async def test_connection_test_message(settings: Settings) -> None:
    adapter = _adapter(lambda request: httpx.Response(200, text="a,b\n1,2\n"), settings)

    result = await adapter.test(SpreadsheetConnectionConfig(spreadsheet_id=SHEET_ID))

    assert result["ok"] is True
    assert result["message"] == "Connected successfully. Found 1 rows with 2 columns."
