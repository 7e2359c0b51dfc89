"""Tests for the spreadsheet client's requests and fault mapping."""

import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from errors import (
    PermissionDenied,
    QuotaExceeded,
    ServiceNotConfigured,
    SheetNotFound,
    SheetsOperationFailed,
    UpstreamTimeout,
)
from sheets_client import SheetsClient, row_number_from_range

SHEET_ID = "1AbCdEfGhIjK"


@pytest.fixture
def token_source() -> MagicMock:
    source = MagicMock()
    source.get_access_token = AsyncMock(return_value="ya29.test-token")
    return source


@pytest.fixture
def sheets(token_source) -> SheetsClient:
    return SheetsClient(
        token_source,
        base_url="https://sheets.example.test/v4/spreadsheets",
        timeout=5,
        connect_timeout=2,
    )


class TestRowNumberFromRange:
    @pytest.mark.parametrize(
        ("updated_range", "expected"),
        [
            ("Records!A2:F2", 2),
            ("'Upload Log'!A5:D7", 7),
            ("Records!A10", 10),
            ("", None),
            ("Records!A:Z", None),
        ],
    )
    def test_trailing_row(self, updated_range, expected):
        assert row_number_from_range(updated_range) == expected


class TestAppend:
    @pytest.mark.asyncio
    async def test_successful_append(self, sheets: SheetsClient):
        response = httpx.Response(
            200,
            json={"spreadsheetId": SHEET_ID, "updates": {"updatedRange": "Records!A2:G2", "updatedRows": 1}},
        )
        mock_request = AsyncMock(return_value=response)

        with patch.object(sheets._client, "request", mock_request):
            result = await sheets.append(SHEET_ID, "Records", [["2026-10-18T09:00:00.000Z", "Jane Doe"]])

        assert result == {"updatedRange": "Records!A2:G2"}
        method, url = mock_request.call_args.args
        kwargs = mock_request.call_args.kwargs
        assert method == "POST"
        assert url == f"https://sheets.example.test/v4/spreadsheets/{SHEET_ID}/values/Records%21A%3AZ:append"
        assert kwargs["params"] == {"valueInputOption": "USER_ENTERED"}
        assert kwargs["json"] == {"values": [["2026-10-18T09:00:00.000Z", "Jane Doe"]]}
        assert kwargs["headers"]["Authorization"] == "Bearer ya29.test-token"

    @pytest.mark.asyncio
    async def test_tab_name_with_space_is_encoded(self, sheets: SheetsClient):
        mock_request = AsyncMock(return_value=httpx.Response(200, json={"updates": {"updatedRange": "x!A3"}}))

        with patch.object(sheets._client, "request", mock_request):
            await sheets.append(SHEET_ID, "Upload Log", [["a"]])

        assert "/values/Upload%20Log%21A%3AZ:append" in mock_request.call_args.args[1]

    @pytest.mark.asyncio
    async def test_missing_updated_range(self, sheets: SheetsClient):
        mock_request = AsyncMock(return_value=httpx.Response(200, json={}))

        with patch.object(sheets._client, "request", mock_request):
            result = await sheets.append(SHEET_ID, "Records", [["a"]])

        assert result == {"updatedRange": ""}

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("status", "fault"),
        [(403, PermissionDenied), (404, SheetNotFound), (429, QuotaExceeded), (500, SheetsOperationFailed), (400, SheetsOperationFailed)],
    )
    async def test_status_mapping(self, sheets: SheetsClient, status, fault):
        body = '{"error": {"code": %d, "message": "provider says no"}}' % status
        mock_request = AsyncMock(return_value=httpx.Response(status, text=body))

        with patch.object(sheets._client, "request", mock_request):
            with pytest.raises(fault) as exc_info:
                await sheets.append(SHEET_ID, "Records", [["a"]])

        assert "provider says no" in exc_info.value.detail
        assert "provider says no" not in exc_info.value.user_message

    @pytest.mark.asyncio
    async def test_timeout(self, sheets: SheetsClient):
        mock_request = AsyncMock(side_effect=httpx.ReadTimeout("timed out"))

        with patch.object(sheets._client, "request", mock_request):
            with pytest.raises(UpstreamTimeout):
                await sheets.append(SHEET_ID, "Records", [["a"]])

    @pytest.mark.asyncio
    async def test_connection_error(self, sheets: SheetsClient):
        mock_request = AsyncMock(side_effect=httpx.ConnectError("refused"))

        with patch.object(sheets._client, "request", mock_request):
            with pytest.raises(SheetsOperationFailed):
                await sheets.append(SHEET_ID, "Records", [["a"]])

    @pytest.mark.asyncio
    async def test_missing_sheet_id(self, sheets: SheetsClient, token_source):
        with pytest.raises(ServiceNotConfigured):
            await sheets.append("", "Records", [["a"]])
        token_source.get_access_token.assert_not_called()


class TestRead:
    @pytest.mark.asyncio
    async def test_read_rows(self, sheets: SheetsClient):
        values = [["Timestamp", "Name"], ["2026-10-18", "Jane Doe"]]
        mock_request = AsyncMock(return_value=httpx.Response(200, json={"range": "Records!A1:Z2", "values": values}))

        with patch.object(sheets._client, "request", mock_request):
            result = await sheets.read(SHEET_ID, "Records")

        assert result == {"values": values}
        method, url = mock_request.call_args.args
        assert method == "GET"
        assert url.endswith("/values/Records%21A%3AZ")

    @pytest.mark.asyncio
    async def test_empty_tab(self, sheets: SheetsClient):
        mock_request = AsyncMock(return_value=httpx.Response(200, json={"range": "Records!A1:Z1000"}))

        with patch.object(sheets._client, "request", mock_request):
            result = await sheets.read(SHEET_ID, "Records")

        assert result == {"values": []}

    @pytest.mark.asyncio
    async def test_permission_denied(self, sheets: SheetsClient):
        mock_request = AsyncMock(return_value=httpx.Response(403, text="forbidden"))

        with patch.object(sheets._client, "request", mock_request):
            with pytest.raises(PermissionDenied):
                await sheets.read(SHEET_ID, "Records")
