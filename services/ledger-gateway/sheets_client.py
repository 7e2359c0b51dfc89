"""HTTP client for the spreadsheet values API.

Appends rows to, and reads rows from, the full column range of a named tab.
Provider status codes are translated into the closed set of sheet faults in
errors.py; callers never see a raw HTTP status.
"""

import logging
import re
from urllib.parse import quote

import httpx

from config import settings
from credentials import ServiceAccountTokenSource
from errors import (
    PermissionDenied,
    QuotaExceeded,
    ServiceNotConfigured,
    SheetNotFound,
    SheetsOperationFailed,
    UpstreamTimeout,
)

logger = logging.getLogger(__name__)

_TRAILING_ROW = re.compile(r"(\d+)$")

_STATUS_FAULTS = {
    403: PermissionDenied,
    404: SheetNotFound,
    429: QuotaExceeded,
}


def row_number_from_range(updated_range: str) -> int | None:
    """Return the last row of an A1 range such as ``'Records'!A5:F7`` (7)."""
    match = _TRAILING_ROW.search(updated_range or "")
    return int(match.group(1)) if match else None


class SheetsClient:
    """Typed append/read against one spreadsheet tab at a time."""

    def __init__(
        self,
        token_source: ServiceAccountTokenSource,
        base_url: str | None = None,
        column_range: str | None = None,
        timeout: float | None = None,
        connect_timeout: float | None = None,
    ):
        self._token_source = token_source
        self._base_url = (base_url or settings.SHEETS_API_URL).rstrip("/")
        self._column_range = column_range or settings.SHEET_COLUMN_RANGE

        read_timeout = timeout if timeout is not None else settings.UPSTREAM_TIMEOUT_SECONDS
        conn_timeout = connect_timeout if connect_timeout is not None else settings.UPSTREAM_CONNECT_TIMEOUT

        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(read_timeout, connect=conn_timeout),
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    def _values_url(self, sheet_id: str, tab_name: str) -> str:
        if not sheet_id:
            raise ServiceNotConfigured("GOOGLE_SHEET_ID is not set")
        a1_range = quote(f"{tab_name}!{self._column_range}", safe="")
        return f"{self._base_url}/{sheet_id}/values/{a1_range}"

    async def append(self, sheet_id: str, tab_name: str, rows: list[list[str]]) -> dict:
        """Append rows after the last non-empty row of the tab in one call.

        Rows land contiguously and in the given order. Returns
        ``{"updatedRange": ...}`` as reported by the provider.
        """
        url = self._values_url(sheet_id, tab_name) + ":append"
        token = await self._token_source.get_access_token()

        resp = await self._send(
            "POST",
            url,
            operation="append",
            tab_name=tab_name,
            headers={"Authorization": f"Bearer {token}"},
            params={"valueInputOption": "USER_ENTERED"},
            json={"values": rows},
        )

        data = resp.json()
        updated_range = (data.get("updates") or {}).get("updatedRange", "")
        logger.info("Appended %d row(s) to %r: %s", len(rows), tab_name, updated_range or "<no range>")
        return {"updatedRange": updated_range}

    async def read(self, sheet_id: str, tab_name: str) -> dict:
        """Return every row of the tab, header included, as ``{"values": [...]}``."""
        url = self._values_url(sheet_id, tab_name)
        token = await self._token_source.get_access_token()

        resp = await self._send(
            "GET",
            url,
            operation="read",
            tab_name=tab_name,
            headers={"Authorization": f"Bearer {token}"},
        )

        values = resp.json().get("values") or []
        logger.info("Read %d row(s) from %r", len(values), tab_name)
        return {"values": values}

    async def _send(self, method: str, url: str, *, operation: str, tab_name: str, **kwargs) -> httpx.Response:
        try:
            resp = await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            logger.error("Sheets %s on %r timed out: %s", operation, tab_name, e)
            raise UpstreamTimeout(f"Sheets {operation} timed out: {e}") from e
        except httpx.HTTPError as e:
            logger.error("Sheets %s on %r failed: %s", operation, tab_name, e)
            raise SheetsOperationFailed(f"Sheets {operation} failed: {e}") from e

        fault = _STATUS_FAULTS.get(resp.status_code)
        if fault is not None:
            logger.warning("Sheets %s on %r returned %d: %s", operation, tab_name, resp.status_code, resp.text[:500])
            raise fault(resp.text)

        if not resp.is_success:
            logger.error("Sheets %s on %r returned %d: %s", operation, tab_name, resp.status_code, resp.text[:500])
            raise SheetsOperationFailed(f"Sheets {operation} failed: {resp.text}")

        return resp
