"""Ledger writes and reads on top of the spreadsheet client.

Row ordinals always come from the provider's reported ``updatedRange``:
concurrent submitters append to the same tab, and only the provider
serializes those writes.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Any

from config import settings
from errors import SheetsError
from models import AppendResult, RecordsResult, UpdateRequest
from sheets_client import SheetsClient, row_number_from_range

logger = logging.getLogger(__name__)

APPROVED_STATUS = "Approved"
PENDING_STATUS = "Pending"
SHEET_URL_TEMPLATE = "https://docs.google.com/spreadsheets/d/{sheet_id}"

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp with millisecond precision, e.g. 2026-10-18T09:30:00.000Z."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    return str(value)


def _parse_row_ordinal(value: str) -> int | None:
    match = _LEADING_INT.match(value or "")
    return int(match.group(1)) if match else None


class LedgerService:
    """Appends approved records plus an audit row, and reads records back."""

    def __init__(
        self,
        sheets: SheetsClient,
        sheet_id: str | None = None,
        records_tab: str | None = None,
        upload_log_tab: str | None = None,
        field_order: list[str] | None = None,
    ):
        self._sheets = sheets
        self._sheet_id = sheet_id if sheet_id is not None else settings.GOOGLE_SHEET_ID
        self._records_tab = records_tab or settings.RECORDS_TAB
        self._upload_log_tab = upload_log_tab or settings.UPLOAD_LOG_TAB
        self._field_order = field_order if field_order is not None else settings.field_order

    @property
    def sheet_url(self) -> str:
        return SHEET_URL_TEMPLATE.format(sheet_id=self._sheet_id)

    def build_rows(
        self,
        timestamp: str,
        submitted_by: str,
        data: dict[str, Any] | None = None,
        header_data: dict[str, Any] | None = None,
        rows: list[dict[str, Any]] | None = None,
    ) -> list[list[str]]:
        """Lay out ledger rows: timestamp, schema fields, submitter, status.

        A flat record gives one row. A header + worker-rows record gives one
        row per worker, each carrying the header values.
        """
        if data:
            records = [data]
        else:
            records = [{**(header_data or {}), **row} for row in rows or []]

        return [
            [timestamp, *(_cell(record.get(name)) for name in self._field_order), submitted_by, APPROVED_STATUS]
            for record in records
        ]

    async def append(
        self,
        submitted_by: str,
        data: dict[str, Any] | None = None,
        header_data: dict[str, Any] | None = None,
        rows: list[dict[str, Any]] | None = None,
        upload_id: str | None = None,
        file_name: str | None = None,
    ) -> AppendResult:
        """Write the record rows in one batch, then the upload-log row.

        The log write is best-effort: once the record rows are stored its
        failure is logged and the append still reports success.
        """
        timestamp = utc_timestamp()
        record_rows = self.build_rows(timestamp, submitted_by, data=data, header_data=header_data, rows=rows)

        result = await self._sheets.append(self._sheet_id, self._records_tab, record_rows)
        row_number = row_number_from_range(result.get("updatedRange", ""))
        if row_number is None:
            logger.warning("Append to %r reported no updated range", self._records_tab)

        log_row = [timestamp, file_name or upload_id or "", APPROVED_STATUS, submitted_by]
        try:
            await self._sheets.append(self._sheet_id, self._upload_log_tab, [log_row])
        except SheetsError:
            logger.exception("Upload log append failed for upload %s; record row %s was stored", upload_id, row_number)

        return AppendResult(row_number=row_number, sheet_url=self.sheet_url)

    async def read_records(self) -> RecordsResult:
        """Return the records tab split into its header row and data rows."""
        result = await self._sheets.read(self._sheet_id, self._records_tab)
        values = result.get("values") or []
        if not values:
            return RecordsResult(headers=[], rows=[], total_rows=0)

        headers = [_cell(h) for h in values[0]]
        rows = [[_cell(v) for v in row] for row in values[1:]]
        return RecordsResult(headers=headers, rows=rows, total_rows=len(rows))


class UpdateRequestChannel:
    """Correction requests, stored as rows of the update-requests tab."""

    def __init__(self, sheets: SheetsClient, sheet_id: str | None = None, tab_name: str | None = None):
        self._sheets = sheets
        self._sheet_id = sheet_id if sheet_id is not None else settings.GOOGLE_SHEET_ID
        self._tab_name = tab_name or settings.UPDATE_REQUESTS_TAB

    async def submit(self, original_row_number: int, requested_by: str, description: str) -> int | None:
        """Append a Pending request; return its row ordinal as the request id."""
        # The two trailing columns are reserved for whoever resolves the request.
        row = [utc_timestamp(), str(original_row_number), requested_by, description, PENDING_STATUS, "", ""]
        result = await self._sheets.append(self._sheet_id, self._tab_name, [row])
        return row_number_from_range(result.get("updatedRange", ""))

    async def list_requests(self) -> list[UpdateRequest]:
        """Every request below the header row; ``row`` is its 1-based tab position."""
        result = await self._sheets.read(self._sheet_id, self._tab_name)
        data_rows = (result.get("values") or [])[1:]

        requests = []
        for index, row in enumerate(data_rows):
            cells = [_cell(v) for v in row] + [""] * (5 - len(row))
            requests.append(UpdateRequest(
                row=index + 2,
                timestamp=cells[0],
                original_row=_parse_row_ordinal(cells[1]),
                requested_by=cells[2],
                description=cells[3],
                status=cells[4] or PENDING_STATUS,
            ))
        return requests
