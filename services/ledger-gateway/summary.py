"""Dashboard summary metrics computed from the records and update-request tabs."""

import math
from collections import Counter
from datetime import date, datetime, timedelta, timezone

from models import DailyCount, RecordsResult, SummaryResult, UpdateRequest, UserCount

TREND_DAYS = 30
TOP_USERS = 8


def _column_index(headers: list[str], names: set[str], fallback: int) -> int:
    normalized = ["".join(h.lower().split()).replace("_", "") for h in headers]
    for index, header in enumerate(normalized):
        if header in names:
            return index
    return fallback


def _cell(row: list[str], index: int) -> str:
    return row[index] if 0 <= index < len(row) else ""


def filter_rows(
    rows: list[list[str]],
    timestamp_col: int,
    start: str | None = None,
    end: str | None = None,
    query: str | None = None,
) -> list[list[str]]:
    """Apply the dashboard's date range (inclusive days) and free-text search."""
    filtered = rows
    if start:
        filtered = [r for r in filtered if _cell(r, timestamp_col) >= start]
    if end:
        end_of_day = f"{end}T23:59:59"
        filtered = [r for r in filtered if _cell(r, timestamp_col) <= end_of_day]
    if query and query.strip():
        needle = query.strip().lower()
        filtered = [r for r in filtered if any(needle in cell.lower() for cell in r)]
    return filtered


def summarize(
    records: RecordsResult,
    update_requests: list[UpdateRequest],
    start: str | None = None,
    end: str | None = None,
    query: str | None = None,
    today: date | None = None,
) -> SummaryResult:
    """Aggregate record rows into the dashboard's headline numbers.

    Columns are located by header name when the header names them; otherwise
    the ledger layout applies (timestamp first, submitter second-last, status
    last).
    """
    today = today or datetime.now(timezone.utc).date()
    headers = records.headers

    timestamp_col = _column_index(headers, {"timestamp"}, 0)
    rows = filter_rows(records.rows, timestamp_col, start, end, query)

    def submitter(row: list[str]) -> str:
        index = _column_index(headers, {"submittedby"}, len(row) - 2)
        return _cell(row, index) or "Unknown"

    def status(row: list[str]) -> str:
        index = _column_index(headers, {"status"}, len(row) - 1)
        return _cell(row, index).strip().lower()

    total = len(rows)
    approved = sum(1 for r in rows if status(r) == "approved")
    rejected = sum(1 for r in rows if status(r) == "rejected")
    today_key = today.isoformat()
    today_count = sum(1 for r in rows if _cell(r, timestamp_col).startswith(today_key))

    per_day = Counter(_cell(r, timestamp_col)[:10] for r in rows)
    by_day = []
    for offset in range(TREND_DAYS - 1, -1, -1):
        key = (today - timedelta(days=offset)).isoformat()
        by_day.append(DailyCount(date=key, count=per_day.get(key, 0)))

    per_user = Counter(submitter(r) for r in rows)
    by_user = [
        UserCount(user=user, count=count)
        for user, count in sorted(per_user.items(), key=lambda item: (-item[1], item[0]))[:TOP_USERS]
    ]

    approval_rate = math.floor(approved / total * 100 + 0.5) if total else 0
    pending = sum(1 for r in update_requests if r.status.strip().lower() == "pending")

    return SummaryResult(
        total_records=total,
        today_count=today_count,
        approved_count=approved,
        rejected_count=rejected,
        approval_rate=approval_rate,
        submissions_by_day=by_day,
        submissions_by_user=by_user,
        pending_update_requests=pending,
    )
