from __future__ import annotations

import csv
import io
from collections.abc import Callable, Iterable, Mapping
from datetime import date, datetime
from typing import Any

from dealdesk.actions import Identity
from dealdesk.store import RecordQuery, RecordStore


def _date(value: Any) -> str:
    if isinstance(value, (datetime, date)):
        return value.strftime("%Y-%m-%d")
    return "" if value is None else str(value)


def _number(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


# (field, header, formatter)
DEAL_EXPORT_COLUMNS: tuple[tuple[str, str, Callable[[Any], str] | None], ...] = (
    ("company_name", "Company", None),
    ("founder_name", "Founder", None),
    ("sector", "Sector", None),
    ("stage", "Stage", None),
    ("ai_score", "AI Score", _number),
    ("valuation_usd", "Valuation (USD)", _number),
    ("outcome", "Outcome", None),
    ("created_at", "Date", _date),
)


def deals_to_csv(rows: Iterable[Mapping[str, Any]]) -> str:
    """Every cell quoted; missing values become empty strings."""
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow([header for _, header, _ in DEAL_EXPORT_COLUMNS])
    for row in rows:
        writer.writerow([
            fmt(row.get(key)) if fmt else ("" if row.get(key) is None else row.get(key))
            for key, _, fmt in DEAL_EXPORT_COLUMNS
        ])
    return buf.getvalue()


async def export_deals(store: RecordStore, identity: Identity) -> str:
    records = await store.fetch_all(RecordQuery(
        table="deals", eq={"user_id": identity.user_id}, order_by="created_at", descending=True,
    ))
    return deals_to_csv(records)
