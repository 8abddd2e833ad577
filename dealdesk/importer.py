from __future__ import annotations

import csv
import io
import logging
import re
from pathlib import Path

import openpyxl

from dealdesk.actions import Identity
from dealdesk.enums import DealOutcome, DealStage, known_values
from dealdesk.schemas import ImportResult
from dealdesk.store import RecordStore, StoreError

log = logging.getLogger(__name__)

# field key -> header label shown in spreadsheets
DEAL_COLUMNS = {
    "company_name": "Company Name",
    "sector": "Sector",
    "valuation_usd": "Valuation (USD)",
    "equity_offered": "Equity %",
    "founder_name": "Founder Name",
    "stage": "Stage",
    "outcome": "Outcome",
    "notes": "Notes",
}
_NUMERIC = {"valuation_usd", "equity_offered"}
_VALID_STAGES = set(known_values(DealStage))
_VALID_OUTCOMES = set(known_values(DealOutcome))


def _s(value: object) -> str:
    """Safely coerce cell value to stripped string."""
    if value is None:
        return ""
    return str(value).strip()


def _num(value: object) -> float | None:
    """Parse a number out of cells like ``$1,200,000`` or ``12.5%``."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    cleaned = re.sub(r"[^0-9.\-]", "", _s(value))
    try:
        return float(cleaned)
    except ValueError:
        return None


def map_headers(headers: list[str]) -> dict[str, str]:
    """Match spreadsheet headers to deal fields; first matching header wins."""
    mapping: dict[str, str] = {}
    for key, label in DEAL_COLUMNS.items():
        spaced = key.replace("_", " ")
        for header in headers:
            h = header.strip().lower()
            if not h:
                continue
            if h == key or spaced in h or label.lower() in h:
                mapping[key] = header
                break
    return mapping


def row_to_deal(row: dict[str, object], mapping: dict[str, str]) -> dict[str, object]:
    deal: dict[str, object] = {}
    for key, header in mapping.items():
        raw = row.get(header)
        if raw is None or _s(raw) == "":
            continue
        if key in _NUMERIC:
            deal[key] = _num(raw)
        elif key == "stage":
            stage = _s(raw).lower()
            deal[key] = stage if stage in _VALID_STAGES else DealStage.review.value
        elif key == "outcome":
            outcome = _s(raw).lower()
            deal[key] = outcome if outcome in _VALID_OUTCOMES else None
        else:
            deal[key] = _s(raw)
    if deal.get("valuation_usd") is not None:
        deal["valuation_usd"] = int(deal["valuation_usd"])
    return deal


def _read_xlsx(content: bytes) -> tuple[list[str], list[dict[str, object]]]:
    wb = openpyxl.load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    try:
        ws = wb.worksheets[0]
        rows = list(ws.iter_rows(values_only=True))
    finally:
        wb.close()
    if not rows:
        return [], []
    headers = [_s(h) for h in rows[0]]
    out = []
    for row in rows[1:]:
        if not row or all(v is None for v in row):
            continue
        out.append({h: (row[i] if i < len(row) else None) for i, h in enumerate(headers)})
    return headers, out


def _read_csv(content: bytes) -> tuple[list[str], list[dict[str, object]]]:
    reader = csv.DictReader(io.StringIO(content.decode("utf-8-sig")))
    headers = [h.strip() for h in (reader.fieldnames or [])]
    rows = [
        {k.strip(): v for k, v in r.items() if k is not None}
        for r in reader if any((v or "").strip() for v in r.values() if isinstance(v, str))
    ]
    return headers, rows


def read_rows(filename: str, content: bytes) -> tuple[list[str], list[dict[str, object]]]:
    suffix = Path(filename).suffix.lower()
    if suffix == ".xlsx":
        return _read_xlsx(content)
    if suffix == ".csv":
        return _read_csv(content)
    raise ValueError("Only .xlsx and .csv files are supported")


async def import_deals(
    store: RecordStore, identity: Identity, filename: str, content: bytes,
) -> ImportResult:
    """Insert one deal per row. Rows without a company name are skipped."""
    headers, rows = read_rows(filename, content)
    if not headers:
        raise ValueError("Could not parse headers")
    mapping = map_headers(headers)
    imported = 0
    errors: list[str] = []
    for idx, row in enumerate(rows, start=2):
        deal = row_to_deal(row, mapping)
        if not deal.get("company_name"):
            errors.append(f"Row {idx}: Missing company name")
            continue
        deal.setdefault("stage", DealStage.review.value)
        try:
            await store.insert("deals", {"user_id": identity.user_id, **deal})
        except StoreError as exc:
            errors.append(f"{deal['company_name']}: {exc}")
            continue
        imported += 1
    if errors:
        log.warning("Import of %s finished with %d errors", filename, len(errors))
    mapped = set(mapping.values())
    return ImportResult(
        total_rows=len(rows),
        imported=imported,
        skipped=len(errors),
        errors=errors,
        unmapped_columns=[h for h in headers if h and h not in mapped],
    )
