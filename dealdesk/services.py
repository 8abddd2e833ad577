"""Shared business logic for the DealDesk API and MCP server."""
from __future__ import annotations

import logging
import math
from collections import Counter
from collections.abc import Callable, Iterable, Mapping
from dataclasses import asdict
from datetime import UTC, date, datetime, time
from enum import Enum
from pathlib import PurePosixPath
from typing import Any

from dealdesk.actions import Identity
from dealdesk.blobstore import BlobStore, validate_document
from dealdesk.comparison import Comparison, compare_deals
from dealdesk.enums import DealOutcome, DealStage, HealthStatus, PositionStatus, TouchpointType, coerce
from dealdesk.formatting import format_currency, score_tier
from dealdesk.health import HealthBoard, active_positions_query, health_board
from dealdesk.listing import DealListController, PageRequest
from dealdesk.store import RecordQuery, RecordStore, StoreError
from dealdesk.warmth import ContactAlert, contact_alert, read_warmth

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Shared field tuples
# ---------------------------------------------------------------------------

DEAL_SEARCH_FIELDS = ("company_name", "sector", "founder_name")

UPDATABLE_FIELDS = (
    "company_name", "sector", "stage", "valuation_usd", "equity_offered",
    "founder_name", "founder_linkedin", "outcome", "vision_2030_alignment",
    "founder_execution_score", "founder_sales_ability", "iteration_speed",
    "overall_score", "ai_score", "failure_modes", "exit_potential", "notes",
)

CONTACT_FIELDS = ("name", "organization", "role", "tier", "warmth_score", "is_key_ten")

DEAL_OUT_FIELDS = (
    "id", "company_name", "sector", "valuation_usd", "equity_offered",
    "founder_name", "founder_linkedin", "vision_2030_alignment",
    "founder_execution_score", "founder_sales_ability", "iteration_speed",
    "overall_score", "ai_score", "failure_modes", "exit_potential", "notes",
    "deck_url", "created_at",
)


def utcnow() -> datetime:
    """Naive UTC, matching what SQLite hands back for DateTime columns."""
    return datetime.now(UTC).replace(tzinfo=None)


def _naive(value: datetime) -> datetime:
    return value.astimezone(UTC).replace(tzinfo=None) if value.tzinfo else value


def _plain(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------


def deal_view(record: Mapping[str, Any]) -> dict[str, Any]:
    """Render-scoped view of a stored deal with closed enums and display fields."""
    stage = coerce(DealStage, record.get("stage"), DealStage.review)
    outcome = coerce(DealOutcome, record.get("outcome"), DealOutcome.pending)
    warnings = []
    if stage is DealStage.unknown:
        warnings.append(f"Unrecognized stage {record.get('stage')!r}")
    if outcome is DealOutcome.unknown:
        warnings.append(f"Unrecognized outcome {record.get('outcome')!r}")
    view = {f: record.get(f) for f in DEAL_OUT_FIELDS}
    view.update(
        stage=stage,
        outcome=outcome,
        valuation_display=format_currency(record.get("valuation_usd")),
        ai_score_tier=score_tier(record.get("ai_score")),
        warnings=warnings,
    )
    return view


def comparison_dict(comparison: Comparison) -> dict[str, Any]:
    out = asdict(comparison)
    for row_out, row in zip(out["metrics"], comparison.metrics):
        row_out["best_count"] = row.best_count
        for cell_out, cell in zip(row_out["cells"], row.cells):
            cell_out["percent"] = cell.percent
    return out


def health_board_dict(board: HealthBoard) -> dict[str, Any]:
    return {"rows": [asdict(r) for r in board.rows], "counts": asdict(board.counts)}


# ---------------------------------------------------------------------------
# Deals: listing
# ---------------------------------------------------------------------------


def deal_page_query(identity: Identity, request: PageRequest) -> RecordQuery:
    f = request.filters
    query = RecordQuery(
        table="deals",
        eq={"user_id": identity.user_id},
        order_by=request.sort_column.value,
        descending=request.sort_direction.value == "desc",
    )
    if f.search:
        query.search = f.search
        query.search_fields = DEAL_SEARCH_FIELDS
    if f.stage is not None:
        query.eq["stage"] = f.stage.value
    if f.sector:
        query.contains["sector"] = f.sector
    if f.outcome is DealOutcome.pending:
        query.eq_or_null["outcome"] = DealOutcome.pending.value
    elif f.outcome is not None:
        query.eq["outcome"] = f.outcome.value
    return query


async def fetch_deal_page(
    store: RecordStore, identity: Identity, controller: DealListController,
) -> list[dict[str, Any]]:
    """Fetch the controller's current page and record the store's total.

    A failed read degrades to an empty page with a zero total.
    """
    request = controller.request()
    try:
        records, total = await store.fetch_page(
            deal_page_query(identity, request), request.page, request.page_size,
        )
    except StoreError as exc:
        log.warning("Deal page fetch failed: %s", exc)
        controller.apply_total(0, failed=True)
        return []
    controller.apply_total(total)
    return [deal_view(r) for r in records]


def listing_payload(controller: DealListController, items: list[dict[str, Any]]) -> dict[str, Any]:
    return {
        "items": items,
        "total": controller.total,
        "page": controller.page,
        "page_size": controller.page_size,
        "page_count": controller.page_count,
        "range_label": controller.range_label(),
        "sort_column": controller.sort_column,
        "sort_direction": controller.sort_direction,
        "can_go_back": controller.can_go_back,
        "can_go_forward": controller.can_go_forward,
    }


# ---------------------------------------------------------------------------
# Deals: single-record operations
# ---------------------------------------------------------------------------


async def get_deal(store: RecordStore, identity: Identity, deal_id: int) -> dict[str, Any] | None:
    return await store.fetch_one(RecordQuery(
        table="deals", eq={"id": deal_id, "user_id": identity.user_id},
    ))


async def create_deal(store: RecordStore, identity: Identity, data: Mapping[str, Any]) -> dict[str, Any]:
    payload = {f: _plain(data[f]) for f in UPDATABLE_FIELDS if data.get(f) is not None}
    payload.setdefault("stage", DealStage.review.value)
    record = await store.insert("deals", {"user_id": identity.user_id, **payload})
    log.info("Created deal %s (%s)", record["id"], record["company_name"])
    return record


async def update_deal(
    store: RecordStore, identity: Identity, deal_id: int, updates: Mapping[str, Any],
) -> dict[str, Any]:
    """Partial update; keys present in *updates* are written, including nulls."""
    payload = {f: _plain(updates[f]) for f in UPDATABLE_FIELDS if f in updates}
    return await store.update("deals", deal_id, payload, user_id=identity.user_id)


async def update_deal_stage(
    store: RecordStore, identity: Identity, deal_id: int, stage: DealStage,
) -> dict[str, Any]:
    return await update_deal(store, identity, deal_id, {"stage": stage})


async def update_deal_outcome(
    store: RecordStore, identity: Identity, deal_id: int, outcome: DealOutcome,
) -> dict[str, Any]:
    return await update_deal(store, identity, deal_id, {"outcome": outcome})


async def delete_deal(store: RecordStore, identity: Identity, deal_id: int) -> None:
    """Delete a deal; positions created from it keep their data but lose the link."""
    linked = await store.fetch_all(RecordQuery(
        table="portfolio", eq={"user_id": identity.user_id, "deal_id": deal_id},
    ))
    for position in linked:
        await store.update("portfolio", position["id"], {"deal_id": None}, user_id=identity.user_id)
    await store.delete("deals", deal_id, user_id=identity.user_id)
    log.info("Deleted deal %s (%d linked positions unlinked)", deal_id, len(linked))


async def convert_deal_to_position(
    store: RecordStore,
    identity: Identity,
    deal_id: int,
    overrides: Mapping[str, Any],
    today: date,
) -> dict[str, Any]:
    """Open an active, healthy portfolio position from a deal.

    Entry valuation and equity default to the deal's valuation and equity
    offered when *overrides* leaves them out.
    """
    record = await get_deal(store, identity, deal_id)
    if record is None:
        raise StoreError(f"deals row {deal_id} not found")
    entry_valuation = overrides.get("entry_valuation_usd")
    equity = overrides.get("equity_percent")
    position = await store.insert("portfolio", {
        "user_id": identity.user_id,
        "deal_id": deal_id,
        "company_name": record["company_name"],
        "sector": record.get("sector"),
        "entry_valuation_usd": record.get("valuation_usd") if entry_valuation is None else entry_valuation,
        "equity_percent": record.get("equity_offered") if equity is None else equity,
        "entry_date": today,
        "status": PositionStatus.active.value,
        "health_status": HealthStatus.healthy.value,
    })
    log.info("Added %s to portfolio from deal %s", record["company_name"], deal_id)
    return position


# ---------------------------------------------------------------------------
# Deals: comparison and stats
# ---------------------------------------------------------------------------


async def compare_selected(
    store: RecordStore, identity: Identity, deal_ids: Iterable[int],
) -> Comparison:
    """Compare the selected deals, keeping the order they were selected in."""
    ids = list(dict.fromkeys(deal_ids))
    if not ids:
        return compare_deals([])
    records = await store.fetch_all(RecordQuery(
        table="deals", eq={"user_id": identity.user_id}, in_={"id": ids},
    ))
    by_id = {r["id"]: r for r in records}
    missing = [i for i in ids if i not in by_id]
    if missing:
        log.warning("Compare skipped unknown deal ids %s", missing)
    return compare_deals([by_id[i] for i in ids if i in by_id])


def summarize_deals(records: Iterable[Mapping[str, Any]], now: datetime) -> dict[str, Any]:
    stage_counts: Counter[str] = Counter()
    score_sum = 0.0
    score_count = 0
    month_start = _naive(now).replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    new_this_month = 0
    total = 0
    for r in records:
        total += 1
        stage_counts[coerce(DealStage, r.get("stage"), DealStage.review).value] += 1
        if r.get("ai_score") is not None:
            score_sum += r["ai_score"]
            score_count += 1
        created = r.get("created_at")
        if created is not None and _naive(created) >= month_start:
            new_this_month += 1
    return {
        "total_deals": total,
        "stage_counts": dict(stage_counts),
        # half-up, like the dashboard tile always showed
        "avg_ai_score": math.floor(score_sum / score_count + 0.5) if score_count else None,
        "new_this_month": new_this_month,
    }


async def quick_stats(store: RecordStore, identity: Identity, now: datetime) -> dict[str, Any]:
    """Unfiltered pipeline stats for the header tiles; empty on read failure."""
    try:
        records = await store.fetch_all(RecordQuery(table="deals", eq={"user_id": identity.user_id}))
    except StoreError as exc:
        log.warning("Quick stats fetch failed: %s", exc)
        records = []
    return summarize_deals(records, now)


# ---------------------------------------------------------------------------
# Portfolio health
# ---------------------------------------------------------------------------


async def portfolio_health(store: RecordStore, identity: Identity) -> HealthBoard:
    try:
        positions = await store.fetch_all(active_positions_query(identity))
    except StoreError as exc:
        log.warning("Portfolio fetch failed: %s", exc)
        positions = []
    return health_board(positions)


# ---------------------------------------------------------------------------
# Contacts
# ---------------------------------------------------------------------------


async def create_contact(store: RecordStore, identity: Identity, data: Mapping[str, Any]) -> dict[str, Any]:
    payload = {f: data[f] for f in CONTACT_FIELDS if data.get(f) is not None}
    record = await store.insert("contacts", {"user_id": identity.user_id, **payload})
    log.info("Created contact %s (%s)", record["id"], record["name"])
    return record


async def get_contact(store: RecordStore, identity: Identity, contact_id: int) -> dict[str, Any] | None:
    return await store.fetch_one(RecordQuery(
        table="contacts", eq={"id": contact_id, "user_id": identity.user_id},
    ))


async def log_touchpoint(
    store: RecordStore,
    identity: Identity,
    contact_id: int,
    touchpoint: Mapping[str, Any],
    today: date,
) -> dict[str, Any]:
    """Record an interaction and move the contact's last touchpoint to its date."""
    if await get_contact(store, identity, contact_id) is None:
        raise StoreError(f"contacts row {contact_id} not found")
    touch_date = touchpoint.get("touch_date") or today
    record = await store.insert("touchpoints", {
        "user_id": identity.user_id,
        "contact_id": contact_id,
        "type": _plain(touchpoint.get("type") or TouchpointType.meeting),
        "touch_date": touch_date,
        "summary": touchpoint.get("summary") or None,
        "outcome": touchpoint.get("outcome") or None,
    })
    await store.update(
        "contacts", contact_id,
        {"last_touchpoint": datetime.combine(touch_date, time.min)},
        user_id=identity.user_id,
    )
    return record


async def contact_warmth(store: RecordStore, identity: Identity, contact_id: int) -> dict[str, Any] | None:
    record = await get_contact(store, identity, contact_id)
    if record is None:
        return None
    reading = read_warmth(record.get("warmth_score"))
    return {"contact_id": contact_id, "name": record["name"], **asdict(reading)}


async def contact_alerts(store: RecordStore, identity: Identity, now: datetime) -> list[ContactAlert]:
    """Reconnect alerts for key contacts, reddest first."""
    try:
        contacts = await store.fetch_all(RecordQuery(
            table="contacts", eq={"user_id": identity.user_id, "is_key_ten": True},
        ))
    except StoreError as exc:
        log.warning("Contact fetch failed: %s", exc)
        return []
    alerts = []
    for c in contacts:
        alert = contact_alert(c["name"], c.get("last_touchpoint"), c.get("warmth_score"), _naive(now))
        if alert is not None:
            alerts.append(alert)
    alerts.sort(key=lambda a: a.severity.value != "red")
    return alerts


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


def document_path(identity: Identity, deal_id: int, filename: str, now: datetime) -> str:
    name = PurePosixPath(filename.replace("\\", "/")).name or "document"
    millis = int(now.replace(tzinfo=now.tzinfo or UTC).timestamp() * 1000)
    return f"{identity.user_id}/{deal_id}/{millis}_{name}"


async def upload_deal_document(
    store: RecordStore,
    blobs: BlobStore,
    identity: Identity,
    deal_id: int,
    filename: str,
    content_type: str | None,
    data: bytes,
    now: datetime,
    progress: Callable[[int], None] | None = None,
) -> dict[str, Any]:
    """Validate, store, and attach a pitch deck to a deal.

    *progress* receives whole percentages computed from bytes written.
    """
    validate_document(filename, content_type, len(data))
    if await get_deal(store, identity, deal_id) is None:
        raise StoreError(f"deals row {deal_id} not found")
    path = document_path(identity, deal_id, filename, now)
    total = len(data)

    def on_bytes(written: int) -> None:
        if progress is not None:
            progress(100 if total == 0 else written * 100 // total)

    url = await blobs.store(path, data, on_bytes)
    await store.update("deals", deal_id, {"deck_url": url}, user_id=identity.user_id)
    return {"url": url, "path": path, "bytes_written": total}
