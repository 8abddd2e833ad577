from __future__ import annotations

import json
import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import date

from mcp.server.fastmcp import FastMCP

from dealdesk import services
from dealdesk.actions import Identity
from dealdesk.db import init_db, session_scope
from dealdesk.enums import DealOutcome, DealStage, SortColumn, SortDirection, TouchpointType
from dealdesk.listing import DealFilters, DealListController
from dealdesk.reviews import load_review, past_reviews, week_start
from dealdesk.store import SqlRecordStore, StoreError

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def dealdesk_lifespan(server: FastMCP) -> AsyncIterator[None]:
    init_db()
    yield


mcp = FastMCP(
    "DealDesk",
    instructions=(
        "DealDesk tracks venture deals, portfolio health, key relationships, and a weekly "
        "review journal. Start with get_stats() for an overview, then list_deals() to browse, "
        "compare_deals(ids) to weigh candidates, and portfolio_health() for positions at risk."
    ),
    lifespan=dealdesk_lifespan,
    json_response=True,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _identity() -> Identity:
    return Identity(os.environ.get("DEALDESK_USER_ID", "local"))


def _enum_or_error(enum_cls, raw: str | None, label: str):
    if raw is None:
        return None, None
    try:
        value = enum_cls(raw.strip().lower())
    except ValueError:
        return None, {"error": f"Invalid {label} '{raw}'"}
    if value.value == "unknown":
        return None, {"error": f"Invalid {label} '{raw}'"}
    return value, None


def _json_ready(value):
    return json.loads(json.dumps(value, default=str))


# ---------------------------------------------------------------------------
# Resource
# ---------------------------------------------------------------------------


@mcp.resource("dealdesk://overview")
def dealdesk_overview() -> str:
    """Overview of DealDesk: data model, workflow, and vocabularies."""
    return json.dumps({
        "system": "DealDesk: venture deal tracking and portfolio monitoring",
        "data_model": {
            "deal": "A company under consideration, with sub-scores (1-5), an AI score (0-100), stage, and outcome.",
            "portfolio_position": "An investment already made, with revenue, burn, runway, and a stored health status.",
            "contact": "A relationship with a 0-10 warmth score; key contacts raise reconnect alerts.",
            "weekly_review": "One journal entry per Sunday-started week.",
        },
        "workflow": [
            "1. get_stats() for pipeline totals and stage counts.",
            "2. list_deals() to browse with filters and sorting.",
            "3. get_deal(id) for one deal, compare_deals(ids) for a side-by-side table.",
            "   add_deal_to_portfolio(id) once a deal closes.",
            "4. portfolio_health() for the health board and counts.",
            "5. contact_alerts() for relationships going cold; log_touchpoint(contact_id) after reaching out.",
            "6. current_weekly_review() and past_weekly_reviews() for the journal.",
        ],
        "stages": [s.value for s in DealStage if s is not DealStage.unknown],
        "outcomes": [o.value for o in DealOutcome if o is not DealOutcome.unknown],
        "sort_columns": [c.value for c in SortColumn],
    }, indent=2)


# ---------------------------------------------------------------------------
# Tools: Deals
# ---------------------------------------------------------------------------


@mcp.tool()
async def list_deals(
    search: str | None = None, stage: str | None = None,
    sector: str | None = None, outcome: str | None = None,
    sort_by: str = "created_at", sort_dir: str = "desc", page: int = 1,
) -> dict:
    """List deals, 50 per page.

    Args:
        search: Free-text search across company, sector, and founder name.
        stage: One of review, evaluating, passed, term_sheet, closed, rejected.
        sector: Case-insensitive sector substring.
        outcome: One of pending, win, miss, regret, noise. pending also matches deals with no outcome.
        sort_by: company_name, sector, stage, ai_score, valuation_usd, created_at, outcome.
        sort_dir: asc or desc.
        page: 1-based page number.
    """
    stage_value, err = _enum_or_error(DealStage, stage, "stage")
    if err:
        return err
    outcome_value, err = _enum_or_error(DealOutcome, outcome, "outcome")
    if err:
        return err
    try:
        column, direction = SortColumn(sort_by), SortDirection(sort_dir)
    except ValueError:
        return {"error": f"Invalid sort '{sort_by} {sort_dir}'"}
    controller = DealListController(
        sort_column=column, sort_direction=direction, page=max(1, page),
        filters=DealFilters(search=search, stage=stage_value, sector=sector, outcome=outcome_value),
    )
    with session_scope() as session:
        items = await services.fetch_deal_page(SqlRecordStore(session), _identity(), controller)
    return _json_ready(services.listing_payload(controller, items))


@mcp.tool()
async def get_deal(deal_id: int) -> dict:
    """Get full details for a single deal."""
    with session_scope() as session:
        record = await services.get_deal(SqlRecordStore(session), _identity(), deal_id)
    if record is None:
        return {"error": f"Deal {deal_id} not found"}
    return _json_ready(services.deal_view(record))


@mcp.tool()
async def compare_deals(deal_ids: list[int]) -> dict:
    """Compare deals side by side. Every deal tied for the best value of a metric is flagged."""
    with session_scope() as session:
        comparison = await services.compare_selected(SqlRecordStore(session), _identity(), deal_ids)
    return _json_ready(services.comparison_dict(comparison))


@mcp.tool()
async def update_deal_stage(deal_id: int, stage: str) -> dict:
    """Move a deal to another pipeline stage."""
    value, err = _enum_or_error(DealStage, stage, "stage")
    if err:
        return err
    with session_scope() as session:
        try:
            record = await services.update_deal_stage(SqlRecordStore(session), _identity(), deal_id, value)
        except StoreError as exc:
            return {"error": str(exc)}
    return _json_ready(services.deal_view(record))


@mcp.tool()
async def delete_deal(deal_id: int) -> dict:
    """Delete a deal. Portfolio positions opened from it are kept."""
    with session_scope() as session:
        try:
            await services.delete_deal(SqlRecordStore(session), _identity(), deal_id)
        except StoreError as exc:
            return {"error": str(exc)}
    return {"deleted": True, "id": deal_id}


@mcp.tool()
async def add_deal_to_portfolio(
    deal_id: int, equity_percent: float | None = None, entry_valuation_usd: int | None = None,
) -> dict:
    """Open an active portfolio position from a deal.

    Args:
        deal_id: The deal to convert.
        equity_percent: Equity held; defaults to the deal's equity offered.
        entry_valuation_usd: Entry valuation; defaults to the deal's valuation.
    """
    overrides = {"equity_percent": equity_percent, "entry_valuation_usd": entry_valuation_usd}
    with session_scope() as session:
        try:
            position = await services.convert_deal_to_position(
                SqlRecordStore(session), _identity(), deal_id, overrides, services.utcnow().date(),
            )
        except StoreError as exc:
            return {"error": str(exc)}
    return _json_ready(position)


@mcp.tool()
async def get_stats() -> dict:
    """Pipeline totals: deal count, per-stage counts, average AI score, deals added this month."""
    with session_scope() as session:
        return await services.quick_stats(SqlRecordStore(session), _identity(), services.utcnow())


# ---------------------------------------------------------------------------
# Tools: Portfolio & Contacts
# ---------------------------------------------------------------------------


@mcp.tool()
async def portfolio_health() -> dict:
    """Health board for active positions with critical and warning counts."""
    with session_scope() as session:
        board = await services.portfolio_health(SqlRecordStore(session), _identity())
    return _json_ready(services.health_board_dict(board))


@mcp.tool()
async def contact_alerts() -> list[dict]:
    """Reconnect alerts for key contacts, red before yellow."""
    with session_scope() as session:
        alerts = await services.contact_alerts(SqlRecordStore(session), _identity(), services.utcnow())
    return _json_ready([asdict(a) for a in alerts])


@mcp.tool()
async def log_touchpoint(
    contact_id: int, type: str = "meeting", touch_date: str | None = None,
    summary: str | None = None, outcome: str | None = None,
) -> dict:
    """Record an interaction with a contact and update their last touchpoint.

    Args:
        contact_id: The contact.
        type: One of meeting, call, email, intro, message.
        touch_date: ISO date of the interaction; defaults to today.
        summary: What was discussed.
        outcome: Follow-up action.
    """
    kind, err = _enum_or_error(TouchpointType, type, "touchpoint type")
    if err:
        return err
    try:
        day = date.fromisoformat(touch_date) if touch_date else None
    except ValueError:
        return {"error": f"Invalid date '{touch_date}'"}
    with session_scope() as session:
        try:
            record = await services.log_touchpoint(
                SqlRecordStore(session), _identity(), contact_id,
                {"type": kind, "touch_date": day, "summary": summary, "outcome": outcome},
                services.utcnow().date(),
            )
        except StoreError as exc:
            return {"error": str(exc)}
    return _json_ready(record)


# ---------------------------------------------------------------------------
# Tools: Weekly reviews
# ---------------------------------------------------------------------------


@mcp.tool()
async def current_weekly_review(today: str | None = None) -> dict:
    """This week's review (or an empty one). *today* is an ISO date; defaults to now."""
    try:
        day = date.fromisoformat(today) if today else services.utcnow().date()
    except ValueError:
        return {"error": f"Invalid date '{today}'"}
    with session_scope() as session:
        review = await load_review(SqlRecordStore(session), _identity(), week_start(day))
    return _json_ready(review)


@mcp.tool()
async def past_weekly_reviews() -> list[dict]:
    """Up to ten reviews before the current week, newest first."""
    current = week_start(services.utcnow().date())
    with session_scope() as session:
        reviews = await past_reviews(SqlRecordStore(session), _identity(), current)
    return _json_ready(reviews)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main():
    """Run the DealDesk MCP server over stdio."""
    mcp.run()


if __name__ == "__main__":
    main()
