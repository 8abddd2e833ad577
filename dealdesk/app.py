from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import Any, Generator

from fastapi import Depends, FastAPI, File, Header, HTTPException, Query, UploadFile
from fastapi.responses import Response
from sqlalchemy.orm import Session

from dealdesk import services
from dealdesk.actions import ActionGuard, ActionResult, ActionStatus, Identity, Notification, Severity
from dealdesk.blobstore import MAX_DOCUMENT_BYTES, BlobStore, DocumentRejected, LocalBlobStore, validate_document
from dealdesk.db import init_db, session_generator
from dealdesk.enums import DealOutcome, DealStage, SortColumn, SortDirection
from dealdesk.export import export_deals
from dealdesk.health import health_board, update_position_health
from dealdesk.importer import import_deals
from dealdesk.listing import DealFilters, DealListController
from dealdesk.reviews import load_review, past_reviews, save_review, week_start
from dealdesk.schemas import (
    CompareRequest,
    ContactCreate,
    ContactOut,
    DealCreate,
    DealListResponse,
    DealOut,
    DealUpdate,
    HealthUpdate,
    ImportResult,
    OutcomeUpdate,
    PositionFromDeal,
    PositionOut,
    QuickStatsOut,
    StageUpdate,
    TouchpointCreate,
    TouchpointOut,
    UploadResult,
    WeeklyReviewIn,
    WeeklyReviewOut,
)
from dealdesk.store import RecordQuery, SqlRecordStore

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(
    title="DealDesk",
    version="0.1.0",
    description=(
        "Venture deal tracking API: record and triage deals, compare them side by side, "
        "monitor portfolio health, and keep a weekly review journal. "
        "All endpoints return JSON and are scoped to the user in the X-User-Id header."
    ),
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Deals", "description": "List, sort, page, create, and edit deals."},
        {"name": "Comparison", "description": "Side-by-side comparison of selected deals."},
        {"name": "Documents", "description": "Pitch deck and term sheet uploads."},
        {"name": "Portfolio", "description": "Portfolio health board and metric updates."},
        {"name": "Contacts", "description": "Relationship warmth and reconnect alerts."},
        {"name": "Reviews", "description": "Weekly review journal."},
        {"name": "Import/Export", "description": "Bulk import and CSV export of deals."},
    ],
)


# ---------------------------------------------------------------------------
# Dependencies & Helpers
# ---------------------------------------------------------------------------


def db_session() -> Generator[Session, None, None]:
    yield from session_generator()


def current_identity(x_user_id: str | None = Header(default=None, alias="X-User-Id")) -> Identity:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(401, "Missing X-User-Id header")
    return Identity(x_user_id.strip())


def record_store(session: Session = Depends(db_session)) -> SqlRecordStore:
    return SqlRecordStore(session)


_blob_store: LocalBlobStore | None = None


def blob_store() -> BlobStore:
    global _blob_store
    if _blob_store is None:
        _blob_store = LocalBlobStore()
    return _blob_store


_guards: dict[tuple[str, str], ActionGuard] = {}


def _guard(identity: Identity, action: str) -> ActionGuard:
    key = (identity.user_id, action)
    if key not in _guards:
        _guards[key] = ActionGuard(action)
    return _guards[key]


async def _guarded(identity: Identity, action: str, fn, *args: Any, **kwargs: Any) -> ActionResult:
    """Run *fn* under the user's guard for *action*; the guard is dropped once idle."""
    key = (identity.user_id, action)
    guard = _guard(identity, action)
    try:
        return await guard.run(fn, *args, **kwargs)
    finally:
        if not guard.busy and _guards.get(key) is guard:
            del _guards[key]


def _unwrap(result: ActionResult) -> Any:
    if result.status is ActionStatus.ignored:
        raise HTTPException(409, "A previous request for this action is still in flight")
    if result.rejected:
        raise HTTPException(400, result.error)
    if result.status is ActionStatus.failed:
        raise HTTPException(502, result.error)
    return result.value


async def _deal_or_404(store: SqlRecordStore, identity: Identity, deal_id: int) -> dict:
    deal = await services.get_deal(store, identity, deal_id)
    if deal is None:
        raise HTTPException(404, "Deal not found")
    return deal


# ---------------------------------------------------------------------------
# Routes: Deals
# ---------------------------------------------------------------------------


@app.get("/api/deals", response_model=DealListResponse,
         tags=["Deals"], summary="List deals with server-side sorting, filtering, and pagination")
async def list_deals(
    sort_by: SortColumn = Query(SortColumn.created_at),
    sort_dir: SortDirection = Query(SortDirection.desc),
    toggle: SortColumn | None = Query(None, description="Column header clicked; flips or switches the sort"),
    page: int = Query(1, ge=1),
    search: str | None = Query(None, description="Free-text search across company, sector, and founder"),
    stage: DealStage | None = Query(None),
    sector: str | None = Query(None, description="Case-insensitive sector substring"),
    outcome: DealOutcome | None = Query(None, description="pending also matches deals with no outcome"),
    identity: Identity = Depends(current_identity),
    store: SqlRecordStore = Depends(record_store),
):
    controller = DealListController(
        sort_column=sort_by, sort_direction=sort_dir, page=page,
        filters=DealFilters(search=search, stage=stage, sector=sector, outcome=outcome),
    )
    if toggle is not None:
        controller.toggle_sort(toggle)
    items = await services.fetch_deal_page(store, identity, controller)
    if not controller.load_failed and page > controller.page_count:
        raise HTTPException(400, f"Page {page} outside 1-{controller.page_count}")
    return services.listing_payload(controller, items)


@app.post("/api/deals", response_model=DealOut, status_code=201,
          tags=["Deals"], summary="Create a deal")
async def create_deal(
    body: DealCreate,
    identity: Identity = Depends(current_identity),
    store: SqlRecordStore = Depends(record_store),
):
    result = await _guarded(
        identity, "create_deal", services.create_deal, store, identity, body.model_dump(),
        success=Notification("Deal created", body.company_name, Severity.success),
    )
    return services.deal_view(_unwrap(result))


@app.get("/api/deals/stats", response_model=QuickStatsOut,
         tags=["Deals"], summary="Unfiltered pipeline stats for the header tiles")
async def deal_stats(
    identity: Identity = Depends(current_identity),
    store: SqlRecordStore = Depends(record_store),
):
    return await services.quick_stats(store, identity, services.utcnow())


@app.get("/api/deals/export.csv", tags=["Import/Export"], summary="Export all deals as CSV")
async def export_deals_csv(
    identity: Identity = Depends(current_identity),
    store: SqlRecordStore = Depends(record_store),
):
    body = await export_deals(store, identity)
    return Response(
        content=body, media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": 'attachment; filename="deals-export.csv"'},
    )


@app.post("/api/deals/import", response_model=ImportResult,
          tags=["Import/Export"], summary="Import deals from an .xlsx or .csv file")
async def import_deals_file(
    file: UploadFile = File(...),
    identity: Identity = Depends(current_identity),
    store: SqlRecordStore = Depends(record_store),
):
    if not file.filename or not file.filename.lower().endswith((".xlsx", ".csv")):
        raise HTTPException(400, "Only .xlsx and .csv files are supported")
    content = await file.read()
    try:
        return await import_deals(store, identity, file.filename, content)
    except ValueError as exc:
        raise HTTPException(400, str(exc)) from exc


@app.post("/api/deals/compare", tags=["Comparison"],
          summary="Compare selected deals metric by metric, flagging every best value")
async def compare(
    body: CompareRequest,
    identity: Identity = Depends(current_identity),
    store: SqlRecordStore = Depends(record_store),
):
    comparison = await services.compare_selected(store, identity, body.deal_ids)
    return services.comparison_dict(comparison)


@app.get("/api/deals/{deal_id}", response_model=DealOut, tags=["Deals"], summary="Get one deal")
async def get_deal(
    deal_id: int,
    identity: Identity = Depends(current_identity),
    store: SqlRecordStore = Depends(record_store),
):
    return services.deal_view(await _deal_or_404(store, identity, deal_id))


@app.put("/api/deals/{deal_id}", response_model=DealOut,
         tags=["Deals"], summary="Update deal fields (only fields sent are written)")
async def update_deal(
    deal_id: int,
    body: DealUpdate,
    identity: Identity = Depends(current_identity),
    store: SqlRecordStore = Depends(record_store),
):
    await _deal_or_404(store, identity, deal_id)
    result = await _guarded(
        identity, f"update_deal:{deal_id}", services.update_deal, store, identity, deal_id, body.model_dump(exclude_unset=True),
        success=Notification("Deal updated", severity=Severity.success),
    )
    return services.deal_view(_unwrap(result))


@app.put("/api/deals/{deal_id}/stage", response_model=DealOut, tags=["Deals"], summary="Move a deal to a stage")
async def update_stage(
    deal_id: int,
    body: StageUpdate,
    identity: Identity = Depends(current_identity),
    store: SqlRecordStore = Depends(record_store),
):
    await _deal_or_404(store, identity, deal_id)
    result = await _guarded(
        identity, f"update_deal:{deal_id}", services.update_deal_stage, store, identity, deal_id, body.stage,
    )
    return services.deal_view(_unwrap(result))


@app.put("/api/deals/{deal_id}/outcome", response_model=DealOut, tags=["Deals"], summary="Record a deal outcome")
async def update_outcome(
    deal_id: int,
    body: OutcomeUpdate,
    identity: Identity = Depends(current_identity),
    store: SqlRecordStore = Depends(record_store),
):
    await _deal_or_404(store, identity, deal_id)
    result = await _guarded(
        identity, f"update_deal:{deal_id}", services.update_deal_outcome, store, identity, deal_id, body.outcome,
    )
    return services.deal_view(_unwrap(result))


@app.delete("/api/deals/{deal_id}", status_code=204, tags=["Deals"], summary="Delete a deal")
async def delete_deal(
    deal_id: int,
    identity: Identity = Depends(current_identity),
    store: SqlRecordStore = Depends(record_store),
):
    deal = await _deal_or_404(store, identity, deal_id)
    result = await _guarded(
        identity, f"update_deal:{deal_id}", services.delete_deal, store, identity, deal_id,
        success=Notification("Deal deleted", f"{deal['company_name']} has been removed.", Severity.success),
    )
    _unwrap(result)
    return Response(status_code=204)


@app.post("/api/deals/{deal_id}/portfolio", response_model=PositionOut, status_code=201,
          tags=["Portfolio"], summary="Open a portfolio position from a deal")
async def add_to_portfolio(
    deal_id: int,
    body: PositionFromDeal,
    identity: Identity = Depends(current_identity),
    store: SqlRecordStore = Depends(record_store),
):
    deal = await _deal_or_404(store, identity, deal_id)
    result = await _guarded(
        identity, f"add_to_portfolio:{deal_id}", services.convert_deal_to_position,
        store, identity, deal_id, body.model_dump(), services.utcnow().date(),
        success=Notification("Portfolio position created",
                             f"{deal['company_name']} has been added to your portfolio.", Severity.success),
    )
    return _unwrap(result)


# ---------------------------------------------------------------------------
# Routes: Documents
# ---------------------------------------------------------------------------


@app.post("/api/deals/{deal_id}/documents", response_model=UploadResult,
          tags=["Documents"], summary="Upload a pitch deck (PDF or PowerPoint, max 10MB)")
async def upload_document(
    deal_id: int,
    file: UploadFile = File(...),
    identity: Identity = Depends(current_identity),
    store: SqlRecordStore = Depends(record_store),
    blobs: BlobStore = Depends(blob_store),
):
    content = await file.read()
    try:
        validate_document(file.filename or "", file.content_type, len(content))
    except DocumentRejected as exc:
        status = 413 if len(content) > MAX_DOCUMENT_BYTES else 400
        raise HTTPException(status, f"{exc.title}: {exc}") from exc
    await _deal_or_404(store, identity, deal_id)
    result = await _guarded(
        identity, f"upload:{deal_id}", services.upload_deal_document, store, blobs, identity, deal_id,
        file.filename or "document", file.content_type, content, services.utcnow(),
        success=Notification("Document uploaded", f"{file.filename} has been uploaded successfully.",
                             Severity.success),
        failure_title="Upload failed",
    )
    return _unwrap(result)


# ---------------------------------------------------------------------------
# Routes: Portfolio
# ---------------------------------------------------------------------------


@app.get("/api/portfolio/health", tags=["Portfolio"],
         summary="Health board for active positions with critical/warning counts")
async def portfolio_health(
    identity: Identity = Depends(current_identity),
    store: SqlRecordStore = Depends(record_store),
):
    return services.health_board_dict(await services.portfolio_health(store, identity))


@app.put("/api/portfolio/{position_id}/health", tags=["Portfolio"],
         summary="Update health metrics; stamps the update time")
async def update_health(
    position_id: int,
    body: HealthUpdate,
    identity: Identity = Depends(current_identity),
    store: SqlRecordStore = Depends(record_store),
):
    existing = await store.fetch_one(RecordQuery(
        table="portfolio", eq={"id": position_id, "user_id": identity.user_id},
    ))
    if existing is None:
        raise HTTPException(404, "Position not found")
    result = await _guarded(
        identity, f"update_health:{position_id}", update_position_health, store, identity, position_id, body.model_dump(), services.utcnow(),
        success=Notification("Metrics updated", severity=Severity.success),
    )
    record = _unwrap(result)
    return services.health_board_dict(health_board([record]))["rows"][0]


# ---------------------------------------------------------------------------
# Routes: Contacts
# ---------------------------------------------------------------------------


@app.post("/api/contacts", response_model=ContactOut, status_code=201,
          tags=["Contacts"], summary="Add a contact")
async def create_contact(
    body: ContactCreate,
    identity: Identity = Depends(current_identity),
    store: SqlRecordStore = Depends(record_store),
):
    result = await _guarded(
        identity, "create_contact", services.create_contact, store, identity, body.model_dump(),
        success=Notification("Contact added", body.name, Severity.success),
    )
    return _unwrap(result)


@app.post("/api/contacts/{contact_id}/touchpoints", response_model=TouchpointOut, status_code=201,
          tags=["Contacts"], summary="Log a touchpoint; moves the contact's last touchpoint to its date")
async def log_touchpoint(
    contact_id: int,
    body: TouchpointCreate,
    identity: Identity = Depends(current_identity),
    store: SqlRecordStore = Depends(record_store),
):
    if await services.get_contact(store, identity, contact_id) is None:
        raise HTTPException(404, "Contact not found")
    result = await _guarded(
        identity, f"log_touchpoint:{contact_id}", services.log_touchpoint,
        store, identity, contact_id, body.model_dump(), services.utcnow().date(),
        success=Notification("Touchpoint logged", severity=Severity.success),
    )
    return _unwrap(result)


@app.get("/api/contacts/alerts", tags=["Contacts"], summary="Reconnect alerts for key contacts")
async def contact_alerts(
    identity: Identity = Depends(current_identity),
    store: SqlRecordStore = Depends(record_store),
):
    alerts = await services.contact_alerts(store, identity, services.utcnow())
    return [
        {"severity": a.severity, "days_since": a.days_since, "title": a.title, "description": a.description}
        for a in alerts
    ]


@app.get("/api/contacts/{contact_id}/warmth", tags=["Contacts"], summary="Relationship warmth badge for a contact")
async def contact_warmth(
    contact_id: int,
    identity: Identity = Depends(current_identity),
    store: SqlRecordStore = Depends(record_store),
):
    reading = await services.contact_warmth(store, identity, contact_id)
    if reading is None:
        raise HTTPException(404, "Contact not found")
    return reading


# ---------------------------------------------------------------------------
# Routes: Weekly reviews
# ---------------------------------------------------------------------------


@app.get("/api/reviews/current", response_model=WeeklyReviewOut,
         tags=["Reviews"], summary="This week's review, or an empty one")
async def current_review(
    today: date | None = Query(None, description="Defaults to the server's current date"),
    identity: Identity = Depends(current_identity),
    store: SqlRecordStore = Depends(record_store),
):
    start = week_start(today or services.utcnow().date())
    return await load_review(store, identity, start)


@app.get("/api/reviews/past", response_model=list[WeeklyReviewOut],
         tags=["Reviews"], summary="Up to ten earlier reviews, newest first")
async def list_past_reviews(
    today: date | None = Query(None),
    identity: Identity = Depends(current_identity),
    store: SqlRecordStore = Depends(record_store),
):
    start = week_start(today or services.utcnow().date())
    return await past_reviews(store, identity, start)


@app.get("/api/reviews/{week_start_date}", response_model=WeeklyReviewOut,
         tags=["Reviews"], summary="Review for an exact week-start date")
async def review_for_week(
    week_start_date: date,
    identity: Identity = Depends(current_identity),
    store: SqlRecordStore = Depends(record_store),
):
    return await load_review(store, identity, week_start_date)


@app.put("/api/reviews", response_model=WeeklyReviewOut, tags=["Reviews"],
         summary="Save a weekly review (inserts or updates the week's record)")
async def put_review(
    body: WeeklyReviewIn,
    identity: Identity = Depends(current_identity),
    store: SqlRecordStore = Depends(record_store),
):
    result = await _guarded(
        identity, "save_review", save_review, store, identity, body.model_dump(),
        success=Notification("Weekly review saved", severity=Severity.success),
    )
    return _unwrap(result)


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


def main():
    import uvicorn
    uvicorn.run("dealdesk.app:app", host="127.0.0.1", port=8001, reload=True)


if __name__ == "__main__":
    main()
