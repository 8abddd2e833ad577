"""Pydantic request/response schemas for the DealDesk API."""
from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, Field, field_validator

from dealdesk.enums import DealOutcome, DealStage, HealthStatus, SortColumn, SortDirection, Tier, TouchpointType


# widest integer the database columns hold
BIGINT_MAX = 2**63 - 1


def _reject_unknown(v):
    if v is not None and getattr(v, "value", v) == "unknown":
        raise ValueError("unknown is not an accepted value")
    return v


class _SubScoresMixin(BaseModel):
    vision_2030_alignment: float | None = Field(None, ge=1, le=5)
    founder_execution_score: float | None = Field(None, ge=1, le=5)
    founder_sales_ability: float | None = Field(None, ge=1, le=5)
    iteration_speed: float | None = Field(None, ge=1, le=5)


class DealCreate(_SubScoresMixin):
    company_name: str
    sector: str | None = None
    stage: DealStage = DealStage.review
    valuation_usd: int | None = Field(None, ge=0, le=BIGINT_MAX)
    equity_offered: float | None = Field(None, ge=0, le=100)
    founder_name: str | None = None
    founder_linkedin: str | None = None
    outcome: DealOutcome | None = None
    overall_score: float | None = None
    ai_score: float | None = Field(None, ge=0, le=100)
    failure_modes: str | None = None
    exit_potential: str | None = None
    notes: str | None = None

    @field_validator("company_name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("company_name must not be empty")
        return v

    check_enums = field_validator("stage", "outcome")(_reject_unknown)


class DealUpdate(_SubScoresMixin):
    company_name: str | None = None
    sector: str | None = None
    stage: DealStage | None = None
    valuation_usd: int | None = Field(None, ge=0, le=BIGINT_MAX)
    equity_offered: float | None = Field(None, ge=0, le=100)
    founder_name: str | None = None
    founder_linkedin: str | None = None
    outcome: DealOutcome | None = None
    overall_score: float | None = None
    ai_score: float | None = Field(None, ge=0, le=100)
    failure_modes: str | None = None
    exit_potential: str | None = None
    notes: str | None = None

    @field_validator("company_name")
    @classmethod
    def name_not_blank(cls, v: str | None) -> str:
        # only runs when the field is sent; an explicit null is rejected too
        if v is None or not v.strip():
            raise ValueError("company_name must not be empty")
        return v.strip()

    check_enums = field_validator("stage", "outcome")(_reject_unknown)


class StageUpdate(BaseModel):
    stage: DealStage

    check_enums = field_validator("stage")(_reject_unknown)


class OutcomeUpdate(BaseModel):
    outcome: DealOutcome

    check_enums = field_validator("outcome")(_reject_unknown)


class DealOut(BaseModel):
    id: int
    company_name: str
    sector: str | None = None
    stage: DealStage
    valuation_usd: int | None = None
    valuation_display: str
    equity_offered: float | None = None
    founder_name: str | None = None
    founder_linkedin: str | None = None
    outcome: DealOutcome
    vision_2030_alignment: float | None = None
    founder_execution_score: float | None = None
    founder_sales_ability: float | None = None
    iteration_speed: float | None = None
    overall_score: float | None = None
    ai_score: float | None = None
    ai_score_tier: Tier
    failure_modes: str | None = None
    exit_potential: str | None = None
    notes: str | None = None
    deck_url: str | None = None
    created_at: datetime | None = None
    warnings: list[str] = []


class DealListResponse(BaseModel):
    items: list[DealOut]
    total: int
    page: int
    page_size: int
    page_count: int
    range_label: str
    sort_column: SortColumn
    sort_direction: SortDirection
    can_go_back: bool
    can_go_forward: bool


class CompareRequest(BaseModel):
    deal_ids: list[int]


class QuickStatsOut(BaseModel):
    total_deals: int
    stage_counts: dict[str, int]
    avg_ai_score: int | None
    new_this_month: int


class HealthUpdate(BaseModel):
    monthly_revenue: float | None = Field(None, ge=0)
    burn_rate: float | None = Field(None, ge=0)
    runway_months: int | None = Field(None, ge=0, le=BIGINT_MAX)
    current_valuation_usd: int | None = Field(None, ge=0, le=BIGINT_MAX)
    health_status: HealthStatus = HealthStatus.healthy

    check_enums = field_validator("health_status")(_reject_unknown)


class PositionFromDeal(BaseModel):
    """Overrides for the new position; omitted values fall back to the deal's terms."""
    equity_percent: float | None = Field(None, ge=0, le=100)
    entry_valuation_usd: int | None = Field(None, ge=0, le=BIGINT_MAX)


class PositionOut(BaseModel):
    id: int
    deal_id: int | None = None
    company_name: str
    sector: str | None = None
    status: str | None = None
    health_status: str | None = None
    entry_valuation_usd: int | None = None
    equity_percent: float | None = None
    entry_date: date | None = None


class ContactCreate(BaseModel):
    name: str
    organization: str | None = None
    role: str | None = None
    tier: str = "connector"
    warmth_score: float | None = Field(None, ge=0, le=10)
    is_key_ten: bool = False

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name must not be empty")
        return v


class ContactOut(BaseModel):
    id: int
    name: str
    organization: str | None = None
    role: str | None = None
    tier: str | None = None
    warmth_score: float | None = None
    last_touchpoint: datetime | None = None
    is_key_ten: bool = False


class TouchpointCreate(BaseModel):
    type: TouchpointType = TouchpointType.meeting
    touch_date: date | None = None
    summary: str | None = None
    outcome: str | None = None


class TouchpointOut(BaseModel):
    id: int
    contact_id: int
    type: TouchpointType
    touch_date: date
    summary: str | None = None
    outcome: str | None = None


class WeeklyReviewIn(BaseModel):
    id: int | None = None
    week_start_date: date
    failure_condition_met: bool = False
    goal_progress_notes: str = ""
    wins: str = ""
    losses: str = ""
    reflections: str = ""
    next_week_priorities: str = ""


class WeeklyReviewOut(WeeklyReviewIn):
    pass


class ImportResult(BaseModel):
    total_rows: int
    imported: int
    skipped: int
    errors: list[str] = []
    unmapped_columns: list[str] = []


class UploadResult(BaseModel):
    url: str
    path: str
    bytes_written: int
