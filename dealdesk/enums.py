"""Closed vocabularies for the string fields the record store hands back.

Every enum carries an ``unknown`` member. Values that arrive from storage and
do not match a known member are coerced to ``unknown`` and logged instead of
raising, so a single bad row never breaks a listing.
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import TypeVar

log = logging.getLogger(__name__)


class DealStage(str, Enum):
    review = "review"
    evaluating = "evaluating"
    passed = "passed"
    term_sheet = "term_sheet"
    closed = "closed"
    rejected = "rejected"
    unknown = "unknown"


class DealOutcome(str, Enum):
    pending = "pending"
    win = "win"
    miss = "miss"
    regret = "regret"
    noise = "noise"
    unknown = "unknown"


class HealthStatus(str, Enum):
    healthy = "healthy"
    warning = "warning"
    critical = "critical"
    unknown = "unknown"


class PositionStatus(str, Enum):
    active = "active"
    exited = "exited"
    written_off = "written_off"
    unknown = "unknown"


class SortColumn(str, Enum):
    company_name = "company_name"
    sector = "sector"
    stage = "stage"
    ai_score = "ai_score"
    valuation_usd = "valuation_usd"
    created_at = "created_at"
    outcome = "outcome"


class SortDirection(str, Enum):
    asc = "asc"
    desc = "desc"

    def flipped(self) -> SortDirection:
        return SortDirection.desc if self is SortDirection.asc else SortDirection.asc


class Tier(str, Enum):
    """Display severity shared by scores, runway and health badges."""
    neutral = "neutral"
    good = "good"
    caution = "caution"
    risk = "risk"


class AlertSeverity(str, Enum):
    green = "green"
    yellow = "yellow"
    red = "red"


class TouchpointType(str, Enum):
    meeting = "meeting"
    call = "call"
    email = "email"
    intro = "intro"
    message = "message"


E = TypeVar("E", DealStage, DealOutcome, HealthStatus, PositionStatus)


def coerce(enum_cls: type[E], raw: object, default: E) -> E:
    """Map a raw stored value onto *enum_cls*.

    ``None`` and the empty string map to *default*; anything unrecognized maps
    to ``enum_cls.unknown``.
    """
    if raw is None or raw == "":
        return default
    if isinstance(raw, enum_cls):
        return raw
    try:
        return enum_cls(str(raw).strip().lower())
    except ValueError:
        log.warning("Unrecognized %s value %r", enum_cls.__name__, raw)
        return enum_cls.unknown  # type: ignore[return-value]


def known_values(enum_cls: type[Enum]) -> list[str]:
    return [m.value for m in enum_cls if m.value != "unknown"]
