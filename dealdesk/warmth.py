"""Relationship warmth: tier labels for a contact's 0-10 warmth score.

The score itself is computed elsewhere and stored on the contact. The weights
below are what the score is documented to be built from; nothing here
recomputes it.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from dealdesk.enums import AlertSeverity
from dealdesk.formatting import fixed

log = logging.getLogger(__name__)

DEFAULT_WARMTH = 5.0
WARMTH_MIN = 0.0
WARMTH_MAX = 10.0
HOT_THRESHOLD = 7.0
WARM_THRESHOLD = 4.0

WARMTH_WEIGHTS = {"recency": 0.4, "frequency": 0.3, "quality": 0.3}
WARMTH_RATIONALE = "Based on: Recency (40%), Frequency (30%), Quality (30%)"

STALE_DAYS = 30
COLD_DAYS = 60
NEVER_CONTACTED = -1


class WarmthTier(str, Enum):
    HOT = "HOT"
    WARM = "WARM"
    COLD = "COLD"


@dataclass(frozen=True)
class WarmthReading:
    score: float
    display: str
    tier: WarmthTier
    fill_percent: float
    out_of_range: bool = False
    rationale: str = WARMTH_RATIONALE
    weights: dict[str, float] = field(default_factory=lambda: dict(WARMTH_WEIGHTS))


def warmth_tier(score: float) -> WarmthTier:
    if score >= HOT_THRESHOLD:
        return WarmthTier.HOT
    if score >= WARM_THRESHOLD:
        return WarmthTier.WARM
    return WarmthTier.COLD


def read_warmth(score: float | None) -> WarmthReading:
    """Classify a stored warmth score; ``None`` reads as the neutral 5.0.

    The fill bar is clamped to 0-100 and the reading flagged when the stored
    score falls outside 0-10. The raw score is still what gets displayed.
    """
    value = DEFAULT_WARMTH if score is None else float(score)
    out_of_range = not (WARMTH_MIN <= value <= WARMTH_MAX)
    if out_of_range:
        log.warning("Warmth score %s outside %s-%s", value, WARMTH_MIN, WARMTH_MAX)
    fill = min(100.0, max(0.0, value * 10))
    return WarmthReading(
        score=value,
        display=fixed(value, 1),
        tier=warmth_tier(value),
        fill_percent=fill,
        out_of_range=out_of_range,
    )


@dataclass(frozen=True)
class ContactAlert:
    severity: AlertSeverity
    days_since: int
    title: str
    description: str


def days_since(last_touchpoint: datetime | None, now: datetime) -> int:
    if last_touchpoint is None:
        return NEVER_CONTACTED
    if last_touchpoint.tzinfo is None and now.tzinfo is not None:
        last_touchpoint = last_touchpoint.replace(tzinfo=now.tzinfo)
    return (now - last_touchpoint).days


def contact_alert_severity(days: int, warmth: float | None) -> AlertSeverity:
    score = DEFAULT_WARMTH if warmth is None else warmth
    if (days > COLD_DAYS or days == NEVER_CONTACTED) and score < WARM_THRESHOLD:
        return AlertSeverity.red
    if days > STALE_DAYS:
        return AlertSeverity.yellow
    return AlertSeverity.green


def contact_alert(
    name: str, last_touchpoint: datetime | None, warmth: float | None, now: datetime,
) -> ContactAlert | None:
    """Reconnect alert for a key contact, or ``None`` when the relationship is fine."""
    days = days_since(last_touchpoint, now)
    severity = contact_alert_severity(days, warmth)
    if severity is AlertSeverity.green:
        return None
    description = (
        "Never contacted — relationship at risk" if days == NEVER_CONTACTED
        else f"{days} days since last touchpoint"
    )
    return ContactAlert(
        severity=severity, days_since=days,
        title=f"Reconnect with {name}", description=description,
    )
