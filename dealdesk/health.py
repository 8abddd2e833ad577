"""Portfolio health: status badges, runway coloring, and summary counts.

Health status is whatever was last stored on the position; it is never
derived from runway or burn. Runway gets its own independent coloring.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from dealdesk.actions import Identity
from dealdesk.enums import HealthStatus, PositionStatus, Tier, coerce
from dealdesk.formatting import EM_DASH, format_currency, format_monthly
from dealdesk.store import RecordQuery, RecordStore

log = logging.getLogger(__name__)

RUNWAY_RISK_MONTHS = 3
RUNWAY_CAUTION_MONTHS = 6

HEALTH_TIERS = {
    HealthStatus.healthy: Tier.good,
    HealthStatus.warning: Tier.caution,
    HealthStatus.critical: Tier.risk,
    HealthStatus.unknown: Tier.neutral,
}
HEALTH_LABELS = {
    HealthStatus.healthy: "Healthy",
    HealthStatus.warning: "Warning",
    HealthStatus.critical: "Critical",
    HealthStatus.unknown: "Unknown",
}

HEALTH_UPDATE_FIELDS = (
    "monthly_revenue", "burn_rate", "runway_months", "current_valuation_usd", "health_status",
)


def classify_health(status: object) -> HealthStatus:
    return coerce(HealthStatus, status, HealthStatus.healthy)


def health_tier(status: object) -> Tier:
    return HEALTH_TIERS[classify_health(status)]


def runway_severity(months: float | int | None) -> Tier | None:
    if months is None:
        return None
    if months <= RUNWAY_RISK_MONTHS:
        return Tier.risk
    if months <= RUNWAY_CAUTION_MONTHS:
        return Tier.caution
    return Tier.neutral


@dataclass(frozen=True)
class HealthCounts:
    critical: int = 0
    warning: int = 0


def health_counts(statuses: Iterable[object]) -> HealthCounts:
    """Count positions whose stored status is exactly critical or warning."""
    critical = warning = 0
    for raw in statuses:
        status = classify_health(raw)
        if status is HealthStatus.critical:
            critical += 1
        elif status is HealthStatus.warning:
            warning += 1
    return HealthCounts(critical=critical, warning=warning)


@dataclass
class HealthRow:
    id: int
    company_name: str
    sector: str | None
    health_status: HealthStatus
    health_label: str
    health_tier: Tier
    monthly_revenue: float | None
    revenue_display: str
    burn_rate: float | None
    burn_display: str
    runway_months: int | None
    runway_display: str
    runway_tier: Tier | None
    current_valuation_usd: int | None
    valuation_display: str
    last_metrics_update: datetime | None
    warnings: list[str] = field(default_factory=list)


@dataclass
class HealthBoard:
    rows: list[HealthRow]
    counts: HealthCounts

    @property
    def empty(self) -> bool:
        return not self.rows


def health_row(position: Mapping[str, Any]) -> HealthRow:
    raw_status = position.get("health_status")
    status = classify_health(raw_status)
    warnings = []
    if status is HealthStatus.unknown:
        warnings.append(f"Unrecognized health status {raw_status!r}")
    runway = position.get("runway_months")
    return HealthRow(
        id=position["id"],
        company_name=position["company_name"],
        sector=position.get("sector"),
        health_status=status,
        health_label=HEALTH_LABELS[status],
        health_tier=HEALTH_TIERS[status],
        monthly_revenue=position.get("monthly_revenue"),
        revenue_display=format_monthly(position.get("monthly_revenue")),
        burn_rate=position.get("burn_rate"),
        burn_display=format_monthly(position.get("burn_rate")),
        runway_months=runway,
        runway_display=EM_DASH if runway is None else f"{runway}mo",
        runway_tier=runway_severity(runway),
        current_valuation_usd=position.get("current_valuation_usd"),
        valuation_display=format_currency(position.get("current_valuation_usd")),
        last_metrics_update=position.get("last_metrics_update"),
        warnings=warnings,
    )


def health_board(positions: Iterable[Mapping[str, Any]]) -> HealthBoard:
    rows = [health_row(p) for p in positions]
    return HealthBoard(rows=rows, counts=health_counts(r.health_status for r in rows))


def active_positions_query(identity: Identity) -> RecordQuery:
    return RecordQuery(
        table="portfolio",
        eq={"user_id": identity.user_id, "status": PositionStatus.active.value},
        order_by="health_status",
        descending=True,
    )


async def update_position_health(
    store: RecordStore,
    identity: Identity,
    position_id: int,
    update: Mapping[str, Any],
    now: datetime,
) -> dict[str, Any]:
    """Write revised health metrics and stamp *now* as the update time.

    Store failures propagate as ``StoreError``; the caller's in-memory board
    is not touched either way and must be refreshed explicitly.
    """
    payload = {f: update.get(f) for f in HEALTH_UPDATE_FIELDS}
    status = classify_health(payload["health_status"])
    if status is HealthStatus.unknown:
        raise ValueError(f"Invalid health status {payload['health_status']!r}")
    payload["health_status"] = status.value
    payload["last_metrics_update"] = now
    record = await store.update("portfolio", position_id, payload, user_id=identity.user_id)
    log.info("Updated health metrics for position %s (%s)", position_id, status.value)
    return record
