"""Side-by-side deal comparison.

For each scored metric the best value across the compared deals is found and
every deal matching it is flagged, so ties produce several "Best" badges.
Missing values render as an em-dash, never as zero.

Progress ratios are clamped to [0, 1] for rendering. A stored value outside
``[0, max]`` keeps its raw display text and the cell is flagged
``out_of_range``.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from dealdesk.enums import DealStage, Tier, coerce
from dealdesk.formatting import (
    EM_DASH, best_value, format_currency, format_number, is_best, score_tier,
)

log = logging.getLogger(__name__)

FAILURE_MODES_SHOWN = 3


@dataclass(frozen=True)
class ComparisonMetric:
    key: str
    label: str
    max: float | None = None
    higher_is_better: bool = True


AI_SCORE = ComparisonMetric("ai_score", "AI Score")
SCORED_METRICS = (
    ComparisonMetric("vision_2030_alignment", "Vision 2030 Alignment", 5),
    ComparisonMetric("founder_execution_score", "Founder Execution", 5),
    ComparisonMetric("founder_sales_ability", "Sales Ability", 5),
    ComparisonMetric("iteration_speed", "Iteration Speed", 5),
)
METRICS = (AI_SCORE, *SCORED_METRICS)


@dataclass
class MetricCell:
    deal_id: int
    value: float | None
    display: str
    is_best: bool = False
    ratio: float | None = None
    tier: Tier | None = None
    out_of_range: bool = False

    @property
    def percent(self) -> float | None:
        return None if self.ratio is None else self.ratio * 100


@dataclass
class MetricRow:
    key: str
    label: str
    max: float | None
    best: float | None
    cells: list[MetricCell]

    @property
    def best_count(self) -> int:
        return sum(1 for c in self.cells if c.is_best)


@dataclass
class DealColumn:
    deal_id: int
    company_name: str
    sector: str | None
    stage: DealStage
    founder: str
    valuation_display: str
    equity_display: str | None
    exit_potential: str
    failure_modes: list[str]
    warnings: list[str] = field(default_factory=list)


@dataclass
class Comparison:
    columns: list[DealColumn]
    metrics: list[MetricRow]

    def metric(self, key: str) -> MetricRow:
        for row in self.metrics:
            if row.key == key:
                return row
        raise KeyError(key)


def metric_ratio(value: float | None, maximum: float | None) -> tuple[float | None, bool]:
    """Progress ratio clamped to [0, 1], and whether clamping happened."""
    if value is None or not maximum:
        return None, False
    raw = value / maximum
    clamped = min(1.0, max(0.0, raw))
    return clamped, clamped != raw


def failure_mode_lines(text: str | None) -> list[str]:
    if not text:
        return []
    return text.split("\n")[:FAILURE_MODES_SHOWN]


def _metric_row(metric: ComparisonMetric, deals: Sequence[Mapping[str, Any]]) -> MetricRow:
    values = [d.get(metric.key) for d in deals]
    best = best_value(values, metric.higher_is_better)
    cells = []
    for deal, value in zip(deals, values):
        ratio, out_of_range = metric_ratio(value, metric.max)
        if out_of_range:
            log.warning("Deal %s %s=%s outside 0-%s", deal.get("id"), metric.key, value, metric.max)
        if value is None:
            display = EM_DASH
        elif metric.max is None:
            display = format_number(value)
        else:
            display = f"{format_number(value)}/{format_number(metric.max)}"
        cells.append(MetricCell(
            deal_id=deal["id"],
            value=value,
            display=display,
            is_best=is_best(value, best),
            ratio=ratio,
            tier=score_tier(value) if metric is AI_SCORE else None,
            out_of_range=out_of_range,
        ))
    return MetricRow(key=metric.key, label=metric.label, max=metric.max, best=best, cells=cells)


def _column(deal: Mapping[str, Any]) -> DealColumn:
    raw_stage = deal.get("stage")
    stage = coerce(DealStage, raw_stage, DealStage.review)
    warnings = [f"Unrecognized stage {raw_stage!r}"] if stage is DealStage.unknown else []
    equity = deal.get("equity_offered")
    return DealColumn(
        deal_id=deal["id"],
        company_name=deal["company_name"],
        sector=deal.get("sector"),
        stage=stage,
        founder=deal.get("founder_name") or EM_DASH,
        valuation_display=format_currency(deal.get("valuation_usd")),
        equity_display=f"{format_number(equity)}% equity" if equity else None,
        exit_potential=deal.get("exit_potential") or EM_DASH,
        failure_modes=failure_mode_lines(deal.get("failure_modes")),
        warnings=warnings,
    )


def compare_deals(deals: Sequence[Mapping[str, Any]]) -> Comparison:
    """Build the comparison table for *deals* in the given order."""
    return Comparison(
        columns=[_column(d) for d in deals],
        metrics=[_metric_row(m, deals) for m in METRICS],
    )
