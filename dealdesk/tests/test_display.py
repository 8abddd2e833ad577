"""Tests for the pure display and classification helpers.

Covers currency formatting, score tiers, best-of-N selection, warmth
readings, contact alerts, enum coercion, and the comparison table.
"""
from __future__ import annotations

from datetime import datetime

import pytest

from dealdesk.comparison import compare_deals, failure_mode_lines, metric_ratio
from dealdesk.formatting import (
    EM_DASH, best_value, format_currency, format_monthly, format_number, is_best, score_tier,
)
from dealdesk.enums import (
    AlertSeverity, DealOutcome, DealStage, HealthStatus, SortDirection, Tier, coerce, known_values,
)
from dealdesk.warmth import (
    NEVER_CONTACTED, WARMTH_RATIONALE, WarmthTier, contact_alert, days_since, read_warmth, warmth_tier,
)

NOW = datetime(2024, 6, 30, 12, 0)


# =========================================================================
# Currency and number formatting
# =========================================================================

class TestFormatCurrency:
    @pytest.mark.parametrize("amount", [None, 0, 0.0, float("nan")])
    def test_missing_renders_em_dash(self, amount):
        assert format_currency(amount) == EM_DASH

    def test_billions(self):
        assert format_currency(1_500_000_000) == "$1.5B"

    def test_millions(self):
        assert format_currency(2_500_000) == "$2.5M"

    def test_millions_keep_trailing_zero(self):
        assert format_currency(2_000_000) == "$2.0M"

    def test_thousands_are_integer(self):
        assert format_currency(250_000) == "$250K"

    def test_units(self):
        assert format_currency(999) == "$999"

    def test_half_rounds_away_from_zero(self):
        assert format_currency(1_250_000) == "$1.3M"
        assert format_currency(1_500) == "$2K"

    def test_largest_tier_wins_on_boundary(self):
        assert format_currency(1_000_000) == "$1.0M"
        assert format_currency(1_000) == "$1K"

    @pytest.mark.parametrize("amount", [1e9, 2.5e9, 999e9, 1e12])
    def test_billions_never_use_smaller_suffix(self, amount):
        assert format_currency(amount).endswith("B")


class TestFormatMonthly:
    def test_thousands_per_month(self):
        assert format_monthly(45_000) == "$45K/mo"

    def test_none(self):
        assert format_monthly(None) == EM_DASH

    def test_zero_is_a_value(self):
        assert format_monthly(0) == "$0K/mo"


class TestFormatNumber:
    def test_drops_trailing_zero(self):
        assert format_number(4.0) == "4"

    def test_keeps_fraction(self):
        assert format_number(4.5) == "4.5"

    def test_none(self):
        assert format_number(None) == EM_DASH


# =========================================================================
# Score tiers and best-of-N
# =========================================================================

class TestScoreTier:
    @pytest.mark.parametrize("score,tier", [
        (None, Tier.neutral),
        (100, Tier.good),
        (70, Tier.good),
        (69.9, Tier.caution),
        (50, Tier.caution),
        (49, Tier.risk),
        (0, Tier.risk),
    ])
    def test_thresholds(self, score, tier):
        assert score_tier(score) is tier


class TestBestValue:
    def test_max_ignoring_none(self):
        assert best_value([3, None, 5, 4]) == 5

    def test_min_when_lower_is_better(self):
        assert best_value([3, None, 5], higher_is_better=False) == 3

    def test_all_none_means_no_best(self):
        assert best_value([None, None]) is None

    def test_empty(self):
        assert best_value([]) is None

    def test_ties_all_flagged(self):
        values = [5, 3, 5]
        best = best_value(values)
        assert [is_best(v, best) for v in values] == [True, False, True]

    def test_none_is_never_best(self):
        assert is_best(None, 5) is False
        assert is_best(None, None) is False


# =========================================================================
# Enum coercion
# =========================================================================

class TestCoerce:
    def test_known_value_normalized(self):
        assert coerce(DealStage, " Evaluating ", DealStage.review) is DealStage.evaluating

    def test_none_and_empty_use_default(self):
        assert coerce(DealOutcome, None, DealOutcome.pending) is DealOutcome.pending
        assert coerce(DealOutcome, "", DealOutcome.pending) is DealOutcome.pending

    def test_unrecognized_becomes_unknown(self, caplog):
        with caplog.at_level("WARNING"):
            assert coerce(HealthStatus, "on fire", HealthStatus.healthy) is HealthStatus.unknown
        assert "on fire" in caplog.text

    def test_enum_member_passes_through(self):
        assert coerce(DealStage, DealStage.closed, DealStage.review) is DealStage.closed

    def test_known_values_exclude_unknown(self):
        assert "unknown" not in known_values(DealStage)
        assert "term_sheet" in known_values(DealStage)

    def test_sort_direction_flips(self):
        assert SortDirection.asc.flipped() is SortDirection.desc
        assert SortDirection.desc.flipped() is SortDirection.asc


# =========================================================================
# Relationship warmth
# =========================================================================

class TestReadWarmth:
    def test_none_reads_as_neutral_default(self):
        reading = read_warmth(None)
        assert reading.score == 5.0
        assert reading.display == "5.0"
        assert reading.tier is WarmthTier.WARM
        assert reading.fill_percent == 50.0
        assert reading.out_of_range is False

    @pytest.mark.parametrize("score,tier", [
        (10, WarmthTier.HOT),
        (7, WarmthTier.HOT),
        (6.99, WarmthTier.WARM),
        (4, WarmthTier.WARM),
        (3.99, WarmthTier.COLD),
        (0, WarmthTier.COLD),
    ])
    def test_tiers(self, score, tier):
        assert warmth_tier(score) is tier
        assert read_warmth(score).tier is tier

    def test_rationale_is_presentational(self):
        reading = read_warmth(8)
        assert reading.rationale == WARMTH_RATIONALE
        assert reading.weights == {"recency": 0.4, "frequency": 0.3, "quality": 0.3}
        assert reading.display == "8.0"

    @pytest.mark.parametrize("score,display", [(2.25, "2.3"), (6.75, "6.8"), (0.05, "0.1")])
    def test_display_rounds_half_up(self, score, display):
        assert read_warmth(score).display == display

    def test_above_range_is_clamped_and_flagged(self):
        reading = read_warmth(12)
        assert reading.fill_percent == 100.0
        assert reading.out_of_range is True
        assert reading.display == "12.0"
        assert reading.tier is WarmthTier.HOT

    def test_below_range_is_clamped_and_flagged(self):
        reading = read_warmth(-1)
        assert reading.fill_percent == 0.0
        assert reading.out_of_range is True
        assert reading.tier is WarmthTier.COLD


class TestContactAlert:
    def test_days_since_never(self):
        assert days_since(None, NOW) == NEVER_CONTACTED

    def test_days_since(self):
        assert days_since(datetime(2024, 6, 20, 12, 0), NOW) == 10

    def test_cold_and_stale_is_red(self):
        alert = contact_alert("Ada", datetime(2024, 4, 1), 3.0, NOW)
        assert alert.severity is AlertSeverity.red
        assert alert.title == "Reconnect with Ada"
        assert alert.description == f"{alert.days_since} days since last touchpoint"

    def test_warm_but_stale_is_yellow(self):
        alert = contact_alert("Ada", datetime(2024, 4, 1), 6.0, NOW)
        assert alert.severity is AlertSeverity.yellow

    def test_just_over_thirty_days_is_yellow(self):
        alert = contact_alert("Ada", datetime(2024, 5, 25), 9.0, NOW)
        assert alert.severity is AlertSeverity.yellow

    def test_recent_contact_has_no_alert(self):
        assert contact_alert("Ada", datetime(2024, 6, 20), 2.0, NOW) is None

    def test_never_contacted_and_cold_is_red(self):
        alert = contact_alert("Ada", None, 2.0, NOW)
        assert alert.severity is AlertSeverity.red
        assert alert.days_since == NEVER_CONTACTED
        assert alert.description.startswith("Never contacted")

    def test_never_contacted_but_warm_has_no_alert(self):
        assert contact_alert("Ada", None, 5.0, NOW) is None

    def test_missing_warmth_defaults_to_neutral(self):
        alert = contact_alert("Ada", datetime(2024, 4, 1), None, NOW)
        assert alert.severity is AlertSeverity.yellow


# =========================================================================
# Comparison table
# =========================================================================

def _deal(deal_id: int, **fields) -> dict:
    base = {
        "id": deal_id, "company_name": f"Co {deal_id}", "sector": "Fintech", "stage": "evaluating",
        "valuation_usd": None, "equity_offered": None, "founder_name": None,
        "ai_score": None, "vision_2030_alignment": None, "founder_execution_score": None,
        "founder_sales_ability": None, "iteration_speed": None,
        "failure_modes": None, "exit_potential": None,
    }
    base.update(fields)
    return base


@pytest.fixture()
def two_deals():
    return [
        _deal(1, ai_score=80.0, vision_2030_alignment=5.0, founder_execution_score=3.0,
              iteration_speed=4.0, valuation_usd=2_000_000, equity_offered=10.0,
              founder_name="Sara", failure_modes="Churn\nRegulation\nHiring\nFunding"),
        _deal(2, ai_score=80.0, vision_2030_alignment=4.0, founder_execution_score=3.0,
              founder_sales_ability=2.0, iteration_speed=6.0, stage="mystery"),
    ]


class TestMetricRatio:
    def test_in_range(self):
        assert metric_ratio(4, 5) == (0.8, False)

    def test_above_max_clamped(self):
        assert metric_ratio(6, 5) == (1.0, True)

    def test_negative_clamped(self):
        assert metric_ratio(-1, 5) == (0.0, True)

    def test_no_value_or_no_max(self):
        assert metric_ratio(None, 5) == (None, False)
        assert metric_ratio(80, None) == (None, False)


class TestCompareDeals:
    def test_ties_flag_every_best(self, two_deals):
        row = compare_deals(two_deals).metric("ai_score")
        assert row.best == 80.0
        assert row.best_count == 2
        assert all(c.is_best for c in row.cells)

    def test_single_best(self, two_deals):
        row = compare_deals(two_deals).metric("vision_2030_alignment")
        assert [c.is_best for c in row.cells] == [True, False]
        assert row.cells[0].display == "5/5"
        assert row.cells[1].percent == pytest.approx(80.0)

    def test_missing_value_is_em_dash_not_zero(self, two_deals):
        row = compare_deals(two_deals).metric("founder_sales_ability")
        missing, present = row.cells
        assert missing.display == EM_DASH
        assert missing.is_best is False
        assert missing.ratio is None
        assert present.is_best is True

    def test_out_of_range_is_clamped_and_flagged(self, two_deals):
        cell = compare_deals(two_deals).metric("iteration_speed").cells[1]
        assert cell.display == "6/5"
        assert cell.ratio == 1.0
        assert cell.out_of_range is True
        assert cell.is_best is True

    def test_ai_score_has_no_ratio(self, two_deals):
        cell = compare_deals(two_deals).metric("ai_score").cells[0]
        assert cell.ratio is None
        assert cell.display == "80"
        assert cell.tier is Tier.good

    def test_columns_keep_order_and_render_text(self, two_deals):
        first, second = compare_deals(two_deals).columns
        assert first.deal_id == 1
        assert first.valuation_display == "$2.0M"
        assert first.equity_display == "10% equity"
        assert first.founder == "Sara"
        assert first.failure_modes == ["Churn", "Regulation", "Hiring"]
        assert second.founder == EM_DASH
        assert second.exit_potential == EM_DASH
        assert second.valuation_display == EM_DASH

    def test_unknown_stage_reported(self, two_deals):
        second = compare_deals(two_deals).columns[1]
        assert second.stage is DealStage.unknown
        assert second.warnings

    def test_empty_selection_is_degenerate_table(self):
        comparison = compare_deals([])
        assert comparison.columns == []
        assert all(row.best is None and row.cells == [] for row in comparison.metrics)

    def test_two_of_three_tied(self):
        deals = [_deal(1, ai_score=80), _deal(2, ai_score=80), _deal(3, ai_score=60)]
        assert compare_deals(deals).metric("ai_score").best_count == 2

    def test_single_deal_is_its_own_best(self):
        row = compare_deals([_deal(7, ai_score=42.0)]).metric("ai_score")
        assert row.cells[0].is_best is True

    def test_metric_lookup_unknown_key(self, two_deals):
        with pytest.raises(KeyError):
            compare_deals(two_deals).metric("burn_rate")


class TestFailureModeLines:
    def test_keeps_order_and_duplicates(self):
        assert failure_mode_lines("a\na\nb\nc") == ["a", "a", "b"]

    def test_empty(self):
        assert failure_mode_lines(None) == []
        assert failure_mode_lines("") == []
