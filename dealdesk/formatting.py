"""Pure display helpers: currency strings, severity tiers, best-of-N."""
from __future__ import annotations

from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal

from dealdesk.enums import Tier

EM_DASH = "—"

# (threshold, divisor, suffix, decimals), largest first
_CURRENCY_TIERS = (
    (1_000_000_000, 1_000_000_000, "B", 1),
    (1_000_000, 1_000_000, "M", 1),
    (1_000, 1_000, "K", 0),
)

SCORE_GOOD = 70
SCORE_CAUTION = 50


def fixed(value: float, decimals: int) -> str:
    # Half away from zero on the exact binary value.
    quantum = Decimal(1).scaleb(-decimals)
    return str(Decimal(value).quantize(quantum, rounding=ROUND_HALF_UP))


def format_currency(amount: float | int | None) -> str:
    """Compact USD string: ``$1.2B``, ``$3.4M``, ``$250K``, ``$900``.

    ``None`` and zero render as an em-dash.
    """
    if not amount or amount != amount:  # NaN
        return EM_DASH
    for threshold, divisor, suffix, decimals in _CURRENCY_TIERS:
        if amount >= threshold:
            return f"${fixed(amount / divisor, decimals)}{suffix}"
    return f"${fixed(amount, 0)}"


def format_monthly(amount: float | int | None) -> str:
    """Monthly revenue/burn as integer thousands, e.g. ``$45K/mo``."""
    if amount is None:
        return EM_DASH
    return f"${fixed(amount / 1000, 0)}K/mo"


def format_number(value: float | int | None) -> str:
    """Render a raw stored number, dropping a trailing ``.0``."""
    if value is None:
        return EM_DASH
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def score_tier(score: float | int | None) -> Tier:
    if score is None:
        return Tier.neutral
    if score >= SCORE_GOOD:
        return Tier.good
    if score >= SCORE_CAUTION:
        return Tier.caution
    return Tier.risk


def best_value(values: Iterable[float | int | None], higher_is_better: bool = True) -> float | int | None:
    """Best non-null value, or ``None`` when there is nothing to compare."""
    present = [v for v in values if v is not None]
    if not present:
        return None
    return max(present) if higher_is_better else min(present)


def is_best(value: float | int | None, best: float | int | None) -> bool:
    """True for every entry equal to *best*, so ties all get flagged."""
    return value is not None and best is not None and value == best
