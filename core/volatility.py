"""
Volatility Estimator — close-normalized average true range over recent bars.
Used to size the take-profit target and trailing band for the exit plan.
"""

from __future__ import annotations
from decimal import Decimal
from typing import List, Optional, Sequence
from exchange.models import Bar
import logging

logger = logging.getLogger(__name__)

MIN_VOLATILITY = Decimal("0.003")
MAX_VOLATILITY = Decimal("0.05")
FALLBACK_VOLATILITY = Decimal("0.015")   # Used when no bars are available


def clamp(value: Decimal, low: Decimal, high: Decimal) -> Decimal:
    return max(low, min(high, value))


def true_range(bar: Bar, prev_close: Decimal) -> Decimal:
    return max(
        bar.high - bar.low,
        abs(bar.high - prev_close),
        abs(bar.low - prev_close),
    )


def estimate_volatility(bars: Sequence[Bar]) -> Decimal:
    """
    Average of TR / close over all bars, clamped to [0.3%, 5%].

    The first bar uses its own close as previous close (TR = high - low).
    A bar with a non-positive close contributes 0 to the average and is not
    used as the previous close for the next bar.
    Empty input returns the fallback volatility instead of failing.
    """
    if not bars:
        return FALLBACK_VOLATILITY

    normalized: List[Decimal] = []
    prev_close: Optional[Decimal] = None

    for bar in bars:
        if bar.close <= 0:
            normalized.append(Decimal("0"))
            continue

        ref = prev_close if prev_close is not None else bar.close
        normalized.append(true_range(bar, ref) / bar.close)
        prev_close = bar.close

    raw = sum(normalized, Decimal("0")) / Decimal(len(normalized))
    vol = clamp(raw, MIN_VOLATILITY, MAX_VOLATILITY)

    if vol != raw:
        logger.debug(f"[VOL] Raw volatility {raw:.6f} clamped to {vol}")
    return vol
