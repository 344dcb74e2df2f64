"""
Fibonacci price levels between a cycle high and a cycle low.

Retracements (SUPPORT) sit inside the range measured down from the high.
Extensions (RESISTANCE) project the range above the high and stop at 5×
the high.
"""
import logging
from typing import List, Optional

from fibtime.engine.models import FibonacciPriceLevel, PivotKind, PricePivot

logger = logging.getLogger(__name__)

RETRACEMENTS = (
    (0.000, "Cycle High (0%)"),
    (0.236, "Fib 0.236 (23.6%)"),
    (0.333, "Harmonic 0.333 (33.3%)"),
    (0.382, "Fib 0.382 (38.2%)"),
    (0.500, "Fib 0.500 (50.0%)"),
    (0.618, "Fib 0.618 (61.8%)"),
    (0.667, "Harmonic 0.667 (66.7%)"),
    (0.786, "Fib 0.786 (78.6%)"),
    (1.000, "Cycle Low (100%)"),
)

EXTENSIONS = (
    (1.272, "Fib 1.272"),
    (1.333, "Harmonic 1.333"),
    (1.382, "Fib 1.382"),
    (1.500, "Geometric 1.500"),
    (1.618, "Fib 1.618"),
    (1.667, "Harmonic 1.667"),
    (2.000, "Double 2.000"),
    (2.333, "Harmonic 2.333"),
    (2.500, "Geometric 2.500"),
    (2.618, "Fib 2.618"),
    (2.667, "Harmonic 2.667"),
    (3.000, "Triple 3.000"),
    (3.333, "Harmonic 3.333"),
    (3.500, "Geometric 3.500"),
    (3.618, "Fib 3.618"),
    (3.667, "Harmonic 3.667"),
    (4.000, "Quadruple 4.000"),
    (4.236, "Fib 4.236"),
    (4.333, "Harmonic 4.333"),
    (4.500, "Geometric 4.500"),
)

MAX_EXTENSION_MULTIPLE = 5.0


def price_levels(high: float, low: float) -> List[FibonacciPriceLevel]:
    """All levels sorted highest price first. Empty when high ≤ low."""
    if high <= low:
        return []
    span = high - low
    levels: List[FibonacciPriceLevel] = []

    for ratio, label in RETRACEMENTS:
        levels.append(FibonacciPriceLevel(
            price      = high - span * ratio,
            ratio      = ratio,
            label      = label,
            level_type = "SUPPORT",
            distance   = f"{ratio * 100:.1f}% retracement",
        ))

    for ratio, label in EXTENSIONS:
        price = high + span * (ratio - 1.0)
        if price > high * MAX_EXTENSION_MULTIPLE:
            continue
        levels.append(FibonacciPriceLevel(
            price      = price,
            ratio      = ratio,
            label      = f"{label} ({(ratio - 1.0) * 100:.1f}% ext)",
            level_type = "RESISTANCE",
            distance   = f"{(ratio - 1.0) * 100:.1f}% extension",
        ))

    levels.sort(key=lambda l: l.price, reverse=True)
    return levels


def levels_for_pivots(pivots: List[PricePivot]) -> List[FibonacciPriceLevel]:
    """Levels between the most recent high-type and low-type pivot, if both exist."""
    high: Optional[PricePivot] = next((p for p in pivots if p.kind in (PivotKind.MAJOR_HIGH, PivotKind.HIGH)), None)
    low:  Optional[PricePivot] = next((p for p in pivots if p.kind in (PivotKind.MAJOR_LOW, PivotKind.LOW)), None)
    if high is None or low is None:
        return []
    levels = price_levels(high.price, low.price)
    logger.debug(f"Price levels {low.price:.6g} → {high.price:.6g}: {len(levels)}")
    return levels
