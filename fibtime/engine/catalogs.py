"""
Ratio and period catalog helpers.

Ratios are grouped in families that drive both the projection intensity
and the human label:

  FIBONACCI  0.382 0.500 0.618 0.786 1.000 1.272 1.618 2.618
  HARMONIC   thirds: 0.333 0.667 1.333 1.667 2.333 2.667
  GEOMETRIC  halves: 1.500 2.500
  EXTENSION  whole multiples: 2.000 ("Double"), 3.000 ("Triple")

Day offsets are computed in Decimal from the catalog's literal ratio so
0.786 × 100 is exactly 78.6 and rounds half away from zero to 79.
Nothing here ever maps a rounded day count back to a ratio.
"""
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Dict, Tuple

from fibtime.engine.engine_config import FIBONACCI_RATIOS

_TOL = 1e-6


class RatioFamily(Enum):
    FIBONACCI = "FIBONACCI"
    HARMONIC  = "HARMONIC"
    GEOMETRIC = "GEOMETRIC"
    EXTENSION = "EXTENSION"


_EXTENSION_NAMES: Dict[float, str] = {2.0: "Double", 3.0: "Triple", 4.0: "Quadruple"}

# ── Base intensities ───────────────────────────────────────────────────────
# Canonical golden ratios weigh most, then the half, then the other
# retracements/extensions. Everything outside the Fibonacci family shares
# the low default.
_GOLDEN_RATIOS = (0.618, 1.618)
GOLDEN_INTENSITY:    float = 0.9
HALF_INTENSITY:      float = 0.8
FIBONACCI_INTENSITY: float = 0.7
DEFAULT_INTENSITY:   float = 0.6

# Gann anniversaries: the full circle and its quarter turns dominate.
_GANN_BASE: Dict[int, float] = {
    360: 0.9,
    180: 0.8,
    90:  0.8,
    720: 0.8,
    144: 0.75,
    270: 0.7,
}
GANN_DEFAULT_INTENSITY: float = 0.6


def _same(a: float, b: float) -> bool:
    return abs(a - b) < _TOL


def ratio_family(ratio: float) -> RatioFamily:
    if any(_same(ratio, r) for r in FIBONACCI_RATIOS):
        return RatioFamily.FIBONACCI
    if any(_same(ratio, r) for r in _EXTENSION_NAMES):
        return RatioFamily.EXTENSION
    # Halves that are not whole numbers.
    if _same((ratio * 2) % 1, 0.0) or _same((ratio * 2) % 1, 1.0):
        return RatioFamily.GEOMETRIC
    return RatioFamily.HARMONIC


def ratio_label(ratio: float) -> str:
    """'Fib 0.618', 'Harmonic 0.333', 'Geometric 1.500', 'Double 2.000'."""
    family = ratio_family(ratio)
    if family is RatioFamily.FIBONACCI:
        prefix = "Fib"
    elif family is RatioFamily.EXTENSION:
        prefix = next(name for r, name in _EXTENSION_NAMES.items() if _same(r, ratio))
    else:
        prefix = family.value.title()
    return f"{prefix} {ratio:.3f}"


def base_intensity_for_ratio(ratio: float) -> float:
    if any(_same(ratio, r) for r in _GOLDEN_RATIOS):
        return GOLDEN_INTENSITY
    if _same(ratio, 0.5):
        return HALF_INTENSITY
    if ratio_family(ratio) is RatioFamily.FIBONACCI:
        return FIBONACCI_INTENSITY
    return DEFAULT_INTENSITY


def base_intensity_for_period(period: int) -> float:
    return _GANN_BASE.get(period, GANN_DEFAULT_INTENSITY)


def period_label(period: int) -> str:
    if period % 360 == 0:
        years = period // 360
        return f"{period}D ({years} cycle{'s' if years > 1 else ''})"
    return f"{period}D"


def day_offset(ratio: float, base_unit_days: int) -> Tuple[int, float]:
    """
    (rounded_days, exact_days) for base_unit_days × ratio.

    Rounding is half away from zero on the exact decimal product. Going
    through str(ratio) keeps the catalog literal (0.786) instead of its
    binary approximation (0.78600000000000003).
    """
    exact = Decimal(str(ratio)) * Decimal(base_unit_days)
    rounded = exact.quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return int(rounded), float(exact)
