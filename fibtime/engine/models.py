"""
Domain records shared by every engine component.

All records are frozen dataclasses: a pivot, projection or window is
created once from an immutable candle sequence and never mutated, so
analyses can run side by side without copying.

Signals are a typed tagged union (SignalKind + payload) rather than
free-form strings. The display tag ("FIB_0.618", "90D_ANNIVERSARY",
"LUNAR_FULL_MOON", "SOLAR_AP_33") is derived from the payload and is
never parsed back.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import List, Optional, Tuple, Union


@dataclass(frozen=True)
class Candle:
    timestamp: int      # epoch ms, candle open time
    open:      float
    high:      float
    low:       float
    close:     float
    volume:    float = 0.0


class PivotKind(Enum):
    HIGH       = "HIGH"
    LOW        = "LOW"
    MAJOR_HIGH = "MAJOR_HIGH"
    MAJOR_LOW  = "MAJOR_LOW"

    @property
    def is_high(self) -> bool:
        return self in (PivotKind.HIGH, PivotKind.MAJOR_HIGH)

    @property
    def is_major(self) -> bool:
        return self in (PivotKind.MAJOR_HIGH, PivotKind.MAJOR_LOW)


class Bias(Enum):
    SUPPORT    = "SUPPORT"
    RESISTANCE = "RESISTANCE"

    @classmethod
    def for_pivot(cls, kind: PivotKind) -> "Bias":
        # A projected turn from a high is expected to act as resistance.
        return cls.RESISTANCE if kind.is_high else cls.SUPPORT


class Direction(Enum):
    UP   = "UP"
    DOWN = "DOWN"
    NONE = "NONE"

    @classmethod
    def of(cls, move_pct: float) -> "Direction":
        if move_pct > 0:
            return cls.UP
        if move_pct < 0:
            return cls.DOWN
        return cls.NONE


class SignalKind(Enum):
    FIBONACCI = "FIBONACCI"
    GANN      = "GANN"
    LUNAR     = "LUNAR"
    SOLAR     = "SOLAR"


class LunarPhase(Enum):
    NEW_MOON  = "NEW_MOON"
    FULL_MOON = "FULL_MOON"


@dataclass(frozen=True)
class PricePivot:
    date:     date
    price:    float
    kind:     PivotKind
    strength: float     # 0..1

    def __repr__(self):
        return (f"PricePivot({self.date} {self.kind.value} "
                f"@ {self.price:.6g} strength={self.strength:.2f})")


@dataclass(frozen=True)
class Signal:
    """One dated signal. payload is a ratio (FIBONACCI), a day count
    (GANN), a LunarPhase (LUNAR) or an AP index (SOLAR)."""
    kind:    SignalKind
    date:    date
    payload: Union[float, int, LunarPhase]
    source:  Optional[PricePivot] = field(default=None, compare=False)

    @property
    def tag(self) -> str:
        if self.kind is SignalKind.FIBONACCI:
            return f"FIB_{self.payload:.3f}"
        if self.kind is SignalKind.GANN:
            return f"{self.payload}D_ANNIVERSARY"
        if self.kind is SignalKind.LUNAR:
            return f"LUNAR_{self.payload.value}"
        return f"SOLAR_AP_{self.payload}"


@dataclass(frozen=True)
class TimeProjection:
    """
    A dated turning-point hypothesis.

    Exactly one of ratio / period is set. exact_offset_days keeps the
    unrounded offset (0.786 → 78.6) so labels never depend on the rounded
    day count.
    """
    date:              date
    source_pivot:      PricePivot = field(repr=False)
    intensity:         float
    bias:              Bias
    offset_days:       int
    exact_offset_days: float
    ratio:             Optional[float] = None
    period:            Optional[int] = None
    label:             str = ""

    @property
    def is_ratio(self) -> bool:
        return self.ratio is not None

    @property
    def signal(self) -> Signal:
        if self.ratio is not None:
            return Signal(SignalKind.FIBONACCI, self.date, self.ratio, self.source_pivot)
        return Signal(SignalKind.GANN, self.date, self.period, self.source_pivot)


@dataclass(frozen=True)
class HighActivityDay:
    date:            date
    intensity_value: int   # geomagnetic AP index


@dataclass(frozen=True)
class LunarEvent:
    date: date
    kind: LunarPhase


@dataclass(frozen=True)
class VortexWindow:
    date:        date
    signals:     Tuple[Signal, ...]
    intensity:   float
    window_type: str = "STANDARD_VORTEX"
    description: str = ""

    @property
    def contributing_factors(self) -> List[str]:
        """Distinct signal tags, in signal order."""
        seen: List[str] = []
        for s in self.signals:
            if s.tag not in seen:
                seen.append(s.tag)
        return seen

    @property
    def factor_count(self) -> int:
        return len(self.contributing_factors)

    def kinds(self) -> List[SignalKind]:
        return sorted({s.kind for s in self.signals}, key=lambda k: k.value)


@dataclass(frozen=True)
class HitResult:
    pivot_date:           date
    pivot_price:          float
    pivot_kind:           PivotKind
    projected_date:       date
    actual_move_date:     date
    move_percent:         float
    direction:            Direction
    is_hit:               bool
    days_from_projection: int
    ratio:                Optional[float] = None
    period:               Optional[int] = None
    reversal:             bool = False

    @property
    def label(self) -> str:
        if self.ratio is not None:
            return f"Fib {self.ratio:.3f}"
        return f"{self.period}D"

    @property
    def formatted_move(self) -> str:
        return f"{self.direction.value} {abs(self.move_percent):.2f}%"

    def to_dict(self) -> dict:
        return {
            "pivot_date":           self.pivot_date.isoformat(),
            "pivot_price":          self.pivot_price,
            "pivot_kind":           self.pivot_kind.value,
            "ratio":                self.ratio,
            "period":               self.period,
            "projected_date":       self.projected_date.isoformat(),
            "actual_move_date":     self.actual_move_date.isoformat(),
            "move_percent":         round(self.move_percent, 4),
            "direction":            self.direction.value,
            "is_hit":               self.is_hit,
            "reversal":             self.reversal,
            "days_from_projection": self.days_from_projection,
        }


@dataclass(frozen=True)
class FibonacciPriceLevel:
    price:      float
    ratio:      float
    label:      str
    level_type: str     # "SUPPORT" (retracement) or "RESISTANCE" (extension)
    distance:   str


@dataclass
class AnalysisResult:
    """Output of TimeGeometryService.analyze()."""
    symbol:            str
    analysis_date:     Optional[date] = None
    pivots:            List[PricePivot] = field(default_factory=list)
    major_pivots:      List[PricePivot] = field(default_factory=list)
    projections:       List[TimeProjection] = field(default_factory=list)
    vortex_windows:    List[VortexWindow] = field(default_factory=list)
    price_levels:      List[FibonacciPriceLevel] = field(default_factory=list)
    compression_score: float = 0.0
    confidence_score:  float = 0.0
    message:           str = ""

    @property
    def is_empty(self) -> bool:
        return not (self.pivots or self.major_pivots)

    def to_dict(self) -> dict:
        return {
            "symbol":            self.symbol,
            "analysis_date":     self.analysis_date.isoformat() if self.analysis_date else None,
            "pivots":            [_pivot_dict(p) for p in self.pivots],
            "major_pivots":      [_pivot_dict(p) for p in self.major_pivots],
            "projections": [
                {
                    "date":        p.date.isoformat(),
                    "ratio":       p.ratio,
                    "period":      p.period,
                    "label":       p.label,
                    "intensity":   round(p.intensity, 4),
                    "bias":        p.bias.value,
                    "source_date": p.source_pivot.date.isoformat(),
                }
                for p in self.projections
            ],
            "vortex_windows": [
                {
                    "date":                 w.date.isoformat(),
                    "contributing_factors": w.contributing_factors,
                    "intensity":            round(w.intensity, 4),
                    "type":                 w.window_type,
                    "description":          w.description,
                }
                for w in self.vortex_windows
            ],
            "price_levels": [
                {"price": l.price, "ratio": l.ratio, "label": l.label, "type": l.level_type}
                for l in self.price_levels
            ],
            "compression_score": round(self.compression_score, 4),
            "confidence_score":  round(self.confidence_score, 4),
            "message":           self.message,
        }


def _pivot_dict(p: PricePivot) -> dict:
    return {
        "date":     p.date.isoformat(),
        "price":    p.price,
        "kind":     p.kind.value,
        "strength": round(p.strength, 4),
    }
