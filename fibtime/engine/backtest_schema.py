"""
backtest_schema.py — Backtest result schema
===========================================
Data contract between BacktestEngine and its consumers
(TimeGeometryService, the report script, tests).

Field names
-----------
Attributes are snake_case. Each record also answers to the camelCase key
used in the JSON reports, so r["successRate"] and r.success_rate are the
same value:

  sample_size     sampleSize       samples in the bucket
  avg_change      averageChange    arithmetic mean % change
  max_change      maxChange        largest % change
  min_change      minChange        smallest % change
  std_dev         stdDevChange     POPULATION std dev of % changes
  success_rate    successRate      percent 0..100 of samples > 0 (50.0 = 50%)

Insufficient data
-----------------
Never an exception. Every top-level result carries insufficient_data=True,
a message, and empty maps. A bucket below its sample threshold is absent
from the map, never zero-filled: a reported 0.0 success rate always means
real samples that were uniformly non-positive.

Usage
-----
  from fibtime.engine.backtest_schema import FibonacciPerformance

  r: FibonacciPerformance = engine.backtest_ratios(symbol, df)
  print(r.stats[0.618].success_rate)
  print(r.stats[0.618]["successRate"])      # report key
  print(r["stats"])
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Union

# Report (camelCase) key → attribute
_ALIASES: Dict[str, str] = {
    "sampleSize":          "sample_size",
    "averageChange":       "avg_change",
    "maxChange":           "max_change",
    "minChange":           "min_change",
    "stdDevChange":        "std_dev",
    "successRate":         "success_rate",
    "highApDays":          "high_ap_days",
    "averageReturnHighAp": "avg_return_high_ap",
    "averageReturnNormal": "avg_return_normal",
    "volatilityRatio":     "volatility_ratio",
    "impactAssessment":    "impact",
    "overallScore":        "overall_score",
}


class _DictAccess:
    """Dict-style access shared by every schema record."""

    def get(self, key: str, default: Any = None) -> Any:
        actual = _ALIASES.get(key, key)
        return getattr(self, actual, default)

    def __getitem__(self, key: str) -> Any:
        actual = _ALIASES.get(key, key)
        try:
            return getattr(self, actual)
        except AttributeError:
            raise KeyError(key)

    def __contains__(self, key: str) -> bool:
        actual = _ALIASES.get(key, key)
        return hasattr(self, actual)

    def to_dict(self) -> Dict[str, Any]:
        """Nested dict keyed by attribute name (for JSON serialisation)."""
        return asdict(self)


@dataclass
class BacktestStat(_DictAccess):
    """Per-ratio or per-period return distribution."""

    key:          Union[float, int]
    sample_size:  int   = 0
    avg_change:   float = 0.0   # %
    max_change:   float = 0.0   # %
    min_change:   float = 0.0   # %
    std_dev:      float = 0.0   # population std dev, %
    success_rate: float = 0.0   # % of samples > 0

    # ── Gann extras (0.0 when the bucket has no such samples) ───────────
    avg_positive: float = 0.0   # mean of changes > 0
    avg_negative: float = 0.0   # mean of changes < 0

    @property
    def positive_count(self) -> int:
        return int(round(self.success_rate * self.sample_size / 100.0))


@dataclass
class FibonacciPerformance(_DictAccess):
    """Result of the ratio sweep."""

    symbol:            str
    stats:             Dict[float, BacktestStat] = field(default_factory=dict)
    candles:           int  = 0
    insufficient_data: bool = False
    message:           str  = ""
    config_tags:       List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.stats

    def best(self, n: int = 5) -> List[BacktestStat]:
        return sorted(self.stats.values(), key=lambda s: -s.success_rate)[:n]


@dataclass
class GannPerformance(_DictAccess):
    """Result of the period (Gann anniversary) backtest."""

    symbol:            str
    stats:             Dict[int, BacktestStat] = field(default_factory=dict)
    candles:           int  = 0
    major_pivots:      int  = 0
    pivot_source:      str  = ""     # anchor / derived / extremes
    top_periods:       List[int] = field(default_factory=list)   # by success rate
    insufficient_data: bool = False
    message:           str  = ""
    config_tags:       List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.stats


@dataclass
class HorizonStat(_DictAccess):
    """Forward return distribution at one horizon (days after the window)."""

    horizon:      int
    sample_size:  int   = 0
    avg_return:   float = 0.0   # %
    success_rate: float = 0.0   # % of returns > 0


@dataclass
class WindowOutcome(_DictAccess):
    """One replayed historical vortex window."""

    date:        str                       # ISO date
    window_type: str
    factors:     List[str] = field(default_factory=list)
    intensity:   float = 0.0
    entry_price: float = 0.0
    returns:     Dict[int, float] = field(default_factory=dict)   # horizon → %


@dataclass
class SignalEffectiveness(_DictAccess):
    """Benchmark-horizon effectiveness over all replayed windows."""

    hit_rate:       float = 0.0   # % of |return| > effectiveness threshold
    avg_win:        float = 0.0
    avg_loss:       float = 0.0
    win_loss_ratio: float = 0.0
    sharpe:         float = 0.0
    max_drawdown:   float = 0.0   # %, ≥ 0


@dataclass
class SignalTypePerformance(_DictAccess):
    """Benchmark-horizon stats for windows sharing one set of signal kinds."""

    signal_type:  str             # e.g. "FIBONACCI+GANN"
    sample_size:  int   = 0
    avg_return:   float = 0.0
    success_rate: float = 0.0


@dataclass
class ConfluencePerformance(_DictAccess):
    """Result of replaying historical vortex windows."""

    symbol:            str
    horizons:          Dict[int, HorizonStat] = field(default_factory=dict)
    by_signal_type:    Dict[str, SignalTypePerformance] = field(default_factory=dict)
    windows_tested:    int   = 0
    success_rate:      float = 0.0   # benchmark horizon
    avg_return:        float = 0.0   # benchmark horizon
    best_window:       Optional[WindowOutcome] = None
    worst_window:      Optional[WindowOutcome] = None
    effectiveness:     Optional[SignalEffectiveness] = None
    candles:           int  = 0
    insufficient_data: bool = False
    message:           str  = ""
    config_tags:       List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.horizons


@dataclass
class SolarImpactAnalysis(_DictAccess):
    """Daily returns on geomagnetically active days vs every other day."""

    symbol:             str
    high_ap_days:       int   = 0
    normal_days:        int   = 0
    avg_return_high_ap: float = 0.0   # mean daily % return on active days
    avg_return_normal:  float = 0.0
    volatility_ratio:   float = 0.0   # mean (high − low) / close, active ÷ normal
    impact:             str   = ""    # Positive / Negative / Neutral, "" when not assessed
    candles:            int   = 0
    insufficient_data:  bool  = False
    message:            str   = ""
    config_tags:        List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return self.high_ap_days == 0


@dataclass
class TimeGeometryPerformance(_DictAccess):
    """All backtests for one symbol plus a single 0..100 score."""

    symbol:         str
    fibonacci:      Optional[FibonacciPerformance] = None
    gann:           Optional[GannPerformance] = None
    confluence:     Optional[ConfluencePerformance] = None
    solar_impact:   Optional[SolarImpactAnalysis] = None
    overall_score:  float = 50.0
    recommendation: str   = "NEUTRAL"
