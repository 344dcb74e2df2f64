"""
Unit tests for PivotDetector.

Covers:
  - strict window extrema (ties are not pivots, edges never qualify)
  - outside-bar tie-break by margin
  - recency ordering + limit, MAJOR_* kinds
  - coarse bars dated on the daily candle of the extreme
"""
import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from datetime import date, timedelta

import numpy as np
import pandas as pd
import pytest

from fibtime.engine.engine_config import EngineConfig
from fibtime.engine.models import PivotKind
from fibtime.engine.pivot_detector import PivotDetector


# ── Fixtures ────────────────────────────────────────────────────────────────

def make_frame(highs, lows=None, start="2024-01-01") -> pd.DataFrame:
    """Minimal frame for the detector: high/low/close/date, one row per day."""
    highs = np.asarray(highs, dtype=float)
    lows = highs - 1.0 if lows is None else np.asarray(lows, dtype=float)
    idx = pd.date_range(start, periods=len(highs), freq="D")
    return pd.DataFrame({
        "high":  highs,
        "low":   lows,
        "close": (highs + lows) / 2,
        "date":  [t.date() for t in idx],
    }, index=idx)


# ── Pivot detector ──────────────────────────────────────────────────────────

class TestPivotDetector:
    def test_single_peak(self):
        df = make_frame([1, 2, 3, 4, 5, 10, 5, 4, 3, 2, 1])
        pivots = PivotDetector(lookback=3, strength=0.7).detect(df)
        assert len(pivots) == 1
        p = pivots[0]
        assert p.kind == PivotKind.HIGH
        assert p.price == 10.0
        assert p.date == date(2024, 1, 6)
        assert p.strength == 0.7

    def test_trough_is_low(self):
        df = make_frame([9, 8, 7, 6, 5, 1, 5, 6, 7, 8, 9])
        pivots = PivotDetector(lookback=3, strength=0.7).detect(df)
        assert [p.kind for p in pivots] == [PivotKind.LOW]
        assert pivots[0].price == 0.0   # low = high − 1

    def test_equal_high_in_window_not_pivot(self):
        df = make_frame([1, 2, 3, 10, 5, 10, 5, 4, 3, 2, 1])
        assert PivotDetector(lookback=3, strength=0.7).detect(df) == []

    def test_edges_never_pivot(self):
        df = make_frame([1, 10, 2, 3, 4, 5, 6, 7, 8, 9, 11])
        assert PivotDetector(lookback=3, strength=0.7).detect(df) == []

    def test_too_short(self):
        assert PivotDetector(lookback=3, strength=0.7).detect(make_frame([1, 2, 3])) == []

    def test_outside_bar_larger_margin_wins(self):
        highs = [10] * 11
        lows = [9] * 11
        highs[5], lows[5] = 20, 0     # high margin 10 vs low margin 9
        df = make_frame(highs, lows)
        pivots = PivotDetector(lookback=3, strength=0.7).detect(df)
        assert len(pivots) == 1 and pivots[0].kind == PivotKind.HIGH

        lows[5] = -5                  # low margin 14 now dominates
        pivots = PivotDetector(lookback=3, strength=0.7).detect(make_frame(highs, lows))
        assert len(pivots) == 1 and pivots[0].kind == PivotKind.LOW

    def test_recent_first_and_limit(self):
        wave = [1, 2, 3, 9, 3, 2, 1] * 4   # peaks at 3, 10, 17, 24
        df = make_frame(wave)
        all_pivots = PivotDetector(lookback=2, strength=0.7).detect(df)
        dates = [p.date for p in all_pivots]
        assert dates == sorted(dates, reverse=True)

        capped = PivotDetector(lookback=2, strength=0.7, limit=2).detect(df)
        assert capped == all_pivots[:2]

    def test_major_kinds(self):
        df = make_frame([1, 2, 3, 4, 5, 10, 5, 4, 3, 2, 1])
        pivots = PivotDetector(lookback=3, strength=0.95, major=True).detect(df)
        assert pivots[0].kind == PivotKind.MAJOR_HIGH
        assert pivots[0].kind.is_major and pivots[0].kind.is_high

    def test_tier_factories_follow_config(self):
        cfg = EngineConfig().with_levers(recent_pivot_lookback=2, recent_pivot_limit=1)
        det = PivotDetector.recent(cfg)
        assert (det.lookback, det.limit, det.major) == (2, 1, False)
        major = PivotDetector.major_tier(cfg)
        assert (major.lookback, major.strength, major.major) == (26, 0.95, True)

    def test_invalid_lookback(self):
        with pytest.raises(ValueError):
            PivotDetector(lookback=0, strength=0.5)

    def test_coarse_bars_use_extreme_dates(self):
        df = make_frame([1, 2, 3, 4, 5, 10, 5, 4, 3, 2, 1])
        df["high_date"] = [d + timedelta(days=2) for d in df["date"]]
        df["low_date"] = df["date"]
        pivots = PivotDetector(lookback=3, strength=0.95, major=True).detect(df)
        assert pivots[0].date == date(2024, 1, 8)
