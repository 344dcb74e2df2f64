"""
Unit tests for MajorPivotResolver.

Covers:
  - base-asset normalisation of exchange symbols
  - anchors kept only where the history has the anchor date
  - too few anchors → data-derived / extremes tiers take over
  - extremes fallback lands on real candles
"""
import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from datetime import date, timedelta

import numpy as np
import pandas as pd

from fibtime.engine.candles import candles_to_frame
from fibtime.engine.engine_config import EngineConfig
from fibtime.engine.major_pivots import (
    SOURCE_ANCHOR,
    SOURCE_EXTREMES,
    SOURCE_NONE,
    MajorPivotResolver,
    base_asset,
)
from fibtime.engine.models import Candle, PivotKind

DAY_MS = 86_400_000


def make_candles(closes, start="2024-01-01", spread=0.01):
    t0 = int(pd.Timestamp(start, tz="UTC").timestamp() * 1000)
    out, prev = [], closes[0]
    for i, c in enumerate(closes):
        out.append(Candle(t0 + i * DAY_MS, prev, max(prev, c) * (1 + spread),
                          min(prev, c) * (1 - spread), c, 1000.0))
        prev = c
    return out


def rise_and_fall(start="2024-01-01"):
    """60 daily candles: up 40 days, down 20. Too short for a windowed weekly pivot."""
    closes = list(np.linspace(100, 200, 40)) + list(np.linspace(200, 150, 20))
    return candles_to_frame(make_candles(closes, start=start))


XYZ_ANCHORS = EngineConfig(anchor_pivots={
    "XYZ": (
        ("2024-01-10", 50.0, "MAJOR_LOW", 1.0),
        ("2030-01-01", 99.0, "MAJOR_HIGH", 1.0),
    )
})


# ── Symbols ─────────────────────────────────────────────────────────────────

class TestBaseAsset:
    def test_quote_suffixes(self):
        assert base_asset("BTCUSDT") == "BTC"
        assert base_asset("sol/usd") == "SOL"
        assert base_asset("WIF-PERP") == "WIF"
        assert base_asset("TAO") == "TAO"
        assert base_asset("USDT") == "USDT"


# ── Anchor tier ─────────────────────────────────────────────────────────────

class TestAnchors:
    def test_anchor_kept_only_inside_history(self):
        pivots, source = MajorPivotResolver(XYZ_ANCHORS).resolve("XYZUSDT", rise_and_fall())
        assert source == SOURCE_ANCHOR
        assert len(pivots) == 1
        assert pivots[0].date == date(2024, 1, 10)
        assert pivots[0].price == 50.0
        assert pivots[0].kind == PivotKind.MAJOR_LOW

    def test_too_few_anchors_fall_through(self):
        df = rise_and_fall()
        pivots, source = MajorPivotResolver(XYZ_ANCHORS).resolve("XYZ", df, min_anchors=5)
        assert source == SOURCE_EXTREMES
        assert {p.kind for p in pivots} == {PivotKind.MAJOR_HIGH, PivotKind.MAJOR_LOW}
        assert all(p.date in set(df["date"]) for p in pivots)

    def test_default_registry_btc(self):
        # 2022-06-01 + 800 days covers the 2023-01-01 and 2024-03-01 anchors only
        closes = 20000.0 + 5000.0 * np.sin(np.arange(800) / 40.0)
        df = candles_to_frame(make_candles(list(closes), start="2022-06-01"))
        resolver = MajorPivotResolver(EngineConfig())

        pivots, source = resolver.resolve("BTCUSDT", df)
        assert source == SOURCE_ANCHOR
        assert [p.date for p in pivots] == [date(2024, 3, 1), date(2023, 1, 1)]

        pivots, source = resolver.resolve("BTCUSDT", df, min_anchors=EngineConfig().period_min_samples)
        assert source != SOURCE_ANCHOR
        assert pivots


# ── Data-derived tiers ──────────────────────────────────────────────────────

class TestFallback:
    def test_extremes_fallback(self):
        df = rise_and_fall()
        pivots, source = MajorPivotResolver(EngineConfig()).resolve("NEWCOIN", df)
        assert source == SOURCE_EXTREMES
        high = next(p for p in pivots if p.kind == PivotKind.MAJOR_HIGH)
        assert high.date == date(2024, 1, 1) + timedelta(days=int(np.argmax(df["high"].to_numpy())))
        assert [p.date for p in pivots] == sorted((p.date for p in pivots), reverse=True)

    def test_empty_history(self):
        pivots, source = MajorPivotResolver(EngineConfig()).resolve("X", candles_to_frame([]))
        assert pivots == [] and source == SOURCE_NONE
