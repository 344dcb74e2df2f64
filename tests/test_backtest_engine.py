"""
Unit tests for BacktestEngine and risk metrics.

Covers:
  - bucket stats: population std dev, success rate, Gann extras
  - ratio sweep: insufficient data, omitted buckets, sample counts
  - period sweep: 400-candle gate, ≥5-sample gate, explicit pivots
  - confluence replay: horizons, by-signal-type, best/worst, future windows
  - zero closes dropped from every sweep
  - solar impact: active vs normal days, volatility ratio, empty paths
  - overall score + recommendation bands
  - max drawdown / Sharpe / signal effectiveness
"""
import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from datetime import timedelta

import numpy as np
import pandas as pd
import pytest

from fibtime.engine.backtest_engine import BacktestEngine, bucket_stat, overall_score, recommendation
from fibtime.engine.backtest_schema import (
    BacktestStat,
    ConfluencePerformance,
    GannPerformance,
    HorizonStat,
)
from fibtime.engine.candles import candles_to_frame
from fibtime.engine.engine_config import EngineConfig
from fibtime.engine.models import (
    Candle,
    HighActivityDay,
    LunarEvent,
    LunarPhase,
    PivotKind,
    PricePivot,
)
from fibtime.engine.risk_metrics import max_drawdown, sharpe_ratio, signal_effectiveness

DAY_MS = 86_400_000


# ── Fixtures ────────────────────────────────────────────────────────────────

def make_candles(closes, start="2022-01-01", spread=0.01):
    t0 = int(pd.Timestamp(start, tz="UTC").timestamp() * 1000)
    out, prev = [], closes[0]
    for i, c in enumerate(closes):
        out.append(Candle(t0 + i * DAY_MS, prev, max(prev, c) * (1 + spread),
                          min(prev, c) * (1 - spread), c, 1000.0))
        prev = c
    return out


def make_frame(closes, **kw) -> pd.DataFrame:
    return candles_to_frame(make_candles(list(closes), **kw))


def random_walk(n, seed=7) -> np.ndarray:
    rng = np.random.default_rng(seed)
    return 100.0 * np.cumprod(1.0 + rng.normal(0.0, 0.02, n))


# ── Bucket stats ────────────────────────────────────────────────────────────

class TestBucketStat:
    def test_reference_bucket(self):
        s = bucket_stat(0.618, [2.0, -1.0, 3.0, -0.5])
        assert s.sample_size == 4
        assert s.success_rate == 50.0
        assert s.avg_change == pytest.approx(0.875)
        assert s.max_change == 3.0
        assert s.min_change == -1.0
        assert s.std_dev == pytest.approx(np.sqrt(11.1875 / 4))   # population, not n−1
        assert s.avg_positive == pytest.approx(2.5)
        assert s.avg_negative == pytest.approx(-0.75)
        assert s.positive_count == 2

    def test_all_non_positive_is_real_zero(self):
        s = bucket_stat(90, [0.0, -1.0])
        assert s.success_rate == 0.0
        assert s.sample_size == 2

    def test_dict_access(self):
        s = bucket_stat(0.5, [1.0])
        assert s["successRate"] == 100.0
        assert s.get("averageChange") == 1.0
        assert "stdDevChange" in s
        with pytest.raises(KeyError):
            s["nope"]


# ── Ratio sweep ─────────────────────────────────────────────────────────────

class TestRatioBacktest:
    def test_insufficient(self):
        r = BacktestEngine().backtest_ratios("X", make_frame(np.linspace(100, 110, 99)))
        assert r.insufficient_data
        assert r.stats == {}
        assert "99 candles" in r.message

    def test_long_offsets_omitted(self):
        r = BacktestEngine().backtest_ratios("X", make_frame(np.linspace(100, 200, 150)))
        assert not r.insufficient_data
        assert set(r.stats) == {0.382, 0.5, 0.618, 0.786, 1.0, 1.272, 0.333, 0.667, 1.333}
        assert r.stats[0.618].sample_size == 150 - 62
        assert r.stats[0.618].success_rate == 100.0
        assert 1.5 not in r.stats                  # offset 150 == len

    def test_success_rate_matches_positive_count(self):
        df = make_frame(random_walk(600))
        closes = df["close"].to_numpy()
        r = BacktestEngine().backtest_ratios("RW", df)
        for ratio, stat in r.stats.items():
            off = int(round(ratio * 100 + 1e-9))
            positives = int((closes[off:] > closes[:-off]).sum())
            assert 0.0 <= stat.success_rate <= 100.0
            assert round(stat.success_rate * stat.sample_size / 100) == positives
            assert stat.sample_size == len(closes) - off

    def test_best_sorted(self):
        r = BacktestEngine().backtest_ratios("RW", make_frame(random_walk(500)))
        rates = [s.success_rate for s in r.best(5)]
        assert rates == sorted(rates, reverse=True)


# ── Period sweep ────────────────────────────────────────────────────────────

class TestPeriodBacktest:
    def test_300_candles_empty(self):
        r = BacktestEngine().backtest_periods("X", make_frame(random_walk(300)), [])
        assert isinstance(r, GannPerformance)
        assert r.insufficient_data
        assert r.stats == {}
        assert r.is_empty

    def _pivots(self, df, positions):
        return [PricePivot(df["date"].iloc[i], float(df["close"].iloc[i]), PivotKind.MAJOR_LOW, 0.95)
                for i in positions]

    def test_min_five_samples(self):
        df = make_frame(random_walk(800))
        engine = BacktestEngine()

        r = engine.backtest_periods("X", df, self._pivots(df, [0, 10, 20, 30]))
        assert r.stats == {}
        assert not r.insufficient_data
        assert "5 samples" in r.message

        r = engine.backtest_periods("X", df, self._pivots(df, [0, 10, 20, 30, 40, 50]), pivot_source="test")
        assert set(r.stats) == set(EngineConfig().period_catalog)
        assert all(s.sample_size == 6 for s in r.stats.values())
        assert r.pivot_source == "test"
        assert len(r.top_periods) == 5

    def test_period_bucket_excluded_when_out_of_range(self):
        df = make_frame(random_walk(800))
        # index 100 + 720 runs past the end: the 720 bucket only gets 5 samples
        r = BacktestEngine().backtest_periods("X", df, self._pivots(df, [0, 10, 20, 30, 40, 100]))
        assert r.stats[720].sample_size == 5
        assert r.stats[540].sample_size == 6

    def test_returns_recorded_from_pivot_close(self):
        closes = np.linspace(100, 500, 800)
        df = make_frame(closes)
        pivots = self._pivots(df, [0, 1, 2, 3, 4])
        r = BacktestEngine().backtest_periods("UP", df, pivots)
        s = r.stats[30]
        expected = np.mean([(closes[i + 30] - closes[i]) / closes[i] * 100 for i in range(5)])
        assert s.avg_change == pytest.approx(expected)
        assert s.success_rate == 100.0
        assert s.avg_negative == 0.0

    def test_zero_close_pivot_dropped(self):
        closes = random_walk(800)
        closes[0] = 0.0
        df = make_frame(closes)
        r = BacktestEngine().backtest_periods("X", df, self._pivots(df, [0, 10, 20, 30, 40, 50]))
        # the zero-close pivot yields no samples; the other five still qualify
        assert all(s.sample_size == 5 for s in r.stats.values())

    def test_unknown_pivot_date_skipped(self):
        df = make_frame(random_walk(800))
        stray = PricePivot(df["date"].iloc[0] - timedelta(days=500), 1.0, PivotKind.MAJOR_HIGH, 0.95)
        r = BacktestEngine().backtest_periods("X", df, [stray] + self._pivots(df, range(5)))
        assert all(s.sample_size == 5 for s in r.stats.values())


# ── Confluence replay ───────────────────────────────────────────────────────

class TestConfluenceBacktest:
    def test_insufficient(self):
        r = BacktestEngine().backtest_confluence("X", make_frame(np.linspace(1, 2, 50)))
        assert r.insufficient_data
        assert r.horizons == {}

    def test_exogenous_window_replayed(self):
        # Monotone closes: no pivots, so the only window is the lunar+solar date.
        closes = np.linspace(100, 400, 300)
        df = make_frame(closes)
        d = df["date"].iloc[100]
        future = df["date"].iloc[-1] + timedelta(days=5)
        r = BacktestEngine().backtest_confluence(
            "UP", df,
            high_activity_days=[HighActivityDay(d, 30), HighActivityDay(future, 30)],
            lunar_events=[LunarEvent(d, LunarPhase.FULL_MOON), LunarEvent(future, LunarPhase.NEW_MOON)],
        )
        assert r.windows_tested == 1
        assert set(r.horizons) == {1, 3, 7, 14, 30}
        h7 = r.horizons[7]
        assert h7.sample_size == 1
        assert h7.avg_return == pytest.approx((closes[107] - closes[100]) / closes[100] * 100)
        assert r.success_rate == 100.0
        assert r.avg_return == pytest.approx(h7.avg_return)
        assert set(r.by_signal_type) == {"LUNAR+SOLAR"}
        assert r.best_window.date == d.isoformat()
        assert r.worst_window.date == d.isoformat()
        assert r.effectiveness.max_drawdown == 0.0

    def test_horizon_past_end_omitted(self):
        closes = np.linspace(100, 400, 200)
        df = make_frame(closes)
        d = df["date"].iloc[195]
        r = BacktestEngine().backtest_confluence(
            "UP", df,
            high_activity_days=[HighActivityDay(d, 50)],
            lunar_events=[LunarEvent(d, LunarPhase.FULL_MOON)],
        )
        assert set(r.horizons) == {1, 3}
        assert r.best_window is None       # no 30-day outcome to rank

    def test_best_and_worst_are_different_windows(self):
        # Linear prices: the same absolute gain is a larger % return earlier on.
        closes = np.linspace(100, 400, 300)
        df = make_frame(closes)
        early, late = df["date"].iloc[50], df["date"].iloc[200]
        r = BacktestEngine().backtest_confluence(
            "UP", df,
            high_activity_days=[HighActivityDay(early, 30), HighActivityDay(late, 30)],
            lunar_events=[LunarEvent(early, LunarPhase.FULL_MOON), LunarEvent(late, LunarPhase.NEW_MOON)],
        )
        assert r.windows_tested == 2
        assert r.best_window.date == early.isoformat()
        assert r.worst_window.date == late.isoformat()
        assert r.best_window.returns[30] > r.worst_window.returns[30]

    def test_zero_close_window_not_scored(self):
        closes = np.linspace(100, 400, 300)
        closes[100] = 0.0
        df = make_frame(closes)
        d = df["date"].iloc[100]
        r = BacktestEngine().backtest_confluence(
            "Z", df,
            high_activity_days=[HighActivityDay(d, 30)],
            lunar_events=[LunarEvent(d, LunarPhase.FULL_MOON)],
        )
        assert r.windows_tested == 0
        assert r.horizons == {}

    def test_random_walk_properties(self):
        df = make_frame(random_walk(700, seed=3))
        r = BacktestEngine().backtest_confluence("RW", df)
        assert not r.insufficient_data
        for h, stat in r.horizons.items():
            assert h in (1, 3, 7, 14, 30)
            assert stat.sample_size > 0
            assert 0.0 <= stat.success_rate <= 100.0
        assert r.effectiveness.max_drawdown >= 0.0


# ── Solar impact ────────────────────────────────────────────────────────────

def staircase(step, n=200, jumps=(20, 40, 60)):
    """Flat closes that move by `step` on the jump days only."""
    closes, level = [], 100.0
    for i in range(n):
        if i in jumps:
            level *= step
        closes.append(level)
    return closes


def active_days(df, positions=(20, 40, 60), ap=30):
    return [HighActivityDay(df["date"].iloc[i], ap) for i in positions]


class TestSolarImpact:
    def test_insufficient(self):
        r = BacktestEngine().solar_impact("X", make_frame(np.linspace(100, 110, 50)))
        assert r.insufficient_data
        assert r.high_ap_days == 0
        assert "50 candles" in r.message

    def test_no_forecast(self):
        df = make_frame(staircase(1.05))
        engine = BacktestEngine()
        for days in ([], active_days(df, ap=10)):
            r = engine.solar_impact("X", df, days)
            assert not r.insufficient_data
            assert r.is_empty
            assert r.impact == ""
            assert "No high-AP days" in r.message

    def test_positive_impact(self):
        df = make_frame(staircase(1.05))
        r = BacktestEngine().solar_impact("X", df, active_days(df))
        assert r.high_ap_days == 3
        assert r.normal_days == 196
        assert r.avg_return_high_ap == pytest.approx(5.0)
        assert r.avg_return_normal == 0.0
        assert r.volatility_ratio > 1.0
        assert r.impact == "Positive"
        assert r["impactAssessment"] == "Positive"

    def test_negative_and_neutral(self):
        engine = BacktestEngine()
        df = make_frame(staircase(0.95))
        assert engine.solar_impact("X", df, active_days(df)).impact == "Negative"
        df = make_frame(staircase(1.003))
        r = engine.solar_impact("X", df, active_days(df))
        assert r.avg_return_high_ap == pytest.approx(0.3)
        assert r.impact == "Neutral"

    def test_forecast_outside_history(self):
        df = make_frame(staircase(1.05))
        later = df["date"].iloc[-1] + timedelta(days=10)
        r = BacktestEngine().solar_impact("X", df, [HighActivityDay(later, 40)])
        assert r.high_ap_days == 0
        assert r.impact == ""
        assert "inside the candle history" in r.message


# ── Overall score ───────────────────────────────────────────────────────────

def make_confluence(success_rate, horizon=7):
    return ConfluencePerformance(
        symbol       = "X",
        horizons     = {horizon: HorizonStat(horizon, 10, 1.0, success_rate)},
        success_rate = success_rate if horizon == 7 else 0.0,
    )


class TestOverallScore:
    @pytest.mark.parametrize("score,label", [
        (85.0, "STRONG BUY"),
        (80.0, "STRONG BUY"),
        (70.0, "BUY"),
        (65.0, "BUY"),
        (50.0, "NEUTRAL"),
        (35.0, "SELL"),
        (10.0, "STRONG SELL"),
    ])
    def test_recommendation_bands(self, score, label):
        assert recommendation(score) == label

    def test_no_confluence_is_neutral(self):
        assert overall_score(None, EngineConfig()) == 50.0
        assert overall_score(ConfluencePerformance(symbol="X"), EngineConfig()) == 50.0
        # a replay with no 7-day sample carries no benchmark success rate
        assert overall_score(make_confluence(90.0, horizon=3), EngineConfig()) == 50.0

    def test_weighted_success_rate(self):
        assert overall_score(make_confluence(80.0), EngineConfig()) == pytest.approx(65.0)
        assert overall_score(make_confluence(20.0), EngineConfig()) == pytest.approx(35.0)

    def test_clamped(self):
        cfg = EngineConfig().with_levers(confluence_score_weight=3.0)
        assert overall_score(make_confluence(100.0), cfg) == 100.0
        assert overall_score(make_confluence(0.0), cfg) == 0.0

    def test_performance_report(self):
        engine = BacktestEngine()
        report = engine.performance("X", None, None, make_confluence(80.0), None)
        assert report.overall_score == pytest.approx(65.0)
        assert report.recommendation == "BUY"
        assert report["overallScore"] == pytest.approx(65.0)

# ── Risk metrics ────────────────────────────────────────────────────────────

class TestRiskMetrics:
    def test_drawdown_empty_and_non_negative(self):
        assert max_drawdown([]) == 0.0
        assert max_drawdown([1.0, 0.0, 5.0]) == 0.0

    def test_drawdown_compounds(self):
        assert max_drawdown([10.0, -50.0]) == pytest.approx(50.0)
        assert max_drawdown([-10.0, -10.0]) == pytest.approx(19.0)
        assert max_drawdown([-10.0, 50.0, -20.0]) == pytest.approx(20.0)

    def test_drawdown_always_non_negative(self):
        rng = np.random.default_rng(11)
        for _ in range(20):
            assert max_drawdown(rng.normal(0, 5, 30)) >= 0.0

    def test_sharpe(self):
        assert sharpe_ratio([]) == 0.0
        assert sharpe_ratio([1.0, 1.0]) == 0.0
        assert sharpe_ratio([1.0, 3.0]) == pytest.approx(2.0)

    def test_effectiveness(self):
        e = signal_effectiveness([2.0, -1.0, 0.5, -3.0], hit_pct=1.0)
        assert e.hit_rate == 50.0
        assert e.avg_win == pytest.approx(1.25)
        assert e.avg_loss == pytest.approx(-2.0)
        assert e.win_loss_ratio == pytest.approx(0.625)
        assert e.max_drawdown > 0.0

    def test_effectiveness_empty(self):
        e = signal_effectiveness([])
        assert e.hit_rate == 0.0 and e.max_drawdown == 0.0

    def test_schema_to_dict(self):
        d = BacktestStat(key=90, sample_size=5).to_dict()
        assert d["key"] == 90 and d["sample_size"] == 5
