"""
Backtest Engine — replay catalogs over a full daily history.

Four sweeps, each gated by a minimum candle count from EngineConfig. Below
the gate the result comes back with insufficient_data=True and empty maps;
nothing here raises for short data.

Ratio sweep
    For every index i and ratio r: target = i + round(base_unit × r).
    When target is in range, record %change(close[i] → close[target]).
    Vectorised per ratio: closes[off:] vs closes[:-off].

Period sweep
    For every major pivot and Gann period: target = pivot_index + period.
    Buckets need ≥ cfg.period_min_samples samples to be reported.

Confluence replay
    Pivots over the whole history (history tier + major pivots) are
    projected unfiltered, grouped into vortex windows, and every window
    dated on or before the last candle is scored at each forward horizon.

Solar impact
    Daily close-to-close returns and (high − low) / close ranges split into
    days with a forecast AP ≥ cfg.solar_impact_ap and all other days.

A sample whose start close is 0 has no defined return and is dropped in
every sweep rather than counted as a 0% change.
"""
import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd

from fibtime.engine.backtest_schema import (
    BacktestStat,
    ConfluencePerformance,
    FibonacciPerformance,
    GannPerformance,
    HorizonStat,
    SignalTypePerformance,
    SolarImpactAnalysis,
    TimeGeometryPerformance,
    WindowOutcome,
)
from fibtime.engine.candles import date_index, percent_change
from fibtime.engine.catalogs import day_offset
from fibtime.engine.confluence_detector import ConfluenceDetector
from fibtime.engine.engine_config import RECOMMENDATION_BANDS, EngineConfig
from fibtime.engine.models import HighActivityDay, LunarEvent, PricePivot
from fibtime.engine.pivot_detector import PivotDetector
from fibtime.engine.projection_generator import ProjectionGenerator
from fibtime.engine.risk_metrics import signal_effectiveness

logger = logging.getLogger(__name__)


def bucket_stat(key, changes: Sequence[float]) -> BacktestStat:
    """Distribution stats for one non-empty bucket of % changes."""
    arr = np.asarray(changes, dtype=float)
    pos = arr[arr > 0]
    neg = arr[arr < 0]
    return BacktestStat(
        key          = key,
        sample_size  = int(arr.size),
        avg_change   = float(arr.mean()),
        max_change   = float(arr.max()),
        min_change   = float(arr.min()),
        std_dev      = float(arr.std()),          # ddof=0: population
        success_rate = float(pos.size / arr.size * 100.0),
        avg_positive = float(pos.mean()) if pos.size else 0.0,
        avg_negative = float(neg.mean()) if neg.size else 0.0,
    )


class BacktestEngine:

    def __init__(self, cfg: Optional[EngineConfig] = None):
        self.cfg = cfg or EngineConfig()
        self.generator = ProjectionGenerator(self.cfg)
        self.confluence = ConfluenceDetector(self.cfg)

    # ------------------------------------------------------------------ #
    # Ratio sweep
    # ------------------------------------------------------------------ #

    def backtest_ratios(self, symbol: str, df: pd.DataFrame) -> FibonacciPerformance:
        cfg = self.cfg
        if len(df) < cfg.ratio_min_candles:
            return self._insufficient(FibonacciPerformance, symbol, df, cfg.ratio_min_candles, "ratio")

        closes = df["close"].to_numpy(dtype=float)
        n = len(closes)
        stats: Dict[float, BacktestStat] = {}

        for ratio in cfg.ratio_catalog:
            off, _ = day_offset(ratio, cfg.base_unit_days)
            if off >= n:
                continue
            start = closes[: n - off]
            end   = closes[off:]
            valid = start != 0
            changes = (end[valid] - start[valid]) / start[valid] * 100.0
            if changes.size < max(cfg.ratio_min_samples, 1):
                continue
            stats[ratio] = bucket_stat(ratio, changes)
            logger.debug(
                f"{symbol} ratio {ratio:.3f} (+{off}d): {changes.size} samples, "
                f"{stats[ratio].success_rate:.1f}% up"
            )

        logger.info(f"{symbol}: ratio backtest over {n} candles → {len(stats)} ratios reported")
        return FibonacciPerformance(symbol=symbol, stats=stats, candles=n, config_tags=cfg.tags())

    # ------------------------------------------------------------------ #
    # Period sweep
    # ------------------------------------------------------------------ #

    def backtest_periods(
        self,
        symbol:       str,
        df:           pd.DataFrame,
        major_pivots: Sequence[PricePivot],
        pivot_source: str = "",
    ) -> GannPerformance:
        cfg = self.cfg
        if len(df) < cfg.period_min_candles:
            return self._insufficient(GannPerformance, symbol, df, cfg.period_min_candles, "Gann")

        closes = df["close"].to_numpy(dtype=float)
        n = len(closes)
        index = date_index(df)
        buckets: Dict[int, List[float]] = defaultdict(list)

        for pivot in major_pivots:
            pi = index.get(pivot.date)
            if pi is None:
                logger.debug(f"{symbol}: major pivot {pivot.date} not in history, skipped")
                continue
            for period in cfg.period_catalog:
                ti = pi + period
                if ti >= n:
                    continue
                change = percent_change(closes[pi], closes[ti])
                if change is not None:
                    buckets[period].append(change)

        stats: Dict[int, BacktestStat] = {}
        for period in cfg.period_catalog:
            changes = buckets.get(period, [])
            if len(changes) < cfg.period_min_samples:
                continue
            stats[period] = bucket_stat(period, changes)
            logger.info(
                f"{symbol} Gann {period}d: {len(changes)} samples, "
                f"{stats[period].success_rate:.1f}% success, {stats[period].avg_change:.2f}% avg"
            )

        top = [s.key for s in sorted(stats.values(), key=lambda s: (-s.success_rate, s.key))][:5]
        message = "" if stats else (
            f"No Gann period reached {cfg.period_min_samples} samples "
            f"from {len(major_pivots)} major pivots"
        )
        return GannPerformance(
            symbol       = symbol,
            stats        = stats,
            candles      = n,
            major_pivots = len(major_pivots),
            pivot_source = pivot_source,
            top_periods  = top,
            message      = message,
            config_tags  = cfg.tags(),
        )

    # ------------------------------------------------------------------ #
    # Confluence replay
    # ------------------------------------------------------------------ #

    def backtest_confluence(
        self,
        symbol:             str,
        df:                 pd.DataFrame,
        major_pivots:       Sequence[PricePivot] = (),
        high_activity_days: Iterable[HighActivityDay] = (),
        lunar_events:       Iterable[LunarEvent] = (),
    ) -> ConfluencePerformance:
        cfg = self.cfg
        if len(df) < cfg.confluence_min_candles:
            return self._insufficient(
                ConfluencePerformance, symbol, df, cfg.confluence_min_candles, "confluence"
            )

        closes = df["close"].to_numpy(dtype=float)
        n = len(closes)
        index = date_index(df)
        last_date = df["date"].iloc[-1]

        pivots = PivotDetector.history(cfg).detect(df) + list(major_pivots)
        projections = self.generator.generate(pivots)
        windows = self.confluence.detect(
            projections, high_activity_days, lunar_events, end=last_date
        )

        outcomes: List[WindowOutcome] = []
        kinds_of: List[str] = []
        for w in windows:
            i = index.get(w.date)
            if i is None or closes[i] == 0:
                continue
            returns = {
                h: percent_change(closes[i], closes[i + h])
                for h in cfg.confluence_horizons
                if i + h < n
            }
            outcomes.append(WindowOutcome(
                date        = w.date.isoformat(),
                window_type = w.window_type,
                factors     = w.contributing_factors,
                intensity   = w.intensity,
                entry_price = float(closes[i]),
                returns     = returns,
            ))
            kinds_of.append("+".join(k.value for k in w.kinds()))

        horizons: Dict[int, HorizonStat] = {}
        for h in cfg.confluence_horizons:
            rets = [o.returns[h] for o in outcomes if h in o.returns]
            if not rets:
                continue
            arr = np.asarray(rets)
            horizons[h] = HorizonStat(
                horizon      = h,
                sample_size  = int(arr.size),
                avg_return   = float(arr.mean()),
                success_rate = float((arr > 0).sum() / arr.size * 100.0),
            )

        bench = cfg.benchmark_horizon
        by_type: Dict[str, List[float]] = defaultdict(list)
        for o, kinds in zip(outcomes, kinds_of):
            if bench in o.returns:
                by_type[kinds].append(o.returns[bench])
        by_signal_type = {
            kinds: SignalTypePerformance(
                signal_type  = kinds,
                sample_size  = len(rets),
                avg_return   = float(np.mean(rets)),
                success_rate = float(sum(1 for r in rets if r > 0) / len(rets) * 100.0),
            )
            for kinds, rets in by_type.items()
        }

        ranked = [o for o in outcomes if cfg.ranking_horizon in o.returns]
        best  = max(ranked, key=lambda o: o.returns[cfg.ranking_horizon], default=None)
        worst = min(ranked, key=lambda o: o.returns[cfg.ranking_horizon], default=None)

        bench_returns = [o.returns[bench] for o in outcomes if bench in o.returns]
        bench_stat = horizons.get(bench)

        logger.info(
            f"{symbol}: confluence replay: {len(windows)} windows, {len(outcomes)} scored, "
            f"{len(pivots)} pivots"
        )
        return ConfluencePerformance(
            symbol         = symbol,
            horizons       = horizons,
            by_signal_type = by_signal_type,
            windows_tested = len(outcomes),
            success_rate   = bench_stat.success_rate if bench_stat else 0.0,
            avg_return     = bench_stat.avg_return if bench_stat else 0.0,
            best_window    = best,
            worst_window   = worst,
            effectiveness  = signal_effectiveness(bench_returns, cfg.effectiveness_hit_pct),
            candles        = n,
            message        = "" if outcomes else "No historical vortex windows in range",
            config_tags    = cfg.tags(),
        )

    # ------------------------------------------------------------------ #
    # Solar impact
    # ------------------------------------------------------------------ #

    def solar_impact(
        self,
        symbol:             str,
        df:                 pd.DataFrame,
        high_activity_days: Iterable[HighActivityDay] = (),
    ) -> SolarImpactAnalysis:
        cfg = self.cfg
        if len(df) < cfg.solar_impact_min_candles:
            return self._insufficient(
                SolarImpactAnalysis, symbol, df, cfg.solar_impact_min_candles, "solar impact"
            )

        active = {d.date for d in high_activity_days if d.intensity_value >= cfg.solar_impact_ap}
        if not active:
            logger.warning(f"{symbol}: no forecast days with AP ≥ {cfg.solar_impact_ap}")
            return SolarImpactAnalysis(
                symbol      = symbol,
                candles     = len(df),
                message     = f"No high-AP days (AP ≥ {cfg.solar_impact_ap}) in the forecast data",
                config_tags = cfg.tags(),
            )

        closes = df["close"].to_numpy(dtype=float)
        highs  = df["high"].to_numpy(dtype=float)
        lows   = df["low"].to_numpy(dtype=float)
        prev, cur = closes[:-1], closes[1:]
        valid = (prev != 0) & (cur != 0)
        with np.errstate(divide="ignore", invalid="ignore"):
            returns = (cur - prev) / prev * 100.0
            ranges  = (highs[1:] - lows[1:]) / cur
        on_active = np.array([d in active for d in df["date"].iloc[1:]], dtype=bool)
        hi = valid & on_active
        lo = valid & ~on_active

        result = SolarImpactAnalysis(
            symbol       = symbol,
            high_ap_days = int(hi.sum()),
            normal_days  = int(lo.sum()),
            candles      = len(df),
            config_tags  = cfg.tags(),
        )
        if not hi.any():
            result.message = "No high-AP day falls inside the candle history"
            logger.info(f"{symbol}: solar impact: {result.message}")
            return result

        result.avg_return_high_ap = float(returns[hi].mean())
        if lo.any():
            result.avg_return_normal = float(returns[lo].mean())
            normal_range = ranges[lo].mean()
            if normal_range > 0:
                result.volatility_ratio = float(ranges[hi].mean() / normal_range)
            gap = result.avg_return_high_ap - result.avg_return_normal
            if abs(gap) > cfg.solar_impact_gap:
                result.impact = "Positive" if gap > 0 else "Negative"
            else:
                result.impact = "Neutral"

        logger.info(
            f"{symbol}: solar impact: {result.high_ap_days} high-AP days, "
            f"{result.avg_return_high_ap:.2f}% vs {result.avg_return_normal:.2f}% avg, "
            f"vol ratio {result.volatility_ratio:.2f} → {result.impact or 'n/a'}"
        )
        return result

    # ------------------------------------------------------------------ #
    # Combined report
    # ------------------------------------------------------------------ #

    def performance(
        self,
        symbol:       str,
        fibonacci:    FibonacciPerformance,
        gann:         GannPerformance,
        confluence:   ConfluencePerformance,
        solar_impact: SolarImpactAnalysis,
    ) -> TimeGeometryPerformance:
        score = overall_score(confluence, self.cfg)
        return TimeGeometryPerformance(
            symbol         = symbol,
            fibonacci      = fibonacci,
            gann           = gann,
            confluence     = confluence,
            solar_impact   = solar_impact,
            overall_score  = score,
            recommendation = recommendation(score),
        )

    # ------------------------------------------------------------------ #

    def _insufficient(self, result_cls, symbol: str, df: pd.DataFrame, needed: int, what: str):
        message = f"Insufficient data for {what} backtest: {len(df)} candles (need {needed})"
        logger.warning(f"{symbol}: {message}")
        return result_cls(
            symbol            = symbol,
            candles           = len(df),
            insufficient_data = True,
            message           = message,
            config_tags       = self.cfg.tags(),
        )


def overall_score(confluence: Optional[ConfluencePerformance], cfg: EngineConfig) -> float:
    """
    50 = no edge. Moves with the confluence success rate at the benchmark
    horizon; a replay without a benchmark sample leaves it at 50.
    """
    score = 50.0
    if confluence is not None and cfg.benchmark_horizon in confluence.horizons:
        score += (confluence.success_rate - 50.0) * cfg.confluence_score_weight
    return float(min(100.0, max(0.0, score)))


def recommendation(score: float) -> str:
    for floor, label in RECOMMENDATION_BANDS:
        if score >= floor:
            return label
    return "STRONG SELL"
