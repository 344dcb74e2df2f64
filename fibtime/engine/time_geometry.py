"""
TimeGeometryService — symbol-level façade over the engine.

    analyze(symbol)               pivots, forward projections, vortex windows,
                                  price levels, compression/confidence scores
    gann_dates(symbol)            forward dates where Gann anniversaries stack
    backtest_ratios(symbol)       FibonacciPerformance
    backtest_periods(symbol)      GannPerformance
    backtest_confluence(symbol)   ConfluencePerformance
    solar_impact(symbol)          SolarImpactAnalysis
    comprehensive_analysis(symbol)
                                  every backtest + overall score / recommendation
    test_ratio_hits(symbol, margin, tolerance)
    test_period_hits(symbol, margin, tolerance)

Each call fetches one candle snapshot, builds a frame and runs pure engine
code on it; the service holds no per-symbol state. Provider failures are
logged and treated as "no data" (candles) or "zero signals" (forecast,
lunar). Nothing here raises on missing data.
"""
import logging
from datetime import date, datetime, timedelta
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd
import pytz

from fibtime.data.providers import CandleProvider, ForecastProvider, LunarProvider
from fibtime.engine.backtest_engine import BacktestEngine
from fibtime.engine.backtest_schema import (
    ConfluencePerformance,
    FibonacciPerformance,
    GannPerformance,
    SolarImpactAnalysis,
    TimeGeometryPerformance,
)
from fibtime.engine.candles import candles_to_frame
from fibtime.engine.confluence_detector import ConfluenceDetector
from fibtime.engine.engine_config import EngineConfig
from fibtime.engine.hit_tester import HitTester
from fibtime.engine.major_pivots import MajorPivotResolver
from fibtime.engine.models import (
    AnalysisResult,
    HighActivityDay,
    HitResult,
    LunarEvent,
    VortexWindow,
)
from fibtime.engine.pivot_detector import PivotDetector
from fibtime.engine.price_levels import levels_for_pivots
from fibtime.engine.projection_generator import ProjectionGenerator

logger = logging.getLogger(__name__)

COMPRESSION_WINDOW = 20


class TimeGeometryService:

    def __init__(
        self,
        candles:  CandleProvider,
        forecast: Optional[ForecastProvider] = None,
        lunar:    Optional[LunarProvider] = None,
        cfg:      Optional[EngineConfig] = None,
    ):
        self.candle_provider   = candles
        self.forecast_provider = forecast
        self.lunar_provider    = lunar
        self.cfg = cfg or EngineConfig()

        self.recent_detector = PivotDetector.recent(self.cfg)
        self.hit_detector    = PivotDetector.hit_tier(self.cfg)
        self.majors          = MajorPivotResolver(self.cfg)
        self.generator       = ProjectionGenerator(self.cfg)
        self.confluence      = ConfluenceDetector(self.cfg)
        self.backtester      = BacktestEngine(self.cfg)
        self.hit_tester      = HitTester(self.cfg)

    # ── Analysis ──────────────────────────────────────────────────────

    def analyze(self, symbol: str, today: Optional[date] = None) -> AnalysisResult:
        today = today or self.today()
        df = self._frame(symbol)
        if df.empty:
            return AnalysisResult(symbol=symbol, analysis_date=today,
                                  message=f"No price data for {symbol}")

        pivots = self.recent_detector.detect(df)
        majors, source = self.majors.resolve(symbol, df)
        projections = self.generator.generate(pivots + majors, today=today)
        windows = self.confluence.detect(
            projections,
            self._high_activity_days(),
            self._lunar_events(),
            start=today,
            end=today + timedelta(days=self.cfg.max_forward_days),
        )

        result = AnalysisResult(
            symbol            = symbol,
            analysis_date     = today,
            pivots            = pivots,
            major_pivots      = majors,
            projections       = projections,
            vortex_windows    = windows,
            price_levels      = levels_for_pivots(majors or pivots),
            compression_score = compression_score(df),
            confidence_score  = confidence_score(len(majors)),
        )
        logger.info(
            f"{symbol}: {len(pivots)} recent + {len(majors)} major pivots ({source}), "
            f"{len(projections)} projections, {len(windows)} vortex windows"
        )
        return result

    def gann_dates(self, symbol: str, today: Optional[date] = None, limit: int = 20) -> List[VortexWindow]:
        today = today or self.today()
        df = self._frame(symbol)
        if df.empty:
            return []
        majors, _ = self.majors.resolve(symbol, df)
        projections = self.generator.period_projections(majors, today=today)
        return self.confluence.gann_confluence(projections, today=today, limit=limit)

    # ── Backtests ─────────────────────────────────────────────────────

    def backtest_ratios(self, symbol: str) -> FibonacciPerformance:
        return self.backtester.backtest_ratios(symbol, self._frame(symbol))

    def backtest_periods(self, symbol: str) -> GannPerformance:
        return self._backtest_periods(symbol, self._frame(symbol))

    def backtest_confluence(self, symbol: str) -> ConfluencePerformance:
        return self._backtest_confluence(symbol, self._frame(symbol), self._high_activity_days())

    def solar_impact(self, symbol: str) -> SolarImpactAnalysis:
        return self.backtester.solar_impact(symbol, self._frame(symbol), self._high_activity_days())

    def comprehensive_analysis(self, symbol: str) -> TimeGeometryPerformance:
        """Every backtest over one candle snapshot, plus overall score and recommendation."""
        df = self._frame(symbol)
        solar_days = self._high_activity_days()
        performance = self.backtester.performance(
            symbol,
            fibonacci    = self.backtester.backtest_ratios(symbol, df),
            gann         = self._backtest_periods(symbol, df),
            confluence   = self._backtest_confluence(symbol, df, solar_days),
            solar_impact = self.backtester.solar_impact(symbol, df, solar_days),
        )
        logger.info(
            f"{symbol}: overall score {performance.overall_score:.1f} → {performance.recommendation}"
        )
        return performance

    def _backtest_periods(self, symbol: str, df: pd.DataFrame) -> GannPerformance:
        if len(df) < self.cfg.period_min_candles:
            return self.backtester.backtest_periods(symbol, df, [])
        majors, source = self.majors.resolve(symbol, df, min_anchors=self.cfg.period_min_samples)
        return self.backtester.backtest_periods(symbol, df, majors, pivot_source=source)

    def _backtest_confluence(
        self,
        symbol:     str,
        df:         pd.DataFrame,
        solar_days: Sequence[HighActivityDay],
    ) -> ConfluencePerformance:
        if len(df) < self.cfg.confluence_min_candles:
            return self.backtester.backtest_confluence(symbol, df)
        majors, _ = self.majors.resolve(symbol, df)
        return self.backtester.backtest_confluence(symbol, df, majors, solar_days, self._lunar_events())

    # ── Hit testing ───────────────────────────────────────────────────

    def test_ratio_hits(
        self,
        symbol:    str,
        margin:    float = 5.0,
        tolerance: int = 3,
        today:     Optional[date] = None,
    ) -> List[HitResult]:
        df = self._frame(symbol)
        pivots = self.hit_detector.detect(df)
        return self.hit_tester.test_ratio_hits(df, pivots, margin, tolerance, today or self.today())

    def test_period_hits(
        self,
        symbol:    str,
        margin:    float = 5.0,
        tolerance: int = 3,
        today:     Optional[date] = None,
    ) -> List[HitResult]:
        df = self._frame(symbol)
        majors, _ = self.majors.resolve(symbol, df) if not df.empty else ([], "")
        return self.hit_tester.test_period_hits(df, majors, margin, tolerance, today or self.today())

    # ── Providers (fail-open) ─────────────────────────────────────────

    def today(self) -> date:
        return datetime.now(pytz.timezone(self.cfg.timezone)).date()

    def _frame(self, symbol: str) -> pd.DataFrame:
        try:
            candles = self.candle_provider.get_candles(symbol)
        except Exception as e:
            logger.error(f"Candle fetch failed for {symbol}: {e}")
            candles = ()
        if not candles:
            logger.warning(f"No candles for {symbol}")
        return candles_to_frame(candles, self.cfg.timezone)

    def _high_activity_days(self) -> Sequence[HighActivityDay]:
        if self.forecast_provider is None:
            return ()
        try:
            return self.forecast_provider.get_high_activity_days() or ()
        except Exception as e:
            logger.error(f"Forecast provider failed, continuing without solar signals: {e}")
            return ()

    def _lunar_events(self) -> Sequence[LunarEvent]:
        if self.lunar_provider is None:
            return ()
        try:
            return self.lunar_provider.get_lunar_events() or ()
        except Exception as e:
            logger.error(f"Lunar provider failed, continuing without lunar signals: {e}")
            return ()


def compression_score(df: pd.DataFrame, window: int = COMPRESSION_WINDOW) -> float:
    """min(1, 1 / (avg range + 0.01)) where range = (high − low) / close over the last `window` candles."""
    if len(df) < window:
        return 0.5
    tail = df.iloc[-window:]
    closes = tail["close"].to_numpy(dtype=float)
    ranges = (tail["high"].to_numpy(dtype=float) - tail["low"].to_numpy(dtype=float))
    with np.errstate(divide="ignore", invalid="ignore"):
        rel = np.where(closes != 0, ranges / closes, 0.0)
    return float(min(1.0, 1.0 / (rel.mean() + 0.01)))


def confidence_score(major_pivot_count: int) -> float:
    if major_pivot_count >= 4:
        return 0.9
    if major_pivot_count >= 2:
        return 0.7
    return 0.5
