"""
Major-cycle pivot resolution.

Fallback order, first non-empty wins:

  1. anchor   hand-picked cycle extremes from cfg.anchor_pivots, kept only
              where the daily history has a candle on the anchor date and
              only when at least `min_anchors` of them survive
  2. derived  PivotDetector (major tier) over the coarse resampled series
  3. extremes the single global high and low of the coarse series

Every returned pivot is dated on a daily candle present in the input frame.
"""
import logging
from datetime import date
from typing import List, Tuple

import pandas as pd

from fibtime.engine.candles import resample_ohlc
from fibtime.engine.engine_config import EngineConfig
from fibtime.engine.models import PivotKind, PricePivot
from fibtime.engine.pivot_detector import PivotDetector

logger = logging.getLogger(__name__)

_QUOTE_SUFFIXES = ("USDT", "USDC", "BUSD", "USD", "PERP")

SOURCE_ANCHOR   = "anchor"
SOURCE_DERIVED  = "derived"
SOURCE_EXTREMES = "extremes"
SOURCE_NONE     = "none"


def base_asset(symbol: str) -> str:
    """'BTCUSDT' → 'BTC', 'sol/usd' → 'SOL', 'TAO' → 'TAO'."""
    s = symbol.upper().replace("/", "").replace("-", "").replace("_", "")
    for suffix in _QUOTE_SUFFIXES:
        if s.endswith(suffix) and len(s) > len(suffix):
            return s[: -len(suffix)]
    return s


class MajorPivotResolver:

    def __init__(self, cfg: EngineConfig):
        self.cfg = cfg
        self.detector = PivotDetector.major_tier(cfg)

    def resolve(
        self,
        symbol:      str,
        df:          pd.DataFrame,
        min_anchors: int = 1,
    ) -> Tuple[List[PricePivot], str]:
        """
        (pivots most recent first, source name).

        The period backtest passes min_anchors=cfg.period_min_samples: a
        handful of anchors can never fill a Gann bucket, so the
        data-derived tier is used instead.
        """
        if df.empty:
            return [], SOURCE_NONE

        anchors = self._anchors(symbol, df)
        if anchors and len(anchors) >= min_anchors:
            logger.info(f"{symbol}: {len(anchors)} anchor major pivots")
            return anchors, SOURCE_ANCHOR
        if anchors:
            logger.info(
                f"{symbol}: {len(anchors)} anchor pivots, need {min_anchors}, "
                f"falling through to data-derived pivots"
            )

        coarse = resample_ohlc(df, self.cfg.major_pivot_interval)
        derived = self.detector.detect(coarse)
        if derived:
            logger.info(f"{symbol}: {len(derived)} data-derived major pivots from {len(coarse)} bars")
            return derived, SOURCE_DERIVED

        extremes = self._extremes(coarse)
        logger.info(f"{symbol}: no windowed major pivots, using global extremes ({len(extremes)})")
        return extremes, SOURCE_EXTREMES if extremes else SOURCE_NONE

    # ------------------------------------------------------------------ #

    def _anchors(self, symbol: str, df: pd.DataFrame) -> List[PricePivot]:
        registry = self.cfg.anchor_pivots.get(base_asset(symbol), ())
        if not registry:
            return []
        available = set(df["date"])
        pivots = []
        for iso, price, kind, strength in registry:
            d = date.fromisoformat(iso)
            if d not in available:
                logger.debug(f"{symbol}: anchor {iso} outside candle history, skipped")
                continue
            pivots.append(PricePivot(d, float(price), PivotKind(kind), float(strength)))
        pivots.sort(key=lambda p: p.date, reverse=True)
        return pivots

    def _extremes(self, coarse: pd.DataFrame) -> List[PricePivot]:
        if coarse.empty:
            return []
        strength = self.cfg.major_pivot_strength
        hi = int(coarse["high"].to_numpy().argmax())
        lo = int(coarse["low"].to_numpy().argmin())
        pivots = [
            PricePivot(coarse["high_date"].iloc[hi], float(coarse["high"].iloc[hi]),
                       PivotKind.MAJOR_HIGH, strength),
            PricePivot(coarse["low_date"].iloc[lo], float(coarse["low"].iloc[lo]),
                       PivotKind.MAJOR_LOW, strength),
        ]
        if pivots[0].date == pivots[1].date:
            # Single-bar history: one candle is both extremes.
            pivots = pivots[:1]
        pivots.sort(key=lambda p: p.date, reverse=True)
        return pivots
