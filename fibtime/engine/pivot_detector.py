"""
Pivot Detector — windowed strict extrema over an OHLC frame.

An index i is a HIGH pivot when its high is strictly greater than every
other high in [i − W, i + W]; LOW is the mirror on lows. Indices without W
candles on both sides are never pivots, so the newest W candles cannot
produce one until the window closes.

The same detector serves three tiers, configured by EngineConfig:

  recent   daily bars, W=3, strength 0.7, newest 5 only
  major    weekly bars, W=26, strength 0.95, uncapped, MAJOR_HIGH/MAJOR_LOW
  history  daily bars, W=10, uncapped (confluence replay)

When the frame carries `high_date` / `low_date` (coarse bars from
candles.resample_ohlc) the pivot is dated on the daily candle where the
extreme printed rather than the bar's first day.
"""
import logging
from typing import List, Optional

import numpy as np
import pandas as pd

from fibtime.engine.engine_config import EngineConfig
from fibtime.engine.models import PivotKind, PricePivot

logger = logging.getLogger(__name__)


class PivotDetector:
    """
    Parameters
    ----------
    lookback : int
        Candles each side that the extreme must strictly dominate.
    strength : float
        Strength assigned to every emitted pivot (0..1).
    limit : int, optional
        Keep only the newest `limit` pivots. None = uncapped.
    major : bool
        Emit MAJOR_HIGH / MAJOR_LOW instead of HIGH / LOW.
    """

    def __init__(
        self,
        lookback: int,
        strength: float,
        limit:    Optional[int] = None,
        major:    bool = False,
    ):
        if lookback < 1:
            raise ValueError(f"lookback must be ≥ 1, got {lookback}")
        self.lookback = lookback
        self.strength = strength
        self.limit    = limit
        self.major    = major

    # ------------------------------------------------------------------ #
    # Tier factories
    # ------------------------------------------------------------------ #

    @classmethod
    def recent(cls, cfg: EngineConfig) -> "PivotDetector":
        return cls(cfg.recent_pivot_lookback, cfg.recent_pivot_strength, limit=cfg.recent_pivot_limit)

    @classmethod
    def major_tier(cls, cfg: EngineConfig) -> "PivotDetector":
        return cls(cfg.major_pivot_lookback, cfg.major_pivot_strength, major=True)

    @classmethod
    def history(cls, cfg: EngineConfig) -> "PivotDetector":
        return cls(cfg.history_pivot_lookback, cfg.recent_pivot_strength)

    @classmethod
    def hit_tier(cls, cfg: EngineConfig) -> "PivotDetector":
        return cls(cfg.hit_pivot_lookback, cfg.hit_pivot_strength)

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def detect(self, df: pd.DataFrame) -> List[PricePivot]:
        """Return pivots sorted most recent first (capped to `limit` when set)."""
        n = self.lookback
        if len(df) < 2 * n + 1:
            return []

        highs = df["high"].to_numpy(dtype=float)
        lows  = df["low"].to_numpy(dtype=float)
        dates = list(df["date"])
        high_dates = list(df["high_date"]) if "high_date" in df.columns else dates
        low_dates  = list(df["low_date"]) if "low_date" in df.columns else dates

        high_kind = PivotKind.MAJOR_HIGH if self.major else PivotKind.HIGH
        low_kind  = PivotKind.MAJOR_LOW if self.major else PivotKind.LOW

        pivots: List[PricePivot] = []
        for i in range(n, len(df) - n):
            win_h = np.delete(highs[i - n: i + n + 1], n)
            win_l = np.delete(lows[i - n: i + n + 1], n)
            is_high = highs[i] > win_h.max()
            is_low  = lows[i] < win_l.min()

            if is_high and is_low:
                # Outside bar dominating both sides: keep the larger excursion.
                high_margin = highs[i] - win_h.mean()
                low_margin  = win_l.mean() - lows[i]
                is_high, is_low = high_margin >= low_margin, high_margin < low_margin

            if is_high:
                pivots.append(PricePivot(high_dates[i], float(highs[i]), high_kind, self.strength))
            elif is_low:
                pivots.append(PricePivot(low_dates[i], float(lows[i]), low_kind, self.strength))

        pivots.reverse()
        if self.limit is not None:
            pivots = pivots[: self.limit]

        logger.debug(
            f"PivotDetector(W={n}, major={self.major}): {len(pivots)} pivots over {len(df)} bars"
        )
        return pivots
