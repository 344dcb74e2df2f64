"""
Hit Tester — did price actually move near a projected date?

For each historical pivot × ratio (or period) the projected date is located
in the daily history. Offsets −tolerance..+tolerance around it are scanned
and the largest absolute close-to-close move from the projected candle is
kept. Sign does not matter for a hit:

    is_hit   any |move| ≥ margin
    included |best move| ≥ margin × cfg.hit_floor_factor (misses included)

Calendar gates relative to `today`:
    - projected date newer than today − hit_recency_days: no outcome yet
    - projected date older than the lookback horizon: skipped
    - pivot younger than the minimum pivot age: skipped
    - projected index within `tolerance` of the last candle: skipped
"""
import logging
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional

import numpy as np
import pandas as pd

from fibtime.engine.candles import date_index
from fibtime.engine.catalogs import day_offset
from fibtime.engine.engine_config import EngineConfig
from fibtime.engine.models import Bias, Direction, HitResult, PricePivot

logger = logging.getLogger(__name__)


class HitTester:

    def __init__(self, cfg: Optional[EngineConfig] = None):
        self.cfg = cfg or EngineConfig()

    def test_ratio_hits(
        self,
        df:         pd.DataFrame,
        pivots:     Iterable[PricePivot],
        margin:     float,
        tolerance:  int,
        today:      date,
    ) -> List[HitResult]:
        cfg = self.cfg
        offsets = [(r, day_offset(r, cfg.base_unit_days)[0]) for r in cfg.ratio_catalog]
        return self._run(
            df, pivots, margin, tolerance, today,
            targets       = [(offset, {"ratio": r}) for r, offset in offsets],
            lookback_days = cfg.ratio_hit_lookback_days,
            min_age       = cfg.ratio_hit_min_pivot_age,
            what          = "ratio",
        )

    def test_period_hits(
        self,
        df:         pd.DataFrame,
        pivots:     Iterable[PricePivot],
        margin:     float,
        tolerance:  int,
        today:      date,
    ) -> List[HitResult]:
        cfg = self.cfg
        return self._run(
            df, pivots, margin, tolerance, today,
            targets       = [(p, {"period": p}) for p in cfg.period_catalog],
            lookback_days = cfg.period_hit_lookback_days,
            min_age       = cfg.period_hit_min_pivot_age,
            what          = "period",
        )

    # ------------------------------------------------------------------ #

    def _run(self, df, pivots, margin, tolerance, today, targets, lookback_days, min_age, what):
        if margin <= 0:
            raise ValueError(f"margin must be positive, got {margin}")
        if tolerance < 0:
            raise ValueError(f"tolerance must be ≥ 0, got {tolerance}")
        if len(df) < self.cfg.hit_min_candles:
            logger.warning(
                f"Insufficient data for {what} hit testing: {len(df)} candles "
                f"(need {self.cfg.hit_min_candles})"
            )
            return []

        closes = df["close"].to_numpy(dtype=float)
        dates = list(df["date"])
        index = date_index(df)
        newest = today - timedelta(days=self.cfg.hit_recency_days)
        oldest = today - timedelta(days=lookback_days)

        results: List[HitResult] = []
        pivots = list(pivots)
        for pivot in pivots:
            if (today - pivot.date).days < min_age:
                continue
            for offset, key in targets:
                projected = pivot.date + timedelta(days=offset)
                if projected > newest or projected < oldest:
                    continue
                pi = index.get(projected)
                if pi is None or pi >= len(closes) - tolerance:
                    continue
                hit = self._scan(closes, dates, pi, pivot, projected, margin, tolerance, key)
                if hit is not None:
                    results.append(hit)

        results.sort(key=lambda h: (h.projected_date, h.pivot_date), reverse=True)
        n_hits = sum(1 for h in results if h.is_hit)
        logger.info(
            f"{what} hit test (±{tolerance}d, {margin}%): {len(pivots)} pivots → "
            f"{len(results)} results, {n_hits} hits"
        )
        return results

    def _scan(
        self,
        closes:    np.ndarray,
        dates:     list,
        pi:        int,
        pivot:     PricePivot,
        projected: date,
        margin:    float,
        tolerance: int,
        key:       Dict,
    ) -> Optional[HitResult]:
        base = closes[pi]
        if base == 0:
            return None

        best_move, best_offset, is_hit = 0.0, 0, False
        for offset in range(-tolerance, tolerance + 1):
            j = pi + offset
            if offset == 0 or j < 0 or j >= len(closes):
                continue
            move = (closes[j] - base) / base * 100.0
            if abs(move) > abs(best_move):
                best_move, best_offset = move, offset
            if abs(move) >= margin:
                is_hit = True

        if abs(best_move) < margin * self.cfg.hit_floor_factor:
            return None

        direction = Direction.of(best_move)
        bias = Bias.for_pivot(pivot.kind)
        reversal = (
            (bias is Bias.RESISTANCE and direction is Direction.DOWN)
            or (bias is Bias.SUPPORT and direction is Direction.UP)
        )
        return HitResult(
            pivot_date           = pivot.date,
            pivot_price          = pivot.price,
            pivot_kind           = pivot.kind,
            projected_date       = projected,
            actual_move_date     = dates[pi + best_offset],
            move_percent         = float(best_move),
            direction            = direction,
            is_hit               = is_hit,
            days_from_projection = best_offset,
            reversal             = reversal,
            **key,
        )
