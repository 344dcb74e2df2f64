"""
Projection Generator — pivot × catalog → dated TimeProjections.

Ratio projections:  pivot.date + round_half_away(base_unit × ratio)
Period projections: pivot.date + period (Gann anniversary, exact)

Two modes:
  forward  today given: keep today ≤ date ≤ today + max_forward_days, and
           only project Gann dates from pivots younger than
           gann_pivot_max_age_days
  all      today=None: every projection, past or future (backtests)

Output is deterministic: same pivots + config → identical list.
"""
import logging
from datetime import date, timedelta
from typing import Iterable, List, Optional

from fibtime.engine.catalogs import (
    base_intensity_for_period,
    base_intensity_for_ratio,
    day_offset,
    period_label,
    ratio_label,
)
from fibtime.engine.engine_config import EngineConfig
from fibtime.engine.models import Bias, PricePivot, TimeProjection

logger = logging.getLogger(__name__)


class ProjectionGenerator:

    def __init__(self, cfg: EngineConfig):
        self.cfg = cfg
        # Offsets depend only on the catalog; compute once.
        self._ratio_offsets = [(r, *day_offset(r, cfg.base_unit_days)) for r in cfg.ratio_catalog]

    def generate(
        self,
        pivots: Iterable[PricePivot],
        today:  Optional[date] = None,
    ) -> List[TimeProjection]:
        pivots = list(pivots)
        projections = self.ratio_projections(pivots, today) + self.period_projections(pivots, today)
        projections.sort(key=lambda p: (p.date, p.label))
        logger.info(
            f"Generated {len(projections)} projections from {len(pivots)} pivots"
            + (f" (forward from {today})" if today else " (unfiltered)")
        )
        return projections

    def ratio_projections(
        self,
        pivots: Iterable[PricePivot],
        today:  Optional[date] = None,
    ) -> List[TimeProjection]:
        out: List[TimeProjection] = []
        for pivot in pivots:
            bias = Bias.for_pivot(pivot.kind)
            for ratio, days, exact in self._ratio_offsets:
                when = pivot.date + timedelta(days=days)
                if not self._in_horizon(when, today):
                    continue
                out.append(TimeProjection(
                    date              = when,
                    source_pivot      = pivot,
                    intensity         = base_intensity_for_ratio(ratio) * pivot.strength,
                    bias              = bias,
                    offset_days       = days,
                    exact_offset_days = exact,
                    ratio             = ratio,
                    label             = ratio_label(ratio),
                ))
        return out

    def period_projections(
        self,
        pivots: Iterable[PricePivot],
        today:  Optional[date] = None,
    ) -> List[TimeProjection]:
        out: List[TimeProjection] = []
        for pivot in pivots:
            if today is not None and (today - pivot.date).days > self.cfg.gann_pivot_max_age_days:
                continue
            bias = Bias.for_pivot(pivot.kind)
            for period in self.cfg.period_catalog:
                when = pivot.date + timedelta(days=period)
                if not self._in_horizon(when, today):
                    continue
                out.append(TimeProjection(
                    date              = when,
                    source_pivot      = pivot,
                    intensity         = base_intensity_for_period(period) * pivot.strength,
                    bias              = bias,
                    offset_days       = period,
                    exact_offset_days = float(period),
                    period            = period,
                    label             = period_label(period),
                ))
        return out

    def _in_horizon(self, when: date, today: Optional[date]) -> bool:
        if today is None:
            return True
        return today <= when <= today + timedelta(days=self.cfg.max_forward_days)
