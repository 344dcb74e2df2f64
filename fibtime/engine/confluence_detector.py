"""
Confluence Detector — group dated signals, flag multi-factor dates.

Signals come from three places:
  - TimeProjections (FIBONACCI from ratios, GANN from periods)
  - high-activity geomagnetic days with AP ≥ cfg.solar_ap_threshold (SOLAR)
  - lunar new/full moon dates (LUNAR)

A factor is a distinct signal tag. Two pivots projecting FIB_0.618 onto
the same date are one factor; the window still keeps both signals so the
source pivots stay traceable. A date becomes a VortexWindow when it has at
least cfg.min_confluence_factors distinct factors:

    intensity = min(1.0, factor_count × cfg.confluence_factor_weight)

Windows are per exact calendar date. Adjacent dates are never merged.
"""
import logging
from collections import Counter, OrderedDict
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence

from fibtime.engine.engine_config import EngineConfig
from fibtime.engine.models import (
    HighActivityDay,
    LunarEvent,
    Signal,
    SignalKind,
    TimeProjection,
    VortexWindow,
)

logger = logging.getLogger(__name__)

_KIND_NAMES = (
    (SignalKind.FIBONACCI, "Fibonacci"),
    (SignalKind.GANN,      "Gann"),
    (SignalKind.LUNAR,     "Lunar"),
    (SignalKind.SOLAR,     "Solar"),
)


class ConfluenceDetector:

    def __init__(self, cfg: EngineConfig):
        self.cfg = cfg

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def signals(
        self,
        projections:         Iterable[TimeProjection],
        high_activity_days:  Iterable[HighActivityDay] = (),
        lunar_events:        Iterable[LunarEvent] = (),
    ) -> List[Signal]:
        out = [p.signal for p in projections]
        for day in high_activity_days:
            if day.intensity_value >= self.cfg.solar_ap_threshold:
                out.append(Signal(SignalKind.SOLAR, day.date, int(day.intensity_value)))
        for event in lunar_events:
            out.append(Signal(SignalKind.LUNAR, event.date, event.kind))
        return out

    def detect(
        self,
        projections:        Iterable[TimeProjection],
        high_activity_days: Iterable[HighActivityDay] = (),
        lunar_events:       Iterable[LunarEvent] = (),
        start:              Optional[date] = None,
        end:                Optional[date] = None,
    ) -> List[VortexWindow]:
        """VortexWindows sorted by date, optionally limited to start ≤ date ≤ end."""
        signals = self.signals(projections, high_activity_days, lunar_events)
        if start is not None:
            signals = [s for s in signals if s.date >= start]
        if end is not None:
            signals = [s for s in signals if s.date <= end]

        windows = [
            w for w in (self._window(d, sigs) for d, sigs in _group_by_date(signals).items())
            if w is not None
        ]
        windows.sort(key=lambda w: w.date)

        logger.info(f"Confluence: {len(signals)} signals → {len(windows)} vortex windows")
        for w in sorted(windows, key=lambda w: -w.intensity)[:5]:
            logger.debug(f"  {w.date}: {w.intensity:.2f} {w.window_type} ({w.description})")
        return windows

    def gann_confluence(
        self,
        projections: Iterable[TimeProjection],
        today:       Optional[date] = None,
        limit:       int = 20,
    ) -> List[VortexWindow]:
        """Dates where at least two distinct Gann anniversaries coincide."""
        gann = [p for p in projections if p.period is not None]
        if today is not None:
            gann = [p for p in gann if p.date >= today]
        windows = self.detect(gann)
        return windows[:limit]

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #

    def _window(self, when: date, signals: List[Signal]) -> Optional[VortexWindow]:
        tags = list(OrderedDict.fromkeys(s.tag for s in signals))
        if len(tags) < self.cfg.min_confluence_factors:
            return None
        counts = _factor_counts(signals)
        return VortexWindow(
            date        = when,
            signals     = tuple(signals),
            intensity   = min(1.0, len(tags) * self.cfg.confluence_factor_weight),
            window_type = self._window_type(signals, counts),
            description = describe(counts),
        )

    def _window_type(self, signals: Sequence[Signal], counts: Dict[SignalKind, int]) -> str:
        fib   = counts[SignalKind.FIBONACCI]
        gann  = counts[SignalKind.GANN]
        lunar = counts[SignalKind.LUNAR]
        strong_solar = any(
            s.kind is SignalKind.SOLAR and s.payload >= self.cfg.solar_strong_ap for s in signals
        )
        projected = fib + gann

        if lunar >= 2 and projected:
            return "LUNAR_VORTEX"
        if fib >= 2 and gann >= 1:
            return "MAJOR_RESONANCE"
        if counts[SignalKind.SOLAR] and projected and strong_solar:
            return "SOLAR_VORTEX"
        if fib >= 2:
            return "FIBONACCI_VORTEX"
        if gann >= 2:
            return "GANN_VORTEX"
        return "STANDARD_VORTEX"


def describe(counts: Dict[SignalKind, int]) -> str:
    """'2 Fibonacci • 1 Gann confluence'."""
    parts = [f"{counts[k]} {name}" for k, name in _KIND_NAMES if counts[k]]
    return " • ".join(parts) + " confluence" if parts else ""


def _group_by_date(signals: Iterable[Signal]) -> "OrderedDict[date, List[Signal]]":
    grouped: "OrderedDict[date, List[Signal]]" = OrderedDict()
    for s in signals:
        grouped.setdefault(s.date, []).append(s)
    return grouped


def _factor_counts(signals: Iterable[Signal]) -> Counter:
    """Distinct tags per kind."""
    counts: Counter = Counter({k: 0 for k, _ in _KIND_NAMES})
    for tag, kind in {(s.tag, s.kind) for s in signals}:
        counts[kind] += 1
    return counts
