"""
Data providers consumed by TimeGeometryService.

Fetching candles from an exchange, parsing a geomagnetic forecast and
loading lunar tables live outside the engine. The engine only sees these
three call-level contracts:

    CandleProvider.get_candles(symbol)        -> ordered Candle list, oldest first
    ForecastProvider.get_high_activity_days() -> [HighActivityDay]
    LunarProvider.get_lunar_events()          -> [LunarEvent]

In-memory implementations back tests and the report script. CandleCache
wraps any CandleProvider with a TTL read-through cache and hands out
immutable tuple snapshots, so callers can never mutate a shared series.
"""
import logging
import threading
import time
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

import pandas as pd

from fibtime.engine.candles import frame_to_candles
from fibtime.engine.models import Candle, HighActivityDay, LunarEvent

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL_S: float = 300.0


class CandleProvider(Protocol):
    def get_candles(self, symbol: str) -> Sequence[Candle]: ...


class ForecastProvider(Protocol):
    def get_high_activity_days(self) -> Sequence[HighActivityDay]: ...


class LunarProvider(Protocol):
    def get_lunar_events(self) -> Sequence[LunarEvent]: ...


# ── In-memory providers ─────────────────────────────────────────────────────

class StaticCandleProvider:
    """Serves fixed candle lists keyed by symbol. Unknown symbols → ()."""

    def __init__(self, series: Optional[Dict[str, Sequence[Candle]]] = None):
        self._series: Dict[str, Tuple[Candle, ...]] = {
            k.upper(): tuple(v) for k, v in (series or {}).items()
        }

    def get_candles(self, symbol: str) -> Sequence[Candle]:
        return self._series.get(symbol.upper(), ())


class CsvCandleProvider:
    """
    Reads `<directory>/<SYMBOL>.csv`.

    Columns: timestamp (epoch ms) or a parseable date/time first column,
    then open, high, low, close and optional volume.
    """

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def get_candles(self, symbol: str) -> Sequence[Candle]:
        path = self.directory / f"{symbol.upper()}.csv"
        if not path.exists():
            logger.warning(f"No candle file for {symbol}: {path}")
            return ()
        return tuple(load_candle_csv(path))


class StaticForecastProvider:
    def __init__(self, days: Iterable[HighActivityDay] = ()):
        self._days = tuple(days)

    def get_high_activity_days(self) -> Sequence[HighActivityDay]:
        return self._days


class StaticLunarProvider:
    def __init__(self, events: Iterable[LunarEvent] = ()):
        self._events = tuple(events)

    def get_lunar_events(self) -> Sequence[LunarEvent]:
        return self._events


def load_candle_csv(path: Path) -> List[Candle]:
    df = pd.read_csv(path)
    df.columns = [c.strip().lower() for c in df.columns]
    if "timestamp" not in df.columns:
        first = df.columns[0]
        df = df.set_index(pd.to_datetime(df[first], utc=True)).drop(columns=[first])
    candles = frame_to_candles(df)
    logger.info(f"Loaded {len(candles)} candles from {path}")
    return candles


# ── TTL read-through cache ──────────────────────────────────────────────────

class CandleCache:
    """
    Read-through cache in front of a CandleProvider.

    Entries expire ttl_seconds after they were fetched. Empty results are
    not cached so a transient upstream failure is retried on the next call.
    `clock` is injectable for tests (defaults to time.monotonic).
    """

    def __init__(
        self,
        provider:    CandleProvider,
        ttl_seconds: float = DEFAULT_CACHE_TTL_S,
        clock:       Callable[[], float] = time.monotonic,
    ):
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")
        self.provider = provider
        self.ttl      = ttl_seconds
        self._clock   = clock
        self._lock    = threading.Lock()
        self._entries: Dict[str, Tuple[float, Tuple[Candle, ...]]] = {}

    def get_candles(self, symbol: str) -> Sequence[Candle]:
        key = symbol.upper()
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and now - entry[0] < self.ttl:
                return entry[1]

        candles = tuple(self.provider.get_candles(symbol))
        if candles:
            with self._lock:
                self._entries[key] = (self._clock(), candles)
            logger.debug(f"CandleCache: fetched {len(candles)} candles for {key}")
        return candles

    def invalidate(self, symbol: Optional[str] = None) -> None:
        with self._lock:
            if symbol is None:
                self._entries.clear()
            else:
                self._entries.pop(symbol.upper(), None)

    def __contains__(self, symbol: str) -> bool:
        with self._lock:
            entry = self._entries.get(symbol.upper())
            return entry is not None and self._clock() - entry[0] < self.ttl
