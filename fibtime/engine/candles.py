"""
Candle sequence ↔ pandas helpers.

Every engine component works on the same frame layout:

    index   naive local wall-clock timestamps (candle open, in cfg.timezone)
    columns open high low close volume timestamp date

`date` holds the calendar date each candle belongs to. Daily candles from
an exchange that opens them at 00:00 UTC map to exactly one date per
candle when the configured zone is UTC.
"""
import logging
from datetime import date
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
import pytz

from fibtime.engine.models import Candle

logger = logging.getLogger(__name__)

OHLCV = ["open", "high", "low", "close", "volume"]


def candles_to_frame(candles: Sequence[Candle], timezone: str = "UTC") -> pd.DataFrame:
    """Oldest-first OHLCV frame. Out-of-order or duplicate candles are fixed up with a warning."""
    if not candles:
        return pd.DataFrame(columns=OHLCV + ["timestamp", "date"])

    df = pd.DataFrame(
        {
            "timestamp": [c.timestamp for c in candles],
            "open":      [c.open for c in candles],
            "high":      [c.high for c in candles],
            "low":       [c.low for c in candles],
            "close":     [c.close for c in candles],
            "volume":    [c.volume for c in candles],
        }
    )
    if not df["timestamp"].is_monotonic_increasing or df["timestamp"].duplicated().any():
        logger.warning("Candle sequence not strictly increasing, sorting and de-duplicating")
        df = df.drop_duplicates("timestamp", keep="last").sort_values("timestamp")

    tz = pytz.timezone(timezone)
    idx = pd.to_datetime(df["timestamp"].to_numpy(), unit="ms", utc=True)
    idx = idx.tz_convert(tz).tz_localize(None)
    df.index = pd.DatetimeIndex(idx, name="time")
    df["date"] = [ts.date() for ts in df.index]
    return df


def frame_to_candles(df: pd.DataFrame) -> List[Candle]:
    """
    Build Candle records from a frame with OHLC columns.

    Accepts either a `timestamp` column in epoch ms or a DatetimeIndex
    (e.g. a CSV read with parse_dates). Missing volume defaults to 0.
    """
    if df.empty:
        return []
    frame = df.rename(columns=str.lower)
    if "timestamp" in frame.columns:
        ts = frame["timestamp"].astype("int64").to_numpy()
    else:
        idx = pd.DatetimeIndex(frame.index)
        if idx.tz is None:
            idx = idx.tz_localize("UTC")
        ts = np.asarray((idx - pd.Timestamp(0, tz="UTC")) // pd.Timedelta(milliseconds=1), dtype="int64")
    volume = frame["volume"].to_numpy(dtype=float) if "volume" in frame.columns else np.zeros(len(frame))
    return [
        Candle(
            timestamp=int(t),
            open=float(o),
            high=float(h),
            low=float(l),
            close=float(c),
            volume=float(v),
        )
        for t, o, h, l, c, v in zip(
            ts,
            frame["open"].to_numpy(dtype=float),
            frame["high"].to_numpy(dtype=float),
            frame["low"].to_numpy(dtype=float),
            frame["close"].to_numpy(dtype=float),
            volume,
        )
    ]


def resample_ohlc(df: pd.DataFrame, interval: str = "W") -> pd.DataFrame:
    """
    Aggregate a daily frame to weekly ("W") or monthly ("M") bars.

    Besides OHLCV each bar carries `high_date` / `low_date`: the date of the
    daily candle where the bar's extreme printed. Pivots found on the coarse
    series are dated with these so they always land on a real daily candle.
    """
    if df.empty:
        return pd.DataFrame(columns=OHLCV + ["date", "high_date", "low_date"])

    rows = []
    keys = df.index.to_period(interval)
    for period, grp in df.groupby(keys, sort=True):
        hi = grp["high"].to_numpy().argmax()
        lo = grp["low"].to_numpy().argmin()
        rows.append({
            "time":      period.start_time,
            "open":      grp["open"].iloc[0],
            "high":      grp["high"].iloc[hi],
            "low":       grp["low"].iloc[lo],
            "close":     grp["close"].iloc[-1],
            "volume":    grp["volume"].sum(),
            "date":      grp["date"].iloc[0],
            "high_date": grp["date"].iloc[hi],
            "low_date":  grp["date"].iloc[lo],
        })
    out = pd.DataFrame(rows).set_index("time")
    logger.debug(f"Resampled {len(df)} daily candles → {len(out)} '{interval}' bars")
    return out


def date_index(df: pd.DataFrame) -> Dict[date, int]:
    """Calendar date → position in the frame. Later candles win on duplicates."""
    return {d: i for i, d in enumerate(df["date"])}


def percent_change(start: float, end: float) -> Optional[float]:
    """% change from start to end. None when start is 0: there is no return to record."""
    if start == 0:
        return None
    return (end - start) / start * 100.0

