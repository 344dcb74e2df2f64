"""
Risk metrics over ordered % return sequences.

max_drawdown compounds a notional 100 through the returns in order and
reports the largest peak-to-current decline in percent (always ≥ 0).
"""
from typing import Sequence

import numpy as np

from fibtime.engine.backtest_schema import SignalEffectiveness

STARTING_BALANCE = 100.0


def max_drawdown(returns: Sequence[float]) -> float:
    if len(returns) == 0:
        return 0.0
    equity = STARTING_BALANCE * np.cumprod(1.0 + np.asarray(returns, dtype=float) / 100.0)
    peaks = np.maximum.accumulate(np.concatenate(([STARTING_BALANCE], equity)))[1:]
    with np.errstate(divide="ignore", invalid="ignore"):
        dd = np.where(peaks > 0, (peaks - equity) / peaks * 100.0, 0.0)
    return float(max(dd.max(), 0.0))


def sharpe_ratio(returns: Sequence[float]) -> float:
    """mean / population std, 0 when std is 0 or there are no returns."""
    if len(returns) == 0:
        return 0.0
    arr = np.asarray(returns, dtype=float)
    std = arr.std()
    if std == 0:
        return 0.0
    return float(arr.mean() / std)


def signal_effectiveness(returns: Sequence[float], hit_pct: float = 1.0) -> SignalEffectiveness:
    """Hit rate of |return| > hit_pct plus win/loss stats, Sharpe and drawdown."""
    if len(returns) == 0:
        return SignalEffectiveness()
    arr  = np.asarray(returns, dtype=float)
    wins = arr[arr > 0]
    loss = arr[arr < 0]
    avg_win  = float(wins.mean()) if wins.size else 0.0
    avg_loss = float(loss.mean()) if loss.size else 0.0
    return SignalEffectiveness(
        hit_rate       = float((np.abs(arr) > hit_pct).sum() / arr.size * 100.0),
        avg_win        = avg_win,
        avg_loss       = avg_loss,
        win_loss_ratio = abs(avg_win / avg_loss) if avg_loss else 0.0,
        sharpe         = sharpe_ratio(arr),
        max_drawdown   = max_drawdown(arr),
    )
