"""
Technical indicators over an ascending price history.

Every function reads only the bars it is given. Callers slice the history
to the as-of index before calling, so no indicator can see future bars.
"""
from typing import Sequence

import numpy as np

from swingtrader.models import PriceBar

RSI_PERIOD = 14
ATR_PERIOD = 14


def sma(closes: Sequence[float], period: int) -> float:
    """Simple moving average of the last ``period`` closes.

    Falls back to the last close when the history is shorter than the period.
    """
    if not closes:
        return 0.0
    if len(closes) < period:
        return float(closes[-1])
    return float(np.mean(closes[-period:]))


def rsi(closes: Sequence[float], period: int = RSI_PERIOD) -> float:
    """Simple-average RSI over the last ``period`` changes.

    Returns 50 with fewer than period + 1 closes and 100 when there are no losses.
    """
    if len(closes) < period + 1:
        return 50.0

    changes = np.diff(np.asarray(closes[-(period + 1):], dtype=float))
    avg_gain = float(changes[changes > 0].sum()) / period
    avg_loss = float(-changes[changes < 0].sum()) / period

    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100.0 - 100.0 / (1.0 + rs)


def true_ranges(bars: Sequence[PriceBar]) -> list[float]:
    ranges = []
    for prev, bar in zip(bars, bars[1:]):
        ranges.append(max(
            bar.high - bar.low,
            abs(bar.high - prev.close),
            abs(bar.low - prev.close),
        ))
    return ranges


def atr(bars: Sequence[PriceBar], period: int = ATR_PERIOD) -> float:
    """Average of the last ``period`` true ranges, 0 with fewer than period + 1 bars."""
    if len(bars) < period + 1:
        return 0.0
    return float(np.mean(true_ranges(bars)[-period:]))


def pct_return(closes: Sequence[float], lookback: int) -> float:
    """Percent change over ``lookback`` bars, 0 when the history is too short."""
    if len(closes) <= lookback:
        return 0.0
    base = closes[-1 - lookback]
    if base == 0:
        return 0.0
    return (closes[-1] - base) / base * 100
