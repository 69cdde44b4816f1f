"""
Exit feature extraction.

``FEATURE_SCHEMA`` is the single ordered definition of the model inputs.
The trainer builds its design matrix from it and the exit evaluator checks
persisted weights against it, so the two can never drift apart.
"""
from bisect import bisect_right
from operator import attrgetter
from typing import Callable, Optional, Sequence

import numpy as np
from pydantic import BaseModel

from swingtrader.features.indicators import atr, pct_return, rsi, sma
from swingtrader.models import PriceBar, calculate_r_multiple

VOLUME_LOOKBACK = 20
MONTH_END_DAY = 25


class ExitFeatureVector(BaseModel):
    model_config = {"from_attributes": True, "frozen": True}

    holding_days: float
    unrealized_r: float
    unrealized_pct: float
    return_from_entry: float
    return_from_high: float
    return_last_5d: float
    return_last_3d: float
    return_last_1d: float
    atr_percent: float
    daily_range_percent: float
    rsi_14: float
    price_vs_20sma: float
    price_vs_50sma: float
    volume_vs_avg: float
    spy_return_5d: float
    spy_return_10d: float
    day_of_week: float
    is_month_end: float
    in_profit: float
    above_1r: float
    above_15r: float
    above_2r: float

    def to_array(self) -> np.ndarray:
        return np.array([getter(self) for _, getter in FEATURE_SCHEMA], dtype=float)

    def as_dict(self) -> dict[str, float]:
        return {name: float(getter(self)) for name, getter in FEATURE_SCHEMA}


FEATURE_NAMES: tuple[str, ...] = tuple(ExitFeatureVector.model_fields)

FEATURE_SCHEMA: tuple[tuple[str, Callable[[ExitFeatureVector], float]], ...] = tuple(
    (name, attrgetter(name)) for name in FEATURE_NAMES
)


def feature_matrix(vectors: Sequence[ExitFeatureVector]) -> np.ndarray:
    """Stack feature vectors into an (n, len(FEATURE_NAMES)) design matrix."""
    if not vectors:
        return np.empty((0, len(FEATURE_NAMES)))
    return np.vstack([v.to_array() for v in vectors])


def _benchmark_returns(
    benchmark: Optional[Sequence[PriceBar]],
    current_bar: PriceBar,
) -> tuple[float, float]:
    if not benchmark:
        return 0.0, 0.0
    # last benchmark bar dated on or before the current bar
    idx = bisect_right([b.date for b in benchmark], current_bar.date) - 1
    if idx < 0:
        return 0.0, 0.0
    closes = [b.close for b in benchmark[:idx + 1]]
    return pct_return(closes, 5), pct_return(closes, 10)


def _pct_vs(value: float, base: float) -> float:
    return (value - base) / base * 100 if base else 0.0


def extract_exit_features(
    prices: Sequence[PriceBar],
    entry_price: float,
    stop_loss: float,
    current_idx: int,
    entry_idx: int,
    benchmark: Optional[Sequence[PriceBar]] = None,
) -> ExitFeatureVector:
    """
    Describe an open position's state at ``prices[current_idx]``.

    Args:
        prices: Ascending daily bars for the ticker
        entry_price: Position entry price
        stop_loss: Initial stop price
        current_idx: Index of the as-of bar; later bars are never read
        entry_idx: Index of the entry bar
        benchmark: Optional ascending benchmark bars (e.g. SPY)

    Returns:
        ExitFeatureVector in schema order
    """
    if not 0 <= current_idx < len(prices):
        raise IndexError(f"current_idx {current_idx} outside history of {len(prices)} bars")

    history = list(prices[:current_idx + 1])
    bar = history[-1]
    closes = [b.close for b in history]
    current = bar.close

    unrealized_r = calculate_r_multiple(entry_price, current, stop_loss)
    unrealized_pct = _pct_vs(current, entry_price)

    since_entry = history[max(0, entry_idx):]
    high_since_entry = max([entry_price] + [b.high for b in since_entry])

    atr_value = atr(history)

    volumes = [b.volume for b in history[:-1]][-VOLUME_LOOKBACK:]
    avg_volume = float(np.mean(volumes)) if volumes else 0.0
    volume_vs_avg = bar.volume / avg_volume if avg_volume > 0 else 1.0

    spy_5d, spy_10d = _benchmark_returns(benchmark, bar)

    return ExitFeatureVector(
        holding_days=current_idx - entry_idx,
        unrealized_r=unrealized_r,
        unrealized_pct=unrealized_pct,
        return_from_entry=unrealized_pct,
        return_from_high=_pct_vs(current, high_since_entry),
        return_last_5d=pct_return(closes, 5),
        return_last_3d=pct_return(closes, 3),
        return_last_1d=pct_return(closes, 1),
        atr_percent=atr_value / current * 100 if current else 0.0,
        daily_range_percent=(bar.high - bar.low) / bar.low * 100 if bar.low else 0.0,
        rsi_14=rsi(closes),
        price_vs_20sma=_pct_vs(current, sma(closes, 20)),
        price_vs_50sma=_pct_vs(current, sma(closes, 50)),
        volume_vs_avg=volume_vs_avg,
        spy_return_5d=spy_5d,
        spy_return_10d=spy_10d,
        # 0 = Sunday ... 6 = Saturday
        day_of_week=bar.date.isoweekday() % 7,
        is_month_end=1.0 if bar.date.day >= MONTH_END_DAY else 0.0,
        in_profit=1.0 if unrealized_r > 0 else 0.0,
        above_1r=1.0 if unrealized_r > 1 else 0.0,
        above_15r=1.0 if unrealized_r > 1.5 else 0.0,
        above_2r=1.0 if unrealized_r > 2 else 0.0,
    )
