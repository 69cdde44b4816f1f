"""
Attribution breakdowns and probability calibration for a trade ledger.
"""
from collections import defaultdict
from typing import Callable, Iterable, Sequence

import numpy as np

from swingtrader.models import BacktestTrade, CalibrationBucket, GroupPerformance

REGIMES = ("BULL", "CHOPPY", "CRASH")
CALIBRATION_HIT_R = 1.5
BUCKET_WIDTH = 10


def _group_performance(trades: Sequence[BacktestTrade]) -> GroupPerformance:
    if not trades:
        return GroupPerformance()

    pnls = np.array([t.realized_pnl or 0.0 for t in trades], dtype=float)
    r_values = np.array([t.realized_r or 0.0 for t in trades], dtype=float)
    gross_loss = float(-pnls[pnls < 0].sum())

    return GroupPerformance(
        trades=len(trades),
        win_rate=float((pnls > 0).sum()) / len(trades) * 100,
        avg_r=float(r_values.mean()),
        total_pnl=float(pnls.sum()),
        expectancy=float(pnls.mean()),
        profit_factor=float(pnls[pnls > 0].sum()) / gross_loss if gross_loss > 0 else None,
    )


def performance_by(
    trades: Iterable[BacktestTrade],
    key: Callable[[BacktestTrade], str],
    always_include: Iterable[str] = (),
) -> dict[str, GroupPerformance]:
    groups: dict[str, list[BacktestTrade]] = defaultdict(list)
    for name in always_include:
        groups[name] = []
    for trade in trades:
        if trade.is_closed:
            groups[key(trade)].append(trade)
    return {name: _group_performance(groups[name]) for name in sorted(groups)}


def performance_by_regime(trades: Iterable[BacktestTrade]) -> dict[str, GroupPerformance]:
    return performance_by(trades, lambda t: t.regime, always_include=REGIMES)


def performance_by_sector(trades: Iterable[BacktestTrade]) -> dict[str, GroupPerformance]:
    return performance_by(trades, lambda t: t.sector or "Unknown")


def performance_by_month(trades: Iterable[BacktestTrade]) -> dict[str, GroupPerformance]:
    return performance_by(trades, lambda t: t.exit_date.strftime("%Y-%m"))


def performance_by_year(trades: Iterable[BacktestTrade]) -> dict[str, GroupPerformance]:
    return performance_by(trades, lambda t: t.exit_date.strftime("%Y"))


def calibration_buckets(
    trades: Sequence[BacktestTrade],
    hit_r: float = CALIBRATION_HIT_R,
) -> list[CalibrationBucket]:
    """
    Compare entry probability against realized outcome.

    Trades are grouped into ten-point buckets of entry probability
    (100 falls in the 90-100 bucket). A trade counts as a hit when its
    realized R reaches ``hit_r``.

    Args:
        trades: Trade ledger; open trades are ignored
        hit_r: R-multiple that counts as a successful prediction

    Returns:
        Non-empty buckets in ascending order
    """
    closed = [t for t in trades if t.is_closed]
    if not closed:
        return []

    probabilities = np.array([t.entry_probability for t in closed], dtype=float)
    hits = np.array([(t.realized_r or 0.0) >= hit_r for t in closed], dtype=float)
    starts = np.minimum(np.floor(probabilities / BUCKET_WIDTH) * BUCKET_WIDTH, 100 - BUCKET_WIDTH)

    buckets = []
    for start in np.unique(starts):
        mask = starts == start
        lower = int(start)
        buckets.append(CalibrationBucket(
            bucket=f"{lower}-{lower + BUCKET_WIDTH}%",
            predicted_avg=float(probabilities[mask].mean()),
            actual_win_rate=float(hits[mask].mean()) * 100,
            count=int(mask.sum()),
        ))
    return buckets
