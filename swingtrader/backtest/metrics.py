"""
Metrics Engine - Aggregate statistics over a closed-trade ledger.
"""
import math
from collections import OrderedDict
from datetime import date
from typing import Optional, Sequence

import numpy as np

from swingtrader.models import (
    BacktestTrade,
    EquityPoint,
    MonthlyReturn,
    PerformanceMetrics,
    RBucket,
)

TRADING_DAYS_PER_YEAR = 252

# (label, lower, upper) with (lower, upper] semantics
R_BUCKETS: tuple[tuple[str, float, float], ...] = (
    ("<-2R", -math.inf, -2.0),
    ("-2R to -1R", -2.0, -1.0),
    ("-1R to 0", -1.0, 0.0),
    ("0 to 1R", 0.0, 1.0),
    ("1R to 2R", 1.0, 2.0),
    ("2R to 3R", 2.0, 3.0),
    ("3R to 5R", 3.0, 5.0),
    (">5R", 5.0, math.inf),
)


def _closed(trades: Sequence[BacktestTrade]) -> list[BacktestTrade]:
    return [t for t in trades if t.is_closed]


def calculate_equity_curve(
    trades: Sequence[BacktestTrade],
    initial_capital: float,
) -> list[tuple[date, float]]:
    """Realized equity after each exit date, built from the ledger alone."""
    by_day: "OrderedDict[date, float]" = OrderedDict()
    for trade in sorted(_closed(trades), key=lambda t: (t.exit_date, t.trade_id)):
        by_day[trade.exit_date] = by_day.get(trade.exit_date, 0.0) + (trade.realized_pnl or 0.0)

    equity = initial_capital
    curve = []
    for day, pnl in by_day.items():
        equity += pnl
        curve.append((day, equity))
    return curve


def max_drawdown(equity: Sequence[float], initial_capital: Optional[float] = None) -> tuple[float, float]:
    """Largest peak-to-trough drop as (amount, percent of peak)."""
    if not equity:
        return 0.0, 0.0
    values = np.asarray(equity, dtype=float)
    start = initial_capital if initial_capital is not None else values[0]
    peaks = np.maximum.accumulate(np.concatenate([[start], values]))[1:]
    drawdowns = peaks - values
    idx = int(np.argmax(drawdowns))
    amount = float(drawdowns[idx])
    percent = amount / peaks[idx] * 100 if peaks[idx] > 0 else 0.0
    return max(0.0, amount), max(0.0, percent)


def max_drawdown_duration(points: Sequence[tuple[date, float]], initial_capital: float) -> int:
    """Longest span in calendar days from a peak until equity regains it."""
    if not points:
        return 0
    peak = initial_capital
    peak_date = points[0][0]
    underwater_since: Optional[date] = None
    longest = 0

    for day, equity in points:
        if equity >= peak:
            if underwater_since is not None:
                longest = max(longest, (day - underwater_since).days)
                underwater_since = None
            peak = equity
            peak_date = day
        elif underwater_since is None:
            underwater_since = peak_date

    if underwater_since is not None:
        longest = max(longest, (points[-1][0] - underwater_since).days)
    return longest


def sharpe_ratio(returns: Sequence[float], risk_free: float = 0.0) -> float:
    if len(returns) < 2:
        return 0.0
    values = np.asarray(returns, dtype=float) - risk_free
    std = float(np.std(values, ddof=1))
    if std == 0:
        return 0.0
    return float(np.mean(values)) / std * math.sqrt(TRADING_DAYS_PER_YEAR)


def sortino_ratio(returns: Sequence[float]) -> float:
    if len(returns) < 2:
        return 0.0
    values = np.asarray(returns, dtype=float)
    downside = values[values < 0]
    if downside.size == 0:
        return 0.0
    downside_dev = float(np.sqrt(np.mean(downside ** 2)))
    if downside_dev == 0:
        return 0.0
    return float(np.mean(values)) / downside_dev * math.sqrt(TRADING_DAYS_PER_YEAR)


def calmar_ratio(points: Sequence[tuple[date, float]], initial_capital: float, max_dd_percent: float) -> float:
    """Annualized growth rate (percent) over max drawdown percent."""
    if not points or max_dd_percent <= 0 or initial_capital <= 0:
        return 0.0
    days = (points[-1][0] - points[0][0]).days
    final = points[-1][1]
    if days <= 0 or final <= 0:
        return 0.0
    cagr = ((final / initial_capital) ** (365.25 / days) - 1) * 100
    return cagr / max_dd_percent


def calculate_streaks(trades: Sequence[BacktestTrade]) -> tuple[int, int]:
    """Longest runs of consecutive winning and losing trades, by exit order."""
    max_wins = max_losses = wins = losses = 0
    for trade in sorted(_closed(trades), key=lambda t: (t.exit_date, t.trade_id)):
        pnl = trade.realized_pnl or 0.0
        if pnl > 0:
            wins += 1
            losses = 0
        elif pnl < 0:
            losses += 1
            wins = 0
        else:
            wins = losses = 0
        max_wins = max(max_wins, wins)
        max_losses = max(max_losses, losses)
    return max_wins, max_losses


def calculate_r_distribution(trades: Sequence[BacktestTrade]) -> list[RBucket]:
    r_values = np.array([t.realized_r or 0.0 for t in _closed(trades)], dtype=float)
    total = r_values.size
    buckets = []
    for label, lower, upper in R_BUCKETS:
        count = int(np.sum((r_values > lower) & (r_values <= upper))) if total else 0
        buckets.append(RBucket(
            bucket=label,
            count=count,
            percent=count / total * 100 if total else 0.0,
        ))
    return buckets


def calculate_monthly_returns(
    equity_curve: Sequence[EquityPoint],
    initial_capital: float,
) -> list[MonthlyReturn]:
    months: "OrderedDict[str, float]" = OrderedDict()
    for point in equity_curve:
        months[point.date.strftime("%Y-%m")] = point.equity

    results = []
    start = initial_capital
    for month, end in months.items():
        results.append(MonthlyReturn(
            month=month,
            start_equity=start,
            end_equity=end,
            return_percent=(end - start) / start * 100 if start else 0.0,
        ))
        start = end
    return results


def _profit_factor(pnls: np.ndarray) -> Optional[float]:
    gross_loss = float(-pnls[pnls < 0].sum())
    if gross_loss == 0:
        return None
    return float(pnls[pnls > 0].sum()) / gross_loss


def calculate_metrics(
    trades: Sequence[BacktestTrade],
    initial_capital: float,
    equity_curve: Optional[Sequence[EquityPoint]] = None,
) -> PerformanceMetrics:
    """
    Aggregate performance over closed trades.

    Args:
        trades: Trade ledger; open trades are ignored
        initial_capital: Starting equity of the run
        equity_curve: Daily equity points; when omitted a realized curve
            is rebuilt from trade exits

    Returns:
        PerformanceMetrics with percentages in 0-100
    """
    closed = _closed(trades)
    if not closed:
        return PerformanceMetrics(r_distribution=calculate_r_distribution([]))

    pnls = np.array([t.realized_pnl or 0.0 for t in closed], dtype=float)
    r_values = np.array([t.realized_r or 0.0 for t in closed], dtype=float)
    wins = pnls > 0
    losses = pnls < 0
    total = len(closed)

    win_rate = float(wins.sum()) / total * 100
    avg_win_r = float(r_values[wins].mean()) if wins.any() else 0.0
    avg_loss_r = float(r_values[losses].mean()) if losses.any() else 0.0
    expectancy = (float(wins.sum()) * avg_win_r + float(losses.sum()) * avg_loss_r) / total

    if equity_curve:
        points = [(p.date, p.equity) for p in equity_curve]
        returns = [p.daily_return / 100 for p in equity_curve]
    else:
        points = calculate_equity_curve(closed, initial_capital)
        equities = [initial_capital] + [e for _, e in points]
        returns = [(b - a) / a for a, b in zip(equities, equities[1:]) if a]

    dd_amount, dd_percent = max_drawdown([e for _, e in points], initial_capital)
    max_wins, max_losses = calculate_streaks(closed)
    total_pnl = float(pnls.sum())

    return PerformanceMetrics(
        total_trades=total,
        winners=int(wins.sum()),
        losers=int(losses.sum()),
        win_rate=win_rate,
        total_pnl=total_pnl,
        total_pnl_percent=total_pnl / initial_capital * 100 if initial_capital else 0.0,
        avg_pnl_per_trade=total_pnl / total,
        avg_win=float(pnls[wins].mean()) if wins.any() else 0.0,
        avg_loss=float(pnls[losses].mean()) if losses.any() else 0.0,
        avg_r=float(r_values.mean()),
        avg_win_r=avg_win_r,
        avg_loss_r=avg_loss_r,
        expectancy=expectancy,
        profit_factor=_profit_factor(pnls),
        max_drawdown=dd_amount,
        max_drawdown_percent=dd_percent,
        max_drawdown_duration=max_drawdown_duration(points, initial_capital),
        sharpe_ratio=sharpe_ratio(returns),
        sortino_ratio=sortino_ratio(returns),
        calmar_ratio=calmar_ratio(points, initial_capital, dd_percent),
        avg_holding_days=float(np.mean([t.holding_days or 0 for t in closed])),
        max_consecutive_wins=max_wins,
        max_consecutive_losses=max_losses,
        r_distribution=calculate_r_distribution(closed),
    )
