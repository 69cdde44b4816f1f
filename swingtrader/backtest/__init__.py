from swingtrader.backtest.trade_manager import TradeManager, exit_reason_description
from swingtrader.backtest.simulator import BacktestSimulator, create_default_config, trading_days
from swingtrader.backtest.metrics import (
    calculate_metrics,
    calculate_equity_curve,
    calculate_monthly_returns,
    calculate_streaks,
)
from swingtrader.backtest.attribution import calibration_buckets
from swingtrader.backtest.walk_forward import (
    WalkForwardOptimizer,
    anchored_windows,
    rolling_windows,
)

__all__ = [
    "TradeManager",
    "exit_reason_description",
    "BacktestSimulator",
    "create_default_config",
    "trading_days",
    "calculate_metrics",
    "calculate_equity_curve",
    "calculate_monthly_returns",
    "calculate_streaks",
    "calibration_buckets",
    "WalkForwardOptimizer",
    "anchored_windows",
    "rolling_windows",
]
