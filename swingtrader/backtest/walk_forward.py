"""
Walk-Forward Optimizer - Grid search on train windows, evaluation on test windows.
"""
import itertools
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from contextlib import ExitStack
from datetime import date, timedelta
from typing import Callable, Optional, Sequence

from loguru import logger

from swingtrader.backtest.metrics import calculate_metrics
from swingtrader.backtest.simulator import BacktestSimulator
from swingtrader.data.sources.base import PriceProvider, Scorer
from swingtrader.models import (
    BacktestConfig,
    BacktestResult,
    OptimizationMetric,
    ParameterSet,
    PerformanceMetrics,
    WalkForwardResult,
    WalkForwardWindow,
    WalkForwardWindowResult,
)

DEFAULT_PARAMETER_GRID: dict[str, tuple] = {
    "entry_threshold": (60.0, 65.0, 70.0),
    "min_rr_ratio": (1.5, 2.0, 2.5),
    "max_holding_days": (10, 20, 30),
}

PROFIT_FACTOR_CAP = 10.0


def rolling_windows(
    start: date,
    end: date,
    train_days: int,
    test_days: int,
    step_days: Optional[int] = None,
) -> list[WalkForwardWindow]:
    """
    Fixed-length train windows rolled forward by ``step_days``.

    Test ranges of consecutive windows are adjacent and never overlap.
    The last test range is clipped to ``end``.
    """
    step = step_days or test_days
    if train_days <= 0 or test_days <= 0:
        raise ValueError("train_days and test_days must be positive")
    if step < test_days:
        raise ValueError(f"step_days {step} would overlap test ranges of {test_days} days")

    windows = []
    train_start = start
    while True:
        train_end = train_start + timedelta(days=train_days - 1)
        test_start = train_end + timedelta(days=1)
        if test_start > end:
            break
        test_end = min(test_start + timedelta(days=test_days - 1), end)
        windows.append(WalkForwardWindow(
            index=len(windows),
            train_start=train_start,
            train_end=train_end,
            test_start=test_start,
            test_end=test_end,
        ))
        train_start += timedelta(days=step)
    return windows


def anchored_windows(
    start: date,
    end: date,
    initial_train_days: int,
    test_days: int,
) -> list[WalkForwardWindow]:
    """Expanding train windows that all begin at ``start``."""
    windows = rolling_windows(start, end, initial_train_days, test_days)
    return [w.model_copy(update={"train_start": start}) for w in windows]


def score_metrics(metrics: PerformanceMetrics, metric: OptimizationMetric) -> float:
    if metric == "sharpe":
        return metrics.sharpe_ratio
    if metric == "sortino":
        return metrics.sortino_ratio
    if metric == "expectancy":
        return metrics.expectancy
    if metrics.profit_factor is None:
        return PROFIT_FACTOR_CAP if metrics.total_trades else 0.0
    return min(metrics.profit_factor, PROFIT_FACTOR_CAP)


class WalkForwardOptimizer:
    """
    Re-runs the simulator across walk-forward windows.

    For each window every parameter combination is backtested on the train
    range, the best one by ``metric`` is run on the test range, and the
    test trades are pooled into out-of-sample metrics. Independent runs may
    execute in a thread pool.

    Every run builds its own price provider and scorer from the factories
    and closes them when it finishes, so no connection, rate limiter or
    price cache is shared between threads.
    """

    def __init__(
        self,
        base_config: BacktestConfig,
        price_provider_factory: Callable[[], PriceProvider],
        scorer_factory: Callable[[], Scorer],
        windows: Sequence[WalkForwardWindow],
        parameter_grid: Optional[dict[str, Sequence]] = None,
        metric: OptimizationMetric = "sharpe",
        max_workers: int = 1,
    ):
        if not windows:
            raise ValueError("walk-forward needs at least one window")
        self.base_config = base_config
        self.price_provider_factory = price_provider_factory
        self.scorer_factory = scorer_factory
        self.windows = list(windows)
        self.parameter_grid = parameter_grid or DEFAULT_PARAMETER_GRID
        self.metric = metric
        self.max_workers = max(1, max_workers)

    def parameter_sets(self) -> list[ParameterSet]:
        grid = self.parameter_grid
        return [
            ParameterSet(entry_threshold=t, min_rr_ratio=rr, max_holding_days=h)
            for t, rr, h in itertools.product(
                grid["entry_threshold"],
                grid["min_rr_ratio"],
                grid["max_holding_days"],
            )
        ]

    def _config_for(self, params: ParameterSet, start: date, end: date, label: str) -> BacktestConfig:
        return BacktestConfig.model_validate({
            **self.base_config.model_dump(),
            "name": f"{self.base_config.name}-{label}",
            "start_date": start,
            "end_date": end,
            "entry_threshold": params.entry_threshold,
            "min_rr_ratio": params.min_rr_ratio,
            "max_holding_days": params.max_holding_days,
        })

    @staticmethod
    def _open(stack: ExitStack, factory: Callable):
        resource = factory()
        close = getattr(resource, "close", None)
        if callable(close):
            stack.callback(close)
        return resource

    def _run(self, config: BacktestConfig) -> BacktestResult:
        with ExitStack() as stack:
            provider = self._open(stack, self.price_provider_factory)
            scorer = self._open(stack, self.scorer_factory)
            return BacktestSimulator(config, provider, scorer).run()

    def _optimize(self, window: WalkForwardWindow) -> tuple[ParameterSet, float, PerformanceMetrics]:
        candidates = self.parameter_sets()
        configs = [
            self._config_for(p, window.train_start, window.train_end, f"w{window.index}-train-{i}")
            for i, p in enumerate(candidates)
        ]

        if self.max_workers > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                results = list(pool.map(self._run, configs))
        else:
            results = [self._run(c) for c in configs]

        scored = [
            (r.metrics.total_trades > 0, score_metrics(r.metrics, self.metric), i)
            for i, r in enumerate(results)
        ]
        # first best in grid order wins ties
        best = max(scored, key=lambda s: (s[0], s[1], -s[2]))
        idx = best[2]
        return candidates[idx], best[1], results[idx].metrics

    def run(self) -> WalkForwardResult:
        window_results = []
        test_trades = []

        for window in self.windows:
            logger.info(
                f"Walk-forward window {window.index}: train {window.train_start}..{window.train_end}, "
                f"test {window.test_start}..{window.test_end}"
            )
            params, train_score, train_metrics = self._optimize(window)
            test_config = self._config_for(params, window.test_start, window.test_end, f"w{window.index}-test")
            test_result = self._run(test_config)
            test_trades.extend(test_result.trades)

            logger.info(
                f"Window {window.index} best {params.model_dump()} "
                f"({self.metric}={train_score:.3f}), test trades: {test_result.metrics.total_trades}"
            )
            window_results.append(WalkForwardWindowResult(
                window=window,
                best_parameters=params,
                train_score=train_score,
                train_metrics=train_metrics,
                test_result=test_result,
            ))

        chosen = Counter(w.best_parameters for w in window_results)
        robust = chosen.most_common(1)[0][0] if chosen else None

        return WalkForwardResult(
            metric=self.metric,
            windows=window_results,
            robust_parameters=robust,
            out_of_sample_metrics=calculate_metrics(test_trades, self.base_config.initial_capital),
        )
