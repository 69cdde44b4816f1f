"""
Backtest Simulator - Day-by-day event loop over a ticker universe.

Each trading day the simulator evaluates exits for every open position,
scans the universe for new entries while slots are free, then records one
equity point. The trade ledger, cash and price cache belong to a single
``run()`` call and are handed out only as a finished ``BacktestResult``.
"""
import math
from collections import Counter
from datetime import date, datetime, timedelta, timezone
from typing import Iterator, Optional

from loguru import logger

from swingtrader.backtest.attribution import (
    calibration_buckets,
    performance_by_month,
    performance_by_regime,
    performance_by_sector,
    performance_by_year,
)
from swingtrader.backtest.metrics import calculate_metrics, calculate_monthly_returns
from swingtrader.backtest.trade_manager import TradeManager
from swingtrader.data.cache import RunPriceCache
from swingtrader.data.sources.base import PriceProvider, Scorer
from swingtrader.models import (
    BacktestConfig,
    BacktestResult,
    BacktestTrade,
    EquityPoint,
    ExitDecision,
    ExitReason,
    ScoreResult,
)
from swingtrader.utils.exceptions import InvalidTradeSetupError, SwingTraderError
from swingtrader.utils.logging import log_event

LONG_TRADE_TYPE = "SWING_LONG"
DEFAULT_REGIME = "CHOPPY"


def trading_days(start: date, end: date) -> Iterator[date]:
    """Weekdays from start to end inclusive. Market holidays are not skipped."""
    day = start
    while day <= end:
        if day.weekday() < 5:
            yield day
        day += timedelta(days=1)


class BacktestSimulator:
    """
    Simulates the swing-trading policy over historical data.

    Uses fixed-fractional risk sizing, three take-profit tiers and the
    TradeManager exit priority. Collaborator failures skip the affected
    ticker for the day and never abort the run.
    """

    def __init__(
        self,
        config: BacktestConfig,
        price_provider: PriceProvider,
        scorer: Scorer,
        cache_lookback_days: int = 10,
    ):
        """
        Initialize simulator.

        Args:
            config: Immutable run parameters
            price_provider: Source of daily bars
            scorer: Point-in-time per-ticker scoring function
            cache_lookback_days: Extra history fetched before the start date
        """
        self.config = config
        self.price_provider = price_provider
        self.scorer = scorer
        self.cache_lookback_days = cache_lookback_days
        self.trade_manager = TradeManager(config)
        self._reset()

    def _reset(self) -> None:
        self._cache = RunPriceCache(
            self.price_provider,
            self.config.start_date,
            self.config.end_date,
            lookback_days=self.cache_lookback_days,
        )
        self._cash = self.config.initial_capital
        self._trades: list[BacktestTrade] = []
        self._equity_curve: list[EquityPoint] = []
        self._peak_equity = self.config.initial_capital
        self._booked_pnl: dict[str, float] = {}

    def run(self) -> BacktestResult:
        """
        Run the simulation over the configured date range.

        Returns:
            BacktestResult with metrics, equity curve, ledger and breakdowns
        """
        with logger.contextualize(run=self.config.name):
            return self._run()

    def _run(self) -> BacktestResult:
        started_at = datetime.now(timezone.utc)
        self._reset()
        days = list(trading_days(self.config.start_date, self.config.end_date))

        logger.info(
            f"Starting backtest '{self.config.name}': {len(self.config.universe)} tickers, "
            f"{len(days)} trading days ({self.config.start_date} to {self.config.end_date})"
        )

        status = "COMPLETED"
        error_message = None
        try:
            for i, day in enumerate(days):
                is_last_day = i == len(days) - 1
                realized = self._process_exits(day)

                if is_last_day:
                    realized += self._close_all(day)
                elif len(self._open_trades()) < self.config.max_open_positions:
                    self._scan_entries(day)

                self._record_equity(day, realized)
        except SwingTraderError as e:
            logger.error(f"Backtest '{self.config.name}' failed: {e}")
            status = "FAILED"
            error_message = str(e)

        result = self._build_result(started_at, status, error_message)
        self._cache.clear()
        log_event(
            "backtest_completed",
            f"Backtest '{self.config.name}' finished: {result.metrics.total_trades} trades, "
            f"P&L ${result.metrics.total_pnl:,.2f}, win rate {result.metrics.win_rate:.1f}%",
            status=result.status,
            start_date=self.config.start_date.isoformat(),
            end_date=self.config.end_date.isoformat(),
            trades=result.metrics.total_trades,
            total_pnl=result.metrics.total_pnl,
            sharpe_ratio=result.metrics.sharpe_ratio,
            max_drawdown_percent=result.metrics.max_drawdown_percent,
        )
        return result

    def _open_trades(self) -> list[BacktestTrade]:
        return [t for t in self._trades if not t.is_closed]

    # ------------------------------------------------------------------
    # Exits
    # ------------------------------------------------------------------
    def _process_exits(self, day: date) -> float:
        realized = 0.0
        for trade in self._open_trades():
            bar = self._cache.bar(trade.ticker, day)
            if bar is None:
                logger.debug(f"No bar for {trade.ticker} on {day}, skipping exit check")
                continue

            trade.update_excursions(bar.high, bar.low)
            decision = self.trade_manager.check_exit(trade, bar, day)
            if decision.should_exit:
                realized += self._execute_exit(trade, decision, day)
        return realized

    def _execute_exit(self, trade: BacktestTrade, decision: ExitDecision, day: date) -> float:
        fill = self.trade_manager.apply_slippage(decision.price, is_buy=False)
        shares = min(decision.shares, trade.remaining_shares)
        commission = self.trade_manager.commission(shares)

        trade.charge_commission(commission)
        self._cash += shares * fill - commission

        if decision.action == "PARTIAL" and shares < trade.remaining_shares:
            partial = trade.record_partial_exit(day, shares, fill, decision.reason)
            realized = partial.pnl - commission
            logger.info(
                f"{trade.trade_id} {trade.ticker}: {decision.reason.value} partial exit "
                f"{shares} @ {fill:.2f} ({partial.realized_r:.2f}R)"
            )
        else:
            trade.close(day, fill, decision.reason)
            realized = trade.realized_pnl - self._booked_pnl.get(trade.trade_id, 0.0)
            logger.info(
                f"{trade.trade_id} {trade.ticker}: closed by {decision.reason.value} "
                f"@ {fill:.2f} ({trade.realized_r:.2f}R, ${trade.realized_pnl:,.2f})"
            )

        self._booked_pnl[trade.trade_id] = self._booked_pnl.get(trade.trade_id, 0.0) + realized
        return realized

    def _close_all(self, day: date) -> float:
        realized = 0.0
        for trade in self._open_trades():
            bar = self._cache.last_bar_on_or_before(trade.ticker, day)
            if bar is None:
                logger.warning(f"No price for {trade.ticker} at end of run, closing at entry price")
                price = trade.entry_price
            else:
                price = bar.close
            decision = ExitDecision(
                action="FULL",
                price=price,
                reason=ExitReason.TIME_EXIT,
                shares=trade.remaining_shares,
            )
            realized += self._execute_exit(trade, decision, day)
        return realized

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------
    def _passes_gates(self, score: ScoreResult) -> bool:
        if score.trade_type != LONG_TRADE_TYPE:
            return False
        if score.risk_per_share <= 0:
            logger.debug(f"{score.ticker}: stop {score.stop_loss} not below price {score.price}")
            return False
        return self.trade_manager.is_valid_entry(
            probability=score.probability,
            reward_risk=score.effective_reward_risk,
            regime=score.regime or DEFAULT_REGIME,
            volume_confirms=score.volume_confirms,
            mtf_alignment=score.multi_timeframe_alignment,
        )

    def _scan_entries(self, day: date) -> None:
        open_trades = self._open_trades()
        held = {t.ticker for t in open_trades}
        slots = self.config.max_open_positions - len(open_trades)

        candidates: list[ScoreResult] = []
        for ticker in self.config.universe:
            if ticker in held:
                continue
            try:
                score = self.scorer.score(ticker, day)
            except Exception as e:
                logger.warning(f"Scoring {ticker} on {day} failed, excluded today: {e}")
                continue
            if self._passes_gates(score):
                candidates.append(score)

        # stable: equal probabilities keep universe order
        candidates.sort(key=lambda s: s.probability, reverse=True)
        sector_counts = Counter(t.sector for t in open_trades)

        for score in candidates:
            if slots <= 0:
                break
            if self.config.max_per_sector and sector_counts[score.sector] >= self.config.max_per_sector:
                logger.debug(f"{score.ticker}: sector {score.sector} is full")
                continue
            try:
                trade = self._open_trade(score, day)
            except InvalidTradeSetupError as e:
                logger.info(f"Discarded entry: {e}")
                continue
            slots -= 1
            sector_counts[trade.sector] += 1

    def _open_trade(self, score: ScoreResult, day: date) -> BacktestTrade:
        risk = score.risk_per_share
        if risk <= 0:
            raise InvalidTradeSetupError(score.ticker, f"non-positive risk {risk:.2f}")

        equity = self._mark_to_market(day)
        shares = self.trade_manager.position_size(equity, score.price, score.stop_loss)
        fill = self.trade_manager.apply_slippage(score.price, is_buy=True)
        unit_cost = fill + self.config.commission_per_share
        shares = min(shares, math.floor(self._cash / unit_cost) if unit_cost > 0 else 0)
        if shares <= 0:
            raise InvalidTradeSetupError(score.ticker, "position size rounds to zero shares")

        tp1, tp2, tp3 = (score.price + risk * ratio for ratio in self.config.tp_ratios)
        trade = BacktestTrade(
            trade_id=f"T{len(self._trades) + 1}",
            ticker=score.ticker,
            signal_date=score.as_of or day,
            entry_date=day,
            signal_price=score.price,
            entry_price=fill,
            entry_probability=score.probability,
            initial_shares=shares,
            remaining_shares=shares,
            stop_loss=score.stop_loss,
            tp1=tp1,
            tp2=tp2,
            tp3=tp3,
            regime=score.regime or DEFAULT_REGIME,
            sector=score.sector or "Unknown",
        )

        commission = self.trade_manager.commission(shares)
        trade.charge_commission(commission)
        self._cash -= shares * fill + commission
        self._trades.append(trade)

        logger.info(
            f"{trade.trade_id} {trade.ticker}: entered {shares} @ {fill:.2f} "
            f"(stop {trade.stop_loss:.2f}, p={score.probability:.0f}%)"
        )
        return trade

    # ------------------------------------------------------------------
    # Equity
    # ------------------------------------------------------------------
    def _mark_to_market(self, day: date) -> float:
        equity = self._cash
        for trade in self._open_trades():
            bar = self._cache.last_bar_on_or_before(trade.ticker, day)
            price = bar.close if bar is not None else trade.entry_price
            equity += trade.remaining_shares * price
        return equity

    def _record_equity(self, day: date, realized: float) -> None:
        equity = self._mark_to_market(day)
        previous = self._equity_curve[-1].equity if self._equity_curve else self.config.initial_capital
        self._peak_equity = max(self._peak_equity, equity)
        drawdown = max(0.0, self._peak_equity - equity)

        self._equity_curve.append(EquityPoint(
            date=day,
            equity=equity,
            cash=self._cash,
            drawdown=drawdown,
            drawdown_percent=drawdown / self._peak_equity * 100 if self._peak_equity > 0 else 0.0,
            open_positions=len(self._open_trades()),
            daily_pnl=realized,
            daily_return=(equity - previous) / previous * 100 if previous else 0.0,
        ))

    def _build_result(
        self,
        started_at: datetime,
        status: str,
        error_message: Optional[str],
    ) -> BacktestResult:
        trades = tuple(t.model_copy(deep=True) for t in self._trades)
        equity_curve = tuple(self._equity_curve)
        capital = self.config.initial_capital

        return BacktestResult(
            config=self.config,
            status=status,
            error_message=error_message,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc),
            metrics=calculate_metrics(trades, capital, equity_curve),
            equity_curve=equity_curve,
            trades=trades,
            performance_by_regime=performance_by_regime(trades),
            performance_by_sector=performance_by_sector(trades),
            performance_by_month=performance_by_month(trades),
            performance_by_year=performance_by_year(trades),
            calibration_by_bucket=calibration_buckets(trades),
            monthly_returns=calculate_monthly_returns(equity_curve, capital),
        )


def create_default_config(
    universe: list[str],
    start_date: date,
    end_date: date,
    name: str = "default",
    **overrides,
) -> BacktestConfig:
    return BacktestConfig(
        name=name,
        universe=tuple(universe),
        start_date=start_date,
        end_date=end_date,
        **overrides,
    )
