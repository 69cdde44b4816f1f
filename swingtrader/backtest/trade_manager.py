"""
Trade Manager - Rule-based exit state machine for simulated positions.
"""
import math
from datetime import date
from typing import Optional

from swingtrader.models import (
    BacktestConfig,
    BacktestTrade,
    ExitDecision,
    ExitReason,
    PriceBar,
)

SKIP_GAP_TOLERANCE = 0.97

REGIME_ENTRY_FLOORS: dict[str, tuple[float, float]] = {
    "CHOPPY": (70.0, 2.5),
    "CRASH": (80.0, 3.0),
}

EXIT_REASON_DESCRIPTIONS: dict[ExitReason, str] = {
    ExitReason.TP1: "Take Profit 1",
    ExitReason.TP2: "Take Profit 2",
    ExitReason.TP3: "Take Profit 3",
    ExitReason.STOP_LOSS: "Stop Loss Hit",
    ExitReason.TIME_EXIT: "Max Holding Days",
    ExitReason.TRAILING_STOP: "Trailing Stop Hit",
    ExitReason.SIGNAL_EXIT: "Signal-Based Exit",
    ExitReason.MANUAL: "Manual Exit",
}

NO_EXIT = ExitDecision()


def exit_reason_description(reason: ExitReason) -> str:
    return EXIT_REASON_DESCRIPTIONS.get(reason, "Unknown")


class TradeManager:
    """
    Decides exits for open positions and prices entries.

    Exit checks run in a fixed priority order and the first match wins:
    stop-loss, time exit, take-profit tiers (highest first), trailing stop.
    """

    def __init__(self, config: BacktestConfig):
        self.config = config

    def check_exit(self, trade: BacktestTrade, bar: PriceBar, as_of: Optional[date] = None) -> ExitDecision:
        """
        Evaluate one day's bar against an open position.

        Args:
            trade: Open or partially closed trade
            bar: Today's price bar for the trade's ticker
            as_of: Simulation date, defaults to the bar date

        Returns:
            ExitDecision with action NONE, PARTIAL or FULL
        """
        as_of = as_of or bar.date

        if bar.low <= trade.stop_loss:
            return self._stop_loss(trade, bar)

        if self.config.max_holding_days:
            if self.holding_days(trade.entry_date, as_of) >= self.config.max_holding_days:
                return ExitDecision(
                    action="FULL",
                    price=bar.close,
                    reason=ExitReason.TIME_EXIT,
                    shares=trade.remaining_shares,
                )

        decision = self._take_profit(trade, bar)
        if decision.should_exit:
            return decision

        if self.config.use_trailing_stop and trade.mfe_r >= self.config.trailing_stop_activation:
            return self._trailing_stop(trade, bar)

        return NO_EXIT

    def _stop_loss(self, trade: BacktestTrade, bar: PriceBar) -> ExitDecision:
        gap_handling = self.config.gap_handling
        price = trade.stop_loss

        if gap_handling == "MARKET":
            price = min(trade.stop_loss, bar.low)
        elif gap_handling == "SKIP" and bar.low < trade.stop_loss * SKIP_GAP_TOLERANCE:
            # gapped more than 3% through the stop, assume no fill today
            return NO_EXIT

        return ExitDecision(
            action="FULL",
            price=price,
            reason=ExitReason.STOP_LOSS,
            shares=trade.remaining_shares,
        )

    def _take_profit(self, trade: BacktestTrade, bar: PriceBar) -> ExitDecision:
        if not trade.has_taken(ExitReason.TP3) and bar.high >= trade.tp3:
            return ExitDecision(
                action="FULL",
                price=trade.tp3,
                reason=ExitReason.TP3,
                shares=trade.remaining_shares,
            )

        tiers = (
            (ExitReason.TP2, trade.tp2, self.config.tp_sizes[1]),
            (ExitReason.TP1, trade.tp1, self.config.tp_sizes[0]),
        )
        for reason, level, size in tiers:
            if trade.has_taken(reason) or bar.high < level:
                continue
            shares = min(math.floor(trade.initial_shares * size), trade.remaining_shares)
            if shares <= 0:
                continue
            action = "FULL" if shares >= trade.remaining_shares else "PARTIAL"
            return ExitDecision(action=action, price=level, reason=reason, shares=shares)

        return NO_EXIT

    def _trailing_stop(self, trade: BacktestTrade, bar: PriceBar) -> ExitDecision:
        trail = trade.mfe * (1 - self.config.trailing_stop_distance)
        if bar.low > trail:
            return NO_EXIT
        return ExitDecision(
            action="FULL",
            price=min(trail, bar.open),
            reason=ExitReason.TRAILING_STOP,
            shares=trade.remaining_shares,
        )

    @staticmethod
    def holding_days(entry_date: date, as_of: date) -> int:
        return (as_of - entry_date).days

    def position_size(self, equity: float, entry_price: float, stop_loss: float) -> int:
        """Fixed-fractional sizing: floor(equity * risk_per_trade / risk per share)."""
        risk = entry_price - stop_loss
        if risk <= 0 or equity <= 0:
            return 0
        return math.floor(equity * self.config.risk_per_trade / risk)

    def apply_slippage(self, price: float, is_buy: bool) -> float:
        slippage = price * self.config.slippage_percent / 100
        return price + slippage if is_buy else price - slippage

    def commission(self, shares: int) -> float:
        return shares * self.config.commission_per_share

    def is_valid_entry(
        self,
        probability: float,
        reward_risk: float,
        regime: Optional[str] = None,
        volume_confirms: Optional[bool] = None,
        mtf_alignment: Optional[str] = None,
    ) -> bool:
        min_probability = self.config.entry_threshold
        min_rr = self.config.min_rr_ratio

        if self.config.adjust_for_regime and regime in REGIME_ENTRY_FLOORS:
            floor_probability, floor_rr = REGIME_ENTRY_FLOORS[regime]
            min_probability = max(min_probability, floor_probability)
            min_rr = max(min_rr, floor_rr)

        if probability < min_probability or reward_risk < min_rr:
            return False
        if self.config.require_volume_confirm and not volume_confirms:
            return False
        if self.config.require_mtf_align and mtf_alignment not in ("STRONG_BUY", "BUY"):
            return False
        return True
