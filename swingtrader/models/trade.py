from datetime import date
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, Field, model_validator

from swingtrader.utils.exceptions import TradeClosedError


class TradeStatus(str, Enum):
    OPEN = "OPEN"
    PARTIALLY_CLOSED = "PARTIALLY_CLOSED"
    CLOSED = "CLOSED"


class ExitReason(str, Enum):
    TP1 = "TP1"
    TP2 = "TP2"
    TP3 = "TP3"
    STOP_LOSS = "STOP_LOSS"
    TIME_EXIT = "TIME_EXIT"
    TRAILING_STOP = "TRAILING_STOP"
    SIGNAL_EXIT = "SIGNAL_EXIT"
    MANUAL = "MANUAL"


class PartialExit(BaseModel):
    model_config = {"from_attributes": True, "frozen": True}

    date: date
    shares: int = Field(gt=0)
    price: float
    reason: ExitReason
    realized_r: float
    pnl: float


class ExitDecision(BaseModel):
    model_config = {"from_attributes": True, "frozen": True}

    action: Literal["NONE", "PARTIAL", "FULL"] = "NONE"
    price: Optional[float] = None
    reason: Optional[ExitReason] = None
    shares: int = 0

    @property
    def should_exit(self) -> bool:
        return self.action != "NONE"


class BacktestTrade(BaseModel):
    """
    A simulated long position.

    Owned by a single simulator run. All mutation goes through the methods
    below, which refuse to touch a trade once it is CLOSED.
    """

    model_config = {"from_attributes": True, "validate_assignment": False}

    trade_id: str
    ticker: str
    signal_date: date
    entry_date: date
    signal_price: float
    entry_price: float
    entry_probability: float
    initial_shares: int = Field(gt=0)
    remaining_shares: int
    stop_loss: float
    tp1: float
    tp2: float
    tp3: float
    regime: str = "CHOPPY"
    sector: str = "Unknown"

    status: TradeStatus = TradeStatus.OPEN
    partial_exits: list[PartialExit] = []
    commissions: float = 0.0

    mfe: float = 0.0
    mfe_r: float = 0.0
    mae: float = 0.0
    mae_r: float = 0.0

    exit_date: Optional[date] = None
    exit_price: Optional[float] = None
    exit_reason: Optional[ExitReason] = None
    realized_pnl: Optional[float] = None
    realized_pnl_percent: Optional[float] = None
    realized_r: Optional[float] = None
    holding_days: Optional[int] = None

    @model_validator(mode="after")
    def seed_excursions(self) -> "BacktestTrade":
        if self.mfe == 0.0:
            self.mfe = self.entry_price
        if self.mae == 0.0:
            self.mae = self.entry_price
        return self

    @property
    def risk_per_share(self) -> float:
        return self.entry_price - self.stop_loss

    @property
    def position_value(self) -> float:
        return self.entry_price * self.initial_shares

    @property
    def is_closed(self) -> bool:
        return self.status == TradeStatus.CLOSED

    def has_taken(self, reason: ExitReason) -> bool:
        return any(p.reason == reason for p in self.partial_exits)

    def _ensure_open(self) -> None:
        if self.is_closed:
            raise TradeClosedError(self.trade_id)

    def r_multiple(self, price: float) -> float:
        return calculate_r_multiple(self.entry_price, price, self.stop_loss)

    def update_excursions(self, high: float, low: float) -> None:
        self._ensure_open()
        if high > self.mfe:
            self.mfe = high
            self.mfe_r = self.r_multiple(high)
        if low < self.mae:
            self.mae = low
            self.mae_r = self.r_multiple(low)

    def charge_commission(self, amount: float) -> None:
        self._ensure_open()
        self.commissions += amount

    def record_partial_exit(
        self,
        exit_date: date,
        shares: int,
        price: float,
        reason: ExitReason,
    ) -> PartialExit:
        self._ensure_open()
        if shares <= 0 or shares >= self.remaining_shares:
            raise ValueError(
                f"partial exit of {shares} shares invalid with {self.remaining_shares} remaining"
            )
        partial = PartialExit(
            date=exit_date,
            shares=shares,
            price=price,
            reason=reason,
            realized_r=self.r_multiple(price),
            pnl=(price - self.entry_price) * shares,
        )
        self.partial_exits.append(partial)
        self.remaining_shares -= shares
        self.status = TradeStatus.PARTIALLY_CLOSED
        return partial

    def close(self, exit_date: date, price: float, reason: ExitReason) -> float:
        """Close the remaining shares and set the terminal fields.

        Returns the gross P&L of the closing tranche.
        """
        self._ensure_open()
        final_pnl = (price - self.entry_price) * self.remaining_shares
        gross = sum(p.pnl for p in self.partial_exits) + final_pnl

        self.exit_date = exit_date
        self.exit_price = price
        self.exit_reason = reason
        self.realized_r = self.r_multiple(price)
        self.realized_pnl = gross - self.commissions
        cost = self.entry_price * self.initial_shares
        self.realized_pnl_percent = self.realized_pnl / cost * 100 if cost > 0 else 0.0
        self.holding_days = (exit_date - self.entry_date).days
        self.remaining_shares = 0
        self.status = TradeStatus.CLOSED
        return final_pnl


def calculate_r_multiple(entry_price: float, exit_price: float, stop_loss: float) -> float:
    risk = entry_price - stop_loss
    if risk <= 0:
        return 0.0
    return (exit_price - entry_price) / risk
