from datetime import date
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

Regime = Literal["BULL", "CHOPPY", "CRASH"]


class PriceBar(BaseModel):
    model_config = {"from_attributes": True, "frozen": True}

    date: date
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    @model_validator(mode="after")
    def validate_range(self) -> "PriceBar":
        if self.low > self.high:
            raise ValueError(f"low {self.low} above high {self.high} on {self.date}")
        return self


class ScoreResult(BaseModel):
    """Point-in-time verdict of the per-ticker scoring function."""

    model_config = {"from_attributes": True, "frozen": True}

    ticker: str
    as_of: Optional[date] = None
    price: float = Field(gt=0)
    probability: float = Field(ge=0.0, le=100.0)
    trade_type: str = "SWING_LONG"
    stop_loss: float
    take_profit_levels: list[float] = []
    sector: str = "Unknown"
    regime: Optional[Regime] = None
    multi_timeframe_alignment: Optional[str] = None
    volume_confirms: Optional[bool] = None
    reward_risk: Optional[float] = None

    @field_validator("ticker")
    @classmethod
    def normalize_ticker(cls, v: str) -> str:
        return v.strip().upper()

    @property
    def risk_per_share(self) -> float:
        return self.price - self.stop_loss

    @property
    def effective_reward_risk(self) -> float:
        if self.reward_risk is not None:
            return self.reward_risk
        if not self.take_profit_levels or self.risk_per_share <= 0:
            return 0.0
        return (self.take_profit_levels[0] - self.price) / self.risk_per_share
