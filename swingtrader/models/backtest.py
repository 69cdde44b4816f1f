"""Configuration and result models for backtest and walk-forward runs."""
from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from swingtrader.models.trade import BacktestTrade

GapHandling = Literal["MARKET", "SKIP", "LIMIT"]
OptimizationMetric = Literal["sharpe", "sortino", "profit_factor", "expectancy"]


class BacktestConfig(BaseModel):
    """Immutable parameters of a single simulator run."""

    model_config = {"from_attributes": True, "frozen": True}

    name: str = "backtest"
    universe: tuple[str, ...]
    start_date: date
    end_date: date

    initial_capital: float = Field(default=100_000.0, gt=0)
    risk_per_trade: float = Field(default=0.01, gt=0, lt=1)
    max_open_positions: int = Field(default=10, ge=1)
    max_per_sector: Optional[int] = Field(default=None, ge=1)

    entry_threshold: float = Field(default=65.0, ge=0, le=100)
    min_rr_ratio: float = Field(default=2.0, ge=0)
    require_volume_confirm: bool = False
    require_mtf_align: bool = False
    adjust_for_regime: bool = True

    tp_ratios: tuple[float, float, float] = (1.5, 2.5, 4.0)
    tp_sizes: tuple[float, float, float] = (0.33, 0.33, 0.34)
    max_holding_days: Optional[int] = Field(default=20, ge=1)

    use_trailing_stop: bool = False
    trailing_stop_activation: float = Field(default=1.0, ge=0)
    trailing_stop_distance: float = Field(default=0.15, gt=0, lt=1)

    slippage_percent: float = Field(default=0.1, ge=0)
    commission_per_share: float = Field(default=0.005, ge=0)
    gap_handling: GapHandling = "MARKET"

    @field_validator("universe")
    @classmethod
    def validate_universe(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        if not v:
            raise ValueError("universe must contain at least one ticker")
        return tuple(t.strip().upper() for t in v)

    @field_validator("tp_ratios")
    @classmethod
    def validate_tp_ratios(cls, v: tuple[float, float, float]) -> tuple[float, float, float]:
        if not (0 < v[0] < v[1] < v[2]):
            raise ValueError(f"tp_ratios must be positive and strictly ascending, got {v}")
        return v

    @field_validator("tp_sizes")
    @classmethod
    def validate_tp_sizes(cls, v: tuple[float, float, float]) -> tuple[float, float, float]:
        if any(s <= 0 or s > 1 for s in v):
            raise ValueError(f"tp_sizes must be in (0, 1], got {v}")
        if sum(v) > 1.0 + 1e-9:
            raise ValueError(f"tp_sizes sum to {sum(v):.3f}, more than the whole position")
        return v

    @model_validator(mode="after")
    def validate_dates(self) -> "BacktestConfig":
        if self.start_date > self.end_date:
            raise ValueError(f"start_date {self.start_date} is after end_date {self.end_date}")
        return self


class EquityPoint(BaseModel):
    model_config = {"from_attributes": True, "frozen": True}

    date: date
    equity: float
    cash: float
    drawdown: float = Field(ge=0)
    drawdown_percent: float = Field(ge=0)
    open_positions: int
    daily_pnl: float
    daily_return: float


class RBucket(BaseModel):
    model_config = {"from_attributes": True, "frozen": True}

    bucket: str
    count: int
    percent: float


class PerformanceMetrics(BaseModel):
    """Aggregate statistics over a closed-trade ledger.

    Rates and percentages are expressed in percent (0-100).
    """

    model_config = {"from_attributes": True, "frozen": True}

    total_trades: int = 0
    winners: int = 0
    losers: int = 0
    win_rate: float = 0.0

    total_pnl: float = 0.0
    total_pnl_percent: float = 0.0
    avg_pnl_per_trade: float = 0.0
    avg_win: float = 0.0
    avg_loss: float = 0.0

    avg_r: float = 0.0
    avg_win_r: float = 0.0
    avg_loss_r: float = 0.0
    expectancy: float = 0.0
    profit_factor: Optional[float] = None

    max_drawdown: float = 0.0
    max_drawdown_percent: float = 0.0
    max_drawdown_duration: int = 0
    sharpe_ratio: float = 0.0
    sortino_ratio: float = 0.0
    calmar_ratio: float = 0.0

    avg_holding_days: float = 0.0
    max_consecutive_wins: int = 0
    max_consecutive_losses: int = 0
    r_distribution: list[RBucket] = []


class CalibrationBucket(BaseModel):
    model_config = {"from_attributes": True, "frozen": True}

    bucket: str
    predicted_avg: float
    actual_win_rate: float
    count: int


class GroupPerformance(BaseModel):
    """Per-group slice used by the attribution breakdowns."""

    model_config = {"from_attributes": True, "frozen": True}

    trades: int = 0
    win_rate: float = 0.0
    avg_r: float = 0.0
    total_pnl: float = 0.0
    expectancy: float = 0.0
    profit_factor: Optional[float] = None


class MonthlyReturn(BaseModel):
    model_config = {"from_attributes": True, "frozen": True}

    month: str
    start_equity: float
    end_equity: float
    return_percent: float


class BacktestResult(BaseModel):
    """Finished, read-only output of a simulator run."""

    model_config = {"from_attributes": True, "frozen": True}

    config: BacktestConfig
    status: Literal["COMPLETED", "FAILED"] = "COMPLETED"
    error_message: Optional[str] = None
    started_at: datetime
    completed_at: datetime

    metrics: PerformanceMetrics = PerformanceMetrics()
    equity_curve: tuple[EquityPoint, ...] = ()
    trades: tuple[BacktestTrade, ...] = ()

    performance_by_regime: dict[str, GroupPerformance] = {}
    performance_by_sector: dict[str, GroupPerformance] = {}
    performance_by_month: dict[str, GroupPerformance] = {}
    performance_by_year: dict[str, GroupPerformance] = {}
    calibration_by_bucket: list[CalibrationBucket] = []
    monthly_returns: list[MonthlyReturn] = []

    @property
    def final_equity(self) -> float:
        if not self.equity_curve:
            return self.config.initial_capital
        return self.equity_curve[-1].equity


class WalkForwardWindow(BaseModel):
    model_config = {"from_attributes": True, "frozen": True}

    index: int
    train_start: date
    train_end: date
    test_start: date
    test_end: date


class ParameterSet(BaseModel):
    model_config = {"from_attributes": True, "frozen": True}

    entry_threshold: float
    min_rr_ratio: float
    max_holding_days: int


class WalkForwardWindowResult(BaseModel):
    model_config = {"from_attributes": True, "frozen": True}

    window: WalkForwardWindow
    best_parameters: ParameterSet
    train_score: float
    train_metrics: PerformanceMetrics
    test_result: BacktestResult


class WalkForwardResult(BaseModel):
    model_config = {"from_attributes": True, "frozen": True}

    metric: OptimizationMetric
    windows: list[WalkForwardWindowResult] = []
    robust_parameters: Optional[ParameterSet] = None
    out_of_sample_metrics: PerformanceMetrics = PerformanceMetrics()
