from pathlib import Path
from typing import Literal, Optional
from functools import lru_cache

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BacktestSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="BACKTEST_")

    initial_capital: float = Field(default=100_000.0, alias="BACKTEST_INITIAL_CAPITAL")
    risk_per_trade: float = Field(default=0.01, alias="BACKTEST_RISK_PER_TRADE")
    max_open_positions: int = Field(default=10, alias="BACKTEST_MAX_OPEN_POSITIONS")
    max_per_sector: Optional[int] = Field(default=None, alias="BACKTEST_MAX_PER_SECTOR")
    entry_threshold: float = Field(default=65.0, alias="BACKTEST_ENTRY_THRESHOLD")
    min_rr_ratio: float = Field(default=2.0, alias="BACKTEST_MIN_RR_RATIO")
    require_volume_confirm: bool = False
    require_mtf_align: bool = False
    adjust_for_regime: bool = True
    tp_ratios: tuple[float, float, float] = (1.5, 2.5, 4.0)
    tp_sizes: tuple[float, float, float] = (0.33, 0.33, 0.34)
    max_holding_days: int = Field(default=20, alias="BACKTEST_MAX_HOLDING_DAYS")
    use_trailing_stop: bool = Field(default=False, alias="BACKTEST_USE_TRAILING_STOP")
    trailing_stop_activation: float = 1.0
    trailing_stop_distance: float = 0.15
    slippage_percent: float = Field(default=0.1, alias="BACKTEST_SLIPPAGE_PERCENT")
    commission_per_share: float = Field(default=0.005, alias="BACKTEST_COMMISSION_PER_SHARE")
    gap_handling: Literal["MARKET", "SKIP", "LIMIT"] = Field(default="MARKET", alias="BACKTEST_GAP_HANDLING")


class TrainerSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="TRAINER_")

    learning_rate: float = Field(default=0.01, alias="TRAINER_LEARNING_RATE")
    iterations: int = Field(default=2000, alias="TRAINER_ITERATIONS")
    regularization: float = Field(default=0.01, alias="TRAINER_REGULARIZATION")
    momentum: float = 0.9
    min_examples: int = Field(default=100, alias="TRAINER_MIN_EXAMPLES")
    seed: Optional[int] = Field(default=None, alias="TRAINER_SEED")
    signal_type: str = "POLITICIAN"
    signal_cutoff_days: int = 60
    label_threshold_r: float = 0.3
    max_observation_day: int = 30
    horizon_days: int = 45


class EvaluatorSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="EXIT_")

    threshold: float = Field(default=0.5, alias="EXIT_THRESHOLD")
    max_holding_days: int = Field(default=25, alias="EXIT_MAX_HOLDING_DAYS")
    profit_protection_r: float = Field(default=2.0, alias="EXIT_PROFIT_PROTECTION_R")
    benchmark_ticker: str = Field(default="SPY", alias="BENCHMARK_TICKER")


class DataSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="")

    fmp_api_key: Optional[str] = Field(default=None, alias="FMP_API_KEY")
    fmp_base_url: str = Field(default="https://financialmodelingprep.com/stable", alias="FMP_BASE_URL")
    rate_limit_calls: int = Field(default=250, alias="FMP_RATE_LIMIT_CALLS")
    rate_limit_window: float = Field(default=60.0, alias="FMP_RATE_LIMIT_WINDOW")
    throttle_delay: float = 5.0
    max_throttle_retries: int = 5
    max_retries: int = 3
    timeout: float = 30.0


class DatabaseSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="")

    db_dir: Path = Field(default=Path("data"), alias="DB_DIR")

    @computed_field
    @property
    def sqlite_path(self) -> Path:
        return self.db_dir / "swingtrader.db"

    @computed_field
    @property
    def model_path(self) -> Path:
        return self.db_dir / "models" / "exit_model.json"

    @computed_field
    @property
    def log_dir(self) -> Path:
        return self.db_dir / "logs"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    backtest: BacktestSettings = Field(default_factory=BacktestSettings)
    trainer: TrainerSettings = Field(default_factory=TrainerSettings)
    evaluator: EvaluatorSettings = Field(default_factory=EvaluatorSettings)
    data: DataSettings = Field(default_factory=DataSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)


@lru_cache
def get_settings() -> Settings:
    return Settings()
