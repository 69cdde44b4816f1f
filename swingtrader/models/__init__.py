from swingtrader.models.market import PriceBar, ScoreResult
from swingtrader.models.trade import (
    TradeStatus,
    ExitReason,
    PartialExit,
    ExitDecision,
    BacktestTrade,
    calculate_r_multiple,
)
from swingtrader.models.backtest import (
    GapHandling,
    OptimizationMetric,
    BacktestConfig,
    EquityPoint,
    RBucket,
    PerformanceMetrics,
    CalibrationBucket,
    GroupPerformance,
    MonthlyReturn,
    BacktestResult,
    WalkForwardWindow,
    ParameterSet,
    WalkForwardWindowResult,
    WalkForwardResult,
)
from swingtrader.models.exit_model import (
    MODEL_VERSION,
    ModelMetrics,
    ModelCoefficients,
    TrainingExample,
    OpenPosition,
    FeatureExplanation,
    ExitEvaluation,
    FactorWeight,
    ModelInfo,
)

__all__ = [
    "PriceBar",
    "ScoreResult",
    "TradeStatus",
    "ExitReason",
    "PartialExit",
    "ExitDecision",
    "BacktestTrade",
    "calculate_r_multiple",
    "GapHandling",
    "OptimizationMetric",
    "BacktestConfig",
    "EquityPoint",
    "RBucket",
    "PerformanceMetrics",
    "CalibrationBucket",
    "GroupPerformance",
    "MonthlyReturn",
    "BacktestResult",
    "WalkForwardWindow",
    "ParameterSet",
    "WalkForwardWindowResult",
    "WalkForwardResult",
    "MODEL_VERSION",
    "ModelMetrics",
    "ModelCoefficients",
    "TrainingExample",
    "OpenPosition",
    "FeatureExplanation",
    "ExitEvaluation",
    "FactorWeight",
    "ModelInfo",
]
