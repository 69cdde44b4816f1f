from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

Confidence = Literal["low", "medium", "high", "very_high"]

MODEL_VERSION = "swing-exit-v1.0"


class ModelMetrics(BaseModel):
    model_config = {"from_attributes": True, "frozen": True}

    accuracy: float = Field(ge=0.0, le=1.0)
    precision: float = Field(ge=0.0, le=1.0)
    recall: float = Field(ge=0.0, le=1.0)
    f1: float = Field(ge=0.0, le=1.0)
    auc: float = Field(ge=0.0, le=1.0)


class ModelCoefficients(BaseModel):
    """Persisted logistic-regression exit model.

    Weights and normalization statistics are keyed by feature name.
    ``validation_accuracy`` and ``metrics`` are measured on the training
    examples themselves; there is no held-out split.
    """

    model_config = {"from_attributes": True, "frozen": True}

    version: str = MODEL_VERSION
    trained_at: datetime
    training_samples: int = Field(ge=0)
    validation_accuracy: float = Field(ge=0.0, le=1.0)
    intercept: float
    weights: dict[str, float]
    feature_means: dict[str, float]
    feature_stds: dict[str, float]
    metrics: ModelMetrics


class TrainingExample(BaseModel):
    model_config = {"from_attributes": True, "frozen": True}

    ticker: str
    signal_date: date
    observation_date: date
    holding_days: int = Field(ge=1)
    features: dict[str, float]
    label: int = Field(ge=0, le=1)
    current_r: float
    max_future_r: float
    final_r: float


class OpenPosition(BaseModel):
    """Live position state handed to the exit evaluator."""

    model_config = {"from_attributes": True, "frozen": True}

    ticker: str
    entry_date: date
    entry_price: float = Field(gt=0)
    stop_loss: Optional[float] = None


class FeatureExplanation(BaseModel):
    model_config = {"from_attributes": True, "frozen": True}

    name: str
    value: float
    contribution: float
    direction: Literal["exit", "hold", "neutral"]
    description: str


class ExitEvaluation(BaseModel):
    model_config = {"from_attributes": True, "frozen": True}

    ticker: Optional[str] = None
    exit_probability: float = Field(ge=0.0, le=1.0)
    confidence: Confidence
    should_exit: bool
    threshold: float
    reasons: list[str] = []
    features: dict[str, float] = {}


class FactorWeight(BaseModel):
    model_config = {"from_attributes": True, "frozen": True}

    feature: str
    weight: float


class ModelInfo(BaseModel):
    model_config = {"from_attributes": True, "frozen": True}

    version: str
    trained_at: datetime
    training_samples: int
    validation_accuracy: float
    auc: float
    top_exit_factors: list[FactorWeight] = []
    top_hold_factors: list[FactorWeight] = []
