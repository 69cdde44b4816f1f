"""
Exit Evaluator - Scores open positions with the trained exit model.
"""
import time
from datetime import date, timedelta
from typing import Callable, Optional, Sequence

import numpy as np
from loguru import logger

from swingtrader.data.sources.base import PriceProvider
from swingtrader.features import FEATURE_NAMES, ExitFeatureVector, atr, extract_exit_features
from swingtrader.models import (
    ExitEvaluation,
    FactorWeight,
    FeatureExplanation,
    ModelCoefficients,
    ModelInfo,
    OpenPosition,
)
from swingtrader.training.logistic import normalize, sigmoid
from swingtrader.utils.exceptions import DataUnavailableError, FeatureSchemaError, SwingTraderError

SIGNIFICANCE_CUTOFF = 0.05
EXPLAIN_CUTOFF = 0.1
MIN_HISTORY_BARS = 20
HISTORY_PADDING_DAYS = 60
ATR_STOP_MULTIPLE = 1.5

FEATURE_DESCRIPTIONS: dict[str, Callable[[float], str]] = {
    "holding_days": lambda v: f"Position held for {v:.0f} trading days",
    "unrealized_r": lambda v: f"Currently at {v:.2f}R {'profit' if v >= 0 else 'loss'}",
    "unrealized_pct": lambda v: f"{v:+.1f}% return",
    "return_from_high": lambda v: f"{v:.1f}% from highest point",
    "return_last_5d": lambda v: f"{v:+.1f}% over last 5 days",
    "return_last_3d": lambda v: f"{v:+.1f}% over last 3 days",
    "return_last_1d": lambda v: f"{v:+.1f}% today",
    "rsi_14": lambda v: f"RSI(14) at {v:.0f} ({'overbought' if v > 70 else 'oversold' if v < 30 else 'neutral'})",
    "price_vs_20sma": lambda v: f"{v:+.1f}% vs 20-day SMA",
    "price_vs_50sma": lambda v: f"{v:+.1f}% vs 50-day SMA",
    "spy_return_5d": lambda v: f"Benchmark {v:+.1f}% over 5 days",
    "atr_percent": lambda v: f"ATR is {v:.1f}% of price (volatility)",
}


def confidence_for(probability: float) -> str:
    if probability > 0.70:
        return "very_high"
    if probability > 0.60:
        return "high"
    if probability > 0.50:
        return "medium"
    return "low"


class ExitEvaluator:
    """
    Online hold/exit recommendations for live positions.

    The model artifact must carry exactly the extractor's feature names;
    anything else is rejected at construction. The decision threshold is
    lowered to 0.40 once a position is at 2R or better and to 0.30 once it
    has been held ``max_holding_days``.
    """

    PROFIT_PROTECTION_THRESHOLD = 0.40
    MAX_HOLDING_THRESHOLD = 0.30

    def __init__(
        self,
        model: ModelCoefficients,
        price_provider: Optional[PriceProvider] = None,
        benchmark_ticker: Optional[str] = "SPY",
        max_holding_days: int = 25,
        profit_protection_r: float = 2.0,
        batch_delay: float = 0.2,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize evaluator.

        Args:
            model: Trained exit model artifact
            price_provider: Source of daily bars, needed by evaluate()
            benchmark_ticker: Market context ticker, None to skip it
            max_holding_days: Holding period that forces an exit bias
            profit_protection_r: Unrealized R that lowers the threshold
            batch_delay: Pause between positions in evaluate_many()
            sleep: Sleep function, injectable for tests

        Raises:
            FeatureSchemaError: Model features differ from FEATURE_NAMES
        """
        self._validate_schema(model)
        self.model = model
        self.price_provider = price_provider
        self.benchmark_ticker = benchmark_ticker
        self.max_holding_days = max_holding_days
        self.profit_protection_r = profit_protection_r
        self.batch_delay = batch_delay
        self._sleep = sleep

        self._weights = np.array([model.weights[n] for n in FEATURE_NAMES])
        self._means = np.array([model.feature_means[n] for n in FEATURE_NAMES])
        self._stds = np.array([model.feature_stds[n] for n in FEATURE_NAMES])

    @staticmethod
    def _validate_schema(model: ModelCoefficients) -> None:
        expected = set(FEATURE_NAMES)
        for field in (model.weights, model.feature_means, model.feature_stds):
            missing = expected - set(field)
            unexpected = set(field) - expected
            if missing or unexpected:
                raise FeatureSchemaError(missing, unexpected)

    def contributions(self, features: ExitFeatureVector) -> dict[str, float]:
        """Per-feature weight times z-score, in schema order."""
        z = normalize(features.to_array(), self._means, self._stds)
        return dict(zip(FEATURE_NAMES, map(float, self._weights * z)))

    def predict_proba(self, features: ExitFeatureVector) -> float:
        z = normalize(features.to_array(), self._means, self._stds)
        return float(sigmoid(float(z @ self._weights) + self.model.intercept))

    def predict_many(self, vectors: Sequence[ExitFeatureVector]) -> np.ndarray:
        if not vectors:
            return np.empty(0)
        X = np.vstack([v.to_array() for v in vectors])
        return sigmoid(normalize(X, self._means, self._stds) @ self._weights + self.model.intercept)

    def adjusted_threshold(self, features: ExitFeatureVector, threshold: float) -> float:
        adjusted = threshold
        if features.unrealized_r >= self.profit_protection_r:
            adjusted = min(adjusted, self.PROFIT_PROTECTION_THRESHOLD)
        if features.holding_days >= self.max_holding_days:
            adjusted = self.MAX_HOLDING_THRESHOLD
        return adjusted

    def _reasons(
        self,
        features: ExitFeatureVector,
        probability: float,
        should_exit: bool,
    ) -> list[str]:
        verdict = "above threshold" if should_exit else "below threshold - HOLD"
        reasons = [f"Exit probability: {probability * 100:.1f}% ({verdict})"]

        ranked = sorted(self.contributions(features).items(), key=lambda kv: abs(kv[1]), reverse=True)
        values = features.as_dict()
        for name, contribution in ranked[:3]:
            if abs(contribution) > SIGNIFICANCE_CUTOFF:
                direction = "signals EXIT" if contribution > 0 else "signals HOLD"
                reasons.append(f"{name.replace('_', ' ')}: {values[name]:.2f} ({direction})")

        if features.holding_days >= 20:
            reasons.append(f"Holding {features.holding_days:.0f} days - alpha typically decays")
        if features.unrealized_r >= 2:
            reasons.append(f"At {features.unrealized_r:.1f}R profit - consider locking gains")
        if features.return_from_high < -5:
            reasons.append(f"Down {abs(features.return_from_high):.1f}% from high - momentum fading")
        if features.rsi_14 > 70:
            reasons.append("RSI overbought (>70) - potential reversal")
        if features.return_last_5d < 0 and features.price_vs_20sma < 0:
            reasons.append("Short-term momentum lost - below 20-day SMA and down over 5 days")
        return reasons

    def evaluate_features(
        self,
        features: ExitFeatureVector,
        threshold: float = 0.5,
        ticker: Optional[str] = None,
    ) -> ExitEvaluation:
        """
        Recommend hold or exit for an already extracted feature vector.

        Args:
            features: Current position state
            threshold: Base exit threshold before position-state adjustments
            ticker: Optional label carried into the result

        Returns:
            ExitEvaluation with probability, confidence, decision and reasons
        """
        probability = self.predict_proba(features)
        effective = self.adjusted_threshold(features, threshold)
        should_exit = probability >= effective

        reasons = self._reasons(features, probability, should_exit)
        if features.holding_days >= self.max_holding_days and not should_exit:
            reasons.append(f"WARNING: Position held {features.holding_days:.0f} days - consider exiting")

        return ExitEvaluation(
            ticker=ticker,
            exit_probability=probability,
            confidence=confidence_for(probability),
            should_exit=should_exit,
            threshold=effective,
            reasons=reasons,
            features=features.as_dict(),
        )

    def evaluate(
        self,
        position: OpenPosition,
        threshold: float = 0.5,
        as_of: Optional[date] = None,
    ) -> ExitEvaluation:
        """
        Fetch history for a live position and evaluate it.

        Raises:
            DataUnavailableError: Fewer than 20 bars or no bar on/after entry
        """
        if self.price_provider is None:
            raise DataUnavailableError(position.ticker, "no price provider configured")

        as_of = as_of or date.today()
        start = position.entry_date - timedelta(days=HISTORY_PADDING_DAYS)
        prices = [b for b in self.price_provider.get(position.ticker, start, as_of) if b.date <= as_of]
        if len(prices) < MIN_HISTORY_BARS:
            raise DataUnavailableError(position.ticker, f"only {len(prices)} bars of history")

        entry_idx = next((i for i, b in enumerate(prices) if b.date >= position.entry_date), None)
        if entry_idx is None:
            raise DataUnavailableError(position.ticker, f"no bar on or after entry {position.entry_date}")

        stop_loss = position.stop_loss
        if not stop_loss:
            history = prices[:entry_idx + 1]
            atr_value = atr(history) or (history[-1].high - history[-1].low)
            stop_loss = position.entry_price - ATR_STOP_MULTIPLE * atr_value

        benchmark = None
        if self.benchmark_ticker:
            benchmark = self.price_provider.get(self.benchmark_ticker, start, as_of) or None
            if benchmark is None:
                logger.debug(f"No {self.benchmark_ticker} data, evaluating without market context")

        features = extract_exit_features(
            prices,
            position.entry_price,
            stop_loss,
            len(prices) - 1,
            entry_idx,
            benchmark,
        )
        evaluation = self.evaluate_features(features, threshold, ticker=position.ticker)
        logger.info(
            f"{position.ticker}: exit probability {evaluation.exit_probability:.1%} "
            f"({'EXIT' if evaluation.should_exit else 'HOLD'})"
        )
        return evaluation

    def evaluate_many(
        self,
        positions: Sequence[OpenPosition],
        threshold: float = 0.5,
        as_of: Optional[date] = None,
    ) -> dict[str, ExitEvaluation]:
        """Evaluate positions one by one; failures are logged and left out."""
        results: dict[str, ExitEvaluation] = {}
        for i, position in enumerate(positions):
            if i > 0 and self.batch_delay > 0:
                self._sleep(self.batch_delay)
            try:
                results[position.ticker] = self.evaluate(position, threshold, as_of)
            except SwingTraderError as e:
                logger.warning(f"Could not evaluate {position.ticker}: {e}")
        return results

    def model_info(self, top_n: int = 5) -> ModelInfo:
        ranked = sorted(self.model.weights.items(), key=lambda kv: abs(kv[1]), reverse=True)
        return ModelInfo(
            version=self.model.version,
            trained_at=self.model.trained_at,
            training_samples=self.model.training_samples,
            validation_accuracy=self.model.validation_accuracy,
            auc=self.model.metrics.auc,
            top_exit_factors=[FactorWeight(feature=n, weight=w) for n, w in ranked if w > 0][:top_n],
            top_hold_factors=[FactorWeight(feature=n, weight=abs(w)) for n, w in ranked if w < 0][:top_n],
        )

    def explain(self, features: ExitFeatureVector) -> list[FeatureExplanation]:
        """Describe each feature and whether it pushes toward exit or hold."""
        contributions = self.contributions(features)
        explanations = []
        for name, value in features.as_dict().items():
            contribution = contributions[name]
            direction = "neutral"
            if abs(contribution) > EXPLAIN_CUTOFF:
                direction = "exit" if contribution > 0 else "hold"
            describe = FEATURE_DESCRIPTIONS.get(name)
            explanations.append(FeatureExplanation(
                name=name,
                value=value,
                contribution=contribution,
                direction=direction,
                description=describe(value) if describe else f"{name}: {value:.2f}",
            ))
        return sorted(explanations, key=lambda e: abs(self.model.weights[e.name]), reverse=True)
