"""
Exit Model Trainer - Fits the hold/exit classifier and packages the artifact.
"""
from collections import defaultdict
from datetime import datetime, timezone
from typing import Optional, Sequence

import numpy as np
from loguru import logger

from swingtrader.features import FEATURE_NAMES
from swingtrader.models import MODEL_VERSION, ModelCoefficients, TrainingExample
from swingtrader.training.logistic import evaluate_classifier, fit_logistic_regression
from swingtrader.utils.exceptions import FeatureSchemaError, InsufficientTrainingDataError
from swingtrader.utils.logging import log_event


def examples_to_arrays(examples: Sequence[TrainingExample]) -> tuple[np.ndarray, np.ndarray]:
    """Design matrix in FEATURE_NAMES order and the label vector."""
    X = np.empty((len(examples), len(FEATURE_NAMES)))
    for i, example in enumerate(examples):
        missing = set(FEATURE_NAMES) - set(example.features)
        unexpected = set(example.features) - set(FEATURE_NAMES)
        if missing or unexpected:
            raise FeatureSchemaError(missing, unexpected)
        X[i] = [example.features[name] for name in FEATURE_NAMES]
    y = np.array([e.label for e in examples], dtype=float)
    return X, y


def label_distribution_by_holding_days(
    examples: Sequence[TrainingExample],
    bucket_size: int = 5,
) -> dict[int, dict[str, int]]:
    """EXIT/HOLD counts per holding-day bucket (0-4, 5-9, ...)."""
    buckets: dict[int, dict[str, int]] = defaultdict(lambda: {"exit": 0, "hold": 0})
    for example in examples:
        bucket = example.holding_days // bucket_size * bucket_size
        buckets[bucket]["exit" if example.label == 1 else "hold"] += 1
    return dict(sorted(buckets.items()))


class ExitModelTrainer:
    """
    Trains the logistic-regression exit model.

    Refuses to train on fewer than MIN_EXAMPLES examples. Metrics are
    measured on the training set itself through the same normalization
    the evaluator applies, so reloading the artifact reproduces them.
    """

    MIN_EXAMPLES = 100

    def __init__(
        self,
        learning_rate: float = 0.01,
        iterations: int = 2000,
        regularization: float = 0.01,
        momentum: float = 0.9,
        min_examples: Optional[int] = None,
        seed: Optional[int] = None,
    ):
        self.learning_rate = learning_rate
        self.iterations = iterations
        self.regularization = regularization
        self.momentum = momentum
        self.min_examples = self.MIN_EXAMPLES if min_examples is None else min_examples
        self.seed = seed

    def train(self, examples: Sequence[TrainingExample]) -> ModelCoefficients:
        """
        Fit the model on labeled examples.

        Args:
            examples: Labeled exit-timing examples

        Returns:
            Immutable ModelCoefficients artifact

        Raises:
            InsufficientTrainingDataError: Fewer than ``min_examples`` examples
        """
        if len(examples) < self.min_examples:
            raise InsufficientTrainingDataError(len(examples), self.min_examples)

        X, y = examples_to_arrays(examples)
        exits = int(y.sum())
        logger.info(
            f"Training exit model on {len(examples)} examples "
            f"({exits} EXIT / {len(examples) - exits} HOLD)"
        )
        if exits == 0 or exits == len(examples):
            logger.warning("Training set contains a single class, model will be degenerate")

        fit = fit_logistic_regression(
            X,
            y,
            learning_rate=self.learning_rate,
            iterations=self.iterations,
            regularization=self.regularization,
            momentum=self.momentum,
            seed=self.seed,
        )
        metrics = evaluate_classifier(fit.predict_proba(X), y)

        log_event(
            "model_trained",
            f"Exit model trained: accuracy={metrics.accuracy:.1%}, precision={metrics.precision:.1%}, "
            f"recall={metrics.recall:.1%}, f1={metrics.f1:.1%}, auc={metrics.auc:.3f}",
            samples=len(examples),
            exit_share=exits / len(examples),
            **metrics.model_dump(),
        )
        top = sorted(zip(FEATURE_NAMES, fit.weights), key=lambda kv: abs(kv[1]), reverse=True)[:5]
        logger.debug("Top weights: " + ", ".join(f"{name}={w:+.3f}" for name, w in top))

        return ModelCoefficients(
            version=MODEL_VERSION,
            trained_at=datetime.now(timezone.utc),
            training_samples=len(examples),
            validation_accuracy=metrics.accuracy,
            intercept=fit.intercept,
            weights=dict(zip(FEATURE_NAMES, map(float, fit.weights))),
            feature_means=dict(zip(FEATURE_NAMES, map(float, fit.means))),
            feature_stds=dict(zip(FEATURE_NAMES, map(float, fit.stds))),
            metrics=metrics,
        )
