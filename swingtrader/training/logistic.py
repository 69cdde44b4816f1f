"""
Logistic regression fitted by full-batch gradient descent.

Momentum on every parameter, L2 on the weights only, a cosine-annealed
learning rate and inverse class-frequency sample weights.
"""
import math
from dataclasses import dataclass, field
from typing import Optional, Union

import numpy as np
from loguru import logger

from swingtrader.models import ModelMetrics

SIGMOID_CLIP = 500.0
LOG_LOSS_EPS = 1e-10
MIN_STD = 1e-12

ArrayLike = Union[float, np.ndarray]


def sigmoid(z: ArrayLike) -> ArrayLike:
    """Overflow-safe logistic function: 0 below -500, 1 above 500."""
    values = np.asarray(z, dtype=float)
    clipped = np.clip(values, -SIGMOID_CLIP, SIGMOID_CLIP)
    result = 1.0 / (1.0 + np.exp(-clipped))
    result = np.where(values < -SIGMOID_CLIP, 0.0, np.where(values > SIGMOID_CLIP, 1.0, result))
    if result.ndim == 0:
        return float(result)
    return result


def log_loss(probabilities: np.ndarray, labels: np.ndarray) -> float:
    """Mean binary cross-entropy with probabilities clamped away from 0 and 1."""
    p = np.clip(np.asarray(probabilities, dtype=float), LOG_LOSS_EPS, 1 - LOG_LOSS_EPS)
    y = np.asarray(labels, dtype=float)
    if p.size == 0:
        return 0.0
    return float(-np.mean(y * np.log(p) + (1 - y) * np.log(1 - p)))


def feature_statistics(X: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Column means and population standard deviations, zero spread mapped to 1."""
    means = X.mean(axis=0)
    stds = X.std(axis=0)
    stds = np.where(stds <= MIN_STD, 1.0, stds)
    return means, stds


def normalize(X: np.ndarray, means: np.ndarray, stds: np.ndarray) -> np.ndarray:
    safe = np.where(stds <= MIN_STD, 1.0, stds)
    return (X - means) / safe


def class_weights(labels: np.ndarray) -> tuple[float, float]:
    """Weights (hold, exit) of n / (2 * class_count); an absent class gets 0."""
    n = labels.size
    positives = int(labels.sum())
    negatives = n - positives
    hold = n / (2 * negatives) if negatives else 0.0
    exit_ = n / (2 * positives) if positives else 0.0
    return hold, exit_


@dataclass
class LogisticFit:
    intercept: float
    weights: np.ndarray
    means: np.ndarray
    stds: np.ndarray
    loss_history: list[tuple[int, float]] = field(default_factory=list)

    def predict_proba(self, X: np.ndarray) -> np.ndarray:
        return sigmoid(normalize(X, self.means, self.stds) @ self.weights + self.intercept)


def fit_logistic_regression(
    X: np.ndarray,
    y: np.ndarray,
    learning_rate: float = 0.01,
    iterations: int = 2000,
    regularization: float = 0.01,
    momentum: float = 0.9,
    seed: Optional[int] = None,
    log_every: int = 200,
) -> LogisticFit:
    """
    Fit a class-weighted, L2-regularized logistic regression.

    Args:
        X: Raw (n, d) feature matrix, z-scored internally
        y: Binary labels, 1 = EXIT
        learning_rate: Initial rate, annealed toward 0 by a cosine schedule
        iterations: Number of full-batch updates
        regularization: L2 strength on the weights
        momentum: Velocity decay for intercept and weights
        seed: Seed for the U(-0.1, 0.1) weight initialization
        log_every: Iterations between loss log lines

    Returns:
        LogisticFit with parameters and normalization statistics
    """
    X = np.asarray(X, dtype=float)
    y = np.asarray(y, dtype=float)
    n, d = X.shape

    means, stds = feature_statistics(X)
    Z = normalize(X, means, stds)

    hold_weight, exit_weight = class_weights(y)
    sample_weights = np.where(y == 1, exit_weight, hold_weight)

    rng = np.random.default_rng(seed)
    weights = rng.uniform(-0.1, 0.1, size=d)
    intercept = 0.0
    weight_velocity = np.zeros(d)
    intercept_velocity = 0.0
    loss_history = []

    for iteration in range(iterations):
        lr = learning_rate * 0.5 * (1 + math.cos(math.pi * iteration / iterations))

        predictions = sigmoid(Z @ weights + intercept)
        errors = (predictions - y) * sample_weights

        intercept_gradient = errors.sum() / n
        weight_gradient = Z.T @ errors / n + regularization * weights

        intercept_velocity = momentum * intercept_velocity + lr * intercept_gradient
        intercept -= intercept_velocity
        weight_velocity = momentum * weight_velocity + lr * weight_gradient
        weights = weights - weight_velocity

        if log_every and iteration % log_every == 0:
            loss = log_loss(sigmoid(Z @ weights + intercept), y)
            loss_history.append((iteration, loss))
            logger.debug(f"Iteration {iteration}: loss={loss:.4f}, lr={lr:.5f}")

    return LogisticFit(
        intercept=float(intercept),
        weights=weights,
        means=means,
        stds=stds,
        loss_history=loss_history,
    )


def roc_auc(probabilities: np.ndarray, labels: np.ndarray) -> float:
    """Trapezoidal ROC area from a sweep over probabilities in descending order.

    Returns 0.5 when only one class is present.
    """
    p = np.asarray(probabilities, dtype=float)
    y = np.asarray(labels, dtype=int)
    positives = int(y.sum())
    negatives = y.size - positives
    if positives == 0 or negatives == 0:
        return 0.5

    ordered = y[np.argsort(-p, kind="stable")]
    tpr = np.concatenate([[0.0], np.cumsum(ordered) / positives])
    fpr = np.concatenate([[0.0], np.cumsum(1 - ordered) / negatives])
    return float(np.sum((fpr[1:] - fpr[:-1]) * (tpr[1:] + tpr[:-1]) / 2))


def evaluate_classifier(
    probabilities: np.ndarray,
    labels: np.ndarray,
    threshold: float = 0.5,
) -> ModelMetrics:
    p = np.asarray(probabilities, dtype=float)
    y = np.asarray(labels, dtype=int)
    predicted = (p >= threshold).astype(int)

    tp = int(np.sum((predicted == 1) & (y == 1)))
    fp = int(np.sum((predicted == 1) & (y == 0)))
    tn = int(np.sum((predicted == 0) & (y == 0)))
    fn = int(np.sum((predicted == 0) & (y == 1)))

    precision = tp / (tp + fp) if tp > 0 else 0.0
    recall = tp / (tp + fn) if tp > 0 else 0.0
    f1 = 2 * precision * recall / (precision + recall) if precision + recall > 0 else 0.0

    return ModelMetrics(
        accuracy=(tp + tn) / y.size if y.size else 0.0,
        precision=precision,
        recall=recall,
        f1=f1,
        auc=roc_auc(p, y),
    )
