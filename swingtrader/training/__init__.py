from swingtrader.training.labeling import DatasetBuilder, label_signal
from swingtrader.training.logistic import (
    evaluate_classifier,
    fit_logistic_regression,
    log_loss,
    roc_auc,
    sigmoid,
)
from swingtrader.training.trainer import ExitModelTrainer, label_distribution_by_holding_days

__all__ = [
    "DatasetBuilder",
    "label_signal",
    "evaluate_classifier",
    "fit_logistic_regression",
    "log_loss",
    "roc_auc",
    "sigmoid",
    "ExitModelTrainer",
    "label_distribution_by_holding_days",
]
