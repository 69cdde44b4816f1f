from swingtrader.features.extractor import (
    FEATURE_NAMES,
    FEATURE_SCHEMA,
    ExitFeatureVector,
    extract_exit_features,
    feature_matrix,
)
from swingtrader.features.indicators import atr, rsi, sma

__all__ = [
    "FEATURE_NAMES",
    "FEATURE_SCHEMA",
    "ExitFeatureVector",
    "extract_exit_features",
    "feature_matrix",
    "atr",
    "rsi",
    "sma",
]
