from pathlib import Path

from swingtrader.utils.exceptions import (
    ConfigError,
    DataFetchError,
    FeatureSchemaError,
    InsufficientTrainingDataError,
    InvalidTradeSetupError,
    ModelNotFoundError,
    RateLimitExceededError,
    ScoringError,
    SwingTraderError,
    TradeClosedError,
)


def test_all_errors_share_base():
    for error in (
        ConfigError("x"),
        DataFetchError("x", source="FMP"),
        RateLimitExceededError("FMP", 3),
        ScoringError("AAA", "x"),
        InvalidTradeSetupError("AAA", "x"),
        TradeClosedError("T1"),
        InsufficientTrainingDataError(5, 100),
        FeatureSchemaError(["a"]),
        ModelNotFoundError(Path("m.json")),
    ):
        assert isinstance(error, SwingTraderError)


def test_messages():
    assert str(DataFetchError("HTTP 500", source="FMP", url="https://x")) == (
        "Failed to fetch data from FMP from https://x: HTTP 500"
    )
    assert "3 attempts" in str(RateLimitExceededError("FMP", 3))
    assert isinstance(RateLimitExceededError("FMP", 3), DataFetchError)
    assert str(InsufficientTrainingDataError(5, 100)) == (
        "Insufficient training data: 5 examples, at least 100 required"
    )
    assert str(FeatureSchemaError({"b", "a"}, {"z"})) == (
        "Model feature set does not match extractor: missing a, b; unexpected z"
    )
