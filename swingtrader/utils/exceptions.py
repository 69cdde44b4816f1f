from pathlib import Path
from typing import Iterable


class SwingTraderError(Exception):
    pass


class ConfigError(SwingTraderError):
    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def __str__(self) -> str:
        return f"Configuration error: {self.message}"


class DataFetchError(SwingTraderError):
    def __init__(self, message: str, source: str, url: str = "") -> None:
        self.message = message
        self.source = source
        self.url = url
        super().__init__(message)

    def __str__(self) -> str:
        url_info = f" from {self.url}" if self.url else ""
        return f"Failed to fetch data from {self.source}{url_info}: {self.message}"


class RateLimitExceededError(DataFetchError):
    def __init__(self, source: str, attempts: int, url: str = "") -> None:
        self.attempts = attempts
        super().__init__(f"still throttled after {attempts} attempts", source=source, url=url)


class DataUnavailableError(SwingTraderError):
    def __init__(self, ticker: str, detail: str) -> None:
        self.ticker = ticker
        self.detail = detail
        super().__init__(f"{ticker}: {detail}")

    def __str__(self) -> str:
        return f"No usable data for {self.ticker}: {self.detail}"


class ScoringError(SwingTraderError):
    def __init__(self, ticker: str, detail: str) -> None:
        self.ticker = ticker
        self.detail = detail
        super().__init__(f"{ticker}: {detail}")

    def __str__(self) -> str:
        return f"Scoring failed for {self.ticker}: {self.detail}"


class InvalidTradeSetupError(SwingTraderError):
    def __init__(self, ticker: str, reason: str) -> None:
        self.ticker = ticker
        self.reason = reason
        super().__init__(f"{ticker}: {reason}")

    def __str__(self) -> str:
        return f"Invalid trade setup for {self.ticker}: {self.reason}"


class TradeClosedError(SwingTraderError):
    def __init__(self, trade_id: str) -> None:
        self.trade_id = trade_id
        super().__init__(f"Trade {trade_id} is closed")

    def __str__(self) -> str:
        return f"Trade {self.trade_id} is already closed and cannot be modified"


class InsufficientTrainingDataError(SwingTraderError):
    def __init__(self, count: int, minimum: int) -> None:
        self.count = count
        self.minimum = minimum
        super().__init__(f"{count} < {minimum}")

    def __str__(self) -> str:
        return (
            f"Insufficient training data: {self.count} examples, "
            f"at least {self.minimum} required"
        )


class FeatureSchemaError(SwingTraderError):
    def __init__(self, missing: Iterable[str] = (), unexpected: Iterable[str] = ()) -> None:
        self.missing = sorted(missing)
        self.unexpected = sorted(unexpected)
        super().__init__(f"missing={self.missing} unexpected={self.unexpected}")

    def __str__(self) -> str:
        parts = []
        if self.missing:
            parts.append(f"missing {', '.join(self.missing)}")
        if self.unexpected:
            parts.append(f"unexpected {', '.join(self.unexpected)}")
        return f"Model feature set does not match extractor: {'; '.join(parts)}"


class ModelNotFoundError(SwingTraderError):
    def __init__(self, path: Path) -> None:
        self.path = path
        super().__init__(f"Model not found: {path}")

    def __str__(self) -> str:
        return f"No trained exit model at {self.path} (run 'train' first)"
