from datetime import date
from typing import Optional, Protocol, runtime_checkable

from swingtrader.models import PriceBar, ScoreResult


@runtime_checkable
class PriceProvider(Protocol):
    """Daily OHLCV source.

    Returns bars ascending by date, never including the in-progress session,
    and an empty list when the data cannot be fetched.
    """

    def get(self, ticker: str, from_date: date, to_date: date) -> list[PriceBar]:
        ...


@runtime_checkable
class Scorer(Protocol):
    """Per-ticker analysis. ``as_of=None`` means latest live data."""

    def score(self, ticker: str, as_of: Optional[date] = None) -> ScoreResult:
        ...
