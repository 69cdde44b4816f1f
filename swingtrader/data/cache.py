from datetime import date, timedelta
from typing import Optional

from loguru import logger

from swingtrader.data.sources.base import PriceProvider
from swingtrader.models import PriceBar


class RunPriceCache:
    """
    Per-run memo of each ticker's full price series.

    A ticker is fetched once for the whole run window and later reads are
    sliced from memory. Reads never return bars dated after ``as_of``.
    Only non-empty series are memoized: a failed or empty fetch skips the
    ticker for that day and is retried on the next day that asks for it.
    Create one per simulator run; it is not shared.
    """

    def __init__(
        self,
        provider: PriceProvider,
        start_date: date,
        end_date: date,
        lookback_days: int = 120,
    ) -> None:
        self.provider = provider
        self.from_date = start_date - timedelta(days=lookback_days)
        self.to_date = end_date
        self._series: dict[str, list[PriceBar]] = {}
        self._index: dict[str, dict[date, int]] = {}
        self._missed: dict[str, Optional[date]] = {}
        self.fetches = 0

    def series(self, ticker: str, day: Optional[date] = None) -> list[PriceBar]:
        if ticker in self._series:
            return self._series[ticker]
        if day is not None and self._missed.get(ticker) == day:
            return []

        self.fetches += 1
        try:
            bars = self.provider.get(ticker, self.from_date, self.to_date)
        except Exception as e:
            logger.warning(f"Price provider failed for {ticker}: {e}")
            bars = []

        if not bars:
            logger.debug(f"No price data for {ticker} in {self.from_date}..{self.to_date}, will retry")
            self._missed[ticker] = day
            return []

        self._missed.pop(ticker, None)
        self._series[ticker] = bars
        self._index[ticker] = {b.date: i for i, b in enumerate(bars)}
        return bars

    def bar(self, ticker: str, day: date) -> Optional[PriceBar]:
        bars = self.series(ticker, day)
        idx = self._index.get(ticker, {}).get(day)
        return None if idx is None else bars[idx]

    def last_bar_on_or_before(self, ticker: str, day: date) -> Optional[PriceBar]:
        history = self.history(ticker, day)
        return history[-1] if history else None

    def history(self, ticker: str, as_of: date) -> list[PriceBar]:
        return [b for b in self.series(ticker, as_of) if b.date <= as_of]

    def clear(self) -> None:
        self._series.clear()
        self._index.clear()
        self._missed.clear()
