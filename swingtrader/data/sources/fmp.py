import time
from datetime import date
from typing import Any, Callable, Optional

import httpx
from loguru import logger

from swingtrader.data.sources.rate_limiter import RateLimiter
from swingtrader.models import PriceBar
from swingtrader.utils.exceptions import DataFetchError, RateLimitExceededError


class FmpPriceProvider:
    """
    Daily OHLCV bars from Financial Modeling Prep.

    Errors are logged and reported as an empty series so callers can skip
    the ticker. HTTP 429 responses back off for a fixed delay and retry up
    to ``max_throttle_retries`` times.
    """

    SOURCE = "FMP"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://financialmodelingprep.com/stable",
        rate_limiter: Optional[RateLimiter] = None,
        max_retries: int = 3,
        max_throttle_retries: int = 5,
        throttle_delay: float = 5.0,
        timeout: float = 30.0,
        client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.rate_limiter = rate_limiter
        self.max_retries = max_retries
        self.max_throttle_retries = max_throttle_retries
        self.throttle_delay = throttle_delay
        self.client = client or httpx.Client(timeout=timeout)
        self._sleep = sleep
        self._today = today

        logger.info("FmpPriceProvider initialized")

    def _request_with_retry(self, url: str, params: dict[str, Any]) -> Any:
        attempt = 0
        throttled = 0

        while True:
            if self.rate_limiter is not None:
                self.rate_limiter.throttle()
            try:
                logger.debug(f"GET {url} {params.get('symbol', '')} (attempt {attempt + 1})")
                response = self.client.get(url, params=params)

                if response.status_code == 429:
                    throttled += 1
                    if throttled > self.max_throttle_retries:
                        raise RateLimitExceededError(self.SOURCE, throttled, url=url)
                    logger.warning(f"Throttled by {self.SOURCE}, retrying in {self.throttle_delay:.0f}s")
                    self._sleep(self.throttle_delay)
                    continue

                response.raise_for_status()
                return response.json()

            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                if status < 500 or attempt >= self.max_retries - 1:
                    raise DataFetchError(f"HTTP {status}", source=self.SOURCE, url=url)
                sleep_time = 2 ** attempt
                logger.warning(f"Request failed with HTTP {status}, retrying in {sleep_time}s")
                self._sleep(sleep_time)
                attempt += 1

            except (httpx.RequestError, httpx.TimeoutException) as e:
                if attempt >= self.max_retries - 1:
                    raise DataFetchError(str(e), source=self.SOURCE, url=url)
                sleep_time = 2 ** attempt
                logger.warning(f"Request error, retrying in {sleep_time}s: {e}")
                self._sleep(sleep_time)
                attempt += 1

    def _parse_bars(self, data: Any) -> list[PriceBar]:
        if isinstance(data, dict):
            data = data.get("historical", [])
        if not isinstance(data, list):
            return []

        bars = []
        for row in data:
            try:
                bars.append(PriceBar(
                    date=date.fromisoformat(str(row["date"])[:10]),
                    open=float(row["open"]),
                    high=float(row["high"]),
                    low=float(row["low"]),
                    close=float(row["close"]),
                    volume=float(row.get("volume") or 0.0),
                ))
            except (KeyError, TypeError, ValueError) as e:
                logger.debug(f"Skipping malformed bar {row!r}: {e}")
        return bars

    def get(self, ticker: str, from_date: date, to_date: date) -> list[PriceBar]:
        url = f"{self.base_url}/historical-price-eod/full"
        params = {
            "symbol": ticker,
            "from": from_date.isoformat(),
            "to": to_date.isoformat(),
            "apikey": self.api_key,
        }

        try:
            data = self._request_with_retry(url, params)
        except DataFetchError as e:
            logger.warning(f"Price fetch for {ticker} failed: {e}")
            return []
        except ValueError as e:
            logger.warning(f"Invalid JSON for {ticker}: {e}")
            return []

        # today's bar may belong to a session still in progress
        today = self._today()
        bars = [b for b in self._parse_bars(data) if b.date < today]
        bars.sort(key=lambda b: b.date)
        logger.debug(f"Fetched {len(bars)} bars for {ticker}")
        return bars

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "FmpPriceProvider":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
