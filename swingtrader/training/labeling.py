"""
Exit-timing dataset construction from historical entry signals.
"""
from collections import Counter
from datetime import date, timedelta
from typing import Iterable, Optional, Sequence

from loguru import logger

from swingtrader.data.sources.base import PriceProvider
from swingtrader.data.sources.rate_limiter import RateLimiter
from swingtrader.features import atr, extract_exit_features
from swingtrader.models import PriceBar, TrainingExample

MIN_BARS = 50
MAX_OBSERVATION_DAY = 30
HORIZON_DAYS = 45
LABEL_THRESHOLD_R = 0.3
ATR_STOP_MULTIPLE = 1.5
ATR_FALLBACK_PCT = 0.03
ATR_WINDOW = 20


def estimate_stop(prices: Sequence[PriceBar], entry_idx: int, multiple: float = ATR_STOP_MULTIPLE) -> float:
    """Stop ``multiple`` ATRs below the entry close, ATR taken over the bars up to entry."""
    entry_price = prices[entry_idx].close
    window = prices[max(0, entry_idx - ATR_WINDOW):entry_idx + 1]
    atr_value = atr(window) or entry_price * ATR_FALLBACK_PCT
    return entry_price - atr_value * multiple


def label_signal(
    ticker: str,
    signal_date: date,
    prices: Sequence[PriceBar],
    benchmark: Optional[Sequence[PriceBar]] = None,
    max_observation_day: int = MAX_OBSERVATION_DAY,
    horizon_days: int = HORIZON_DAYS,
    label_threshold_r: float = LABEL_THRESHOLD_R,
    min_bars: int = MIN_BARS,
) -> list[TrainingExample]:
    """
    Label every holding day of one simulated trade.

    Entry is the close of the first bar dated on or after the signal. For
    days 1..max_observation_day the example is EXIT (1) when the best high
    still reachable up to ``horizon_days`` adds at most ``label_threshold_r``
    over today's close, else HOLD (0).

    Returns an empty list when the history is too short for the horizon.
    """
    if len(prices) < min_bars:
        return []

    entry_idx = next((i for i, b in enumerate(prices) if b.date >= signal_date), None)
    if entry_idx is None or entry_idx + horizon_days >= len(prices):
        return []

    entry_price = prices[entry_idx].close
    stop_loss = estimate_stop(prices, entry_idx)
    risk = entry_price - stop_loss
    if risk <= 0:
        return []

    def r_at(price: float) -> float:
        return (price - entry_price) / risk

    final_r = r_at(prices[entry_idx + horizon_days].close)
    examples = []

    for day in range(1, max_observation_day + 1):
        current_idx = entry_idx + day
        current_r = r_at(prices[current_idx].close)
        future_highs = [prices[entry_idx + d].high for d in range(day + 1, horizon_days + 1)]
        max_future_r = max([current_r] + [r_at(h) for h in future_highs])

        features = extract_exit_features(
            prices,
            entry_price,
            stop_loss,
            current_idx,
            entry_idx,
            benchmark,
        )
        examples.append(TrainingExample(
            ticker=ticker,
            signal_date=signal_date,
            observation_date=prices[current_idx].date,
            holding_days=day,
            features=features.as_dict(),
            label=1 if max_future_r - current_r <= label_threshold_r else 0,
            current_r=current_r,
            max_future_r=max_future_r,
            final_r=final_r,
        ))

    return examples


class DatasetBuilder:
    """
    Fetches price history for each signal and labels it.

    Every provider call first passes through the builder's rate limiter.
    Price series are fetched once per ticker for the lifetime of one
    ``build()`` call.
    """

    def __init__(
        self,
        price_provider: PriceProvider,
        rate_limiter: RateLimiter,
        benchmark_ticker: Optional[str] = "SPY",
        lookback_days: int = 120,
        max_observation_day: int = MAX_OBSERVATION_DAY,
        horizon_days: int = HORIZON_DAYS,
        label_threshold_r: float = LABEL_THRESHOLD_R,
    ):
        self.price_provider = price_provider
        self.rate_limiter = rate_limiter
        self.benchmark_ticker = benchmark_ticker
        self.lookback_days = lookback_days
        self.max_observation_day = max_observation_day
        self.horizon_days = horizon_days
        self.label_threshold_r = label_threshold_r
        self.stats: Counter = Counter()

    def _fetch(self, ticker: str, from_date: date, to_date: date) -> list[PriceBar]:
        self.rate_limiter.throttle()
        return self.price_provider.get(ticker, from_date, to_date)

    def build(self, signals: Iterable[tuple[str, date]], to_date: Optional[date] = None) -> list[TrainingExample]:
        """
        Build labeled examples for ``(ticker, signal_date)`` pairs.

        Args:
            signals: Historical entry signals
            to_date: Last date of price history to request, defaults to today

        Returns:
            Examples from every usable signal; unusable ones are counted in ``stats``
        """
        signals = sorted(set((t.upper(), d) for t, d in signals), key=lambda s: (s[1], s[0]))
        self.stats = Counter()
        if not signals:
            return []

        to_date = to_date or date.today()
        from_date = signals[0][1] - timedelta(days=self.lookback_days)

        benchmark: list[PriceBar] = []
        if self.benchmark_ticker:
            benchmark = self._fetch(self.benchmark_ticker, from_date, to_date)
            logger.info(f"Benchmark {self.benchmark_ticker}: {len(benchmark)} bars")

        series: dict[str, list[PriceBar]] = {}
        examples: list[TrainingExample] = []

        for ticker, signal_date in signals:
            if ticker not in series:
                series[ticker] = self._fetch(ticker, from_date, to_date)

            labeled = label_signal(
                ticker,
                signal_date,
                series[ticker],
                benchmark,
                max_observation_day=self.max_observation_day,
                horizon_days=self.horizon_days,
                label_threshold_r=self.label_threshold_r,
            )
            if not labeled:
                self.stats["skipped"] += 1
                logger.debug(f"Skipped {ticker} signal on {signal_date}: not enough history")
                continue

            self.stats["used"] += 1
            examples.extend(labeled)

        logger.info(
            f"Built {len(examples)} examples from {self.stats['used']} signals "
            f"({self.stats['skipped']} skipped)"
        )
        return examples
