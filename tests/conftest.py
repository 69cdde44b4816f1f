import math
from collections import Counter
from datetime import date, timedelta
from typing import Callable, Optional, Union

import pytest

from swingtrader.models import PriceBar, ScoreResult
from swingtrader.utils.exceptions import ScoringError


def weekdays(start: date, count: int) -> list[date]:
    days = []
    day = start
    while len(days) < count:
        if day.weekday() < 5:
            days.append(day)
        day += timedelta(days=1)
    return days


def bar(
    day: date,
    close: float,
    high: Optional[float] = None,
    low: Optional[float] = None,
    open_: Optional[float] = None,
    volume: float = 1_000_000.0,
) -> PriceBar:
    return PriceBar(
        date=day,
        open=close if open_ is None else open_,
        high=close * 1.01 if high is None else high,
        low=close * 0.99 if low is None else low,
        close=close,
        volume=volume,
    )


def trending_series(
    count: int,
    start: date = date(2024, 1, 1),
    base: float = 100.0,
    drift: float = 0.3,
    wave: float = 3.0,
) -> list[PriceBar]:
    """Weekday bars on a gentle uptrend with a sine wave on top."""
    bars = []
    previous = base
    for i, day in enumerate(weekdays(start, count)):
        close = base + drift * i + wave * math.sin(i / 3)
        bars.append(PriceBar(
            date=day,
            open=previous,
            high=max(previous, close) * 1.01,
            low=min(previous, close) * 0.99,
            close=close,
            volume=1_000_000.0 + 10_000.0 * (i % 7),
        ))
        previous = close
    return bars


class DictPriceProvider:
    """In-memory price provider keyed by ticker."""

    def __init__(self, series: dict[str, list[PriceBar]]):
        self.series = {k.upper(): v for k, v in series.items()}
        self.calls: Counter = Counter()

    def get(self, ticker: str, from_date: date, to_date: date) -> list[PriceBar]:
        self.calls[ticker.upper()] += 1
        return [b for b in self.series.get(ticker.upper(), []) if from_date <= b.date <= to_date]

    def close(self) -> None:
        pass

    def __enter__(self) -> "DictPriceProvider":
        return self

    def __exit__(self, *args) -> None:
        self.close()


ScoreLookup = Union[
    dict[tuple[str, date], ScoreResult],
    Callable[[str, date], Optional[ScoreResult]],
]


class FakeScorer:
    """Scorer backed by a dict of (ticker, day) or a function; unknown pairs raise ScoringError."""

    def __init__(self, lookup: ScoreLookup):
        self.lookup = lookup
        self.calls: list[tuple[str, date]] = []

    def score(self, ticker: str, as_of: Optional[date] = None) -> ScoreResult:
        self.calls.append((ticker, as_of))
        if callable(self.lookup):
            result = self.lookup(ticker, as_of)
        else:
            result = self.lookup.get((ticker, as_of))
        if result is None:
            raise ScoringError(ticker, f"no score for {as_of}")
        return result


def long_score(
    ticker: str,
    day: date,
    price: float = 100.0,
    stop: float = 95.0,
    probability: float = 80.0,
    **overrides,
) -> ScoreResult:
    values = dict(
        ticker=ticker,
        as_of=day,
        price=price,
        probability=probability,
        stop_loss=stop,
        take_profit_levels=[price + (price - stop) * r for r in (1.5, 2.5, 4.0)],
        sector="Technology",
        regime="BULL",
        reward_risk=3.0,
    )
    values.update(overrides)
    return ScoreResult(**values)


@pytest.fixture
def make_bar():
    return bar


@pytest.fixture
def make_series():
    return trending_series


@pytest.fixture
def make_score():
    return long_score


@pytest.fixture
def provider_factory():
    return DictPriceProvider


@pytest.fixture
def scorer_factory():
    return FakeScorer


@pytest.fixture
def aaa_scenario():
    """
    AAA enters at 100 on 2024-01-01 with a 95 stop (R = 5).

    TP1 107.5 is hit on 01-03, TP2 112.5 on 01-05 and TP3 120 on 01-08.
    Prices after the exit are flat at 119. The run ends on 01-12.
    """
    days = weekdays(date(2024, 1, 1), 10)
    bars = [
        bar(days[0], 100.0, high=101.0, low=99.0),
        bar(days[1], 103.0, high=104.0, low=99.0, open_=100.5),
        bar(days[2], 107.0, high=108.0, low=102.0, open_=103.0),
        bar(days[3], 109.0, high=110.0, low=105.0, open_=107.0),
        bar(days[4], 112.0, high=113.0, low=108.0, open_=109.0),
        bar(days[5], 119.0, high=121.0, low=111.0, open_=112.0),
    ] + [bar(d, 119.0, high=119.5, low=118.5) for d in days[6:]]
    scores = {("AAA", days[0]): long_score("AAA", days[0])}
    return days, {"AAA": bars}, scores
