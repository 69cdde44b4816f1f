from datetime import timedelta
from unittest.mock import Mock

import pytest

from swingtrader.features import FEATURE_NAMES
from swingtrader.training import DatasetBuilder, label_signal
from swingtrader.training.labeling import estimate_stop


@pytest.fixture
def series(make_series):
    return make_series(150)


def test_label_signal_builds_thirty_days(series):
    signal_date = series[60].date
    examples = label_signal("AAA", signal_date, series)

    assert [e.holding_days for e in examples] == list(range(1, 31))
    assert examples[0].observation_date == series[61].date
    assert all(set(e.features) == set(FEATURE_NAMES) for e in examples)


def test_labels_follow_remaining_upside(series):
    """EXIT when at most 0.3R of upside remains before the horizon."""
    examples = label_signal("AAA", series[60].date, series)

    for example in examples:
        assert example.max_future_r >= example.current_r
        remaining = example.max_future_r - example.current_r
        assert example.label == (1 if remaining <= 0.3 else 0)


def test_labels_use_entry_close_and_atr_stop(series):
    examples = label_signal("AAA", series[60].date, series)

    entry = series[60].close
    risk = entry - estimate_stop(series, 60)
    assert risk > 0
    assert examples[0].current_r == pytest.approx((series[61].close - entry) / risk)
    assert examples[0].final_r == pytest.approx((series[60 + 45].close - entry) / risk)


def test_signal_on_weekend_enters_next_bar(series):
    saturday = series[59].date + timedelta(days=1)
    assert saturday.weekday() == 5
    examples = label_signal("AAA", saturday, series)
    assert examples[0].observation_date == series[61].date


def test_insufficient_history(series):
    assert label_signal("AAA", series[10].date, series[:40]) == []
    assert label_signal("AAA", series[120].date, series) == []


def test_dataset_builder_fetches_each_ticker_once(series, provider_factory, make_series):
    provider = provider_factory({"AAA": series, "SPY": make_series(150, base=400.0)})
    rate_limiter = Mock()

    builder = DatasetBuilder(provider, rate_limiter)
    examples = builder.build(
        [("AAA", series[60].date), ("aaa", series[65].date), ("AAA", series[60].date)],
        to_date=series[-1].date,
    )

    assert len(examples) == 60
    assert provider.calls["AAA"] == 1
    assert provider.calls["SPY"] == 1
    assert rate_limiter.throttle.call_count == 2
    assert builder.stats["used"] == 2
    assert examples[0].features["spy_return_5d"] != 0.0


def test_dataset_builder_counts_skipped(series, provider_factory):
    provider = provider_factory({"AAA": series})
    builder = DatasetBuilder(provider, Mock(), benchmark_ticker=None)

    examples = builder.build([("AAA", series[60].date), ("ZZZ", series[60].date)], to_date=series[-1].date)

    assert len(examples) == 30
    assert builder.stats["used"] == 1
    assert builder.stats["skipped"] == 1
    assert builder.build([]) == []
