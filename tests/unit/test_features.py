from datetime import date

import numpy as np
import pytest

from swingtrader.features import FEATURE_NAMES, ExitFeatureVector, extract_exit_features, feature_matrix
from swingtrader.features.indicators import atr, pct_return, rsi, sma
from swingtrader.models import PriceBar


@pytest.fixture
def series(make_series):
    return make_series(80)


def test_feature_names_are_stable():
    assert len(FEATURE_NAMES) == 22
    assert FEATURE_NAMES[0] == "holding_days"
    assert FEATURE_NAMES[-1] == "above_2r"
    assert "spy_return_10d" in FEATURE_NAMES


def test_sma_and_short_history():
    assert sma([1.0, 2.0, 3.0, 4.0], 2) == pytest.approx(3.5)
    assert sma([1.0, 2.0], 20) == 2.0
    assert sma([], 20) == 0.0


def test_rsi_edge_cases():
    assert rsi([100.0] * 10) == 50.0
    assert rsi([float(i) for i in range(20)]) == 100.0
    rising_and_falling = [100.0, 101.0] * 10
    assert rsi(rising_and_falling) == pytest.approx(50.0)


def test_atr_uses_last_fourteen_true_ranges(make_bar):
    bars = [make_bar(date(2024, 1, 1 + i), 100.0, high=101.0, low=99.0) for i in range(20)]
    assert atr(bars) == pytest.approx(2.0)
    assert atr(bars[:14]) == 0.0


def test_pct_return():
    assert pct_return([100.0, 105.0, 110.0], 2) == pytest.approx(10.0)
    assert pct_return([100.0, 110.0], 5) == 0.0


def test_position_state_features(series):
    entry_idx, current_idx = 50, 60
    entry_price = series[entry_idx].close
    stop_loss = entry_price - 5.0

    features = extract_exit_features(series, entry_price, stop_loss, current_idx, entry_idx)
    current = series[current_idx].close

    assert features.holding_days == 10
    assert features.unrealized_r == pytest.approx((current - entry_price) / 5.0)
    assert features.unrealized_pct == pytest.approx((current - entry_price) / entry_price * 100)
    assert features.return_from_entry == features.unrealized_pct
    assert features.return_from_high <= 0.0
    assert 0.0 <= features.rsi_14 <= 100.0
    assert features.in_profit == (1.0 if features.unrealized_r > 0 else 0.0)
    assert features.spy_return_5d == 0.0


def test_high_since_entry_includes_entry_price(make_bar):
    """A fill above every subsequent high makes return_from_high relative to the fill."""
    bars = [make_bar(date(2024, 1, 1 + i), 100.0, high=100.5, low=99.5) for i in range(25)]
    features = extract_exit_features(bars, 110.0, 105.0, 24, 20)
    assert features.return_from_high == pytest.approx((100.0 - 110.0) / 110.0 * 100)


def test_calendar_features(make_bar):
    bars = [make_bar(date(2024, 1, 1 + i), 100.0) for i in range(28)]
    monday = extract_exit_features(bars, 100.0, 95.0, 14, 10)
    assert bars[14].date == date(2024, 1, 15)
    assert monday.day_of_week == 1
    assert monday.is_month_end == 0.0

    sunday = extract_exit_features(bars, 100.0, 95.0, 27, 10)
    assert sunday.day_of_week == 0
    assert sunday.is_month_end == 1.0


def test_volume_ratio(make_bar):
    bars = [make_bar(date(2024, 1, 1 + i), 100.0, volume=1000.0) for i in range(25)]
    bars.append(make_bar(date(2024, 1, 26), 100.0, volume=3000.0))
    assert extract_exit_features(bars, 100.0, 95.0, 25, 20).volume_vs_avg == pytest.approx(3.0)

    silent = [make_bar(date(2024, 1, 1 + i), 100.0, volume=0.0) for i in range(25)]
    assert extract_exit_features(silent, 100.0, 95.0, 24, 20).volume_vs_avg == 1.0


def test_future_bars_are_never_read(series):
    features = extract_exit_features(series, 100.0, 95.0, 60, 50)

    altered = list(series)
    for i in range(61, len(altered)):
        b = altered[i]
        altered[i] = PriceBar(date=b.date, open=1.0, high=500.0, low=0.5, close=250.0, volume=1.0)

    assert extract_exit_features(altered, 100.0, 95.0, 60, 50) == features


def test_benchmark_aligned_to_last_bar_on_or_before(make_bar):
    bars = [make_bar(date(2024, 1, 1 + i), 100.0) for i in range(20)]
    benchmark = [make_bar(date(2024, 1, 1 + i), 100.0 + i) for i in range(20) if i != 19]
    benchmark.append(make_bar(date(2024, 1, 21), 500.0))

    features = extract_exit_features(bars, 100.0, 95.0, 19, 10, benchmark)

    closes = [100.0 + i for i in range(19)]
    assert features.spy_return_5d == pytest.approx((closes[-1] - closes[-6]) / closes[-6] * 100)
    assert features.spy_return_10d == pytest.approx((closes[-1] - closes[-11]) / closes[-11] * 100)


def test_index_out_of_range(series):
    with pytest.raises(IndexError):
        extract_exit_features(series, 100.0, 95.0, len(series), 50)


def test_vector_serialization(series):
    features = extract_exit_features(series, 100.0, 95.0, 60, 50)

    assert list(features.as_dict()) == list(FEATURE_NAMES)
    assert features.to_array().shape == (22,)
    assert ExitFeatureVector(**features.as_dict()) == features

    matrix = feature_matrix([features, features])
    assert matrix.shape == (2, 22)
    np.testing.assert_array_equal(matrix[0], features.to_array())
    assert feature_matrix([]).shape == (0, 22)
