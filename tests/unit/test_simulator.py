from datetime import date

import pytest

from swingtrader.backtest import BacktestSimulator, create_default_config, trading_days
from swingtrader.models import ExitReason, TradeStatus


def zero_cost_config(universe, start, end, **overrides):
    return create_default_config(
        list(universe),
        start,
        end,
        name="test",
        slippage_percent=0.0,
        commission_per_share=0.0,
        **overrides,
    )


def test_trading_days_skip_weekends():
    days = list(trading_days(date(2024, 1, 5), date(2024, 1, 9)))
    assert days == [date(2024, 1, 5), date(2024, 1, 8), date(2024, 1, 9)]


def test_take_profit_ladder(aaa_scenario, provider_factory, scorer_factory):
    """AAA scales out at TP1, TP2 and TP3 for 2680 of realized profit."""
    days, series, scores = aaa_scenario
    config = zero_cost_config(["AAA"], days[0], days[-1])

    result = BacktestSimulator(config, provider_factory(series), scorer_factory(scores)).run()

    assert result.status == "COMPLETED"
    assert len(result.trades) == 1
    trade = result.trades[0]
    assert trade.initial_shares == 200
    assert [p.reason for p in trade.partial_exits] == [ExitReason.TP1, ExitReason.TP2]
    assert trade.partial_exits[0].shares == 66
    assert trade.partial_exits[0].realized_r == pytest.approx(1.5)
    assert trade.partial_exits[0].date == days[2]
    assert trade.exit_reason == ExitReason.TP3
    assert trade.exit_date == days[5]
    assert trade.realized_pnl == pytest.approx(2680.0)
    assert trade.realized_r == pytest.approx(4.0)
    assert result.final_equity == pytest.approx(102_680.0)


def test_equity_curve_has_one_point_per_day(aaa_scenario, provider_factory, scorer_factory):
    days, series, scores = aaa_scenario
    config = zero_cost_config(["AAA"], days[0], days[-1])

    result = BacktestSimulator(config, provider_factory(series), scorer_factory(scores)).run()

    assert [p.date for p in result.equity_curve] == days
    assert result.equity_curve[0].equity == pytest.approx(100_000.0)
    assert result.equity_curve[1].equity == pytest.approx(100_600.0)
    assert result.equity_curve[2].daily_pnl == pytest.approx(495.0)
    assert sum(p.daily_pnl for p in result.equity_curve) == pytest.approx(
        sum(t.realized_pnl for t in result.trades)
    )


def test_stop_loss_with_gap(provider_factory, scorer_factory, make_bar, make_score):
    """A gap through the stop fills at the bar low under MARKET handling."""
    d1, d2, d3 = date(2024, 1, 2), date(2024, 1, 3), date(2024, 1, 4)
    series = {"BBB": [
        make_bar(d1, 50.0),
        make_bar(d2, 47.5, high=49.0, low=47.0, open_=49.0),
        make_bar(d3, 47.5),
    ]}
    scores = {("BBB", d1): make_score("BBB", d1, price=50.0, stop=48.0)}
    config = zero_cost_config(["BBB"], d1, d3)

    result = BacktestSimulator(config, provider_factory(series), scorer_factory(scores)).run()

    trade = result.trades[0]
    assert trade.initial_shares == 500
    assert trade.exit_reason == ExitReason.STOP_LOSS
    assert trade.exit_price == 47.0
    assert trade.realized_pnl == pytest.approx(-1500.0)
    assert trade.realized_r == pytest.approx(-1.5)


def test_slippage_and_commission_reduce_pnl(aaa_scenario, provider_factory, scorer_factory):
    days, series, scores = aaa_scenario
    free = zero_cost_config(["AAA"], days[0], days[-1])
    costly = create_default_config(["AAA"], days[0], days[-1])

    free_result = BacktestSimulator(free, provider_factory(series), scorer_factory(scores)).run()
    costly_result = BacktestSimulator(costly, provider_factory(series), scorer_factory(scores)).run()

    trade = costly_result.trades[0]
    assert trade.entry_price == pytest.approx(100.1)
    assert trade.commissions > 0
    assert trade.realized_pnl < free_result.trades[0].realized_pnl


def test_highest_probability_wins_last_slot(provider_factory, scorer_factory, make_bar, make_score):
    d1, d2 = date(2024, 1, 2), date(2024, 1, 3)
    series = {t: [make_bar(d1, 100.0), make_bar(d2, 100.0)] for t in ("AAA", "BBB", "CCC")}
    scores = {
        ("AAA", d1): make_score("AAA", d1, probability=70.0),
        ("BBB", d1): make_score("BBB", d1, probability=85.0),
        ("CCC", d1): make_score("CCC", d1, probability=85.0),
    }
    config = zero_cost_config(["AAA", "BBB", "CCC"], d1, d2, max_open_positions=1)

    result = BacktestSimulator(config, provider_factory(series), scorer_factory(scores)).run()

    assert [t.ticker for t in result.trades] == ["BBB"]


def test_sector_limit(provider_factory, scorer_factory, make_bar, make_score):
    d1, d2 = date(2024, 1, 2), date(2024, 1, 3)
    series = {t: [make_bar(d1, 100.0), make_bar(d2, 100.0)] for t in ("AAA", "BBB", "CCC")}
    scores = {
        ("AAA", d1): make_score("AAA", d1, probability=90.0, sector="Energy"),
        ("BBB", d1): make_score("BBB", d1, probability=80.0, sector="Energy"),
        ("CCC", d1): make_score("CCC", d1, probability=70.0, sector="Utilities"),
    }
    config = zero_cost_config(["AAA", "BBB", "CCC"], d1, d2, max_per_sector=1)

    result = BacktestSimulator(config, provider_factory(series), scorer_factory(scores)).run()

    assert sorted(t.ticker for t in result.trades) == ["AAA", "CCC"]


@pytest.mark.parametrize("overrides", [
    {"probability": 60.0},
    {"reward_risk": 1.5},
    {"trade_type": "SWING_SHORT"},
    {"stop": 101.0},
    {"regime": "CRASH", "probability": 75.0},
])
def test_entry_gates_reject(overrides, provider_factory, scorer_factory, make_bar, make_score):
    d1, d2 = date(2024, 1, 2), date(2024, 1, 3)
    series = {"AAA": [make_bar(d1, 100.0), make_bar(d2, 100.0)]}
    scores = {("AAA", d1): make_score("AAA", d1, **overrides)}
    config = zero_cost_config(["AAA"], d1, d2)

    result = BacktestSimulator(config, provider_factory(series), scorer_factory(scores)).run()

    assert result.trades == ()


def test_scorer_failure_skips_ticker(provider_factory, scorer_factory, make_bar, make_score):
    d1, d2 = date(2024, 1, 2), date(2024, 1, 3)
    series = {t: [make_bar(d1, 100.0), make_bar(d2, 100.0)] for t in ("AAA", "BBB")}

    def lookup(ticker, day):
        if ticker == "AAA":
            raise RuntimeError("upstream down")
        return make_score(ticker, day) if day == d1 else None

    config = zero_cost_config(["AAA", "BBB"], d1, d2)
    result = BacktestSimulator(config, provider_factory(series), scorer_factory(lookup)).run()

    assert result.status == "COMPLETED"
    assert [t.ticker for t in result.trades] == ["BBB"]


def test_open_positions_closed_on_last_day(provider_factory, scorer_factory, make_bar, make_score):
    d1, d2, d3 = date(2024, 1, 2), date(2024, 1, 3), date(2024, 1, 4)
    series = {"AAA": [make_bar(d1, 100.0), make_bar(d2, 101.0), make_bar(d3, 102.0)]}
    scores = {("AAA", d1): make_score("AAA", d1)}
    config = zero_cost_config(["AAA"], d1, d3)

    result = BacktestSimulator(config, provider_factory(series), scorer_factory(scores)).run()

    trade = result.trades[0]
    assert trade.status == TradeStatus.CLOSED
    assert trade.exit_reason == ExitReason.TIME_EXIT
    assert trade.exit_date == d3
    assert trade.exit_price == 102.0
    assert result.equity_curve[-1].open_positions == 0


def test_no_entries_on_last_day(provider_factory, scorer_factory, make_bar, make_score):
    d1, d2 = date(2024, 1, 2), date(2024, 1, 3)
    series = {"AAA": [make_bar(d1, 100.0), make_bar(d2, 100.0)]}
    scores = {("AAA", d2): make_score("AAA", d2)}
    config = zero_cost_config(["AAA"], d1, d2)

    result = BacktestSimulator(config, provider_factory(series), scorer_factory(scores)).run()

    assert result.trades == ()
    assert result.final_equity == pytest.approx(100_000.0)


def test_missing_prices_close_at_entry(provider_factory, scorer_factory, make_score):
    d1, d2 = date(2024, 1, 2), date(2024, 1, 3)
    scores = {("AAA", d1): make_score("AAA", d1)}
    config = zero_cost_config(["AAA"], d1, d2)

    result = BacktestSimulator(config, provider_factory({}), scorer_factory(scores)).run()

    trade = result.trades[0]
    assert trade.exit_price == trade.entry_price
    assert trade.realized_pnl == pytest.approx(0.0)


def test_prices_fetched_once_per_ticker(aaa_scenario, provider_factory, scorer_factory):
    days, series, scores = aaa_scenario
    provider = provider_factory(series)
    config = zero_cost_config(["AAA"], days[0], days[-1])

    BacktestSimulator(config, provider, scorer_factory(scores)).run()

    assert provider.calls["AAA"] == 1


def test_repeated_runs_are_independent(aaa_scenario, provider_factory, scorer_factory):
    days, series, scores = aaa_scenario
    config = zero_cost_config(["AAA"], days[0], days[-1])
    simulator = BacktestSimulator(config, provider_factory(series), scorer_factory(scores))

    first = simulator.run()
    second = simulator.run()

    assert len(second.trades) == 1
    assert second.final_equity == pytest.approx(first.final_equity)


def test_result_contains_breakdowns(aaa_scenario, provider_factory, scorer_factory):
    days, series, scores = aaa_scenario
    config = zero_cost_config(["AAA"], days[0], days[-1])

    result = BacktestSimulator(config, provider_factory(series), scorer_factory(scores)).run()

    assert set(result.performance_by_regime) == {"BULL", "CHOPPY", "CRASH"}
    assert result.performance_by_regime["BULL"].trades == 1
    assert result.performance_by_sector["Technology"].total_pnl == pytest.approx(2680.0)
    assert list(result.performance_by_month) == ["2024-01"]
    assert result.calibration_by_bucket[0].bucket == "80-90%"
    assert result.calibration_by_bucket[0].actual_win_rate == 100.0
    assert result.monthly_returns[0].return_percent == pytest.approx(2.68)


def rise_then_stop(make_bar):
    """AAA enters at 100 (stop 95), rallies to 101, then gaps through the stop on 01-04."""
    days = [date(2024, 1, 1), date(2024, 1, 2), date(2024, 1, 3), date(2024, 1, 4), date(2024, 1, 5), date(2024, 1, 8)]
    bars = [
        make_bar(days[0], 100.0, high=100.5, low=99.5),
        make_bar(days[1], 101.0, high=102.0, low=99.5),
        make_bar(days[2], 100.0, high=101.0, low=98.0),
        make_bar(days[3], 90.0, high=97.0, low=89.0, open_=97.0),
        make_bar(days[4], 90.0),
        make_bar(days[5], 90.0),
    ]
    return days, {"AAA": bars}


def test_price_failure_skips_only_that_day(provider_factory, scorer_factory, make_bar, make_score):
    days, series = rise_then_stop(make_bar)

    class FlakyProvider:
        def __init__(self):
            self.inner = provider_factory(series)
            self.calls = 0

        def get(self, ticker, from_date, to_date):
            self.calls += 1
            if self.calls == 1:
                return []
            return self.inner.get(ticker, from_date, to_date)

    scores = {("AAA", days[0]): make_score("AAA", days[0], price=100.0, stop=95.0)}
    config = zero_cost_config(["AAA"], days[0], days[-1])

    result = BacktestSimulator(config, FlakyProvider(), scorer_factory(scores)).run()

    trade = result.trades[0]
    assert trade.exit_reason == ExitReason.STOP_LOSS
    assert trade.exit_date == days[3]
    assert trade.exit_price == 89.0
    assert trade.realized_pnl == pytest.approx(-2200.0)


def test_equity_curve_drawdown_tracks_running_peak(provider_factory, scorer_factory, make_bar, make_score):
    days, series = rise_then_stop(make_bar)
    scores = {("AAA", days[0]): make_score("AAA", days[0], price=100.0, stop=95.0)}
    config = zero_cost_config(["AAA"], days[0], days[-1])

    result = BacktestSimulator(config, provider_factory(series), scorer_factory(scores)).run()

    assert [p.equity for p in result.equity_curve] == pytest.approx(
        [100_000.0, 100_200.0, 100_000.0, 97_800.0, 97_800.0, 97_800.0]
    )
    peak = config.initial_capital
    for point in result.equity_curve:
        peak = max(peak, point.equity)
        assert point.drawdown == pytest.approx(max(0.0, peak - point.equity))
        assert point.drawdown_percent >= 0.0
        assert point.drawdown_percent == pytest.approx(point.drawdown / peak * 100)
    assert result.equity_curve[-1].drawdown == pytest.approx(2400.0)
