"""
End-to-end tests of the backtest and exit-model pipelines with in-memory data.

This test covers:
1. Snapshot storage and point-in-time scoring
2. Simulation with tiered take profits
3. Persisting and reloading a backtest run
4. Dataset labeling from stored signals
5. Training, saving and reloading the exit model
6. Evaluating an open position with the reloaded model
"""
from datetime import date
from pathlib import Path
from unittest.mock import Mock

import pytest

from swingtrader.backtest import BacktestSimulator, create_default_config
from swingtrader.data.scoring import SnapshotScorer
from swingtrader.data.storage.model_store import ModelStore
from swingtrader.data.storage.sqlite_client import SQLiteClient
from swingtrader.execution import ExitEvaluator
from swingtrader.models import ExitReason, OpenPosition
from swingtrader.training import DatasetBuilder, ExitModelTrainer


@pytest.fixture
def sqlite_client(tmp_path: Path) -> SQLiteClient:
    client = SQLiteClient(tmp_path / "swingtrader.db")
    client.initialize_schema()
    yield client
    client.close()


def test_backtest_from_stored_snapshots(sqlite_client, aaa_scenario, provider_factory):
    days, series, scores = aaa_scenario
    for snapshot in scores.values():
        sqlite_client.upsert_snapshot(snapshot)

    config = create_default_config(
        ["AAA"],
        days[0],
        days[-1],
        name="pipeline",
        slippage_percent=0.0,
        commission_per_share=0.0,
    )
    result = BacktestSimulator(config, provider_factory(series), SnapshotScorer(sqlite_client)).run()

    # Step 1: the ladder books TP1 at 1.5R on the third day
    trade = result.trades[0]
    tp1 = trade.partial_exits[0]
    assert tp1.reason == ExitReason.TP1
    assert tp1.date == date(2024, 1, 3)
    assert tp1.price == 107.5
    assert tp1.realized_r == pytest.approx(1.5)

    # Step 2: ledger, equity curve and metrics agree
    assert result.metrics.total_trades == 1
    assert result.metrics.total_pnl == pytest.approx(2680.0)
    assert result.final_equity == pytest.approx(100_000.0 + result.metrics.total_pnl)
    assert sum(p.daily_pnl for p in result.equity_curve) == pytest.approx(result.metrics.total_pnl)

    # Step 3: persisted run reloads identically
    run_id = sqlite_client.save_backtest_result(result)
    assert sqlite_client.load_backtest_result(run_id) == result


def test_exit_model_pipeline(sqlite_client, tmp_path, provider_factory, make_series):
    series = {
        "AAA": make_series(200, base=50.0, drift=0.15, wave=2.0),
        "BBB": make_series(200, base=80.0, drift=-0.05, wave=4.0),
        "SPY": make_series(200, base=400.0, drift=0.4, wave=3.0),
    }
    provider = provider_factory(series)
    for ticker in ("AAA", "BBB"):
        for idx in (60, 80, 100):
            sqlite_client.insert_signal(ticker, series[ticker][idx].date)

    # Step 4: label every stored signal
    signals = sqlite_client.get_signals("POLITICIAN")
    builder = DatasetBuilder(provider, Mock())
    examples = builder.build([(s["ticker"], s["signal_date"]) for s in signals], to_date=series["AAA"][-1].date)
    assert len(examples) == 6 * 30
    assert builder.stats["used"] == 6

    # Step 5: train and persist
    model = ExitModelTrainer(learning_rate=0.05, iterations=300, seed=11).train(examples)
    store = ModelStore(tmp_path / "models" / "exit_model.json")
    store.save(model)
    reloaded = store.load()
    assert reloaded == model

    # Step 6: evaluate a live position with the reloaded artifact
    evaluator = ExitEvaluator(reloaded, provider)
    entry = series["AAA"][170]
    evaluation = evaluator.evaluate(
        OpenPosition(ticker="AAA", entry_date=entry.date, entry_price=entry.close),
        as_of=series["AAA"][185].date,
    )
    assert 0.0 <= evaluation.exit_probability <= 1.0
    assert evaluation.features["holding_days"] == 15
    assert evaluation.reasons[0].startswith("Exit probability:")
