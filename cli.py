import json
from datetime import date, timedelta
from pathlib import Path
from typing import Optional

import typer
from loguru import logger

from config.settings import Settings, get_settings
from swingtrader.backtest import BacktestSimulator, WalkForwardOptimizer, rolling_windows
from swingtrader.data.scoring import SnapshotScorer
from swingtrader.data.sources.fmp import FmpPriceProvider
from swingtrader.data.sources.rate_limiter import RateLimiter
from swingtrader.data.storage.model_store import ModelStore
from swingtrader.data.storage.sqlite_client import SQLiteClient
from swingtrader.execution import ExitEvaluator
from swingtrader.models import BacktestConfig, BacktestResult, OpenPosition, ScoreResult
from swingtrader.training import DatasetBuilder, ExitModelTrainer, label_distribution_by_holding_days
from swingtrader.utils.exceptions import ConfigError, SwingTraderError
from swingtrader.utils.logging import setup_logging

app = typer.Typer(no_args_is_help=True)


def _bootstrap() -> Settings:
    settings = get_settings()
    setup_logging(settings.log_level, settings.database.log_dir)
    return settings


def _parse_date(value: str, name: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise typer.BadParameter(f"{name} must be YYYY-MM-DD, got {value!r}")


def _parse_tickers(value: str) -> list[str]:
    tickers = [t.strip().upper() for t in value.split(",") if t.strip()]
    if not tickers:
        raise typer.BadParameter("at least one ticker is required")
    return tickers


def _price_provider(settings: Settings, with_rate_limit: bool = True) -> FmpPriceProvider:
    if not settings.data.fmp_api_key:
        raise ConfigError("FMP_API_KEY is not set")
    rate_limiter = None
    if with_rate_limit:
        rate_limiter = RateLimiter(settings.data.rate_limit_calls, settings.data.rate_limit_window)
    return FmpPriceProvider(
        api_key=settings.data.fmp_api_key,
        base_url=settings.data.fmp_base_url,
        rate_limiter=rate_limiter,
        max_retries=settings.data.max_retries,
        max_throttle_retries=settings.data.max_throttle_retries,
        throttle_delay=settings.data.throttle_delay,
        timeout=settings.data.timeout,
    )


def _backtest_config(settings: Settings, name: str, tickers: list[str], start: date, end: date) -> BacktestConfig:
    values = settings.backtest.model_dump()
    return BacktestConfig(
        name=name,
        universe=tuple(tickers),
        start_date=start,
        end_date=end,
        **values,
    )


def _print_result(result: BacktestResult) -> None:
    m = result.metrics
    typer.echo(f"\nBacktest: {result.config.name} ({result.status})")
    typer.echo("=" * 60)
    typer.echo(f"Period: {result.config.start_date} to {result.config.end_date}")
    typer.echo(f"Final equity: ${result.final_equity:,.2f}")
    typer.echo(f"Trades: {m.total_trades} ({m.winners} W / {m.losers} L), win rate {m.win_rate:.1f}%")
    typer.echo(f"Total P&L: ${m.total_pnl:,.2f} ({m.total_pnl_percent:+.2f}%)")
    typer.echo(f"Avg R: {m.avg_r:.2f}  Expectancy: {m.expectancy:.2f}R")
    pf = f"{m.profit_factor:.2f}" if m.profit_factor is not None else "n/a"
    typer.echo(f"Profit factor: {pf}")
    typer.echo(f"Max drawdown: ${m.max_drawdown:,.2f} ({m.max_drawdown_percent:.2f}%), {m.max_drawdown_duration} days")
    typer.echo(f"Sharpe: {m.sharpe_ratio:.2f}  Sortino: {m.sortino_ratio:.2f}  Calmar: {m.calmar_ratio:.2f}")

    if result.calibration_by_bucket:
        typer.echo("\nCalibration:")
        for bucket in result.calibration_by_bucket:
            typer.echo(
                f"  {bucket.bucket:<8} predicted {bucket.predicted_avg:5.1f}%  "
                f"actual {bucket.actual_win_rate:5.1f}%  (n={bucket.count})"
            )

    typer.echo("\nBy regime:")
    for regime, perf in result.performance_by_regime.items():
        typer.echo(f"  {regime:<8} {perf.trades:>4} trades  win {perf.win_rate:5.1f}%  avg {perf.avg_r:+.2f}R")


@app.command()
def init() -> None:
    """Create data directories and the SQLite schema."""
    try:
        settings = _bootstrap()

        for directory in (settings.database.db_dir, settings.database.log_dir, settings.database.model_path.parent):
            directory.mkdir(parents=True, exist_ok=True)
            typer.echo(f"Created directory: {directory}")

        with SQLiteClient(settings.database.sqlite_path) as sqlite_client:
            sqlite_client.initialize_schema()
            typer.echo("Initialized SQLite schema")

        typer.echo("SwingTrader initialized successfully")
        logger.info("SwingTrader directories and database initialized")

    except Exception as e:
        typer.echo(f"Initialization failed: {e}", err=True)
        raise typer.Exit(code=1)


@app.command()
def status() -> None:
    """Show configuration and stored data."""
    try:
        settings = _bootstrap()

        typer.echo("SwingTrader System Status")
        typer.echo("=" * 50)

        if not settings.database.db_dir.exists():
            raise ConfigError(f"Data directory {settings.database.db_dir} does not exist (run 'init' first)")

        typer.echo(f"Data directory: {settings.database.db_dir}")
        typer.echo(f"SQLite path: {settings.database.sqlite_path}")
        typer.echo(f"FMP API configured: {'YES' if settings.data.fmp_api_key else 'NO'}")
        typer.echo(f"Rate limit: {settings.data.rate_limit_calls} calls / {settings.data.rate_limit_window:.0f}s")
        typer.echo("")

        bt = settings.backtest
        typer.echo(f"Initial capital: ${bt.initial_capital:,.2f}")
        typer.echo(f"Risk per trade: {bt.risk_per_trade * 100:.1f}%")
        typer.echo(f"Entry threshold: {bt.entry_threshold:.0f}%  Min R:R: {bt.min_rr_ratio:.1f}")
        typer.echo(f"Max positions: {bt.max_open_positions}  Max holding: {bt.max_holding_days} days")
        typer.echo("")

        store = ModelStore(settings.database.model_path)
        if store.exists():
            model = store.load()
            typer.echo(f"Exit model: {model.version} trained {model.trained_at:%Y-%m-%d} "
                       f"on {model.training_samples} samples")
        else:
            typer.echo("Exit model: NOT TRAINED")

        if settings.database.sqlite_path.exists():
            with SQLiteClient(settings.database.sqlite_path) as sqlite_client:
                signals = sqlite_client.get_signals(settings.trainer.signal_type)
                runs = sqlite_client.get_backtest_runs(limit=5)
            typer.echo(f"Stored signals: {len(signals)}")
            typer.echo(f"Recent backtests: {len(runs)}")
            for run in runs:
                typer.echo(f"  {run['completed_at'][:19]}  {run['name']:<20} "
                           f"{run['total_trades']:>4} trades  ${run['total_pnl']:,.2f}")

        logger.info("Status check completed")

    except SwingTraderError as e:
        typer.echo(f"{e}", err=True)
        raise typer.Exit(code=1)
    except Exception as e:
        typer.echo(f"Status check failed: {e}", err=True)
        raise typer.Exit(code=1)


@app.command("add-signal")
def add_signal(
    ticker: str,
    signal_date: str = typer.Argument(..., help="Signal date (YYYY-MM-DD)"),
    signal_type: Optional[str] = typer.Option(None, help="Signal type, defaults to the trainer's"),
) -> None:
    """Record a historical entry signal for model training."""
    try:
        settings = _bootstrap()
        day = _parse_date(signal_date, "signal_date")
        with SQLiteClient(settings.database.sqlite_path) as sqlite_client:
            sqlite_client.initialize_schema()
            added = sqlite_client.insert_signal(ticker, day, signal_type or settings.trainer.signal_type)
        typer.echo(f"{'Added' if added else 'Already stored'}: {ticker.upper()} {day}")

    except typer.BadParameter:
        raise
    except Exception as e:
        typer.echo(f"Failed to add signal: {e}", err=True)
        raise typer.Exit(code=1)


@app.command("import-snapshots")
def import_snapshots(path: Path = typer.Argument(..., exists=True, help="JSON list of score snapshots")) -> None:
    """Load point-in-time analysis snapshots used to replay scoring."""
    try:
        settings = _bootstrap()
        rows = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(rows, list):
            raise ConfigError(f"{path} must contain a JSON list")

        with SQLiteClient(settings.database.sqlite_path) as sqlite_client:
            sqlite_client.initialize_schema()
            for row in rows:
                sqlite_client.upsert_snapshot(ScoreResult.model_validate(row))

        typer.echo(f"Imported {len(rows)} snapshots from {path}")

    except Exception as e:
        typer.echo(f"Import failed: {e}", err=True)
        raise typer.Exit(code=1)


@app.command()
def backtest(
    tickers: str = typer.Option(..., help="Comma-separated universe, e.g. AAPL,MSFT"),
    start: str = typer.Option(..., help="Start date (YYYY-MM-DD)"),
    end: str = typer.Option(..., help="End date (YYYY-MM-DD)"),
    name: str = typer.Option("backtest", help="Run name"),
    save: bool = typer.Option(True, help="Store the result in SQLite"),
) -> None:
    """Run a historical simulation over stored analysis snapshots."""
    try:
        settings = _bootstrap()
        config = _backtest_config(
            settings,
            name,
            _parse_tickers(tickers),
            _parse_date(start, "start"),
            _parse_date(end, "end"),
        )

        with SQLiteClient(settings.database.sqlite_path) as sqlite_client, \
                _price_provider(settings) as provider:
            result = BacktestSimulator(config, provider, SnapshotScorer(sqlite_client)).run()
            if save:
                run_id = sqlite_client.save_backtest_result(result)
                typer.echo(f"Saved run {run_id}")

        _print_result(result)

    except typer.BadParameter:
        raise
    except SwingTraderError as e:
        typer.echo(f"{e}", err=True)
        raise typer.Exit(code=1)
    except Exception as e:
        typer.echo(f"Backtest failed: {e}", err=True)
        logger.exception("Backtest command failed")
        raise typer.Exit(code=1)


@app.command("walk-forward")
def walk_forward(
    tickers: str = typer.Option(..., help="Comma-separated universe"),
    start: str = typer.Option(..., help="Start date (YYYY-MM-DD)"),
    end: str = typer.Option(..., help="End date (YYYY-MM-DD)"),
    train_days: int = typer.Option(180, help="Calendar days per train window"),
    test_days: int = typer.Option(60, help="Calendar days per test window"),
    metric: str = typer.Option("sharpe", help="sharpe, sortino, profit_factor or expectancy"),
    workers: int = typer.Option(1, help="Parallel backtests"),
) -> None:
    """Optimize entry parameters on rolling windows and report out-of-sample results."""
    try:
        settings = _bootstrap()
        if metric not in ("sharpe", "sortino", "profit_factor", "expectancy"):
            raise typer.BadParameter(f"unknown metric {metric!r}")

        start_date = _parse_date(start, "start")
        end_date = _parse_date(end, "end")
        config = _backtest_config(settings, "walk-forward", _parse_tickers(tickers), start_date, end_date)
        windows = rolling_windows(start_date, end_date, train_days, test_days)

        if not settings.database.sqlite_path.exists():
            raise ConfigError(f"Database not found at {settings.database.sqlite_path} (run 'init' first)")
        if not settings.data.fmp_api_key:
            raise ConfigError("FMP_API_KEY is not set")

        # one provider, rate limiter and connection per run
        result = WalkForwardOptimizer(
            config,
            lambda: _price_provider(settings),
            lambda: SnapshotScorer(SQLiteClient(settings.database.sqlite_path)),
            windows,
            metric=metric,
            max_workers=workers,
        ).run()

        typer.echo(f"\nWalk-forward ({len(result.windows)} windows, metric={metric})")
        typer.echo("=" * 80)
        for w in result.windows:
            p = w.best_parameters
            typer.echo(
                f"#{w.window.index} test {w.window.test_start}..{w.window.test_end}  "
                f"threshold={p.entry_threshold:.0f} rr={p.min_rr_ratio:.1f} hold={p.max_holding_days}  "
                f"train={w.train_score:.2f}  test trades={w.test_result.metrics.total_trades} "
                f"P&L=${w.test_result.metrics.total_pnl:,.2f}"
            )
        oos = result.out_of_sample_metrics
        typer.echo(f"\nOut-of-sample: {oos.total_trades} trades, win rate {oos.win_rate:.1f}%, "
                   f"expectancy {oos.expectancy:.2f}R, P&L ${oos.total_pnl:,.2f}")
        if result.robust_parameters:
            typer.echo(f"Most chosen parameters: {result.robust_parameters.model_dump()}")

    except typer.BadParameter:
        raise
    except SwingTraderError as e:
        typer.echo(f"{e}", err=True)
        raise typer.Exit(code=1)
    except Exception as e:
        typer.echo(f"Walk-forward failed: {e}", err=True)
        logger.exception("Walk-forward command failed")
        raise typer.Exit(code=1)


@app.command()
def train(
    seed: Optional[int] = typer.Option(None, help="Seed for weight initialization"),
) -> None:
    """Build the exit-timing dataset from stored signals and train the model."""
    try:
        settings = _bootstrap()
        ts = settings.trainer
        cutoff = date.today() - timedelta(days=ts.signal_cutoff_days)

        with SQLiteClient(settings.database.sqlite_path) as sqlite_client:
            signals = sqlite_client.get_signals(ts.signal_type, before=cutoff + timedelta(days=1))
        typer.echo(f"Found {len(signals)} {ts.signal_type} signals up to {cutoff}")

        rate_limiter = RateLimiter(settings.data.rate_limit_calls, settings.data.rate_limit_window)
        with _price_provider(settings, with_rate_limit=False) as provider:
            builder = DatasetBuilder(
                provider,
                rate_limiter,
                benchmark_ticker=settings.evaluator.benchmark_ticker,
                max_observation_day=ts.max_observation_day,
                horizon_days=ts.horizon_days,
                label_threshold_r=ts.label_threshold_r,
            )
            examples = builder.build([(s["ticker"], s["signal_date"]) for s in signals])

        typer.echo(f"Examples: {len(examples)} ({builder.stats['skipped']} signals skipped)")
        for bucket, counts in label_distribution_by_holding_days(examples).items():
            total = counts["exit"] + counts["hold"]
            typer.echo(f"  days {bucket:>2}-{bucket + 4:<2}: {counts['exit'] / total * 100:5.1f}% EXIT (n={total})")

        trainer = ExitModelTrainer(
            learning_rate=ts.learning_rate,
            iterations=ts.iterations,
            regularization=ts.regularization,
            momentum=ts.momentum,
            min_examples=ts.min_examples,
            seed=seed if seed is not None else ts.seed,
        )
        model = trainer.train(examples)
        path = ModelStore(settings.database.model_path).save(model)

        m = model.metrics
        typer.echo(f"\nModel {model.version} saved to {path}")
        typer.echo(f"Accuracy: {m.accuracy:.1%}  Precision: {m.precision:.1%}  "
                   f"Recall: {m.recall:.1%}  F1: {m.f1:.1%}  AUC: {m.auc:.3f}")

    except SwingTraderError as e:
        typer.echo(f"{e}", err=True)
        raise typer.Exit(code=1)
    except Exception as e:
        typer.echo(f"Training failed: {e}", err=True)
        logger.exception("Train command failed")
        raise typer.Exit(code=1)


@app.command()
def evaluate(
    ticker: str,
    entry_date: str = typer.Argument(..., help="Entry date (YYYY-MM-DD)"),
    entry_price: float = typer.Argument(..., help="Entry fill price"),
    stop_loss: Optional[float] = typer.Option(None, help="Stop price, 1.5 ATR below entry if omitted"),
    threshold: Optional[float] = typer.Option(None, help="Base exit threshold"),
) -> None:
    """Recommend hold or exit for an open position."""
    try:
        settings = _bootstrap()
        es = settings.evaluator
        model = ModelStore(settings.database.model_path).load()
        position = OpenPosition(
            ticker=ticker.upper(),
            entry_date=_parse_date(entry_date, "entry_date"),
            entry_price=entry_price,
            stop_loss=stop_loss,
        )

        with _price_provider(settings) as provider:
            evaluator = ExitEvaluator(
                model,
                provider,
                benchmark_ticker=es.benchmark_ticker,
                max_holding_days=es.max_holding_days,
                profit_protection_r=es.profit_protection_r,
            )
            result = evaluator.evaluate(position, threshold if threshold is not None else es.threshold)

        verdict = "EXIT" if result.should_exit else "HOLD"
        typer.echo(f"\n{position.ticker}: {verdict} "
                   f"(p={result.exit_probability:.1%}, {result.confidence}, threshold {result.threshold:.2f})")
        for reason in result.reasons:
            typer.echo(f"  - {reason}")

    except typer.BadParameter:
        raise
    except SwingTraderError as e:
        typer.echo(f"{e}", err=True)
        raise typer.Exit(code=1)
    except Exception as e:
        typer.echo(f"Evaluation failed: {e}", err=True)
        logger.exception("Evaluate command failed")
        raise typer.Exit(code=1)


@app.command("model-info")
def model_info() -> None:
    """Show the trained exit model and its strongest factors."""
    try:
        settings = _bootstrap()
        info = ExitEvaluator(ModelStore(settings.database.model_path).load()).model_info()

        typer.echo(f"Model: {info.version}")
        typer.echo(f"Trained: {info.trained_at:%Y-%m-%d %H:%M} on {info.training_samples} samples")
        typer.echo(f"Accuracy: {info.validation_accuracy:.1%}  AUC: {info.auc:.3f}")
        typer.echo("\nTop exit factors:")
        for factor in info.top_exit_factors:
            typer.echo(f"  {factor.feature:<20} {factor.weight:+.3f}")
        typer.echo("\nTop hold factors:")
        for factor in info.top_hold_factors:
            typer.echo(f"  {factor.feature:<20} {-factor.weight:+.3f}")

    except SwingTraderError as e:
        typer.echo(f"{e}", err=True)
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
