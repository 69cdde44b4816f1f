import json
import sqlite3
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Optional
from uuid import uuid4

from loguru import logger

from swingtrader.models import BacktestResult, ScoreResult


class SQLiteClient:
    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        if str(db_path) != ":memory:":
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(str(db_path))
        self.conn.row_factory = sqlite3.Row
        logger.info(f"Connected to SQLite at {db_path}")

    def initialize_schema(self) -> None:
        cursor = self.conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS signals (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                ticker TEXT NOT NULL,
                signal_date TEXT NOT NULL,
                signal_type TEXT NOT NULL,
                source TEXT,
                created_at TEXT NOT NULL,
                UNIQUE (ticker, signal_date, signal_type)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS analysis_snapshots (
                ticker TEXT NOT NULL,
                as_of TEXT NOT NULL,
                price REAL NOT NULL,
                probability REAL NOT NULL,
                trade_type TEXT NOT NULL,
                stop_loss REAL NOT NULL,
                take_profit_levels TEXT NOT NULL,
                sector TEXT,
                regime TEXT,
                mtf_alignment TEXT,
                volume_confirms INTEGER,
                reward_risk REAL,
                PRIMARY KEY (ticker, as_of)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS backtest_runs (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                status TEXT NOT NULL,
                started_at TEXT NOT NULL,
                completed_at TEXT NOT NULL,
                total_trades INTEGER NOT NULL,
                total_pnl REAL NOT NULL,
                sharpe_ratio REAL NOT NULL,
                result_json TEXT NOT NULL
            )
        """)

        self.conn.commit()
        logger.info("SQLite schema initialized")

    def insert_signal(
        self,
        ticker: str,
        signal_date: date,
        signal_type: str = "POLITICIAN",
        source: Optional[str] = None,
    ) -> bool:
        cursor = self.conn.cursor()
        cursor.execute("""
            INSERT OR IGNORE INTO signals (ticker, signal_date, signal_type, source, created_at)
            VALUES (?, ?, ?, ?, ?)
        """, [
            ticker.upper(),
            signal_date.isoformat(),
            signal_type,
            source,
            datetime.now(timezone.utc).isoformat(),
        ])
        self.conn.commit()
        return cursor.rowcount > 0

    def get_signals(
        self,
        signal_type: str = "POLITICIAN",
        before: Optional[date] = None,
    ) -> list[dict[str, Any]]:
        query = "SELECT ticker, signal_date, signal_type, source FROM signals WHERE signal_type = ?"
        params: list[Any] = [signal_type]
        if before is not None:
            query += " AND signal_date < ?"
            params.append(before.isoformat())
        query += " ORDER BY signal_date ASC, ticker ASC"

        cursor = self.conn.cursor()
        cursor.execute(query, params)
        rows = []
        for row in cursor.fetchall():
            item = dict(row)
            item["signal_date"] = date.fromisoformat(item["signal_date"])
            rows.append(item)
        return rows

    def upsert_snapshot(self, score: ScoreResult) -> None:
        if score.as_of is None:
            raise ValueError(f"Snapshot for {score.ticker} needs an as_of date")
        cursor = self.conn.cursor()
        cursor.execute("""
            INSERT INTO analysis_snapshots (
                ticker, as_of, price, probability, trade_type, stop_loss,
                take_profit_levels, sector, regime, mtf_alignment,
                volume_confirms, reward_risk
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(ticker, as_of) DO UPDATE SET
                price = excluded.price,
                probability = excluded.probability,
                trade_type = excluded.trade_type,
                stop_loss = excluded.stop_loss,
                take_profit_levels = excluded.take_profit_levels,
                sector = excluded.sector,
                regime = excluded.regime,
                mtf_alignment = excluded.mtf_alignment,
                volume_confirms = excluded.volume_confirms,
                reward_risk = excluded.reward_risk
        """, [
            score.ticker,
            score.as_of.isoformat(),
            score.price,
            score.probability,
            score.trade_type,
            score.stop_loss,
            json.dumps(score.take_profit_levels),
            score.sector,
            score.regime,
            score.multi_timeframe_alignment,
            None if score.volume_confirms is None else int(score.volume_confirms),
            score.reward_risk,
        ])
        self.conn.commit()

    def get_snapshot(self, ticker: str, as_of: date) -> Optional[ScoreResult]:
        """Latest snapshot for ``ticker`` dated on or before ``as_of``."""
        cursor = self.conn.cursor()
        cursor.execute("""
            SELECT * FROM analysis_snapshots
            WHERE ticker = ? AND as_of <= ?
            ORDER BY as_of DESC
            LIMIT 1
        """, [ticker.upper(), as_of.isoformat()])
        row = cursor.fetchone()
        if row is None:
            return None

        return ScoreResult(
            ticker=row["ticker"],
            as_of=date.fromisoformat(row["as_of"]),
            price=row["price"],
            probability=row["probability"],
            trade_type=row["trade_type"],
            stop_loss=row["stop_loss"],
            take_profit_levels=json.loads(row["take_profit_levels"]),
            sector=row["sector"] or "Unknown",
            regime=row["regime"],
            multi_timeframe_alignment=row["mtf_alignment"],
            volume_confirms=None if row["volume_confirms"] is None else bool(row["volume_confirms"]),
            reward_risk=row["reward_risk"],
        )

    def save_backtest_result(self, result: BacktestResult) -> str:
        run_id = str(uuid4())
        cursor = self.conn.cursor()
        cursor.execute("""
            INSERT INTO backtest_runs (
                id, name, status, started_at, completed_at,
                total_trades, total_pnl, sharpe_ratio, result_json
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, [
            run_id,
            result.config.name,
            result.status,
            result.started_at.isoformat(),
            result.completed_at.isoformat(),
            result.metrics.total_trades,
            result.metrics.total_pnl,
            result.metrics.sharpe_ratio,
            result.model_dump_json(),
        ])
        self.conn.commit()
        logger.info(f"Saved backtest run {run_id} ({result.config.name})")
        return run_id

    def get_backtest_runs(self, limit: int = 20) -> list[dict[str, Any]]:
        cursor = self.conn.cursor()
        cursor.execute("""
            SELECT id, name, status, started_at, completed_at, total_trades, total_pnl, sharpe_ratio
            FROM backtest_runs
            ORDER BY completed_at DESC
            LIMIT ?
        """, [limit])
        return [dict(row) for row in cursor.fetchall()]

    def load_backtest_result(self, run_id: str) -> Optional[BacktestResult]:
        cursor = self.conn.cursor()
        cursor.execute("SELECT result_json FROM backtest_runs WHERE id = ?", [run_id])
        row = cursor.fetchone()
        if row is None:
            return None
        return BacktestResult.model_validate_json(row["result_json"])

    def close(self) -> None:
        self.conn.close()
        logger.info("Closed SQLite connection")

    def __enter__(self) -> "SQLiteClient":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
