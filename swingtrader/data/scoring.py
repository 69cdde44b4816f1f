from datetime import date, timedelta
from typing import Optional

from loguru import logger

from swingtrader.data.storage.sqlite_client import SQLiteClient
from swingtrader.models import ScoreResult
from swingtrader.utils.exceptions import ScoringError


class SnapshotScorer:
    """
    Replays stored analysis snapshots as a point-in-time scoring function.

    ``score(ticker, as_of)`` returns the most recent snapshot taken on or
    before ``as_of``. Snapshots older than ``max_staleness_days`` are
    rejected rather than reused.
    """

    def __init__(self, client: SQLiteClient, max_staleness_days: int = 3) -> None:
        self.client = client
        self.max_staleness_days = max_staleness_days

    def score(self, ticker: str, as_of: Optional[date] = None) -> ScoreResult:
        as_of = as_of or date.today()
        snapshot = self.client.get_snapshot(ticker, as_of)

        if snapshot is None:
            raise ScoringError(ticker, f"no analysis snapshot on or before {as_of}")
        if snapshot.as_of is not None and as_of - snapshot.as_of > timedelta(days=self.max_staleness_days):
            raise ScoringError(ticker, f"latest snapshot {snapshot.as_of} is stale for {as_of}")

        logger.debug(f"Scored {ticker} as of {as_of}: {snapshot.probability:.0f}%")
        return snapshot

    def close(self) -> None:
        self.client.close()
