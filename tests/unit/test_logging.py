import json
import sys
from pathlib import Path

import pytest
from loguru import logger

from swingtrader.utils.logging import EVENTS_FILE, log_event, setup_logging


@pytest.fixture
def log_dir(tmp_path: Path):
    yield tmp_path / "logs"
    logger.remove()
    logger.configure(extra={})
    logger.add(sys.stderr)


def test_events_file_only_gets_events(log_dir):
    setup_logging("DEBUG", log_dir)

    logger.info("plain message")
    log_event("backtest_completed", "run finished", trades=3, total_pnl=125.5)
    logger.remove()

    text = (log_dir / "swingtrader.log").read_text()
    assert "plain message" in text
    assert "run finished" in text

    events = [json.loads(line) for line in (log_dir / EVENTS_FILE).read_text().splitlines()]
    assert len(events) == 1
    record = events[0]["record"]
    assert record["message"] == "run finished"
    assert record["extra"]["event"] == "backtest_completed"
    assert record["extra"]["trades"] == 3
    assert record["extra"]["total_pnl"] == 125.5


def test_run_name_in_file_lines(log_dir):
    setup_logging("INFO", log_dir)

    with logger.contextualize(run="wf-w0-train-1"):
        logger.info("inside run")
    logger.info("outside run")
    logger.remove()

    lines = (log_dir / "swingtrader.log").read_text().splitlines()
    assert any("| wf-w0-train-1 |" in line and "inside run" in line for line in lines)
    assert any("| - |" in line and "outside run" in line for line in lines)


def test_level_filters_file_sink(log_dir):
    setup_logging("WARNING", log_dir)

    logger.info("quiet")
    logger.warning("loud")
    logger.remove()

    text = (log_dir / "swingtrader.log").read_text()
    assert "quiet" not in text
    assert "loud" in text
