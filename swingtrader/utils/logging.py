"""
Loguru setup for the CLI and long-running jobs.

Three sinks are installed: coloured stderr, a rotating plain-text log and
``events.jsonl``, which only receives records logged through
:func:`log_event` (run summaries, trained models) as one JSON object per
line.
"""
import sys
from pathlib import Path
from typing import Any

from loguru import logger

EVENTS_FILE = "events.jsonl"


def _is_event(record: dict) -> bool:
    return "event" in record["extra"]


def setup_logging(log_level: str = "INFO", log_dir: Path = Path("data/logs")) -> None:
    logger.remove()
    logger.configure(extra={"run": "-"})

    log_dir.mkdir(parents=True, exist_ok=True)

    stderr_format = (
        "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
        "<level>{level: <8}</level> | "
        "<magenta>{extra[run]}</magenta> | "
        "<cyan>{module}</cyan> | "
        "{message}"
    )

    file_format = (
        "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
        "{level: <8} | "
        "{extra[run]} | "
        "{module}:{function}:{line} | "
        "{message}"
    )

    logger.add(sys.stderr, format=stderr_format, level=log_level, colorize=True)

    logger.add(
        log_dir / "swingtrader.log",
        format=file_format,
        level=log_level,
        rotation="10 MB",
        retention="7 days",
        compression="zip",
        colorize=False,
    )

    logger.add(
        log_dir / EVENTS_FILE,
        level="INFO",
        filter=_is_event,
        serialize=True,
        rotation="50 MB",
    )

    logger.info(f"Logging initialized at {log_level} level")


def log_event(event: str, message: str, **context: Any) -> None:
    """Log ``message`` and record ``context`` as a structured event."""
    logger.bind(event=event, **context).info(message)
