"""Logging for a conversion run: rich console output plus a rotating log file."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

LOG_MAX_BYTES = 10 * 1024 * 1024
LOG_BACKUP_COUNT = 3

FILE_FORMAT = "%(asctime)s [%(levelname)s] %(threadName)s %(name)s: %(message)s"

# LogRecord attribute marking per-file status lines the CLI already printed
STATUS_LINE = "status_line"


def _not_status_line(record: logging.LogRecord) -> bool:
    return not getattr(record, STATUS_LINE, False)


def setup_logging(log_level: str, log_file: Path, console: Console | None = None) -> None:
    """Configure the root logger for a run.

    Args:
        log_level: One of LOG_LEVELS, case-insensitive.
        log_file: Run log, normally ``<dest_root>/.s95c/s95c-convert.log``.
            Parent directories are created if needed.
        console: Console shared with the progress bar so log lines are
            printed above it instead of tearing it.
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {log_level}")

    log_file.parent.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(level)

    # Repeated runs in one process (tests) must not stack handlers
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()

    console_handler = RichHandler(
        console=console,
        level=level,
        rich_tracebacks=True,
        show_path=False,
    )
    console_handler.setFormatter(logging.Formatter("%(message)s"))
    console_handler.addFilter(_not_status_line)
    root.addHandler(console_handler)

    # Worker threads log concurrently; the thread name keeps files apart
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=LOG_MAX_BYTES,
        backupCount=LOG_BACKUP_COUNT,
        encoding="utf-8",
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    root.addHandler(file_handler)
