# src/taski_sync/logging_setup.py

from __future__ import annotations

import logging
import sys
from pathlib import Path


class _ConsoleNoiseFilter(logging.Filter):
    """Console shows taski_sync logs; reminder ticks and everything else only when they matter."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.name.startswith("taski_sync.reminders."):
            return record.levelno >= logging.WARNING
        if record.name.startswith("taski_sync."):
            return True
        # py.warnings, asyncio and anything else.
        return record.levelno >= logging.ERROR


def setup_logging(
    *,
    log_dir: str | Path = ".local/taski",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
) -> Path:
    """Console handler for the REPL plus a full DEBUG log at <log_dir>/taski.log. Returns the log file path."""
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "taski.log"

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    ch = logging.StreamHandler(sys.stderr)
    ch.setLevel(console_level)
    ch.setFormatter(fmt)
    ch.addFilter(_ConsoleNoiseFilter())
    root.addHandler(ch)

    fh = logging.FileHandler(str(log_file), encoding="utf-8")
    fh.setLevel(file_level)
    fh.setFormatter(fmt)
    root.addHandler(fh)

    logging.captureWarnings(True)

    logging.getLogger("asyncio").setLevel(logging.WARNING)
    return log_file
