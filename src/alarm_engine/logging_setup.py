"""Logging setup for the alarm-engine process."""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: str = "INFO", log_file: str | Path | None = None) -> None:
    """Log to stderr, plus a rotating file when ``log_file`` is given."""
    console = logging.StreamHandler(sys.stderr)
    console.setLevel(logging.DEBUG)
    console.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))

    # File handler (best-effort)
    handlers: list[logging.Handler] = [console]
    if log_file:
        path = Path(log_file).expanduser()
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                path,
                maxBytes=5 * 1024 * 1024,
                backupCount=2,
            )
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
            handlers.append(file_handler)
        except OSError as e:
            print(f"Cannot open log file {path}: {e}", file=sys.stderr)

    logging.basicConfig(level=logging.WARNING, handlers=handlers, force=True)
    logging.getLogger("alarm-engine").setLevel(level.upper())
    for noisy in ("aiohttp", "asyncio"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
