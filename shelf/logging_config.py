"""Logging configuration for Shelfkeeper.

Both handlers hang off the root logger:
- ``shelfkeeper.log`` in the data directory, rotated at 10MB with 5 backups
- a Rich console handler filtered at the configured level

Audit events are ordinary records carrying ``event`` and ``audit`` extras;
``AuditFormatter`` renders the fields at output time.
"""

from __future__ import annotations

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme

LOG_FILE_NAME = "shelfkeeper.log"
FILE_FORMAT = "%(asctime)s - %(levelname)-8s - %(name)s - %(message)s"

# Chatty libraries held at WARNING whatever the configured level
QUIET_LOGGERS = ("sqlalchemy.engine", "aiosqlite", "httpx", "httpcore")

_logging_initialized = False


def _get_data_dir() -> Path:
    """Return the data directory (same as config.DATA_DIR without circular import)."""
    env = os.environ.get("DATA_DIR")
    if env:
        return Path(env)
    if getattr(sys, "frozen", False):
        return Path(sys.executable).resolve().parent
    return Path(__file__).resolve().parents[1]


class AuditFormatter(logging.Formatter):
    """Formatter that appends ``key=value`` pairs for audit records."""

    def formatMessage(self, record: logging.LogRecord) -> str:
        text = super().formatMessage(record)
        fields = getattr(record, "audit", None)
        if not fields:
            return text
        details = " ".join(f"{key}={value}" for key, value in sorted(fields.items()))
        return f"{text} {details}"


def _file_handler(log_file: Path) -> logging.Handler:
    handler = RotatingFileHandler(
        log_file,
        maxBytes=10 * 1024 * 1024,
        backupCount=5,
        encoding="utf-8",
    )
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(AuditFormatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    return handler


def _console_handler(level: int) -> logging.Handler:
    console = Console(theme=Theme({"logging.level.info": "bold cyan"}))
    handler = RichHandler(console=console, rich_tracebacks=True, show_time=False, show_path=False)
    handler.setLevel(level)
    handler.setFormatter(AuditFormatter("%(message)s"))
    return handler


def setup_logging(log_level: str = "INFO", log_dir: Optional[Path] = None) -> None:
    """Attach the file and console handlers once per process.

    Args:
        log_level: console threshold (DEBUG, INFO, WARNING, ERROR); the file
            always gets DEBUG
        log_dir: where ``shelfkeeper.log`` goes, defaulting to the data dir
    """
    global _logging_initialized

    if _logging_initialized:
        return

    log_dir = Path(log_dir) if log_dir is not None else _get_data_dir()
    log_dir.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.addHandler(_file_handler(log_dir / LOG_FILE_NAME))
    root_logger.addHandler(_console_handler(getattr(logging, log_level.upper(), logging.INFO)))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    # Alembic installs its own handlers from alembic.ini; route it through ours
    alembic_logger = logging.getLogger("alembic")
    alembic_logger.handlers = []
    alembic_logger.propagate = True

    _logging_initialized = True


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def audit(logger: logging.Logger, event: str, level: int = logging.INFO, **fields: Any) -> None:
    """Emit one audit event; ``AuditFormatter`` renders ``fields`` on output."""
    logger.log(level, event, extra={"event": event, "audit": fields})
