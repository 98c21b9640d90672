"""
Logging utilities for toolkeeper.

Centralizes logger configuration, formatting and retrieval. Every module
logs under the ``toolkeeper`` namespace (``toolkeeper.backends.pyenv``,
``toolkeeper.core.orchestrator``...). User-facing progress goes through
:mod:`toolkeeper.utils.console`; this module is for diagnostics only.

A maintenance run can optionally mirror its log to a file so unattended
``update`` runs (cron, launchd) leave an audit trail.
"""

from __future__ import annotations

import os
import sys
import logging
import threading
from pathlib import Path
from typing import IO, Optional

from toolkeeper.constants import (
    LOG_DATE_FORMAT,
    LOG_DEFAULT_FORMAT,
    LOG_VERBOSE_FORMAT,
)

ROOT_LOGGER_NAME = "toolkeeper"

_logging_configured: bool = False
_lock = threading.Lock()


class ColoredFormatter(logging.Formatter):
    """Logging formatter that colors the level name on capable terminals."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(
        self,
        fmt: str,
        *,
        datefmt: Optional[str] = None,
        use_color: bool = True,
    ) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        if not (self.use_color and self._should_use_color()):
            return super().format(record)

        color = self.COLORS.get(record.levelname)
        if not color:
            return super().format(record)

        # Color a copy so other handlers (e.g. the log file) stay plain
        original = record.levelname
        record.levelname = f"{color}{original}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = original

    @staticmethod
    def _should_use_color() -> bool:
        if os.environ.get("NO_COLOR") or os.environ.get("CI"):
            return False
        try:
            return sys.stderr.isatty()
        except (AttributeError, OSError):
            return False


def setup_logging(
    *,
    level: int = logging.WARNING,
    verbose: bool = False,
    stream: Optional[IO[str]] = None,
    log_file: Optional[Path] = None,
) -> None:
    """Configure the ``toolkeeper`` logger.

    Safe to call repeatedly; existing handlers are replaced under a
    process-wide lock.

    Args:
        level: Console logging level.
        verbose: Use the timestamped format on the console.
        stream: Console stream; defaults to ``sys.stderr``.
        log_file: Optional file receiving every record at DEBUG level.
    """
    global _logging_configured

    with _lock:
        root_logger = logging.getLogger(ROOT_LOGGER_NAME)
        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)
            handler.close()

        console_handler = logging.StreamHandler(stream or sys.stderr)
        console_handler.setLevel(level)
        console_handler.setFormatter(
            ColoredFormatter(
                LOG_VERBOSE_FORMAT if verbose else LOG_DEFAULT_FORMAT,
                datefmt=LOG_DATE_FORMAT,
                use_color=not os.environ.get("NO_COLOR"),
            )
        )
        root_logger.addHandler(console_handler)
        effective = level

        if log_file is not None:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file, encoding="utf-8")
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(
                logging.Formatter(LOG_VERBOSE_FORMAT, datefmt=LOG_DATE_FORMAT)
            )
            root_logger.addHandler(file_handler)
            effective = logging.DEBUG

        root_logger.setLevel(effective)
        root_logger.propagate = False
        _logging_configured = True


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return a logger within the toolkeeper namespace.

    Args:
        name: Logger name, either relative (``"backends.pyenv"``) or
            already qualified (``"toolkeeper.backends.pyenv"``).

    Returns:
        A logger under the ``toolkeeper`` hierarchy.
    """
    if not name or name == ROOT_LOGGER_NAME:
        qualified = ROOT_LOGGER_NAME
    elif name.startswith(ROOT_LOGGER_NAME + "."):
        qualified = name
    else:
        qualified = f"{ROOT_LOGGER_NAME}.{name}"

    logger = logging.getLogger(qualified)

    # Library-safe default when the CLI has not configured logging
    if not logger.handlers and (not logger.parent or not logger.parent.handlers):
        logger.addHandler(logging.NullHandler())

    return logger


def is_logging_configured() -> bool:
    """Return True if toolkeeper logging has been configured."""
    return _logging_configured


def disable_logging() -> None:
    """Disable all toolkeeper logging output."""
    global _logging_configured

    with _lock:
        root_logger = logging.getLogger(ROOT_LOGGER_NAME)
        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)
            handler.close()
        root_logger.addHandler(logging.NullHandler())
        root_logger.setLevel(logging.NOTSET)
        _logging_configured = False
