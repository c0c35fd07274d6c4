"""Logging setup for the controller and CLI."""

from __future__ import annotations

import logging as py_logging
import sys
from pathlib import Path
from typing import TextIO

ROOT_LOGGER = "sessionmux"
LOG_LEVELS = {
    "DEBUG": py_logging.DEBUG,
    "INFO": py_logging.INFO,
    "WARN": py_logging.WARNING,
    "ERROR": py_logging.ERROR,
}
DEFAULT_LOG_PATH = Path("~/.config/sessionmux/logs/sessionmux.log")
_FALLBACK_LOG_PATH = Path(".sessionmux/logs/sessionmux.log")
_STREAM_FORMAT = "%(levelname)s %(name)s %(message)s"
_FILE_FORMAT = "%(asctime)s %(levelname)s %(name)s:%(lineno)d %(message)s"


def normalize_level(level: str) -> str:
    normalized = level.strip().upper()
    if normalized == "WARNING":
        return "WARN"
    return normalized if normalized in LOG_LEVELS else "INFO"


def default_log_path() -> Path:
    try:
        return DEFAULT_LOG_PATH.expanduser().resolve()
    except RuntimeError:
        # No resolvable home directory (stripped container environments).
        return (Path.cwd() / _FALLBACK_LOG_PATH).resolve()


def _file_handler(log_file: str | Path) -> py_logging.Handler | None:
    path = Path(log_file)
    try:
        path = path.expanduser()
    except RuntimeError:
        pass
    path = path.resolve()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = py_logging.FileHandler(path, encoding="utf-8")
    except OSError:
        return None
    handler.setLevel(py_logging.DEBUG)
    handler.setFormatter(py_logging.Formatter(_FILE_FORMAT))
    return handler


def configure_logging(
    level: str = "INFO",
    stream: TextIO | None = None,
    *,
    log_file: str | Path | None = None,
) -> py_logging.Logger:
    """Install one stream handler and an optional file handler on the package logger.

    Repeated calls replace earlier handlers, so the CLI can reconfigure once
    the real level is known. The file handler always records DEBUG so a
    terminal session can be reconstructed after the fact; an unwritable log
    file is skipped rather than failing startup.
    """
    resolved = LOG_LEVELS[normalize_level(level)]
    logger = py_logging.getLogger(ROOT_LOGGER)
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
        existing.close()

    stream_handler = py_logging.StreamHandler(stream or sys.stderr)
    stream_handler.setLevel(resolved)
    stream_handler.setFormatter(py_logging.Formatter(_STREAM_FORMAT))
    logger.addHandler(stream_handler)

    file_handler = _file_handler(log_file) if log_file else None
    if file_handler is not None:
        logger.addHandler(file_handler)

    logger.setLevel(py_logging.DEBUG if file_handler is not None else resolved)
    logger.propagate = False
    return logger
