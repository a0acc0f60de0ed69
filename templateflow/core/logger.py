from __future__ import annotations

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from .profiles import ensure_work_dirs


LOGGER_NAME = "templateflow"
LOG_FILE_NAME = "templateflow.log"

LOG_LEVEL_ENV = "TEMPLATEFLOW_LOG_LEVEL"
LOG_MAX_BYTES_ENV = "TEMPLATEFLOW_LOG_MAX_BYTES"
LOG_BACKUPS_ENV = "TEMPLATEFLOW_LOG_BACKUPS"

DEFAULT_MAX_BYTES = 2 * 1024 * 1024
DEFAULT_BACKUPS = 3

_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_LOGGER: logging.Logger | None = None


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value >= 0 else default


def _env_level(default: int = logging.INFO) -> int:
    raw = os.getenv(LOG_LEVEL_ENV, "").strip().upper()
    if not raw:
        return default
    level = logging.getLevelName(raw)
    return level if isinstance(level, int) else default


def configure_logger(
    name: str,
    log_dir: Path,
    *,
    level: int | None = None,
    max_bytes: int | None = None,
    backups: int | None = None,
    stream=None,
) -> logging.Logger:
    """Attach a rotating ``templateflow.log`` file and a console stream to ``name``.

    Unset sizing arguments fall back to ``TEMPLATEFLOW_LOG_*`` environment
    variables and then to the defaults. Handlers installed by an earlier call
    are replaced, so reconfiguring never duplicates output.
    """

    base = Path(log_dir)
    base.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(name)
    logger.setLevel(_env_level() if level is None else level)
    logger.propagate = False
    for handler in list(logger.handlers):
        if getattr(handler, "_templateflow", False):
            logger.removeHandler(handler)
            handler.close()

    fmt = logging.Formatter(fmt=_FORMAT, datefmt=_DATE_FORMAT)

    file_handler = RotatingFileHandler(
        base / LOG_FILE_NAME,
        maxBytes=_env_int(LOG_MAX_BYTES_ENV, DEFAULT_MAX_BYTES) if max_bytes is None else max_bytes,
        backupCount=_env_int(LOG_BACKUPS_ENV, DEFAULT_BACKUPS) if backups is None else backups,
        encoding="utf-8",
    )
    console = logging.StreamHandler(stream or sys.stdout)
    for handler in (file_handler, console):
        handler.setFormatter(fmt)
        handler._templateflow = True  # type: ignore[attr-defined]
        logger.addHandler(handler)
    return logger


def get_logger(log_dir: Path | None = None) -> logging.Logger:
    """Return the shared application logger, writing under ``<work>/logs``."""
    global _LOGGER
    if _LOGGER is not None:
        return _LOGGER

    base = ensure_work_dirs()["logs"] if log_dir is None else Path(log_dir)
    _LOGGER = configure_logger(LOGGER_NAME, base)
    return _LOGGER
