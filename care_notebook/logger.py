"""Logging setup for the care notebook service.

Modules log through children of the package logger (`get_logger(__name__)`),
so one call to `setup_logger` configures all of them.
"""

import logging
import sys
from pathlib import Path

from care_notebook import config

LOGGER_NAME = "care_notebook"
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _logged_files(log: logging.Logger) -> set[Path]:
    return {
        Path(h.baseFilename)
        for h in log.handlers
        if isinstance(h, logging.FileHandler)
    }


def setup_logger(
    level: int | str | None = None,
    log_file: Path | None = None,
) -> logging.Logger:
    """
    Configure and return the package logger.

    Args:
        level: Logging level. Defaults to CARE_LOG_LEVEL.
        log_file: Also log to this file. Defaults to CARE_LOG_FILE.

    Calling it again (one app per test, say) updates the level and adds a
    handler for a file not yet logged to; the stderr handler is added once.
    """
    log = logging.getLogger(LOGGER_NAME)
    log.setLevel(level if level is not None else config.log_level())
    if log_file is None:
        log_file = config.log_file()

    fmt = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    if not any(type(h) is logging.StreamHandler for h in log.handlers):
        h = logging.StreamHandler(sys.stderr)
        h.setFormatter(fmt)
        log.addHandler(h)

    if log_file:
        log_file = Path(log_file).absolute()
        if log_file not in _logged_files(log):
            log_file.parent.mkdir(parents=True, exist_ok=True)
            fh = logging.FileHandler(log_file, encoding="utf-8")
            fh.setFormatter(fmt)
            log.addHandler(fh)

    return log


def get_logger(module: str = LOGGER_NAME) -> logging.Logger:
    """Return the package logger, or its child for `module`."""
    if module == LOGGER_NAME or module.startswith(f"{LOGGER_NAME}."):
        return logging.getLogger(module)
    return logging.getLogger(f"{LOGGER_NAME}.{module}")
