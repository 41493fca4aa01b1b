# fleet_backup_sync/common/logger.py
"""
Logging setup for the backup agent.

The agent runs unattended, usually under a service manager that keeps stdout
and stderr apart. Console output is therefore split by level:

    DEBUG / INFO         -> stdout   (cycle progress, writes, waits)
    WARNING and above    -> stderr   (backoffs, fatal stops)

Every line carries its level tag, so a failure is visible as an ERROR or
CRITICAL line before the scheduler changes state. An optional file handler
receives everything at or above its own level.

The httpx and httpcore loggers announce every request at INFO; with one
batched request per 100 sub-queries that drowns the cycle summaries, so they
are capped at WARNING.
"""

import logging
import sys
from pathlib import Path
from typing import Final

from fleet_backup_sync.config import LoggingConfig

__all__: list[str] = ['PACKAGE_LOGGER_NAME', 'setup_logger']

PACKAGE_LOGGER_NAME: Final[str] = 'fleet_backup_sync'

LOG_FORMAT: Final[str] = '%(asctime)s - %(levelname)-8s - [%(name)s] - %(message)s'
LOG_DATE_FORMAT: Final[str] = '%Y-%m-%d %H:%M:%S'

NOISY_LIBRARY_LOGGERS: Final[tuple[str, ...]] = ('httpx', 'httpcore')


class _BelowLevelFilter(logging.Filter):
    """Pass only records strictly below a level."""

    def __init__(self, upper_bound: int) -> None:
        super().__init__()
        self._upper_bound: int = upper_bound

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno < self._upper_bound


def _console_handlers(level: int, formatter: logging.Formatter) -> list[logging.Handler]:
    """Build the stdout handler (below WARNING) and stderr handler (WARNING+)."""
    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setLevel(level)
    stdout_handler.addFilter(_BelowLevelFilter(logging.WARNING))

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(max(level, logging.WARNING))

    handlers: list[logging.Handler] = [stdout_handler, stderr_handler]
    for handler in handlers:
        handler.setFormatter(formatter)
    return handlers


def _file_handler(
    log_file_path: Path, level: int, formatter: logging.Formatter
) -> logging.Handler:
    log_file_path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(filename=str(log_file_path), mode='a', encoding='utf-8')
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logger(
    logging_level: int | None = None,
    config: LoggingConfig | None = None,
) -> logging.Logger:
    """
    Configure the 'fleet_backup_sync' package logger.

    Safe to call more than once: handlers from a previous call are removed
    first. The CLI calls it twice, once with defaults so configuration errors
    are logged, then again with the loaded LoggingConfig.

    Args:
        logging_level: Console level when no config is given (default INFO).
        config: Logging section of the agent configuration. Takes precedence
            over logging_level and may enable a log file.

    Returns:
        The package logger. Module loggers inherit its handlers.
    """
    package_logger: logging.Logger = logging.getLogger(PACKAGE_LOGGER_NAME)

    for old_handler in list(package_logger.handlers):
        package_logger.removeHandler(old_handler)
        old_handler.close()

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    console_level: int = (
        config.get_console_level_int()
        if config is not None
        else (logging_level if logging_level is not None else logging.INFO)
    )
    handler_levels: list[int] = [console_level]
    for console_handler in _console_handlers(console_level, formatter):
        package_logger.addHandler(console_handler)

    file_level: int | None = config.get_file_level_int() if config is not None else None
    if config is not None and config.file_path is not None and file_level is not None:
        package_logger.addHandler(_file_handler(config.file_path, file_level, formatter))
        handler_levels.append(file_level)

    package_logger.setLevel(min(handler_levels))

    for library_name in NOISY_LIBRARY_LOGGERS:
        logging.getLogger(library_name).setLevel(logging.WARNING)

    return package_logger
