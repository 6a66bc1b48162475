"""Logging utilities.

The aggregator is meant to run from cron or a systemd timer, so by default it
logs to the console and lets the scheduler capture output. A rotating log file
can be added with --log-file:
logs/
└── wx_station_aggregator.log
"""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

DEFAULT_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"


def get_logger(name: str) -> logging.Logger:
    """Get a named logger.

    Args:
        name: Name for the logger, typically __name__ of the calling module

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)


def setup_run_logging(
    verbose: bool = False,
    log_file: Optional[Union[str, Path]] = None,
) -> None:
    """Set up logging for one aggregation run.

    Handles fallback to console-only logging if file logging fails.

    Args:
        verbose: Whether to use verbose (DEBUG) logging, which includes every
            InfluxQL query issued
        log_file: Optional path to a rotating log file, in addition to console
    """
    log_level = logging.DEBUG if verbose else logging.INFO

    if log_file is None:
        configure_logging(level=log_level, log_file=None, console=True)
        return

    try:
        configure_logging(level=log_level, log_file=log_file, console=True)
        get_logger(__name__).debug(f"Logging to {log_file}")
    except OSError as e:
        # Use print since logger may not be configured yet
        print(f"WARNING: Could not configure file logging: {e}")
        print("WARNING: Falling back to console-only logging")
        configure_logging(level=log_level, console=True)


def configure_logging(
    level: int = logging.INFO,
    log_file: Optional[Union[str, Path]] = None,
    max_size_mb: int = 1,
    backup_count: int = 3,
    console: bool = True,
    format_str: Optional[str] = None
) -> None:
    """Configure logging with flexible options.

    Args:
        level: Logging level (default: INFO)
        log_file: Path to log file (optional)
        max_size_mb: Maximum log file size in MB before rotation
        backup_count: Number of backup log files to keep
        console: Whether to log to console
        format_str: Optional custom log format
    """
    handlers = []

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=max_size_mb * 1024 * 1024,
            backupCount=backup_count
        )
        handlers.append(file_handler)

    if console:
        handlers.append(logging.StreamHandler())

    if format_str is None:
        format_str = DEFAULT_FORMAT

    # force=True so a second call (e.g. the file logging fallback) replaces
    # handlers instead of being silently ignored
    logging.basicConfig(
        level=level,
        format=format_str,
        handlers=handlers,
        force=True
    )
