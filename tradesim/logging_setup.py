"""Centralized logging configuration with optional file rotation."""
import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional

from tradesim.config.settings import get_settings

LOG_FORMAT = '%(asctime)s | %(levelname)-8s | %(name)s | %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def teardown_logging(logger: Optional[logging.Logger] = None) -> None:
    """Flush, detach, and close all handlers from the provided logger."""
    target = logger or logging.getLogger()
    for handler in list(target.handlers):
        target.removeHandler(handler)
        handler.flush()
        handler.close()


def setup_logging(
    log_level: Optional[str] = None,
    logs_dir: Optional[Path] = None,
    console_output: bool = True,
    log_file_name: str = 'backtest.log',
) -> logging.Logger:
    """
    Set up root logging for backtest runs.

    Library modules only ever call logging.getLogger(__name__); this function
    is for the application embedding the core (scripts, notebooks, tests).

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
                   Defaults to the LOG_LEVEL setting (get_settings().log_level).
        logs_dir: Directory for a rotating log file. If None, no file handler
                  is attached.
        console_output: Whether to output logs to stdout
        log_file_name: File name inside logs_dir.

    Returns:
        Configured root logger
    """
    if log_level is None:
        log_level = get_settings().log_level

    logger = logging.getLogger()
    logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    # Replace handlers from a previous setup so repeated calls don't duplicate output
    teardown_logging(logger)

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    if logs_dir is not None:
        logs_dir = Path(logs_dir)
        logs_dir.mkdir(parents=True, exist_ok=True)
        log_file = logs_dir / log_file_name
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=5 * 1024 * 1024,  # 5 MB
            backupCount=3,
            encoding='utf-8',
            delay=True,
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logger.level)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    logger.debug(f"Logging initialized at {log_level} level")
    return logger
