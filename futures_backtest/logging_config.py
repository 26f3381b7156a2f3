"""
Structured logging configuration for futures-backtest.

Provides JSON-formatted logs with run context for batch backtests.
"""

import logging
import sys

from .logging.json_logger import CustomJsonFormatter
from .logging.log_context import RunContextFilter


def setup_logging(level: str = "INFO", use_json: bool = True) -> logging.Logger:
    """
    Configure structured logging for backtests.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        use_json: If True, output JSON format; if False, use standard text format

    Returns:
        Configured root logger

    Example:
        >>> logger = setup_logging(level="INFO", use_json=True)
        >>> logger.info("position_opened", extra={"symbol": "BTCUSDT", "side": "long"})
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    # Remove existing handlers to avoid duplicates
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, level.upper()))
    console_handler.addFilter(RunContextFilter())

    if use_json:
        console_handler.setFormatter(
            CustomJsonFormatter(
                fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
                datefmt="%Y-%m-%dT%H:%M:%S",
            )
        )
    else:
        console_handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )

    root_logger.addHandler(console_handler)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger for a specific module.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)
