"""Structured logging helpers for backtest runs."""

from .json_logger import CustomJsonFormatter
from .log_context import LogContext, RunContextFilter, run_id_var

__all__ = [
    "CustomJsonFormatter",
    "LogContext",
    "RunContextFilter",
    "run_id_var",
]
