"""Logging context management with backtest run IDs.

Every backtest run executes on its own asyncio task. The run ID is stored in a
context variable so that all logs emitted from inside a run (account, runner,
sinks) carry it without threading the ID through every call.

Usage:
    from futures_backtest.logging.log_context import LogContext

    LogContext.set_run_id("bt_1700000000")
    logger.info("cycle_completed")  # record carries run_id="bt_1700000000"
"""

import logging
from contextvars import ContextVar
from typing import Optional


# Propagates into tasks created after it is set
run_id_var: ContextVar[Optional[str]] = ContextVar('run_id', default=None)


class LogContext:
    """Manage logging context for backtest runs."""

    @staticmethod
    def set_run_id(run_id: str):
        """Set run ID for current context.

        Args:
            run_id: Backtest run identifier
        """
        run_id_var.set(run_id)

    @staticmethod
    def get_run_id() -> Optional[str]:
        """Get run ID from current context.

        Returns:
            Run ID or None if not inside a run
        """
        return run_id_var.get()

    @staticmethod
    def clear():
        """Reset run ID for current context."""
        run_id_var.set(None)


class RunContextFilter(logging.Filter):
    """Add run ID to log records.

    Example:
        >>> handler.addFilter(RunContextFilter())
        >>> LogContext.set_run_id("bt_42")
        >>> logger.info("Test")  # Log will include run_id="bt_42"
    """

    def filter(self, record):
        run_id = LogContext.get_run_id()
        if run_id and not hasattr(record, 'run_id'):
            record.run_id = run_id
        return True
