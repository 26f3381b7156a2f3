"""Structured JSON log formatter.

Uses python-json-logger so backtest logs can be parsed and filtered by run,
symbol and simulation cycle.
"""

from pythonjsonlogger import jsonlogger


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter with backtest context fields."""

    def add_fields(self, log_record, record, message_dict):
        """Add custom fields to log records.

        Args:
            log_record: Dictionary to be formatted as JSON
            record: LogRecord instance from logging module
            message_dict: Dictionary containing the log message
        """
        super().add_fields(log_record, record, message_dict)

        log_record['timestamp'] = self.formatTime(record, self.datefmt)
        log_record['level'] = record.levelname
        log_record['logger'] = record.name

        # Backtest context if present
        if hasattr(record, 'run_id'):
            log_record['run_id'] = record.run_id
        if hasattr(record, 'symbol'):
            log_record['symbol'] = record.symbol
        if hasattr(record, 'cycle'):
            log_record['cycle'] = record.cycle
