"""
Structured logging tests.
"""
import json
import logging

from futures_backtest.logging import CustomJsonFormatter, LogContext, RunContextFilter


def make_record(msg="position_opened", **extra):
    record = logging.LogRecord("futures_backtest.test", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestRunContext:
    """Test run id propagation into log records."""

    def test_filter_injects_run_id(self):
        LogContext.set_run_id("bt_ctx")
        try:
            record = make_record()
            RunContextFilter().filter(record)
        finally:
            LogContext.clear()

        assert record.run_id == "bt_ctx"

    def test_explicit_run_id_wins(self):
        LogContext.set_run_id("bt_ctx")
        try:
            record = make_record(run_id="bt_explicit")
            RunContextFilter().filter(record)
        finally:
            LogContext.clear()

        assert record.run_id == "bt_explicit"

    def test_no_context_no_field(self):
        record = make_record()
        RunContextFilter().filter(record)

        assert not hasattr(record, "run_id")


class TestJsonFormatter:
    """Test JSON log output."""

    def test_fields(self):
        formatter = CustomJsonFormatter(fmt="%(asctime)s %(levelname)s %(name)s %(message)s")
        record = make_record(run_id="bt_1", symbol="BTCUSDT", cycle=4)

        data = json.loads(formatter.format(record))

        assert data["message"] == "position_opened"
        assert data["level"] == "INFO"
        assert data["logger"] == "futures_backtest.test"
        assert data["run_id"] == "bt_1"
        assert data["symbol"] == "BTCUSDT"
        assert data["cycle"] == 4
        assert "timestamp" in data
