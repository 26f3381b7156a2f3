"""
Report generation tests.
"""
import json
import math

import pytest
import pytest_asyncio

from futures_backtest.backtest.reports import BacktestReport
from futures_backtest.backtest.runner import BacktestRunner

BTC = "BTCUSDT"


@pytest_asyncio.fixture
async def finished_result(base_config, kline_factory, scripted_source):
    source = scripted_source({
        (1, BTC): [{"action": "buy", "confidence": 80, "reasoning": "breakout"}],
        (2, BTC): [{"action": "close"}],
    })
    runner = BacktestRunner(base_config, source)
    runner.load_klines(BTC, kline_factory([100, 110, 110]))
    await runner.start()
    return runner.result()


class TestMarkdown:
    """Test markdown reports."""

    @pytest.mark.asyncio
    async def test_sections(self, finished_result):
        md = BacktestReport().generate_markdown(finished_result)

        assert md.startswith("# Backtest Report: BTCUSDT")
        assert "`bt_test`" in md
        assert "## Performance Metrics" in md
        assert "## Per-Symbol Breakdown" in md
        assert "## Top 10 Closing Trades" in md
        assert "| **Profit Factor** | ∞ |" in md
        assert "## Liquidations" not in md

    @pytest.mark.asyncio
    async def test_written_to_path(self, finished_result, tmp_path):
        path = tmp_path / "reports" / "bt_test.md"

        md = BacktestReport().generate_markdown(finished_result, path)

        assert path.read_text() == md


class TestJsonSummary:
    """Test JSON summaries."""

    @pytest.mark.asyncio
    async def test_summary_is_valid_json(self, finished_result):
        summary = BacktestReport().generate_json_summary(finished_result)

        assert math.isinf(finished_result.metrics.profit_factor)
        assert summary["trades"]["profit_factor"] is None
        assert summary["returns"]["total_return"] == pytest.approx(500.0)
        assert summary["period"]["cycles"] == 3
        assert summary["status"] == "completed"
        json.dumps(summary, allow_nan=False)
