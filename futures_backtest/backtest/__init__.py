"""Backtesting Module - Simulated futures account, runs and reporting.

Components:
- SimulatedAccount: Cash/margin ledger with fees, slippage and liquidation
- BacktestRunner: Replays klines through a decision source for one run
- BacktestManager: Creates, starts, stops and queries concurrent runs
- calculate_metrics: Returns, drawdown, Sharpe/Sortino and trade statistics
- BacktestReport: Markdown and JSON summaries
- HistoricalDataLoader: Local JSON/CSV kline files and cache
- EquitySink / OrderSink: Write-only persistence of equity, orders and fills

Example Usage:
    ```python
    from futures_backtest.backtest import BacktestManager, BacktestReport

    manager = BacktestManager(decision_source, equity_sink=sink, order_sink=sink)
    run_id = manager.create(config)
    manager.load_klines(run_id, "BTCUSDT", klines)
    await manager.launch(run_id)
    await manager.wait(run_id)

    result = manager.get_result(run_id)
    print(f"Return: {result.metrics.total_return_pct:.2f}%")
    BacktestReport().generate_markdown(result, Path("backtest_report.md"))
    ```

Modeling limits:
- Market orders only, filled at the candle close (plus slippage)
- Liquidation price assumes 100% maintenance margin loss (entry * (1 -/+ 1/leverage))
- No funding payments
"""

from .account import AccountState, CloseResult, EquityBreakdown, OpenResult, SimulatedAccount
from .data_loader import HistoricalDataLoader
from .decision_source import BaseDecisionSource, ReplayDecisionSource
from .manager import BacktestManager
from .metrics import Metrics, SymbolStats, calculate_metrics
from .reports import BacktestReport
from .runner import BacktestResult, BacktestRunner
from .sinks import (
    EquitySink,
    EquitySnapshot,
    FillRecord,
    InMemorySink,
    OrderRecord,
    OrderSink,
)

__all__ = [
    "AccountState",
    "CloseResult",
    "EquityBreakdown",
    "OpenResult",
    "SimulatedAccount",
    "HistoricalDataLoader",
    "BaseDecisionSource",
    "ReplayDecisionSource",
    "BacktestManager",
    "Metrics",
    "SymbolStats",
    "calculate_metrics",
    "BacktestReport",
    "BacktestResult",
    "BacktestRunner",
    "EquitySink",
    "EquitySnapshot",
    "FillRecord",
    "InMemorySink",
    "OrderRecord",
    "OrderSink",
]
