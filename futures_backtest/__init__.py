"""Futures backtesting for LLM trading decisions.

Replays historical klines through an external decision source against a
simulated USDT-margined futures account, and reports equity curves, trade logs
and performance metrics.

Main components:
    - BacktestManager: Registry of concurrent runs
    - BacktestRunner: Drives one run over its klines
    - SimulatedAccount: Cash, margin, fees, slippage and liquidation
    - BacktestConfig: Run parameters, optionally from BACKTEST_* env vars
    - BaseDecisionSource: Interface for whatever produces decisions

Example usage:
    >>> from futures_backtest import BacktestConfig, BacktestManager
    >>>
    >>> manager = BacktestManager(decision_source)
    >>> run_id = manager.create(BacktestConfig(symbols=["BTCUSDT"]))
    >>> manager.load_klines(run_id, "BTCUSDT", klines)
    >>> await manager.launch(run_id)
    >>> await manager.wait(run_id)
    >>> manager.get_metrics(run_id).total_return_pct
"""

from .config import BacktestConfig
from .backtest.account import SimulatedAccount
from .backtest.decision_source import BaseDecisionSource, ReplayDecisionSource
from .backtest.manager import BacktestManager
from .backtest.runner import BacktestResult, BacktestRunner

__all__ = [
    "BacktestConfig",
    "SimulatedAccount",
    "BaseDecisionSource",
    "ReplayDecisionSource",
    "BacktestManager",
    "BacktestResult",
    "BacktestRunner",
]

__version__ = "0.1.0"
