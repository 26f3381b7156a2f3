#!/usr/bin/env python3
"""
Example: Compare one strategy under different cost assumptions.

This script demonstrates the complete workflow:
1. Generate synthetic hourly klines
2. Plug a moving-average crossover into the decision source interface
3. Launch concurrent runs with different fees and slippage
4. Compare metrics and write a markdown report per run

Usage:
    python examples/run_backtest_comparison.py
"""

import asyncio
import dataclasses
from pathlib import Path

import numpy as np
import pandas as pd

from futures_backtest import BacktestConfig, BacktestManager, BaseDecisionSource
from futures_backtest.backtest import BacktestReport
from futures_backtest.logging_config import setup_logging
from futures_backtest.models import Kline, TradingDecision

HOUR_MS = 3_600_000


class MovingAverageCrossover(BaseDecisionSource):
    """Long when the fast SMA is above the slow SMA, short otherwise."""

    def __init__(self, fast: int = 12, slow: int = 48):
        super().__init__()
        self.fast = fast
        self.slow = slow

    async def decide(self, symbol, snapshot):
        candles = snapshot.klines.get(symbol, [])
        if len(candles) < self.slow:
            return []

        closes = pd.Series([k.close for k in candles])
        fast = closes.rolling(self.fast).mean().iloc[-1]
        slow = closes.rolling(self.slow).mean().iloc[-1]

        held = {p.side.value for p in snapshot.positions_for(symbol)}
        want = "long" if fast > slow else "short"
        if want in held:
            return []

        decisions = []
        if held:
            decisions.append(TradingDecision(symbol=symbol, action="close"))
        decisions.append(TradingDecision(
            symbol=symbol,
            action=f"open_{want}",
            confidence=70,
            leverage=3,
            position_pct=20,
            stop_loss_pct=3,
        ))
        return decisions


def synthetic_klines(seed: int, start_price: float, count: int = 2000):
    rng = np.random.default_rng(seed)
    closes = start_price * np.cumprod(1 + rng.normal(0.0001, 0.006, count))
    start_ts = 1_704_067_200_000
    klines = []
    for i, close in enumerate(closes):
        wiggle = abs(rng.normal(0, 0.003))
        klines.append(Kline(
            timestamp=start_ts + i * HOUR_MS,
            open=float(closes[i - 1]) if i else float(close),
            high=float(close * (1 + wiggle)),
            low=float(close * (1 - wiggle)),
            close=float(close),
            volume=float(rng.uniform(100, 500)),
        ))
    return klines


async def main():
    setup_logging("WARNING", use_json=False)

    data = {
        "BTCUSDT": synthetic_klines(1, 42000.0),
        "ETHUSDT": synthetic_klines(2, 2300.0),
    }
    base = BacktestConfig(
        symbols=list(data),
        initial_balance=10000.0,
        periods_per_year=8760,
        close_positions_at_end=True,
    )
    scenarios = {
        "bt_no_costs": dataclasses.replace(base, run_id="bt_no_costs", fee_bps=0.0),
        "bt_taker": dataclasses.replace(base, run_id="bt_taker", fee_bps=4.0),
        "bt_taker_slippage": dataclasses.replace(base, run_id="bt_taker_slippage", fee_bps=4.0, slippage_bps=5.0),
    }

    manager = BacktestManager(MovingAverageCrossover())
    for run_id, config in scenarios.items():
        manager.create(config)
        for symbol, klines in data.items():
            manager.load_klines(run_id, symbol, klines)
        await manager.launch(run_id)

    await asyncio.gather(*(manager.wait(run_id) for run_id in scenarios))

    report = BacktestReport()
    output_dir = Path("reports")
    print(f"{'Run':<20} {'Return %':>10} {'Sharpe':>8} {'Max DD %':>9} {'Trades':>7} {'Fees':>10}")
    for run_id in scenarios:
        result = manager.get_result(run_id)
        m = result.metrics
        print(
            f"{run_id:<20} {m.total_return_pct:>10.2f} {m.sharpe_ratio:>8.2f} "
            f"{m.max_drawdown_pct:>9.2f} {m.total_trades:>7} {m.total_fees:>10.2f}"
        )
        report.generate_markdown(result, output_dir / f"{run_id}.md")


if __name__ == "__main__":
    asyncio.run(main())
