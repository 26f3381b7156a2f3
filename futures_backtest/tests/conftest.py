"""
Shared pytest fixtures for futures-backtest testing.
Provides factory fixtures for klines, scripted decision sources and configs.
"""
from typing import Callable, Dict, List, Optional, Tuple

import pytest

from futures_backtest.backtest.decision_source import BaseDecisionSource
from futures_backtest.config import BacktestConfig
from futures_backtest.models.decision import TradingDecision
from futures_backtest.models.market_data import Kline, MarketSnapshot

BASE_TS = 1_700_000_000_000
HOUR_MS = 3_600_000


class ScriptedDecisionSource(BaseDecisionSource):
    """Returns pre-scripted decisions keyed by (cycle, symbol).

    A script value may be a list of decision dicts or an exception instance,
    which is raised when that key is asked for.
    """

    def __init__(self, script: Optional[Dict[Tuple[int, str], object]] = None):
        super().__init__()
        self.script = script or {}
        self.calls: List[Tuple[int, str]] = []
        self.snapshots: List[MarketSnapshot] = []

    async def decide(self, symbol: str, snapshot: MarketSnapshot) -> List[TradingDecision]:
        self.calls.append((snapshot.cycle, symbol))
        self.snapshots.append(snapshot)

        entry = self.script.get((snapshot.cycle, symbol), [])
        if isinstance(entry, Exception):
            raise entry
        return [TradingDecision.from_dict(d, default_symbol=symbol) for d in entry]


@pytest.fixture
def kline_factory() -> Callable[..., List[Kline]]:
    """
    Factory fixture for creating hourly klines from a list of closes.

    Usage:
        def test_example(kline_factory):
            klines = kline_factory([100, 101, 99])
    """
    def _create_klines(
        closes: List[float],
        start_ts: int = BASE_TS,
        interval_ms: int = HOUR_MS,
        spread: float = 0.0,
        highs: Optional[List[float]] = None,
        lows: Optional[List[float]] = None,
    ) -> List[Kline]:
        """
        Args:
            closes: Close price per candle
            start_ts: Open time of first candle (ms)
            interval_ms: Spacing between candles
            spread: Fraction added/subtracted from close for high/low
            highs: Explicit highs (override spread)
            lows: Explicit lows (override spread)
        """
        klines = []
        for i, close in enumerate(closes):
            high = highs[i] if highs else close * (1 + spread)
            low = lows[i] if lows else close * (1 - spread)
            klines.append(Kline(
                timestamp=start_ts + i * interval_ms,
                open=close,
                high=max(high, close),
                low=min(low, close),
                close=close,
                volume=100.0,
            ))
        return klines

    return _create_klines


@pytest.fixture
def scripted_source() -> Callable[..., ScriptedDecisionSource]:
    """Factory for ScriptedDecisionSource."""
    def _create(script=None) -> ScriptedDecisionSource:
        return ScriptedDecisionSource(script)
    return _create


@pytest.fixture
def base_config() -> BacktestConfig:
    """Zero-fee config: 1000 balance, 50% sizing at 10x, min notional 10."""
    return BacktestConfig(
        run_id="bt_test",
        symbols=["BTCUSDT"],
        initial_balance=1000.0,
        fee_bps=0.0,
        slippage_bps=0.0,
        max_positions=3,
        max_leverage=20,
        default_leverage=10,
        min_position_notional=10.0,
        default_position_pct=50.0,
    )
