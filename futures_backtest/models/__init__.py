"""Backtest data models module."""

from .market_data import Kline, MarketSnapshot
from .positions import Position, PositionSide, TradeAction, TradeEvent, position_key
from .decision import DecisionAction, TradingDecision, parse_decisions
from .run import EquityPoint, RunMetadata, RunStatus

__all__ = [
    # Market data
    "Kline",
    "MarketSnapshot",
    # Positions
    "Position",
    "PositionSide",
    "TradeAction",
    "TradeEvent",
    "position_key",
    # Decisions
    "DecisionAction",
    "TradingDecision",
    "parse_decisions",
    # Runs
    "EquityPoint",
    "RunMetadata",
    "RunStatus",
]
