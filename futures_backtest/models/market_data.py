"""Market data models consumed by the backtest runner.

Klines are supplied wholesale by an external feed; the runner never fetches
data itself.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List

from .positions import Position


@dataclass(frozen=True)
class Kline:
    """OHLCV candle for one interval.

    Same shape as the exchange kline feed: open time in milliseconds followed
    by open, high, low, close and volume.
    """

    timestamp: int  # Unix timestamp in milliseconds (candle open time)
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    def __post_init__(self):
        """Validate data integrity."""
        if self.high < self.low:
            raise ValueError(f"Invalid kline: high ({self.high}) < low ({self.low})")
        if self.close <= 0:
            raise ValueError(f"Invalid kline: close ({self.close}) <= 0")
        if self.volume < 0:
            raise ValueError(f"Invalid kline: volume ({self.volume}) < 0")

    @property
    def datetime(self) -> datetime:
        """Open time as a UTC datetime."""
        return datetime.fromtimestamp(self.timestamp / 1000, tz=timezone.utc)

    @property
    def is_bullish(self) -> bool:
        """Whether candle closed higher than open."""
        return self.close > self.open

    @classmethod
    def from_ccxt(cls, data: list) -> "Kline":
        """Create from ccxt/Binance list format [timestamp, open, high, low, close, volume, ...].

        Example:
            >>> Kline.from_ccxt([1640000000000, 42000.0, 42500.0, 41800.0, 42300.0, 100.5]).close
            42300.0
        """
        return cls(
            timestamp=int(data[0]),
            open=float(data[1]),
            high=float(data[2]),
            low=float(data[3]),
            close=float(data[4]),
            volume=float(data[5]) if len(data) > 5 else 0.0,
        )

    @classmethod
    def from_dict(cls, data: dict) -> "Kline":
        """Create from dictionary."""
        return cls(
            timestamp=int(data["timestamp"]),
            open=float(data["open"]),
            high=float(data["high"]),
            low=float(data["low"]),
            close=float(data["close"]),
            volume=float(data.get("volume", 0.0)),
        )

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "timestamp": self.timestamp,
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
        }


@dataclass
class MarketSnapshot:
    """Everything the decision source sees at one simulation cycle."""

    timestamp: int
    cycle: int
    klines: Dict[str, List[Kline]] = field(default_factory=dict)  # Recent candles per symbol
    prices: Dict[str, float] = field(default_factory=dict)  # Latest close per symbol
    positions: List[Position] = field(default_factory=list)
    cash: float = 0.0
    equity: float = 0.0
    unrealized_pnl: float = 0.0

    def positions_for(self, symbol: str) -> List[Position]:
        """Open positions held on a symbol."""
        return [p for p in self.positions if p.symbol == symbol]

    def to_dict(self) -> dict:
        """Convert to dictionary (input for prompt builders)."""
        return {
            "timestamp": self.timestamp,
            "cycle": self.cycle,
            "klines": {
                symbol: [k.to_dict() for k in candles]
                for symbol, candles in self.klines.items()
            },
            "prices": dict(self.prices),
            "positions": [p.to_dict() for p in self.positions],
            "cash": self.cash,
            "equity": self.equity,
            "unrealized_pnl": self.unrealized_pnl,
        }
