"""Position and trade event models for the simulated futures account."""

from dataclasses import dataclass, asdict
from enum import Enum


class PositionSide(str, Enum):
    """Position side enumeration."""
    LONG = "long"
    SHORT = "short"

    @property
    def opposite(self) -> "PositionSide":
        return PositionSide.SHORT if self is PositionSide.LONG else PositionSide.LONG


class TradeAction(str, Enum):
    """Action label recorded on a trade event."""
    OPEN = "open"
    ADD = "add"
    CLOSE = "close"
    STOP_LOSS = "stop_loss"
    TAKE_PROFIT = "take_profit"
    LIQUIDATED = "liquidated"


def position_key(symbol: str, side: PositionSide) -> str:
    """Flat string key for a position, e.g. "BTCUSDT_long"."""
    return f"{symbol}_{PositionSide(side).value}"


@dataclass
class Position:
    """One side of one symbol held by the simulated account.

    Notional and margin accumulate across adds; the entry price is the
    quantity-weighted average of all fills.
    """

    symbol: str
    side: PositionSide
    quantity: float
    entry_price: float
    leverage: int
    margin: float  # Cash committed to the position
    notional: float  # entry value, cumulative across adds
    liquidation_price: float
    open_timestamp: int = 0  # Unix timestamp in milliseconds
    accumulated_fee: float = 0.0  # Opening fees not yet attributed to a close

    @property
    def key(self) -> str:
        return position_key(self.symbol, self.side)

    @property
    def is_long(self) -> bool:
        return self.side == PositionSide.LONG

    def unrealized_pnl(self, price: float) -> float:
        """Unrealized P&L at a mark price."""
        if self.is_long:
            return (price - self.entry_price) * self.quantity
        return (self.entry_price - price) * self.quantity

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        data = asdict(self)
        data["side"] = self.side.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Position":
        """Create from dictionary."""
        return cls(
            symbol=data["symbol"],
            side=PositionSide(data["side"]),
            quantity=float(data["quantity"]),
            entry_price=float(data["entry_price"]),
            leverage=int(data["leverage"]),
            margin=float(data["margin"]),
            notional=float(data["notional"]),
            liquidation_price=float(data["liquidation_price"]),
            open_timestamp=int(data.get("open_timestamp", 0)),
            accumulated_fee=float(data.get("accumulated_fee", 0.0)),
        )


@dataclass(frozen=True)
class TradeEvent:
    """Immutable record of one executed action, used for audit and metrics."""

    timestamp: int
    symbol: str
    action: TradeAction
    side: PositionSide
    quantity: float
    price: float  # Fill price after slippage
    fee: float
    realized_pnl: float = 0.0  # Net of fees, 0 for opens
    leverage: int = 1
    cycle: int = 0
    liquidation: bool = False
    note: str = ""

    @property
    def is_closing(self) -> bool:
        return self.action not in (TradeAction.OPEN, TradeAction.ADD)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "timestamp": self.timestamp,
            "symbol": self.symbol,
            "action": self.action.value,
            "side": self.side.value,
            "quantity": self.quantity,
            "price": self.price,
            "fee": self.fee,
            "realized_pnl": self.realized_pnl,
            "leverage": self.leverage,
            "cycle": self.cycle,
            "liquidation": self.liquidation,
            "note": self.note,
        }
