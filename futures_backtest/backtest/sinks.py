"""Persistence sinks for backtest output.

Equity snapshots and orders/fills are handed to external stores through
narrow, append-only interfaces. The simulation never reads them back.
"""

import itertools
import threading
from dataclasses import dataclass
from typing import List, Protocol, runtime_checkable

from ..models.positions import PositionSide, TradeEvent
from ..models.run import EquityPoint


@dataclass(frozen=True)
class EquitySnapshot:
    """Account equity at one simulation cycle, as stored by an equity sink."""

    run_id: str
    timestamp: int
    total_equity: float
    balance: float
    unrealized_pnl: float
    position_count: int
    margin_usage_pct: float

    @classmethod
    def from_point(cls, run_id: str, point: EquityPoint) -> "EquitySnapshot":
        usage = point.margin / point.equity * 100 if point.equity > 0 else 0.0
        return cls(
            run_id=run_id,
            timestamp=point.timestamp,
            total_equity=point.equity,
            balance=point.cash,
            unrealized_pnl=point.unrealized_pnl,
            position_count=point.position_count,
            margin_usage_pct=usage,
        )


@dataclass(frozen=True)
class OrderRecord:
    """A simulated market order (always fully filled)."""

    run_id: str
    client_order_id: str
    symbol: str
    side: str  # BUY, SELL
    position_side: str  # LONG, SHORT
    order_action: str  # OPEN, ADD, CLOSE, STOP_LOSS, TAKE_PROFIT, LIQUIDATED
    quantity: float
    avg_fill_price: float
    commission: float
    leverage: int
    reduce_only: bool
    timestamp: int
    order_type: str = "MARKET"
    status: str = "FILLED"


@dataclass(frozen=True)
class FillRecord:
    """The single fill belonging to a simulated order."""

    run_id: str
    order_id: int
    symbol: str
    side: str
    price: float
    quantity: float
    quote_quantity: float
    commission: float
    realized_pnl: float
    timestamp: int


@runtime_checkable
class EquitySink(Protocol):
    """Append-only store for equity snapshots."""

    def save(self, snapshot: EquitySnapshot) -> None:
        ...


@runtime_checkable
class OrderSink(Protocol):
    """Append-only store for orders and fills."""

    def create_order(self, order: OrderRecord) -> int:
        """Store an order and return its id."""
        ...

    def create_fill(self, fill: FillRecord) -> int:
        """Store a fill and return its id."""
        ...


def order_from_event(run_id: str, event: TradeEvent) -> OrderRecord:
    """Describe a trade event as the exchange order that would have produced it."""
    opening = not event.is_closing
    buys = (event.side == PositionSide.LONG) == opening
    return OrderRecord(
        run_id=run_id,
        client_order_id=f"{run_id}-{event.cycle}-{event.symbol}-{event.side.value}-{event.action.value}",
        symbol=event.symbol,
        side="BUY" if buys else "SELL",
        position_side=event.side.value.upper(),
        order_action=event.action.value.upper(),
        quantity=event.quantity,
        avg_fill_price=event.price,
        commission=event.fee,
        leverage=event.leverage,
        reduce_only=not opening,
        timestamp=event.timestamp,
    )


def fill_from_event(run_id: str, order_id: int, order: OrderRecord, event: TradeEvent) -> FillRecord:
    return FillRecord(
        run_id=run_id,
        order_id=order_id,
        symbol=event.symbol,
        side=order.side,
        price=event.price,
        quantity=event.quantity,
        quote_quantity=event.price * event.quantity,
        commission=event.fee,
        realized_pnl=event.realized_pnl,
        timestamp=event.timestamp,
    )


class InMemorySink:
    """Thread-safe in-memory equity and order sink."""

    def __init__(self):
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self.snapshots: List[EquitySnapshot] = []
        self.orders: List[OrderRecord] = []
        self.fills: List[FillRecord] = []

    def save(self, snapshot: EquitySnapshot) -> None:
        with self._lock:
            self.snapshots.append(snapshot)

    def create_order(self, order: OrderRecord) -> int:
        with self._lock:
            self.orders.append(order)
            return next(self._ids)

    def create_fill(self, fill: FillRecord) -> int:
        with self._lock:
            self.fills.append(fill)
            return next(self._ids)
