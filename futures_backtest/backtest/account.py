"""Simulated Account - Leveraged futures ledger for backtesting.

Holds cash, open positions and realized P&L. Applies fees and slippage to
every fill, reserves margin, averages entry prices when adding to a position
and force-closes positions whose mark price crosses the liquidation price.

Liquidation uses a flat rule: a position is liquidated once it has lost 100%
of its margin. Maintenance-margin tiers are not modeled.
"""

import copy
import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, NamedTuple, Optional, Tuple

from ..exceptions import (
    InsufficientFundsError,
    InvalidQuantityError,
    PositionNotFoundError,
    StateCorruptedError,
    StateSaveFailedError,
)
from ..models.positions import Position, PositionSide, TradeAction, TradeEvent

logger = logging.getLogger(__name__)

PositionKey = Tuple[str, PositionSide]


class OpenResult(NamedTuple):
    position: Position  # Copy of the position after the fill
    fee: float
    fill_price: float


class CloseResult(NamedTuple):
    net_realized_pnl: float  # Gross P&L minus closing fee and proportional opening fee
    total_fee: float
    fill_price: float
    quantity: float  # Quantity actually closed
    gross_pnl: float


class EquityBreakdown(NamedTuple):
    equity: float
    unrealized_pnl: float
    per_position: Dict[str, float]  # Unrealized P&L keyed "SYMBOL_side"
    margin: float


@dataclass
class AccountState:
    """Deep-copied snapshot of an account ledger.

    Used to checkpoint and restore runs. Nothing in a state object is shared
    with the live account it was taken from.
    """

    cash: float
    realized_pnl: float = 0.0
    positions: Dict[PositionKey, Position] = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "cash": self.cash,
            "realized_pnl": self.realized_pnl,
            "positions": [p.to_dict() for p in self.positions.values()],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AccountState":
        """Create from dictionary."""
        positions = {}
        for item in data.get("positions", []):
            position = Position.from_dict(item)
            positions[(position.symbol, position.side)] = position
        return cls(
            cash=float(data["cash"]),
            realized_pnl=float(data.get("realized_pnl", 0.0)),
            positions=positions,
        )

    def save(self, path: Path) -> None:
        """Save state to a JSON file using the temp file + os.replace() pattern.

        If a crash occurs during the write, the previous file stays intact.

        Raises:
            StateSaveFailedError: If the file cannot be written
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        fd, temp_path = tempfile.mkstemp(
            dir=str(path.parent),
            prefix=f".{path.stem}_tmp_",
            suffix=".json",
        )

        try:
            with os.fdopen(fd, "w") as f:
                json.dump(self.to_dict(), f, indent=2)
            os.replace(temp_path, str(path))
        except OSError as e:
            try:
                os.unlink(temp_path)
            except OSError:
                pass  # Temp file already gone
            raise StateSaveFailedError(f"Failed to save account state to {path}: {e}") from e

    @classmethod
    def load(cls, path: Path) -> Optional["AccountState"]:
        """Load state from a JSON file.

        Returns:
            AccountState if the file exists, None otherwise

        Raises:
            StateCorruptedError: If the file is not a valid state document
        """
        path = Path(path)
        if not path.exists():
            return None

        try:
            with open(path) as f:
                return cls.from_dict(json.load(f))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            raise StateCorruptedError(f"Corrupted account state {path}: {e}") from e


class SimulatedAccount:
    """Simulated leveraged futures account.

    Positions are keyed by (symbol, side), so a symbol can be held long and
    short at the same time (hedge mode).

    Example:
        >>> account = SimulatedAccount(initial_balance=1000.0, fee_bps=4)
        >>> result = account.open("BTCUSDT", PositionSide.LONG, 0.01, 10, 50000.0, 0)
        >>> result.position.margin
        50.0
        >>> round(account.cash, 2)
        949.8
    """

    def __init__(self, initial_balance: float, fee_bps: float = 0.0, slippage_bps: float = 0.0):
        """Initialize simulated account.

        Args:
            initial_balance: Starting cash in quote currency
            fee_bps: Fee per fill in basis points (4 = 0.04%)
            slippage_bps: Adverse price move per fill in basis points
        """
        self._cash = initial_balance
        self._positions: Dict[PositionKey, Position] = {}
        self._realized_pnl = 0.0
        self._fee_rate = fee_bps / 10000
        self._slippage_rate = slippage_bps / 10000

    @property
    def cash(self) -> float:
        return self._cash

    @property
    def realized_pnl(self) -> float:
        return self._realized_pnl

    @property
    def fee_rate(self) -> float:
        return self._fee_rate

    @property
    def slippage_rate(self) -> float:
        return self._slippage_rate

    @property
    def position_count(self) -> int:
        return len(self._positions)

    def positions(self) -> List[Position]:
        """Copies of all open positions."""
        return [copy.copy(p) for p in self._positions.values()]

    def get_position(self, symbol: str, side: PositionSide) -> Optional[Position]:
        """Copy of one position, or None."""
        position = self._positions.get((symbol, PositionSide(side)))
        return copy.copy(position) if position else None

    def has_position(self, symbol: str, side: PositionSide) -> bool:
        return (symbol, PositionSide(side)) in self._positions

    def open(
        self,
        symbol: str,
        side: PositionSide,
        quantity: float,
        leverage: int,
        price: float,
        timestamp: int,
    ) -> OpenResult:
        """Open a new position or add to an existing one.

        Args:
            symbol: Trading symbol (e.g. "BTCUSDT")
            side: Long or short
            quantity: Base quantity, must be positive
            leverage: Leverage multiplier (<= 0 is treated as 1)
            price: Reference price before slippage
            timestamp: Fill time in milliseconds

        Returns:
            OpenResult with a copy of the resulting position, fee and fill price

        Raises:
            InvalidQuantityError: If quantity is not positive
            InsufficientFundsError: If margin plus fee exceeds cash
        """
        if quantity <= 0:
            raise InvalidQuantityError(f"quantity must be positive: {quantity}")
        if leverage <= 0:
            leverage = 1
        side = PositionSide(side)

        fill_price = self._apply_slippage(price, side, is_open=True)
        notional = fill_price * quantity
        margin = notional / leverage
        fee = notional * self._fee_rate

        required = margin + fee
        if required > self._cash:
            raise InsufficientFundsError(required, self._cash)

        self._cash -= required

        key = (symbol, side)
        position = self._positions.get(key)
        if position is None:
            position = Position(
                symbol=symbol,
                side=side,
                quantity=quantity,
                entry_price=fill_price,
                leverage=leverage,
                margin=margin,
                notional=notional,
                liquidation_price=self._liquidation_price(fill_price, leverage, side),
                open_timestamp=timestamp,
                accumulated_fee=fee,
            )
            self._positions[key] = position
        else:
            total_quantity = position.quantity + quantity
            position.entry_price = (
                position.entry_price * position.quantity + fill_price * quantity
            ) / total_quantity
            position.quantity = total_quantity
            position.margin += margin
            position.notional += notional
            position.accumulated_fee += fee
            position.liquidation_price = self._liquidation_price(
                position.entry_price, position.leverage, side
            )

        logger.debug(
            f"Opened {side.value} {quantity:.6f} {symbol} @ {fill_price:.4f} "
            f"(margin: {margin:.2f}, fee: {fee:.4f}, cash: {self._cash:.2f})"
        )

        return OpenResult(copy.copy(position), fee, fill_price)

    def close(
        self,
        symbol: str,
        side: PositionSide,
        quantity: float,
        price: float,
    ) -> CloseResult:
        """Close all or part of a position.

        A quantity <= 0 or larger than the position closes it entirely.

        Margin for the closed fraction returns to cash together with the gross
        P&L minus the closing fee. The opening fee share was already paid from
        cash at open time, so it only reduces the reported net P&L.

        Raises:
            PositionNotFoundError: If no position exists for (symbol, side)
        """
        side = PositionSide(side)
        key = (symbol, side)
        position = self._positions.get(key)
        if position is None:
            raise PositionNotFoundError(f"no position to close: {symbol} {side.value}")

        if quantity <= 0 or quantity > position.quantity:
            quantity = position.quantity

        fill_price = self._apply_slippage(price, side, is_open=False)

        if side == PositionSide.LONG:
            gross = (fill_price - position.entry_price) * quantity
        else:
            gross = (position.entry_price - fill_price) * quantity

        close_fee = fill_price * quantity * self._fee_rate
        ratio = quantity / position.quantity
        open_fee = position.accumulated_fee * ratio
        total_fee = close_fee + open_fee

        margin_return = position.margin * ratio
        self._cash += margin_return + gross - close_fee

        net_realized = gross - total_fee
        self._realized_pnl += net_realized

        if quantity >= position.quantity:
            del self._positions[key]
        else:
            remaining = 1 - ratio
            position.quantity -= quantity
            position.margin *= remaining
            position.notional *= remaining
            position.accumulated_fee *= remaining

        logger.debug(
            f"Closed {side.value} {quantity:.6f} {symbol} @ {fill_price:.4f} "
            f"(net P&L: {net_realized:.4f}, fees: {total_fee:.4f}, cash: {self._cash:.2f})"
        )

        return CloseResult(net_realized, total_fee, fill_price, quantity, gross)

    def total_equity(self, price_map: Dict[str, float]) -> EquityBreakdown:
        """Mark all positions to market.

        Symbols missing from price_map are marked at their entry price.

        Returns:
            EquityBreakdown(equity, unrealized_pnl, per_position, margin)
        """
        per_position: Dict[str, float] = {}
        unrealized = 0.0
        total_margin = 0.0

        for position in self._positions.values():
            price = price_map.get(position.symbol, position.entry_price)
            pnl = position.unrealized_pnl(price)
            per_position[position.key] = pnl
            unrealized += pnl
            total_margin += position.margin

        equity = self._cash + total_margin + unrealized
        return EquityBreakdown(equity, unrealized, per_position, total_margin)

    def check_liquidation(
        self,
        price_map: Dict[str, float],
        timestamp: int,
        cycle: int,
    ) -> Tuple[List[TradeEvent], str]:
        """Force-close every position whose mark price crossed its liquidation price.

        Positions are closed in full at the liquidation price (not the mark).
        Symbols without a price are left alone.

        Returns:
            (liquidation events, summary note or "")
        """
        events: List[TradeEvent] = []
        notes: List[str] = []

        for (symbol, side), position in list(self._positions.items()):
            price = price_map.get(symbol)
            if price is None:
                continue

            if side == PositionSide.LONG:
                breached = price <= position.liquidation_price
            else:
                breached = price >= position.liquidation_price
            if not breached:
                continue

            liquidation_price = position.liquidation_price
            leverage = position.leverage
            result = self.close(symbol, side, position.quantity, liquidation_price)

            events.append(
                TradeEvent(
                    timestamp=timestamp,
                    symbol=symbol,
                    action=TradeAction.LIQUIDATED,
                    side=side,
                    quantity=result.quantity,
                    price=result.fill_price,
                    fee=result.total_fee,
                    realized_pnl=result.net_realized_pnl,
                    leverage=leverage,
                    cycle=cycle,
                    liquidation=True,
                    note=f"Liquidated at {price:.4f} (liq price: {liquidation_price:.4f})",
                )
            )
            notes.append(f"{symbol} {side.value}")

            logger.warning(
                "position_liquidated",
                extra={
                    "symbol": symbol,
                    "side": side.value,
                    "mark_price": price,
                    "liquidation_price": liquidation_price,
                    "realized_pnl": result.net_realized_pnl,
                    "cycle": cycle,
                },
            )

        if notes:
            return events, f"Liquidations: {', '.join(notes)}"
        return events, ""

    def save_state(self) -> AccountState:
        """Snapshot the ledger as an independent deep copy."""
        return AccountState(
            cash=self._cash,
            realized_pnl=self._realized_pnl,
            positions=copy.deepcopy(self._positions),
        )

    def restore_state(self, state: AccountState) -> None:
        """Replace the ledger with a deep copy of a saved state."""
        self._cash = state.cash
        self._realized_pnl = state.realized_pnl
        self._positions = copy.deepcopy(state.positions)

    def _apply_slippage(self, price: float, side: PositionSide, is_open: bool) -> float:
        # Fills always move against the trader: long pays up on open and sells
        # lower on close, short sells lower on open and buys back higher
        if self._slippage_rate == 0:
            return price

        if side == PositionSide.LONG:
            factor = 1 + self._slippage_rate if is_open else 1 - self._slippage_rate
        else:
            factor = 1 - self._slippage_rate if is_open else 1 + self._slippage_rate
        return price * factor

    @staticmethod
    def _liquidation_price(entry: float, leverage: int, side: PositionSide) -> float:
        if side == PositionSide.LONG:
            return entry * (1 - 1.0 / leverage)
        return entry * (1 + 1.0 / leverage)
