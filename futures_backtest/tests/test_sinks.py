"""
Persistence sink record tests.
"""
import pytest

from futures_backtest.backtest.sinks import (
    EquitySink,
    EquitySnapshot,
    InMemorySink,
    OrderSink,
    fill_from_event,
    order_from_event,
)
from futures_backtest.models.positions import PositionSide, TradeAction, TradeEvent
from futures_backtest.models.run import EquityPoint


def event(side, action, pnl=0.0):
    return TradeEvent(
        timestamp=1000,
        symbol="BTCUSDT",
        action=action,
        side=side,
        quantity=0.5,
        price=200.0,
        fee=0.04,
        realized_pnl=pnl,
        leverage=5,
        cycle=7,
    )


class TestOrderMapping:
    """Test trade events described as exchange orders."""

    @pytest.mark.parametrize("side,action,order_side,reduce_only", [
        (PositionSide.LONG, TradeAction.OPEN, "BUY", False),
        (PositionSide.LONG, TradeAction.ADD, "BUY", False),
        (PositionSide.LONG, TradeAction.CLOSE, "SELL", True),
        (PositionSide.SHORT, TradeAction.OPEN, "SELL", False),
        (PositionSide.SHORT, TradeAction.STOP_LOSS, "BUY", True),
        (PositionSide.SHORT, TradeAction.LIQUIDATED, "BUY", True),
    ])
    def test_order_side(self, side, action, order_side, reduce_only):
        order = order_from_event("bt_1", event(side, action))

        assert order.side == order_side
        assert order.reduce_only is reduce_only
        assert order.position_side == side.value.upper()
        assert order.order_action == action.value.upper()
        assert order.status == "FILLED"

    def test_client_order_id_is_unique_per_action(self):
        opened = order_from_event("bt_1", event(PositionSide.LONG, TradeAction.OPEN))
        closed = order_from_event("bt_1", event(PositionSide.LONG, TradeAction.CLOSE))

        assert opened.client_order_id != closed.client_order_id
        assert opened.client_order_id.startswith("bt_1-7-BTCUSDT")

    def test_fill_carries_pnl_and_quote_quantity(self):
        trade = event(PositionSide.LONG, TradeAction.CLOSE, pnl=12.5)
        order = order_from_event("bt_1", trade)

        fill = fill_from_event("bt_1", 42, order, trade)

        assert fill.order_id == 42
        assert fill.side == "SELL"
        assert fill.quote_quantity == pytest.approx(100.0)
        assert fill.realized_pnl == pytest.approx(12.5)


class TestEquitySnapshot:
    """Test equity snapshot construction."""

    def test_margin_usage(self):
        point = EquityPoint(timestamp=5, equity=1000.0, cash=750.0, margin=250.0, position_count=2)

        snapshot = EquitySnapshot.from_point("bt_1", point)

        assert snapshot.total_equity == 1000.0
        assert snapshot.balance == 750.0
        assert snapshot.margin_usage_pct == pytest.approx(25.0)
        assert snapshot.position_count == 2

    def test_zero_equity_usage(self):
        snapshot = EquitySnapshot.from_point("bt_1", EquityPoint(timestamp=5, equity=0.0, margin=10.0))

        assert snapshot.margin_usage_pct == 0.0


class TestInMemorySink:
    """Test the in-memory sink."""

    def test_satisfies_both_protocols(self):
        sink = InMemorySink()

        assert isinstance(sink, EquitySink)
        assert isinstance(sink, OrderSink)

    def test_ids_increase(self):
        sink = InMemorySink()
        trade = event(PositionSide.LONG, TradeAction.OPEN)
        order = order_from_event("bt_1", trade)

        order_id = sink.create_order(order)
        fill_id = sink.create_fill(fill_from_event("bt_1", order_id, order, trade))

        assert fill_id > order_id
        assert sink.orders == [order]
        assert len(sink.fills) == 1
