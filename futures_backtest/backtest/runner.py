"""Backtest Runner - Replays historical klines through an external decision source.

One runner owns one simulated account, the kline series loaded into it and the
trade/equity logs it produces. Each cycle of the simulated clock:

1. Liquidates positions whose latest close crossed the liquidation price
2. Closes positions whose stop-loss or take-profit was touched by the candle
3. Builds a market snapshot and asks the decision source for each symbol
4. Executes the decisions against the account, within the run's risk limits
5. Records an equity point

Runs move through pending -> running -> completed | failed | cancelled.
Cancellation is cooperative and observed between cycles only.
"""

import asyncio
import bisect
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set

from ..config import BacktestConfig
from ..exceptions import AccountError, StateError, StructuralFailureError
from ..logging.log_context import LogContext
from ..models.decision import DecisionAction, TradingDecision
from ..models.market_data import Kline, MarketSnapshot
from ..models.positions import PositionSide, TradeAction, TradeEvent
from ..models.run import EquityPoint, RunMetadata, RunStatus
from .account import PositionKey, SimulatedAccount
from .decision_source import BaseDecisionSource
from .metrics import Metrics, calculate_metrics
from .sinks import EquitySink, EquitySnapshot, OrderSink, fill_from_event, order_from_event

logger = logging.getLogger(__name__)


@dataclass
class ExitLevels:
    """Stop-loss / take-profit prices attached to an open position.

    The percentages are kept so the prices can be recomputed when an add
    moves the entry price.
    """

    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    stop_loss_pct: float = 0.0
    take_profit_pct: float = 0.0


@dataclass
class BacktestResult:
    """Snapshot of a run: metadata, configuration, metrics and logs."""

    metadata: RunMetadata
    config: BacktestConfig
    metrics: Metrics
    equity_curve: List[EquityPoint] = field(default_factory=list)
    trades: List[TradeEvent] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "metadata": self.metadata.to_dict(),
            "config": self.config.to_dict(),
            "metrics": self.metrics.to_dict(),
            "equity_curve": [p.to_dict() for p in self.equity_curve],
            "trades": [t.to_dict() for t in self.trades],
        }


class BacktestRunner:
    """Drives one backtest run.

    Example:
        >>> runner = BacktestRunner(config, decision_source)
        >>> runner.load_klines("BTCUSDT", klines)
        >>> metadata = await runner.start()
        >>> runner.get_metrics().total_return_pct
    """

    def __init__(
        self,
        config: BacktestConfig,
        decision_source: BaseDecisionSource,
        equity_sink: Optional[EquitySink] = None,
        order_sink: Optional[OrderSink] = None,
    ):
        """Initialize runner.

        Args:
            config: Run configuration (run_id must be set)
            decision_source: Produces trading decisions per symbol and cycle
            equity_sink: Optional store for equity snapshots
            order_sink: Optional store for orders and fills
        """
        self.config = config
        self.decision_source = decision_source
        self.equity_sink = equity_sink
        self.order_sink = order_sink

        self.account = SimulatedAccount(
            initial_balance=config.initial_balance,
            fee_bps=config.fee_bps,
            slippage_bps=config.slippage_bps,
        )

        self._lock = threading.Lock()
        self._cancel_event = threading.Event()

        self._klines: Dict[str, List[Kline]] = {}
        self._timestamps: Dict[str, List[int]] = {}
        self._equity_curve: List[EquityPoint] = []
        self._trades: List[TradeEvent] = []
        self._exits: Dict[PositionKey, ExitLevels] = {}
        self._last_prices: Dict[str, float] = {}
        self._last_tick: Optional[int] = None

        self._metadata = RunMetadata(run_id=config.run_id, symbols=list(config.symbols))

    @property
    def run_id(self) -> str:
        return self._metadata.run_id

    # ------------------------------------------------------------------
    # Data loading and queries
    # ------------------------------------------------------------------

    def load_klines(self, symbol: str, klines: Iterable[Kline]) -> None:
        """Load (or extend) the kline series of a symbol.

        Candles are ordered by timestamp; a candle with an already loaded
        timestamp replaces the old one. Gaps are allowed.
        """
        with self._lock:
            merged = {k.timestamp: k for k in self._klines.get(symbol, [])}
            merged.update((k.timestamp, k) for k in klines)

            series = [merged[ts] for ts in sorted(merged)]
            self._klines[symbol] = series
            self._timestamps[symbol] = [k.timestamp for k in series]

            if symbol not in self._metadata.symbols:
                self._metadata.symbols.append(symbol)
            self._metadata.total_cycles = len(
                set().union(*self._timestamps.values())
            )

        logger.info(
            "klines_loaded",
            extra={"run_id": self.run_id, "symbol": symbol, "count": len(series)},
        )

    def get_metadata(self) -> RunMetadata:
        with self._lock:
            return self._metadata.copy()

    def get_equity_curve(self) -> List[EquityPoint]:
        with self._lock:
            return list(self._equity_curve)

    def get_trades(self) -> List[TradeEvent]:
        with self._lock:
            return list(self._trades)

    def get_metrics(self) -> Metrics:
        """Metrics over everything recorded so far."""
        return calculate_metrics(
            self.config.initial_balance,
            self.get_equity_curve(),
            self.get_trades(),
            periods_per_year=self.config.periods_per_year,
        )

    def result(self) -> BacktestResult:
        equity_curve = self.get_equity_curve()
        trades = self.get_trades()
        return BacktestResult(
            metadata=self.get_metadata(),
            config=self.config,
            metrics=calculate_metrics(
                self.config.initial_balance,
                equity_curve,
                trades,
                periods_per_year=self.config.periods_per_year,
            ),
            equity_curve=equity_curve,
            trades=trades,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def cancel(self) -> None:
        """Request cancellation; honored at the next cycle boundary."""
        self._cancel_event.set()

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_event.is_set()

    async def start(self) -> RunMetadata:
        """Run the simulation to completion, failure or cancellation.

        Returns:
            Final metadata snapshot

        Raises:
            StructuralFailureError: If the runner is not pending
        """
        with self._lock:
            if self._metadata.status != RunStatus.PENDING:
                raise StructuralFailureError(
                    f"backtest {self.run_id} is {self._metadata.status.value}, not pending"
                )
            self._metadata.status = RunStatus.RUNNING
            self._metadata.started_at = datetime.now()

        LogContext.set_run_id(self.run_id)
        logger.info("backtest_started", extra={"run_id": self.run_id})

        try:
            is_valid, error_msg = self.config.validate()
            if not is_valid:
                raise StructuralFailureError(f"invalid configuration: {error_msg}")

            with self._lock:
                has_data = any(self._klines.values())
            if not has_data:
                raise StructuralFailureError("no klines loaded")

            completed = await self._run_loop()

            if completed:
                if self.config.close_positions_at_end:
                    self._close_all_positions()
                self._finish(RunStatus.COMPLETED)
            else:
                self._finish(RunStatus.CANCELLED)

        except asyncio.CancelledError:
            self._finish(RunStatus.CANCELLED)
            raise
        except StructuralFailureError as e:
            logger.error("backtest_failed", extra={"run_id": self.run_id, "error": str(e)})
            self._finish(RunStatus.FAILED, str(e))
        except Exception as e:
            logger.error(
                "backtest_unexpected_error",
                extra={"run_id": self.run_id, "error": str(e), "error_type": type(e).__name__},
                exc_info=True,
            )
            self._finish(RunStatus.FAILED, f"{type(e).__name__}: {e}")
        finally:
            self._write_checkpoint()

        return self.get_metadata()

    async def _run_loop(self) -> bool:
        """Advance the clock until data runs out (True) or cancellation (False)."""
        cycle = 0
        while True:
            if self._cancel_event.is_set():
                logger.info(
                    "backtest_cancelled",
                    extra={"run_id": self.run_id, "cycle": cycle},
                )
                return False

            tick = self._next_tick(self._last_tick)
            if tick is None:
                return True

            cycle += 1
            await self._run_cycle(cycle, tick)
            self._last_tick = tick

            # Let other runs and stop requests through between cycles
            await asyncio.sleep(0)

    def _finish(self, status: RunStatus, error: Optional[str] = None) -> None:
        with self._lock:
            self._metadata.status = status
            self._metadata.error = error
            self._metadata.finished_at = datetime.now()
            processed = self._metadata.processed_cycles

        logger.info(
            "backtest_finished",
            extra={
                "run_id": self.run_id,
                "status": status.value,
                "cycles": processed,
                "trades": len(self._trades),
            },
        )

    def _write_checkpoint(self) -> None:
        if not self.config.checkpoint_dir:
            return
        path = Path(self.config.checkpoint_dir) / f"{self.run_id}.account.json"
        try:
            self.account.save_state().save(path)
        except StateError as e:
            logger.error("checkpoint_failed", extra={"run_id": self.run_id, "error": str(e)})

    # ------------------------------------------------------------------
    # Simulation cycle
    # ------------------------------------------------------------------

    def _next_tick(self, after: Optional[int]) -> Optional[int]:
        with self._lock:
            candidates = []
            for timestamps in self._timestamps.values():
                index = 0 if after is None else bisect.bisect_right(timestamps, after)
                if index < len(timestamps):
                    candidates.append(timestamps[index])
        return min(candidates) if candidates else None

    def _current_candles(self, tick: int) -> Dict[str, Kline]:
        """Latest candle at or before tick, per symbol that has one."""
        candles = {}
        with self._lock:
            for symbol, timestamps in self._timestamps.items():
                index = bisect.bisect_right(timestamps, tick) - 1
                if index >= 0:
                    candles[symbol] = self._klines[symbol][index]
        return candles

    async def _run_cycle(self, cycle: int, tick: int) -> None:
        candles = self._current_candles(tick)
        prices = {symbol: candle.close for symbol, candle in candles.items()}
        self._last_prices = prices

        # Liquidations first, they take priority over any decision
        liquidations, note = self.account.check_liquidation(prices, tick, cycle)
        skip: Set[str] = set()
        for event in liquidations:
            self._exits.pop((event.symbol, event.side), None)
            self._record_trade(event)
            skip.add(event.symbol)
        if note:
            logger.warning("liquidations", extra={"run_id": self.run_id, "cycle": cycle, "note": note})

        skip |= self._check_exits(candles, tick, cycle)

        snapshot = self._build_snapshot(tick, cycle, prices)

        for symbol in sorted(candles):
            if symbol in skip:
                continue

            try:
                decisions = await self.decision_source.decide(symbol, snapshot)
            except Exception as e:
                logger.warning(
                    "decision_source_failed",
                    extra={
                        "run_id": self.run_id,
                        "symbol": symbol,
                        "cycle": cycle,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    },
                )
                continue

            if decisions is None:
                continue
            if not isinstance(decisions, (list, tuple)):
                self._log_malformed(symbol, cycle, f"expected a list of decisions, got {type(decisions).__name__}")
                continue

            for decision in decisions:
                if not isinstance(decision, TradingDecision):
                    self._log_malformed(symbol, cycle, f"expected TradingDecision, got {type(decision).__name__}")
                    continue
                try:
                    self._apply_decision(decision, symbol, prices, tick, cycle)
                except (TypeError, ValueError, AttributeError) as e:
                    self._log_malformed(symbol, cycle, f"{type(e).__name__}: {e}")

        self._record_equity(tick, cycle, prices)

    def _build_snapshot(self, tick: int, cycle: int, prices: Dict[str, float]) -> MarketSnapshot:
        lookback = self.config.lookback
        recent = {}
        with self._lock:
            for symbol, timestamps in self._timestamps.items():
                end = bisect.bisect_right(timestamps, tick)
                if end > 0:
                    recent[symbol] = self._klines[symbol][max(0, end - lookback):end]

        breakdown = self.account.total_equity(prices)
        return MarketSnapshot(
            timestamp=tick,
            cycle=cycle,
            klines=recent,
            prices=dict(prices),
            positions=self.account.positions(),
            cash=self.account.cash,
            equity=breakdown.equity,
            unrealized_pnl=breakdown.unrealized_pnl,
        )

    def _check_exits(self, candles: Dict[str, Kline], tick: int, cycle: int) -> Set[str]:
        """Close positions whose stop-loss or take-profit the current candle touched."""
        triggered: Set[str] = set()

        for (symbol, side), levels in list(self._exits.items()):
            if not self.account.has_position(symbol, side):
                del self._exits[(symbol, side)]
                continue

            candle = candles.get(symbol)
            if candle is None or candle.timestamp != tick:
                continue  # No fresh candle for this symbol

            action, price = None, None
            if side == PositionSide.LONG:
                if levels.stop_loss is not None and candle.low <= levels.stop_loss:
                    action, price = TradeAction.STOP_LOSS, levels.stop_loss
                elif levels.take_profit is not None and candle.high >= levels.take_profit:
                    action, price = TradeAction.TAKE_PROFIT, levels.take_profit
            else:
                if levels.stop_loss is not None and candle.high >= levels.stop_loss:
                    action, price = TradeAction.STOP_LOSS, levels.stop_loss
                elif levels.take_profit is not None and candle.low <= levels.take_profit:
                    action, price = TradeAction.TAKE_PROFIT, levels.take_profit

            if action is None:
                continue

            self._close_position(symbol, side, price, tick, cycle, action, f"{action.value} hit at {price:.4f}")
            del self._exits[(symbol, side)]
            triggered.add(symbol)

        return triggered

    def _apply_decision(
        self,
        decision: TradingDecision,
        symbol: str,
        prices: Dict[str, float],
        tick: int,
        cycle: int,
    ) -> None:
        if decision.symbol and decision.symbol != symbol:
            logger.debug(
                "decision_symbol_mismatch",
                extra={"run_id": self.run_id, "symbol": symbol, "decision_symbol": decision.symbol},
            )
            return

        action = decision.action
        if action == DecisionAction.HOLD:
            return

        price = prices[symbol]
        note = str(decision.reasoning or "")[:200]

        if action.is_close:
            sides = [action.side] if action.side else [PositionSide.LONG, PositionSide.SHORT]
            for side in sides:
                if self.account.has_position(symbol, side):
                    self._close_position(
                        symbol, side, price, tick, cycle, TradeAction.CLOSE, note
                    )
                    self._exits.pop((symbol, side), None)
            return

        self._open_position(decision, symbol, price, prices, tick, cycle, note)

    def _open_position(
        self,
        decision: TradingDecision,
        symbol: str,
        price: float,
        prices: Dict[str, float],
        tick: int,
        cycle: int,
        note: str,
    ) -> None:
        config = self.config
        side = decision.action.side

        if decision.confidence < config.min_confidence:
            self._log_skip(symbol, cycle, f"confidence {decision.confidence} < {config.min_confidence}")
            return

        is_new = not self.account.has_position(symbol, side)
        if is_new and self.account.position_count >= config.max_positions:
            self._log_skip(symbol, cycle, f"max positions ({config.max_positions}) reached")
            return

        leverage = min(decision.leverage or config.default_leverage, config.max_leverage)
        position_pct = min(decision.position_pct or config.default_position_pct, 100.0)

        equity = self.account.total_equity(prices).equity
        notional = equity * position_pct / 100 * leverage
        if notional <= 0 or notional < config.min_position_notional:
            self._log_skip(symbol, cycle, f"notional {notional:.2f} below minimum {config.min_position_notional}")
            return

        stop_loss_pct = float(decision.stop_loss_pct or 0.0)
        take_profit_pct = float(decision.take_profit_pct or 0.0)
        previous = self._exits.get((symbol, side))
        if previous is not None and not is_new and stop_loss_pct <= 0 and take_profit_pct <= 0:
            stop_loss_pct, take_profit_pct = previous.stop_loss_pct, previous.take_profit_pct

        try:
            result = self.account.open(symbol, side, notional / price, leverage, price, tick)
        except AccountError as e:
            self._log_skip(symbol, cycle, str(e))
            return

        self._record_trade(
            TradeEvent(
                timestamp=tick,
                symbol=symbol,
                action=TradeAction.OPEN if is_new else TradeAction.ADD,
                side=side,
                quantity=notional / price,
                price=result.fill_price,
                fee=result.fee,
                leverage=result.position.leverage,
                cycle=cycle,
                note=note,
            )
        )

        # Levels follow the weighted entry after an add
        if stop_loss_pct > 0 or take_profit_pct > 0:
            self._exits[(symbol, side)] = self._exit_levels(
                result.position.entry_price, side, stop_loss_pct, take_profit_pct
            )

        logger.info(
            "position_opened",
            extra={
                "run_id": self.run_id,
                "symbol": symbol,
                "side": side.value,
                "cycle": cycle,
                "fill_price": result.fill_price,
                "leverage": result.position.leverage,
                "confidence": decision.confidence,
            },
        )

    @staticmethod
    def _exit_levels(entry: float, side: PositionSide, stop_loss_pct: float, take_profit_pct: float) -> ExitLevels:
        direction = 1 if side == PositionSide.LONG else -1
        levels = ExitLevels(stop_loss_pct=stop_loss_pct, take_profit_pct=take_profit_pct)
        if stop_loss_pct > 0:
            levels.stop_loss = entry * (1 - direction * stop_loss_pct / 100)
        if take_profit_pct > 0:
            levels.take_profit = entry * (1 + direction * take_profit_pct / 100)
        return levels

    def _close_position(
        self,
        symbol: str,
        side: PositionSide,
        price: float,
        tick: int,
        cycle: int,
        action: TradeAction,
        note: str = "",
    ) -> None:
        leverage = self.account.get_position(symbol, side).leverage
        try:
            result = self.account.close(symbol, side, 0, price)
        except AccountError as e:
            self._log_skip(symbol, cycle, str(e))
            return

        self._record_trade(
            TradeEvent(
                timestamp=tick,
                symbol=symbol,
                action=action,
                side=side,
                quantity=result.quantity,
                price=result.fill_price,
                fee=result.total_fee,
                realized_pnl=result.net_realized_pnl,
                leverage=leverage,
                cycle=cycle,
                note=note,
            )
        )

        logger.info(
            "position_closed",
            extra={
                "run_id": self.run_id,
                "symbol": symbol,
                "side": side.value,
                "cycle": cycle,
                "action": action.value,
                "realized_pnl": result.net_realized_pnl,
            },
        )

    def _close_all_positions(self) -> None:
        if self._last_tick is None:
            return
        with self._lock:
            cycle = self._metadata.processed_cycles
        for position in self.account.positions():
            price = self._last_prices.get(position.symbol, position.entry_price)
            self._close_position(
                position.symbol, position.side, price, self._last_tick, cycle,
                TradeAction.CLOSE, "end of backtest",
            )
        self._exits.clear()

    def _log_skip(self, symbol: str, cycle: int, reason: str) -> None:
        logger.info(
            "decision_skipped",
            extra={"run_id": self.run_id, "symbol": symbol, "cycle": cycle, "reason": reason},
        )

    def _log_malformed(self, symbol: str, cycle: int, reason: str) -> None:
        """A response that cannot be executed counts as HOLD for this symbol."""
        logger.warning(
            "decision_skipped",
            extra={"run_id": self.run_id, "symbol": symbol, "cycle": cycle, "reason": f"malformed decision: {reason}"},
        )

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def _record_trade(self, event: TradeEvent) -> None:
        with self._lock:
            self._trades.append(event)

        if self.order_sink is None:
            return
        try:
            order = order_from_event(self.run_id, event)
            order_id = self.order_sink.create_order(order)
            self.order_sink.create_fill(fill_from_event(self.run_id, order_id, order, event))
        except Exception as e:
            logger.warning(
                "order_sink_failed",
                extra={"run_id": self.run_id, "symbol": event.symbol, "error": str(e)},
            )

    def _record_equity(self, tick: int, cycle: int, prices: Dict[str, float]) -> None:
        breakdown = self.account.total_equity(prices)
        point = EquityPoint(
            timestamp=tick,
            equity=breakdown.equity,
            cash=self.account.cash,
            margin=breakdown.margin,
            unrealized_pnl=breakdown.unrealized_pnl,
            position_count=self.account.position_count,
            cycle=cycle,
        )

        with self._lock:
            self._equity_curve.append(point)
            self._metadata.processed_cycles = cycle
            self._metadata.last_equity = point.equity

        if self.equity_sink is None:
            return
        try:
            self.equity_sink.save(EquitySnapshot.from_point(self.run_id, point))
        except Exception as e:
            logger.warning(
                "equity_sink_failed",
                extra={"run_id": self.run_id, "cycle": cycle, "error": str(e)},
            )
