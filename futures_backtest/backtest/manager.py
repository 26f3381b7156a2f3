"""Backtest Manager - Registry of concurrent backtest runs.

Each run gets its own runner, simulated account and asyncio task. Runs share
nothing except the decision source and the persistence sinks handed to the
manager.
"""

import asyncio
import dataclasses
import logging
import threading
import time
from typing import Dict, Iterable, List, Optional

from ..config import BacktestConfig
from ..exceptions import (
    CannotDeleteRunningError,
    RunAlreadyExistsError,
    RunNotFoundError,
    StructuralFailureError,
)
from ..models.market_data import Kline
from ..models.positions import TradeEvent
from ..models.run import EquityPoint, RunMetadata, RunStatus
from .decision_source import BaseDecisionSource
from .metrics import Metrics
from .runner import BacktestResult, BacktestRunner
from .sinks import EquitySink, OrderSink


class BacktestManager:
    """Creates, starts, stops and queries backtest runs.

    All methods except ``start``, ``launch``, ``wait`` and ``shutdown`` are
    synchronous and safe to call from any thread. Unknown run ids raise
    RunNotFoundError.

    Example:
        >>> manager = BacktestManager(decision_source)
        >>> run_id = manager.create(BacktestConfig(symbols=["BTCUSDT"]))
        >>> manager.load_klines(run_id, "BTCUSDT", klines)
        >>> await manager.launch(run_id)
        >>> metadata = await manager.wait(run_id)
    """

    def __init__(
        self,
        decision_source: BaseDecisionSource,
        equity_sink: Optional[EquitySink] = None,
        order_sink: Optional[OrderSink] = None,
    ):
        self.decision_source = decision_source
        self.equity_sink = equity_sink
        self.order_sink = order_sink
        self.logger = logging.getLogger(__name__)

        self._lock = threading.Lock()
        self._runners: Dict[str, BacktestRunner] = {}
        self._tasks: Dict[str, asyncio.Task] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create(self, config: BacktestConfig) -> str:
        """Register a pending run.

        A run id of the form ``bt_<nanoseconds>`` is generated when the
        configuration has none.

        Returns:
            Run id

        Raises:
            RunAlreadyExistsError: If a run with the same id is registered
        """
        run_id = config.run_id or f"bt_{time.time_ns()}"
        config = dataclasses.replace(config, run_id=run_id, symbols=list(config.symbols))

        with self._lock:
            if run_id in self._runners:
                raise RunAlreadyExistsError(f"backtest {run_id} already exists")
            self._runners[run_id] = BacktestRunner(
                config,
                self.decision_source,
                equity_sink=self.equity_sink,
                order_sink=self.order_sink,
            )

        self.logger.info("backtest_created", extra={"run_id": run_id, "symbols": config.symbols})
        return run_id

    async def launch(self, run_id: str) -> str:
        """Start a pending run on its own task and return immediately.

        Raises:
            RunNotFoundError: If the run does not exist
            StructuralFailureError: If the run was already launched
        """
        with self._lock:
            runner = self._get_runner(run_id)
            if run_id in self._tasks or runner.get_metadata().status != RunStatus.PENDING:
                raise StructuralFailureError(f"backtest {run_id} was already started")
            self._tasks[run_id] = asyncio.create_task(runner.start(), name=f"backtest-{run_id}")

        self.logger.info("backtest_launched", extra={"run_id": run_id})
        return run_id

    async def start(self, config: BacktestConfig) -> str:
        """Create a run and launch it.

        The first cycle runs only after the caller next yields to the event
        loop, so klines loaded right after this call are still picked up.
        """
        run_id = self.create(config)
        return await self.launch(run_id)

    def stop(self, run_id: str) -> None:
        """Request cancellation; the run ends at its next cycle boundary."""
        with self._lock:
            runner = self._get_runner(run_id)
        runner.cancel()
        self.logger.info("backtest_stop_requested", extra={"run_id": run_id})

    def delete(self, run_id: str) -> None:
        """Forget a run that is not running.

        Raises:
            RunNotFoundError: If the run does not exist
            CannotDeleteRunningError: If the run is still running
        """
        with self._lock:
            runner = self._get_runner(run_id)
            task = self._tasks.get(run_id)
            running = runner.get_metadata().status == RunStatus.RUNNING
            if running or (task is not None and not task.done()):
                raise CannotDeleteRunningError(f"cannot delete running backtest {run_id}")
            del self._runners[run_id]
            self._tasks.pop(run_id, None)

        self.logger.info("backtest_deleted", extra={"run_id": run_id})

    async def wait(self, run_id: str) -> RunMetadata:
        """Wait for a launched run to finish and return its final metadata.

        A run that was never launched returns its current metadata at once.
        """
        with self._lock:
            runner = self._get_runner(run_id)
            task = self._tasks.get(run_id)
        if task is not None:
            await asyncio.wait({task})
        return runner.get_metadata()

    async def shutdown(self) -> None:
        """Stop every run and wait for all tasks to finish."""
        with self._lock:
            runners = list(self._runners.values())
            tasks = [t for t in self._tasks.values() if not t.done()]

        for runner in runners:
            runner.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        self.logger.info("backtest_manager_shutdown", extra={"stopped": len(tasks)})

    # ------------------------------------------------------------------
    # Data and queries
    # ------------------------------------------------------------------

    def load_klines(self, run_id: str, symbol: str, klines: Iterable[Kline]) -> None:
        with self._lock:
            runner = self._get_runner(run_id)
        runner.load_klines(symbol, klines)

    def get_status(self, run_id: str) -> RunMetadata:
        with self._lock:
            runner = self._get_runner(run_id)
        return runner.get_metadata()

    def get_metrics(self, run_id: str) -> Metrics:
        with self._lock:
            runner = self._get_runner(run_id)
        return runner.get_metrics()

    def get_equity_curve(self, run_id: str) -> List[EquityPoint]:
        with self._lock:
            runner = self._get_runner(run_id)
        return runner.get_equity_curve()

    def get_trades(self, run_id: str) -> List[TradeEvent]:
        with self._lock:
            runner = self._get_runner(run_id)
        return runner.get_trades()

    def get_result(self, run_id: str) -> BacktestResult:
        with self._lock:
            runner = self._get_runner(run_id)
        return runner.result()

    def list_runs(self) -> List[RunMetadata]:
        """Metadata copies of all registered runs, oldest first."""
        with self._lock:
            runners = list(self._runners.values())
        runs = [runner.get_metadata() for runner in runners]
        runs.sort(key=lambda m: m.created_at)
        return runs

    def _get_runner(self, run_id: str) -> BacktestRunner:
        # Caller holds self._lock
        runner = self._runners.get(run_id)
        if runner is None:
            raise RunNotFoundError(f"backtest {run_id} not found")
        return runner
