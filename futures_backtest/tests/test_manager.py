"""
Backtest manager tests.
Covers run registry errors, concurrent runs and shutdown.
"""
import asyncio
import dataclasses

import pytest

from futures_backtest.backtest.manager import BacktestManager
from futures_backtest.config import BacktestConfig
from futures_backtest.exceptions import (
    CannotDeleteRunningError,
    RunAlreadyExistsError,
    RunNotFoundError,
    StructuralFailureError,
)
from futures_backtest.models.run import RunStatus

BTC = "BTCUSDT"


class SlowSource:
    """Decision source that yields to the loop on every call."""

    def __init__(self, delay: float = 0.01):
        self.delay = delay
        self.started = asyncio.Event()

    async def decide(self, symbol, snapshot):
        self.started.set()
        await asyncio.sleep(self.delay)
        return []


class TestRegistry:
    """Test create/delete/lookup semantics."""

    def test_create_generates_run_id(self, scripted_source):
        manager = BacktestManager(scripted_source())

        run_id = manager.create(BacktestConfig(symbols=[BTC]))

        assert run_id.startswith("bt_")
        assert manager.get_status(run_id).status == RunStatus.PENDING

    def test_duplicate_run_id_rejected(self, base_config, scripted_source):
        manager = BacktestManager(scripted_source())
        manager.create(base_config)

        with pytest.raises(RunAlreadyExistsError):
            manager.create(base_config)

    def test_create_does_not_alias_config(self, base_config, scripted_source):
        manager = BacktestManager(scripted_source())
        run_id = manager.create(base_config)

        base_config.symbols.append("ETHUSDT")

        assert "ETHUSDT" not in manager.get_status(run_id).symbols

    @pytest.mark.parametrize("method", [
        "get_status", "get_metrics", "get_equity_curve", "get_trades", "get_result", "stop", "delete",
    ])
    def test_unknown_run_raises(self, scripted_source, method):
        manager = BacktestManager(scripted_source())

        with pytest.raises(RunNotFoundError):
            getattr(manager, method)("bt_missing")

    def test_load_klines_unknown_run(self, scripted_source, kline_factory):
        manager = BacktestManager(scripted_source())

        with pytest.raises(RunNotFoundError):
            manager.load_klines("bt_missing", BTC, kline_factory([100]))

    def test_delete_pending_run(self, base_config, scripted_source):
        manager = BacktestManager(scripted_source())
        run_id = manager.create(base_config)

        manager.delete(run_id)

        assert manager.list_runs() == []
        with pytest.raises(RunNotFoundError):
            manager.get_status(run_id)

    def test_list_runs_returns_copies(self, base_config, scripted_source):
        manager = BacktestManager(scripted_source())
        manager.create(base_config)
        manager.create(dataclasses.replace(base_config, run_id="bt_other"))

        runs = manager.list_runs()
        runs[0].status = RunStatus.FAILED

        assert {r.run_id for r in runs} == {"bt_test", "bt_other"}
        assert all(r.status == RunStatus.PENDING for r in manager.list_runs())


class TestExecution:
    """Test launching, waiting, stopping and deleting runs."""

    @pytest.mark.asyncio
    async def test_launch_and_wait(self, base_config, scripted_source, kline_factory):
        manager = BacktestManager(scripted_source({(1, BTC): [{"action": "buy", "confidence": 90}]}))
        run_id = manager.create(base_config)
        manager.load_klines(run_id, BTC, kline_factory([100, 110]))

        await manager.launch(run_id)
        metadata = await manager.wait(run_id)

        assert metadata.status == RunStatus.COMPLETED
        assert len(manager.get_equity_curve(run_id)) == 2
        assert len(manager.get_trades(run_id)) == 1
        assert manager.get_metrics(run_id).total_return == pytest.approx(500.0)
        assert manager.get_result(run_id).metadata.run_id == run_id

    @pytest.mark.asyncio
    async def test_start_then_load_before_yielding(self, base_config, scripted_source, kline_factory):
        manager = BacktestManager(scripted_source())

        run_id = await manager.start(base_config)
        manager.load_klines(run_id, BTC, kline_factory([100, 101, 102]))
        metadata = await manager.wait(run_id)

        assert metadata.status == RunStatus.COMPLETED
        assert metadata.processed_cycles == 3

    @pytest.mark.asyncio
    async def test_launch_twice_rejected(self, base_config, scripted_source, kline_factory):
        manager = BacktestManager(scripted_source())
        run_id = manager.create(base_config)
        manager.load_klines(run_id, BTC, kline_factory([100]))
        await manager.launch(run_id)

        with pytest.raises(StructuralFailureError):
            await manager.launch(run_id)

        await manager.wait(run_id)

    @pytest.mark.asyncio
    async def test_stop_cancels_running_run(self, base_config, kline_factory):
        source = SlowSource()
        manager = BacktestManager(source)
        run_id = manager.create(base_config)
        manager.load_klines(run_id, BTC, kline_factory([100] * 1000))

        await manager.launch(run_id)
        await source.started.wait()
        manager.stop(run_id)
        metadata = await manager.wait(run_id)

        assert metadata.status == RunStatus.CANCELLED
        assert 0 < metadata.processed_cycles < 1000

    @pytest.mark.asyncio
    async def test_delete_running_rejected(self, base_config, kline_factory):
        source = SlowSource()
        manager = BacktestManager(source)
        run_id = manager.create(base_config)
        manager.load_klines(run_id, BTC, kline_factory([100] * 1000))

        await manager.launch(run_id)
        await source.started.wait()

        with pytest.raises(CannotDeleteRunningError):
            manager.delete(run_id)

        manager.stop(run_id)
        await manager.wait(run_id)
        manager.delete(run_id)
        assert manager.list_runs() == []

    @pytest.mark.asyncio
    async def test_concurrent_runs_are_isolated(self, base_config, scripted_source, kline_factory):
        source = scripted_source({(1, BTC): [{"action": "buy", "confidence": 90}]})
        manager = BacktestManager(source)
        cheap = manager.create(dataclasses.replace(base_config, run_id="bt_cheap"))
        costly = manager.create(dataclasses.replace(base_config, run_id="bt_costly", fee_bps=10.0))
        for run_id in (cheap, costly):
            manager.load_klines(run_id, BTC, kline_factory([100, 110, 120]))

        await manager.launch(cheap)
        await manager.launch(costly)
        await asyncio.gather(manager.wait(cheap), manager.wait(costly))

        cheap_equity = manager.get_metrics(cheap).final_equity
        costly_equity = manager.get_metrics(costly).final_equity
        assert cheap_equity == pytest.approx(2000.0)
        assert costly_equity < cheap_equity
        assert manager.get_status(cheap).status == RunStatus.COMPLETED
        assert manager.get_status(costly).status == RunStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_shutdown_cancels_everything(self, base_config, kline_factory):
        source = SlowSource()
        manager = BacktestManager(source)
        run_ids = [
            manager.create(dataclasses.replace(base_config, run_id=f"bt_{i}"))
            for i in range(3)
        ]
        for run_id in run_ids:
            manager.load_klines(run_id, BTC, kline_factory([100] * 1000))
            await manager.launch(run_id)
        await source.started.wait()

        await manager.shutdown()

        assert all(manager.get_status(r).status == RunStatus.CANCELLED for r in run_ids)

    @pytest.mark.asyncio
    async def test_wait_on_unlaunched_run_returns_immediately(self, base_config, scripted_source):
        manager = BacktestManager(scripted_source())
        run_id = manager.create(base_config)

        metadata = await manager.wait(run_id)

        assert metadata.status == RunStatus.PENDING
