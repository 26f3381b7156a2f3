#!/usr/bin/env python3
"""Backtest CLI.

Replays recorded decisions over local kline files and prints a JSON summary:

    futures-backtest run --klines BTCUSDT=data/btc_1h.csv \\
        --klines ETHUSDT=data/eth_1h.json --decisions decisions.jsonl
"""

import argparse
import asyncio
import dataclasses
import json
import os
import sys
from pathlib import Path
from typing import Dict, List

from .backtest.data_loader import HistoricalDataLoader
from .backtest.decision_source import ReplayDecisionSource
from .backtest.manager import BacktestManager
from .backtest.reports import BacktestReport
from .config import BacktestConfig
from .exceptions import BacktestError, ConfigurationError, DataLoadError
from .logging_config import get_logger, setup_logging
from .models.market_data import Kline

logger = get_logger(__name__)


def json_output(data: dict):
    """Print JSON output."""
    print(json.dumps(data, indent=2))


def parse_kline_args(values: List[str]) -> Dict[str, Path]:
    """Parse repeated SYMBOL=PATH arguments."""
    files = {}
    for value in values:
        symbol, sep, path = value.partition("=")
        if not sep or not symbol or not path:
            raise ConfigurationError(f"--klines expects SYMBOL=PATH, got {value!r}")
        files[symbol.strip().upper()] = Path(path)
    return files


async def cmd_run(args) -> int:
    """Run one backtest to completion."""
    try:
        config = BacktestConfig.from_env(run_id=args.run_id or "")
        overrides = {
            name: getattr(args, name)
            for name in ("initial_balance", "fee_bps", "slippage_bps")
            if getattr(args, name) is not None
        }
        if args.close_at_end:
            overrides["close_positions_at_end"] = True

        kline_files = parse_kline_args(args.klines)
        config = dataclasses.replace(config, symbols=list(kline_files), **overrides)

        loader = HistoricalDataLoader(Path(args.cache_dir) if args.cache_dir else None)
        klines: Dict[str, List[Kline]] = {}
        for symbol, path in kline_files.items():
            klines[symbol] = loader.load_file(path)
            if args.cache_dir:
                loader.save_to_cache(symbol, args.interval, klines[symbol])

        source = ReplayDecisionSource.from_jsonl(Path(args.decisions))
        logger.info("cli_decisions_loaded", extra={"count": len(source)})

        manager = BacktestManager(source)
        run_id = manager.create(config)
        for symbol, series in klines.items():
            manager.load_klines(run_id, symbol, series)

        await manager.launch(run_id)
        await manager.wait(run_id)

        result = manager.get_result(run_id)
        report = BacktestReport()
        if args.report:
            report.generate_markdown(result, Path(args.report))

        summary = report.generate_json_summary(result)
        json_output({"success": result.metadata.error is None, "result": summary})
        return 0 if result.metadata.error is None else 1

    except ConfigurationError as e:
        logger.error("cli_configuration_error", extra={"command": "run", "error": str(e)})
        json_output({"success": False, "error": f"Configuration error: {e}"})
        return 1
    except DataLoadError as e:
        logger.error("cli_data_error", extra={"command": "run", "error": str(e)})
        json_output({"success": False, "error": f"Data error: {e}"})
        return 1
    except BacktestError as e:
        logger.error("cli_command_failed", extra={"command": "run", "error": str(e)})
        json_output({"success": False, "error": str(e)})
        return 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="futures-backtest",
        description="Replay trading decisions over historical futures klines",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run a backtest")
    run_parser.add_argument(
        "--klines", action="append", required=True, metavar="SYMBOL=PATH",
        help="Kline file (.json or .csv) for a symbol; repeatable",
    )
    run_parser.add_argument("--decisions", required=True, help="JSON-lines file of recorded decisions")
    run_parser.add_argument("--run-id", help="Run id (generated if omitted)")
    run_parser.add_argument("--initial-balance", type=float, help="Starting cash")
    run_parser.add_argument("--fee-bps", type=float, help="Fee in basis points")
    run_parser.add_argument("--slippage-bps", type=float, help="Slippage in basis points")
    run_parser.add_argument("--close-at-end", action="store_true", help="Close open positions at the last candle")
    run_parser.add_argument("--report", help="Write a markdown report to this path")
    run_parser.add_argument("--cache-dir", help="Also store loaded klines in this cache directory")
    run_parser.add_argument("--interval", default="1h", help="Interval label used for cache files")

    return parser


def main(argv=None):
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)

    setup_logging(os.getenv("LOG_LEVEL", "INFO"), use_json=True)

    if args.command == "run":
        sys.exit(asyncio.run(cmd_run(args)))


if __name__ == "__main__":
    main()
