"""
CLI tests.
"""
import json

import pytest

from futures_backtest.cli import build_parser, cmd_run, parse_kline_args
from futures_backtest.exceptions import ConfigurationError

from .conftest import BASE_TS, HOUR_MS


@pytest.fixture
def kline_file(tmp_path, kline_factory):
    path = tmp_path / "btc.json"
    path.write_text(json.dumps([k.to_dict() for k in kline_factory([100, 110, 120])]))
    return path


@pytest.fixture
def decisions_file(tmp_path):
    path = tmp_path / "decisions.jsonl"
    path.write_text(
        json.dumps({"timestamp": BASE_TS, "symbol": "BTCUSDT", "action": "buy", "confidence": 80}) + "\n"
        + json.dumps({"timestamp": BASE_TS + HOUR_MS, "symbol": "BTCUSDT", "action": "close"}) + "\n"
    )
    return path


def test_parse_kline_args():
    files = parse_kline_args(["btcusdt=data/btc.csv", "ETHUSDT=eth.json"])

    assert set(files) == {"BTCUSDT", "ETHUSDT"}
    assert str(files["ETHUSDT"]) == "eth.json"


def test_parse_kline_args_rejects_bad_value():
    with pytest.raises(ConfigurationError):
        parse_kline_args(["data/btc.csv"])


@pytest.mark.asyncio
async def test_run_prints_summary(kline_file, decisions_file, tmp_path, capsys, monkeypatch):
    monkeypatch.chdir(tmp_path)
    report_path = tmp_path / "report.md"
    args = build_parser().parse_args([
        "run",
        "--klines", f"BTCUSDT={kline_file}",
        "--decisions", str(decisions_file),
        "--run-id", "bt_cli",
        "--initial-balance", "1000",
        "--fee-bps", "0",
        "--report", str(report_path),
    ])

    exit_code = await cmd_run(args)
    output = json.loads(capsys.readouterr().out)

    assert exit_code == 0
    assert output["success"] is True
    assert output["result"]["backtest_id"] == "bt_cli"
    assert output["result"]["trades"]["total"] == 1
    assert report_path.exists()
    assert not (tmp_path / "data").exists()


@pytest.mark.asyncio
async def test_run_reports_missing_file(decisions_file, tmp_path, capsys, monkeypatch):
    monkeypatch.chdir(tmp_path)
    args = build_parser().parse_args([
        "run", "--klines", f"BTCUSDT={tmp_path / 'missing.csv'}", "--decisions", str(decisions_file),
    ])

    exit_code = await cmd_run(args)
    output = json.loads(capsys.readouterr().out)

    assert exit_code == 1
    assert output["success"] is False
    assert "Data error" in output["error"]
