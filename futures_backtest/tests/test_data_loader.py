"""
Historical data loader tests.
"""
import json

import pytest

from futures_backtest.backtest.data_loader import HistoricalDataLoader
from futures_backtest.exceptions import DataLoadError


@pytest.fixture
def loader(tmp_path):
    return HistoricalDataLoader(tmp_path / "cache")


class TestLoadFile:
    """Test JSON and CSV kline files."""

    def test_json_objects(self, loader, tmp_path):
        path = tmp_path / "btc.json"
        path.write_text(json.dumps([
            {"timestamp": 2000, "open": 2, "high": 3, "low": 1, "close": 2.5, "volume": 10},
            {"timestamp": 1000, "open": 1, "high": 2, "low": 0.5, "close": 1.5},
        ]))

        klines = loader.load_file(path)

        assert [k.timestamp for k in klines] == [1000, 2000]
        assert klines[0].volume == 0.0

    def test_json_ccxt_lists_with_wrapper(self, loader, tmp_path):
        path = tmp_path / "btc.json"
        path.write_text(json.dumps({"klines": [
            [1000, 100, 110, 95, 105, 12.5],
            [1000, 100, 110, 95, 106, 12.5],
        ]}))

        klines = loader.load_file(path)

        assert len(klines) == 1
        assert klines[0].close == 106

    def test_csv_with_mixed_case_headers(self, loader, tmp_path):
        path = tmp_path / "eth.csv"
        path.write_text(
            "Open_Time,Open,High,Low,Close,Volume\n"
            "3000,10,11,9,10.5,100\n"
            "1000,10,11,9,10.2,100\n"
        )

        klines = loader.load_file(path)

        assert [k.timestamp for k in klines] == [1000, 3000]
        assert klines[1].close == pytest.approx(10.5)

    def test_csv_with_datetime_timestamps(self, loader, tmp_path):
        path = tmp_path / "eth.csv"
        path.write_text(
            "timestamp,open,high,low,close\n"
            "2024-01-01T00:00:00Z,10,11,9,10.5\n"
        )

        klines = loader.load_file(path)

        assert klines[0].timestamp == 1704067200000
        assert klines[0].volume == 0.0

    def test_csv_missing_columns(self, loader, tmp_path):
        path = tmp_path / "eth.csv"
        path.write_text("timestamp,close\n1000,10\n")

        with pytest.raises(DataLoadError, match="missing columns"):
            loader.load_file(path)

    def test_invalid_candle(self, loader, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps([{"timestamp": 1, "open": 1, "high": 1, "low": 2, "close": 1}]))

        with pytest.raises(DataLoadError):
            loader.load_file(path)

    def test_missing_file(self, loader, tmp_path):
        with pytest.raises(DataLoadError):
            loader.load_file(tmp_path / "nope.csv")

    def test_unsupported_extension(self, loader, tmp_path):
        path = tmp_path / "btc.parquet"
        path.write_text("")

        with pytest.raises(DataLoadError):
            loader.load_file(path)


class TestCache:
    """Test the local kline cache."""

    def test_roundtrip(self, loader, kline_factory):
        klines = kline_factory([100, 101, 102])

        loader.save_to_cache("BTC/USDT", "1h", klines)
        cached = loader.load_from_cache("BTC/USDT", "1h")

        assert cached == klines
        assert loader.get_cache_info()["files"] == ["BTC_USDT_1h.json"]

    def test_miss_returns_none(self, loader):
        assert loader.load_from_cache("BTCUSDT", "1h") is None

    def test_cache_dir_created_on_first_save(self, loader, kline_factory):
        assert not loader.cache_dir.exists()
        assert loader.get_cache_info()["total_files"] == 0

        loader.save_to_cache("BTCUSDT", "1h", kline_factory([100]))

        assert loader.cache_dir.is_dir()

    def test_corrupt_cache_returns_none(self, loader):
        loader.cache_dir.mkdir(parents=True)
        (loader.cache_dir / "BTCUSDT_1h.json").write_text("[{")

        assert loader.load_from_cache("BTCUSDT", "1h") is None

    def test_clear_by_symbol(self, loader, kline_factory):
        loader.save_to_cache("BTCUSDT", "1h", kline_factory([100]))
        loader.save_to_cache("ETHUSDT", "1h", kline_factory([10]))

        loader.clear_cache("BTCUSDT")

        assert loader.get_cache_info()["files"] == ["ETHUSDT_1h.json"]

        loader.clear_cache()
        assert loader.get_cache_info()["total_files"] == 0
