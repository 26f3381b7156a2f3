"""
Configuration tests.
"""
import pytest

from futures_backtest.config import BacktestConfig
from futures_backtest.exceptions import InvalidConfigValueError


class TestFromEnv:
    """Test loading BACKTEST_* environment variables."""

    def test_defaults(self, monkeypatch):
        for name in ("BACKTEST_INITIAL_BALANCE", "BACKTEST_FEE_BPS", "BACKTEST_SYMBOLS"):
            monkeypatch.delenv(name, raising=False)

        config = BacktestConfig.from_env()

        assert config.initial_balance == 10000.0
        assert config.fee_bps == 4.0
        assert config.symbols == []
        assert config.close_positions_at_end is False

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("BACKTEST_INITIAL_BALANCE", "2500")
        monkeypatch.setenv("BACKTEST_FEE_BPS", "5")
        monkeypatch.setenv("BACKTEST_MAX_LEVERAGE", "50")
        monkeypatch.setenv("BACKTEST_SYMBOLS", "btcusdt, ethusdt")
        monkeypatch.setenv("BACKTEST_CLOSE_POSITIONS_AT_END", "yes")
        monkeypatch.setenv("BACKTEST_CHECKPOINT_DIR", "/tmp/checkpoints")

        config = BacktestConfig.from_env(run_id="bt_env")

        assert config.run_id == "bt_env"
        assert config.initial_balance == 2500.0
        assert config.fee_bps == 5.0
        assert config.max_leverage == 50
        assert config.symbols == ["BTCUSDT", "ETHUSDT"]
        assert config.close_positions_at_end is True
        assert config.checkpoint_dir == "/tmp/checkpoints"

    def test_unparseable_value(self, monkeypatch):
        monkeypatch.setenv("BACKTEST_MAX_POSITIONS", "three")

        with pytest.raises(InvalidConfigValueError):
            BacktestConfig.from_env()


class TestValidate:
    """Test run parameter validation."""

    def test_defaults_are_valid(self):
        assert BacktestConfig().validate() == (True, None)

    @pytest.mark.parametrize("overrides,fragment", [
        ({"initial_balance": 0}, "initial_balance"),
        ({"fee_bps": -1}, "fee_bps"),
        ({"max_positions": 0}, "max_positions"),
        ({"max_leverage": 0}, "max_leverage"),
        ({"default_leverage": 30, "max_leverage": 20}, "default_leverage"),
        ({"min_confidence": 120}, "min_confidence"),
        ({"default_position_pct": 0}, "default_position_pct"),
        ({"lookback": 0}, "lookback"),
    ])
    def test_invalid_values(self, overrides, fragment):
        is_valid, error = BacktestConfig(**overrides).validate()

        assert is_valid is False
        assert fragment in error

    def test_to_dict(self):
        data = BacktestConfig(run_id="bt_1", symbols=["BTCUSDT"]).to_dict()

        assert data["run_id"] == "bt_1"
        assert data["symbols"] == ["BTCUSDT"]
        assert data["fee_bps"] == 4.0
