"""Backtest run configuration.

This module provides the configuration dataclass for a single backtest run.
Values are either passed explicitly or loaded from BACKTEST_* environment
variables (a local .env file is honored for development).
"""

import os
from dataclasses import dataclass, field, asdict
from typing import List, Optional

from dotenv import load_dotenv

from .exceptions import InvalidConfigValueError


_TRUE_VALUES = ("true", "1", "yes")


@dataclass
class BacktestConfig:
    """Configuration of one backtest run.

    Risk-control values (max positions, max leverage, minimum notional,
    minimum confidence) are run configuration and are enforced by the runner
    before any decision reaches the simulated account.
    """

    run_id: str = ""  # Generated by the manager when empty
    symbols: List[str] = field(default_factory=list)  # Informational, klines drive the clock

    # Account parameters
    initial_balance: float = 10000.0
    fee_bps: float = 4.0  # 4 bps = 0.04% taker fee
    slippage_bps: float = 0.0

    # Risk controls
    max_positions: int = 3
    max_leverage: int = 20
    default_leverage: int = 5
    min_position_notional: float = 10.0  # Minimum order notional in quote currency
    min_confidence: float = 0.0  # Decisions below this confidence (0-100) are ignored
    default_position_pct: float = 10.0  # Share of equity used as margin when a decision has none

    # Simulation parameters
    lookback: int = 100  # Klines per symbol handed to the decision source
    periods_per_year: int = 252  # Annualization factor for Sharpe/Sortino
    close_positions_at_end: bool = False
    checkpoint_dir: Optional[str] = None

    @classmethod
    def from_env(cls, run_id: str = "") -> "BacktestConfig":
        """Load backtest configuration from environment variables.

        Args:
            run_id: Optional run identifier

        Returns:
            BacktestConfig instance with values from environment

        Raises:
            InvalidConfigValueError: If a variable cannot be parsed

        Example:
            >>> config = BacktestConfig.from_env()
            >>> config.validate()
            (True, None)
        """
        load_dotenv()

        try:
            symbols_str = os.getenv("BACKTEST_SYMBOLS", "")
            symbols = [s.strip().upper() for s in symbols_str.split(",") if s.strip()]

            return cls(
                run_id=run_id,
                symbols=symbols,
                initial_balance=float(os.getenv("BACKTEST_INITIAL_BALANCE", "10000.0")),
                fee_bps=float(os.getenv("BACKTEST_FEE_BPS", "4.0")),
                slippage_bps=float(os.getenv("BACKTEST_SLIPPAGE_BPS", "0.0")),
                max_positions=int(os.getenv("BACKTEST_MAX_POSITIONS", "3")),
                max_leverage=int(os.getenv("BACKTEST_MAX_LEVERAGE", "20")),
                default_leverage=int(os.getenv("BACKTEST_DEFAULT_LEVERAGE", "5")),
                min_position_notional=float(os.getenv("BACKTEST_MIN_POSITION_NOTIONAL", "10.0")),
                min_confidence=float(os.getenv("BACKTEST_MIN_CONFIDENCE", "0.0")),
                default_position_pct=float(os.getenv("BACKTEST_DEFAULT_POSITION_PCT", "10.0")),
                lookback=int(os.getenv("BACKTEST_LOOKBACK", "100")),
                periods_per_year=int(os.getenv("BACKTEST_PERIODS_PER_YEAR", "252")),
                close_positions_at_end=os.getenv(
                    "BACKTEST_CLOSE_POSITIONS_AT_END", "false"
                ).lower() in _TRUE_VALUES,
                checkpoint_dir=os.getenv("BACKTEST_CHECKPOINT_DIR") or None,
            )
        except ValueError as e:
            raise InvalidConfigValueError(f"Invalid BACKTEST_* environment value: {e}") from e

    def validate(self) -> tuple[bool, Optional[str]]:
        """Validate run parameters.

        Returns:
            (is_valid, error_message) tuple
        """
        if self.initial_balance <= 0:
            return False, "initial_balance must be positive"

        if self.fee_bps < 0 or self.slippage_bps < 0:
            return False, "fee_bps and slippage_bps must not be negative"

        if self.max_positions <= 0:
            return False, "max_positions must be positive"

        if self.max_leverage < 1:
            return False, "max_leverage must be at least 1"

        if self.default_leverage < 1 or self.default_leverage > self.max_leverage:
            return False, "default_leverage must be between 1 and max_leverage"

        if self.min_position_notional < 0:
            return False, "min_position_notional must not be negative"

        if self.min_confidence < 0 or self.min_confidence > 100:
            return False, "min_confidence must be between 0 and 100"

        if self.default_position_pct <= 0 or self.default_position_pct > 100:
            return False, "default_position_pct must be between 0 and 100"

        if self.lookback <= 0:
            return False, "lookback must be positive"

        if self.periods_per_year <= 0:
            return False, "periods_per_year must be positive"

        return True, None

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return asdict(self)
