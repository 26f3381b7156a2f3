"""
Custom exception hierarchy for futures-backtest.

All backtest exceptions derive from BacktestError for easy catching.
Organized by domain: Configuration, Account, Run, Decision, State, Data.
"""


class BacktestError(Exception):
    """Base exception for all backtest errors."""
    pass


# ============================================================================
# Configuration Errors
# ============================================================================

class ConfigurationError(BacktestError):
    """Configuration-related errors (env vars, run settings)."""
    pass


class InvalidConfigValueError(ConfigurationError):
    """Configuration value invalid or out of range."""
    pass


# ============================================================================
# Account Errors (rejected operations, ledger left unchanged)
# ============================================================================

class AccountError(BacktestError):
    """Simulated account rejected an operation."""
    pass


class InvalidQuantityError(AccountError):
    """Order quantity must be positive."""
    pass


class InsufficientFundsError(AccountError):
    """Not enough cash to cover margin plus opening fee."""

    def __init__(self, required: float, available: float):
        self.required = required
        self.available = available
        super().__init__(
            f"insufficient cash: need {required:.2f}, have {available:.2f}"
        )


class PositionNotFoundError(AccountError):
    """No open position for the requested symbol and side."""
    pass


# ============================================================================
# Run Errors (manager lifecycle, structural failures)
# ============================================================================

class RunError(BacktestError):
    """Backtest run lifecycle errors."""
    pass


class RunAlreadyExistsError(RunError):
    """A run with the same identifier is already registered."""
    pass


class RunNotFoundError(RunError):
    """No run registered under the identifier."""
    pass


class CannotDeleteRunningError(RunError):
    """Run is still executing and cannot be removed."""
    pass


class StructuralFailureError(RunError):
    """Run cannot proceed at all (no klines loaded, already started, ...)."""
    pass


# ============================================================================
# Decision Source Errors
# ============================================================================

class DecisionSourceError(BacktestError):
    """Decision source failed to produce decisions."""
    pass


class DecisionParseError(DecisionSourceError):
    """Decision payload could not be parsed."""
    pass


# ============================================================================
# State Persistence Errors
# ============================================================================

class StateError(BacktestError):
    """Account state persistence errors."""
    pass


class StateCorruptedError(StateError):
    """State file corrupted or invalid JSON."""
    pass


class StateSaveFailedError(StateError):
    """Failed to save state to disk."""
    pass


# ============================================================================
# Data Errors
# ============================================================================

class DataLoadError(BacktestError):
    """Historical kline data could not be read."""
    pass
