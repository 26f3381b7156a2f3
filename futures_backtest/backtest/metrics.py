"""Performance metrics for backtest runs.

Reduces an equity curve and a trade log into aggregate and per-symbol
statistics. Everything here is a pure function of its inputs.

Annualization: Sharpe and Sortino multiply the per-step ratio by
sqrt(periods_per_year). The default of 252 assumes one equity sample per
trading day; a backtest samples once per kline, so callers running on
intraday intervals should pass the matching number of periods (e.g. 8760 for
1h klines on a 24/7 market) if they want calendar-annualized figures.
"""

import math
from dataclasses import dataclass, field
from typing import Dict, List, Sequence

import numpy as np

from ..models.positions import PositionSide, TradeAction, TradeEvent
from ..models.run import EquityPoint


@dataclass
class SymbolStats:
    """Trade statistics for one symbol."""

    symbol: str
    total_trades: int = 0
    winning_trades: int = 0
    total_pnl: float = 0.0
    avg_pnl: float = 0.0
    win_rate: float = 0.0  # Percentage
    long_trades: int = 0
    short_trades: int = 0
    long_win_rate: float = 0.0  # Percentage
    short_win_rate: float = 0.0  # Percentage

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "symbol": self.symbol,
            "total_trades": self.total_trades,
            "winning_trades": self.winning_trades,
            "total_pnl": self.total_pnl,
            "avg_pnl": self.avg_pnl,
            "win_rate": self.win_rate,
            "long_trades": self.long_trades,
            "short_trades": self.short_trades,
            "long_win_rate": self.long_win_rate,
            "short_win_rate": self.short_win_rate,
        }


@dataclass
class Metrics:
    """Aggregate performance of a backtest run."""

    # Returns
    final_equity: float = 0.0
    total_return: float = 0.0
    total_return_pct: float = 0.0

    # Risk
    max_drawdown: float = 0.0
    max_drawdown_pct: float = 0.0
    sharpe_ratio: float = 0.0
    sortino_ratio: float = 0.0

    # Trades
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0  # Percentage
    total_fees: float = 0.0
    avg_win: float = 0.0
    avg_loss: float = 0.0  # Negative
    largest_win: float = 0.0
    largest_loss: float = 0.0  # Negative
    profit_factor: float = 0.0  # math.inf when there are wins and no losses

    # Liquidations (not counted as trades above)
    liquidation_count: int = 0
    liquidation_loss: float = 0.0

    symbol_stats: Dict[str, SymbolStats] = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "final_equity": self.final_equity,
            "total_return": self.total_return,
            "total_return_pct": self.total_return_pct,
            "max_drawdown": self.max_drawdown,
            "max_drawdown_pct": self.max_drawdown_pct,
            "sharpe_ratio": self.sharpe_ratio,
            "sortino_ratio": self.sortino_ratio,
            "total_trades": self.total_trades,
            "winning_trades": self.winning_trades,
            "losing_trades": self.losing_trades,
            "win_rate": self.win_rate,
            "total_fees": self.total_fees,
            "avg_win": self.avg_win,
            "avg_loss": self.avg_loss,
            "largest_win": self.largest_win,
            "largest_loss": self.largest_loss,
            "profit_factor": self.profit_factor,
            "liquidation_count": self.liquidation_count,
            "liquidation_loss": self.liquidation_loss,
            "symbol_stats": {s: ss.to_dict() for s, ss in self.symbol_stats.items()},
        }


def calculate_metrics(
    initial_balance: float,
    equity_curve: Sequence[EquityPoint],
    trades: Sequence[TradeEvent],
    periods_per_year: int = 252,
) -> Metrics:
    """Calculate performance metrics from an equity curve and a trade log.

    Args:
        initial_balance: Starting cash of the run
        equity_curve: One point per simulation cycle
        trades: All trade events of the run
        periods_per_year: Annualization factor for Sharpe/Sortino

    Returns:
        Metrics (all zero for an empty equity curve)
    """
    metrics = Metrics()

    if not equity_curve:
        return metrics

    equities = np.array([point.equity for point in equity_curve], dtype=float)

    metrics.final_equity = float(equities[-1])
    metrics.total_return = metrics.final_equity - initial_balance
    if initial_balance:
        metrics.total_return_pct = metrics.total_return / initial_balance * 100

    max_dd, peak_at_max = _max_drawdown(equities)
    metrics.max_drawdown = peak_at_max * max_dd
    metrics.max_drawdown_pct = max_dd * 100

    if len(equities) > 1:
        returns = _simple_returns(equities)
        annualization = math.sqrt(periods_per_year)
        mean_return = float(np.mean(returns))

        std = float(np.std(returns))
        if std > 0:
            metrics.sharpe_ratio = mean_return / std * annualization

        downside = returns[returns < 0]
        if downside.size > 0:
            downside_dev = float(np.std(downside))
            if downside_dev > 0:
                metrics.sortino_ratio = mean_return / downside_dev * annualization

    _apply_trade_stats(metrics, trades)

    return metrics


def _simple_returns(equities: np.ndarray) -> np.ndarray:
    previous = equities[:-1]
    return np.divide(
        np.diff(equities),
        previous,
        out=np.zeros_like(previous),
        where=previous != 0,
    )


def _max_drawdown(equities: np.ndarray) -> tuple[float, float]:
    """Largest peak-to-trough decline as a fraction, and the peak it was measured from."""
    running_peak = np.maximum.accumulate(equities)
    drawdowns = np.divide(
        running_peak - equities,
        running_peak,
        out=np.zeros_like(equities),
        where=running_peak > 0,
    )
    index = int(np.argmax(drawdowns))

    return float(drawdowns[index]), float(running_peak[index])


def _apply_trade_stats(metrics: Metrics, trades: Sequence[TradeEvent]) -> None:
    wins: List[float] = []
    losses: List[float] = []
    symbol_stats: Dict[str, SymbolStats] = {}
    long_wins: Dict[str, int] = {}
    short_wins: Dict[str, int] = {}

    for trade in trades:
        if trade.action == TradeAction.LIQUIDATED:
            metrics.liquidation_count += 1
            metrics.liquidation_loss += trade.realized_pnl
            continue
        if trade.realized_pnl == 0:
            continue  # Opens and break-even closes

        metrics.total_trades += 1
        metrics.total_fees += trade.fee

        stats = symbol_stats.get(trade.symbol)
        if stats is None:
            stats = symbol_stats[trade.symbol] = SymbolStats(symbol=trade.symbol)
        stats.total_trades += 1
        stats.total_pnl += trade.realized_pnl

        is_long = trade.side == PositionSide.LONG
        if is_long:
            stats.long_trades += 1
        else:
            stats.short_trades += 1

        if trade.realized_pnl > 0:
            wins.append(trade.realized_pnl)
            metrics.winning_trades += 1
            stats.winning_trades += 1
            bucket = long_wins if is_long else short_wins
            bucket[trade.symbol] = bucket.get(trade.symbol, 0) + 1
        else:
            losses.append(trade.realized_pnl)
            metrics.losing_trades += 1

    if metrics.total_trades > 0:
        metrics.win_rate = metrics.winning_trades / metrics.total_trades * 100

    if wins:
        metrics.avg_win = sum(wins) / len(wins)
        metrics.largest_win = max(wins)
    if losses:
        metrics.avg_loss = sum(losses) / len(losses)
        metrics.largest_loss = min(losses)

    total_wins = sum(wins)
    total_losses = abs(sum(losses))
    if total_losses > 0:
        metrics.profit_factor = total_wins / total_losses
    elif total_wins > 0:
        metrics.profit_factor = math.inf

    for symbol, stats in symbol_stats.items():
        stats.avg_pnl = stats.total_pnl / stats.total_trades
        stats.win_rate = stats.winning_trades / stats.total_trades * 100
        if stats.long_trades:
            stats.long_win_rate = long_wins.get(symbol, 0) / stats.long_trades * 100
        if stats.short_trades:
            stats.short_win_rate = short_wins.get(symbol, 0) / stats.short_trades * 100

    metrics.symbol_stats = symbol_stats
