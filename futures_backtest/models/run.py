"""Run lifecycle and equity curve models."""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import List, Optional


class RunStatus(str, Enum):
    """Backtest run status."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED)


@dataclass
class RunMetadata:
    """Identity and lifecycle state of one backtest run.

    Owned by its runner; everyone else receives copies.
    """

    run_id: str
    status: RunStatus = RunStatus.PENDING
    created_at: datetime = field(default_factory=datetime.now)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    error: Optional[str] = None

    # Progress
    symbols: List[str] = field(default_factory=list)
    total_cycles: int = 0
    processed_cycles: int = 0
    last_equity: float = 0.0

    @property
    def progress_pct(self) -> float:
        if self.total_cycles == 0:
            return 0.0
        return self.processed_cycles / self.total_cycles * 100

    def copy(self) -> "RunMetadata":
        return replace(self, symbols=list(self.symbols))

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "run_id": self.run_id,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "error": self.error,
            "symbols": list(self.symbols),
            "total_cycles": self.total_cycles,
            "processed_cycles": self.processed_cycles,
            "progress_pct": self.progress_pct,
            "last_equity": self.last_equity,
        }


@dataclass(frozen=True)
class EquityPoint:
    """Account value sampled once per simulation cycle."""

    timestamp: int
    equity: float
    cash: float = 0.0
    margin: float = 0.0
    unrealized_pnl: float = 0.0
    position_count: int = 0
    cycle: int = 0

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "timestamp": self.timestamp,
            "equity": self.equity,
            "cash": self.cash,
            "margin": self.margin,
            "unrealized_pnl": self.unrealized_pnl,
            "position_count": self.position_count,
            "cycle": self.cycle,
        }
