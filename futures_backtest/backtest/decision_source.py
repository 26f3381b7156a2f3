"""Decision source interface for backtests.

The runner does not know how decisions are produced. An LLM client, a rules
engine or a recorded decision log all plug in through BaseDecisionSource.
Implementations shared between concurrent runs must be safe to await from
several tasks at once.
"""

import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterable, List, Tuple

from ..exceptions import DataLoadError
from ..logging_config import get_logger
from ..models.decision import TradingDecision
from ..models.market_data import MarketSnapshot


class BaseDecisionSource(ABC):
    """Base class for decision sources."""

    def __init__(self):
        self.logger = get_logger(self.__class__.__name__)

    @abstractmethod
    async def decide(self, symbol: str, snapshot: MarketSnapshot) -> List[TradingDecision]:
        """Return zero or more decisions for one symbol.

        Called once per symbol per simulation cycle. Raising is allowed: the
        runner logs the error and treats the symbol as HOLD for the cycle.

        Args:
            symbol: Symbol being decided on
            snapshot: Market state at the current cycle

        Returns:
            Decisions for the symbol (empty list = HOLD)
        """
        pass

    def get_source_name(self) -> str:
        """Return source name (class name by default)."""
        return self.__class__.__name__


class ReplayDecisionSource(BaseDecisionSource):
    """Replays previously recorded decisions.

    Each record is a decision dict plus the kline ``timestamp`` it was made
    at. Useful for re-running an LLM session under different fees, slippage
    or risk limits without calling the model again.

    Example:
        >>> source = ReplayDecisionSource([
        ...     {"timestamp": 1700000000000, "symbol": "BTCUSDT", "action": "BUY", "confidence": 80},
        ... ])
    """

    def __init__(self, records: Iterable[dict]):
        super().__init__()
        self._decisions: Dict[Tuple[int, str], List[TradingDecision]] = {}

        for record in records:
            decision = TradingDecision.from_dict(record)
            key = (int(record["timestamp"]), decision.symbol)
            self._decisions.setdefault(key, []).append(decision)

    @classmethod
    def from_jsonl(cls, path: Path) -> "ReplayDecisionSource":
        """Load recorded decisions from a JSON-lines file.

        Raises:
            DataLoadError: If the file is missing or a line is not valid JSON
        """
        path = Path(path)
        try:
            with open(path) as f:
                records = [json.loads(line) for line in f if line.strip()]
        except (OSError, json.JSONDecodeError) as e:
            raise DataLoadError(f"Cannot read decisions from {path}: {e}") from e
        return cls(records)

    def __len__(self) -> int:
        return sum(len(d) for d in self._decisions.values())

    async def decide(self, symbol: str, snapshot: MarketSnapshot) -> List[TradingDecision]:
        return list(self._decisions.get((snapshot.timestamp, symbol), []))
