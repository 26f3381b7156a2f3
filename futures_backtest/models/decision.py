"""Trading decision models.

Decisions are produced by an external decision source (usually an LLM client)
and consumed by the backtest runner. The parser accepts the payload formats the
AI clients return: a bare JSON object, a JSON array, JSON wrapped in a markdown
code fence, or JSON inside ``<decision>`` / ``<final_vote>`` tags.
"""

import json
import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from ..exceptions import DecisionParseError
from .positions import PositionSide


class DecisionAction(str, Enum):
    """Normalized decision action."""
    OPEN_LONG = "open_long"
    OPEN_SHORT = "open_short"
    CLOSE = "close"  # Close whichever side is held
    CLOSE_LONG = "close_long"
    CLOSE_SHORT = "close_short"
    HOLD = "hold"

    @classmethod
    def parse(cls, value: Optional[str]) -> "DecisionAction":
        """Map the action vocabularies of the AI clients onto DecisionAction.

        Unknown or missing actions map to HOLD.

        Example:
            >>> DecisionAction.parse("BUY")
            <DecisionAction.OPEN_LONG: 'open_long'>
        """
        if isinstance(value, DecisionAction):
            return value
        if not value:
            return cls.HOLD
        return _ACTION_ALIASES.get(str(value).strip().lower(), cls.HOLD)

    @property
    def is_open(self) -> bool:
        return self in (DecisionAction.OPEN_LONG, DecisionAction.OPEN_SHORT)

    @property
    def is_close(self) -> bool:
        return self in (DecisionAction.CLOSE, DecisionAction.CLOSE_LONG, DecisionAction.CLOSE_SHORT)

    @property
    def side(self) -> Optional[PositionSide]:
        """Position side targeted by the action (None for CLOSE and HOLD)."""
        if self in (DecisionAction.OPEN_LONG, DecisionAction.CLOSE_LONG):
            return PositionSide.LONG
        if self in (DecisionAction.OPEN_SHORT, DecisionAction.CLOSE_SHORT):
            return PositionSide.SHORT
        return None


_ACTION_ALIASES = {
    "buy": DecisionAction.OPEN_LONG,
    "long": DecisionAction.OPEN_LONG,
    "open_long": DecisionAction.OPEN_LONG,
    "sell": DecisionAction.OPEN_SHORT,
    "short": DecisionAction.OPEN_SHORT,
    "open_short": DecisionAction.OPEN_SHORT,
    "close": DecisionAction.CLOSE,
    "close_long": DecisionAction.CLOSE_LONG,
    "close_short": DecisionAction.CLOSE_SHORT,
    "hold": DecisionAction.HOLD,
    "wait": DecisionAction.HOLD,
}


@dataclass
class TradingDecision:
    """A single trading decision for one symbol."""

    symbol: str
    action: DecisionAction
    confidence: float = 0.0  # 0-100
    leverage: int = 0  # 0 = use the run's default leverage
    position_pct: float = 0.0  # % of equity committed as margin, 0 = run default
    stop_loss_pct: float = 0.0  # e.g. 2.0 = 2% from entry, 0 = none
    take_profit_pct: float = 0.0
    reasoning: str = ""

    def __post_init__(self):
        self.action = DecisionAction.parse(self.action)

    @property
    def is_hold(self) -> bool:
        return self.action == DecisionAction.HOLD

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "symbol": self.symbol,
            "action": self.action.value,
            "confidence": self.confidence,
            "leverage": self.leverage,
            "position_pct": self.position_pct,
            "stop_loss_pct": self.stop_loss_pct,
            "take_profit_pct": self.take_profit_pct,
            "reasoning": self.reasoning,
        }

    @classmethod
    def from_dict(cls, data: dict, default_symbol: str = "") -> "TradingDecision":
        """Create from dictionary.

        Accepts the legacy ``stop_loss``/``take_profit`` keys as percentages
        when the ``*_pct`` keys are absent.
        """
        stop_loss = data.get("stop_loss_pct", data.get("stop_loss"))
        take_profit = data.get("take_profit_pct", data.get("take_profit"))
        return cls(
            symbol=str(data.get("symbol") or default_symbol),
            action=DecisionAction.parse(data.get("action")),
            confidence=float(data.get("confidence") or 0.0),
            leverage=int(data.get("leverage") or 0),
            position_pct=float(data.get("position_pct") or 0.0),
            stop_loss_pct=float(stop_loss or 0.0),
            take_profit_pct=float(take_profit or 0.0),
            reasoning=str(data.get("reasoning") or ""),
        )


_TAGGED_PATTERNS = [
    re.compile(r"<decision>\s*(.*?)\s*</decision>", re.DOTALL),
    re.compile(r"<final_vote>\s*(.*?)\s*</final_vote>", re.DOTALL),
    re.compile(r"```(?:json)?\s*(.*?)\s*```", re.DOTALL),
]


def parse_decisions(response: str, default_symbol: str = "") -> List[TradingDecision]:
    """Parse decisions from an AI response.

    Args:
        response: Raw model output
        default_symbol: Symbol assigned to decisions that omit one

    Returns:
        Parsed decisions (a single object yields a one-element list)

    Raises:
        DecisionParseError: If no JSON payload can be extracted
    """
    for candidate in _json_candidates(response):
        try:
            payload = json.loads(candidate)
        except json.JSONDecodeError:
            continue

        if isinstance(payload, dict):
            payload = payload.get("decisions", [payload])
        if not isinstance(payload, list):
            continue

        try:
            return [
                TradingDecision.from_dict(item, default_symbol=default_symbol)
                for item in payload
                if isinstance(item, dict)
            ]
        except (TypeError, ValueError) as e:
            raise DecisionParseError(f"Malformed decision payload: {e}") from e

    raise DecisionParseError("No JSON decision found in response")


def _json_candidates(response: str):
    text = response.strip()
    yield text

    for pattern in _TAGGED_PATTERNS:
        match = pattern.search(text)
        if match:
            yield match.group(1).strip()

    for opener, closer in (("[", "]"), ("{", "}")):
        start = text.find(opener)
        end = text.rfind(closer)
        if start >= 0 and end > start:
            yield text[start:end + 1]
