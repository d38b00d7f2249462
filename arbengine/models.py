"""Shared data models for opportunity detection and execution."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Literal, Optional

Side = Literal["buy", "sell"]


def opposite_side(side: Side) -> Side:
    """Return the side that undoes *side*."""

    return "sell" if side == "buy" else "buy"


class OpportunityKind(str, Enum):
    SIMPLE = "simple"
    TRIANGULAR = "triangular"


class RiskClass(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class SessionStatus(str, Enum):
    PENDING = "pending"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.PENDING: frozenset({SessionStatus.EXECUTING}),
    SessionStatus.EXECUTING: frozenset(
        {SessionStatus.COMPLETED, SessionStatus.FAILED}
    ),
    SessionStatus.COMPLETED: frozenset(),
    SessionStatus.FAILED: frozenset(),
}


class InvalidTransition(RuntimeError):
    """Raised when a session is moved along an illegal state edge."""


@dataclass(frozen=True)
class PricePoint:
    """One venue's quote for one instrument at a point in time."""

    symbol: str
    price: float
    venue: str
    timestamp: float
    bid: float | None = None
    ask: float | None = None
    volume: float | None = None

    @property
    def base(self) -> str:
        return self.symbol.split("/", 1)[0]

    @property
    def quote(self) -> str:
        return self.symbol.split("/", 1)[1]

    @property
    def best_ask(self) -> float:
        return self.ask if self.ask else self.price

    @property
    def best_bid(self) -> float:
        return self.bid if self.bid else self.price


@dataclass(frozen=True)
class Hop:
    """A single planned conversion from ``from_asset`` into ``to_asset``.

    ``side`` is the order side on ``symbol``: converting BASE into QUOTE is a
    ``sell`` (multiply by ``price``), QUOTE into BASE a ``buy`` (divide by
    ``price``). ``amount`` is the estimated order size in BASE units for the
    opportunity's minimum required capital.
    """

    venue: str
    symbol: str
    side: Side
    from_asset: str
    to_asset: str
    price: float
    amount: float = 0.0

    def convert(self, held: float) -> float:
        """Return the gross amount of ``to_asset`` obtained for *held*."""

        if self.side == "sell":
            return held * self.price
        return held / self.price

    def order_amount(self, held: float) -> float:
        """Return the BASE-denominated order size for *held* ``from_asset``."""

        if self.side == "sell":
            return held
        return held / self.price


@dataclass(frozen=True)
class Opportunity:
    """A detected profitable cycle."""

    id: str
    kind: OpportunityKind
    path: tuple[str, ...]
    venues: tuple[str, ...]
    hops: tuple[Hop, ...]
    expected_profit: float
    profit_pct: float
    min_required_capital: float
    discovered_at: float

    @property
    def start_asset(self) -> str:
        return self.hops[0].from_asset

    @property
    def entry_venue(self) -> str:
        return self.hops[0].venue


@dataclass(frozen=True)
class RiskAssessment:
    """Gating decision for an opportunity."""

    opportunity_id: str
    accepted: bool
    risk_class: RiskClass
    liquidity_ratio: float = 0.0
    volatility: float = 0.0
    slippage: float = 0.0
    reasons: tuple[str, ...] = ()


@dataclass(frozen=True)
class OrderStatus:
    """Exchange-side view of a placed order."""

    order_id: str
    status: str
    filled: float = 0.0
    remaining: float = 0.0
    fill_price: float | None = None
    fee: float | None = None
    fee_currency: str | None = None

    @property
    def is_closed(self) -> bool:
        return self.status == "closed"

    @property
    def is_dead(self) -> bool:
        return self.status in {"canceled", "cancelled", "rejected", "expired"}


@dataclass(frozen=True)
class TradeResult:
    """Outcome of one confirmed order."""

    venue: str
    symbol: str
    side: Side
    requested_amount: float
    filled_amount: float
    fill_price: float
    fee: float
    order_id: str = ""
    timestamp: datetime | None = None
    fee_currency: str | None = None

    @property
    def cost(self) -> float:
        """Notional in QUOTE units."""

        return self.filled_amount * self.fill_price


@dataclass
class RollbackReport:
    """Diagnostic outcome of compensating a failed session."""

    attempted: int = 0
    succeeded: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


@dataclass
class Session:
    """One execution attempt of an accepted opportunity.

    ``trades`` and ``errors`` are exposed as tuples; use :meth:`record_trade`
    and :meth:`log_error` to append. Status changes go through
    :meth:`transition` which enforces ``pending -> executing -> terminal``.
    """

    opportunity: Opportunity
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    target_profit: float = 0.0
    running_profit: float = 0.0
    realized_profit: Optional[float] = None
    realized_profit_pct: Optional[float] = None
    finished_at: datetime | None = None
    rollback: RollbackReport | None = None
    _status: SessionStatus = field(default=SessionStatus.PENDING, repr=False)
    _trades: list[TradeResult] = field(default_factory=list, repr=False)
    _errors: list[str] = field(default_factory=list, repr=False)

    def __post_init__(self) -> None:
        if not self.target_profit:
            self.target_profit = self.opportunity.profit_pct

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def trades(self) -> tuple[TradeResult, ...]:
        return tuple(self._trades)

    @property
    def errors(self) -> tuple[str, ...]:
        return tuple(self._errors)

    @property
    def is_terminal(self) -> bool:
        return self._status in (SessionStatus.COMPLETED, SessionStatus.FAILED)

    def transition(self, new: SessionStatus) -> None:
        if new not in _TRANSITIONS[self._status]:
            raise InvalidTransition(
                f"session {self.id}: {self._status.value} -> {new.value}"
            )
        self._status = new
        if self.is_terminal:
            self.finished_at = datetime.now(timezone.utc)

    def record_trade(self, trade: TradeResult) -> None:
        if self._status is not SessionStatus.EXECUTING:
            raise InvalidTransition(
                f"session {self.id}: cannot record trades while {self._status.value}"
            )
        self._trades.append(trade)

    def log_error(self, message: str) -> None:
        self._errors.append(message)
