"""Drive an accepted opportunity through its legs as a session state machine.

A session moves ``pending -> executing -> completed | failed``. Legs run in
hop order; after each confirmed fill the running value is projected back into
the starting asset and the sequence aborts once it drops below
``target * (1 - max_slippage_tolerance)``. Failed sessions are handed to the
:class:`~arbengine.engine.rollback.RollbackCoordinator` and every terminal
session is reported once to the alert and backup sinks.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Protocol

from arbengine.adapters.base import ExchangeAdapter
from arbengine.engine.detector import cycle_value
from arbengine.engine.orders import (
    ExecutionError,
    ProfitabilityAbort,
    SessionInFlight,
    await_fill,
    place,
)
from arbengine.engine.rollback import RollbackCoordinator
from arbengine.metrics.exporter import (
    ERRORS_TOTAL,
    ORDERS_TOTAL,
    PROFIT_TOTAL,
    SESSIONS_TOTAL,
)
from arbengine.models import (
    Hop,
    Opportunity,
    OrderStatus,
    Session,
    SessionStatus,
    TradeResult,
)
from arbengine.notify import session_summary

log = logging.getLogger(__name__)


class AlertSink(Protocol):
    def notify(
        self, severity: str, message: str, context: Mapping[str, Any] | None = None
    ) -> None: ...


class BackupSink(Protocol):
    def persist_session_outcome(self, session: Session) -> Any: ...


class ExecutionOrchestrator:
    """Execute opportunities one at a time.

    The in-flight guard is a non-blocking lock owned by the orchestrator;
    :meth:`execute` raises :class:`SessionInFlight` rather than queueing a
    second session.
    """

    def __init__(
        self,
        gateways: Mapping[str, ExchangeAdapter],
        rollback: RollbackCoordinator | None = None,
        *,
        max_slippage_tolerance: float = 0.5,
        poll_interval: float = 1.0,
        poll_attempts: int = 10,
        order_type: str = "limit",
        alert: AlertSink | None = None,
        backup: BackupSink | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.gateways = gateways
        self.max_slippage_tolerance = max_slippage_tolerance
        self.poll_interval = poll_interval
        self.poll_attempts = poll_attempts
        self.order_type = order_type
        self.alert = alert
        self.backup = backup
        self.sleep = sleep
        self.rollback = rollback or RollbackCoordinator(
            gateways, poll_interval=poll_interval, poll_attempts=poll_attempts, sleep=sleep
        )
        self._guard = threading.Lock()
        self.current: Session | None = None

    @classmethod
    def from_settings(
        cls,
        gateways: Mapping[str, ExchangeAdapter],
        cfg,
        *,
        alert: AlertSink | None = None,
        backup: BackupSink | None = None,
    ) -> "ExecutionOrchestrator":
        return cls(
            gateways,
            max_slippage_tolerance=cfg.max_slippage_tolerance,
            poll_interval=cfg.confirm_poll_interval_secs,
            poll_attempts=cfg.confirm_max_attempts,
            order_type=cfg.order_type,
            alert=alert,
            backup=backup,
        )

    @property
    def in_flight(self) -> bool:
        return self._guard.locked()

    def _fee(self, venue: str) -> float:
        return float(self.gateways[venue].trading_fee())

    def profit_floor(self, target_pct: float) -> float:
        """Lowest running profit percentage tolerated for *target_pct*."""

        return target_pct * (1.0 - self.max_slippage_tolerance)

    def execute(self, opp: Opportunity) -> Session:
        """Run *opp* to a terminal state and return its session."""

        if not self._guard.acquire(blocking=False):
            raise SessionInFlight(f"cannot start {opp.id}: a session is executing")
        try:
            session = Session(opp)
            self.current = session
            session.transition(SessionStatus.EXECUTING)
            log.info(
                "session %s executing %s target=%.4f%%",
                session.id,
                opp.id,
                session.target_profit,
            )
            try:
                self._run_legs(session)
            except ExecutionError as exc:
                self._fail(session, str(exc))
            except Exception as exc:
                log.exception("session %s unexpected error", session.id)
                self._fail(session, f"unexpected error: {exc}")
            else:
                session.transition(SessionStatus.COMPLETED)
                PROFIT_TOTAL.labels(opp.start_asset).inc(session.realized_profit or 0.0)
                log.info(
                    "session %s completed realized=%.4f%%",
                    session.id,
                    session.realized_profit_pct or 0.0,
                )
            self._report(session)
            return session
        finally:
            self.current = None
            self._guard.release()

    def _fail(self, session: Session, reason: str) -> None:
        session.log_error(reason)
        log.error("session %s failed: %s", session.id, reason)
        session.transition(SessionStatus.FAILED)
        if session.trades:
            session.rollback = self.rollback.rollback(session)

    def _run_legs(self, session: Session) -> None:
        opp = session.opportunity
        capital = opp.min_required_capital
        held = capital
        floor = self.profit_floor(session.target_profit)
        first_cost = last_cost = 0.0

        for idx, hop in enumerate(opp.hops):
            trade = self._execute_leg(hop, held)
            session.record_trade(trade)
            received = self._received(hop, trade)
            if idx == 0:
                first_cost = held
            held = received
            last_cost = received

            remaining = opp.hops[idx + 1 :]
            projected = cycle_value(remaining, self._fee, start=held)
            session.running_profit = (projected / capital - 1.0) * 100.0
            log.info(
                "session %s leg %d/%d %s %s filled=%.8g @ %.8g running=%.4f%%",
                session.id,
                idx + 1,
                len(opp.hops),
                trade.side,
                trade.symbol,
                trade.filled_amount,
                trade.fill_price,
                session.running_profit,
            )
            if session.running_profit < floor:
                raise ProfitabilityAbort(
                    f"running profit {session.running_profit:.4f}% below floor "
                    f"{floor:.4f}% after leg {idx + 1}/{len(opp.hops)}"
                )

        session.realized_profit = last_cost - first_cost
        session.realized_profit_pct = (last_cost - first_cost) / first_cost * 100.0

    def _execute_leg(self, hop: Hop, held: float) -> TradeResult:
        gateway = self.gateways[hop.venue]
        amount = hop.order_amount(held)
        price = hop.price if self.order_type == "limit" else None
        try:
            order_id = place(gateway, hop.symbol, hop.side, amount, price)
        except ExecutionError:
            ORDERS_TOTAL.labels(hop.venue, "place_error").inc()
            raise
        try:
            status = await_fill(
                gateway,
                order_id,
                hop.symbol,
                attempts=self.poll_attempts,
                interval=self.poll_interval,
                sleep=self.sleep,
            )
        except ExecutionError:
            ORDERS_TOTAL.labels(hop.venue, "unconfirmed").inc()
            self._cancel_quietly(gateway, order_id, hop.symbol)
            raise
        ORDERS_TOTAL.labels(hop.venue, "filled").inc()
        return self._trade_from(hop, amount, status)

    def _trade_from(self, hop: Hop, amount: float, status: OrderStatus) -> TradeResult:
        filled = status.filled if status.filled > 0 else amount
        price = status.fill_price or hop.price
        if status.fee is not None:
            fee, fee_currency = status.fee, status.fee_currency
        else:
            gross = filled if hop.side == "buy" else filled * price
            fee, fee_currency = gross * self._fee(hop.venue), hop.to_asset
        return TradeResult(
            venue=hop.venue,
            symbol=hop.symbol,
            side=hop.side,
            requested_amount=amount,
            filled_amount=filled,
            fill_price=price,
            fee=fee,
            order_id=status.order_id,
            timestamp=datetime.now(timezone.utc),
            fee_currency=fee_currency,
        )

    @staticmethod
    def _received(hop: Hop, trade: TradeResult) -> float:
        """Amount of ``hop.to_asset`` obtained by *trade*, net of its fee.

        A fee charged in another asset (the quote on a buy, or a venue token
        such as BNB) leaves the received amount untouched. A fee with no
        currency is assumed to be in ``hop.to_asset``.
        """

        gross = trade.filled_amount if hop.side == "buy" else trade.cost
        currency = trade.fee_currency
        if currency is not None and currency.upper() != hop.to_asset.upper():
            return gross
        return max(gross - trade.fee, 0.0)

    @staticmethod
    def _cancel_quietly(gateway: ExchangeAdapter, order_id: str, symbol: str) -> None:
        try:
            gateway.cancel_order(order_id, symbol)
        except Exception as exc:
            log.warning("%s cancel %s failed: %s", gateway.name(), order_id, exc)
            ERRORS_TOTAL.labels(gateway.name(), "cancel").inc()

    def _report(self, session: Session) -> None:
        SESSIONS_TOTAL.labels(session.status.value).inc()
        severity, message, context = session_summary(session)
        if self.alert is not None:
            try:
                self.alert.notify(severity, message, context)
            except Exception as exc:
                log.error("alert sink failed for session %s: %s", session.id, exc)
        if self.backup is not None:
            try:
                self.backup.persist_session_outcome(session)
            except Exception as exc:
                log.error("backup sink failed for session %s: %s", session.id, exc)
