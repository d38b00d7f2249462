"""Best-effort compensation of the filled legs of a failed session."""

from __future__ import annotations

import logging
import time
from typing import Callable, Mapping

from arbengine.adapters.base import ExchangeAdapter
from arbengine.engine.orders import ExecutionError, await_fill, place
from arbengine.metrics.exporter import ROLLBACKS_TOTAL
from arbengine.models import RollbackReport, Session, opposite_side

log = logging.getLogger(__name__)


class RollbackCoordinator:
    """Undo filled legs in reverse order with opposite-side market orders.

    Nothing here raises: each failure is written to the session's error log
    and the :class:`RollbackReport`, then the next compensation proceeds.
    """

    def __init__(
        self,
        gateways: Mapping[str, ExchangeAdapter],
        *,
        poll_interval: float = 1.0,
        poll_attempts: int = 10,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.gateways = gateways
        self.poll_interval = poll_interval
        self.poll_attempts = poll_attempts
        self.sleep = sleep

    def rollback(self, session: Session) -> RollbackReport:
        report = RollbackReport()
        for trade in reversed(session.trades):
            side = opposite_side(trade.side)
            label = f"{trade.venue}:{side}:{trade.symbol}:{trade.filled_amount:.8g}"
            report.attempted += 1
            try:
                gateway = self.gateways[trade.venue]
                order_id = place(gateway, trade.symbol, side, trade.filled_amount)
                await_fill(
                    gateway,
                    order_id,
                    trade.symbol,
                    attempts=self.poll_attempts,
                    interval=self.poll_interval,
                    sleep=self.sleep,
                )
            except (ExecutionError, KeyError) as exc:
                session.log_error(f"rollback {label} failed: {exc}")
                report.failed.append(label)
                ROLLBACKS_TOTAL.labels(trade.venue, "failed").inc()
                log.error("session %s rollback %s failed: %s", session.id, label, exc)
                continue
            report.succeeded.append(label)
            ROLLBACKS_TOTAL.labels(trade.venue, "ok").inc()
            log.info("session %s rollback %s placed %s", session.id, label, order_id)
        return report
