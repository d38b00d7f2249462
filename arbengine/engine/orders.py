"""Order placement and confirmation polling shared by execution and rollback."""

from __future__ import annotations

import logging
import time
from typing import Callable

from arbengine.adapters.base import ExchangeAdapter
from arbengine.metrics.exporter import ERRORS_TOTAL
from arbengine.models import OrderStatus

log = logging.getLogger(__name__)


class ExecutionError(RuntimeError):
    """Base class for failures that end a session."""


class OrderPlacementError(ExecutionError):
    """The venue refused or failed to accept an order."""


class ConfirmationTimeout(ExecutionError):
    """An order never reached ``closed`` within the polling budget."""


class OrderRejected(ExecutionError):
    """The venue reported the order as canceled, rejected or expired."""


class ProfitabilityAbort(ExecutionError):
    """Running value fell below the tolerated share of the target profit."""


class SessionInFlight(ExecutionError):
    """Another session is already executing."""


def await_fill(
    gateway: ExchangeAdapter,
    order_id: str,
    symbol: str,
    *,
    attempts: int = 10,
    interval: float = 1.0,
    sleep: Callable[[float], None] = time.sleep,
) -> OrderStatus:
    """Poll *order_id* until it is ``closed`` and return its final status.

    Status lookups that raise are counted against the attempt budget. The
    wait between attempts is a blocking ``sleep``.

    Raises
    ------
    OrderRejected
        When the order reaches a dead terminal state.
    ConfirmationTimeout
        When *attempts* polls pass without the order closing.
    """

    venue = gateway.name()
    last: OrderStatus | None = None
    for attempt in range(1, attempts + 1):
        try:
            last = gateway.get_order_status(order_id, symbol)
        except Exception as exc:
            log.warning(
                "%s status poll %d/%d for %s failed: %s",
                venue,
                attempt,
                attempts,
                order_id,
                exc,
            )
            ERRORS_TOTAL.labels(venue, "order_status").inc()
        else:
            if last.is_closed:
                return last
            if last.is_dead:
                raise OrderRejected(
                    f"{venue} order {order_id} {symbol} ended {last.status}"
                    f" (filled {last.filled:g})"
                )
        if attempt < attempts:
            sleep(interval)
    detail = f" last status {last.status}" if last is not None else ""
    raise ConfirmationTimeout(
        f"{venue} order {order_id} {symbol} not closed after {attempts} polls{detail}"
    )


def place(
    gateway: ExchangeAdapter,
    symbol: str,
    side: str,
    amount: float,
    price: float | None = None,
) -> str:
    """Place an order, translating any gateway failure into :class:`OrderPlacementError`."""

    try:
        order_id = gateway.place_order(symbol, side, amount, price)  # type: ignore[arg-type]
    except Exception as exc:
        raise OrderPlacementError(
            f"{gateway.name()} {side} {amount:.8g} {symbol} failed: {exc}"
        ) from exc
    if not order_id:
        raise OrderPlacementError(
            f"{gateway.name()} {side} {symbol} returned no order id"
        )
    return order_id
