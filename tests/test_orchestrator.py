"""Execution orchestrator tests driven by in-memory gateways."""

from __future__ import annotations

import pytest

from arbengine.engine.detector import OpportunityDetector, find_simple
from arbengine.engine.orchestrator import ExecutionOrchestrator
from arbengine.engine.orders import SessionInFlight
from arbengine.models import SessionStatus
from tests.gateway_stubs import (
    RecordingAlert,
    RecordingBackup,
    StubGateway,
    quote,
    triangle_books,
    triangle_snapshot,
)


def _triangle_opp():
    detector = OpportunityDetector(
        min_profit_pct=0.5, start_assets=("USD",), capital_for=lambda _a: 1000.0
    )
    return detector.detect(triangle_snapshot())[0]


def _orchestrator(gateways, **kwargs):
    sleeps: list[float] = []
    kwargs.setdefault("alert", RecordingAlert())
    kwargs.setdefault("backup", RecordingBackup())
    orch = ExecutionOrchestrator(gateways, sleep=sleeps.append, **kwargs)
    return orch, sleeps


def test_triangular_session_completes() -> None:
    gw = StubGateway("kraken", books=triangle_books())
    orch, sleeps = _orchestrator({"kraken": gw})
    opp = _triangle_opp()

    session = orch.execute(opp)

    assert session.status is SessionStatus.COMPLETED
    assert [(t.symbol, t.side) for t in session.trades] == [
        ("BTC/USD", "buy"),
        ("ETH/BTC", "buy"),
        ("ETH/USD", "sell"),
    ]
    # limit orders are placed at the planned hop prices
    assert [o[3] for o in gw.orders] == [30000.0, 0.07, 2150.0]
    assert gw.orders[0][2] == pytest.approx(1000.0 / 30000)
    assert session.realized_profit_pct == pytest.approx(opp.profit_pct)
    assert session.realized_profit == pytest.approx(opp.expected_profit)
    assert session.rollback is None
    assert session.finished_at is not None
    assert sleeps == []
    assert not orch.in_flight


def test_market_orders_have_no_price() -> None:
    gw = StubGateway("kraken", books=triangle_books())
    orch, _ = _orchestrator({"kraken": gw}, order_type="market")
    session = orch.execute(_triangle_opp())
    assert session.status is SessionStatus.COMPLETED
    assert all(o[3] is None for o in gw.orders)


def test_simple_session_spans_two_venues() -> None:
    snapshot = [
        quote("BTC/USDT", 100.0, "A", bid=99.9, ask=100.0),
        quote("BTC/USDT", 102.0, "B", bid=102.0, ask=102.1),
    ]
    opp = find_simple(
        snapshot, min_profit_pct=0.5, fee_for=lambda _v: 0.001, capital_for=lambda _a: 1000.0
    )[0]
    a, b = StubGateway("A"), StubGateway("B")
    orch, _ = _orchestrator({"A": a, "B": b})

    session = orch.execute(opp)

    assert session.status is SessionStatus.COMPLETED
    assert a.orders == [("BTC/USDT", "buy", pytest.approx(10.0), 100.0)]
    assert b.orders == [("BTC/USDT", "sell", pytest.approx(9.99), 102.0)]
    # fees compound per leg while detection sums them
    assert session.realized_profit_pct == pytest.approx(opp.profit_pct, abs=1e-3)


def test_abort_after_leg_two_rolls_back_in_reverse() -> None:
    """A short fill on leg 2 drags the projection below the floor."""
    gw = StubGateway("kraken", books=triangle_books(), fill_ratio={"ETH/BTC": 0.98})
    alert, backup = RecordingAlert(), RecordingBackup()
    orch, _ = _orchestrator({"kraken": gw}, alert=alert, backup=backup)

    session = orch.execute(_triangle_opp())

    assert session.status is SessionStatus.FAILED
    assert len(session.trades) == 2
    assert "ETH/USD" not in [o[0] for o in gw.orders]
    leg1, leg2 = session.trades
    assert gw.orders[2:] == [
        ("ETH/BTC", "sell", leg2.filled_amount, None),
        ("BTC/USD", "sell", leg1.filled_amount, None),
    ]
    assert session.rollback is not None and session.rollback.ok
    assert session.rollback.attempted == 2
    assert "below floor" in session.errors[0]
    assert session.running_profit < orch.profit_floor(session.target_profit)
    assert session.realized_profit is None
    assert len(alert.calls) == 1 and alert.calls[0][0] == "error"
    assert backup.sessions == [session]


def test_confirmation_timeout_rolls_back_prior_legs_only() -> None:
    gw = StubGateway("kraken", books=triangle_books(), never_fill={"ETH/BTC"})
    orch, sleeps = _orchestrator({"kraken": gw}, poll_attempts=10, poll_interval=1.0)

    session = orch.execute(_triangle_opp())

    assert session.status is SessionStatus.FAILED
    assert [t.symbol for t in session.trades] == ["BTC/USD"]
    # leg 1 confirms on the first poll, leg 2 exhausts ten, rollback needs one
    assert gw.status_calls == 12
    assert sleeps == [1.0] * 9
    assert gw.cancelled == ["kraken-2"]
    assert gw.orders[-1] == ("BTC/USD", "sell", session.trades[0].filled_amount, None)
    assert len(gw.orders) == 3
    assert "not closed after 10 polls" in session.errors[0]


def test_placement_failure_on_first_leg_needs_no_rollback() -> None:
    gw = StubGateway("kraken", books=triangle_books(), fail_place={"BTC/USD"})
    alert = RecordingAlert()
    orch, _ = _orchestrator({"kraken": gw}, alert=alert)

    session = orch.execute(_triangle_opp())

    assert session.status is SessionStatus.FAILED
    assert session.trades == ()
    assert session.rollback is None
    assert gw.orders == []
    assert len(alert.calls) == 1


def test_dead_order_fails_and_compensates() -> None:
    gw = StubGateway("kraken", books=triangle_books(), dead={"ETH/USD"})
    orch, _ = _orchestrator({"kraken": gw})

    session = orch.execute(_triangle_opp())

    assert session.status is SessionStatus.FAILED
    assert "canceled" in session.errors[0]
    assert gw.cancelled == ["kraken-3"]
    assert [(o[0], o[1]) for o in gw.orders[3:]] == [
        ("ETH/BTC", "sell"),
        ("BTC/USD", "sell"),
    ]


def test_sink_failures_do_not_escape() -> None:
    class BrokenAlert:
        def notify(self, severity, message, context=None):
            raise RuntimeError("webhook down")

    backup = RecordingBackup()
    gw = StubGateway("kraken", books=triangle_books())
    orch, _ = _orchestrator({"kraken": gw}, alert=BrokenAlert(), backup=backup)

    session = orch.execute(_triangle_opp())

    assert session.status is SessionStatus.COMPLETED
    assert backup.sessions == [session]


def test_second_session_rejected_while_in_flight() -> None:
    opp = _triangle_opp()
    seen: list[object] = []

    class ReentrantGateway(StubGateway):
        def get_order_status(self, order_id, symbol):
            if not seen:
                seen.append(orch.in_flight)
                try:
                    orch.execute(opp)
                except SessionInFlight as exc:
                    seen.append(exc)
            return super().get_order_status(order_id, symbol)

    gw = ReentrantGateway("kraken", books=triangle_books())
    orch, _ = _orchestrator({"kraken": gw})

    session = orch.execute(opp)

    assert seen[0] is True
    assert isinstance(seen[1], SessionInFlight)
    assert session.status is SessionStatus.COMPLETED
    # the rejected call placed nothing
    assert len(gw.orders) == 3
    assert not orch.in_flight


def test_each_session_reported_once() -> None:
    alert, backup = RecordingAlert(), RecordingBackup()
    gw = StubGateway("kraken", books=triangle_books())
    orch, _ = _orchestrator({"kraken": gw}, alert=alert, backup=backup)
    first = orch.execute(_triangle_opp())
    second = orch.execute(_triangle_opp())
    assert first.id != second.id
    assert [c[2]["session"] for c in alert.calls] == [first.id, second.id]
    assert backup.sessions == [first, second]


def test_fee_in_another_asset_leaves_received_amount_whole() -> None:
    gw = StubGateway(
        "kraken", books=triangle_books(), reported_fees={"BTC/USD": (0.02, "BNB")}
    )
    orch, _ = _orchestrator({"kraken": gw})

    session = orch.execute(_triangle_opp())

    assert session.status is SessionStatus.COMPLETED
    assert session.trades[0].fee_currency == "BNB"
    # all of leg 1's BTC goes into leg 2
    assert gw.orders[1][2] == pytest.approx(gw.orders[0][2] / 0.07)


def test_fee_in_received_asset_is_deducted() -> None:
    btc = 1000.0 / 30000
    gw = StubGateway(
        "kraken", books=triangle_books(), reported_fees={"BTC/USD": (btc * 0.002, "BTC")}
    )
    orch, _ = _orchestrator({"kraken": gw})

    session = orch.execute(_triangle_opp())

    assert session.status is SessionStatus.COMPLETED
    assert gw.orders[1][2] == pytest.approx(btc * 0.998 / 0.07)
    # without a reported fee the venue fee is charged in the received asset
    assert session.trades[1].fee_currency == "ETH"
    assert session.trades[2].fee_currency == "USD"
