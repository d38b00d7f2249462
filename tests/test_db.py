"""Database helper tests for persistence layer."""

import json
from datetime import datetime, timezone

from arbengine.engine.detector import OpportunityDetector
from arbengine.models import RollbackReport, Session, SessionStatus, TradeResult
from arbengine.persistence import db
from tests.gateway_stubs import triangle_snapshot


def _failed_session() -> Session:
    opp = OpportunityDetector(min_profit_pct=0.5, start_assets=("USD",)).detect(
        triangle_snapshot()
    )[0]
    session = Session(opp)
    session.transition(SessionStatus.EXECUTING)
    session.record_trade(
        TradeResult(
            venue="kraken",
            symbol="BTC/USD",
            side="buy",
            requested_amount=0.5,
            filled_amount=0.5,
            fill_price=30000.0,
            fee=0.0005,
            order_id="o1",
            timestamp=datetime.fromtimestamp(0, timezone.utc),
            fee_currency="BTC",
        )
    )
    session.log_error("leg 2 timed out")
    session.transition(SessionStatus.FAILED)
    session.rollback = RollbackReport(attempted=1, succeeded=["kraken:sell:BTC/USD:0.5"])
    return session


def test_insert_session_and_trades() -> None:
    """Sessions and their legs can be written and read back."""
    conn = db.init_db(":memory:")
    session = _failed_session()
    assert db.insert_session(conn, session) == session.id

    cur = conn.cursor()
    cur.execute("SELECT opportunity_id, status, path, errors, rollback_ok FROM sessions")
    opp_id, status, path, errors, rollback_ok = cur.fetchone()
    assert opp_id == "triangular:kraken:USD>BTC>ETH>USD"
    assert status == "failed"
    assert json.loads(path) == ["USD", "BTC", "ETH", "USD"]
    assert json.loads(errors) == ["leg 2 timed out"]
    assert rollback_ok == 1
    cur.execute(
        "SELECT leg, order_id, symbol, side, filled_amount, fee, fee_currency FROM trades"
    )
    assert cur.fetchall() == [(1, "o1", "BTC/USD", "buy", 0.5, 0.0005, "BTC")]


def test_insert_session_is_idempotent() -> None:
    conn = db.init_db(":memory:")
    session = _failed_session()
    db.insert_session(conn, session)
    db.insert_session(conn, session)
    cur = conn.cursor()
    assert cur.execute("SELECT COUNT(*) FROM sessions").fetchone() == (1,)
    assert cur.execute("SELECT COUNT(*) FROM trades").fetchone() == (1,)


def test_backup_sink_writes_in_background(tmp_path) -> None:
    path = tmp_path / "sessions.db"
    sink = db.SQLiteBackupSink(str(path))
    session = _failed_session()
    sink.persist_session_outcome(session).result(timeout=5)
    sink.close()

    conn = db.init_db(str(path))
    row = conn.execute("SELECT id, status FROM sessions").fetchone()
    assert row == (session.id, "failed")
