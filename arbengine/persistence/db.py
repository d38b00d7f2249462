"""SQLite persistence layer for session outcomes."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from sqlite3 import Connection

from ..models import Session, TradeResult

log = logging.getLogger(__name__)


def init_db(db_path: str = "arbengine.db") -> Connection:
    """Create a database connection and ensure required tables exist."""
    conn = sqlite3.connect(db_path, check_same_thread=False)
    create_schema(conn)
    return conn


def create_schema(conn: Connection) -> None:
    """Create database tables if they are missing."""
    cur = conn.cursor()
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS sessions (
            id TEXT PRIMARY KEY,
            opportunity_id TEXT NOT NULL,
            kind TEXT NOT NULL,
            path TEXT NOT NULL,
            venues TEXT NOT NULL,
            status TEXT NOT NULL,
            started_at TEXT,
            finished_at TEXT,
            target_profit_pct REAL,
            running_profit_pct REAL,
            realized_profit REAL,
            realized_profit_pct REAL,
            errors TEXT,
            rollback_ok INTEGER,
            rollback_failed TEXT
        )
        """
    )
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS trades (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            session_id TEXT NOT NULL,
            leg INTEGER NOT NULL,
            order_id TEXT,
            venue TEXT NOT NULL,
            symbol TEXT NOT NULL,
            side TEXT NOT NULL,
            requested_amount REAL NOT NULL,
            filled_amount REAL NOT NULL,
            fill_price REAL NOT NULL,
            fee REAL NOT NULL,
            fee_currency TEXT,
            timestamp TEXT
        )
        """
    )
    conn.commit()


def insert_trade(conn: Connection, session_id: str, leg: int, trade: TradeResult) -> int:
    """Insert a trade record and return its row id."""
    cur = conn.cursor()
    cur.execute(
        """
        INSERT INTO trades (
            session_id, leg, order_id, venue, symbol, side, requested_amount,
            filled_amount, fill_price, fee, fee_currency, timestamp
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            session_id,
            leg,
            trade.order_id,
            trade.venue,
            trade.symbol,
            trade.side,
            trade.requested_amount,
            trade.filled_amount,
            trade.fill_price,
            trade.fee,
            trade.fee_currency,
            trade.timestamp.isoformat() if trade.timestamp else None,
        ),
    )
    conn.commit()
    return cur.lastrowid


def insert_session(conn: Connection, session: Session) -> str:
    """Insert (or replace) *session* together with its trades."""
    opp = session.opportunity
    rb = session.rollback
    cur = conn.cursor()
    cur.execute(
        """
        INSERT OR REPLACE INTO sessions (
            id, opportunity_id, kind, path, venues, status, started_at,
            finished_at, target_profit_pct, running_profit_pct, realized_profit,
            realized_profit_pct, errors, rollback_ok, rollback_failed
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            session.id,
            opp.id,
            opp.kind.value,
            json.dumps(list(opp.path)),
            json.dumps(list(opp.venues)),
            session.status.value,
            session.started_at.isoformat(),
            session.finished_at.isoformat() if session.finished_at else None,
            session.target_profit,
            session.running_profit,
            session.realized_profit,
            session.realized_profit_pct,
            json.dumps(list(session.errors)),
            None if rb is None else int(rb.ok),
            None if rb is None else json.dumps(rb.failed),
        ),
    )
    cur.execute("DELETE FROM trades WHERE session_id = ?", (session.id,))
    conn.commit()
    for leg, trade in enumerate(session.trades, start=1):
        insert_trade(conn, session.id, leg, trade)
    return session.id


class SQLiteBackupSink:
    """BackupSink writing session outcomes on a background thread."""

    def __init__(self, db_path: str = "arbengine.db") -> None:
        self.conn = init_db(db_path)
        self._lock = threading.Lock()
        self._pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="backup")

    def _write(self, session: Session) -> None:
        with self._lock:
            insert_session(self.conn, session)

    def persist_session_outcome(self, session: Session) -> Future:
        """Queue *session* for persistence and return the pending future."""

        fut = self._pool.submit(self._write, session)
        fut.add_done_callback(self._report)
        return fut

    @staticmethod
    def _report(fut: Future) -> None:
        exc = fut.exception()
        if exc is not None:
            log.error("session backup failed: %s", exc)

    def close(self) -> None:
        """Flush queued writes and close the connection."""

        self._pool.shutdown(wait=True)
        with self._lock:
            self.conn.close()
