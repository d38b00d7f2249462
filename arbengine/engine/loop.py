"""Periodic driver: detect, validate and execute with one session in flight.

Besides scheduling ticks the loop watches its own health: consecutive tick
failures escalate to a critical alert and stop the loop, and every few ticks
venue balances are compared against warning and critical thresholds.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Any, Mapping, Protocol

from arbengine.engine.detector import OpportunityDetector
from arbengine.engine.orchestrator import AlertSink, ExecutionOrchestrator
from arbengine.engine.orders import SessionInFlight
from arbengine.engine.risk import RiskValidator
from arbengine.metrics.exporter import (
    ERRORS_TOTAL,
    OPPORTUNITIES_TOTAL,
    SCAN_LATENCY,
    SCANS_TOTAL,
)
from arbengine.models import Opportunity, PricePoint, Session

log = logging.getLogger(__name__)


class PriceFeed(Protocol):
    def get_price_snapshot(self) -> list[PricePoint]: ...


class ScanLoop:
    """Run scan ticks every ``interval`` seconds until :meth:`stop` is called.

    Ticks execute in a worker thread so confirmation polling may block. A tick
    observed while a session is executing is skipped without detection or
    validation. Cancelling :meth:`run` waits for the current tick to finish
    before propagating, so an executing session always reaches a terminal
    state.

    Only the last ``history`` sessions are kept in :attr:`sessions`;
    :attr:`sessions_run` counts all of them.
    """

    def __init__(
        self,
        feed: PriceFeed,
        detector: OpportunityDetector,
        validator: RiskValidator,
        orchestrator: ExecutionOrchestrator,
        *,
        interval: float = 5.0,
        alert: AlertSink | None = None,
        max_consecutive_errors: int = 5,
        health_check_every: int = 12,
        balance_warning: Mapping[str, float] | None = None,
        balance_critical: Mapping[str, float] | None = None,
        high_profit_pct: float = 0.0,
        history: int = 100,
    ) -> None:
        self.feed = feed
        self.detector = detector
        self.validator = validator
        self.orchestrator = orchestrator
        self.interval = interval
        self.alert = alert
        self.max_consecutive_errors = max_consecutive_errors
        self.health_check_every = health_check_every
        self.balance_warning = dict(balance_warning or {})
        self.balance_critical = dict(balance_critical or {})
        self.high_profit_pct = high_profit_pct
        self.ticks = 0
        self.sessions: deque[Session] = deque(maxlen=history)
        self.sessions_run = 0
        self.consecutive_errors = 0
        self.halted = False
        self._stop = asyncio.Event()

    @classmethod
    def from_settings(
        cls,
        feed: PriceFeed,
        detector: OpportunityDetector,
        validator: RiskValidator,
        orchestrator: ExecutionOrchestrator,
        cfg,
        *,
        alert: AlertSink | None = None,
    ) -> "ScanLoop":
        return cls(
            feed,
            detector,
            validator,
            orchestrator,
            interval=cfg.scan_interval_secs,
            alert=alert,
            max_consecutive_errors=cfg.max_consecutive_errors,
            health_check_every=cfg.health_check_every_ticks,
            balance_warning=cfg.balance_warning,
            balance_critical=cfg.balance_critical,
            high_profit_pct=cfg.high_profit_alert_pct,
        )

    def tick(self) -> Session | None:
        """Run one detect/validate/execute pass and return any session run."""

        if self.orchestrator.in_flight:
            SCANS_TOTAL.labels("skipped").inc()
            log.debug("tick skipped: session in flight")
            return None

        t0 = time.perf_counter()
        snapshot = self.feed.get_price_snapshot()
        opportunities = self.detector.detect(snapshot)
        SCAN_LATENCY.observe(max(time.perf_counter() - t0, 0.0))
        for opp in opportunities:
            OPPORTUNITIES_TOTAL.labels(opp.kind.value).inc()
        log.info(
            "tick quotes=%d opportunities=%d%s",
            len(snapshot),
            len(opportunities),
            f" best={opportunities[0].id} {opportunities[0].profit_pct:.3f}%"
            if opportunities
            else "",
        )
        if opportunities:
            self._check_unusual_profit(opportunities[0])

        for opp in opportunities:
            assessment = self.validator.assess(opp)
            if not assessment.accepted:
                continue
            log.info(
                "accepted %s risk=%s liquidity=%.2fx",
                opp.id,
                assessment.risk_class.value,
                assessment.liquidity_ratio,
            )
            try:
                session = self.orchestrator.execute(opp)
            except SessionInFlight:
                SCANS_TOTAL.labels("skipped").inc()
                return None
            self.sessions.append(session)
            self.sessions_run += 1
            SCANS_TOTAL.labels("executed").inc()
            return session

        SCANS_TOTAL.labels("idle").inc()
        return None

    def check_balances(self) -> list[tuple[str, str, str, float]]:
        """Compare venue balances with the configured thresholds.

        Returns ``(severity, venue, asset, balance)`` for every balance below
        its warning or critical threshold; each one is also sent to the alert
        sink. Venues that fail to answer are alerted as ``error``.
        """

        assets = sorted(set(self.balance_warning) | set(self.balance_critical))
        low: list[tuple[str, str, str, float]] = []
        for venue, gateway in sorted(self.orchestrator.gateways.items()):
            for asset in assets:
                try:
                    balance = float(gateway.fetch_balance(asset))
                except Exception as exc:
                    ERRORS_TOTAL.labels(venue, "balance").inc()
                    self._notify("error", f"[{venue}] balance check failed: {exc}")
                    break
                if balance < self.balance_critical.get(asset, 0.0):
                    severity = "critical"
                elif balance < self.balance_warning.get(asset, 0.0):
                    severity = "warning"
                else:
                    continue
                low.append((severity, venue, asset, balance))
                self._notify(
                    severity,
                    f"[{venue}] low {asset} balance: {balance:g}",
                    {"venue": venue, "asset": asset, "balance": balance},
                )
        return low

    def _check_unusual_profit(self, opp: Opportunity) -> None:
        if self.high_profit_pct > 0 and opp.profit_pct > self.high_profit_pct:
            self._notify(
                "warning",
                f"unusually profitable opportunity {opp.id}: {opp.profit_pct:.3f}%",
                {"opportunity": opp.id, "profit_pct": opp.profit_pct},
            )

    def _cycle(self) -> Session | None:
        session = self.tick()
        every = self.health_check_every
        if every > 0 and (self.balance_warning or self.balance_critical):
            # first tick, then every ``every`` ticks
            if (self.ticks - 1) % every == 0:
                self.check_balances()
        return session

    def record_failure(self, exc: BaseException) -> None:
        """Count a failed tick and halt once the consecutive limit is reached."""

        self.consecutive_errors += 1
        ERRORS_TOTAL.labels("engine", "scan").inc()
        log.error(
            "scan tick failed (%d consecutive): %s", self.consecutive_errors, exc
        )
        limit = self.max_consecutive_errors
        if limit > 0 and self.consecutive_errors >= limit:
            self._notify(
                "critical",
                f"scan loop halted after {self.consecutive_errors} consecutive errors: {exc}",
                {"ticks": self.ticks, "last_error": str(exc)},
            )
            self.halted = True
            self.stop()

    def _notify(
        self, severity: str, message: str, context: Mapping[str, Any] | None = None
    ) -> None:
        if self.alert is None:
            log.warning("[%s] %s", severity, message)
            return
        try:
            self.alert.notify(severity, message, context)
        except Exception as exc:
            log.error("alert sink failed: %s", exc)

    async def run(self) -> None:
        """Tick until stopped; cancellation waits for the running tick."""

        log.info("scan loop started interval=%.2fs", self.interval)
        try:
            while not self._stop.is_set():
                self.ticks += 1
                fut = asyncio.ensure_future(asyncio.to_thread(self._cycle))
                try:
                    await asyncio.shield(fut)
                except asyncio.CancelledError:
                    if not fut.done():
                        log.warning("shutdown requested; waiting for in-flight tick")
                        await asyncio.gather(fut, return_exceptions=True)
                    raise
                except Exception as exc:
                    self.record_failure(exc)
                    if self._stop.is_set():
                        break
                else:
                    self.consecutive_errors = 0
                try:
                    await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            log.info("scan loop stopped after %d ticks", self.ticks)

    def stop(self) -> None:
        """Stop scheduling new ticks; the current one runs to completion."""

        self._stop.set()
