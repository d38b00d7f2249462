"""Pre-trade risk gating on liquidity, balance, spread and staleness."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from arbengine.adapters.base import ExchangeAdapter
from arbengine.metrics.exporter import ERRORS_TOTAL, REJECTIONS_TOTAL
from arbengine.models import Opportunity, RiskAssessment, RiskClass

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class BookStats:
    """Depth summary for one order book."""

    bid_volume: float
    ask_volume: float
    best_bid: float | None
    best_ask: float | None

    @property
    def min_volume(self) -> float:
        return min(self.bid_volume, self.ask_volume)

    @property
    def spread(self) -> float:
        if not self.best_bid or not self.best_ask:
            return float("inf")
        return (self.best_ask - self.best_bid) / self.best_bid


def _level(level: Any) -> tuple[float, float] | None:
    """Return ``(price, amount)`` from a list/tuple or mapping level."""

    try:
        if isinstance(level, (list, tuple)) and len(level) >= 2:
            return float(level[0]), float(level[1])
        if isinstance(level, Mapping):
            return float(level["price"]), float(level["amount"])
    except (KeyError, TypeError, ValueError):
        return None
    return None


def book_stats(book: Mapping[str, Any]) -> BookStats:
    """Summarise an order book into volumes and top-of-book prices."""

    bids = [lv for lv in map(_level, book.get("bids") or []) if lv is not None]
    asks = [lv for lv in map(_level, book.get("asks") or []) if lv is not None]
    return BookStats(
        bid_volume=sum(a for _, a in bids),
        ask_volume=sum(a for _, a in asks),
        best_bid=max((p for p, _ in bids), default=None),
        best_ask=min((p for p, _ in asks), default=None),
    )


def classify(
    volatility: float,
    slippage: float,
    *,
    low_volatility: float,
    high_volatility: float,
    low_slippage: float,
    high_slippage: float,
) -> RiskClass:
    """Map volatility and slippage estimates onto a :class:`RiskClass`."""

    if volatility > high_volatility or slippage > high_slippage:
        return RiskClass.HIGH
    if volatility < low_volatility and slippage < low_slippage:
        return RiskClass.LOW
    return RiskClass.MEDIUM


class RiskValidator:
    """Accept or reject an opportunity using read-only venue queries.

    Query failures never propagate: they reject the opportunity with reason
    ``venue_error``.
    """

    def __init__(
        self,
        gateways: Mapping[str, ExchangeAdapter],
        *,
        liquidity_ratio: float = 3.0,
        book_depth: int = 20,
        low_volatility: float = 0.002,
        high_volatility: float = 0.01,
        low_slippage: float = 0.001,
        high_slippage: float = 0.005,
        max_slippage_estimate: float = 0.05,
        max_age_ms: int = 5000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.gateways = gateways
        self.liquidity_ratio = liquidity_ratio
        self.book_depth = book_depth
        self.low_volatility = low_volatility
        self.high_volatility = high_volatility
        self.low_slippage = low_slippage
        self.high_slippage = high_slippage
        self.max_slippage_estimate = max_slippage_estimate
        self.max_age_ms = max_age_ms
        self.clock = clock

    @classmethod
    def from_settings(cls, gateways: Mapping[str, ExchangeAdapter], cfg) -> "RiskValidator":
        return cls(
            gateways,
            liquidity_ratio=cfg.liquidity_ratio,
            book_depth=cfg.book_depth,
            low_volatility=cfg.risk_low_volatility,
            high_volatility=cfg.risk_high_volatility,
            low_slippage=cfg.risk_low_slippage,
            high_slippage=cfg.risk_high_slippage,
            max_slippage_estimate=cfg.max_slippage_estimate,
            max_age_ms=cfg.max_opportunity_age_ms,
        )

    def slippage_estimate(self, stats: BookStats, required: float) -> float:
        """Thinner books relative to *required* imply more slippage."""

        if stats.min_volume <= 0:
            return self.max_slippage_estimate
        est = stats.spread * (1.0 + required / stats.min_volume)
        return min(est, self.max_slippage_estimate)

    def assess(self, opp: Opportunity) -> RiskAssessment:
        """Return the gating decision for *opp*."""

        reasons: list[str] = []

        if self.max_age_ms > 0:
            age_ms = (self.clock() - opp.discovered_at) * 1000.0
            if age_ms > self.max_age_ms:
                reasons.append("stale")

        liquidity_ratio = float("inf")
        volatility = 0.0
        slippage = 0.0
        for hop in opp.hops:
            gateway = self.gateways.get(hop.venue)
            if gateway is None:
                return self._reject(opp, ["venue_error"], RiskClass.HIGH)
            try:
                stats = book_stats(gateway.fetch_order_book(hop.symbol, self.book_depth))
            except Exception as exc:
                log.warning("%s order book %s failed: %s", hop.venue, hop.symbol, exc)
                ERRORS_TOTAL.labels(hop.venue, "order_book").inc()
                return self._reject(opp, ["venue_error"], RiskClass.HIGH)
            required = hop.amount
            if required > 0:
                liquidity_ratio = min(liquidity_ratio, stats.min_volume / required)
            if stats.min_volume < required * self.liquidity_ratio:
                if "liquidity" not in reasons:
                    reasons.append("liquidity")
            volatility = max(volatility, min(stats.spread, self.max_slippage_estimate))
            slippage = max(slippage, self.slippage_estimate(stats, required))

        gateway = self.gateways[opp.entry_venue]
        try:
            balance = float(gateway.fetch_balance(opp.start_asset))
        except Exception as exc:
            log.warning("%s balance %s failed: %s", opp.entry_venue, opp.start_asset, exc)
            ERRORS_TOTAL.labels(opp.entry_venue, "balance").inc()
            return self._reject(opp, ["venue_error"], RiskClass.HIGH)
        if balance < opp.min_required_capital:
            reasons.append("balance")

        risk_class = classify(
            volatility,
            slippage,
            low_volatility=self.low_volatility,
            high_volatility=self.high_volatility,
            low_slippage=self.low_slippage,
            high_slippage=self.high_slippage,
        )
        if risk_class is RiskClass.HIGH:
            reasons.append("high_risk")

        if liquidity_ratio == float("inf"):
            liquidity_ratio = 0.0
        assessment = RiskAssessment(
            opportunity_id=opp.id,
            accepted=not reasons,
            risk_class=risk_class,
            liquidity_ratio=liquidity_ratio,
            volatility=volatility,
            slippage=slippage,
            reasons=tuple(reasons),
        )
        if reasons:
            self._count(reasons)
            log.debug("reject %s reasons=%s", opp.id, ",".join(reasons))
        return assessment

    def _reject(
        self, opp: Opportunity, reasons: list[str], risk_class: RiskClass
    ) -> RiskAssessment:
        self._count(reasons)
        log.debug("reject %s reasons=%s", opp.id, ",".join(reasons))
        return RiskAssessment(
            opportunity_id=opp.id,
            accepted=False,
            risk_class=risk_class,
            reasons=tuple(reasons),
        )

    @staticmethod
    def _count(reasons: list[str]) -> None:
        for reason in reasons:
            REJECTIONS_TOTAL.labels(reason).inc()
