"""Market data feed assembling a price snapshot from every configured venue."""

from __future__ import annotations

import logging
import time
from typing import Any, Iterable, Mapping

from arbengine.adapters.base import ExchangeAdapter
from arbengine.metrics.exporter import ERRORS_TOTAL
from arbengine.models import PricePoint

log = logging.getLogger(__name__)


def _num(value: Any) -> float | None:
    try:
        f = float(value)
    except (TypeError, ValueError):
        return None
    return f if f > 0 else None


def ticker_to_point(venue: str, symbol: str, ticker: Mapping[str, Any]) -> PricePoint:
    """Convert a ccxt-style ticker into a :class:`PricePoint`.

    Raises ``ValueError`` when no usable price can be derived.
    """

    bid = _num(ticker.get("bid"))
    ask = _num(ticker.get("ask"))
    price = _num(ticker.get("last")) or _num(ticker.get("close"))
    if price is None and bid and ask:
        price = (bid + ask) / 2.0
    if price is None or "/" not in symbol:
        raise ValueError(f"unpriced ticker {symbol}")
    ts = ticker.get("timestamp")
    timestamp = float(ts) / 1000.0 if ts else time.time()
    return PricePoint(
        symbol=symbol,
        price=price,
        venue=venue,
        timestamp=timestamp,
        bid=bid,
        ask=ask,
        volume=_num(ticker.get("baseVolume")),
    )


class MarketDataFeed:
    """Poll each gateway's tickers; failing venues or tickers are skipped."""

    def __init__(
        self,
        gateways: Mapping[str, ExchangeAdapter],
        symbols: Iterable[str] | None = None,
    ) -> None:
        self.gateways = gateways
        self.symbols = sorted(set(symbols)) if symbols else None

    def get_price_snapshot(self) -> list[PricePoint]:
        points: list[PricePoint] = []
        for venue in sorted(self.gateways):
            try:
                tickers = self.gateways[venue].fetch_tickers(self.symbols)
            except Exception as exc:
                log.warning("%s tickers unavailable this tick: %s", venue, exc)
                ERRORS_TOTAL.labels(venue, "feed").inc()
                continue
            for symbol, ticker in sorted((tickers or {}).items()):
                try:
                    points.append(ticker_to_point(venue, symbol, ticker))
                except (ValueError, AttributeError) as exc:
                    log.debug("%s skipping %s: %s", venue, symbol, exc)
        return points
