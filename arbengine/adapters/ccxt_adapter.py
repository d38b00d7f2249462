"""Ccxt-based adapter implementing the :class:`ExchangeAdapter` interface.

In ``dry_run`` mode orders are never sent: :meth:`CCXTAdapter.place_order`
prices them against the current top of book and records a simulated fill
that :meth:`CCXTAdapter.get_order_status` reports as ``closed``.
"""

from __future__ import annotations

import itertools
import logging
from typing import Any, Dict, Iterable

import ccxt

from arbengine.adapters.base import ExchangeAdapter
from arbengine.config import Settings, creds_for, settings
from arbengine.models import OrderStatus, Side

log = logging.getLogger(__name__)

_dry_ids = itertools.count(1)


class CCXTAdapter(ExchangeAdapter):
    """Exchange adapter backed by the ``ccxt`` library."""

    def __init__(
        self,
        ex_id: str,
        key: str | None = None,
        secret: str | None = None,
        password: str | None = None,
        *,
        cfg: Settings | None = None,
    ):
        """Initialise the underlying ccxt client for *ex_id*.

        When *key* or *secret* is omitted, :func:`arbengine.config.creds_for`
        provides them so production code can rely on environment
        configuration.
        """
        ex_id = (ex_id or "").strip().strip("'\"").lower()
        self.settings = cfg or settings

        if key is None or secret is None:
            key, secret, password = creds_for(ex_id, self.settings)
        params: dict[str, Any] = {
            "apiKey": key,
            "secret": secret,
            "enableRateLimit": True,
        }
        if password:
            params["password"] = password
        cls = getattr(ccxt, ex_id)
        self.ex = cls(params)
        self.client = self.ex
        self._fee: dict[str, float] = {}
        self._dry_orders: dict[str, OrderStatus] = {}

    def name(self) -> str:
        """Return the exchange identifier."""
        return self.ex.id

    def load_markets(self) -> Dict[str, Any]:
        return self.ex.load_markets()

    def fetch_tickers(self, symbols: Iterable[str] | None = None) -> Dict[str, Any]:
        return self.ex.fetch_tickers(list(symbols) if symbols else None)

    def fetch_order_book(self, symbol: str, depth: int = 10) -> Dict[str, Any]:
        return self.ex.fetch_order_book(symbol, depth)

    def fetch_balance(self, asset: str) -> float:
        if self.settings.dry_run and not getattr(self.ex, "apiKey", None):
            # Paper trading without keys: assume the configured trade size is available
            return float(self.settings.capital_for(asset))
        free = self.ex.fetch_balance().get("free", {}) or {}
        return float(free.get(asset, 0.0) or 0.0)

    def trading_fee(self, symbol: str | None = None) -> float:
        """Return the taker fee for *symbol*, respecting configured venue fees."""

        venue = str(getattr(self.ex, "id", "") or "").lower()
        overrides = self.settings.venue_fees or {}
        if venue in overrides:
            return float(overrides[venue])
        if symbol is None:
            return float(self.settings.default_fee)
        if symbol in self._fee:
            return self._fee[symbol]
        try:
            market = self.ex.market(symbol)
            taker = market.get(
                "taker",
                self.ex.fees.get("trading", {}).get("taker", self.settings.default_fee),
            )
        except Exception as exc:
            log.debug("%s fee lookup failed for %s: %s", venue, symbol, exc)
            taker = self.settings.default_fee
        self._fee[symbol] = float(taker)
        return self._fee[symbol]

    def place_order(
        self, symbol: str, side: Side, amount: float, price: float | None = None
    ) -> str:
        if self.settings.dry_run:
            return self._simulate_order(symbol, side, amount, price)

        order_type = "limit" if price is not None else "market"
        try:
            o = self.client.create_order(symbol, order_type, side, amount, price)
        except Exception as e:
            log.error(
                "create_order failed venue=%s symbol=%s side=%s qty=%s: %s",
                self.name(),
                symbol,
                side,
                amount,
                e,
            )
            raise
        return str(o.get("id", ""))

    def _simulate_order(
        self, symbol: str, side: Side, amount: float, price: float | None
    ) -> str:
        ob = self.fetch_order_book(symbol, 1)
        levels = ob.get("asks" if side == "buy" else "bids") or []
        top = float(levels[0][0]) if levels else price
        if top is None:
            raise ValueError(f"no liquidity to simulate {side} {symbol}")
        # A limit order never fills through its own price
        if price is None:
            fill = top
        elif side == "buy":
            fill = min(top, price)
        else:
            fill = max(top, price)
        # Venue fee from settings, the rate detection and the orchestrator use
        gross = amount if side == "buy" else amount * fill
        base, quote = symbol.split(":")[0].split("/", 1)
        order_id = f"dryrun-{next(_dry_ids)}"
        self._dry_orders[order_id] = OrderStatus(
            order_id=order_id,
            status="closed",
            filled=amount,
            remaining=0.0,
            fill_price=fill,
            fee=gross * self.trading_fee(),
            fee_currency=base if side == "buy" else quote,
        )
        log.info(
            "[dry-run] %s %s %s qty=%.8g @ %.8g", self.name(), side, symbol, amount, fill
        )
        return order_id

    def get_order_status(self, order_id: str, symbol: str) -> OrderStatus:
        if order_id in self._dry_orders:
            return self._dry_orders[order_id]
        o = self.ex.fetch_order(order_id, symbol)
        filled = float(o.get("filled") or 0.0)
        remaining = float(o.get("remaining") or 0.0)
        price = o.get("average") or o.get("price")
        fee_cost = fee_currency = None
        fees = o.get("fees") or ([o["fee"]] if o.get("fee") else [])
        if fees:
            # Costs in the first listed currency only
            fee_currency = fees[0].get("currency")
            fee_cost = sum(
                float(f.get("cost") or 0)
                for f in fees
                if f.get("currency") == fee_currency
            )
            if len({f.get("currency") for f in fees}) > 1:
                log.debug("%s order %s has fees in several currencies", self.name(), order_id)
        return OrderStatus(
            order_id=str(o.get("id", order_id)),
            status=str(o.get("status") or "open"),
            filled=filled,
            remaining=remaining,
            fill_price=float(price) if price else None,
            fee=fee_cost,
            fee_currency=fee_currency,
        )

    def cancel_order(self, order_id: str, symbol: str) -> None:
        if order_id in self._dry_orders:
            return
        self.ex.cancel_order(order_id, symbol)


def build_adapter(venue: str, cfg: Settings | None = None) -> ExchangeAdapter:
    """Factory for constructing the gateway configured for *venue*."""

    return CCXTAdapter(venue, cfg=cfg)
