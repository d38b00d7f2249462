"""Abstract interfaces for exchange adapters."""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable

from arbengine.models import OrderStatus, Side


class ExchangeAdapter(ABC):
    """Interface that every per-venue gateway must implement."""

    @abstractmethod
    def name(self) -> str:
        """Return exchange identifier used by this adapter."""

    @abstractmethod
    def fetch_tickers(self, symbols: Iterable[str] | None = None) -> Dict[str, Any]:
        """Return ``{symbol: ticker}`` with ``last``/``bid``/``ask`` fields."""

    @abstractmethod
    def fetch_order_book(self, symbol: str, depth: int = 10) -> Dict[str, Any]:
        """Fetch order book levels for *symbol* up to *depth*."""

    @abstractmethod
    def fetch_balance(self, asset: str) -> float:
        """Return free balance for *asset* in its native units."""

    @abstractmethod
    def trading_fee(self, symbol: str | None = None) -> float:
        """Return the taker fee fraction applied to *symbol* trades."""

    @abstractmethod
    def place_order(
        self, symbol: str, side: Side, amount: float, price: float | None = None
    ) -> str:
        """Submit an order and return its exchange id.

        A ``price`` places a limit order; ``None`` places a market order.
        """

    @abstractmethod
    def get_order_status(self, order_id: str, symbol: str) -> OrderStatus:
        """Return the current status of *order_id*."""

    @abstractmethod
    def cancel_order(self, order_id: str, symbol: str) -> None:
        """Cancel order *order_id* for *symbol*."""

    def load_markets(self) -> Dict[str, Any]:
        """Return market metadata keyed by symbol."""

        return {}
