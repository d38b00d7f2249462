"""Exchange adapter interfaces and implementations."""

from .base import ExchangeAdapter
from .ccxt_adapter import CCXTAdapter, build_adapter

__all__ = ["ExchangeAdapter", "CCXTAdapter", "build_adapter"]
