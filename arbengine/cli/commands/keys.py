"""Credential and connectivity check for configured venues."""

from __future__ import annotations

import typer

from arbengine.config import creds_for, settings

from ..core import app, log
from ..utils import build_gateways

_PROBE_SYMBOLS = ("BTC/USDT", "BTC/USD", "ETH/USDT")


@app.command("keys:check")
def keys_check(
    asset: str = typer.Option(
        "", "--asset", help="Also report the free balance of this asset."
    ),
) -> None:
    """Load markets and read one order book per venue to prove the keys work."""

    failures = 0
    for venue, adapter in build_gateways(settings).items():
        key, secret, _ = creds_for(venue, settings)
        try:
            markets = adapter.load_markets() or {}
            symbol = next((s for s in _PROBE_SYMBOLS if s in markets), None)
            if symbol is None:
                symbol = next(iter(sorted(markets)))
            book = adapter.fetch_order_book(symbol, 1)
            bid = book["bids"][0][0] if book.get("bids") else "n/a"
            ask = book["asks"][0][0] if book.get("asks") else "n/a"
            line = (
                f"[{venue}] keys={'yes' if key and secret else 'no'} "
                f"markets={len(markets)} {symbol} {bid}/{ask}"
            )
            if asset:
                line += f" {asset.upper()}={adapter.fetch_balance(asset.upper()):g}"
        except Exception as exc:
            failures += 1
            log.error("[%s] keys:check failed: %s", venue, exc)
            typer.echo(f"[{venue}] ERROR {exc}")
            continue
        typer.echo(line)
    if failures:
        raise typer.Exit(1)


__all__ = ["keys_check"]
