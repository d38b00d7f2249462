"""One-shot detection CLI command."""

from __future__ import annotations

import typer

from arbengine.config import settings
from arbengine.engine import OpportunityDetector, RiskValidator
from arbengine.feed import MarketDataFeed

from ..core import app, log
from ..utils import build_gateways, format_opportunity, parse_symbols


@app.command("scan")
def scan(
    symbols: str | None = typer.Option(
        None, "--symbols", help="Comma-separated symbols to quote (default: all)."
    ),
    assess: bool = typer.Option(
        False, "--assess/--no-assess", help="Run risk gating on each result."
    ),
    limit: int = typer.Option(10, "--limit", help="Maximum rows to print."),
) -> None:
    """Fetch one price snapshot and print ranked opportunities."""

    gateways = build_gateways(settings)
    if not gateways:
        log.error("scan: no usable venues among %s", ",".join(settings.exchanges))
        raise typer.Exit(1)
    snapshot = MarketDataFeed(gateways, parse_symbols(symbols)).get_price_snapshot()
    opportunities = OpportunityDetector.from_settings(settings).detect(snapshot)
    validator = RiskValidator.from_settings(gateways, settings) if assess else None

    typer.echo(f"quotes={len(snapshot)} opportunities={len(opportunities)}")
    for opp in opportunities[: max(limit, 0)]:
        assessment = validator.assess(opp) if validator is not None else None
        typer.echo(format_opportunity(opp, assessment))


__all__ = ["scan"]
