"""Shared helpers used across arbengine CLI command modules."""

from __future__ import annotations

import logging

from arbengine.adapters import ExchangeAdapter, build_adapter
from arbengine.config import Settings, settings
from arbengine.engine import (
    ExecutionOrchestrator,
    OpportunityDetector,
    RiskValidator,
    ScanLoop,
)
from arbengine.feed import MarketDataFeed
from arbengine.models import Opportunity, RiskAssessment
from arbengine.notify import DiscordAlertSink
from arbengine.persistence.db import SQLiteBackupSink

log = logging.getLogger("arbengine")


def build_gateways(
    _settings: Settings = settings, venues: list[str] | None = None
) -> dict[str, ExchangeAdapter]:
    """Return ``{venue: adapter}`` for every venue that could be constructed.

    Construction failures are logged and the venue is left out.
    """

    gateways: dict[str, ExchangeAdapter] = {}
    for venue in venues or _settings.exchanges:
        try:
            gateways[venue] = build_adapter(venue, _settings)
        except Exception as exc:
            log.error("[%s] adapter unavailable: %s", venue, exc)
    return gateways


def parse_symbols(symbols: str | None) -> list[str] | None:
    """Split a comma separated ``--symbols`` option."""

    if not symbols:
        return None
    out = [s.strip().upper() for s in symbols.split(",") if s.strip()]
    return out or None


def build_scan_loop(
    gateways: dict[str, ExchangeAdapter],
    _settings: Settings = settings,
    *,
    symbols: list[str] | None = None,
    backup: SQLiteBackupSink | None = None,
) -> ScanLoop:
    """Wire feed, detector, validator and orchestrator from *_settings*."""

    alert = DiscordAlertSink(_settings.discord_webhook_url)
    orchestrator = ExecutionOrchestrator.from_settings(
        gateways, _settings, alert=alert, backup=backup
    )
    return ScanLoop.from_settings(
        MarketDataFeed(gateways, symbols),
        OpportunityDetector.from_settings(_settings),
        RiskValidator.from_settings(gateways, _settings),
        orchestrator,
        _settings,
        alert=alert,
    )


def format_opportunity(
    opp: Opportunity, assessment: RiskAssessment | None = None
) -> str:
    """Render one opportunity as a single console line."""

    route = " > ".join(opp.path)
    line = (
        f"{opp.profit_pct:8.3f}%  {opp.kind.value:<10} {','.join(opp.venues):<16} "
        f"{route}  capital={opp.min_required_capital:g} {opp.start_asset}"
    )
    if assessment is not None:
        verdict = "accept" if assessment.accepted else "reject"
        reasons = f" ({','.join(assessment.reasons)})" if assessment.reasons else ""
        line += f"  risk={assessment.risk_class.value} {verdict}{reasons}"
    return line
