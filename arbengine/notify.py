"""Notification helpers for external services.

Session outcomes are pushed to a Discord webhook. Delivery is fire-and-forget:
network or configuration errors are logged and counted but never raised into
the trading flow.
"""

from __future__ import annotations

import json
import logging
import urllib.request
from typing import Any, Mapping, Optional
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from .config import settings
from .metrics.exporter import ERRORS_TOTAL
from .models import Session, SessionStatus

log = logging.getLogger("arbengine")


def fmt_amount(amount: float, asset: str = "USD") -> str:
    """Return *amount* formatted with a thousands separator.

    Dollar-like assets render as ``$1,234.50``; anything else keeps eight
    significant digits followed by the asset code.
    """

    if asset.upper() in {"USD", "USDT", "USDC", "BUSD", "DAI"}:
        return f"${amount:,.2f}"
    return f"{amount:,.8g} {asset.upper()}"


def _with_wait(webhook: str) -> str:
    """Ensure Discord webhooks use ``wait=true`` so a body is returned."""

    pr = urlparse(webhook)
    if pr.netloc.endswith("discord.com") or pr.netloc.endswith("discordapp.com"):
        qs = dict(parse_qsl(pr.query, keep_blank_values=True))
        if "wait" not in qs:
            qs["wait"] = "true"
            return urlunparse(pr._replace(query=urlencode(qs)))
    return webhook


def notify_discord(
    venue: str,
    message: str,
    url: Optional[str] = None,
    *,
    severity: str | None = None,
    extra: Optional[Mapping[str, Any]] = None,
) -> None:
    """Send *message* to a Discord webhook.

    Parameters
    ----------
    venue:
        Name of the venue or subsystem issuing the notification. Used for
        labeling error metrics.
    message:
        Text content to send to Discord.
    url:
        Optional override for the webhook URL. Defaults to
        ``settings.discord_webhook_url``.
    severity:
        Console logging level hint: ``"info"``, ``"warning"`` or ``"error"``.
    extra:
        Optional structured context appended as a JSON code block.

    Notes
    -----
    When sending fails the ``errors_total`` metric is incremented with stage
    ``discord_send``.
    """

    sev = (severity or "info").lower()
    if extra:
        pretty = json.dumps(extra, separators=(",", ":"), default=str)
        msg_for_console = f"{message} | ctx={pretty}"
    else:
        msg_for_console = message
    if sev in ("error", "critical"):
        log.error("[alert] %s", msg_for_console)
    elif sev in ("warn", "warning"):
        log.warning("[alert] %s", msg_for_console)
    else:
        log.info("[alert] %s", msg_for_console)

    webhook = url or getattr(settings, "discord_webhook_url", None)
    if not webhook:
        log.debug("notify_discord: webhook not configured; skipping network send")
        return

    content = message
    if extra:
        content += "\n```json\n" + json.dumps(extra, indent=2, default=str) + "\n```"
    payload = json.dumps({"content": content}).encode("utf-8")
    req = urllib.request.Request(
        _with_wait(webhook),
        data=payload,
        headers={
            "Content-Type": "application/json",
            "User-Agent": "arbengine/1.0",
        },
        method="POST",
    )
    try:
        with urllib.request.urlopen(req, timeout=3):
            log.debug("notify_discord: sent message (%d chars)", len(message or ""))
            return
    except Exception as e:
        if hasattr(e, "code"):
            log.error("notify_discord: HTTP %s error: %s", getattr(e, "code"), e)
        else:
            log.error("notify_discord: send failed: %s", e)
        ERRORS_TOTAL.labels(venue, "discord_send").inc()


class DiscordAlertSink:
    """AlertSink delivering to the configured Discord webhook."""

    def __init__(self, url: str | None = None) -> None:
        self.url = url

    def notify(
        self,
        severity: str,
        message: str,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        try:
            notify_discord(
                "engine", message, self.url, severity=severity, extra=context
            )
        except Exception as exc:
            log.error("alert delivery failed: %s", exc)


def session_summary(session: Session) -> tuple[str, str, dict[str, Any]]:
    """Return ``(severity, message, context)`` describing a terminal *session*."""

    opp = session.opportunity
    route = " > ".join(opp.path)
    venues = ",".join(opp.venues)
    context: dict[str, Any] = {
        "session": session.id,
        "opportunity": opp.id,
        "legs": len(session.trades),
        "target_pct": round(session.target_profit, 4),
    }
    if session.status is SessionStatus.COMPLETED:
        pct = session.realized_profit_pct or 0.0
        pnl = session.realized_profit or 0.0
        message = (
            f"[{opp.kind.value}@{venues}] completed {route} "
            f"pnl={fmt_amount(pnl, opp.start_asset)} ({pct:.3f}%)"
        )
        return "info", message, context
    errors = session.errors
    context["errors"] = list(errors)
    if session.rollback is not None:
        context["rollback_ok"] = session.rollback.ok
        context["rollback_failed"] = list(session.rollback.failed)
    reason = errors[0] if errors else "unknown error"
    message = f"[{opp.kind.value}@{venues}] failed {route}: {reason}"
    return "error", message, context
