"""Alert delivery CLI command."""

from __future__ import annotations

import typer

from arbengine.config import settings
from arbengine.notify import DiscordAlertSink

from ..core import app, log


@app.command("notify:test")
def notify_test(
    message: str = typer.Option(
        "[notify] test message from arbengine", "--message", help="Text to send."
    ),
    severity: str = typer.Option("info", "--severity", help="info, warning or error."),
) -> None:
    """Push one alert through the configured Discord sink."""

    url = settings.discord_webhook_url
    if not url:
        log.error("notify:test no webhook configured (set DISCORD_WEBHOOK_URL)")
        raise typer.Exit(1)
    DiscordAlertSink(url).notify(severity, message, {"source": "notify:test"})


__all__ = ["notify_test"]
