"""Continuous scan-and-execute CLI command."""

from __future__ import annotations

import asyncio
import signal

import typer

from arbengine.config import ConfigError, settings, validate_settings
from arbengine.metrics.exporter import start_metrics_server
from arbengine.notify import notify_discord
from arbengine.persistence.db import SQLiteBackupSink

from ..core import app, log
from ..utils import build_gateways, build_scan_loop, parse_symbols


async def _run_until_signalled(loop_runner) -> None:
    """Run *loop_runner* and stop it gracefully on SIGINT/SIGTERM."""

    ev_loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            ev_loop.add_signal_handler(sig, loop_runner.stop)
        except (NotImplementedError, RuntimeError):  # pragma: no cover - platform
            pass
    await loop_runner.run()


@app.command("run")
@app.command("live")
def run(
    symbols: str | None = typer.Option(
        None, "--symbols", help="Comma-separated symbols to quote (default: all)."
    ),
    metrics: bool = typer.Option(
        True, "--metrics/--no-metrics", help="Serve Prometheus metrics."
    ),
) -> None:
    """Continuously scan, validate and execute the best accepted opportunity."""

    try:
        validate_settings(settings)
    except ConfigError as exc:
        log.error("configuration invalid: %s", exc)
        typer.echo(f"configuration invalid: {exc}", err=True)
        raise typer.Exit(2)

    gateways = build_gateways(settings)
    missing = [v for v in settings.exchanges if v not in gateways]
    if missing:
        typer.echo(f"venues unavailable: {','.join(missing)}", err=True)
        raise typer.Exit(2)

    if metrics:
        try:
            start_metrics_server(settings.prom_port)
        except OSError as exc:
            log.warning("metrics server not started: %s", exc)

    backup = SQLiteBackupSink(settings.sqlite_path)
    scan_loop = build_scan_loop(
        gateways, settings, symbols=parse_symbols(symbols), backup=backup
    )
    venues = ",".join(sorted(gateways))
    notify_discord("engine", f"[run@{venues}] start dry_run={settings.dry_run}")
    try:
        asyncio.run(_run_until_signalled(scan_loop))
    except KeyboardInterrupt:
        pass
    finally:
        backup.close()
        notify_discord(
            "engine",
            f"[run@{venues}] stop ticks={scan_loop.ticks} sessions={scan_loop.sessions_run}",
        )
    if scan_loop.halted:
        raise typer.Exit(1)


__all__ = ["run"]
