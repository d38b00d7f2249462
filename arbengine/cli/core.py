"""Core Typer application and logging bootstrap for the arbengine CLI."""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler

import typer

from arbengine.config import settings

app = typer.Typer(
    help="Scan venues for arbitrage cycles and execute them.",
    no_args_is_help=True,
    add_completion=False,
)
log = logging.getLogger("arbengine")

_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging() -> None:
    """Attach console and optional rotating file handlers once."""

    if getattr(log, "_configured", False):
        return
    log.setLevel(getattr(logging, str(settings.log_level).upper(), logging.INFO))
    log.propagate = False
    ch = logging.StreamHandler()
    ch.setLevel(log.level)
    ch.setFormatter(logging.Formatter(_FORMAT))
    log.addHandler(ch)
    log_path = getattr(settings, "log_file", None)
    if log_path:
        try:
            directory = os.path.dirname(log_path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            fh = RotatingFileHandler(
                log_path,
                maxBytes=int(settings.log_max_bytes),
                backupCount=int(settings.log_backup_count),
            )
        except OSError as exc:
            log.warning("file logging disabled (%s): %s", log_path, exc)
        else:
            fh.setLevel(log.level)
            fh.setFormatter(logging.Formatter(_FORMAT))
            log.addHandler(fh)
    setattr(log, "_configured", True)


configure_logging()

__all__ = ["app", "configure_logging", "log"]
