"""arbengine CLI package that exposes the Typer application and command helpers."""

from __future__ import annotations

from .core import app, log
from .utils import build_gateways, build_scan_loop, format_opportunity

# Import command modules for side-effect registration
from . import commands
from .commands.keys import keys_check
from .commands.live import run
from .commands.notify import notify_test
from .commands.scan import scan

__all__ = [
    "app",
    "build_gateways",
    "build_scan_loop",
    "commands",
    "format_opportunity",
    "keys_check",
    "log",
    "notify_test",
    "run",
    "scan",
]
