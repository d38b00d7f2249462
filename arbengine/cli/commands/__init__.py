"""Grouped Typer command modules for the arbengine CLI."""

from __future__ import annotations

from . import keys, live, notify, scan

__all__ = ["keys", "live", "notify", "scan"]
