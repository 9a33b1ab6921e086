"""
edlink console: user diagnostics and debug logging.

Diagnostics go to stderr through rich. Debug logs are compact JSON lines,
also on stderr, and only written when EDLINK_DEBUG is set (or --debug).
"""

from __future__ import annotations

import json
import os
import sys

from rich.console import Console
from rich.markup import escape

PROG = "edlink"

console = Console(stderr=True, highlight=False)

_debug = bool(os.environ.get("EDLINK_DEBUG"))


def set_debug(enabled: bool):
    global _debug
    _debug = enabled


def log(tag: str, msg: dict):
    """Log to stderr when debugging is enabled."""
    if not _debug:
        return
    compact = json.dumps(msg, separators=(",", ":"), default=str)
    print(f"[{tag}] {compact}", file=sys.stderr, flush=True)


def warn(msg: str):
    """Print a diagnostic without exiting."""
    console.print(f"[red]{PROG}:[/red] {escape(msg)}")


def notice(msg: str):
    """Print an informational line (progress, remote host notices)."""
    console.print(f"[dim]{PROG}:[/dim] {escape(msg)}")
