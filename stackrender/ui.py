"""Colorized console output for stackrender commands.

Thin wrapper around :mod:`rich`.  Status messages go to stderr so that
rendered YAML and notes on stdout stay pipeable; ``logger.*`` calls are
kept for structured logging.
"""

from __future__ import annotations

from rich.console import Console

# Shared console — auto-detects TTY; force_terminal=None lets Rich decide.
console = Console(stderr=True, force_terminal=None)

# ── Symbols ────────────────────────────────────────────────────────────────

_PASS = "[bold green]✓[/]"
_WARN = "[bold yellow]⚠[/]"
_DOT = "[dim]·[/]"

# ── Status lines ───────────────────────────────────────────────────────────


def ok(msg: str) -> None:
    """Green checkmark + message."""
    console.print(f"  {_PASS} {msg}")


def warn(msg: str) -> None:
    """Yellow warning + message."""
    console.print(f"  {_WARN} [yellow]{msg}[/]")


def info(msg: str) -> None:
    """Dim dot + informational message."""
    console.print(f"  {_DOT} [dim]{msg}[/]")


def error_msg(msg: str) -> None:
    """Bold red error message (not indented)."""
    console.print(f"[bold red]ERROR:[/] {msg}", highlight=False)
