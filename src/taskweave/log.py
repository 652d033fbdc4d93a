"""Logging utilities with colored output via Rich."""

from __future__ import annotations

from rich.console import Console
from rich.markup import escape

console = Console(highlight=False)
_err_console = Console(highlight=False, stderr=True)

_verbose = False
_silent = False


def set_verbose(enabled: bool) -> None:
    global _verbose
    _verbose = enabled


def set_silent(enabled: bool) -> None:
    """Suppress every log line (used when stdout must carry JSON only)."""
    global _silent
    _silent = enabled


def info(msg: str) -> None:
    if not _silent:
        console.print(f"[blue]\\[INFO][/blue] {escape(msg)}")


def success(msg: str) -> None:
    if not _silent:
        console.print(f"[green]\\[OK][/green] {escape(msg)}")


def warn(msg: str) -> None:
    if not _silent:
        console.print(f"[yellow]\\[WARN][/yellow] {escape(msg)}")


def error(msg: str) -> None:
    if not _silent:
        _err_console.print(f"[red]\\[ERROR][/red] {escape(msg)}")


def debug(msg: str) -> None:
    if _verbose and not _silent:
        console.print(f"[dim]\\[DEBUG] {escape(msg)}[/dim]")
