"""Logging utilities with colored output via Rich."""

from __future__ import annotations

import threading

from rich.console import Console
from rich.markup import escape

console = Console(highlight=False)
_err_console = Console(highlight=False, stderr=True)

_verbose = False
# Worker threads log concurrently; one line at a time.
_print_lock = threading.Lock()


def set_verbose(enabled: bool) -> None:
    global _verbose
    _verbose = enabled


def emit(msg: str) -> None:
    """Print a raw Rich-markup line."""
    with _print_lock:
        console.print(msg)


def info(msg: str) -> None:
    emit(f"[blue]\\[INFO][/blue] {escape(msg)}")


def success(msg: str) -> None:
    emit(f"[green]\\[OK][/green] {escape(msg)}")


def warn(msg: str) -> None:
    emit(f"[yellow]\\[WARN][/yellow] {escape(msg)}")


def error(msg: str) -> None:
    with _print_lock:
        _err_console.print(f"[red]\\[ERROR][/red] {escape(msg)}")


def debug(msg: str) -> None:
    if _verbose:
        emit(f"[dim]\\[DEBUG] {escape(msg)}[/dim]")
