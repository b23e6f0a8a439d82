"""
Human-readable output formatting.

Centralizes all CLI output formatting so commands only decide *what* to show.
"""
from __future__ import annotations

from typing import Mapping

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ..models import PrefetchResult
from ..storage.base import CacheEntry

_console = Console(highlight=False)
_err_console = Console(stderr=True, highlight=False)


def print_prefetch_result(result: PrefetchResult, verbose: bool = False) -> None:
    """
    Print the outcome of a prefetch call.

    Args:
        result: Result returned by the orchestrator
        verbose: Also show the resolved tarball URL
    """
    _console.print(f"[bold]Spec:[/] {escape(result.spec)}")
    if result.manifest is None:
        _console.print("[dim]No cache configured; nothing fetched[/]")
        return

    _console.print(f"[bold]Resolved:[/] {result.manifest.name}@{result.manifest.version}")
    if result.cache_hit:
        source = "digest" if result.by_digest else "manifest"
        _console.print(f"[bold]Status:[/] cached (by {source})")
        _console.print(f"[bold]Integrity:[/] [dim]{result.integrity}[/]", soft_wrap=True)
    else:
        _console.print("[bold]Status:[/] fetched")

    if verbose:
        _console.print(f"[bold]Tarball:[/] {result.manifest.tarball_url}", soft_wrap=True)


def print_entries(entries: Mapping[str, CacheEntry], verbose: bool = False) -> None:
    """
    Print cache index entries, one per line.

    Keys can be long URLs, so plain lines are used instead of a table to keep
    them greppable.
    """
    if not entries:
        typer.echo("Cache is empty")
        return

    for key, entry in entries.items():
        typer.echo(f"{key}\t{entry.integrity}\t{_format_bytes(entry.size)}")
        if verbose and entry.metadata:
            for name, value in sorted(entry.metadata.items()):
                typer.echo(f"  {name}: {value}")

    if verbose:
        table = Table(title="Summary")
        table.add_column("Entries", style="cyan")
        table.add_column("Total size", style="yellow")
        table.add_row(str(len(entries)), _format_bytes(sum(e.size for e in entries.values())))
        _console.print(table)


def print_invalidated(key: str, removed: bool) -> None:
    if removed:
        typer.echo(f"Removed {key}")
    else:
        typer.echo(f"No entry for {key}")


def print_error(exc: BaseException) -> None:
    _err_console.print(f"[bold red]Error:[/] {type(exc).__name__}: {escape(str(exc))}", soft_wrap=True)


def _format_bytes(size_bytes: int) -> str:
    """
    Format byte count as human-readable string.

    Returns:
        Formatted string (e.g., "1.5 MB", "42 B")
    """
    if size_bytes < 1024:
        return f"{size_bytes} B"
    elif size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    elif size_bytes < 1024 * 1024 * 1024:
        return f"{size_bytes / (1024 * 1024):.1f} MB"
    else:
        return f"{size_bytes / (1024 * 1024 * 1024):.1f} GB"
