"""
prefetch-cache CLI

Implements 3 CLI verbs:
- prefetch: Resolve a package and make sure its tarball is cached
- ls: List cache index entries
- rm: Invalidate a cache index entry
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

import typer

from .operations import run_and_exit
from .operations.printers import print_entries, print_invalidated, print_prefetch_result
from .orchestrator import prefetch as _prefetch
from .runtime_types import PrefetchOptions
from .settings import create_settings_from_env
from .storage.content_store import ContentStore
from .storage.keys import parse_key

app = typer.Typer(name="prefetch-cache", help="Content-addressable package prefetch cache")


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


@app.command()
def prefetch(
    spec: str = typer.Argument(..., help="Package specifier, e.g. foo@1.0.0"),
    cache: Optional[str] = typer.Option(None, "--cache", envvar="PREFETCH_CACHE", help="Cache root directory"),
    registry: Optional[str] = typer.Option(None, "--registry", help="Registry URL override"),
    digest: Optional[str] = typer.Option(None, "--digest", help="Known integrity of the tarball"),
    verbose: bool = typer.Option(False, "--verbose", help="Show detailed output"),
) -> None:
    """Resolve SPEC and cache its tarball."""
    _configure_logging(verbose)

    def _run() -> None:
        settings = create_settings_from_env()
        options = PrefetchOptions(
            registry=registry,
            cache=cache or settings.cache_dir,
            digest=digest,
        )
        result = asyncio.run(_prefetch(spec, options, settings=settings))
        print_prefetch_result(result, verbose=verbose)

    run_and_exit(_run)


@app.command("ls")
def ls(
    cache: str = typer.Argument(..., help="Cache root directory"),
    verbose: bool = typer.Option(False, "--verbose", help="Show entry metadata"),
) -> None:
    """List cache index entries."""
    _configure_logging(verbose)

    def _ls() -> None:
        entries = asyncio.run(ContentStore(cache).ls())
        print_entries(entries, verbose=verbose)

    run_and_exit(_ls)


@app.command("rm")
def rm(
    cache: str = typer.Argument(..., help="Cache root directory"),
    key: str = typer.Argument(..., help="Index key to invalidate"),
) -> None:
    """Invalidate a cache index entry (content is kept).

    KEY must be a key as printed by `ls`; anything else is rejected before
    the index is touched.
    """

    def _rm() -> None:
        parse_key(key)
        removed = asyncio.run(ContentStore(cache).invalidate(key))
        print_invalidated(key, removed)
        if not removed:
            raise typer.Exit(code=1)

    run_and_exit(_rm)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
