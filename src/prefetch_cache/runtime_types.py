"""
Runtime types for the prefetch orchestrator.

These types define the interface between the orchestrator and its
collaborators (metadata client, tarball transport), enabling dependency
injection of real httpx-backed clients or in-memory fakes.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional, Protocol, Union, runtime_checkable

from .integrity import IntegrityKey
from .models import Manifest, PackageSpec

__all__ = [
    "FetchedTarball",
    "MetadataClient",
    "TransportClient",
    "NoCacheConfigured",
    "CacheConfigured",
    "CacheConfig",
    "PrefetchOptions",
]

# Upstream headers kept as freshness hints on stored tarball entries
FRESHNESS_HEADERS = ("age", "cache-control", "date", "etag", "expires", "last-modified")


@dataclass(frozen=True)
class FetchedTarball:
    """Tarball bytes plus the upstream response headers."""
    url: str
    data: bytes
    headers: Mapping[str, str] = field(default_factory=dict)

    def freshness(self) -> dict[str, str]:
        lowered = {k.lower(): v for k, v in self.headers.items()}
        return {k: lowered[k] for k in FRESHNESS_HEADERS if k in lowered}


@runtime_checkable
class MetadataClient(Protocol):
    """Resolves a package specifier to version metadata."""

    async def resolve(self, spec: PackageSpec, *, registry: str) -> Manifest:
        """
        Resolve ``spec`` against ``registry``.

        Raises:
            RegistryError: On non-2xx or malformed registry responses
        """
        ...


@runtime_checkable
class TransportClient(Protocol):
    """Downloads tarball bytes."""

    async def fetch(self, url: str) -> FetchedTarball:
        """
        Download ``url``.

        Raises:
            TransportError: On non-2xx responses or connection failures
        """
        ...


@dataclass(frozen=True)
class NoCacheConfigured:
    """Call was made without a cache root; prefetch is a no-op."""
    pass


@dataclass(frozen=True)
class CacheConfigured:
    """Call was made with a cache root."""
    root: Path


CacheConfig = Union[NoCacheConfigured, CacheConfigured]


@dataclass(frozen=True)
class PrefetchOptions:
    """
    Per-call options for prefetch().

    registry: Registry URL (defaults to Settings.registry_url)
    cache: Cache root; absence turns the call into a no-op
    digest: Integrity the caller already knows for the content
    log: Logger to use for this call instead of the module logger
    """
    registry: Optional[str] = None
    cache: Optional[Union[str, Path]] = None
    digest: Optional[Union[str, IntegrityKey]] = None
    log: Optional[logging.Logger] = None

    def cache_config(self) -> CacheConfig:
        if self.cache is None or str(self.cache) == "":
            return NoCacheConfigured()
        return CacheConfigured(Path(self.cache))
