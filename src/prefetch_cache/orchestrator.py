"""
Prefetch orchestrator.

This module implements prefetch(): resolve a package specifier, decide whether
its tarball is already in the content store, and fetch + verify + store it
when it is not.

State machine:

    START -> NO_CACHE                                   (terminal)
    START -> RESOLVING -> CACHE_HIT                     (terminal)
    START -> RESOLVING -> CACHE_MISS -> FETCHING -> VERIFYING -> STORED  (terminal)

Duplicate requests for the same (spec, registry, cache root) are collapsed by
the memoizer, so at most one RESOLVING..STORED sequence runs per key.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from enum import Enum
from pathlib import Path
from typing import AsyncContextManager, AsyncIterator, Callable, Dict, Optional, Tuple

from . import integrity as ssri
from .integrity import IntegrityKey
from .memo import MemoKey, Memoizer, default_memoizer
from .models import Manifest, PackageSpec, PrefetchResult
from .runtime_types import (
    CacheConfigured,
    MetadataClient,
    PrefetchOptions,
    TransportClient,
)
from .settings import Settings, create_settings_from_env
from .storage.base import ContentStoreProtocol
from .storage.content_store import ContentStore
from .storage.keys import manifest_key, normalize_registry, tarball_key

__all__ = ["Prefetcher", "PrefetchState", "open_http_clients", "prefetch"]

logger = logging.getLogger(__name__)

StoreFactory = Callable[[Path], ContentStoreProtocol]
Clients = Tuple[MetadataClient, TransportClient]
ClientFactory = Callable[[], AsyncContextManager[Clients]]


class PrefetchState(str, Enum):
    """Orchestrator states, logged on every transition."""
    START = "start"
    NO_CACHE = "no-cache"
    RESOLVING = "resolving"
    CACHE_HIT = "cache-hit"
    CACHE_MISS = "cache-miss"
    FETCHING = "fetching"
    VERIFYING = "verifying"
    STORED = "stored"


class Prefetcher:
    """
    Decision engine tying the metadata client, transport, content store and
    memoizer together.

    Design Notes:

    - Collaborators are either injected directly or opened per computation
      through ``client_factory``. With a factory, the clients belong to the
      memoized task, so a cancelled caller never closes them under the
      callers still waiting on that task.
    - The memoizer is injectable so tests get isolated instances. Passing
      ``default_memoizer`` gives process-wide behavior.
    - Errors from collaborators propagate unchanged and are never retried
      here; a failed call leaves the content store untouched.
    """

    def __init__(
        self,
        metadata: Optional[MetadataClient] = None,
        transport: Optional[TransportClient] = None,
        *,
        settings: Optional[Settings] = None,
        memoizer: Optional[Memoizer] = None,
        store_factory: Optional[StoreFactory] = None,
        client_factory: Optional[ClientFactory] = None,
    ):
        if client_factory is None and (metadata is None or transport is None):
            raise ValueError("Prefetcher needs metadata and transport clients or a client_factory")
        self.metadata = metadata
        self.transport = transport
        self._client_factory = client_factory
        self.settings = settings if settings is not None else Settings()
        self.memoizer = memoizer if memoizer is not None else Memoizer()
        self._store_factory = store_factory or (
            lambda root: ContentStore(root, default_algorithms=self.settings.default_algorithms)
        )

    async def prefetch(self, spec: str, options: Optional[PrefetchOptions] = None) -> PrefetchResult:
        """
        Make sure the tarball for ``spec`` is in the cache.

        Args:
            spec: Package specifier, e.g. ``foo@1.0.0``
            options: Per-call options; without ``cache`` this is a no-op

        Returns:
            PrefetchResult (see its docstring for which fields are set when)

        Raises:
            InvalidSpecifier: If ``spec`` cannot be parsed
            RegistryError: If metadata resolution fails
            TransportError: If the tarball download fails
            IntegrityMismatch: If downloaded bytes fail verification
        """
        options = options or PrefetchOptions()
        log = options.log or logger
        cache = options.cache_config()

        if isinstance(cache, CacheConfigured):
            root = cache.root
        else:
            log.debug(f"{spec}: {PrefetchState.START.value} -> {PrefetchState.NO_CACHE.value}")
            return PrefetchResult(spec=spec)

        registry = normalize_registry(options.registry or self.settings.registry_url)
        parsed = PackageSpec.parse(spec)
        requested = ssri.parse(options.digest) if options.digest is not None else None
        key = MemoKey(spec=spec, registry=registry, cache_root=str(root))
        return await self.memoizer.get_or_create(
            key, lambda: self._run(parsed, registry, root, requested, log)
        )

    def _open_clients(self) -> AsyncContextManager[Clients]:
        if self._client_factory is not None:
            return self._client_factory()
        return _injected(self.metadata, self.transport)

    async def _run(
        self,
        parsed: PackageSpec,
        registry: str,
        root: Path,
        requested: Optional[IntegrityKey],
        log: logging.Logger,
    ) -> PrefetchResult:
        async with self._open_clients() as (metadata, transport):
            return await self._resolve_and_fetch(metadata, transport, parsed, registry, root, requested, log)

    async def _resolve_and_fetch(
        self,
        metadata: MetadataClient,
        transport: TransportClient,
        parsed: PackageSpec,
        registry: str,
        root: Path,
        requested: Optional[IntegrityKey],
        log: logging.Logger,
    ) -> PrefetchResult:
        spec = parsed.raw

        def transition(state: PrefetchState) -> None:
            log.debug(f"{spec}: -> {state.value}")

        transition(PrefetchState.RESOLVING)
        manifest = await metadata.resolve(parsed, registry=registry)

        store = self._store_factory(root)
        declared = manifest.declared_integrity

        # A caller digest is only consulted when the manifest has none of its own
        if requested is not None and declared is None:
            found = await store.find_content(requested)
            if found is not None:
                transition(PrefetchState.CACHE_HIT)
                return PrefetchResult(spec=spec, manifest=manifest, integrity=found, by_digest=True)

        if declared is not None:
            found = await store.find_content(declared)
        else:
            entry = await store.lookup(tarball_key(registry, spec))
            found = entry.integrity if entry is not None else None

        if found is not None:
            transition(PrefetchState.CACHE_HIT)
            return PrefetchResult(spec=spec, manifest=manifest, integrity=found, by_digest=False)

        transition(PrefetchState.CACHE_MISS)
        transition(PrefetchState.FETCHING)
        fetched = await transport.fetch(manifest.tarball_url)

        transition(PrefetchState.VERIFYING)
        expected = declared if declared is not None else requested
        if expected is not None:
            verified = ssri.check_data(fetched.data, expected)
        else:
            verified = ssri.from_bytes(fetched.data, self.settings.default_algorithms)

        await self._store(store, registry, spec, manifest, fetched.data, verified, fetched.freshness())
        transition(PrefetchState.STORED)

        # The result describes what was just fetched, not a pre-existing
        # cache fact; the next call reports the stored integrity.
        return PrefetchResult(spec=spec, manifest=manifest, integrity=None, by_digest=False)

    async def _store(
        self,
        store: ContentStoreProtocol,
        registry: str,
        spec: str,
        manifest: Manifest,
        data: bytes,
        verified: IntegrityKey,
        freshness: Dict[str, str],
    ) -> None:
        await store.put(
            manifest_key(registry, spec),
            manifest.to_json_bytes(),
            metadata={"spec": spec, "name": manifest.name, "version": manifest.version},
        )
        await store.put(
            tarball_key(registry, spec),
            data,
            integrity=verified,
            metadata={"spec": spec, "resolved": manifest.tarball_url, "headers": freshness},
        )


async def prefetch(
    spec: str,
    options: Optional[PrefetchOptions] = None,
    *,
    settings: Optional[Settings] = None,
) -> PrefetchResult:
    """
    Prefetch with real httpx clients and the process-wide memoizer.

    Settings are loaded from the environment when not provided. The clients
    are opened inside the memoized computation, so they live exactly as long
    as the shared work does.
    """
    if settings is None:
        settings = create_settings_from_env()

    prefetcher = Prefetcher(
        settings=settings,
        memoizer=default_memoizer,
        client_factory=lambda: open_http_clients(settings),
    )
    return await prefetcher.prefetch(spec, options)


@asynccontextmanager
async def _injected(metadata: MetadataClient, transport: TransportClient) -> AsyncIterator[Clients]:
    """Hand out caller-owned clients without closing them."""
    yield metadata, transport


@asynccontextmanager
async def open_http_clients(settings: Settings) -> AsyncIterator[Clients]:
    """Open the httpx registry and tarball clients; both are closed on exit."""
    from .clients import RegistryClient, TarballFetcher

    async with RegistryClient(settings) as metadata, TarballFetcher(settings) as transport:
        yield metadata, transport
