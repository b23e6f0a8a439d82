"""
Tests for the prefetch orchestrator.

Covers the fetch-vs-cache decision, the no-cache short circuit, memoization
interplay with the durable content store and error propagation.
"""
from __future__ import annotations

import asyncio
import copy
import logging

import pytest

from prefetch_cache import integrity as ssri
from prefetch_cache.errors import IntegrityMismatch, InvalidSpecifier, RegistryError, TransportError
from prefetch_cache.memo import clear_memoized, default_memoizer
from prefetch_cache.orchestrator import Prefetcher, prefetch
from prefetch_cache.runtime_types import PrefetchOptions
from prefetch_cache.storage.content_store import ContentStore, list_entries
from prefetch_cache.storage.keys import manifest_key, tarball_key

from tests.conftest import REGISTRY, TARBALL_URL
from tests.fakes.fake_clients import FakeMetadataClient, FakeTransport


def _opts(cache_dir, **kwargs):
    return PrefetchOptions(registry=REGISTRY, cache=cache_dir, **kwargs)


class RecordingStore(ContentStore):
    """ContentStore that records every public call."""

    def __init__(self, root, calls=None, **kwargs):
        super().__init__(root, **kwargs)
        self.calls = calls if calls is not None else []

    async def lookup(self, key):
        self.calls.append(("lookup", key))
        return await super().lookup(key)

    async def find_content(self, integrity):
        self.calls.append(("find_content", str(integrity)))
        return await super().find_content(integrity)

    async def put(self, key, data, **kwargs):
        self.calls.append(("put", key))
        return await super().put(key, data, **kwargs)


class TestFreshFetch:
    """Nothing cached yet."""

    def test_prefetch_by_manifest_if_no_integrity_cached(self, prefetcher, metadata, transport, cache_dir, base_manifest):
        """A first fetch returns the manifest with no integrity and writes two entries."""
        info = asyncio.run(prefetcher.prefetch("foo@1.0.0", _opts(cache_dir)))

        assert info.to_dict() == {
            "byDigest": False,
            "integrity": None,
            "manifest": base_manifest,
            "spec": "foo@1.0.0",
        }
        assert metadata.calls == [("foo@1.0.0", REGISTRY)]
        assert transport.calls == [TARBALL_URL]

        entries = asyncio.run(list_entries(cache_dir))
        assert len(entries) == 2
        assert set(entries) == {
            manifest_key(REGISTRY, "foo@1.0.0"),
            tarball_key(REGISTRY, "foo@1.0.0"),
        }

    def test_prefetch_by_manifest_if_digest_provided_but_no_cache_content(
        self, prefetcher, metadata, transport, cache_dir, base_manifest, tarball
    ):
        """A caller digest cannot short-circuit an empty cache."""
        digest = ssri.from_bytes(tarball)

        info = asyncio.run(prefetcher.prefetch("foo@1.0.0", _opts(cache_dir, digest=digest)))

        assert info.to_dict() == {
            "byDigest": False,
            "integrity": None,
            "manifest": base_manifest,
            "spec": "foo@1.0.0",
        }
        assert len(metadata.calls) == 1
        assert len(transport.calls) == 1
        assert len(asyncio.run(list_entries(cache_dir))) == 2

    def test_stored_tarball_keeps_declared_algorithm_and_freshness(self, prefetcher, cache_dir, base_manifest):
        asyncio.run(prefetcher.prefetch("foo@1.0.0", _opts(cache_dir)))

        entry = asyncio.run(ContentStore(cache_dir).lookup(tarball_key(REGISTRY, "foo@1.0.0")))
        assert str(entry.integrity) == base_manifest["_integrity"]
        assert entry.metadata["resolved"] == TARBALL_URL
        assert entry.metadata["headers"] == {"age": "200", "cache-control": "immutable"}

    def test_manifest_entry_holds_manifest_view(self, prefetcher, cache_dir, base_manifest):
        import json

        asyncio.run(prefetcher.prefetch("foo@1.0.0", _opts(cache_dir)))

        store = ContentStore(cache_dir)
        entry = asyncio.run(store.lookup(manifest_key(REGISTRY, "foo@1.0.0")))
        assert json.loads(asyncio.run(store.read(entry))) == base_manifest

    def test_store_calls_on_fresh_fetch(self, metadata, transport, settings, cache_dir, base_manifest):
        calls = []
        prefetcher = Prefetcher(
            metadata, transport, settings=settings,
            store_factory=lambda root: RecordingStore(root, calls=calls),
        )

        asyncio.run(prefetcher.prefetch("foo@1.0.0", _opts(cache_dir)))

        assert calls == [
            ("find_content", base_manifest["_integrity"]),
            ("put", manifest_key(REGISTRY, "foo@1.0.0")),
            ("put", tarball_key(REGISTRY, "foo@1.0.0")),
        ]


class TestNoCache:
    """Absence of a cache root turns prefetch into a no-op."""

    def test_skip_if_no_cache_is_provided(self, prefetcher, metadata, transport, cache_dir):
        info = asyncio.run(prefetcher.prefetch("foo@1.0.0", PrefetchOptions()))

        assert info.to_dict() == {"spec": "foo@1.0.0"}
        assert metadata.calls == []
        assert transport.calls == []
        assert asyncio.run(list_entries(cache_dir)) == {}
        assert not cache_dir.exists()

    def test_no_options_at_all(self, prefetcher, metadata):
        info = asyncio.run(prefetcher.prefetch("foo@1.0.0"))
        assert info.to_dict() == {"spec": "foo@1.0.0"}
        assert metadata.calls == []

    def test_no_store_calls_without_cache(self, metadata, transport, settings):
        calls = []
        prefetcher = Prefetcher(
            metadata, transport, settings=settings,
            store_factory=lambda root: RecordingStore(root, calls=calls),
        )

        asyncio.run(prefetcher.prefetch("foo@1.0.0", PrefetchOptions(registry=REGISTRY)))

        assert calls == []
        assert len(prefetcher.memoizer) == 0

    def test_invalid_spec_is_not_parsed_without_cache(self, prefetcher):
        """The short circuit happens before any work, including parsing."""
        info = asyncio.run(prefetcher.prefetch("", PrefetchOptions()))
        assert info.to_dict() == {"spec": ""}


class TestCacheHit:
    """Content already in the store."""

    def test_use_cache_content_if_found(self, prefetcher, metadata, transport, cache_dir, base_manifest, memoizer):
        asyncio.run(prefetcher.prefetch("foo@1.0.0", _opts(cache_dir)))
        memoizer.clear()

        info = asyncio.run(prefetcher.prefetch("foo@1.0.0", _opts(cache_dir)))

        assert info.to_dict() == {
            "manifest": base_manifest,
            "spec": "foo@1.0.0",
            "integrity": base_manifest["_integrity"],
            "byDigest": False,
        }
        assert info.integrity == ssri.parse(base_manifest["_integrity"])
        assert len(metadata.calls) == 2
        assert transport.calls == [TARBALL_URL]
        assert len(asyncio.run(list_entries(cache_dir))) == 2

    def test_hit_by_tarball_key_when_manifest_has_no_integrity(self, settings, tarball, cache_dir, memoizer):
        packument = {
            "name": "foo",
            "dist-tags": {"latest": "1.0.0"},
            "versions": {"1.0.0": {"name": "foo", "version": "1.0.0", "dist": {"tarball": TARBALL_URL}}},
        }
        metadata = FakeMetadataClient({"foo": packument})
        transport = FakeTransport({TARBALL_URL: tarball})
        prefetcher = Prefetcher(metadata, transport, settings=settings, memoizer=memoizer)

        first = asyncio.run(prefetcher.prefetch("foo@latest", _opts(cache_dir)))
        memoizer.clear()
        second = asyncio.run(prefetcher.prefetch("foo@latest", _opts(cache_dir)))

        assert first.integrity is None
        assert second.integrity == ssri.from_bytes(tarball, ["sha512"])
        assert second.by_digest is False
        assert len(transport.calls) == 1

    def test_hit_by_caller_digest(self, settings, tarball, cache_dir, memoizer):
        """Without a declared integrity, the caller's digest locates content."""
        packument = {
            "name": "foo",
            "versions": {"1.0.0": {"name": "foo", "version": "1.0.0", "dist": {"tarball": TARBALL_URL}}},
        }
        metadata = FakeMetadataClient({"foo": packument})
        transport = FakeTransport({TARBALL_URL: tarball})
        prefetcher = Prefetcher(metadata, transport, settings=settings, memoizer=memoizer)

        # Seed the content under a different spec, so only the digest can find it
        asyncio.run(prefetcher.prefetch("foo@1.0.0", PrefetchOptions(registry="https://other.reg", cache=cache_dir)))
        memoizer.clear()

        digest = ssri.from_bytes(tarball)
        info = asyncio.run(prefetcher.prefetch("foo@1.0.0", _opts(cache_dir, digest=digest)))

        assert info.by_digest is True
        assert info.integrity == digest
        assert len(transport.calls) == 1

    def test_clear_memoized_keeps_store(self, metadata, transport, settings, cache_dir, base_manifest):
        prefetcher = Prefetcher(metadata, transport, settings=settings, memoizer=default_memoizer)
        asyncio.run(prefetcher.prefetch("foo@1.0.0", _opts(cache_dir)))

        clear_memoized()
        assert len(asyncio.run(list_entries(cache_dir))) == 2

        info = asyncio.run(prefetcher.prefetch("foo@1.0.0", _opts(cache_dir)))
        assert str(info.integrity) == base_manifest["_integrity"]
        assert len(transport.calls) == 1


class TestMemoization:
    """Duplicate requests collapse onto one resolve/fetch sequence."""

    def test_concurrent_calls_collapse(self, prefetcher, metadata, transport, cache_dir):
        async def scenario():
            return await asyncio.gather(
                prefetcher.prefetch("foo@1.0.0", _opts(cache_dir)),
                prefetcher.prefetch("foo@1.0.0", _opts(cache_dir)),
            )

        first, second = asyncio.run(scenario())

        assert first is second
        assert len(metadata.calls) == 1
        assert len(transport.calls) == 1

    def test_memoized_result_is_reused(self, prefetcher, metadata, transport, cache_dir):
        async def scenario():
            first = await prefetcher.prefetch("foo@1.0.0", _opts(cache_dir))
            second = await prefetcher.prefetch("foo@1.0.0", _opts(cache_dir))
            return first, second

        first, second = asyncio.run(scenario())

        # The memoized descriptor still says "just fetched"
        assert second.integrity is None
        assert first is second
        assert len(metadata.calls) == 1

    def test_memo_key_includes_registry_and_cache_root(self, prefetcher, metadata, tmp_path):
        async def scenario():
            await prefetcher.prefetch("foo@1.0.0", PrefetchOptions(registry=REGISTRY, cache=tmp_path / "a"))
            await prefetcher.prefetch("foo@1.0.0", PrefetchOptions(registry=REGISTRY, cache=tmp_path / "b"))
            await prefetcher.prefetch("foo@1.0.0", PrefetchOptions(registry=REGISTRY + "/", cache=tmp_path / "b"))

        asyncio.run(scenario())

        # Trailing slash normalizes to the same registry
        assert len(metadata.calls) == 2

    def test_concurrent_failure_is_shared(self, settings, cache_dir, tarball, packument):
        metadata = FakeMetadataClient({"foo": packument})
        transport = FakeTransport({TARBALL_URL: b"corrupt" + tarball})
        prefetcher = Prefetcher(metadata, transport, settings=settings)

        async def scenario():
            return await asyncio.gather(
                prefetcher.prefetch("foo@1.0.0", _opts(cache_dir)),
                prefetcher.prefetch("foo@1.0.0", _opts(cache_dir)),
                return_exceptions=True,
            )

        first, second = asyncio.run(scenario())

        assert isinstance(first, IntegrityMismatch)
        assert first is second
        assert len(transport.calls) == 1

    def test_timed_out_call_is_not_memoized(self, settings, metadata, tarball, cache_dir, memoizer):
        transport = FakeTransport({TARBALL_URL: tarball}, delay=0.2)
        prefetcher = Prefetcher(metadata, transport, settings=settings, memoizer=memoizer)

        async def impatient():
            with pytest.raises(asyncio.TimeoutError):
                await asyncio.wait_for(prefetcher.prefetch("foo@1.0.0", _opts(cache_dir)), 0.01)

        asyncio.run(impatient())
        transport.delay = 0.0
        info = asyncio.run(prefetcher.prefetch("foo@1.0.0", _opts(cache_dir)))

        assert info.manifest.version == "1.0.0"
        assert asyncio.run(ContentStore(cache_dir).lookup(tarball_key(REGISTRY, "foo@1.0.0"))) is not None

    def test_cancelled_caller_leaves_shared_clients_open(self, monkeypatch, settings, packument, tarball, cache_dir):
        metadata = FakeMetadataClient({"foo": packument}, delay=0.05)
        transport = FakeTransport({TARBALL_URL: tarball})
        monkeypatch.setattr("prefetch_cache.clients.RegistryClient", lambda settings: metadata)
        monkeypatch.setattr("prefetch_cache.clients.TarballFetcher", lambda settings: transport)

        async def scenario():
            first = asyncio.ensure_future(prefetch("foo@1.0.0", _opts(cache_dir), settings=settings))
            second = asyncio.ensure_future(prefetch("foo@1.0.0", _opts(cache_dir), settings=settings))
            await asyncio.sleep(0.01)
            first.cancel()
            return first, await second

        first, info = asyncio.run(scenario())

        assert first.cancelled()
        assert info.manifest.version == "1.0.0"
        assert metadata.calls == [("foo@1.0.0", REGISTRY)]
        assert transport.calls == [TARBALL_URL]
        # Closed once the shared computation finished
        assert metadata.closed and transport.closed


class TestErrors:
    """Failures propagate and leave the store untouched."""

    def test_integrity_mismatch_writes_nothing(self, settings, cache_dir, tarball, packument, base_manifest):
        metadata = FakeMetadataClient({"foo": packument})
        transport = FakeTransport({TARBALL_URL: tarball + b"\0"})
        prefetcher = Prefetcher(metadata, transport, settings=settings)

        with pytest.raises(IntegrityMismatch) as exc_info:
            asyncio.run(prefetcher.prefetch("foo@1.0.0", _opts(cache_dir)))

        assert exc_info.value.expected == base_manifest["_integrity"]
        assert asyncio.run(list_entries(cache_dir)) == {}

    def test_caller_digest_verifies_download_without_declared_integrity(self, settings, cache_dir, tarball):
        packument = {
            "name": "foo",
            "versions": {"1.0.0": {"name": "foo", "version": "1.0.0", "dist": {"tarball": TARBALL_URL}}},
        }
        prefetcher = Prefetcher(
            FakeMetadataClient({"foo": packument}),
            FakeTransport({TARBALL_URL: tarball}),
            settings=settings,
        )

        wrong = ssri.from_bytes(b"something else")
        with pytest.raises(IntegrityMismatch):
            asyncio.run(prefetcher.prefetch("foo@1.0.0", _opts(cache_dir, digest=wrong)))
        assert asyncio.run(list_entries(cache_dir)) == {}

    def test_registry_error_propagates(self, settings, transport, cache_dir):
        metadata = FakeMetadataClient(error=RegistryError("Registry error 500"))
        prefetcher = Prefetcher(metadata, transport, settings=settings)

        with pytest.raises(RegistryError, match="500"):
            asyncio.run(prefetcher.prefetch("foo@1.0.0", _opts(cache_dir)))

        assert transport.calls == []
        assert asyncio.run(list_entries(cache_dir)) == {}

    def test_transport_error_propagates(self, settings, metadata, cache_dir):
        transport = FakeTransport(error=TransportError("connection reset"))
        prefetcher = Prefetcher(metadata, transport, settings=settings)

        with pytest.raises(TransportError):
            asyncio.run(prefetcher.prefetch("foo@1.0.0", _opts(cache_dir)))

        assert asyncio.run(list_entries(cache_dir)) == {}

    def test_failure_is_memoized_until_cleared(self, settings, metadata, cache_dir, tarball, memoizer):
        transport = FakeTransport(error=TransportError("connection reset"))
        prefetcher = Prefetcher(metadata, transport, settings=settings, memoizer=memoizer)

        async def twice():
            for _ in range(2):
                with pytest.raises(TransportError):
                    await prefetcher.prefetch("foo@1.0.0", _opts(cache_dir))

        asyncio.run(twice())
        assert len(transport.calls) == 1

        memoizer.clear()
        transport.error = None
        transport.tarballs[TARBALL_URL] = tarball
        info = asyncio.run(prefetcher.prefetch("foo@1.0.0", _opts(cache_dir)))
        assert info.integrity is None
        assert len(transport.calls) == 2

    def test_invalid_spec_raises_before_resolving(self, prefetcher, metadata, cache_dir):
        with pytest.raises(InvalidSpecifier):
            asyncio.run(prefetcher.prefetch("not a spec!", _opts(cache_dir)))
        assert metadata.calls == []


def test_call_logger_receives_transitions(prefetcher, cache_dir, caplog):
    log = logging.getLogger("tests.prefetch.custom")
    caplog.set_level(logging.DEBUG, logger="tests.prefetch.custom")

    asyncio.run(prefetcher.prefetch("foo@1.0.0", _opts(cache_dir, log=log)))

    messages = [r.getMessage() for r in caplog.records if r.name == "tests.prefetch.custom"]
    assert "foo@1.0.0: -> resolving" in messages
    assert "foo@1.0.0: -> stored" in messages


def test_registry_defaults_to_settings(metadata, transport, cache_dir):
    from prefetch_cache.settings import Settings

    prefetcher = Prefetcher(metadata, transport, settings=Settings(registry_url="https://mock.reg/", http_retry=0))
    asyncio.run(prefetcher.prefetch("foo@1.0.0", PrefetchOptions(cache=cache_dir)))

    assert metadata.calls == [("foo@1.0.0", "https://mock.reg")]


def test_manifest_is_not_mutated_between_calls(prefetcher, cache_dir, base_manifest, memoizer):
    expected = copy.deepcopy(base_manifest)
    first = asyncio.run(prefetcher.prefetch("foo@1.0.0", _opts(cache_dir)))
    memoizer.clear()
    second = asyncio.run(prefetcher.prefetch("foo@1.0.0", _opts(cache_dir)))

    assert first.manifest == second.manifest
    assert first.manifest.to_dict() == expected


def test_prefetcher_requires_clients(settings):
    with pytest.raises(ValueError, match="client_factory"):
        Prefetcher(settings=settings)
