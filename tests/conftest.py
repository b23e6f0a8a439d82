"""Root pytest configuration for prefetch-cache tests."""
import copy
import json

import pytest

from prefetch_cache import integrity as ssri
from prefetch_cache.memo import Memoizer, clear_memoized
from prefetch_cache.orchestrator import Prefetcher
from prefetch_cache.settings import Settings

from tests.fakes.fake_clients import FakeMetadataClient, FakeTransport
from tests.helpers.tarball import make_tarball

REGISTRY = "https://mock.reg"
TARBALL_URL = "https://foo.bar/x.tgz"

PKG = {
    "package.json": json.dumps({"name": "foo", "version": "1.2.3"}),
    "index.js": 'console.log("hello world!")',
}


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers",
        "slow: mark test as slow (may take significant time)"
    )


@pytest.fixture(autouse=True)
def test_env(monkeypatch):
    """Isolate tests from the caller's environment and process-wide memo state."""
    for var in (
        "PREFETCH_REGISTRY",
        "PREFETCH_CACHE",
        "PREFETCH_HTTP_TIMEOUT",
        "PREFETCH_HTTP_RETRY",
        "PREFETCH_ALGORITHMS",
    ):
        monkeypatch.delenv(var, raising=False)
    clear_memoized()
    yield
    clear_memoized()


@pytest.fixture
def settings():
    """Standard test settings."""
    return Settings(registry_url=REGISTRY, http_retry=0)


@pytest.fixture
def tarball():
    return make_tarball(PKG)


@pytest.fixture
def base_manifest(tarball):
    """Version document with sha1 integrity, as older registries publish it."""
    integrity = str(ssri.from_bytes(tarball, ["sha1"]))
    return {
        "name": "foo",
        "version": "1.0.0",
        "_hasShrinkwrap": False,
        "_resolved": TARBALL_URL,
        "_integrity": integrity,
        "dist": {
            "tarball": TARBALL_URL,
            "integrity": integrity,
        },
    }


@pytest.fixture
def packument(base_manifest):
    return {
        "name": "foo",
        "dist-tags": {"latest": "1.2.3", "lts": "1.0.0"},
        "versions": {"1.0.0": copy.deepcopy(base_manifest)},
    }


@pytest.fixture
def metadata(packument):
    return FakeMetadataClient({"foo": packument})


@pytest.fixture
def transport(tarball):
    return FakeTransport({TARBALL_URL: tarball}, headers={"Cache-Control": "immutable", "Age": "200"})


@pytest.fixture
def cache_dir(tmp_path):
    return tmp_path / "cache"


@pytest.fixture
def memoizer():
    return Memoizer()


@pytest.fixture
def prefetcher(metadata, transport, settings, memoizer):
    """Orchestrator wired to fakes with an isolated memoizer."""
    return Prefetcher(metadata, transport, settings=settings, memoizer=memoizer)
