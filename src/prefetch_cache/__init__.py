"""
Content-addressable prefetch cache for registry package tarballs.
"""
from .errors import (
    IntegrityMismatch,
    InvalidSpecifier,
    MalformedIntegrity,
    PackageNotFound,
    PrefetchError,
    RegistryError,
    TransportError,
)
from .integrity import IntegrityKey
from .memo import Memoizer, clear_memoized, default_memoizer
from .models import Manifest, PackageSpec, PrefetchResult
from .orchestrator import Prefetcher, prefetch
from .runtime_types import PrefetchOptions
from .settings import Settings, create_settings_from_env
from .storage import ContentStore, list_entries

__version__ = "0.1.0"

__all__ = [
    "ContentStore",
    "IntegrityKey",
    "IntegrityMismatch",
    "InvalidSpecifier",
    "MalformedIntegrity",
    "Manifest",
    "Memoizer",
    "PackageNotFound",
    "PackageSpec",
    "PrefetchError",
    "PrefetchOptions",
    "PrefetchResult",
    "Prefetcher",
    "RegistryError",
    "Settings",
    "TransportError",
    "clear_memoized",
    "create_settings_from_env",
    "default_memoizer",
    "list_entries",
    "prefetch",
]
