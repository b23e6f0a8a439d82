"""
Content-addressable storage for fetched package data.
"""
from .base import CacheEntry, ContentStoreProtocol
from .content_store import ContentStore, list_entries
from .keys import manifest_key, tarball_key

__all__ = ["CacheEntry", "ContentStoreProtocol", "ContentStore", "list_entries", "manifest_key", "tarball_key"]
