"""
Storage interfaces for the prefetch cache.

The orchestrator talks to the content store only through this protocol, so
tests can substitute an instrumented store and alternative backends can be
dropped in without touching the decision logic.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Protocol, Union, runtime_checkable

from ..integrity import IntegrityKey


@dataclass(frozen=True)
class CacheEntry:
    """
    Index record for a single cache key.

    Invariants:
    - integrity: verified key of the stored bytes (single algorithm)
    - size: exact byte length (>= 0)
    - time: insertion time in milliseconds since the epoch
    - metadata: free-form hints (resolved URL, freshness headers)
    """
    key: str
    integrity: IntegrityKey
    path: Path
    size: int
    time: float
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def summary(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "integrity": str(self.integrity),
            "path": str(self.path),
            "size": self.size,
            "time": self.time,
            "metadata": dict(self.metadata),
        }


__all__ = ["CacheEntry", "ContentStoreProtocol"]


@runtime_checkable
class ContentStoreProtocol(Protocol):
    """Protocol for integrity-keyed content storage."""

    async def lookup(self, key: str) -> Optional[CacheEntry]:
        """
        Return the newest live entry for ``key``, or None.

        Must not touch the network and must not modify the store.
        """
        ...

    async def find_content(self, integrity: IntegrityKey) -> Optional[IntegrityKey]:
        """
        Return the stored key compatible with ``integrity``, or None.

        This is the digest-addressed lookup; no index key is involved.
        """
        ...

    async def put(
        self,
        key: str,
        data: bytes,
        *,
        integrity: Optional[Union[str, IntegrityKey]] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> CacheEntry:
        """
        Store ``data`` under ``key``.

        Raises:
            IntegrityMismatch: If ``integrity`` is given and does not match
        """
        ...

    async def ls(self) -> Dict[str, CacheEntry]:
        """Return every live entry keyed by cache key."""
        ...

    async def invalidate(self, key: str) -> bool:
        """Remove ``key`` from the index. Returns False if it was absent."""
        ...
