"""
On-disk content-addressable store.

Layout under the cache root:

    content-v2/<algorithm>/<hex[0:2]>/<hex[2:4]>/<hex[4:]>
        Raw bytes, addressed by the strongest algorithm of their verified
        integrity. Written once via temp file + rename; identical digests are
        no-ops.

    index-v5/<b[0:2]>/<b[2:4]>/<b[4:]>      (b = sha256 of the cache key)
        Append-only JSON-lines bucket. Each line is a complete entry record;
        the newest record for a key wins and a record whose integrity is null
        is a tombstone left by invalidate().

All public methods are coroutines; blocking file I/O runs in a worker thread
so the store is a suspension point for the orchestrator.
"""
from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from .. import integrity as ssri
from ..integrity import DEFAULT_ALGORITHMS, Hash, IntegrityKey
from .base import CacheEntry, ContentStoreProtocol

__all__ = ["ContentStore", "list_entries", "CONTENT_DIR", "INDEX_DIR"]

logger = logging.getLogger(__name__)

CONTENT_DIR = "content-v2"
INDEX_DIR = "index-v5"


def write_atomically(target_path: Path, data: bytes) -> None:
    """
    Write ``data`` to ``target_path`` with temp file + rename.

    Readers either see the complete file or no file at all.

    Raises:
        OSError: If file operations fail
    """
    target_path.parent.mkdir(parents=True, exist_ok=True)

    fd, temp_name = tempfile.mkstemp(prefix=".prefetch.tmp.", dir=target_path.parent)
    temp_path = Path(temp_name)
    try:
        with os.fdopen(fd, "wb", buffering=0) as out:
            out.write(data)
            out.flush()
            os.fsync(out.fileno())
        os.replace(temp_path, target_path)
    except Exception:
        try:
            temp_path.unlink()
        except FileNotFoundError:
            pass
        raise


class ContentStore(ContentStoreProtocol):
    """
    Integrity-keyed store rooted at a cache directory.

    The directory is only created on the first write, so constructing a
    store never touches the filesystem.
    """

    def __init__(self, root: Union[str, Path], *, default_algorithms: Iterable[str] = DEFAULT_ALGORITHMS) -> None:
        self.root = Path(root)
        self.default_algorithms = tuple(default_algorithms)

    # Paths

    def content_path(self, h: Hash) -> Path:
        hexdigest = h.hexdigest()
        return self.root / CONTENT_DIR / h.algorithm / hexdigest[:2] / hexdigest[2:4] / hexdigest[4:]

    def bucket_path(self, key: str) -> Path:
        bucket = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return self.root / INDEX_DIR / bucket[:2] / bucket[2:4] / bucket[4:]

    # Public API

    async def lookup(self, key: str) -> Optional[CacheEntry]:
        return await asyncio.to_thread(self._lookup_sync, key)

    async def find_content(self, integrity: Union[str, IntegrityKey]) -> Optional[IntegrityKey]:
        return await asyncio.to_thread(self._find_content_sync, ssri.parse(integrity))

    async def put(
        self,
        key: str,
        data: bytes,
        *,
        integrity: Optional[Union[str, IntegrityKey]] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> CacheEntry:
        return await asyncio.to_thread(self._put_sync, key, bytes(data), integrity, dict(metadata or {}))

    async def read(self, target: Union[CacheEntry, str, IntegrityKey]) -> bytes:
        """
        Read stored bytes for an entry or integrity key and re-verify them.

        Raises:
            FileNotFoundError: If no content is stored for the key
            IntegrityMismatch: If the stored bytes were corrupted
        """
        key = target.integrity if isinstance(target, CacheEntry) else ssri.parse(target)
        return await asyncio.to_thread(self._read_sync, key)

    async def ls(self) -> Dict[str, CacheEntry]:
        return await asyncio.to_thread(self._ls_sync)

    async def invalidate(self, key: str) -> bool:
        return await asyncio.to_thread(self._invalidate_sync, key)

    # Synchronous implementations (run in worker threads)

    def _lookup_sync(self, key: str) -> Optional[CacheEntry]:
        record = self._newest_record(key)
        if record is None or record.get("integrity") is None:
            return None
        entry = self._entry_from_record(record)
        if not entry.path.exists():
            logger.debug(f"Index entry for {key} points at missing content {entry.integrity}")
            return None
        return entry

    def _find_content_sync(self, integrity: IntegrityKey) -> Optional[IntegrityKey]:
        ordered = sorted(integrity.hashes, key=lambda h: ssri.SUPPORTED_ALGORITHMS.index(h.algorithm), reverse=True)
        for h in ordered:
            if self.content_path(h).exists():
                return IntegrityKey((Hash(h.algorithm, h.digest),))
        return None

    def _put_sync(
        self,
        key: str,
        data: bytes,
        integrity: Optional[Union[str, IntegrityKey]],
        metadata: Dict[str, Any],
    ) -> CacheEntry:
        # Verify before anything touches disk
        if integrity is not None:
            verified = ssri.check_data(data, integrity)
        else:
            verified = ssri.from_bytes(data, self.default_algorithms)
        stored = IntegrityKey((verified.strongest(),))

        path = self.content_path(stored.hashes[0])
        if path.exists():
            logger.debug(f"Content {stored} already stored")
        else:
            write_atomically(path, data)
            logger.debug(f"Wrote {len(data)} bytes of content {stored}")

        newest = self._newest_record(key)
        if newest is not None and newest.get("integrity") == str(stored):
            return self._entry_from_record(newest)

        record = {
            "key": key,
            "integrity": str(stored),
            "size": len(data),
            "time": time.time() * 1000,
            "metadata": metadata,
        }
        self._append_record(key, record)
        logger.debug(f"Indexed {key} -> {stored}")
        return self._entry_from_record(record)

    def _read_sync(self, integrity: IntegrityKey) -> bytes:
        found = self._find_content_sync(integrity)
        if found is None:
            raise FileNotFoundError(f"No content stored for {integrity}")
        data = self.content_path(found.hashes[0]).read_bytes()
        ssri.check_data(data, found)
        return data

    def _ls_sync(self) -> Dict[str, CacheEntry]:
        index_root = self.root / INDEX_DIR
        if not index_root.exists():
            return {}

        newest: Dict[str, Dict[str, Any]] = {}
        for bucket in sorted(p for p in index_root.rglob("*") if p.is_file()):
            for record in self._read_bucket(bucket):
                newest[record["key"]] = record

        entries = {
            key: self._entry_from_record(record)
            for key, record in newest.items()
            if record.get("integrity") is not None
        }
        return dict(sorted(entries.items(), key=lambda item: item[1].time))

    def _invalidate_sync(self, key: str) -> bool:
        newest = self._newest_record(key)
        if newest is None or newest.get("integrity") is None:
            return False
        self._append_record(key, {"key": key, "integrity": None, "time": time.time() * 1000})
        logger.debug(f"Invalidated {key}")
        return True

    # Index helpers

    def _newest_record(self, key: str) -> Optional[Dict[str, Any]]:
        matching = [r for r in self._read_bucket(self.bucket_path(key)) if r["key"] == key]
        return matching[-1] if matching else None

    def _read_bucket(self, path: Path) -> List[Dict[str, Any]]:
        if not path.exists():
            return []
        records = []
        with open(path, "r", encoding="utf-8") as f:
            for lineno, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    record = json.loads(line)
                except json.JSONDecodeError:
                    # A torn append; older records in the bucket are still valid
                    logger.warning(f"Skipping corrupt index line {lineno} in {path}")
                    continue
                if isinstance(record, dict) and "key" in record:
                    records.append(record)
        return records

    def _append_record(self, key: str, record: Dict[str, Any]) -> None:
        path = self.bucket_path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        line = json.dumps(record, sort_keys=True, separators=(",", ":"))
        with open(path, "a", encoding="utf-8") as f:
            f.write(line + "\n")
            f.flush()
            os.fsync(f.fileno())

    def _entry_from_record(self, record: Mapping[str, Any]) -> CacheEntry:
        key = ssri.parse(record["integrity"])
        return CacheEntry(
            key=record["key"],
            integrity=key,
            path=self.content_path(key.hashes[0]),
            size=record.get("size", 0),
            time=record.get("time", 0.0),
            metadata=record.get("metadata") or {},
        )


async def list_entries(cache_root: Union[str, Path]) -> Dict[str, CacheEntry]:
    """Inspection helper: every live entry under ``cache_root``."""
    return await ContentStore(cache_root).ls()
