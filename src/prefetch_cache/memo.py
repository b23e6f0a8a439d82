"""
In-process memoization of prefetch calls.

A Memoizer maps a request key to the task computing its result. The first
caller for a key schedules the computation; every later or concurrent caller
awaits the same task and observes the same outcome, success or failure.
Entries never expire; clear() resets the map (used to simulate a fresh
process without touching the durable content store).
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Generic, Hashable, TypeVar

__all__ = ["MemoKey", "Memoizer", "default_memoizer", "clear_memoized"]

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class MemoKey:
    """Fully-qualified request identity."""
    spec: str
    registry: str
    cache_root: str


class Memoizer(Generic[T]):
    """Single-flight memoization keyed by hashable request keys."""

    def __init__(self) -> None:
        self._entries: Dict[Hashable, asyncio.Future] = {}

    async def get_or_create(self, key: Hashable, compute: Callable[[], Awaitable[T]]) -> T:
        """
        Return the memoized outcome for ``key``, computing it at most once.

        The task is registered before the first suspension point, so callers
        entering concurrently for the same key always share it. Each waiter is
        shielded: cancelling one caller does not cancel the shared work.

        A task that ended cancelled (e.g. pending when its event loop shut
        down) is not an outcome; the next caller starts a fresh computation.

        Raises:
            Whatever ``compute`` raised, for every caller of the key
        """
        task = self._entries.get(key)
        if task is not None and task.cancelled():
            logger.debug(f"Dropping cancelled memo entry for {key}")
            task = None
        if task is None:
            logger.debug(f"Memo miss for {key}")
            task = asyncio.ensure_future(compute())
            self._entries[key] = task
        else:
            logger.debug(f"Memo hit for {key}")
        return await asyncio.shield(task)

    def clear(self) -> None:
        """Forget every memoized outcome."""
        self._entries.clear()

    def __contains__(self, key: Hashable) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)


default_memoizer: Memoizer = Memoizer()


def clear_memoized() -> None:
    """Reset process-wide memoization state; the content store is untouched."""
    default_memoizer.clear()
