"""In-memory TTL cache with least-recently-used eviction."""

import asyncio
import contextlib
import logging
import time
from collections.abc import Callable, Hashable
from typing import Generic, TypeVar

from cachetools import TTLCache

logger = logging.getLogger(__name__)

V = TypeVar("V")

# Background sweeps run at least this often (seconds)
MAX_SWEEP_INTERVAL = 300.0


class Cache(Generic[V]):
    """TTL cache where reads count as uses for LRU eviction.

    Backed by cachetools.TTLCache, which tracks keys in access order: ``set``
    and a successful ``get`` both move a key to the most-recently-used end,
    and a full cache evicts from the least-recently-used end before inserting.
    ``has`` / ``in`` check expiry without touching the order.

    Entries expire ``ttl`` seconds after they were last set, and an entry
    exactly ``ttl`` old already counts as expired (cachetools keeps an entry
    only while ``now < set_time + ttl``). Expired entries are dropped when
    accessed, on every write, and by a periodic sweep that is scheduled on
    the event loop running at construction time, if any.
    """

    def __init__(
        self,
        ttl: float,
        maxsize: int,
        timer: Callable[[], float] = time.monotonic,
    ):
        """Create a cache.

        Args:
            ttl: Entry lifetime in seconds.
            maxsize: Maximum number of entries. 0 disables storage.
            timer: Clock returning seconds; injectable for tests.
        """
        if ttl <= 0:
            raise ValueError(f"ttl must be positive, got {ttl}")
        if maxsize < 0:
            raise ValueError(f"maxsize must be >= 0, got {maxsize}")

        self.ttl = ttl
        self.maxsize = maxsize
        # cachetools rejects every insert into a zero-size cache, so size 0 is
        # handled in set() and the backing store just needs a valid bound
        self._entries: TTLCache[Hashable, V] = TTLCache(
            maxsize=max(maxsize, 1), ttl=ttl, timer=timer
        )
        self.sweep_interval = min(ttl / 2, MAX_SWEEP_INTERVAL)
        self._sweep_handle: asyncio.TimerHandle | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._disposed = False

        try:
            self._loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; cache expires entries on write only")
        else:
            self._schedule_sweep()

    def __len__(self) -> int:
        """Number of entries held, including expired ones not yet swept."""
        return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        return self.has(key)

    def set(self, key: Hashable, value: V) -> None:
        """Store value under key as the most recently used entry."""
        if self.maxsize == 0:
            return
        # Overwriting resets both the expiry clock and the recency position
        self._entries[key] = value

    def get(self, key: Hashable, default: V | None = None) -> V | None:
        """Return the cached value, or default if absent or expired.

        A hit marks the entry as most recently used.
        """
        try:
            return self._entries[key]
        except KeyError:
            self._drop(key)
            return default

    def has(self, key: Hashable) -> bool:
        """True if key holds a live entry. Does not affect recency."""
        if key in self._entries:
            return True
        self._drop(key)
        return False

    def delete(self, key: Hashable) -> None:
        self._drop(key)

    def clear(self) -> None:
        self._entries.clear()

    def sweep(self) -> None:
        """Remove every expired entry. Never evicts live entries."""
        expired = self._entries.expire()
        if expired:
            logger.debug("Cache sweep removed %d expired entries", len(expired))

    def dispose(self) -> None:
        """Stop the background sweep and drop all entries. Safe to repeat."""
        self._disposed = True
        if self._sweep_handle is not None:
            self._sweep_handle.cancel()
            self._sweep_handle = None
        self._loop = None
        self.clear()

    def _drop(self, key: Hashable) -> None:
        # TTLCache keeps expired keys until expire(); delete them directly
        with contextlib.suppress(KeyError):
            del self._entries[key]

    def _schedule_sweep(self) -> None:
        if self._disposed or self._loop is None or self._loop.is_closed():
            return
        self._sweep_handle = self._loop.call_later(
            self.sweep_interval, self._on_sweep_timer
        )

    def _on_sweep_timer(self) -> None:
        if self._disposed:
            return
        self.sweep()
        self._schedule_sweep()
