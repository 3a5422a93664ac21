"""Duplicate suppression for transcript record ids.

A small in-memory cache answers most lookups; the checkpoint store's
identifier table is the durable fallback that survives restarts. Both layers
expire entries after the same time-to-live.
"""

import logging
import time
from collections import OrderedDict
from collections.abc import Callable

from .monitoring.checkpoint_store import CheckpointStore

logger = logging.getLogger(__name__)


class BoundedTTLCache:
    """Insertion-ordered set of keys with a size cap and a time-to-live.

    Re-adding a key moves it to the newest position. When the cap is
    exceeded the oldest key is evicted first.
    """

    def __init__(
        self,
        max_entries: int = 1000,
        ttl_seconds: float = 3600,
        clock: Callable[[], float] = time.time,
    ):
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[str, float] = OrderedDict()

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, str):
            return False
        added_at = self._entries.get(key)
        if added_at is None:
            return False
        if self._clock() - added_at > self.ttl_seconds:
            del self._entries[key]
            return False
        return True

    def __len__(self) -> int:
        return len(self._entries)

    def add(self, key: str) -> None:
        self._entries.pop(key, None)
        self._entries[key] = self._clock()
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def remove_expired(self) -> int:
        cutoff = self._clock() - self.ttl_seconds
        expired = [key for key, added_at in self._entries.items() if added_at < cutoff]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def keys(self) -> list[str]:
        """Keys from oldest to newest."""
        return list(self._entries)


class DedupGuard:
    """Answers "was this record already handled?" across restarts."""

    def __init__(
        self,
        store: CheckpointStore,
        cache: BoundedTTLCache | None = None,
        logger: logging.Logger | None = None,
    ):
        """Initialize the guard.

        Args:
            store: Checkpoint store holding the durable identifier table.
            cache: Fast-path cache; defaults to one sharing the store's TTL.
            logger: Logger to use instead of the module logger.
        """
        self.store = store
        self.cache = cache if cache is not None else BoundedTTLCache(
            ttl_seconds=store.uuid_ttl_seconds
        )
        self._logger = logger if logger is not None else logging.getLogger(__name__)

    def seen(self, record_id: str) -> bool:
        """True if the id is present and unexpired in either layer."""
        if record_id in self.cache:
            return True
        return self.store.has_uuid(record_id)

    def mark_seen(self, record_id: str) -> None:
        self.cache.add(record_id)
        self.store.add_uuid(record_id)

    def cleanup(self) -> int:
        """Drop expired entries from both layers.

        Returns:
            Total number of entries removed.
        """
        before = len(self.cache)
        removed = self.cache.remove_expired() + self.store.remove_expired_uuids()
        if removed:
            self._logger.info(f"Cleaned up expired ids: cache {before} -> {len(self.cache)}, {removed} removed in total")
        return removed

    def clear_cache(self) -> int:
        """Empty the in-memory layer; the durable table is untouched."""
        size = len(self.cache)
        self.cache.clear()
        return size
