"""In-memory LRU message store."""

import asyncio
import logging
from collections import OrderedDict

from ..types import Message
from .base import KeyValueStore

logger = logging.getLogger(__name__)


class MemoryStore(KeyValueStore):
    """
    In-memory LRU store for messages.

    This store uses an OrderedDict to maintain LRU ordering.
    When the store exceeds max_size, the least recently used
    entries are evicted. Eviction is silent: a conversation may
    lose its older turns without notice.

    Example:
        store = MemoryStore(max_size=1000)

        await store.set(message.id, message)
        stored = await store.get(message.id)  # None once evicted
    """

    def __init__(self, max_size: int = 100_000):
        """
        Initialize the memory store.

        Args:
            max_size: Maximum number of entries to keep
        """
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        self._max_size = max_size
        self._entries: OrderedDict[str, Message] = OrderedDict()
        self._lock = asyncio.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    async def get(self, key: str) -> Message | None:
        """Retrieve a stored message."""
        async with self._lock:
            message = self._entries.get(key)

            if message is None:
                self._misses += 1
                return None

            # Move to end (most recently used)
            self._entries.move_to_end(key)
            self._hits += 1
            return message

    async def set(self, key: str, message: Message) -> None:
        """Store a message."""
        async with self._lock:
            # If key exists, update and move to end
            if key in self._entries:
                self._entries[key] = message
                self._entries.move_to_end(key)
                return

            self._entries[key] = message

            # Evict LRU entries if over capacity
            while len(self._entries) > self._max_size:
                evicted, _ = self._entries.popitem(last=False)
                self._evictions += 1
                logger.debug(f"Evicted message {evicted}")

    async def has(self, key: str) -> bool:
        """Check presence without touching recency."""
        async with self._lock:
            return key in self._entries

    async def delete(self, key: str) -> bool:
        """Delete a stored entry."""
        async with self._lock:
            if key in self._entries:
                del self._entries[key]
                return True
            return False

    async def clear(self) -> int:
        """Clear all entries."""
        async with self._lock:
            count = len(self._entries)
            self._entries.clear()
            self._hits = 0
            self._misses = 0
            self._evictions = 0
            return count

    async def size(self) -> int:
        """Get the number of stored entries."""
        async with self._lock:
            return len(self._entries)

    @property
    def max_size(self) -> int:
        """Capacity before eviction starts."""
        return self._max_size

    @property
    def hits(self) -> int:
        """Number of lookups that found a message."""
        return self._hits

    @property
    def misses(self) -> int:
        """Number of lookups that found nothing."""
        return self._misses

    @property
    def evictions(self) -> int:
        """Number of entries dropped to stay within capacity."""
        return self._evictions

    def stats(self) -> dict[str, int]:
        """Get store statistics."""
        return {
            "size": len(self._entries),
            "max_size": self._max_size,
            "hits": self._hits,
            "misses": self._misses,
            "evictions": self._evictions,
        }
