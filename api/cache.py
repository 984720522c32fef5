"""
Response Cache
--------------
In-memory TTL cache for API responses.

Expiry is checked lazily on read; there is no background sweep and no
size-based eviction. The cache lives as long as its owning client.

Values are copied on the way in and out, so a caller mutating a returned
payload never changes what later hits see.
"""

from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Dict, Optional
import copy
import time


@dataclass
class CacheEntry:
    """A cached payload and the monotonic time it stops being valid."""
    value: Any
    expires_at: float


@dataclass(frozen=True)
class CacheTTLs:
    """Standard cache lifetimes in seconds, per class of resource."""
    user_info: float = 3600.0       # whoami, profile
    enrollments: float = 3600.0     # course list changes rarely mid-session
    course_content: float = 1800.0  # modules, topics, discussion forums
    assignments: float = 900.0      # dropbox folders and due dates
    grades: float = 300.0
    announcements: float = 300.0    # news items and discussion posts


DEFAULT_CACHE_TTLS = CacheTTLs()


class ResponseCache:
    """
    TTL cache keyed by request identity.

    Thread-safe; an expired entry is removed the first time it is read.
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self._clock = clock or time.monotonic
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = Lock()

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None on miss or expiry."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None

            if self._clock() >= entry.expires_at:
                del self._entries[key]
                return None

            return copy.deepcopy(entry.value)

    def set(self, key: str, value: Any, ttl: float) -> None:
        """Store a value for ``ttl`` seconds."""
        if ttl <= 0:
            raise ValueError(f"Cache TTL must be positive, got {ttl}")

        with self._lock:
            self._entries[key] = CacheEntry(value=copy.deepcopy(value), expires_at=self._clock() + ttl)

    def delete(self, key: str) -> bool:
        """Remove one entry. Returns True if it existed."""
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        """Drop every entry."""
        with self._lock:
            self._entries.clear()

    @property
    def size(self) -> int:
        """Number of stored entries, including expired ones not yet read."""
        with self._lock:
            return len(self._entries)

    def __len__(self) -> int:
        return self.size
