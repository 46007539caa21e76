"""Injectable clock and a small TTL cache for time-based lookups."""

from __future__ import annotations

from datetime import datetime, timezone
import threading
from typing import Callable, Dict, Generic, Optional, Tuple, TypeVar

T = TypeVar("T")


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class TTLCache(Generic[T]):
    """Keyed values that expire ``ttl_seconds`` after they were stored.

    Readers never wait on a refresh: ``get`` only takes the lock long enough
    to copy the entry out, and a stale entry is simply reported as a miss so
    the caller can recompute and ``set`` a fresh value.
    """

    def __init__(self, ttl_seconds: float, clock: Optional[SystemClock] = None):
        self.ttl_seconds = ttl_seconds
        self.clock = clock or SystemClock()
        self._entries: Dict[str, Tuple[datetime, T]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[T]:
        with self._lock:
            entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, value = entry
        if (self.clock.now() - stored_at).total_seconds() >= self.ttl_seconds:
            return None
        return value

    def set(self, key: str, value: T) -> None:
        with self._lock:
            self._entries[key] = (self.clock.now(), value)

    def get_or_set(self, key: str, factory: Callable[[], T]) -> T:
        cached = self.get(key)
        if cached is not None:
            return cached
        value = factory()
        self.set(key, value)
        return value

    def invalidate(self, key: Optional[str] = None) -> None:
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)


__all__ = ["SystemClock", "TTLCache"]
