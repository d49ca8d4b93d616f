"""
Caches

- MemoryCache: process wide cache backend with per entry TTL
- RequestCache: memoization owned by a single request
"""
import hashlib
import threading
import time
from typing import Any, Dict, Optional, Tuple

MISSING = object()


def cache_key(*parts: Any) -> str:
    """
    :return: hash of the key parts
    """
    return hashlib.sha1(":".join(str(p) for p in parts).encode("utf-8")).hexdigest()


class MemoryCache:
    """
    Cache backend keeping the values in memory
    other backends implement the same get/set/delete/clear methods
    """

    def __init__(self, clock=time.monotonic) -> None:
        self._clock = clock
        self._entries: Dict[str, Tuple[Optional[float], Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return default
            expires, value = entry
            if expires is not None and expires <= self._clock():
                del self._entries[key]
                return default
            return value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """
        :param ttl: time to live in seconds, None means forever
        expired entries are dropped on every write
        """
        now = self._clock()
        expires = now + ttl if ttl is not None else None
        with self._lock:
            self._purge_expired(now)
            self._entries[key] = (expires, value)

    def _purge_expired(self, now: float) -> None:
        expired = [key for key, (expires, _) in self._entries.items() if expires is not None and expires <= now]
        for key in expired:
            del self._entries[key]

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class RequestCache:
    """
    Memoization for the duration of one request, keys are namespaced by scope
    """

    def __init__(self, request_id: str) -> None:
        self.request_id = request_id
        self._values: Dict[Tuple[str, str], Any] = {}

    def get(self, scope: str, key: str, default: Any = None) -> Any:
        return self._values.get((scope, key), default)

    def set(self, scope: str, key: str, value: Any) -> None:
        self._values[(scope, key)] = value

    def remember(self, scope: str, key: str, factory) -> Any:
        """
        :return: the cached value, `factory()` is called and cached when there's none
        """
        value = self._values.get((scope, key), MISSING)
        if value is MISSING:
            value = factory()
            self._values[(scope, key)] = value
        return value

    def clear(self) -> None:
        self._values.clear()
