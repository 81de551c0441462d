"""
In-memory TTL cache for feed lookups.

Entries expire lazily on read; `purge_expired()` is called by the feed
refresher so keys for disasters nobody looks at do not pile up.
"""
import time
from typing import Any, Callable, Dict, Tuple


class TTLCache:
    def __init__(self, default_ttl_s: float, clock: Callable[[], float] = time.monotonic):
        self.default_ttl_s = default_ttl_s
        self._clock = clock
        self._entries: Dict[str, Tuple[float, Any]] = {}

    def get(self, key: str, default: Any = None) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return default
        expires_at, value = entry
        if expires_at <= self._clock():
            del self._entries[key]
            return default
        return value

    def set(self, key: str, value: Any, ttl_s: float | None = None) -> None:
        ttl = self.default_ttl_s if ttl_s is None else ttl_s
        self._entries[key] = (self._clock() + ttl, value)

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [k for k, (expires_at, _) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)
