from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Generic, TypeVar

V = TypeVar("V")


@dataclass(frozen=True)
class CacheEntry(Generic[V]):
    value: V
    inserted_at: float
    ttl_seconds: float

    def is_fresh(self, now: float) -> bool:
        return now - self.inserted_at < self.ttl_seconds


class TTLCache(Generic[V]):
    """Small keyed cache whose entries expire ``ttl_seconds`` after insertion.

    Entries are never a correctness dependency: a miss only means the cached
    work is redone. The clock is injectable so tests can move time forward.
    """

    def __init__(self, ttl_seconds: float, *, clock: Callable[[], float] = time.monotonic) -> None:
        if ttl_seconds < 0:
            raise ValueError("ttl_seconds must be >= 0")
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, CacheEntry[V]] = {}

    def get(self, key: str) -> V | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if not entry.is_fresh(self._clock()):
            del self._entries[key]
            return None
        return entry.value

    def put(self, key: str, value: V) -> None:
        self._entries[key] = CacheEntry(value=value, inserted_at=self._clock(), ttl_seconds=self.ttl_seconds)

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        now = self._clock()
        return sum(1 for entry in self._entries.values() if entry.is_fresh(now))
