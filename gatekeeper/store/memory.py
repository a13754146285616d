"""
store/memory.py — In-process counter store
===========================================
Single-instance backend for local development and tests. Expiry is lazy:
a key is dropped the first time it is touched after its deadline, judged
against the injected clock so tests can move time forward without sleeping.

The lock emulates the atomicity a real store gives each command. It does
not make this backend shareable across processes; use Redis for that.
"""
from __future__ import annotations

import time
from threading import Lock
from typing import Callable, Dict, Iterator, List, Optional, Union

from .base import KEY_MISSING, NO_EXPIRY, CounterStore

_Value = Union[str, List[str]]


class MemoryCounterStore(CounterStore):
    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._lock = Lock()
        self._data: Dict[str, _Value] = {}
        self._expires_at: Dict[str, float] = {}

    # ------------------------------------------------------------------
    # Internals (caller holds the lock)
    # ------------------------------------------------------------------

    def _expired(self, key: str) -> bool:
        deadline = self._expires_at.get(key)
        if deadline is not None and deadline <= self._clock():
            self._data.pop(key, None)
            self._expires_at.pop(key, None)
            return True
        return False

    def _live(self, key: str) -> bool:
        return key in self._data and not self._expired(key)

    def _list(self, key: str) -> List[str]:
        if not self._live(key):
            self._data[key] = []
        value = self._data[key]
        if not isinstance(value, list):
            raise TypeError(f"Key {key!r} does not hold a list")
        return value

    def _set_ttl(self, key: str, ttl_ms: int) -> None:
        self._expires_at[key] = self._clock() + ttl_ms / 1000.0

    # ------------------------------------------------------------------
    # CounterStore
    # ------------------------------------------------------------------

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            if not self._live(key):
                return None
            value = self._data[key]
            if isinstance(value, list):
                raise TypeError(f"Key {key!r} holds a list")
            return value

    def set(self, key: str, value: str, ttl_ms: Optional[int] = None) -> None:
        with self._lock:
            self._data[key] = str(value)
            self._expires_at.pop(key, None)
            if ttl_ms is not None:
                self._set_ttl(key, ttl_ms)

    def incr(self, key: str, amount: int = 1, ttl_ms: Optional[int] = None) -> int:
        with self._lock:
            current = int(self._data[key]) if self._live(key) else 0
            new_value = current + amount
            self._data[key] = str(new_value)
            if ttl_ms is not None and key not in self._expires_at:
                self._set_ttl(key, ttl_ms)
            return new_value

    def lpush(self, key: str, value: str, max_len: Optional[int] = None) -> None:
        with self._lock:
            items = self._list(key)
            items.insert(0, value)
            if max_len is not None:
                del items[max_len:]

    def lrange(self, key: str, start: int, stop: int) -> List[str]:
        with self._lock:
            if not self._live(key):
                return []
            items = self._list(key)
            size = len(items)
            if start < 0:
                start = max(size + start, 0)
            if stop < 0:
                stop = size + stop
            return list(items[start:stop + 1])

    def lrem(self, key: str, value: str) -> int:
        with self._lock:
            if not self._live(key):
                return 0
            items = self._list(key)
            kept = [item for item in items if item != value]
            removed = len(items) - len(kept)
            items[:] = kept
            if not items:
                self._data.pop(key, None)
                self._expires_at.pop(key, None)
            return removed

    def delete(self, *keys: str) -> int:
        with self._lock:
            removed = 0
            for key in keys:
                if self._live(key):
                    removed += 1
                self._data.pop(key, None)
                self._expires_at.pop(key, None)
            return removed

    def exists(self, key: str) -> bool:
        with self._lock:
            return self._live(key)

    def pttl(self, key: str) -> int:
        with self._lock:
            if not self._live(key):
                return KEY_MISSING
            deadline = self._expires_at.get(key)
            if deadline is None:
                return NO_EXPIRY
            return max(int(round((deadline - self._clock()) * 1000)), 0)

    def pexpire(self, key: str, ttl_ms: int) -> bool:
        with self._lock:
            if not self._live(key):
                return False
            self._set_ttl(key, ttl_ms)
            return True

    def scan(self, prefix: str) -> Iterator[str]:
        with self._lock:
            keys = [k for k in list(self._data) if k.startswith(prefix) and self._live(k)]
        return iter(keys)

    def ping(self) -> bool:
        return True

    # ------------------------------------------------------------------
    # Test / maintenance helpers
    # ------------------------------------------------------------------

    def persist(self, key: str) -> bool:
        """Drop the expiry on ``key`` (mirrors Redis PERSIST)."""
        with self._lock:
            if not self._live(key):
                return False
            return self._expires_at.pop(key, None) is not None

    def flush(self) -> None:
        with self._lock:
            self._data.clear()
            self._expires_at.clear()
