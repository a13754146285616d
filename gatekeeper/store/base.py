"""
store/base.py — Counter store contract
======================================
Every piece of shared security state (rate-limit windows, lockout counters,
IP reputation, alert lists, metrics) lives behind this interface. The
security components only use these primitives, never a backend's full
feature set, so any store with atomic increment and per-key expiry works.

TTLs are expressed in milliseconds throughout. ``pttl`` follows the Redis
convention: ``-2`` when the key does not exist, ``-1`` when it has no expiry.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterator, List, Optional

from ..security.errors import StoreUnavailable

KEY_MISSING = -2
NO_EXPIRY = -1

__all__ = ["CounterStore", "StoreUnavailable", "KEY_MISSING", "NO_EXPIRY"]


class CounterStore(ABC):
    """Key-value store with per-key expiry and atomic counters."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def set(self, key: str, value: str, ttl_ms: Optional[int] = None) -> None:
        ...

    @abstractmethod
    def incr(self, key: str, amount: int = 1, ttl_ms: Optional[int] = None) -> int:
        """
        Atomically add ``amount`` to the integer at ``key`` and return the
        new value. When ``ttl_ms`` is given the expiry is applied only if the
        key has none after the increment (i.e. it was just created), so
        concurrent creators never push the window forward.
        """

    @abstractmethod
    def lpush(self, key: str, value: str, max_len: Optional[int] = None) -> None:
        """Prepend ``value``; keep at most ``max_len`` newest entries."""

    @abstractmethod
    def lrange(self, key: str, start: int, stop: int) -> List[str]:
        """Inclusive range, negative indexes count from the end."""

    @abstractmethod
    def lrem(self, key: str, value: str) -> int:
        """Remove every occurrence of ``value``; return how many were removed."""

    @abstractmethod
    def delete(self, *keys: str) -> int:
        ...

    @abstractmethod
    def exists(self, key: str) -> bool:
        ...

    @abstractmethod
    def pttl(self, key: str) -> int:
        ...

    @abstractmethod
    def pexpire(self, key: str, ttl_ms: int) -> bool:
        ...

    @abstractmethod
    def scan(self, prefix: str) -> Iterator[str]:
        """Yield live keys starting with ``prefix``."""

    @abstractmethod
    def ping(self) -> bool:
        ...

    def close(self) -> None:
        """Release backend resources. No-op by default."""
