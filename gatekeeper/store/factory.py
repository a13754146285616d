from __future__ import annotations

from .base import CounterStore
from .memory import MemoryCounterStore
from .redis_store import RedisCounterStore

_REDIS_SCHEMES = ("redis://", "rediss://", "unix://")


def create_store(url: str, timeout_seconds: float = 0.5) -> CounterStore:
    """Build a counter store from a URL: ``memory://`` or any Redis URL."""
    if url.startswith("memory://"):
        return MemoryCounterStore()
    if url.startswith(_REDIS_SCHEMES):
        return RedisCounterStore(url, timeout_seconds=timeout_seconds)
    raise ValueError(f"Unsupported counter store URL: {url!r}")
