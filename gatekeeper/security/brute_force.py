"""
security/brute_force.py — Failed-authentication lockout
=======================================================
Counts failed logins per identity inside a lockout window. The window
starts at the first failure (TTL set on creation only), so a burst of
failures cannot keep pushing the unlock time out. A successful login
deletes the record; otherwise the lockout simply expires with the key.
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Optional

from ..store.base import CounterStore

KEY_PREFIX = "brute_force:"

DEFAULT_THRESHOLD = 5
DEFAULT_WINDOW_SECONDS = 15 * 60


@dataclass(frozen=True)
class LockoutStatus:
    attempts: int
    locked: bool
    reset_at: Optional[float] = None  # epoch seconds, set while a record exists


def brute_force_key(identity: str) -> str:
    return f"{KEY_PREFIX}{identity}"


class BruteForceTracker:
    def __init__(
        self,
        store: CounterStore,
        threshold: int = DEFAULT_THRESHOLD,
        window_seconds: int = DEFAULT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.threshold = threshold
        self.window_seconds = window_seconds
        self.clock = clock

    @property
    def window_ms(self) -> int:
        return self.window_seconds * 1000

    def record_failure(self, identity: str) -> int:
        """Count one failed attempt and return the attempts in the current window."""
        return self.store.incr(brute_force_key(identity), 1, ttl_ms=self.window_ms)

    def attempts(self, identity: str) -> int:
        raw = self.store.get(brute_force_key(identity))
        return int(raw) if raw else 0

    def is_locked(self, identity: str) -> bool:
        return self.attempts(identity) >= self.threshold

    def status(self, identity: str) -> LockoutStatus:
        key = brute_force_key(identity)
        attempts = self.attempts(identity)
        if attempts == 0:
            return LockoutStatus(attempts=0, locked=False)
        ttl_ms = self.store.pttl(key)
        reset_at = self.clock() + ttl_ms / 1000.0 if ttl_ms > 0 else None
        return LockoutStatus(
            attempts=attempts,
            locked=attempts >= self.threshold,
            reset_at=reset_at,
        )

    def reset(self, identity: str) -> bool:
        """Forget every failure for ``identity`` (called on successful login)."""
        return self.store.delete(brute_force_key(identity)) > 0
