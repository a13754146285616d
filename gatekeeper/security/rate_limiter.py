"""
security/rate_limiter.py — Windowed request counters
====================================================
One counter per (client, route scope). The first request in a window
creates the counter with TTL = window; later requests only increment it.
Once the count passes ``max`` the caller is rejected until the key expires.
The window is never extended or reset early by rejected requests.
"""
from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import Callable, Dict

from ..store.base import CounterStore

KEY_PREFIX = "rate_limit:"


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float  # epoch seconds
    count: int

    def retry_after(self, now: float) -> int:
        return max(math.ceil(self.reset_at - now), 0)

    def headers(self) -> Dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(math.ceil(self.reset_at)),
        }


def rate_limit_key(client_key: str, route_scope: str) -> str:
    return f"{KEY_PREFIX}{client_key}:{route_scope}"


class RateLimiter:
    def __init__(self, store: CounterStore, clock: Callable[[], float] = time.time) -> None:
        self.store = store
        self.clock = clock

    def check_limit(
        self,
        client_key: str,
        route_scope: str,
        window_ms: int,
        max_requests: int,
    ) -> RateLimitResult:
        """
        Count this request and decide whether it may proceed.

        Raises ``StoreUnavailable`` when the store cannot be reached; the
        route's fail-open / fail-closed policy is the caller's decision.
        """
        if window_ms < 1 or max_requests < 1:
            raise ValueError("window_ms and max_requests must be >= 1")

        key = rate_limit_key(client_key, route_scope)
        count = self.store.incr(key, 1, ttl_ms=window_ms)
        ttl_ms = self.store.pttl(key)
        if ttl_ms < 0:
            # Expired between the two calls, or a stray key without expiry.
            ttl_ms = window_ms

        return RateLimitResult(
            allowed=count <= max_requests,
            limit=max_requests,
            remaining=max(max_requests - count, 0),
            reset_at=self.clock() + ttl_ms / 1000.0,
            count=count,
        )

    def reset(self, client_key: str, route_scope: str) -> None:
        self.store.delete(rate_limit_key(client_key, route_scope))
