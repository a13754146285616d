"""
store/redis_store.py — Redis-backed counter store
==================================================
Production backend. Every command runs with a short socket timeout so a
slow or unreachable Redis degrades into ``StoreUnavailable`` (and from
there into the route's fail-open / fail-closed policy) instead of hanging
the request.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional

import redis
from redis.exceptions import RedisError

from .base import CounterStore, StoreUnavailable

logger = logging.getLogger("gatekeeper.store")

# INCRBY then PEXPIRE only when the key has no expiry yet. Running both in
# one script keeps concurrent first-requests from each re-arming the window.
_INCR_WITH_EXPIRY = """
local value = redis.call('INCRBY', KEYS[1], ARGV[1])
local ttl = tonumber(ARGV[2])
if ttl > 0 and redis.call('PTTL', KEYS[1]) == -1 then
    redis.call('PEXPIRE', KEYS[1], ttl)
end
return value
"""


@contextmanager
def _translate_errors(op: str):
    try:
        yield
    except RedisError as exc:
        logger.warning("Redis %s failed: %s", op, exc)
        raise StoreUnavailable(f"Counter store error during {op}.") from exc


class RedisCounterStore(CounterStore):
    def __init__(self, url: str, timeout_seconds: float = 0.5) -> None:
        self._client = redis.Redis.from_url(
            url,
            socket_timeout=timeout_seconds,
            socket_connect_timeout=timeout_seconds,
            decode_responses=True,
        )
        self._incr_script = self._client.register_script(_INCR_WITH_EXPIRY)

    def get(self, key: str) -> Optional[str]:
        with _translate_errors("get"):
            return self._client.get(key)

    def set(self, key: str, value: str, ttl_ms: Optional[int] = None) -> None:
        with _translate_errors("set"):
            self._client.set(key, value, px=ttl_ms)

    def incr(self, key: str, amount: int = 1, ttl_ms: Optional[int] = None) -> int:
        with _translate_errors("incr"):
            if ttl_ms is None:
                return int(self._client.incrby(key, amount))
            return int(self._incr_script(keys=[key], args=[amount, int(ttl_ms)]))

    def lpush(self, key: str, value: str, max_len: Optional[int] = None) -> None:
        with _translate_errors("lpush"):
            pipe = self._client.pipeline(transaction=True)
            pipe.lpush(key, value)
            if max_len is not None:
                pipe.ltrim(key, 0, max_len - 1)
            pipe.execute()

    def lrange(self, key: str, start: int, stop: int) -> List[str]:
        with _translate_errors("lrange"):
            return list(self._client.lrange(key, start, stop))

    def lrem(self, key: str, value: str) -> int:
        with _translate_errors("lrem"):
            return int(self._client.lrem(key, 0, value))

    def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        with _translate_errors("delete"):
            return int(self._client.delete(*keys))

    def exists(self, key: str) -> bool:
        with _translate_errors("exists"):
            return bool(self._client.exists(key))

    def pttl(self, key: str) -> int:
        with _translate_errors("pttl"):
            return int(self._client.pttl(key))

    def pexpire(self, key: str, ttl_ms: int) -> bool:
        with _translate_errors("pexpire"):
            return bool(self._client.pexpire(key, ttl_ms))

    def scan(self, prefix: str) -> Iterator[str]:
        with _translate_errors("scan"):
            # scan_iter is lazy; consume it under the guard.
            keys = list(self._client.scan_iter(match=f"{prefix}*", count=500))
        return iter(keys)

    def ping(self) -> bool:
        with _translate_errors("ping"):
            return bool(self._client.ping())

    def close(self) -> None:
        self._client.close()
