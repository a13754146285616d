"""
tests/test_store.py — Counter store primitives (in-process backend)
===================================================================

Covers: TTL-on-create increments, lazy expiry against an injected clock,
bounded lists, lrem/delete/scan, and the store URL factory.
"""
import pytest

from gatekeeper.store.base import KEY_MISSING, NO_EXPIRY
from gatekeeper.store.factory import create_store
from gatekeeper.store.memory import MemoryCounterStore
from gatekeeper.store.redis_store import RedisCounterStore


@pytest.fixture
def store(clock):
    return MemoryCounterStore(clock=clock)


class TestIncrement:
    def test_first_increment_sets_ttl(self, store):
        assert store.incr("k", ttl_ms=1000) == 1
        assert store.pttl("k") == 1000

    def test_later_increments_keep_original_expiry(self, store, clock):
        store.incr("k", ttl_ms=1000)
        clock.advance(0.4)
        assert store.incr("k", ttl_ms=1000) == 2
        assert store.pttl("k") == 600

    def test_counter_restarts_after_expiry(self, store, clock):
        store.incr("k", 3, ttl_ms=1000)
        clock.advance(1.0)
        assert store.get("k") is None
        assert store.incr("k", ttl_ms=1000) == 1
        assert store.pttl("k") == 1000

    def test_increment_without_ttl_never_expires(self, store, clock):
        store.incr("k")
        clock.advance(10_000)
        assert store.get("k") == "1"
        assert store.pttl("k") == NO_EXPIRY

    def test_pttl_missing_key(self, store):
        assert store.pttl("nope") == KEY_MISSING


class TestLists:
    def test_lpush_newest_first_and_trim(self, store):
        for i in range(5):
            store.lpush("l", str(i), max_len=3)
        assert store.lrange("l", 0, -1) == ["4", "3", "2"]

    def test_lrange_inclusive_stop(self, store):
        for i in range(5):
            store.lpush("l", str(i))
        assert store.lrange("l", 0, 1) == ["4", "3"]

    def test_lrem_removes_every_occurrence(self, store):
        store.lpush("l", "a")
        store.lpush("l", "b")
        store.lpush("l", "a")
        assert store.lrem("l", "a") == 2
        assert store.lrange("l", 0, -1) == ["b"]

    def test_lrem_last_item_deletes_key(self, store):
        store.lpush("l", "a")
        store.lrem("l", "a")
        assert store.exists("l") is False


class TestKeys:
    def test_set_with_ttl(self, store, clock):
        store.set("s", "v", ttl_ms=500)
        clock.advance(0.5)
        assert store.exists("s") is False

    def test_pexpire_and_persist(self, store):
        store.set("s", "v")
        assert store.pexpire("s", 2000) is True
        assert store.pttl("s") == 2000
        assert store.persist("s") is True
        assert store.pttl("s") == NO_EXPIRY

    def test_delete_counts_live_keys(self, store):
        store.set("a", "1")
        store.set("b", "1")
        assert store.delete("a", "b", "c") == 2

    def test_scan_by_prefix_skips_expired(self, store, clock):
        store.set("rate_limit:a", "1", ttl_ms=100)
        store.set("rate_limit:b", "1")
        store.set("other", "1")
        clock.advance(1)
        assert sorted(store.scan("rate_limit:")) == ["rate_limit:b"]


class TestFactory:
    def test_memory_url(self):
        assert isinstance(create_store("memory://"), MemoryCounterStore)

    def test_redis_url(self):
        # The client connects lazily, so no server is needed here.
        store = create_store("redis://localhost:6379/0", timeout_seconds=0.1)
        assert isinstance(store, RedisCounterStore)
        store.close()

    def test_unknown_scheme(self):
        with pytest.raises(ValueError):
            create_store("memcached://localhost")
