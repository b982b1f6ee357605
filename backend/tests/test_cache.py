import json
import math
from unittest.mock import MagicMock

import pytest

from slotlock.services.slots import MemoryCache, RedisCache, build_caches


@pytest.fixture
def cache(clock):
    return MemoryCache(default_ttl=60, clock=clock.time)


class TestMemoryCache:
    def test_set_get_returns_copies(self, cache):
        value = {"lock_id": "l1", "tags": ["a"]}
        cache.set("k", value)
        value["tags"].append("b")

        got = cache.get("k")
        assert got == {"lock_id": "l1", "tags": ["a"]}
        got["lock_id"] = "mutated"
        assert cache.get("k")["lock_id"] == "l1"

    def test_entry_expires_after_ttl(self, cache, clock):
        cache.set("k", 1, ttl=10)
        clock.advance(seconds=9)
        assert cache.get("k") == 1
        clock.advance(seconds=1)
        assert cache.get("k") is None

    def test_zero_ttl_never_expires(self, cache, clock):
        cache.set("k", 1, ttl=0)
        clock.advance(days=30)
        assert cache.get("k") == 1
        assert cache.remaining_ttl("k") == math.inf

    def test_add_only_when_absent(self, cache, clock):
        assert cache.add("k", {"owner": "a"}, ttl=5) is True
        assert cache.add("k", {"owner": "b"}, ttl=5) is False
        assert cache.get("k") == {"owner": "a"}

        clock.advance(seconds=5)
        assert cache.add("k", {"owner": "b"}, ttl=5) is True
        assert cache.get("k") == {"owner": "b"}

    def test_remaining_ttl(self, cache, clock):
        assert cache.remaining_ttl("missing") is None
        cache.set("k", 1, ttl=30)
        clock.advance(seconds=12)
        assert cache.remaining_ttl("k") == pytest.approx(18)

    def test_delete_if_match(self, cache):
        cache.set("k", {"lock_id": "l1"})
        assert cache.delete_if_match("k", "lock_id", "other") is False
        assert cache.get("k") is not None
        assert cache.delete_if_match("k", "lock_id", "l1") is True
        assert cache.get("k") is None

    def test_delete_pattern(self, cache):
        cache.set("availability:s1:2030-01-07", [])
        cache.set("availability:s1:2030-01-08", [])
        cache.set("availability:s2:2030-01-07", [])

        assert cache.delete_pattern("availability:s1:*") == 2
        assert cache.keys() == ["availability:s2:2030-01-07"]

    def test_reap_notifies_listeners(self, cache, clock):
        seen = []
        cache.on_expired(lambda key, value: seen.append((key, value)))
        cache.set("slot:a", {"lock_id": "l1"}, ttl=5)
        cache.set("slot:b", {"lock_id": "l2"}, ttl=50)

        clock.advance(seconds=6)
        assert cache.reap() == 1
        assert seen == [("slot:a", {"lock_id": "l1"})]

    def test_listener_error_is_contained(self, cache, clock):
        def broken(key, value):
            raise RuntimeError("boom")

        cache.on_expired(broken)
        cache.set("k", 1, ttl=1)
        clock.advance(seconds=2)
        assert cache.get("k") is None

    def test_get_or_set_caches_fetch(self, cache):
        fetch = MagicMock(return_value=[1, 2])
        assert cache.get_or_set("k", fetch) == [1, 2]
        assert cache.get_or_set("k", fetch) == [1, 2]
        fetch.assert_called_once()

    def test_get_or_set_falls_back_when_cache_fails(self, cache):
        cache.get = MagicMock(side_effect=ConnectionError("down"))
        assert cache.get_or_set("k", lambda: "fresh") == "fresh"

    def test_reaper_thread_start_close(self, clock):
        cache = MemoryCache(default_ttl=1, check_period=0.01, clock=clock.time)
        cache.start()
        cache.close()
        assert cache._reaper is None


class TestRedisCache:
    @pytest.fixture
    def redis(self):
        redis = MagicMock()
        redis.register_script.return_value = MagicMock(return_value=1)
        return redis

    def test_add_uses_set_nx_px(self, redis):
        redis.set.return_value = True
        cache = RedisCache(redis, default_ttl=300)

        assert cache.add("slot:s1:2030-01-07:10:00", {"lock_id": "l1"}) is True
        redis.set.assert_called_once_with(
            "slot:s1:2030-01-07:10:00", json.dumps({"lock_id": "l1"}), nx=True, px=300000
        )

    def test_add_returns_false_when_key_exists(self, redis):
        redis.set.return_value = None
        assert RedisCache(redis).add("k", 1, ttl=5) is False

    def test_get_decodes_json(self, redis):
        redis.get.return_value = json.dumps({"status": "LOCKED"})
        assert RedisCache(redis).get("k") == {"status": "LOCKED"}

        redis.get.return_value = None
        assert RedisCache(redis).get("k") is None

    def test_set_without_expiry(self, redis):
        RedisCache(redis).set("k", 1, ttl=0)
        redis.set.assert_called_once_with("k", "1", px=None)

    def test_delete_if_match_runs_script(self, redis):
        cache = RedisCache(redis)
        assert cache.delete_if_match("k", "lock_id", "l1") is True
        redis.register_script.return_value.assert_called_once_with(keys=["k"], args=["lock_id", "l1"])

    def test_delete_pattern_scans_in_batches(self, redis):
        keys = [f"availability:s1:{i}" for i in range(501)]
        redis.scan_iter.return_value = iter(keys)
        redis.delete.side_effect = lambda *batch: len(batch)

        assert RedisCache(redis).delete_pattern("availability:s1:*") == 501
        assert redis.delete.call_count == 2

    @pytest.mark.parametrize("pttl,expected", [(-2, None), (-1, math.inf), (1500, 1.5)])
    def test_remaining_ttl(self, redis, pttl, expected):
        redis.pttl.return_value = pttl
        assert RedisCache(redis).remaining_ttl("k") == expected

    def test_expired_event_filtered_by_prefix(self, redis):
        cache = RedisCache(redis, notify_prefix="slot:")
        seen = []
        cache.on_expired(lambda key, value: seen.append(key))

        cache._handle_expired({"data": "availability:s1:2030-01-07"})
        cache._handle_expired({"data": b"slot:s1:2030-01-07:10:00"})
        assert seen == ["slot:s1:2030-01-07:10:00"]


def test_build_caches_picks_backend():
    memory = build_caches()
    assert isinstance(memory.general, MemoryCache)
    assert isinstance(memory.slots, MemoryCache)

    redis = MagicMock()
    shared = build_caches(redis, slot_ttl=300)
    assert isinstance(shared.slots, RedisCache)
    assert shared.slots.notify_prefix == "slot:"
