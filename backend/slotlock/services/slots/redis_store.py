# backend/slotlock/services/slots/redis_store.py
"""
Redis backend of the ephemeral cache.

Key format is the caller's (slot:{seller_id}:{date}:{HH:MM},
availability:{seller_id}:{date}); values are stored as JSON strings
with a millisecond TTL (PX).

add()             → SET key value NX PX ttl   (atomic check-and-set)
delete_if_match() → Lua GET + cjson.decode + DEL (atomic compare-and-delete)
delete_pattern()  → SCAN MATCH + DEL in batches (never KEYS on a live server)

Expiry notifications need `notify-keyspace-events Ex` on the server;
without it keys still expire, only the listeners stay silent.
"""

import json
import logging
import math
from typing import Any

from redis import Redis

from .cache import EphemeralCache

logger = logging.getLogger(__name__)

DELETE_BATCH = 500

_DELETE_IF_MATCH_LUA = """
local raw = redis.call('GET', KEYS[1])
if not raw then
  return 0
end
local ok, doc = pcall(cjson.decode, raw)
if ok and type(doc) == 'table' and doc[ARGV[1]] == ARGV[2] then
  return redis.call('DEL', KEYS[1])
end
return 0
"""


def _decode(raw) -> str:
    return raw.decode() if isinstance(raw, bytes) else raw


class RedisCache(EphemeralCache):
    """Redis wrapper implementing the EphemeralCache contract."""

    def __init__(
        self,
        redis: Redis,
        default_ttl: float = 60,
        name: str = "cache",
        notify_prefix: str = "",
    ):
        super().__init__(default_ttl=default_ttl, name=name)
        self.redis = redis
        self.notify_prefix = notify_prefix
        self._delete_if_match = redis.register_script(_DELETE_IF_MATCH_LUA)
        self._pubsub = None
        self._pubsub_thread = None

    def _px(self, ttl: float | None) -> int | None:
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            return None
        return max(1, int(ttl * 1000))

    # ── Contract ─────────────────────────────────────────────────────────

    def get(self, key: str) -> Any | None:
        raw = self.redis.get(key)
        if raw is None:
            return None
        return json.loads(_decode(raw))

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        self.redis.set(key, json.dumps(value), px=self._px(ttl))
        logger.debug("%s SET: %s", self.name, key)

    def add(self, key: str, value: Any, ttl: float | None = None) -> bool:
        return bool(self.redis.set(key, json.dumps(value), nx=True, px=self._px(ttl)))

    def delete(self, key: str) -> bool:
        return self.redis.delete(key) > 0

    def delete_if_match(self, key: str, field: str, expected: str) -> bool:
        return bool(self._delete_if_match(keys=[key], args=[field, expected]))

    def delete_pattern(self, pattern: str) -> int:
        deleted = 0
        batch: list = []
        for key in self.redis.scan_iter(match=pattern, count=DELETE_BATCH):
            batch.append(key)
            if len(batch) >= DELETE_BATCH:
                deleted += self.redis.delete(*batch)
                batch = []
        if batch:
            deleted += self.redis.delete(*batch)
        if deleted:
            logger.info("%s invalidated %d keys matching %s", self.name, deleted, pattern)
        return deleted

    def remaining_ttl(self, key: str) -> float | None:
        pttl = self.redis.pttl(key)
        if pttl == -2:
            return None
        if pttl == -1:
            return math.inf
        return pttl / 1000

    def ping(self) -> bool:
        return bool(self.redis.ping())

    # ── Expiry notifications ─────────────────────────────────────────────

    def _handle_expired(self, message: dict) -> None:
        key = _decode(message.get("data"))
        if not isinstance(key, str) or not key.startswith(self.notify_prefix):
            return
        # The value is gone by the time Redis publishes the event
        self._notify_expired(key, None)

    def start(self) -> None:
        if not self._listeners or self._pubsub_thread is not None:
            return
        try:
            self._pubsub = self.redis.pubsub(ignore_subscribe_messages=True)
            self._pubsub.psubscribe(**{"__keyevent@*__:expired": self._handle_expired})
            self._pubsub_thread = self._pubsub.run_in_thread(sleep_time=1.0, daemon=True)
        except Exception:
            logger.exception("%s expiry subscription unavailable", self.name)
            self._pubsub = None
            self._pubsub_thread = None

    def close(self) -> None:
        if self._pubsub_thread is not None:
            self._pubsub_thread.stop()
            self._pubsub_thread = None
        if self._pubsub is not None:
            self._pubsub.close()
            self._pubsub = None
