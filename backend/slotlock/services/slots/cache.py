# backend/slotlock/services/slots/cache.py
"""
Ephemeral key-value cache with per-key TTL.

Two backends share one contract:
- MemoryCache: in-process dict guarded by a lock, with a reaper thread that
  drops expired keys and notifies expiry listeners. Single-process only.
- RedisCache (redis_store.py): shared store for multi-process deployments.

Values are JSON-like documents. Callers always receive their own copy,
mutating a returned value never changes the stored entry.

`add` is the atomic check-and-set the slot locks rely on: it stores the
value only if the key is absent (or expired) and reports whether it did.
"""

import copy
import fnmatch
import logging
import math
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable

logger = logging.getLogger(__name__)

ExpiryListener = Callable[[str, Any], None]


class EphemeralCache(ABC):
    """TTL cache contract."""

    def __init__(self, default_ttl: float = 60, name: str = "cache"):
        self.default_ttl = default_ttl
        self.name = name
        self._listeners: list[ExpiryListener] = []

    # ── Contract ─────────────────────────────────────────────────────────

    @abstractmethod
    def get(self, key: str) -> Any | None:
        """Value for key, or None when absent or expired."""

    @abstractmethod
    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Store value; ttl=None uses default_ttl, ttl=0 never expires."""

    @abstractmethod
    def add(self, key: str, value: Any, ttl: float | None = None) -> bool:
        """Atomically store value only if key is absent. True if stored."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove key. True if something was removed."""

    @abstractmethod
    def delete_if_match(self, key: str, field: str, expected: str) -> bool:
        """Atomically remove key only if value[field] == expected."""

    @abstractmethod
    def delete_pattern(self, pattern: str) -> int:
        """Remove all keys matching a glob pattern (e.g. 'availability:s1:*')."""

    @abstractmethod
    def remaining_ttl(self, key: str) -> float | None:
        """
        Seconds until key expires.

        None if the key is absent, math.inf if it never expires.
        """

    def start(self) -> None:
        """Start background machinery (reaper / expiry subscription)."""

    def close(self) -> None:
        """Stop background machinery."""

    def ping(self) -> bool:
        return True

    # ── Helpers ──────────────────────────────────────────────────────────

    def on_expired(self, listener: ExpiryListener) -> None:
        """Register a callback(key, value) fired when an entry expires."""
        self._listeners.append(listener)

    def _notify_expired(self, key: str, value: Any) -> None:
        logger.info("%s EXPIRED: %s", self.name, key)
        for listener in self._listeners:
            try:
                listener(key, value)
            except Exception:
                logger.exception("%s expiry listener failed for %s", self.name, key)

    def get_or_set(self, key: str, fetch: Callable[[], Any], ttl: float | None = None) -> Any:
        """
        Cached fetch: return the cached value or call fetch() and cache it.

        Cache failures fall back to fetch(); fetch errors propagate.
        """
        try:
            cached = self.get(key)
        except Exception:
            logger.exception("%s get failed for %s", self.name, key)
            return fetch()

        if cached is not None:
            logger.debug("%s HIT: %s", self.name, key)
            return cached

        logger.debug("%s MISS: %s", self.name, key)
        value = fetch()
        try:
            self.set(key, value, ttl)
        except Exception:
            logger.exception("%s set failed for %s", self.name, key)
        return value


class MemoryCache(EphemeralCache):
    """In-process TTL cache with a timer-driven reaper."""

    def __init__(
        self,
        default_ttl: float = 60,
        check_period: float = 60,
        clock: Callable[[], float] = time.monotonic,
        name: str = "cache",
    ):
        super().__init__(default_ttl=default_ttl, name=name)
        self.check_period = check_period
        self._clock = clock
        self._data: dict[str, tuple[Any, float | None]] = {}
        self._lock = threading.RLock()
        self._stop = threading.Event()
        self._reaper: threading.Thread | None = None

    def _expires_at(self, ttl: float | None) -> float | None:
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            return None
        return self._clock() + ttl

    def _is_expired(self, expires_at: float | None, now: float) -> bool:
        return expires_at is not None and expires_at <= now

    def _live(self, key: str, expired: list) -> tuple[Any, float | None] | None:
        """Entry for key if alive; expired entries are dropped into `expired`."""
        entry = self._data.get(key)
        if entry is None:
            return None
        if self._is_expired(entry[1], self._clock()):
            del self._data[key]
            expired.append((key, entry[0]))
            return None
        return entry

    def _flush_expired(self, expired: list) -> None:
        for key, value in expired:
            self._notify_expired(key, value)

    # ── Contract ─────────────────────────────────────────────────────────

    def get(self, key: str) -> Any | None:
        expired: list = []
        with self._lock:
            entry = self._live(key, expired)
            value = copy.deepcopy(entry[0]) if entry else None
        self._flush_expired(expired)
        return value

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        with self._lock:
            self._data[key] = (copy.deepcopy(value), self._expires_at(ttl))
        logger.debug("%s SET: %s", self.name, key)

    def add(self, key: str, value: Any, ttl: float | None = None) -> bool:
        expired: list = []
        with self._lock:
            if self._live(key, expired) is not None:
                stored = False
            else:
                self._data[key] = (copy.deepcopy(value), self._expires_at(ttl))
                stored = True
        self._flush_expired(expired)
        return stored

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def delete_if_match(self, key: str, field: str, expected: str) -> bool:
        expired: list = []
        with self._lock:
            entry = self._live(key, expired)
            matched = (
                entry is not None
                and isinstance(entry[0], dict)
                and entry[0].get(field) == expected
            )
            if matched:
                del self._data[key]
        self._flush_expired(expired)
        return matched

    def delete_pattern(self, pattern: str) -> int:
        with self._lock:
            keys = [k for k in self._data if fnmatch.fnmatchcase(k, pattern)]
            for k in keys:
                del self._data[k]
        if keys:
            logger.info("%s invalidated %d keys matching %s", self.name, len(keys), pattern)
        return len(keys)

    def remaining_ttl(self, key: str) -> float | None:
        expired: list = []
        with self._lock:
            entry = self._live(key, expired)
            if entry is None:
                remaining = None
            elif entry[1] is None:
                remaining = math.inf
            else:
                remaining = max(0.0, entry[1] - self._clock())
        self._flush_expired(expired)
        return remaining

    def keys(self) -> list[str]:
        with self._lock:
            now = self._clock()
            return [k for k, (_, exp) in self._data.items() if not self._is_expired(exp, now)]

    # ── Reaper ───────────────────────────────────────────────────────────

    def reap(self) -> int:
        """Drop every expired entry and notify listeners. Returns the count."""
        with self._lock:
            now = self._clock()
            expired = [
                (k, value)
                for k, (value, exp) in self._data.items()
                if self._is_expired(exp, now)
            ]
            for k, _ in expired:
                del self._data[k]
        self._flush_expired(expired)
        return len(expired)

    def _reaper_loop(self) -> None:
        while not self._stop.wait(self.check_period):
            try:
                self.reap()
            except Exception:
                logger.exception("%s reaper error", self.name)

    def start(self) -> None:
        if self._reaper is not None and self._reaper.is_alive():
            return
        self._stop.clear()
        self._reaper = threading.Thread(
            target=self._reaper_loop, name=f"{self.name}-reaper", daemon=True
        )
        self._reaper.start()

    def close(self) -> None:
        self._stop.set()
        if self._reaper is not None:
            self._reaper.join(timeout=self.check_period + 1)
            self._reaper = None

    def clear(self) -> None:
        with self._lock:
            self._data.clear()


@dataclass
class CacheRegistry:
    """Cache categories used by the booking core, started/stopped together."""
    general: EphemeralCache
    slots: EphemeralCache

    def start(self) -> None:
        self.general.start()
        self.slots.start()

    def close(self) -> None:
        self.general.close()
        self.slots.close()


def build_caches(
    redis=None,
    general_ttl: float = 60,
    slot_ttl: float = 300,
    check_period: float = 60,
) -> CacheRegistry:
    """Redis-backed caches when a client is given, in-process otherwise."""
    if redis is not None:
        from .redis_store import RedisCache

        return CacheRegistry(
            general=RedisCache(redis, default_ttl=general_ttl, name="cache"),
            slots=RedisCache(
                redis, default_ttl=slot_ttl, name="slot-cache", notify_prefix="slot:"
            ),
        )

    return CacheRegistry(
        general=MemoryCache(default_ttl=general_ttl, check_period=check_period, name="cache"),
        slots=MemoryCache(default_ttl=slot_ttl, check_period=check_period, name="slot-cache"),
    )
