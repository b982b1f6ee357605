# backend/slotlock/services/slots/config.py
"""
Slot lock configuration and slot identity helpers.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime, time
from functools import lru_cache

from ...config import settings

_TIME_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")

SLOT_KEY_PREFIX = "slot"
AVAILABILITY_KEY_PREFIX = "availability"


@dataclass(frozen=True)
class LockConfig:
    """
    Configuration for the slot lock subsystem.

    Attributes:
        lock_duration_minutes: How long a LOCKED hold lives before it expires
        sweep_interval_seconds: Period of the expiry sweeper
        availability_ttl_seconds: TTL of cached availability per seller/date
        default_meeting_duration: Used when a seller has no meeting_duration
    """
    lock_duration_minutes: int = 5
    sweep_interval_seconds: int = 60
    availability_ttl_seconds: int = 60
    default_meeting_duration: int = 30

    def __post_init__(self):
        if self.lock_duration_minutes < 1:
            raise ValueError(
                f"lock_duration_minutes must be positive, got {self.lock_duration_minutes}"
            )

    @property
    def lock_ttl_seconds(self) -> int:
        return self.lock_duration_minutes * 60


@lru_cache
def get_lock_config() -> LockConfig:
    """Lock configuration from environment settings (singleton)."""
    return LockConfig(
        lock_duration_minutes=settings.slot_lock_duration_minutes,
        sweep_interval_seconds=settings.slot_sweep_interval_seconds,
        availability_ttl_seconds=settings.cache_ttl_general,
        default_meeting_duration=settings.default_meeting_duration,
    )


def is_valid_time_str(value: str) -> bool:
    return bool(value) and _TIME_RE.match(value) is not None


def time_str_to_minutes(value: str) -> int:
    """Convert "HH:MM" to minutes since midnight."""
    match = _TIME_RE.match(value or "")
    if not match:
        raise ValueError(f"Invalid time {value!r}, expected HH:MM")
    return int(match.group(1)) * 60 + int(match.group(2))


def minutes_to_time_str(minutes: int) -> str:
    """Convert minutes since midnight to "HH:MM"."""
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def combine(dt: date, time_str: str) -> datetime:
    """Local datetime for a calendar day and an "HH:MM" time-of-day."""
    minutes = time_str_to_minutes(time_str)
    return datetime.combine(dt, time(minutes // 60, minutes % 60))


def slot_key(seller_id: str, dt: date, start_time: str) -> str:
    """Cache key of a slot identity: slot:{seller_id}:{date}:{start_time}."""
    return f"{SLOT_KEY_PREFIX}:{seller_id}:{dt.isoformat()}:{start_time}"


def availability_key(seller_id: str, dt: date) -> str:
    return f"{AVAILABILITY_KEY_PREFIX}:{seller_id}:{dt.isoformat()}"
