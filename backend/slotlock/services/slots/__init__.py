# backend/slotlock/services/slots/__init__.py
"""
Slot lock module.

Lock manager: short exclusive holds on seller × date × start_time
Committer: hold → appointment, direct booking, appointment cancellation
Sweeper: durable reconciliation of expired holds
Availability: bookable slots merged with live lock state
"""

from .config import LockConfig, get_lock_config, slot_key, availability_key
from .cache import EphemeralCache, MemoryCache, CacheRegistry, build_caches
from .redis_store import RedisCache
from .errors import ErrorKind, SlotLockError
from .results import SlotLockInfo, SlotLockState, AppointmentInfo, ConfirmResult
from .lock_manager import SlotLockManager
from .committer import AppointmentCommitter
from .sweeper import ExpirySweeper
from .invalidator import invalidate_seller_availability
from .availability import get_available_slots, resolve_availability

__all__ = [
    "LockConfig",
    "get_lock_config",
    "slot_key",
    "availability_key",
    "EphemeralCache",
    "MemoryCache",
    "CacheRegistry",
    "build_caches",
    "RedisCache",
    "ErrorKind",
    "SlotLockError",
    "SlotLockInfo",
    "SlotLockState",
    "AppointmentInfo",
    "ConfirmResult",
    "SlotLockManager",
    "AppointmentCommitter",
    "ExpirySweeper",
    "invalidate_seller_availability",
    "get_available_slots",
    "resolve_availability",
]
