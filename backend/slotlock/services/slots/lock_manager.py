# backend/slotlock/services/slots/lock_manager.py
"""
Slot lock manager.

A lock is one buyer's short hold on a slot identity
(seller_id × date × start_time) before the booking is confirmed.

Two copies of every lock exist:
- cache projection under slot:{seller_id}:{date}:{HH:MM}, TTL = lock duration.
  Acquire goes through EphemeralCache.add (atomic set-if-absent), so of N
  concurrent acquires on one identity exactly one wins.
- durable row in slot_locks (authoritative for cancel/confirm/sweeper).
  A partial unique index allows one LOCKED/CONFIRMED row per identity.

State machine:
    LOCKED --confirm--> CONFIRMED
    LOCKED --cancel|expire--> CANCELLED
CONFIRMED and CANCELLED are terminal; a CANCELLED identity can be locked again.
"""

import logging
import uuid
from datetime import date, datetime, timedelta
from typing import Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from ...models import Appointments, LockStatus, SlotLocks, UserRole, Users
from .cache import EphemeralCache
from .config import LockConfig, combine, get_lock_config, slot_key, time_str_to_minutes
from .errors import AlreadyBooked, AlreadyLocked, Forbidden, InvalidState, NotFound, SellerNotFound
from .results import SlotLockInfo, SlotLockState

logger = logging.getLogger(__name__)


def _validate_window(start_time: str, end_time: str) -> None:
    if time_str_to_minutes(end_time) <= time_str_to_minutes(start_time):
        raise ValueError(f"end_time {end_time} must be after start_time {start_time}")


def transition_lock(
    db: Session,
    lock_id: str,
    new_status: LockStatus,
    now: datetime,
    **values,
) -> bool:
    """
    Move a LOCKED row to new_status.

    The update is conditioned on the row still being LOCKED, so concurrent
    cancel/confirm/expire calls never both succeed. Returns True if the row
    was transitioned. Does not commit.
    """
    updated = (
        db.query(SlotLocks)
        .filter(SlotLocks.id == lock_id, SlotLocks.status == LockStatus.LOCKED)
        .update({"status": new_status, "updated_at": now, **values}, synchronize_session=False)
    )
    return updated == 1


def find_active_lock(db: Session, seller_id: str, dt: date, start_time: str) -> SlotLocks | None:
    """Durable LOCKED/CONFIRMED row for a slot identity, if any."""
    return (
        db.query(SlotLocks)
        .filter(
            SlotLocks.seller_id == seller_id,
            SlotLocks.date == dt,
            SlotLocks.start_time == start_time,
            SlotLocks.status != LockStatus.CANCELLED,
        )
        .order_by(SlotLocks.locked_at.desc())
        .first()
    )


class SlotLockManager:
    """Acquire, inspect, cancel and expire slot locks."""

    def __init__(
        self,
        session_factory: sessionmaker,
        cache: EphemeralCache,
        config: LockConfig | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.session_factory = session_factory
        self.cache = cache
        self.config = config or get_lock_config()
        self.clock = clock

    # ── Acquire ──────────────────────────────────────────────────────────

    def acquire(
        self,
        seller_id: str,
        dt: date,
        start_time: str,
        end_time: str,
        buyer_id: str,
    ) -> SlotLockInfo:
        """
        Lock a slot for buyer_id.

        Raises:
            AlreadyLocked: a live hold exists for the identity
            SellerNotFound: seller_id is not a seller
            AlreadyBooked: an appointment already starts at this slot
        """
        _validate_window(start_time, end_time)
        key = slot_key(seller_id, dt, start_time)

        existing = self.cache.get(key)
        if existing is not None:
            raise AlreadyLocked(status=existing.get("status"), locked_by=existing.get("buyer_id"))

        now = self.clock()
        with self.session_factory() as db:
            seller = db.get(Users, seller_id)
            if seller is None or seller.role != UserRole.SELLER:
                raise SellerNotFound()

            booked = (
                db.query(Appointments.id)
                .filter(
                    Appointments.seller_id == seller_id,
                    Appointments.start == combine(dt, start_time),
                )
                .first()
            )
            if booked is not None:
                raise AlreadyBooked()

            info = SlotLockInfo(
                lock_id=uuid.uuid4().hex,
                key=key,
                seller_id=seller_id,
                buyer_id=buyer_id,
                date=dt,
                start_time=start_time,
                end_time=end_time,
                status=LockStatus.LOCKED,
                locked_at=now,
                expires_at=now + timedelta(minutes=self.config.lock_duration_minutes),
            )

            if not self.cache.add(key, info.to_cache(), ttl=self.config.lock_ttl_seconds):
                raise AlreadyLocked()

            try:
                self._expire_stale_identity(db, seller_id, dt, start_time, now)
                db.add(SlotLocks(
                    id=info.lock_id,
                    seller_id=seller_id,
                    buyer_id=buyer_id,
                    date=dt,
                    start_time=start_time,
                    end_time=end_time,
                    status=LockStatus.LOCKED,
                    locked_at=info.locked_at,
                    expires_at=info.expires_at,
                ))
                db.commit()
            except IntegrityError:
                db.rollback()
                self.cache.delete_if_match(key, "lock_id", info.lock_id)
                active = find_active_lock(db, seller_id, dt, start_time)
                if active is not None and active.status == LockStatus.CONFIRMED:
                    raise AlreadyBooked()
                raise AlreadyLocked()
            except Exception:
                db.rollback()
                self.cache.delete_if_match(key, "lock_id", info.lock_id)
                raise

        logger.info(
            f"Slot locked: {key} for buyer {buyer_id} "
            f"for {self.config.lock_duration_minutes} minutes"
        )
        return info

    def _expire_stale_identity(
        self, db: Session, seller_id: str, dt: date, start_time: str, now: datetime
    ) -> None:
        """Cancel an overdue LOCKED row the sweeper has not reached yet."""
        (
            db.query(SlotLocks)
            .filter(
                SlotLocks.seller_id == seller_id,
                SlotLocks.date == dt,
                SlotLocks.start_time == start_time,
                SlotLocks.status == LockStatus.LOCKED,
                SlotLocks.expires_at <= now,
            )
            .update(
                {"status": LockStatus.CANCELLED, "updated_at": now},
                synchronize_session=False,
            )
        )

    # ── Cancel ───────────────────────────────────────────────────────────

    def cancel(self, lock_id: str, buyer_id: str) -> SlotLockInfo:
        """
        Release a hold by lock id.

        Raises:
            NotFound: no such lock
            Forbidden: buyer_id does not own the lock
            InvalidState: lock is CONFIRMED or already CANCELLED
        """
        now = self.clock()
        with self.session_factory() as db:
            lock = db.get(SlotLocks, lock_id)
            if lock is None:
                raise NotFound()
            if lock.buyer_id != buyer_id:
                raise Forbidden("Not authorized to cancel this lock")
            if lock.status == LockStatus.CONFIRMED:
                raise InvalidState(
                    "Cannot cancel a confirmed booking. Please cancel the appointment instead."
                )
            if lock.status == LockStatus.CANCELLED:
                raise InvalidState("Lock is already cancelled")

            if not transition_lock(db, lock_id, LockStatus.CANCELLED, now):
                db.rollback()
                raise InvalidState("Lock is no longer active")
            db.commit()
            db.refresh(lock)
            info = SlotLockInfo.from_row(lock)

        self.cache.delete_if_match(info.key, "lock_id", lock_id)
        logger.info(f"Slot lock cancelled: {info.key} by buyer {buyer_id}")
        return info

    def unlock(self, seller_id: str, dt: date, start_time: str, buyer_id: str) -> SlotLockInfo:
        """Cancel addressed by slot coordinates instead of lock id."""
        with self.session_factory() as db:
            active = find_active_lock(db, seller_id, dt, start_time)
            if active is None:
                raise NotFound("No lock found for this slot")
            lock_id = active.id
        return self.cancel(lock_id, buyer_id)

    # ── Expire ───────────────────────────────────────────────────────────

    def expire(self, lock_id: str) -> bool:
        """
        Force a LOCKED lock to CANCELLED.

        Idempotent: returns False for unknown or already terminal locks.
        """
        now = self.clock()
        with self.session_factory() as db:
            lock = db.get(SlotLocks, lock_id)
            if lock is None:
                return False
            key = slot_key(lock.seller_id, lock.date, lock.start_time)
            expired = transition_lock(db, lock_id, LockStatus.CANCELLED, now)
            db.commit()

        if expired:
            self.cache.delete_if_match(key, "lock_id", lock_id)
            logger.info(f"Slot lock expired: {key}")
        return expired

    # ── Status ───────────────────────────────────────────────────────────

    def status(self, seller_id: str, dt: date, start_time: str) -> SlotLockState:
        """
        Lock state of a slot identity.

        The cache answers for live holds; the durable store answers for
        confirmed bookings and for holds whose cache entry was lost.
        """
        cached = self.cached_state(seller_id, dt, start_time)
        if cached.is_locked:
            return cached

        now = self.clock()
        with self.session_factory() as db:
            active = find_active_lock(db, seller_id, dt, start_time)
            if active is None:
                return SlotLockState(is_locked=False)
            if active.status == LockStatus.LOCKED and active.expires_at <= now:
                return SlotLockState(is_locked=False)
            return SlotLockState(
                is_locked=True,
                status=LockStatus(active.status),
                owner_id=active.buyer_id,
                lock_id=active.id,
                expires_at=active.expires_at,
            )

    def cached_state(self, seller_id: str, dt: date, start_time: str) -> SlotLockState:
        """Lock state from the cache projection only (no database round-trip)."""
        entry = self.cache.get(slot_key(seller_id, dt, start_time))
        if entry is None:
            return SlotLockState(is_locked=False)
        return SlotLockState(
            is_locked=True,
            status=LockStatus(entry["status"]),
            owner_id=entry.get("buyer_id"),
            lock_id=entry.get("lock_id"),
            expires_at=datetime.fromisoformat(entry["expires_at"]),
        )
