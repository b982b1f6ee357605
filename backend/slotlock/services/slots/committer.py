# backend/slotlock/services/slots/committer.py
"""
Appointment committer.

Turns a valid LOCKED hold into a durable appointment:
1. load lock → NotFound / Forbidden / InvalidState (status != LOCKED)
2. expires_at <= now → lock is cancelled durably, Expired raised
3. one transaction: lock LOCKED→CONFIRMED + appointment insert.
   The (seller_id, start) unique constraint is the last word on double
   booking; a violation rolls the whole transaction back (lock stays
   LOCKED) and surfaces as Conflict.
4. after commit: cache projection dropped, availability invalidated,
   notification job queued. None of these can undo the booking.

Also hosts the two other paths that create or remove appointments:
direct booking (no prior hold) and appointment cancellation, which
releases the CONFIRMED lock so the slot can be locked again.
"""

import logging
from datetime import datetime
from typing import Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from ...models import Appointments, LockStatus, SlotLocks, UserRole, Users
from ..events import JobQueue, enqueue_job
from .cache import EphemeralCache
from .config import LockConfig, combine, get_lock_config, slot_key
from .errors import AlreadyBooked, AlreadyLocked, Conflict, Expired, Forbidden, InvalidState, NotFound, SellerNotFound
from .invalidator import invalidate_seller_availability
from .lock_manager import find_active_lock, transition_lock
from .results import AppointmentInfo, ConfirmResult, SlotLockInfo

logger = logging.getLogger(__name__)

JOB_APPOINTMENT_CONFIRMED = "appointment.confirmed"
JOB_APPOINTMENT_CANCELLED = "appointment.cancelled"


class AppointmentCommitter:
    """Confirm holds, book directly, cancel appointments."""

    def __init__(
        self,
        session_factory: sessionmaker,
        slot_cache: EphemeralCache,
        general_cache: EphemeralCache | None = None,
        jobs: JobQueue | None = None,
        config: LockConfig | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.session_factory = session_factory
        self.slot_cache = slot_cache
        self.general_cache = general_cache
        self.jobs = jobs
        self.config = config or get_lock_config()
        self.clock = clock

    # ── Confirm ──────────────────────────────────────────────────────────

    def confirm(self, lock_id: str, buyer_id: str, title: str | None = None) -> ConfirmResult:
        """
        Confirm a hold into an appointment.

        Raises:
            NotFound, Forbidden, InvalidState, Expired, Conflict
        """
        now = self.clock()
        with self.session_factory() as db:
            lock = db.get(SlotLocks, lock_id)
            if lock is None:
                raise NotFound()
            if lock.buyer_id != buyer_id:
                raise Forbidden("Not authorized to confirm this lock")
            if lock.status != LockStatus.LOCKED:
                raise InvalidState(f"Cannot confirm slot with status: {lock.status.value}")

            key = slot_key(lock.seller_id, lock.date, lock.start_time)

            if lock.expires_at <= now:
                transition_lock(db, lock_id, LockStatus.CANCELLED, now)
                db.commit()
                self.slot_cache.delete_if_match(key, "lock_id", lock_id)
                logger.info(f"Slot lock expired on confirm: {key} (buyer {buyer_id})")
                raise Expired()

            seller = lock.seller
            start = combine(lock.date, lock.start_time)
            end = combine(lock.date, lock.end_time)
            duration = seller.meeting_duration or self.config.default_meeting_duration

            try:
                if not transition_lock(db, lock_id, LockStatus.CONFIRMED, now):
                    db.rollback()
                    raise InvalidState("Lock is no longer active")

                appointment = Appointments(
                    title=title or f"Meeting with {seller.name}",
                    seller_id=lock.seller_id,
                    buyer_id=buyer_id,
                    start=start,
                    end=end,
                    duration=duration,
                    timezone=seller.timezone or "UTC",
                    created_at=now,
                )
                db.add(appointment)
                db.flush()

                db.query(SlotLocks).filter(SlotLocks.id == lock_id).update(
                    {"appointment_id": appointment.id}, synchronize_session=False
                )
                db.commit()
            except IntegrityError:
                db.rollback()
                logger.warning(f"Confirm conflict for {key}: appointment already exists")
                raise Conflict()

            db.refresh(lock)
            result = ConfirmResult(
                appointment=AppointmentInfo.from_row(appointment),
                lock=SlotLockInfo.from_row(lock),
            )

        logger.info(
            f"Booking confirmed: {key} appointment={result.appointment.id} buyer={buyer_id}"
        )
        self.slot_cache.delete_if_match(key, "lock_id", lock_id)
        self._after_commit(result.appointment.seller_id, JOB_APPOINTMENT_CONFIRMED, {
            "appointment_id": result.appointment.id,
        })
        return result

    # ── Direct booking ───────────────────────────────────────────────────

    def book_direct(
        self,
        seller_id: str,
        buyer_id: str,
        start: datetime,
        end: datetime,
        title: str,
        timezone: str = "UTC",
    ) -> AppointmentInfo:
        """
        Book without going through confirm.

        A live hold of the same buyer on the slot is converted to CONFIRMED
        in the same transaction, as if it had been confirmed.

        Raises:
            SellerNotFound, AlreadyLocked (another buyer holds the slot),
            AlreadyBooked
        """
        if end <= start:
            raise ValueError("end must be after start")

        dt, start_time = start.date(), start.strftime("%H:%M")
        key = slot_key(seller_id, dt, start_time)
        now = self.clock()
        held = self.slot_cache.get(key)
        if held is not None and held.get("buyer_id") != buyer_id:
            raise AlreadyLocked(locked_by=held.get("buyer_id"))

        with self.session_factory() as db:
            seller = db.get(Users, seller_id)
            if seller is None or seller.role != UserRole.SELLER:
                raise SellerNotFound()

            exists = (
                db.query(Appointments.id)
                .filter(Appointments.seller_id == seller_id, Appointments.start == start)
                .first()
            )
            if exists is not None:
                raise AlreadyBooked("Time slot no longer available")

            hold = find_active_lock(db, seller_id, dt, start_time)
            if hold is not None and (hold.status != LockStatus.LOCKED or hold.expires_at <= now):
                hold = None
            if hold is not None and hold.buyer_id != buyer_id:
                raise AlreadyLocked(locked_by=hold.buyer_id)
            hold_id = hold.id if hold is not None else None

            appointment = Appointments(
                title=title,
                seller_id=seller_id,
                buyer_id=buyer_id,
                start=start,
                end=end,
                duration=int((end - start).total_seconds() // 60),
                timezone=timezone,
                created_at=now,
            )
            db.add(appointment)
            try:
                db.flush()
                if hold_id is not None:
                    transition_lock(db, hold_id, LockStatus.CONFIRMED, now, appointment_id=appointment.id)
                db.commit()
            except IntegrityError:
                db.rollback()
                raise AlreadyBooked("Time slot no longer available")
            db.refresh(appointment)
            info = AppointmentInfo.from_row(appointment)

        if hold_id is not None:
            self.slot_cache.delete_if_match(key, "lock_id", hold_id)
        logger.info(f"Direct booking: {key} appointment={info.id} buyer={buyer_id}")
        self._after_commit(seller_id, JOB_APPOINTMENT_CONFIRMED, {"appointment_id": info.id})
        return info

    # ── Appointment cancellation ─────────────────────────────────────────

    def cancel_appointment(self, appointment_id: int, buyer_id: str) -> AppointmentInfo:
        """
        Delete an upcoming appointment and release its CONFIRMED lock.

        Raises:
            NotFound, Forbidden (not the booking buyer),
            InvalidState (appointment already started)
        """
        now = self.clock()
        with self.session_factory() as db:
            appointment = db.get(Appointments, appointment_id)
            if appointment is None:
                raise NotFound("Appointment not found")
            if appointment.buyer_id != buyer_id:
                raise Forbidden("Only buyers can cancel their appointments")
            if appointment.start < now:
                raise InvalidState("Cannot cancel past appointments")

            info = AppointmentInfo.from_row(appointment)
            job = {
                "appointment_id": appointment.id,
                "seller_id": appointment.seller_id,
                "buyer_id": appointment.buyer_id,
                "google_event_id": appointment.google_event_id,
                "buyer_google_event_id": appointment.buyer_google_event_id,
            }
            released = [
                (lock_id, slot_key(seller_id, dt, start_time))
                for lock_id, seller_id, dt, start_time in (
                    db.query(SlotLocks.id, SlotLocks.seller_id, SlotLocks.date, SlotLocks.start_time)
                    .filter(SlotLocks.appointment_id == appointment.id)
                )
            ]

            db.query(SlotLocks).filter(SlotLocks.appointment_id == appointment.id).update(
                {"status": LockStatus.CANCELLED, "appointment_id": None, "updated_at": now},
                synchronize_session=False,
            )
            db.delete(appointment)
            db.commit()

        for lock_id, key in released:
            self.slot_cache.delete_if_match(key, "lock_id", lock_id)
        logger.info(f"Appointment cancelled: {appointment_id} by buyer {buyer_id}")
        self._after_commit(info.seller_id, JOB_APPOINTMENT_CANCELLED, job)
        return info

    # ── Post-commit ──────────────────────────────────────────────────────

    def _after_commit(self, seller_id: str, job_type: str, payload: dict) -> None:
        """Side effects that run after the transaction; failures are only logged."""
        if self.general_cache is not None:
            try:
                invalidate_seller_availability(self.general_cache, seller_id)
            except Exception:
                logger.exception(f"Availability invalidation failed for seller {seller_id}")
        if self.jobs is not None:
            enqueue_job(self.jobs, job_type, payload)
