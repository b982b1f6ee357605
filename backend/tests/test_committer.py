from datetime import datetime, timedelta

import pytest

from slotlock.models import Appointments, LockStatus, SlotLocks
from slotlock.services.slots.committer import JOB_APPOINTMENT_CANCELLED, JOB_APPOINTMENT_CONFIRMED
from slotlock.services.slots.errors import (
    AlreadyBooked,
    AlreadyLocked,
    Conflict,
    Expired,
    Forbidden,
    InvalidState,
    NotFound,
    SellerNotFound,
)

from .helpers import BUYER_A, BUYER_B, SELLER, TODAY

TEN = datetime(2030, 1, 7, 10, 0)


def _lock(manager, buyer=BUYER_A):
    return manager.acquire(SELLER, TODAY, "10:00", "10:30", buyer)


def _lock_status(session_factory, lock_id):
    with session_factory() as session:
        return session.get(SlotLocks, lock_id).status


class TestConfirm:
    def test_confirm_creates_appointment(self, manager, committer, caches, session_factory, jobs):
        info = _lock(manager)

        result = committer.confirm(info.lock_id, BUYER_A)

        assert result.lock.status == LockStatus.CONFIRMED
        assert result.appointment.start == TEN
        assert result.appointment.end == TEN + timedelta(minutes=30)
        assert result.appointment.duration == 30
        assert result.appointment.title == "Meeting with Sam Seller"
        assert caches.slots.get(info.key) is None

        with session_factory() as session:
            lock = session.get(SlotLocks, info.lock_id)
            assert lock.status == LockStatus.CONFIRMED
            assert lock.appointment_id == result.appointment.id

        job = jobs.pop()
        assert job["type"] == JOB_APPOINTMENT_CONFIRMED
        assert job["appointment_id"] == result.appointment.id
        assert job["attempt"] == 1

    def test_custom_title(self, manager, committer):
        info = _lock(manager)
        result = committer.confirm(info.lock_id, BUYER_A, title="Portfolio review")
        assert result.appointment.title == "Portfolio review"

    def test_unknown_lock(self, committer):
        with pytest.raises(NotFound):
            committer.confirm("missing", BUYER_A)

    def test_other_buyer(self, manager, committer):
        info = _lock(manager, BUYER_A)
        with pytest.raises(Forbidden):
            committer.confirm(info.lock_id, BUYER_B)

    def test_double_confirm(self, manager, committer):
        info = _lock(manager)
        committer.confirm(info.lock_id, BUYER_A)
        with pytest.raises(InvalidState, match="CONFIRMED"):
            committer.confirm(info.lock_id, BUYER_A)

    def test_cancelled_lock(self, manager, committer):
        info = _lock(manager)
        manager.cancel(info.lock_id, BUYER_A)
        with pytest.raises(InvalidState):
            committer.confirm(info.lock_id, BUYER_A)

    def test_expired_lock(self, manager, committer, clock, session_factory):
        info = _lock(manager)
        clock.advance(minutes=6)

        with pytest.raises(Expired):
            committer.confirm(info.lock_id, BUYER_A)

        assert _lock_status(session_factory, info.lock_id) == LockStatus.CANCELLED
        assert manager.status(SELLER, TODAY, "10:00").is_locked is False
        with session_factory() as session:
            assert session.query(Appointments).count() == 0

    def test_conflict_keeps_lock(self, manager, committer, add_appointment, session_factory, caches):
        info = _lock(manager)
        # Someone booked the same start behind the lock's back
        add_appointment(TEN, buyer_id=BUYER_B)

        with pytest.raises(Conflict):
            committer.confirm(info.lock_id, BUYER_A)

        assert _lock_status(session_factory, info.lock_id) == LockStatus.LOCKED
        assert caches.slots.get(info.key)["lock_id"] == info.lock_id
        with session_factory() as session:
            assert session.query(Appointments).count() == 1

    def test_confirm_invalidates_availability(self, manager, committer, caches):
        caches.general.set(f"availability:{SELLER}:2030-01-07", [])
        caches.general.set("availability:other:2030-01-07", [])

        committer.confirm(_lock(manager).lock_id, BUYER_A)

        assert caches.general.get(f"availability:{SELLER}:2030-01-07") is None
        assert caches.general.get("availability:other:2030-01-07") == []

    def test_enqueue_failure_does_not_undo_booking(self, manager, committer, jobs, session_factory):
        jobs.push = lambda job: (_ for _ in ()).throw(ConnectionError("queue down"))
        result = committer.confirm(_lock(manager).lock_id, BUYER_A)

        with session_factory() as session:
            assert session.get(Appointments, result.appointment.id) is not None


def test_second_buyer_lifecycle(manager, committer):
    """A locks, B is turned away, A confirms, B is told the slot is booked."""
    info = _lock(manager, BUYER_A)

    with pytest.raises(AlreadyLocked):
        _lock(manager, BUYER_B)

    committer.confirm(info.lock_id, BUYER_A)

    with pytest.raises(AlreadyBooked):
        _lock(manager, BUYER_B)


class TestCancelAppointment:
    def test_cancel_releases_slot(self, manager, committer, jobs, session_factory):
        info = _lock(manager, BUYER_A)
        result = committer.confirm(info.lock_id, BUYER_A)
        jobs.pop()

        cancelled = committer.cancel_appointment(result.appointment.id, BUYER_A)
        assert cancelled.id == result.appointment.id

        with session_factory() as session:
            assert session.get(Appointments, result.appointment.id) is None
            lock = session.get(SlotLocks, info.lock_id)
            assert lock.status == LockStatus.CANCELLED
            assert lock.appointment_id is None

        job = jobs.pop()
        assert job["type"] == JOB_APPOINTMENT_CANCELLED
        assert job["seller_id"] == SELLER

        relocked = _lock(manager, BUYER_B)
        assert relocked.buyer_id == BUYER_B

    def test_only_booking_buyer(self, manager, committer):
        result = committer.confirm(_lock(manager).lock_id, BUYER_A)
        with pytest.raises(Forbidden):
            committer.cancel_appointment(result.appointment.id, BUYER_B)

    def test_past_appointment(self, manager, committer, clock):
        result = committer.confirm(_lock(manager).lock_id, BUYER_A)
        clock.advance(hours=3)
        with pytest.raises(InvalidState, match="past"):
            committer.cancel_appointment(result.appointment.id, BUYER_A)

    def test_unknown_appointment(self, committer):
        with pytest.raises(NotFound):
            committer.cancel_appointment(999, BUYER_A)


class TestBookDirect:
    def test_book_direct(self, committer, jobs):
        info = committer.book_direct(SELLER, BUYER_A, TEN, TEN + timedelta(minutes=45), "Intro call")
        assert info.duration == 45
        assert info.title == "Intro call"
        assert jobs.pop()["appointment_id"] == info.id

    def test_duplicate_start(self, committer):
        committer.book_direct(SELLER, BUYER_A, TEN, TEN + timedelta(minutes=30), "First")
        with pytest.raises(AlreadyBooked):
            committer.book_direct(SELLER, BUYER_B, TEN, TEN + timedelta(minutes=30), "Second")

    def test_slot_held_by_other_buyer(self, manager, committer):
        _lock(manager, BUYER_A)
        with pytest.raises(AlreadyLocked):
            committer.book_direct(SELLER, BUYER_B, TEN, TEN + timedelta(minutes=30), "Sneaky")

    def test_unknown_seller(self, committer):
        with pytest.raises(SellerNotFound):
            committer.book_direct("nobody", BUYER_A, TEN, TEN + timedelta(minutes=30), "x")

    def test_own_hold_is_confirmed_by_direct_booking(self, manager, committer, caches, session_factory):
        hold = _lock(manager, BUYER_A)

        info = committer.book_direct(SELLER, BUYER_A, TEN, TEN + timedelta(minutes=30), "Booked directly")

        with session_factory() as session:
            lock = session.get(SlotLocks, hold.lock_id)
            assert lock.status == LockStatus.CONFIRMED
            assert lock.appointment_id == info.id
        assert caches.slots.get(hold.key) is None

        state = manager.status(SELLER, TODAY, "10:00")
        assert state.is_locked is True
        assert state.status == LockStatus.CONFIRMED
        with pytest.raises(InvalidState):
            committer.confirm(hold.lock_id, BUYER_A)

    def test_direct_booking_cancel_releases_converted_hold(self, manager, committer, session_factory):
        hold = _lock(manager, BUYER_A)
        info = committer.book_direct(SELLER, BUYER_A, TEN, TEN + timedelta(minutes=30), "Booked directly")

        committer.cancel_appointment(info.id, BUYER_A)

        assert _lock_status(session_factory, hold.lock_id) == LockStatus.CANCELLED
        assert _lock(manager, BUYER_B).buyer_id == BUYER_B

    def test_durable_hold_of_other_buyer_blocks(self, manager, committer, caches):
        _lock(manager, BUYER_A)
        caches.slots.clear()

        with pytest.raises(AlreadyLocked):
            committer.book_direct(SELLER, BUYER_B, TEN, TEN + timedelta(minutes=30), "Sneaky")

    def test_expired_hold_is_ignored(self, manager, committer, clock, session_factory):
        hold = _lock(manager, BUYER_A)
        clock.advance(minutes=5)

        committer.book_direct(SELLER, BUYER_B, TEN, TEN + timedelta(minutes=30), "After expiry")

        assert _lock_status(session_factory, hold.lock_id) == LockStatus.LOCKED
