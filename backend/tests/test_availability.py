from datetime import date, datetime, timedelta

import pytest

from slotlock.services.slots.availability import (
    generate_slots,
    get_available_slots,
    overlaps,
    resolve_availability,
    save_date_availability,
    save_weekly_availability,
)
from slotlock.services.slots.errors import SellerNotFound

from .helpers import BUYER_A, SELLER, TODAY


def _starts(slots):
    return [slot.start_time for slot in slots]


def test_overlap_is_half_open():
    nine = datetime(2030, 1, 7, 9, 0)
    half = timedelta(minutes=30)
    assert overlaps(nine, nine + half, nine + timedelta(minutes=15), nine + half * 2)
    assert not overlaps(nine, nine + half, nine + half, nine + half * 2)


def test_generate_slots_fits_window():
    slots = generate_slots(TODAY, [("09:00", "10:15")], 30)
    assert _starts(slots) == ["09:00", "09:30"]


class TestResolveAvailability:
    def test_weekly_rules(self, db, users, clock):
        slots = resolve_availability(db, SELLER, TODAY, now=clock.now())
        assert _starts(slots) == ["09:00", "09:30", "10:00", "10:30"]
        assert all(slot.duration == 30 for slot in slots)

    def test_no_rules_for_weekday(self, db, users, clock):
        assert resolve_availability(db, SELLER, TODAY + timedelta(days=1), now=clock.now()) == []

    def test_date_override_replaces_weekly(self, db, users, clock):
        save_date_availability(db, None, SELLER, [TODAY], "14:00", "15:00")
        slots = resolve_availability(db, SELLER, TODAY, now=clock.now())
        assert _starts(slots) == ["14:00", "14:30"]

    def test_appointments_are_busy(self, db, users, clock, add_appointment):
        add_appointment(datetime(2030, 1, 7, 9, 30))
        slots = resolve_availability(db, SELLER, TODAY, now=clock.now())
        assert _starts(slots) == ["09:00", "10:00", "10:30"]

    def test_external_busy_intervals(self, db, users, clock):
        def provider(seller, target_date):
            assert seller.id == SELLER
            return [(datetime(2030, 1, 7, 9, 45), datetime(2030, 1, 7, 10, 15))]

        slots = resolve_availability(db, SELLER, TODAY, now=clock.now(), busy_provider=provider)
        assert _starts(slots) == ["09:00", "10:30"]

    def test_failing_provider_is_ignored(self, db, users, clock):
        def provider(seller, target_date):
            raise ConnectionError("calendar unavailable")

        slots = resolve_availability(db, SELLER, TODAY, now=clock.now(), busy_provider=provider)
        assert len(slots) == 4

    def test_started_slots_are_hidden(self, db, users, clock):
        clock.advance(hours=1, minutes=40)
        slots = resolve_availability(db, SELLER, TODAY, now=clock.now())
        assert _starts(slots) == ["10:00", "10:30"]

    def test_unknown_seller(self, db, users, clock):
        with pytest.raises(SellerNotFound):
            resolve_availability(db, "nobody", TODAY, now=clock.now())


class TestAvailableSlots:
    def test_merges_lock_state(self, db, manager, caches, config, clock):
        manager.acquire(SELLER, TODAY, "09:30", "10:00", BUYER_A)

        slots = get_available_slots(db, SELLER, TODAY, caches.general, manager,
                                    now=clock.now(), config=config)
        by_time = {slot["start_time"]: slot for slot in slots}

        assert by_time["09:30"]["is_locked"] is True
        assert by_time["09:30"]["lock_status"] == "LOCKED"
        assert by_time["09:30"]["locked_by"] == BUYER_A
        assert by_time["09:00"]["is_locked"] is False
        assert by_time["09:00"]["locked_by"] is None

    def test_result_is_cached(self, db, manager, caches, config, clock):
        get_available_slots(db, SELLER, TODAY, caches.general, manager, now=clock.now(), config=config)
        assert caches.general.get(f"availability:{SELLER}:{TODAY.isoformat()}") is not None

        # A new rule is not visible until the cache entry goes away
        save_weekly_availability(db, None, SELLER, [(0, "09:00", "12:00")])
        cached = get_available_slots(db, SELLER, TODAY, caches.general, manager,
                                     now=clock.now(), config=config)
        assert len(cached) == 4

        clock.advance(seconds=61)
        fresh = get_available_slots(db, SELLER, TODAY, caches.general, manager,
                                    now=clock.now(), config=config)
        assert [slot["start_time"] for slot in fresh][-1] == "11:30"

    def test_confirm_drops_booked_slot(self, db, manager, committer, caches, config, clock):
        get_available_slots(db, SELLER, TODAY, caches.general, manager, now=clock.now(), config=config)

        lock = manager.acquire(SELLER, TODAY, "10:00", "10:30", BUYER_A)
        committer.confirm(lock.lock_id, BUYER_A)

        slots = get_available_slots(db, SELLER, TODAY, caches.general, manager,
                                    now=clock.now(), config=config)
        assert "10:00" not in [slot["start_time"] for slot in slots]


class TestScheduleWrites:
    def test_save_weekly_replaces_rules(self, db, users, caches, clock):
        caches.general.set(f"availability:{SELLER}:{TODAY.isoformat()}", [])

        assert save_weekly_availability(db, caches.general, SELLER, [(0, "13:00", "14:00")]) == 1
        assert caches.general.get(f"availability:{SELLER}:{TODAY.isoformat()}") is None
        assert _starts(resolve_availability(db, SELLER, TODAY, now=clock.now())) == ["13:00", "13:30"]

    def test_invalid_rules(self, db, users):
        with pytest.raises(ValueError):
            save_weekly_availability(db, None, SELLER, [(7, "09:00", "10:00")])
        with pytest.raises(ValueError):
            save_weekly_availability(db, None, SELLER, [(0, "10:00", "09:00")])

    def test_save_dates_upserts(self, db, users, clock):
        save_date_availability(db, None, SELLER, [TODAY], "14:00", "15:00")
        save_date_availability(db, None, SELLER, [TODAY], "16:00", "16:30")
        assert _starts(resolve_availability(db, SELLER, TODAY, now=clock.now())) == ["16:00"]

    def test_save_dates_invalidates_only_those_dates(self, db, users, caches):
        other = date(2030, 1, 8)
        caches.general.set(f"availability:{SELLER}:{TODAY.isoformat()}", [])
        caches.general.set(f"availability:{SELLER}:{other.isoformat()}", [])

        save_date_availability(db, caches.general, SELLER, [TODAY])

        assert caches.general.get(f"availability:{SELLER}:{TODAY.isoformat()}") is None
        assert caches.general.get(f"availability:{SELLER}:{other.isoformat()}") == []
