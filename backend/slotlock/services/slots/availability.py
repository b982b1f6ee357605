# backend/slotlock/services/slots/availability.py
"""
Seller availability for one day.

Candidate slots come from:
- seller's weekly windows for the weekday, replaced entirely by
  date-specific windows when any exist for that date
- minus existing appointments
- minus busy intervals from the seller's external calendar
  (best-effort: a failing provider means "no external busy data")

A slot is [start, start + meeting_duration) and conflicts with a busy
interval when slot_start < busy_end and slot_end > busy_start.
Slots that already started are never proposed.

Results are cached per seller/date in the general cache and merged with
live lock state from the slot cache on every read.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, Iterable

from sqlalchemy.orm import Session

from ...models import Appointments, SellerAvailability, SellerDateAvailability, UserRole, Users
from .cache import EphemeralCache
from .config import LockConfig, availability_key, combine, get_lock_config, time_str_to_minutes
from .errors import SellerNotFound
from .invalidator import invalidate_seller_availability
from .lock_manager import SlotLockManager

logger = logging.getLogger(__name__)

Interval = tuple[datetime, datetime]
BusyProvider = Callable[[Users, date], list[Interval]]


@dataclass(frozen=True)
class AvailabilitySlot:
    start: datetime
    end: datetime
    duration: int

    @property
    def start_time(self) -> str:
        return self.start.strftime("%H:%M")

    @property
    def end_time(self) -> str:
        return self.end.strftime("%H:%M")

    def to_dict(self) -> dict:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "duration": self.duration,
            "start_time": self.start_time,
            "end_time": self.end_time,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AvailabilitySlot":
        return cls(
            start=datetime.fromisoformat(data["start"]),
            end=datetime.fromisoformat(data["end"]),
            duration=data["duration"],
        )


def overlaps(slot_start: datetime, slot_end: datetime, busy_start: datetime, busy_end: datetime) -> bool:
    return slot_start < busy_end and slot_end > busy_start


def generate_slots(
    target_date: date,
    windows: Iterable[tuple[str, str]],
    duration: int,
) -> list[AvailabilitySlot]:
    """Back-to-back slots of `duration` minutes that fit inside each window."""
    slots: list[AvailabilitySlot] = []
    step = timedelta(minutes=duration)

    for start_str, end_str in windows:
        window_start = combine(target_date, start_str)
        window_end = combine(target_date, end_str)

        slot_start = window_start
        while slot_start + step <= window_end:
            slots.append(AvailabilitySlot(start=slot_start, end=slot_start + step, duration=duration))
            slot_start += step

    return sorted(set(slots), key=lambda s: s.start)


def resolve_availability(
    db: Session,
    seller_id: str,
    target_date: date,
    now: datetime | None = None,
    config: LockConfig | None = None,
    busy_provider: BusyProvider | None = None,
) -> list[AvailabilitySlot]:
    """
    Compute bookable slots for a seller on a date.

    Raises:
        SellerNotFound: seller_id is not a seller
    """
    config = config or get_lock_config()
    now = now or datetime.now()

    seller = _get_seller(db, seller_id)
    if seller is None:
        raise SellerNotFound()

    windows = _get_windows(db, seller_id, target_date)
    if not windows:
        return []

    duration = seller.meeting_duration or config.default_meeting_duration
    candidates = generate_slots(target_date, windows, duration)

    busy: list[Interval] = [
        (appt.start, appt.end) for appt in _get_day_appointments(db, seller_id, target_date)
    ]
    if busy_provider is not None:
        try:
            busy.extend(busy_provider(seller, target_date))
        except Exception as e:
            logger.warning(f"External busy lookup failed for seller {seller_id}: {e}")

    return [
        slot for slot in candidates
        if slot.start >= now
        and not any(overlaps(slot.start, slot.end, b_start, b_end) for b_start, b_end in busy)
    ]


def get_available_slots(
    db: Session,
    seller_id: str,
    target_date: date,
    cache: EphemeralCache,
    locks: SlotLockManager,
    now: datetime | None = None,
    config: LockConfig | None = None,
    busy_provider: BusyProvider | None = None,
) -> list[dict]:
    """
    Cached availability merged with live lock state.

    Each item: start, end, duration, start_time, end_time,
    is_locked, lock_status, locked_by.
    """
    config = config or get_lock_config()
    now = now or datetime.now()

    cached = cache.get_or_set(
        availability_key(seller_id, target_date),
        lambda: [
            slot.to_dict()
            for slot in resolve_availability(db, seller_id, target_date, now, config, busy_provider)
        ],
        ttl=config.availability_ttl_seconds,
    )

    result = []
    for data in cached:
        slot = AvailabilitySlot.from_dict(data)
        # Snapshot may be up to one TTL old
        if slot.start < now:
            continue
        state = locks.cached_state(seller_id, target_date, slot.start_time)
        result.append({
            **slot.to_dict(),
            "is_locked": state.is_locked,
            "lock_status": state.status.value if state.status else None,
            "locked_by": state.owner_id,
        })
    return result


# ── Seller schedule writes ───────────────────────────────────────────────


def save_weekly_availability(
    db: Session,
    cache: EphemeralCache | None,
    seller_id: str,
    rules: list[tuple[int, str, str]],
) -> int:
    """Replace the seller's weekly windows with (day_of_week, start, end) rules."""
    for day_of_week, start_time, end_time in rules:
        if not 0 <= day_of_week <= 6:
            raise ValueError(f"day_of_week must be 0..6, got {day_of_week}")
        _validate_window(start_time, end_time)

    db.query(SellerAvailability).filter(SellerAvailability.seller_id == seller_id).delete(
        synchronize_session=False
    )
    for day_of_week, start_time, end_time in rules:
        db.add(SellerAvailability(
            seller_id=seller_id,
            day_of_week=day_of_week,
            start_time=start_time,
            end_time=end_time,
        ))
    db.commit()

    if cache is not None:
        invalidate_seller_availability(cache, seller_id)
    logger.info(f"Saved {len(rules)} weekly availability rules for seller {seller_id}")
    return len(rules)


def save_date_availability(
    db: Session,
    cache: EphemeralCache | None,
    seller_id: str,
    dates: list[date],
    start_time: str = "09:00",
    end_time: str = "17:00",
) -> int:
    """Create or update the date-specific window for each date."""
    _validate_window(start_time, end_time)

    for dt in dates:
        row = (
            db.query(SellerDateAvailability)
            .filter(SellerDateAvailability.seller_id == seller_id, SellerDateAvailability.date == dt)
            .first()
        )
        if row is None:
            db.add(SellerDateAvailability(
                seller_id=seller_id, date=dt, start_time=start_time, end_time=end_time,
            ))
        else:
            row.start_time = start_time
            row.end_time = end_time
    db.commit()

    if cache is not None:
        invalidate_seller_availability(cache, seller_id, dates)
    logger.info(f"Saved {len(dates)} date availability records for seller {seller_id}")
    return len(dates)


# ── Helpers ──────────────────────────────────────────────────────────────


def _validate_window(start_time: str, end_time: str) -> None:
    if time_str_to_minutes(end_time) <= time_str_to_minutes(start_time):
        raise ValueError(f"Window {start_time}-{end_time} is empty")


def _get_seller(db: Session, seller_id: str) -> Users | None:
    seller = db.get(Users, seller_id)
    if seller is None or seller.role != UserRole.SELLER:
        return None
    return seller


def _get_windows(db: Session, seller_id: str, target_date: date) -> list[tuple[str, str]]:
    """Date-specific windows if any, otherwise the weekly windows."""
    specific = (
        db.query(SellerDateAvailability)
        .filter(
            SellerDateAvailability.seller_id == seller_id,
            SellerDateAvailability.date == target_date,
        )
        .all()
    )
    if specific:
        return [(row.start_time, row.end_time) for row in specific]

    weekly = (
        db.query(SellerAvailability)
        .filter(
            SellerAvailability.seller_id == seller_id,
            SellerAvailability.day_of_week == target_date.weekday(),
        )
        .all()
    )
    return [(row.start_time, row.end_time) for row in weekly]


def _get_day_appointments(db: Session, seller_id: str, target_date: date) -> list[Appointments]:
    day_start = datetime.combine(target_date, datetime.min.time())
    day_end = day_start + timedelta(days=1)
    return (
        db.query(Appointments)
        .filter(
            Appointments.seller_id == seller_id,
            Appointments.start < day_end,
            Appointments.end > day_start,
        )
        .all()
    )
