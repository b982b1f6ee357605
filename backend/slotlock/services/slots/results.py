"""
Typed success shapes returned by the slot lock subsystem.
"""

from dataclasses import dataclass, asdict
from datetime import date, datetime

from ...models import Appointments, LockStatus, SlotLocks
from .config import slot_key


@dataclass(frozen=True)
class SlotLockInfo:
    lock_id: str
    key: str
    seller_id: str
    buyer_id: str
    date: date
    start_time: str
    end_time: str
    status: LockStatus
    locked_at: datetime
    expires_at: datetime

    @classmethod
    def from_row(cls, row: SlotLocks) -> "SlotLockInfo":
        return cls(
            lock_id=row.id,
            key=slot_key(row.seller_id, row.date, row.start_time),
            seller_id=row.seller_id,
            buyer_id=row.buyer_id,
            date=row.date,
            start_time=row.start_time,
            end_time=row.end_time,
            status=LockStatus(row.status),
            locked_at=row.locked_at,
            expires_at=row.expires_at,
        )

    def to_cache(self) -> dict:
        """Cache projection of a lock, JSON-safe."""
        return {
            "lock_id": self.lock_id,
            "status": self.status.value,
            "seller_id": self.seller_id,
            "buyer_id": self.buyer_id,
            "date": self.date.isoformat(),
            "start_time": self.start_time,
            "end_time": self.end_time,
            "locked_at": self.locked_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }


@dataclass(frozen=True)
class SlotLockState:
    """Answer of a status query for one slot identity."""
    is_locked: bool
    status: LockStatus | None = None
    owner_id: str | None = None
    lock_id: str | None = None
    expires_at: datetime | None = None


@dataclass(frozen=True)
class AppointmentInfo:
    id: int
    seller_id: str
    buyer_id: str
    title: str
    start: datetime
    end: datetime
    duration: int
    timezone: str

    @classmethod
    def from_row(cls, row: Appointments) -> "AppointmentInfo":
        return cls(
            id=row.id,
            seller_id=row.seller_id,
            buyer_id=row.buyer_id,
            title=row.title,
            start=row.start,
            end=row.end,
            duration=row.duration,
            timezone=row.timezone,
        )

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class ConfirmResult:
    appointment: AppointmentInfo
    lock: SlotLockInfo
