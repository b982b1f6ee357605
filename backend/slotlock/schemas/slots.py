# backend/slotlock/schemas/slots.py
"""
Pydantic schemas for slots API.
"""

from datetime import date, datetime
from typing import Optional

from pydantic import Field, model_validator

from ..models import LockStatus
from ..services.slots.config import time_str_to_minutes
from .appointments import AppointmentRead
from .base import CamelModel, TimeStr


class SlotIdentity(CamelModel):
    seller_id: str = Field(min_length=1)
    date: date
    start_time: TimeStr


class SlotLockRequest(SlotIdentity):
    end_time: TimeStr

    @model_validator(mode="after")
    def end_after_start(self):
        if time_str_to_minutes(self.end_time) <= time_str_to_minutes(self.start_time):
            raise ValueError("endTime must be after startTime")
        return self


class SlotUnlockRequest(SlotIdentity):
    pass


class SlotCancelRequest(CamelModel):
    lock_id: str = Field(min_length=1)


class SlotConfirmRequest(CamelModel):
    lock_id: str = Field(min_length=1)
    title: Optional[str] = Field(None, max_length=200)


class SlotLockRead(CamelModel):
    lock_id: str
    seller_id: str
    buyer_id: str
    date: date
    start_time: str
    end_time: str
    status: LockStatus
    locked_at: datetime
    expires_at: datetime


class SlotLockResponse(CamelModel):
    success: bool = True
    lock: SlotLockRead


class SlotStatusRead(CamelModel):
    """Lock state of one slot identity."""
    is_locked: bool
    status: Optional[LockStatus] = None
    locked_by: Optional[str] = None
    lock_id: Optional[str] = None
    expires_at: Optional[datetime] = None


class SlotConfirmResponse(CamelModel):
    success: bool = True
    appointment: AppointmentRead
    lock: SlotLockRead


class AvailableSlot(CamelModel):
    start: datetime
    end: datetime
    duration: int
    start_time: str
    end_time: str
    is_locked: bool = False
    lock_status: Optional[LockStatus] = None
    locked_by: Optional[str] = None


class AvailableSlotsResponse(CamelModel):
    seller_id: str
    date: date
    slots: list[AvailableSlot]
