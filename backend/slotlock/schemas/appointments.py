# backend/slotlock/schemas/appointments.py

from datetime import datetime
from typing import Optional

from pydantic import Field, model_validator

from .base import CamelModel


class DirectBookingRequest(CamelModel):
    seller_id: str = Field(min_length=1)
    start: datetime
    end: datetime
    title: str = Field(min_length=1, max_length=200)
    timezone: str = "UTC"

    @model_validator(mode="after")
    def end_after_start(self):
        if self.end <= self.start:
            raise ValueError("end must be after start")
        return self


class AppointmentRead(CamelModel):
    id: int
    seller_id: str
    buyer_id: str
    title: str
    start: datetime
    end: datetime
    duration: int
    timezone: str
    google_event_id: Optional[str] = None
    meet_link: Optional[str] = None
