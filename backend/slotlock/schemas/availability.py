# backend/slotlock/schemas/availability.py

from datetime import date

from pydantic import Field

from .base import CamelModel, TimeStr


class WeeklyRule(CamelModel):
    day_of_week: int = Field(ge=0, le=6, description="0 = Monday")
    start_time: TimeStr
    end_time: TimeStr


class WeeklyAvailabilityRequest(CamelModel):
    rules: list[WeeklyRule]


class DateAvailabilityRequest(CamelModel):
    dates: list[date] = Field(min_length=1)
    start_time: TimeStr = "09:00"
    end_time: TimeStr = "17:00"


class AvailabilitySaveResponse(CamelModel):
    success: bool = True
    saved: int
