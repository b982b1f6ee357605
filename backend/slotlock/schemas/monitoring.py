# backend/slotlock/schemas/monitoring.py

from pydantic import Field

from .base import CamelModel


class RetryRequest(CamelModel):
    appointment_ids: list[int] = Field(min_length=1)
