# backend/slotlock/schemas/base.py
"""
Base schema: snake_case in Python, camelCase on the wire.
"""

from typing import Annotated

from pydantic import AfterValidator, BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from ..services.slots.config import is_valid_time_str


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
        use_enum_values=True,
    )


def _check_time(value: str) -> str:
    if not is_valid_time_str(value):
        raise ValueError("Invalid time format. Use HH:MM")
    return value


TimeStr = Annotated[str, AfterValidator(_check_time)]
