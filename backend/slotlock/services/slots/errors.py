"""
Slot lock error taxonomy.

Every operation of the lock subsystem fails with exactly one of the
SlotLockError subclasses below; `kind` is the closed set callers switch on.
"""

import enum


class ErrorKind(str, enum.Enum):
    NOT_FOUND = "not_found"
    SELLER_NOT_FOUND = "seller_not_found"
    FORBIDDEN = "forbidden"
    INVALID_STATE = "invalid_state"
    ALREADY_LOCKED = "already_locked"
    ALREADY_BOOKED = "already_booked"
    EXPIRED = "expired"
    CONFLICT = "conflict"


class SlotLockError(Exception):
    kind: ErrorKind
    default_detail = "Slot lock error"

    def __init__(self, detail: str | None = None, **context):
        self.detail = detail or self.default_detail
        self.context = context
        super().__init__(self.detail)


class NotFound(SlotLockError):
    kind = ErrorKind.NOT_FOUND
    default_detail = "Slot lock not found"


class SellerNotFound(SlotLockError):
    kind = ErrorKind.SELLER_NOT_FOUND
    default_detail = "Seller not found"


class Forbidden(SlotLockError):
    kind = ErrorKind.FORBIDDEN
    default_detail = "Not authorized for this slot lock"


class InvalidState(SlotLockError):
    kind = ErrorKind.INVALID_STATE
    default_detail = "Operation not allowed in the current lock status"


class AlreadyLocked(SlotLockError):
    kind = ErrorKind.ALREADY_LOCKED
    default_detail = "Slot is already locked"


class AlreadyBooked(SlotLockError):
    kind = ErrorKind.ALREADY_BOOKED
    default_detail = "Slot is already booked"


class Expired(SlotLockError):
    kind = ErrorKind.EXPIRED
    default_detail = "Slot lock has expired"


class Conflict(SlotLockError):
    kind = ErrorKind.CONFLICT
    default_detail = "Slot is already booked by another appointment"
