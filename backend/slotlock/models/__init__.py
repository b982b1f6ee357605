from .tables import (
    Base,
    metadata,
    UserRole,
    LockStatus,
    Users,
    SellerAvailability,
    SellerDateAvailability,
    Appointments,
    SlotLocks,
)

__all__ = [
    "Base",
    "metadata",
    "UserRole",
    "LockStatus",
    "Users",
    "SellerAvailability",
    "SellerDateAvailability",
    "Appointments",
    "SlotLocks",
]
