# backend/slotlock/services/slots/invalidator.py
"""
Cache invalidation for seller availability.

Triggers:
✓ Appointment confirmed / booked directly → invalidate the seller
✓ Appointment cancelled → invalidate the seller
✓ Weekly rules or date overrides changed → invalidate affected dates

Does NOT trigger:
✗ Lock acquire/cancel (lock state is merged in on every read)
"""

from datetime import date

from .cache import EphemeralCache
from .config import AVAILABILITY_KEY_PREFIX, availability_key


def invalidate_seller_availability(
    cache: EphemeralCache,
    seller_id: str,
    dates: list[date] | None = None,
) -> int:
    """
    Invalidate cached availability for a seller.

    Args:
        cache: General cache holding availability snapshots
        seller_id: Seller ID
        dates: Specific dates to invalidate,
               or None to invalidate all cached dates

    Returns:
        Number of deleted cache keys
    """
    if dates:
        return sum(1 for dt in dates if cache.delete(availability_key(seller_id, dt)))
    return cache.delete_pattern(f"{AVAILABILITY_KEY_PREFIX}:{seller_id}:*")
