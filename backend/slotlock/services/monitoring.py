"""
Booking health metrics.

An appointment counts as fully processed when it has at least one calendar
event and a confirmation email. Rates are percentages rounded to 0.1.
"""

import logging
from datetime import datetime, timedelta

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..models import Appointments, LockStatus, SlotLocks
from .events import JobQueue, enqueue_job
from .slots.committer import JOB_APPOINTMENT_CONFIRMED

logger = logging.getLogger(__name__)


def _rate(count: int, total: int) -> float:
    return round(count / total * 100, 1) if total else 0.0


def get_booking_health(db: Session, days: int = 7, now: datetime | None = None) -> dict:
    now = now or datetime.now()
    start = datetime.combine((now - timedelta(days=days)).date(), datetime.min.time())

    appointments = (
        db.query(Appointments)
        .filter(Appointments.created_at >= start, Appointments.created_at <= now)
        .all()
    )
    total = len(appointments)

    counts = {
        "seller_calendar": sum(1 for a in appointments if a.google_event_id),
        "buyer_calendar": sum(1 for a in appointments if a.buyer_google_event_id),
        "meet_link": sum(1 for a in appointments if a.meet_link),
        "confirmation_email": sum(1 for a in appointments if a.confirmation_email),
        "overall": sum(
            1 for a in appointments
            if (a.google_event_id or a.buyer_google_event_id) and a.confirmation_email
        ),
    }

    lock_counts = dict(
        db.query(SlotLocks.status, func.count(SlotLocks.id))
        .filter(SlotLocks.locked_at >= start)
        .group_by(SlotLocks.status)
        .all()
    )

    return {
        "period": {"start": start.isoformat(), "end": now.isoformat(), "days": days},
        "total_bookings": total,
        "metrics": {
            name: {"count": count, "rate": _rate(count, total)}
            for name, count in counts.items()
        } if total else {},
        "locks": {
            status.value: lock_counts.get(status, 0) for status in LockStatus
        },
    }


def find_incomplete_appointments(db: Session, days: int = 1, now: datetime | None = None) -> list[dict]:
    """Recent appointments missing both calendar events or the confirmation email."""
    now = now or datetime.now()
    cutoff = now - timedelta(days=days)

    rows = (
        db.query(Appointments)
        .filter(Appointments.created_at >= cutoff)
        .order_by(Appointments.created_at.desc())
        .all()
    )
    return [
        {
            "appointment_id": a.id,
            "created_at": a.created_at.isoformat() if a.created_at else None,
            "seller": a.seller.name,
            "buyer": a.buyer.name,
            "missing": {
                "seller_calendar": not a.google_event_id,
                "buyer_calendar": not a.buyer_google_event_id,
                "meet_link": not a.meet_link,
                "confirmation_email": not a.confirmation_email,
            },
        }
        for a in rows
        if (not a.google_event_id and not a.buyer_google_event_id) or not a.confirmation_email
    ]


def retry_appointments(queue: JobQueue, appointment_ids: list[int]) -> dict[int, bool]:
    """Queue a fresh confirmation job for each appointment."""
    results = {}
    for appointment_id in appointment_ids:
        results[appointment_id] = enqueue_job(
            queue, JOB_APPOINTMENT_CONFIRMED, {"appointment_id": appointment_id}
        )
    logger.info(f"Retry queued for {sum(results.values())}/{len(results)} appointments")
    return results
