# backend/slotlock/routers/monitoring.py
"""
Operational endpoints: booking health, background task state,
manual sweep and notification retry.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..database import get_db
from ..dependencies import BookingServices, get_services
from ..schemas.monitoring import RetryRequest
from ..services.monitoring import find_incomplete_appointments, get_booking_health, retry_appointments

router = APIRouter(prefix="/monitoring", tags=["monitoring"])


@router.get("/booking-health")
def booking_health(
    days: int = Query(7, ge=1, le=365),
    db: Session = Depends(get_db),
    services: BookingServices = Depends(get_services),
):
    return get_booking_health(db, days, now=services.locks.clock())


@router.get("/failed-tasks")
def failed_tasks(
    days: int = Query(1, ge=1, le=90),
    db: Session = Depends(get_db),
    services: BookingServices = Depends(get_services),
):
    return {"appointments": find_incomplete_appointments(db, days, now=services.locks.clock())}


@router.post("/retry")
def retry_failed(
    body: RetryRequest,
    services: BookingServices = Depends(get_services),
):
    queued = retry_appointments(services.jobs, body.appointment_ids)
    return {"queued": [appointment_id for appointment_id, ok in queued.items() if ok]}


@router.get("/tasks")
def background_tasks(services: BookingServices = Depends(get_services)):
    return {
        "sweeper": services.sweeper.status(),
        "notifications": services.worker.status(),
    }


@router.post("/sweep")
def run_sweep(services: BookingServices = Depends(get_services)):
    cleaned = services.sweeper.sweep_once()
    return {"cleaned": cleaned, "sweeper": services.sweeper.status()}
