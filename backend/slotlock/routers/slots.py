# backend/slotlock/routers/slots.py
"""
Slots API endpoints.

POST   /slots/lock      - hold a slot for the calling buyer
DELETE /slots/unlock    - release a hold by slot coordinates
POST   /slots/cancel    - release a hold by lock id
POST   /slots/confirm   - turn a hold into an appointment
GET    /slots/status    - lock state of one slot
GET    /slots/available - bookable slots of a day with lock state
"""

from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth import CurrentUser, get_current_user, require_buyer
from ..database import get_db
from ..dependencies import BookingServices, get_services
from ..schemas.appointments import AppointmentRead
from ..schemas.base import TimeStr
from ..schemas.slots import (
    AvailableSlotsResponse,
    SlotCancelRequest,
    SlotConfirmRequest,
    SlotConfirmResponse,
    SlotLockRead,
    SlotLockRequest,
    SlotLockResponse,
    SlotStatusRead,
    SlotUnlockRequest,
)
from ..services.slots.availability import get_available_slots


router = APIRouter(prefix="/slots", tags=["slots"])


@router.post("/lock", response_model=SlotLockResponse, status_code=201)
def lock_slot(
    body: SlotLockRequest,
    user: CurrentUser = Depends(require_buyer),
    services: BookingServices = Depends(get_services),
):
    info = services.locks.acquire(
        body.seller_id, body.date, body.start_time, body.end_time, user.user_id
    )
    return SlotLockResponse(lock=SlotLockRead.model_validate(info))


@router.delete("/unlock", response_model=SlotLockResponse)
def unlock_slot(
    body: SlotUnlockRequest,
    user: CurrentUser = Depends(require_buyer),
    services: BookingServices = Depends(get_services),
):
    info = services.locks.unlock(body.seller_id, body.date, body.start_time, user.user_id)
    return SlotLockResponse(lock=SlotLockRead.model_validate(info))


@router.post("/cancel", response_model=SlotLockResponse)
def cancel_slot(
    body: SlotCancelRequest,
    user: CurrentUser = Depends(require_buyer),
    services: BookingServices = Depends(get_services),
):
    info = services.locks.cancel(body.lock_id, user.user_id)
    return SlotLockResponse(lock=SlotLockRead.model_validate(info))


@router.post("/confirm", response_model=SlotConfirmResponse)
def confirm_slot(
    body: SlotConfirmRequest,
    user: CurrentUser = Depends(require_buyer),
    services: BookingServices = Depends(get_services),
):
    result = services.committer.confirm(body.lock_id, user.user_id, title=body.title)
    return SlotConfirmResponse(
        appointment=AppointmentRead.model_validate(result.appointment),
        lock=SlotLockRead.model_validate(result.lock),
    )


@router.get("/status", response_model=SlotStatusRead)
def slot_status(
    seller_id: str = Query(..., alias="sellerId"),
    date: date = Query(...),
    start_time: TimeStr = Query(..., alias="startTime"),
    user: CurrentUser = Depends(get_current_user),
    services: BookingServices = Depends(get_services),
):
    state = services.locks.status(seller_id, date, start_time)
    return SlotStatusRead(
        is_locked=state.is_locked,
        status=state.status,
        locked_by=state.owner_id,
        lock_id=state.lock_id,
        expires_at=state.expires_at,
    )


@router.get("/available", response_model=AvailableSlotsResponse)
def available_slots(
    seller_id: str = Query(..., alias="sellerId"),
    date: date = Query(...),
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    services: BookingServices = Depends(get_services),
):
    slots = get_available_slots(
        db,
        seller_id,
        date,
        services.caches.general,
        services.locks,
        now=services.locks.clock(),
        config=services.config,
        busy_provider=services.busy_provider,
    )
    return AvailableSlotsResponse(seller_id=seller_id, date=date, slots=slots)
