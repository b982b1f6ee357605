# backend/slotlock/routers/appointments.py

from fastapi import APIRouter, Depends, status
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..auth import CurrentUser, get_current_user, require_buyer
from ..database import get_db
from ..dependencies import BookingServices, get_services
from ..models import Appointments
from ..schemas.appointments import AppointmentRead, DirectBookingRequest

router = APIRouter(prefix="/appointments", tags=["appointments"])


@router.get("/", response_model=list[AppointmentRead])
def list_appointments(
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return (
        db.query(Appointments)
        .filter(or_(Appointments.seller_id == user.user_id, Appointments.buyer_id == user.user_id))
        .order_by(Appointments.start)
        .all()
    )


@router.post("/book", response_model=AppointmentRead, status_code=status.HTTP_201_CREATED)
def book_appointment(
    data: DirectBookingRequest,
    user: CurrentUser = Depends(require_buyer),
    services: BookingServices = Depends(get_services),
):
    return services.committer.book_direct(
        data.seller_id, user.user_id, data.start, data.end, data.title, timezone=data.timezone
    )


@router.post("/{id}/cancel", response_model=AppointmentRead)
def cancel_appointment(
    id: int,
    user: CurrentUser = Depends(require_buyer),
    services: BookingServices = Depends(get_services),
):
    return services.committer.cancel_appointment(id, user.user_id)
