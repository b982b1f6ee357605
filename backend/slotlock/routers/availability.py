# backend/slotlock/routers/availability.py
"""
Seller schedule endpoints.

GET  /availability/{seller_id} - weekly windows and date overrides
PUT  /availability             - replace the caller's weekly windows
POST /availability/dates       - set date-specific windows
"""

from datetime import date

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..auth import CurrentUser, require_seller
from ..database import get_db
from ..dependencies import BookingServices, get_services
from ..models import SellerAvailability, SellerDateAvailability, UserRole, Users
from ..schemas.availability import (
    AvailabilitySaveResponse,
    DateAvailabilityRequest,
    WeeklyAvailabilityRequest,
    WeeklyRule,
)
from ..services.slots.availability import save_date_availability, save_weekly_availability

router = APIRouter(prefix="/availability", tags=["availability"])


@router.get("/{seller_id}")
def get_seller_availability(
    seller_id: str,
    from_date: date | None = None,
    db: Session = Depends(get_db),
):
    seller = db.get(Users, seller_id)
    if seller is None or seller.role != UserRole.SELLER:
        raise HTTPException(status_code=404, detail="Seller not found")

    weekly = (
        db.query(SellerAvailability)
        .filter(SellerAvailability.seller_id == seller_id)
        .order_by(SellerAvailability.day_of_week, SellerAvailability.start_time)
        .all()
    )
    dates_q = db.query(SellerDateAvailability).filter(SellerDateAvailability.seller_id == seller_id)
    if from_date is not None:
        dates_q = dates_q.filter(SellerDateAvailability.date >= from_date)

    return {
        "sellerId": seller_id,
        "meetingDuration": seller.meeting_duration,
        "weekly": [
            WeeklyRule.model_validate(row).model_dump(by_alias=True) for row in weekly
        ],
        "dates": [
            {"date": row.date.isoformat(), "startTime": row.start_time, "endTime": row.end_time}
            for row in dates_q.order_by(SellerDateAvailability.date).all()
        ],
    }


@router.put("", response_model=AvailabilitySaveResponse)
def save_weekly(
    body: WeeklyAvailabilityRequest,
    user: CurrentUser = Depends(require_seller),
    db: Session = Depends(get_db),
    services: BookingServices = Depends(get_services),
):
    try:
        saved = save_weekly_availability(
            db,
            services.caches.general,
            user.user_id,
            [(rule.day_of_week, rule.start_time, rule.end_time) for rule in body.rules],
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return AvailabilitySaveResponse(saved=saved)


@router.post("/dates", response_model=AvailabilitySaveResponse)
def save_dates(
    body: DateAvailabilityRequest,
    user: CurrentUser = Depends(require_seller),
    db: Session = Depends(get_db),
    services: BookingServices = Depends(get_services),
):
    try:
        saved = save_date_availability(
            db, services.caches.general, user.user_id, body.dates, body.start_time, body.end_time
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return AvailabilitySaveResponse(saved=saved)
