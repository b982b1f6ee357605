"""
backend/slotlock/services/google_calendar.py

Google Calendar integration for sellers and buyers.

Handles:
- refresh token encryption at rest (Fernet)
- calendar event create/delete, with a Google Meet link on request
- free/busy lookup used by seller availability
"""

import base64
import hashlib
import logging
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from ..config import settings
from ..models import Appointments, Users

logger = logging.getLogger(__name__)

TOKEN_URI = "https://oauth2.googleapis.com/token"
CALENDAR_ID = "primary"


# ── Token encryption ─────────────────────────────────────────────────────


def _cipher() -> Fernet:
    # Any configured secret is stretched to a valid 32-byte Fernet key
    secret = settings.token_encryption_key or "default-key-change-in-production!"
    key = base64.urlsafe_b64encode(hashlib.sha256(secret.encode()).digest())
    return Fernet(key)


def encrypt_token(token: str | None) -> str | None:
    if not token:
        return None
    return _cipher().encrypt(token.encode()).decode()


def decrypt_token(encrypted: str | None) -> str | None:
    """Plain token, or None if missing or undecryptable (re-auth needed)."""
    if not encrypted:
        return None
    try:
        return _cipher().decrypt(encrypted.encode()).decode()
    except InvalidToken:
        logger.error("Unable to decrypt stored Google refresh token")
        return None


# ── API client ───────────────────────────────────────────────────────────


def _get_calendar_service(access_token: str | None, refresh_token: str | None):
    """Build Google Calendar API service client."""
    credentials = Credentials(
        token=access_token,
        refresh_token=refresh_token,
        token_uri=TOKEN_URI,
        client_id=settings.google_client_id,
        client_secret=settings.google_client_secret,
    )
    return build("calendar", "v3", credentials=credentials, cache_discovery=False)


def seller_tokens(seller: Users) -> Optional[tuple[str | None, str]]:
    refresh_token = decrypt_token(seller.refresh_token_encrypted)
    if not refresh_token:
        return None
    return None, refresh_token


def buyer_tokens(buyer: Users) -> Optional[tuple[str | None, str | None]]:
    if not buyer.google_access_token and not buyer.google_refresh_token:
        return None
    return buyer.google_access_token, buyer.google_refresh_token


def _extract_meet_link(event: dict) -> str | None:
    if event.get("hangoutLink"):
        return event["hangoutLink"]
    entry_points = (event.get("conferenceData") or {}).get("entryPoints") or []
    return entry_points[0].get("uri") if entry_points else None


def build_event_body(
    appointment: Appointments,
    attendee_email: str | None,
    description: str,
    with_meet: bool = False,
) -> dict:
    event = {
        "summary": appointment.title,
        "description": description,
        "start": {
            "dateTime": appointment.start.isoformat(),
            "timeZone": appointment.timezone or "UTC",
        },
        "end": {
            "dateTime": appointment.end.isoformat(),
            "timeZone": appointment.timezone or "UTC",
        },
    }
    if attendee_email:
        event["attendees"] = [{"email": attendee_email}]
    if with_meet:
        event["conferenceData"] = {
            "createRequest": {
                "requestId": f"meet-{appointment.id}-{uuid.uuid4().hex[:8]}",
                "conferenceSolutionKey": {"type": "hangoutsMeet"},
            }
        }
    return event


def create_event(
    access_token: str | None,
    refresh_token: str | None,
    body: dict,
) -> dict:
    """
    Insert an event on the primary calendar.

    Returns:
        {"event_id": str, "meet_link": str | None}

    Raises:
        HttpError: If API call fails
    """
    service = _get_calendar_service(access_token, refresh_token)
    try:
        created = service.events().insert(
            calendarId=CALENDAR_ID,
            body=body,
            conferenceDataVersion=1 if "conferenceData" in body else 0,
            sendUpdates="all",
        ).execute()
    except HttpError as e:
        logger.error(f"Failed to create calendar event: {e}")
        raise

    logger.info(f"Created Google Calendar event: {created.get('id')}")
    return {"event_id": created.get("id"), "meet_link": _extract_meet_link(created)}


def delete_event(access_token: str | None, refresh_token: str | None, event_id: str) -> bool:
    """
    Delete an event. An event that is already gone counts as deleted.

    Raises:
        HttpError: on any other API failure
    """
    service = _get_calendar_service(access_token, refresh_token)
    try:
        service.events().delete(
            calendarId=CALENDAR_ID, eventId=event_id, sendUpdates="all"
        ).execute()
        logger.info(f"Deleted Google Calendar event: {event_id}")
        return True
    except HttpError as e:
        if e.resp.status in (404, 410):
            logger.info(f"Google Calendar event already gone: {event_id}")
            return True
        logger.error(f"Failed to delete calendar event {event_id}: {e}")
        raise


def get_busy_intervals(
    access_token: str | None,
    refresh_token: str | None,
    time_min: datetime,
    time_max: datetime,
) -> list[tuple[datetime, datetime]]:
    """Busy intervals on the primary calendar, as naive UTC datetimes."""
    service = _get_calendar_service(access_token, refresh_token)
    response = service.freebusy().query(body={
        "timeMin": time_min.isoformat() + "Z",
        "timeMax": time_max.isoformat() + "Z",
        "items": [{"id": CALENDAR_ID}],
    }).execute()

    busy = response.get("calendars", {}).get(CALENDAR_ID, {}).get("busy", [])
    return [(_parse_rfc3339(b["start"]), _parse_rfc3339(b["end"])) for b in busy]


def _parse_rfc3339(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def google_busy_provider(seller: Users, target_date: date) -> list[tuple[datetime, datetime]]:
    """Busy provider for availability: the seller's calendar for one day."""
    tokens = seller_tokens(seller)
    if tokens is None:
        return []
    day_start = datetime.combine(target_date, datetime.min.time())
    return get_busy_intervals(*tokens, day_start, day_start + timedelta(days=1))


class GoogleCalendarClient:
    """Calendar side of the notification worker, backed by Google Calendar."""

    def create_seller_event(self, appointment: Appointments) -> dict | None:
        tokens = seller_tokens(appointment.seller)
        if tokens is None:
            raise ValueError("No usable refresh token for seller")
        body = build_event_body(
            appointment,
            appointment.buyer.email,
            f"Meeting with {appointment.buyer.name}\n\nBooking ID: {appointment.id}",
            with_meet=True,
        )
        return create_event(*tokens, body)

    def create_buyer_event(self, appointment: Appointments, meet_link: str | None) -> dict | None:
        tokens = buyer_tokens(appointment.buyer)
        if tokens is None:
            raise ValueError("No Google credentials for buyer")
        description = f"Meeting with {appointment.seller.name}"
        if meet_link:
            description += f"\n\nJoin meeting: {meet_link}"
        description += f"\n\nBooking ID: {appointment.id}"
        body = build_event_body(
            appointment,
            appointment.seller.email,
            description,
            with_meet=not meet_link,
        )
        return create_event(*tokens, body)

    def delete_seller_event(self, seller: Users, event_id: str) -> bool:
        tokens = seller_tokens(seller)
        if tokens is None:
            raise ValueError("No usable refresh token for seller")
        return delete_event(*tokens, event_id)

    def delete_buyer_event(self, buyer: Users, event_id: str) -> bool:
        tokens = buyer_tokens(buyer)
        if tokens is None:
            raise ValueError("No Google credentials for buyer")
        return delete_event(*tokens, event_id)
