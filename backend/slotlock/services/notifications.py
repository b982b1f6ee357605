"""
Notification worker.

Consumes jobs:appointments and performs the slow side effects of a booking
outside the request path:

appointment.confirmed
    1. seller calendar event (+ Google Meet link)
    2. buyer calendar event (reuses the seller's Meet link when present)
    3. persist event ids / meet link on the appointment
    4. confirmation email to the buyer

appointment.cancelled
    delete the seller and buyer calendar events

Every step that already left its mark on the appointment is skipped, so a
retried job only redoes what failed. A job ends as completed,
partial_success or failed; failed steps are retried by re-queueing the job
until NOTIFICATION_MAX_ATTEMPTS is reached.

Runs as an asyncio task in the application lifespan.
Uses synchronous DB (via asyncio.to_thread).
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from sqlalchemy.orm import sessionmaker

from ..models import Appointments, Users
from .email_service import build_confirmation_email
from .events import JobQueue, enqueue_job
from .slots.committer import JOB_APPOINTMENT_CANCELLED, JOB_APPOINTMENT_CONFIRMED

logger = logging.getLogger(__name__)

POLL_INTERVAL = 1.0  # seconds to wait when the queue is empty

STEP_DONE = "done"
STEP_SKIPPED = "skipped"
STEP_FAILED = "failed"


class JobStatus(str, Enum):
    COMPLETED = "completed"
    PARTIAL_SUCCESS = "partial_success"
    FAILED = "failed"


class CalendarClient(Protocol):
    """Calendar operations the worker needs. Event creators return {"event_id", "meet_link"}."""

    def create_seller_event(self, appointment: Appointments) -> dict | None:
        ...

    def create_buyer_event(self, appointment: Appointments, meet_link: str | None) -> dict | None:
        ...

    def delete_seller_event(self, seller: Users, event_id: str) -> bool:
        ...

    def delete_buyer_event(self, buyer: Users, event_id: str) -> bool:
        ...


class Mailer(Protocol):
    def is_configured(self) -> bool:
        ...

    def send(self, to: str, subject: str, html_content: str) -> None:
        ...


@dataclass
class JobResult:
    job_type: str
    appointment_id: int | None
    status: JobStatus
    steps: dict[str, str] = field(default_factory=dict)
    attempt: int = 1
    requeued: bool = False


def overall_status(steps: dict[str, str]) -> JobStatus:
    outcomes = set(steps.values())
    if STEP_FAILED not in outcomes:
        return JobStatus.COMPLETED
    if STEP_DONE in outcomes:
        return JobStatus.PARTIAL_SUCCESS
    return JobStatus.FAILED


class NotificationWorker:
    def __init__(
        self,
        session_factory: sessionmaker,
        queue: JobQueue,
        calendar: CalendarClient | None = None,
        mailer: Mailer | None = None,
        max_attempts: int = 3,
        poll_interval: float = POLL_INTERVAL,
    ):
        self.session_factory = session_factory
        self.queue = queue
        self.calendar = calendar
        self.mailer = mailer
        self.max_attempts = max_attempts
        self.poll_interval = poll_interval
        self._stop = asyncio.Event()
        self._running = False
        self.counts = {status.value: 0 for status in JobStatus}

    # ── Processing ───────────────────────────────────────────────────────

    def process_next(self) -> JobResult | None:
        """Pop and handle one job (synchronous). None if the queue is empty."""
        job = self.queue.pop()
        if job is None:
            return None
        return self.handle(job)

    def handle(self, job: dict) -> JobResult:
        job_type = job.get("type")
        attempt = int(job.get("attempt", 1))
        appointment_id = job.get("appointment_id")

        if job_type == JOB_APPOINTMENT_CONFIRMED:
            steps = self._handle_confirmed(appointment_id)
        elif job_type == JOB_APPOINTMENT_CANCELLED:
            steps = self._handle_cancelled(job)
        else:
            logger.warning(f"Unknown job type dropped: {job_type}")
            steps = {"dispatch": STEP_FAILED}

        result = JobResult(
            job_type=job_type,
            appointment_id=appointment_id,
            status=overall_status(steps),
            steps=steps,
            attempt=attempt,
        )

        known = job_type in (JOB_APPOINTMENT_CONFIRMED, JOB_APPOINTMENT_CANCELLED)
        if result.status != JobStatus.COMPLETED and known and attempt < self.max_attempts:
            payload = {k: v for k, v in job.items() if k not in ("type", "attempt", "ts")}
            result.requeued = enqueue_job(self.queue, job_type, payload, attempt=attempt + 1)

        self.counts[result.status.value] += 1
        logger.info(
            f"Job {job_type} appointment={appointment_id} attempt={attempt}: "
            f"{result.status.value} {steps}"
        )
        return result

    def _handle_confirmed(self, appointment_id: int | None) -> dict[str, str]:
        steps: dict[str, str] = {}
        with self.session_factory() as db:
            appointment = db.get(Appointments, appointment_id) if appointment_id is not None else None
            if appointment is None:
                # Cancelled before the worker got to it
                logger.info(f"Appointment {appointment_id} no longer exists; nothing to notify")
                return {"appointment": STEP_SKIPPED}

            steps["seller_calendar"] = self._seller_event(appointment)
            steps["buyer_calendar"] = self._buyer_event(appointment)

            try:
                db.commit()
                steps["persist"] = STEP_DONE
            except Exception:
                db.rollback()
                logger.exception(f"Failed to store calendar data for appointment {appointment_id}")
                steps["persist"] = STEP_FAILED
                return steps

            steps["email"] = self._confirmation_email(appointment)
            if steps["email"] == STEP_DONE:
                try:
                    db.commit()
                except Exception:
                    db.rollback()
                    logger.exception(f"Failed to record confirmation email for appointment {appointment_id}")
                    steps["email"] = STEP_FAILED
        return steps

    def _seller_event(self, appointment: Appointments) -> str:
        if appointment.google_event_id or self.calendar is None:
            return STEP_SKIPPED
        try:
            created = self.calendar.create_seller_event(appointment)
        except Exception as e:
            logger.warning(f"Seller calendar event failed for appointment {appointment.id}: {e}")
            return STEP_FAILED
        if not created:
            return STEP_SKIPPED
        appointment.google_event_id = created.get("event_id")
        if created.get("meet_link"):
            appointment.meet_link = created["meet_link"]
        return STEP_DONE

    def _buyer_event(self, appointment: Appointments) -> str:
        if appointment.buyer_google_event_id or self.calendar is None:
            return STEP_SKIPPED
        try:
            created = self.calendar.create_buyer_event(appointment, appointment.meet_link)
        except Exception as e:
            logger.warning(f"Buyer calendar event failed for appointment {appointment.id}: {e}")
            return STEP_FAILED
        if not created:
            return STEP_SKIPPED
        appointment.buyer_google_event_id = created.get("event_id")
        if not appointment.meet_link and created.get("meet_link"):
            appointment.meet_link = created["meet_link"]
        return STEP_DONE

    def _confirmation_email(self, appointment: Appointments) -> str:
        if appointment.confirmation_email:
            return STEP_SKIPPED
        if self.mailer is None or not self.mailer.is_configured() or not appointment.buyer.email:
            return STEP_SKIPPED
        subject, body = build_confirmation_email(appointment, appointment.meet_link)
        try:
            self.mailer.send(appointment.buyer.email, subject, body)
        except Exception as e:
            logger.warning(f"Confirmation email failed for appointment {appointment.id}: {e}")
            return STEP_FAILED
        appointment.confirmation_email = body
        return STEP_DONE

    def _handle_cancelled(self, job: dict) -> dict[str, str]:
        steps: dict[str, str] = {}
        if self.calendar is None:
            return {"seller_calendar": STEP_SKIPPED, "buyer_calendar": STEP_SKIPPED}

        with self.session_factory() as db:
            targets = [
                ("seller_calendar", job.get("seller_id"), job.get("google_event_id"),
                 self.calendar.delete_seller_event),
                ("buyer_calendar", job.get("buyer_id"), job.get("buyer_google_event_id"),
                 self.calendar.delete_buyer_event),
            ]
            for step, user_id, event_id, delete in targets:
                user = db.get(Users, user_id) if user_id else None
                if not event_id or user is None:
                    steps[step] = STEP_SKIPPED
                    continue
                try:
                    delete(user, event_id)
                    steps[step] = STEP_DONE
                except Exception as e:
                    logger.warning(f"Calendar event {event_id} delete failed: {e}")
                    steps[step] = STEP_FAILED
        return steps

    # ── Loop ─────────────────────────────────────────────────────────────

    async def run(self) -> None:
        """Drain the queue until stop() is called; idle-poll when empty."""
        self._stop.clear()
        self._running = True
        logger.info("notification_worker started")

        try:
            while not self._stop.is_set():
                try:
                    result = await asyncio.to_thread(self.process_next)
                except asyncio.CancelledError:
                    logger.info("notification_worker cancelled")
                    raise
                except Exception:
                    logger.exception("notification_worker error")
                    result = None

                if result is None:
                    try:
                        await asyncio.wait_for(self._stop.wait(), timeout=self.poll_interval)
                    except asyncio.TimeoutError:
                        pass
        finally:
            self._running = False
            logger.info("notification_worker stopped")

    def stop(self) -> None:
        self._stop.set()

    def status(self) -> dict:
        try:
            pending = self.queue.size()
        except Exception:
            logger.exception("Failed to read job queue size")
            pending = None
        return {
            "is_running": self._running,
            "pending": pending,
            "processed": dict(self.counts),
        }
