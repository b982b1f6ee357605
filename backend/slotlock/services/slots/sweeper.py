"""
Slot lock expiry sweeper.

Periodically cancels durable locks that are still LOCKED after their
expires_at. The cache drops expired holds on its own; this keeps the
slot_locks table in line for everything that reads it directly
(confirm, status fallback, monitoring).

Runs as an asyncio task in the application lifespan.
Uses synchronous DB (via asyncio.to_thread).
"""

import asyncio
import logging
from datetime import datetime
from typing import Callable

from sqlalchemy.orm import sessionmaker

from ...models import LockStatus, SlotLocks

logger = logging.getLogger(__name__)

CHECK_INTERVAL = 60  # seconds between sweeps


class ExpirySweeper:
    """Background reconciliation of expired LOCKED rows."""

    def __init__(
        self,
        session_factory: sessionmaker,
        interval: float = CHECK_INTERVAL,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.session_factory = session_factory
        self.interval = interval
        self.clock = clock
        self._stop = asyncio.Event()
        self._running = False
        self.last_run: datetime | None = None
        self.last_count = 0
        self.last_error: str | None = None

    def sweep_once(self) -> int:
        """
        Cancel every LOCKED row whose expires_at has passed (synchronous).

        Each row is conditioned on still being LOCKED, so concurrent sweeps
        and concurrent confirm/cancel calls never fight over a row.
        """
        now = self.clock()
        with self.session_factory() as db:
            count = (
                db.query(SlotLocks)
                .filter(SlotLocks.status == LockStatus.LOCKED, SlotLocks.expires_at <= now)
                .update(
                    {"status": LockStatus.CANCELLED, "updated_at": now},
                    synchronize_session=False,
                )
            )
            db.commit()

        self.last_run = now
        self.last_count = count
        if count > 0:
            logger.info(f"Cleaned up {count} expired slot locks")
        return count

    async def run(self) -> None:
        """
        Sweep every `interval` seconds until stop() is called.

        A failed sweep is logged and the loop carries on; stop() lets an
        in-flight sweep finish before returning.
        """
        self._stop.clear()
        self._running = True
        logger.info("expiry_sweeper started")

        try:
            while not self._stop.is_set():
                try:
                    await asyncio.to_thread(self.sweep_once)
                    self.last_error = None
                except asyncio.CancelledError:
                    logger.info("expiry_sweeper cancelled")
                    raise
                except Exception as e:
                    self.last_error = str(e)
                    logger.exception("expiry_sweeper error")

                try:
                    await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            self._running = False
            logger.info("expiry_sweeper stopped")

    def stop(self) -> None:
        self._stop.set()

    def status(self) -> dict:
        return {
            "is_running": self._running,
            "interval_seconds": self.interval,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "last_count": self.last_count,
            "last_error": self.last_error,
        }
