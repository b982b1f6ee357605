# backend/slotlock/dependencies.py
"""
Service wiring.

One BookingServices instance per application, built in the lifespan and
kept on app.state; routers reach it through get_services.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from fastapi import Request
from sqlalchemy.orm import sessionmaker

from .config import settings
from .services.events import JobQueue, MemoryJobQueue, RedisJobQueue
from .services.notifications import CalendarClient, Mailer, NotificationWorker
from .services.slots import (
    AppointmentCommitter,
    CacheRegistry,
    ExpirySweeper,
    LockConfig,
    SlotLockManager,
    build_caches,
    get_lock_config,
)
from .services.slots.availability import BusyProvider


@dataclass
class BookingServices:
    session_factory: sessionmaker
    config: LockConfig
    caches: CacheRegistry
    jobs: JobQueue
    locks: SlotLockManager
    committer: AppointmentCommitter
    sweeper: ExpirySweeper
    worker: NotificationWorker
    busy_provider: BusyProvider | None = None

    def start(self) -> None:
        self.caches.start()

    def close(self) -> None:
        self.sweeper.stop()
        self.worker.stop()
        self.caches.close()


def build_services(
    session_factory: sessionmaker,
    redis=None,
    config: LockConfig | None = None,
    clock: Callable[[], datetime] = datetime.now,
    calendar: CalendarClient | None = None,
    mailer: Mailer | None = None,
    busy_provider: BusyProvider | None = None,
    caches: CacheRegistry | None = None,
) -> BookingServices:
    config = config or get_lock_config()
    caches = caches or build_caches(
        redis,
        general_ttl=settings.cache_ttl_general,
        slot_ttl=settings.cache_ttl_slot,
        check_period=settings.cache_check_period,
    )
    jobs = RedisJobQueue(redis) if redis is not None else MemoryJobQueue()

    return BookingServices(
        session_factory=session_factory,
        config=config,
        caches=caches,
        jobs=jobs,
        locks=SlotLockManager(session_factory, caches.slots, config=config, clock=clock),
        committer=AppointmentCommitter(
            session_factory,
            caches.slots,
            general_cache=caches.general,
            jobs=jobs,
            config=config,
            clock=clock,
        ),
        sweeper=ExpirySweeper(session_factory, interval=config.sweep_interval_seconds, clock=clock),
        worker=NotificationWorker(
            session_factory,
            jobs,
            calendar=calendar,
            mailer=mailer,
            max_attempts=settings.notification_max_attempts,
        ),
        busy_provider=busy_provider,
    )


def get_services(request: Request) -> BookingServices:
    return request.app.state.services
