from datetime import datetime, timedelta

import pytest

from slotlock.database import create_db_engine, create_session_factory
from slotlock.models import Appointments, Base, SellerAvailability, UserRole, Users
from slotlock.services.events import MemoryJobQueue
from slotlock.services.slots import (
    AppointmentCommitter,
    CacheRegistry,
    LockConfig,
    MemoryCache,
    SlotLockManager,
)

from .helpers import BUYER_A, BUYER_B, SELLER, START


class FakeClock:
    """Shared wall clock (now) and monotonic clock (time) that only move on advance()."""

    def __init__(self, start: datetime = START):
        self.current = start
        self._offset = 0.0

    def now(self) -> datetime:
        return self.current

    def time(self) -> float:
        return self._offset

    def advance(self, **kwargs) -> None:
        delta = timedelta(**kwargs)
        self.current += delta
        self._offset += delta.total_seconds()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def users(session_factory):
    with session_factory() as session:
        session.add_all([
            Users(id=SELLER, name="Sam Seller", email="sam@example.com",
                  role=UserRole.SELLER, meeting_duration=30),
            Users(id=BUYER_A, name="Alice", email="alice@example.com", role=UserRole.BUYER),
            Users(id=BUYER_B, name="Bob", email="bob@example.com", role=UserRole.BUYER),
        ])
        # Monday 09:00-11:00
        session.add(SellerAvailability(
            seller_id=SELLER, day_of_week=0, start_time="09:00", end_time="11:00",
        ))
        session.commit()


@pytest.fixture
def config():
    return LockConfig(lock_duration_minutes=5, sweep_interval_seconds=60,
                      availability_ttl_seconds=60, default_meeting_duration=30)


@pytest.fixture
def caches(clock):
    return CacheRegistry(
        general=MemoryCache(default_ttl=60, clock=clock.time, name="cache"),
        slots=MemoryCache(default_ttl=300, clock=clock.time, name="slot-cache"),
    )


@pytest.fixture
def jobs():
    return MemoryJobQueue()


@pytest.fixture
def manager(session_factory, caches, config, clock, users):
    return SlotLockManager(session_factory, caches.slots, config=config, clock=clock.now)


@pytest.fixture
def committer(session_factory, caches, jobs, config, clock, users):
    return AppointmentCommitter(
        session_factory,
        caches.slots,
        general_cache=caches.general,
        jobs=jobs,
        config=config,
        clock=clock.now,
    )


@pytest.fixture
def add_appointment(session_factory, clock):
    """Insert an appointment directly, bypassing the lock flow."""
    def _add(start: datetime, buyer_id: str = BUYER_B, minutes: int = 30) -> int:
        with session_factory() as session:
            appointment = Appointments(
                seller_id=SELLER, buyer_id=buyer_id, title="Existing",
                start=start, end=start + timedelta(minutes=minutes),
                duration=minutes, created_at=clock.now(),
            )
            session.add(appointment)
            session.commit()
            return appointment.id
    return _add
