import enum

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()
metadata = Base.metadata


class UserRole(str, enum.Enum):
    BUYER = "buyer"
    SELLER = "seller"


class LockStatus(str, enum.Enum):
    LOCKED = "LOCKED"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"


class Users(Base):
    __tablename__ = 'users'

    id = Column(Text, primary_key=True)
    name = Column(Text, nullable=False)
    email = Column(Text, nullable=False, unique=True)
    role = Column(Enum(UserRole, native_enum=False, length=16,
                       values_callable=lambda e: [m.value for m in e]),
                  nullable=False, server_default=text("'buyer'"))
    meeting_duration = Column(Integer)
    timezone = Column(Text, nullable=False, server_default=text("'UTC'"))
    # Fernet-encrypted Google refresh token (sellers only)
    refresh_token_encrypted = Column(Text)
    # Buyer's own Google tokens, when they signed in with Google
    google_access_token = Column(Text)
    google_refresh_token = Column(Text)
    created_at = Column(DateTime, server_default=text('CURRENT_TIMESTAMP'))

    weekly_availability = relationship('SellerAvailability', back_populates='seller')
    date_availability = relationship('SellerDateAvailability', back_populates='seller')


class SellerAvailability(Base):
    """Recurring weekly window. day_of_week follows date.weekday(): 0 = Monday."""
    __tablename__ = 'seller_availability'

    id = Column(Integer, primary_key=True)
    seller_id = Column(ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    day_of_week = Column(Integer, nullable=False)
    start_time = Column(Text, nullable=False)
    end_time = Column(Text, nullable=False)

    seller = relationship('Users', back_populates='weekly_availability')


class SellerDateAvailability(Base):
    """One-off window for a calendar date; replaces the weekly rules for that date."""
    __tablename__ = 'seller_date_availability'
    __table_args__ = (
        UniqueConstraint('seller_id', 'date', name='uq_seller_date_availability'),
    )

    id = Column(Integer, primary_key=True)
    seller_id = Column(ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    date = Column(Date, nullable=False)
    start_time = Column(Text, nullable=False)
    end_time = Column(Text, nullable=False)

    seller = relationship('Users', back_populates='date_availability')


class Appointments(Base):
    __tablename__ = 'appointments'
    __table_args__ = (
        UniqueConstraint('seller_id', 'start', name='uq_appointments_seller_start'),
    )

    id = Column(Integer, primary_key=True)
    seller_id = Column(ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    buyer_id = Column(ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    title = Column(Text, nullable=False)
    start = Column(DateTime, nullable=False)
    end = Column(DateTime, nullable=False)
    duration = Column(Integer, nullable=False)
    timezone = Column(Text, nullable=False, server_default=text("'UTC'"))
    # Filled by the notification worker after commit
    google_event_id = Column(Text)
    buyer_google_event_id = Column(Text)
    meet_link = Column(Text)
    confirmation_email = Column(Text)
    created_at = Column(DateTime, server_default=text('CURRENT_TIMESTAMP'))

    seller = relationship('Users', foreign_keys=[seller_id])
    buyer = relationship('Users', foreign_keys=[buyer_id])
    slot_lock = relationship('SlotLocks', back_populates='appointment', uselist=False)


class SlotLocks(Base):
    __tablename__ = 'slot_locks'
    __table_args__ = (
        # At most one LOCKED/CONFIRMED row per slot identity
        Index(
            'uq_slot_locks_active_identity',
            'seller_id', 'date', 'start_time',
            unique=True,
            sqlite_where=text("status != 'CANCELLED'"),
            postgresql_where=text("status != 'CANCELLED'"),
        ),
        Index('ix_slot_locks_status_expires', 'status', 'expires_at'),
    )

    id = Column(Text, primary_key=True)
    seller_id = Column(ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    buyer_id = Column(ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    date = Column(Date, nullable=False)
    start_time = Column(Text, nullable=False)
    end_time = Column(Text, nullable=False)
    status = Column(Enum(LockStatus, native_enum=False, length=16), nullable=False,
                    server_default=text("'LOCKED'"))
    locked_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    appointment_id = Column(ForeignKey('appointments.id', ondelete='SET NULL'))
    updated_at = Column(DateTime)

    seller = relationship('Users', foreign_keys=[seller_id])
    buyer = relationship('Users', foreign_keys=[buyer_id])
    appointment = relationship('Appointments', back_populates='slot_lock')
