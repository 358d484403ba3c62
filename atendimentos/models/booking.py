"""Booking model definitions."""

from datetime import datetime

from sqlalchemy import Column, Date, DateTime, Index, Integer, String, text
from atendimentos.database import Base

BOOKING_STATUSES = ('pending', 'confirmed', 'cancelled', 'completed', 'no_show')

_ACTIVE_STATUS_CLAUSE = text("status IN ('pending', 'confirmed')")


class Booking(Base):
    """Represents a customer's reservation of a service at a house."""
    __tablename__ = "bookings"
    __table_args__ = (
        Index("idx_bookings_window", "house_id", "service_id", "scheduled_date"),
        # One active booking per start time; cancelled rows free the slot again.
        Index(
            "uq_bookings_active_slot",
            "house_id",
            "service_id",
            "scheduled_date",
            "scheduled_time",
            unique=True,
            sqlite_where=_ACTIVE_STATUS_CLAUSE,
            postgresql_where=_ACTIVE_STATUS_CLAUSE,
        ),
    )

    id = Column(Integer, primary_key=True)
    house_id = Column(String, nullable=False)
    service_id = Column(String, nullable=False)
    customer_name = Column(String)
    customer_email = Column(String, index=True)
    customer_phone = Column(String)
    customer_notes = Column(String)
    service_duration = Column(Integer)
    scheduled_date = Column(Date, nullable=False)
    scheduled_time = Column(String, nullable=False)  # HH:MM
    end_time = Column(String, nullable=False)  # HH:MM
    timezone = Column(String)
    status = Column(String, default="pending")
    cancellation_reason = Column(String)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)
    confirmed_at = Column(DateTime)
    cancelled_at = Column(DateTime)
    completed_at = Column(DateTime)
