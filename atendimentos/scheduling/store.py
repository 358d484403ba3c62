"""
SQL-backed booking store.

Supplies the existing bookings the availability calculator checks against,
the per-house weekly template, and the booking write path. The write path is
where double booking is prevented: an overlap check inside the insert's
transaction, backed by a partial unique index on active slots.
"""

import logging
from datetime import date, datetime
from typing import Sequence

from fastapi.concurrency import run_in_threadpool
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from atendimentos.core import config
from atendimentos.models.booking import BOOKING_STATUSES, Booking
from atendimentos.models.house_availability import HouseAvailability
from atendimentos.scheduling.availability import (
    ACTIVE_BOOKING_STATUSES,
    MINUTES_PER_DAY,
    BookedInterval,
    DayAvailability,
    InvalidDurationError,
    minutes_to_time,
    time_to_minutes,
)

logger = logging.getLogger(__name__)


class BookingStoreError(Exception):
    """Base class for booking store failures."""


class BookingNotFoundError(BookingStoreError):
    pass


class BookingConflictError(BookingStoreError):
    pass


class InvalidStatusTransitionError(BookingStoreError):
    pass


# completed and no_show are final. A cancelled booking may be reactivated.
ALLOWED_STATUS_TRANSITIONS = {
    'pending': ('confirmed', 'cancelled'),
    'confirmed': ('cancelled', 'completed', 'no_show'),
    'cancelled': ('pending', 'confirmed'),
    'completed': (),
    'no_show': (),
}


class SqlBookingStore:
    def __init__(self, db: Session):
        self.db = db

    # ── Reads for slot computation ───────────────────────────────────────

    async def fetch_bookings_for_window(
        self,
        service_id: str,
        house_id: str,
        start: date,
        end: date,
    ) -> list[BookedInterval]:
        return await run_in_threadpool(self.list_bookings_for_window, service_id, house_id, start, end)

    def list_bookings_for_window(
        self,
        service_id: str,
        house_id: str,
        start: date,
        end: date,
    ) -> list[BookedInterval]:
        """Active bookings of a service at a house with a date in [start, end]."""
        rows = self._active_bookings_query(service_id, house_id, start, end).all()

        intervals: list[BookedInterval] = []
        for row in rows:
            try:
                intervals.append(BookedInterval.from_record(row))
            except ValueError:
                logger.warning('Skipping malformed booking %s for house %s', row.id, house_id)

        return intervals

    def _active_bookings_query(self, service_id: str, house_id: str, start: date, end: date):
        return self.db.query(Booking).filter(
            Booking.service_id == service_id,
            Booking.house_id == house_id,
            Booking.status.in_(ACTIVE_BOOKING_STATUSES),
            Booking.scheduled_date >= start,
            Booking.scheduled_date <= end,
        ).order_by(Booking.scheduled_date.asc(), Booking.scheduled_time.asc())

    # ── Weekly template ──────────────────────────────────────────────────

    def get_weekly_availability(self, house_id: str) -> list[DayAvailability] | None:
        """Stored template of a house, or None when the house has not configured one."""
        rows = self.db.query(HouseAvailability).filter(
            HouseAvailability.house_id == house_id,
        ).order_by(HouseAvailability.day_of_week.asc()).all()

        if not rows:
            return None

        days: list[DayAvailability] = []
        for row in rows:
            try:
                days.append(
                    DayAvailability(
                        day_of_week=row.day_of_week,
                        start_time=row.start_time,
                        end_time=row.end_time,
                        is_active=bool(row.is_active),
                        break_start=row.break_start,
                        break_end=row.break_end,
                    )
                )
            except ValueError:
                logger.warning('Skipping invalid availability for house %s on weekday %s', house_id, row.day_of_week)

        return days

    def save_weekly_availability(self, house_id: str, days: Sequence[DayAvailability]) -> list[DayAvailability]:
        """Replace the stored template of a house."""
        try:
            self.db.query(HouseAvailability).filter(HouseAvailability.house_id == house_id).delete()
            for day in days:
                self.db.add(
                    HouseAvailability(
                        house_id=house_id,
                        day_of_week=day.day_of_week,
                        start_time=day.start_time,
                        end_time=day.end_time,
                        is_active=day.is_active,
                        break_start=day.break_start,
                        break_end=day.break_end,
                    )
                )
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise

        logger.info('Saved availability for house %s (%d days)', house_id, len(days))
        return sorted(days, key=lambda day: day.day_of_week)

    # ── Bookings ─────────────────────────────────────────────────────────

    def create_booking(
        self,
        *,
        house_id: str,
        service_id: str,
        scheduled_date: date,
        scheduled_time: str,
        duration_minutes: int,
        customer_name: str,
        customer_email: str,
        customer_phone: str | None = None,
        customer_notes: str | None = None,
        status: str = 'pending',
        timezone: str | None = None,
    ) -> Booking:
        if duration_minutes <= 0:
            raise InvalidDurationError('Service duration must be a positive number of minutes.')
        if status not in ACTIVE_BOOKING_STATUSES:
            raise ValueError(f'New bookings must be pending or confirmed, got {status!r}.')

        start_minutes = time_to_minutes(scheduled_time)
        end_minutes = start_minutes + duration_minutes
        if end_minutes > MINUTES_PER_DAY:
            raise ValueError('Bookings cannot end after midnight.')

        try:
            existing = self._active_bookings_query(service_id, house_id, scheduled_date, scheduled_date).all()
            for booking in existing:
                if (
                    start_minutes < time_to_minutes(booking.end_time)
                    and end_minutes > time_to_minutes(booking.scheduled_time)
                ):
                    raise BookingConflictError('This time is already booked.')

            now = datetime.now()
            booking = Booking(
                house_id=house_id,
                service_id=service_id,
                customer_name=customer_name,
                customer_email=customer_email,
                customer_phone=customer_phone,
                customer_notes=customer_notes,
                service_duration=duration_minutes,
                scheduled_date=scheduled_date,
                scheduled_time=minutes_to_time(start_minutes),
                end_time=minutes_to_time(end_minutes),
                timezone=timezone or config.DEFAULT_TIMEZONE,
                status=status,
                created_at=now,
                updated_at=now,
                confirmed_at=now if status == 'confirmed' else None,
            )
            self.db.add(booking)
            self.db.commit()
            self.db.refresh(booking)
        except IntegrityError as exc:
            self.db.rollback()
            raise BookingConflictError('This time is already booked.') from exc
        except SQLAlchemyError:
            self.db.rollback()
            raise

        logger.info(
            'Created booking %s for service %s at house %s on %s %s',
            booking.id, service_id, house_id, scheduled_date.isoformat(), booking.scheduled_time,
        )
        return booking

    def get_booking(self, booking_id: int) -> Booking:
        booking = self.db.query(Booking).filter(Booking.id == booking_id).first()
        if booking is None:
            raise BookingNotFoundError('Booking not found.')
        return booking

    def list_bookings(
        self,
        house_id: str | None = None,
        customer_email: str | None = None,
        status: str | None = None,
    ) -> list[Booking]:
        query = self.db.query(Booking)
        if house_id is not None:
            query = query.filter(Booking.house_id == house_id)
        if customer_email is not None:
            query = query.filter(Booking.customer_email == customer_email)
        if status is not None:
            query = query.filter(Booking.status == status)

        return query.order_by(Booking.scheduled_date.desc(), Booking.scheduled_time.desc()).all()

    def update_booking_status(
        self,
        booking_id: int,
        status: str,
        cancellation_reason: str | None = None,
        today: date | None = None,
    ) -> Booking:
        if status not in BOOKING_STATUSES:
            raise ValueError(f'Invalid booking status {status!r}.')

        booking = self.get_booking(booking_id)
        if status not in ALLOWED_STATUS_TRANSITIONS.get(booking.status, ()):
            raise InvalidStatusTransitionError(f'A {booking.status} booking cannot become {status}.')

        reactivating = status in ACTIVE_BOOKING_STATUSES and booking.status not in ACTIVE_BOOKING_STATUSES
        today = today or date.today()
        if reactivating and booking.scheduled_date < today:
            raise InvalidStatusTransitionError('Bookings in the past cannot be reactivated.')

        now = datetime.now()

        try:
            if reactivating:
                # Must not collide with a booking made since.
                for other in self._active_bookings_query(
                    booking.service_id, booking.house_id, booking.scheduled_date, booking.scheduled_date
                ).all():
                    if (
                        time_to_minutes(booking.scheduled_time) < time_to_minutes(other.end_time)
                        and time_to_minutes(booking.end_time) > time_to_minutes(other.scheduled_time)
                    ):
                        raise BookingConflictError('This time is already booked.')

            booking.status = status
            booking.updated_at = now
            if status == 'confirmed':
                booking.confirmed_at = now
            elif status == 'cancelled':
                booking.cancelled_at = now
                booking.cancellation_reason = cancellation_reason
            elif status == 'completed':
                booking.completed_at = now

            self.db.commit()
            self.db.refresh(booking)
        except IntegrityError as exc:
            self.db.rollback()
            raise BookingConflictError('This time is already booked.') from exc
        except SQLAlchemyError:
            self.db.rollback()
            raise

        logger.info('Booking %s is now %s', booking_id, status)
        return booking

    def cancel_booking(self, booking_id: int, reason: str | None = None, today: date | None = None) -> Booking:
        return self.update_booking_status(booking_id, 'cancelled', cancellation_reason=reason, today=today)
