from datetime import date, datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from atendimentos.models.booking import BOOKING_STATUSES
from atendimentos.routes.dependencies import current_time, database_unavailable, ensure_database_ready, get_db
from atendimentos.scheduling.availability import (
    DEFAULT_WEEKLY_AVAILABILITY,
    compute_week_window,
    day_of_week,
    generate_day_slots,
    index_weekly_availability,
    minutes_to_time,
    time_to_minutes,
)
from atendimentos.scheduling.store import (
    BookingConflictError,
    BookingNotFoundError,
    InvalidStatusTransitionError,
    SqlBookingStore,
)

router = APIRouter(tags=['bookings'])

MAX_CUSTOMER_NOTES_LENGTH = 600
MAX_CANCELLATION_REASON_LENGTH = 300


def _strip_optional(value: str | None, max_length: int | None = None) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if max_length is not None and len(normalized) > max_length:
        raise ValueError(f'Must be {max_length} characters or fewer.')

    return normalized


class CreateBookingRequest(BaseModel):
    house_id: str
    service_id: str
    scheduled_date: date
    scheduled_time: str
    duration_minutes: int = Field(gt=0)
    customer_name: str
    customer_email: str
    customer_phone: str | None = None
    customer_notes: str | None = None

    @field_validator('house_id', 'service_id', 'customer_name')
    @classmethod
    def validate_required_text(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('This field is required.')
        return normalized

    @field_validator('customer_email')
    @classmethod
    def validate_customer_email(cls, value: str) -> str:
        normalized = value.strip().lower()
        if '@' not in normalized:
            raise ValueError('A valid customer email is required.')
        return normalized

    @field_validator('scheduled_time')
    @classmethod
    def validate_scheduled_time(cls, value: str) -> str:
        return minutes_to_time(time_to_minutes(value))

    @field_validator('customer_phone')
    @classmethod
    def validate_customer_phone(cls, value: str | None) -> str | None:
        return _strip_optional(value)

    @field_validator('customer_notes')
    @classmethod
    def validate_customer_notes(cls, value: str | None) -> str | None:
        return _strip_optional(value, MAX_CUSTOMER_NOTES_LENGTH)


class UpdateBookingStatusRequest(BaseModel):
    status: str

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in BOOKING_STATUSES:
            raise ValueError('Invalid booking status.')
        return normalized


class CancelBookingRequest(BaseModel):
    reason: str | None = None

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        return _strip_optional(value, MAX_CANCELLATION_REASON_LENGTH)


class BookingResponse(BaseModel):
    id: int
    house_id: str
    service_id: str
    customer_name: str | None = None
    customer_email: str | None = None
    customer_phone: str | None = None
    customer_notes: str | None = None
    service_duration: int | None = None
    scheduled_date: date
    scheduled_time: str
    end_time: str
    timezone: str | None = None
    status: str
    cancellation_reason: str | None = None
    created_at: datetime | None = None
    confirmed_at: datetime | None = None
    cancelled_at: datetime | None = None
    completed_at: datetime | None = None

    class Config:
        from_attributes = True


@router.post('', response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def create_booking(data: CreateBookingRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    store = SqlBookingStore(db)
    now = current_time()

    if data.scheduled_date not in compute_week_window(now):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Bookings can only be made within the current booking window.',
        )

    try:
        template = store.get_weekly_availability(data.house_id)
        availability = index_weekly_availability(
            DEFAULT_WEEKLY_AVAILABILITY if template is None else template
        ).get(day_of_week(data.scheduled_date))

        existing = store.list_bookings_for_window(
            data.service_id,
            data.house_id,
            data.scheduled_date,
            data.scheduled_date,
        )
        day_slots = generate_day_slots(
            data.scheduled_date,
            availability,
            data.duration_minutes,
            existing,
            now,
        )
        if not any(slot.time == data.scheduled_time and slot.available for slot in day_slots):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail='This time is not available.',
            )

        return store.create_booking(
            house_id=data.house_id,
            service_id=data.service_id,
            scheduled_date=data.scheduled_date,
            scheduled_time=data.scheduled_time,
            duration_minutes=data.duration_minutes,
            customer_name=data.customer_name,
            customer_email=data.customer_email,
            customer_phone=data.customer_phone,
            customer_notes=data.customer_notes,
        )
    except BookingConflictError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('', response_model=list[BookingResponse])
def list_bookings(
    house_id: str | None = Query(default=None),
    customer_email: str | None = Query(default=None),
    booking_status: str | None = Query(default=None, alias='status'),
    db: Session = Depends(get_db),
):
    if house_id is None and customer_email is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Provide a house_id or a customer_email.',
        )

    if booking_status is not None and booking_status not in BOOKING_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Invalid booking status.',
        )

    ensure_database_ready()

    try:
        return SqlBookingStore(db).list_bookings(
            house_id=house_id,
            customer_email=customer_email.strip().lower() if customer_email else None,
            status=booking_status,
        )
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/{booking_id}', response_model=BookingResponse)
def get_booking(booking_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        return SqlBookingStore(db).get_booking(booking_id)
    except BookingNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.patch('/{booking_id}/status', response_model=BookingResponse)
def update_booking_status(
    booking_id: int,
    data: UpdateBookingStatusRequest,
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return SqlBookingStore(db).update_booking_status(booking_id, data.status, today=current_time().date())
    except BookingNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except (BookingConflictError, InvalidStatusTransitionError) as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post('/{booking_id}/cancel', response_model=BookingResponse)
def cancel_booking(
    booking_id: int,
    data: CancelBookingRequest,
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return SqlBookingStore(db).cancel_booking(booking_id, data.reason, today=current_time().date())
    except BookingNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except InvalidStatusTransitionError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc
