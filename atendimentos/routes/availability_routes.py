from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, field_validator, model_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from atendimentos.core import config
from atendimentos.routes.dependencies import current_time, database_unavailable, ensure_database_ready, get_db
from atendimentos.scheduling.availability import (
    DEFAULT_WEEKLY_AVAILABILITY,
    DayAvailability,
    InvalidDurationError,
    day_of_week,
    format_date_for_display,
    get_day_name,
    group_slots_by_date,
    load_week_availability,
    minutes_to_time,
    time_to_minutes,
)
from atendimentos.scheduling.store import SqlBookingStore

router = APIRouter(tags=['availability'])

WEEK_STATUS_AVAILABLE = 'available'
WEEK_STATUS_UNAVAILABLE = 'unavailable'


def _normalize_time(value: str | None) -> str | None:
    if value is None:
        return None
    return minutes_to_time(time_to_minutes(value))


class DayAvailabilityModel(BaseModel):
    day_of_week: int
    start_time: str
    end_time: str
    is_active: bool = True
    break_start: str | None = None
    break_end: str | None = None

    @field_validator('start_time', 'end_time', 'break_start', 'break_end')
    @classmethod
    def validate_time(cls, value: str | None) -> str | None:
        return _normalize_time(value)

    @model_validator(mode='after')
    def validate_day(self) -> 'DayAvailabilityModel':
        self.to_day_availability()
        return self

    def to_day_availability(self) -> DayAvailability:
        return DayAvailability(
            day_of_week=self.day_of_week,
            start_time=self.start_time,
            end_time=self.end_time,
            is_active=self.is_active,
            break_start=self.break_start,
            break_end=self.break_end,
        )

    @classmethod
    def from_day_availability(cls, day: DayAvailability) -> 'DayAvailabilityModel':
        return cls(
            day_of_week=day.day_of_week,
            start_time=day.start_time,
            end_time=day.end_time,
            is_active=day.is_active,
            break_start=day.break_start,
            break_end=day.break_end,
        )


class UpdateAvailabilityTemplateRequest(BaseModel):
    days: list[DayAvailabilityModel]

    @field_validator('days')
    @classmethod
    def validate_unique_days(cls, value: list[DayAvailabilityModel]) -> list[DayAvailabilityModel]:
        weekdays = [day.day_of_week for day in value]
        if len(weekdays) != len(set(weekdays)):
            raise ValueError('Each weekday can only appear once.')
        return value


class AvailabilityTemplateResponse(BaseModel):
    house_id: str
    is_default: bool
    days: list[DayAvailabilityModel]


class SlotResponse(BaseModel):
    date: date
    time: str
    end_time: str


class DaySlotsResponse(BaseModel):
    date: date
    day_of_week: int
    day_name: str
    display_date: str
    slots: list[SlotResponse]


class WeekAvailabilityResponse(BaseModel):
    house_id: str
    service_id: str
    duration_minutes: int
    status: str
    days: list[DaySlotsResponse]


@router.get('/houses/{house_id}/template', response_model=AvailabilityTemplateResponse)
def get_availability_template(house_id: str, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        days = SqlBookingStore(db).get_weekly_availability(house_id)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    is_default = days is None
    if is_default:
        days = sorted(DEFAULT_WEEKLY_AVAILABILITY, key=lambda day: day.day_of_week)

    return AvailabilityTemplateResponse(
        house_id=house_id,
        is_default=is_default,
        days=[DayAvailabilityModel.from_day_availability(day) for day in days],
    )


@router.put('/houses/{house_id}/template', response_model=AvailabilityTemplateResponse)
def update_availability_template(
    house_id: str,
    data: UpdateAvailabilityTemplateRequest,
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        saved = SqlBookingStore(db).save_weekly_availability(
            house_id,
            [day.to_day_availability() for day in data.days],
        )
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    return AvailabilityTemplateResponse(
        house_id=house_id,
        is_default=False,
        days=[DayAvailabilityModel.from_day_availability(day) for day in saved],
    )


@router.get('/week', response_model=WeekAvailabilityResponse)
async def get_week_availability(
    house_id: str = Query(...),
    service_id: str = Query(...),
    duration_minutes: int = Query(default=config.DEFAULT_SERVICE_DURATION_MINUTES),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    store = SqlBookingStore(db)
    try:
        template = await run_in_threadpool(store.get_weekly_availability, house_id)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    try:
        result = await load_week_availability(
            store,
            service_id,
            house_id,
            duration_minutes,
            availability=template,
            now=current_time(),
        )
    except InvalidDurationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc

    days = [
        DaySlotsResponse(
            date=slot_date,
            day_of_week=day_of_week(slot_date),
            day_name=get_day_name(day_of_week(slot_date)),
            display_date=format_date_for_display(slot_date),
            slots=[SlotResponse(date=slot.date, time=slot.time, end_time=slot.end_time) for slot in slots],
        )
        for slot_date, slots in group_slots_by_date(result.slots).items()
    ]

    return WeekAvailabilityResponse(
        house_id=house_id,
        service_id=service_id,
        duration_minutes=duration_minutes,
        status=WEEK_STATUS_AVAILABLE if result.loaded else WEEK_STATUS_UNAVAILABLE,
        days=days,
    )
