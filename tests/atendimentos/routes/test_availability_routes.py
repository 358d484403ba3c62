import asyncio
import os
from datetime import date, datetime

import pytest
from fastapi import HTTPException
from pydantic import ValidationError
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from atendimentos.routes.availability_routes import (  # noqa: E402
    DayAvailabilityModel,
    UpdateAvailabilityTemplateRequest,
    get_availability_template,
    get_week_availability,
    update_availability_template,
)
from atendimentos.database import Base  # noqa: E402
from atendimentos.models.booking import Booking  # noqa: E402
from atendimentos.models.house_availability import HouseAvailability  # noqa: E402
from atendimentos.scheduling.store import SqlBookingStore  # noqa: E402

WEDNESDAY_MORNING = datetime(2026, 1, 7, 8, 0)


@pytest.fixture
def availability_db(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr('atendimentos.routes.availability_routes.ensure_database_ready', lambda: None)
    monkeypatch.setattr('atendimentos.routes.availability_routes.current_time', lambda: WEDNESDAY_MORNING)

    engine = create_engine(
        'sqlite:///:memory:',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine, tables=[Booking.__table__, HouseAvailability.__table__])

    db = testing_session_local()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine, tables=[HouseAvailability.__table__, Booking.__table__])


def test_day_availability_model_normalizes_times() -> None:
    day = DayAvailabilityModel(day_of_week=1, start_time='9:00', end_time=' 18:00 ')

    assert day.start_time == '09:00'
    assert day.end_time == '18:00'


@pytest.mark.parametrize(
    'payload',
    [
        {'day_of_week': 1, 'start_time': '18:00', 'end_time': '09:00'},
        {'day_of_week': 8, 'start_time': '09:00', 'end_time': '18:00'},
        {'day_of_week': 1, 'start_time': 'noon', 'end_time': '18:00'},
        {'day_of_week': 1, 'start_time': '09:00', 'end_time': '18:00', 'break_end': '13:00'},
    ],
)
def test_day_availability_model_rejects_invalid_days(payload: dict) -> None:
    with pytest.raises(ValidationError):
        DayAvailabilityModel(**payload)


def test_update_template_request_rejects_repeated_weekdays() -> None:
    with pytest.raises(ValidationError):
        UpdateAvailabilityTemplateRequest(
            days=[
                {'day_of_week': 1, 'start_time': '09:00', 'end_time': '12:00'},
                {'day_of_week': 1, 'start_time': '13:00', 'end_time': '18:00'},
            ]
        )


def test_get_availability_template_falls_back_to_default(availability_db) -> None:
    response = get_availability_template(house_id='house-1', db=availability_db)

    assert response.is_default is True
    assert [day.day_of_week for day in response.days] == [0, 1, 2, 3, 4, 5, 6]
    assert response.days[0].is_active is False
    assert response.days[6].start_time == '10:00'


def test_update_availability_template_is_returned_afterwards(availability_db) -> None:
    update_availability_template(
        house_id='house-1',
        data=UpdateAvailabilityTemplateRequest(
            days=[{'day_of_week': 4, 'start_time': '14:00', 'end_time': '16:00'}],
        ),
        db=availability_db,
    )

    response = get_availability_template(house_id='house-1', db=availability_db)

    assert response.is_default is False
    assert len(response.days) == 1
    assert response.days[0].start_time == '14:00'


def test_get_week_availability_groups_slots_by_date(availability_db) -> None:
    SqlBookingStore(availability_db).save_weekly_availability(
        'house-1',
        [DayAvailabilityModel(day_of_week=4, start_time='09:00', end_time='12:00').to_day_availability()],
    )
    availability_db.add(
        Booking(
            house_id='house-1',
            service_id='service-1',
            scheduled_date=date(2026, 1, 8),
            scheduled_time='10:00',
            end_time='11:00',
            status='pending',
        )
    )
    availability_db.commit()

    response = asyncio.run(
        get_week_availability(house_id='house-1', service_id='service-1', duration_minutes=60, db=availability_db)
    )

    assert response.status == 'available'
    assert len(response.days) == 1
    assert response.days[0].date == date(2026, 1, 8)
    assert response.days[0].day_name == 'Qui'
    assert response.days[0].display_date == '08/01'
    assert [slot.time for slot in response.days[0].slots] == ['09:00', '11:00']


def test_get_week_availability_reports_unavailable_when_bookings_cannot_load(
    availability_db,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    async def failing_fetch(self, service_id, house_id, start, end):
        raise RuntimeError('store offline')

    monkeypatch.setattr(SqlBookingStore, 'fetch_bookings_for_window', failing_fetch)

    response = asyncio.run(
        get_week_availability(house_id='house-1', service_id='service-1', duration_minutes=60, db=availability_db)
    )

    assert response.status == 'unavailable'
    assert response.days == []


def test_get_week_availability_rejects_non_positive_duration(availability_db) -> None:
    with pytest.raises(HTTPException) as exception_info:
        asyncio.run(
            get_week_availability(house_id='house-1', service_id='service-1', duration_minutes=0, db=availability_db)
        )

    assert exception_info.value.status_code == 400


def _database_down(*args, **kwargs):
    raise OperationalError('SELECT 1', {}, Exception('database is down'))


def test_get_availability_template_returns_service_unavailable_when_database_fails(
    availability_db,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(SqlBookingStore, 'get_weekly_availability', _database_down)

    with pytest.raises(HTTPException) as exception_info:
        get_availability_template(house_id='house-1', db=availability_db)

    assert exception_info.value.status_code == 503


def test_update_availability_template_returns_service_unavailable_when_database_fails(
    availability_db,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(SqlBookingStore, 'save_weekly_availability', _database_down)

    with pytest.raises(HTTPException) as exception_info:
        update_availability_template(
            house_id='house-1',
            data=UpdateAvailabilityTemplateRequest(
                days=[{'day_of_week': 4, 'start_time': '14:00', 'end_time': '16:00'}],
            ),
            db=availability_db,
        )

    assert exception_info.value.status_code == 503


def test_get_week_availability_returns_service_unavailable_when_template_cannot_load(
    availability_db,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(SqlBookingStore, 'get_weekly_availability', _database_down)

    with pytest.raises(HTTPException) as exception_info:
        asyncio.run(
            get_week_availability(house_id='house-1', service_id='service-1', duration_minutes=60, db=availability_db)
        )

    assert exception_info.value.status_code == 503
