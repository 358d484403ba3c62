"""
Weekly availability and time slot generation.

Turns a house's weekly operating hours and the bookings it already holds into
the bookable time slots of a rolling window that starts today.

Slots are a read-time hint only: nothing is reserved while they are computed,
so two callers working from the same bookings can both see a slot as free.
At-most-once booking of a slot is enforced on the store's write path.
"""

import asyncio
import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Protocol

from atendimentos.scheduling.config import SchedulingConfig, get_scheduling_config

logger = logging.getLogger(__name__)

ACTIVE_BOOKING_STATUSES = ('pending', 'confirmed')
DAY_NAMES = ('Dom', 'Seg', 'Ter', 'Qua', 'Qui', 'Sex', 'Sáb')
MINUTES_PER_DAY = 24 * 60


class InvalidDurationError(ValueError):
    """Raised when a service duration is not a positive number of minutes."""


# ── Time helpers ─────────────────────────────────────────────────────────


def time_to_minutes(value: str) -> int:
    """Convert "HH:MM" to minutes since midnight. "24:00" is end of day."""
    if not isinstance(value, str):
        raise ValueError(f'Invalid time {value!r}, expected HH:MM.')

    normalized = value.strip()
    if normalized == '24:00':
        return MINUTES_PER_DAY

    try:
        parsed = datetime.strptime(normalized, '%H:%M')
    except ValueError as exc:
        raise ValueError(f'Invalid time {value!r}, expected HH:MM.') from exc

    return parsed.hour * 60 + parsed.minute


def minutes_to_time(minutes: int) -> str:
    """Convert minutes since midnight to "HH:MM"."""
    return f'{minutes // 60:02d}:{minutes % 60:02d}'


def day_of_week(target_date: date) -> int:
    """Weekday number with 0 = Sunday ... 6 = Saturday."""
    return (target_date.weekday() + 1) % 7


def get_day_name(weekday: int) -> str:
    return DAY_NAMES[weekday]


def format_date_for_display(target_date: date) -> str:
    return target_date.strftime('%d/%m')


def _to_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value.strip()[:10])
    raise ValueError(f'Invalid booking date {value!r}.')


def _read_field(record: Any, name: str) -> Any:
    if isinstance(record, Mapping):
        return record.get(name)
    return getattr(record, name, None)


def _validate_duration(duration_minutes: int) -> None:
    if isinstance(duration_minutes, bool) or not isinstance(duration_minutes, int) or duration_minutes <= 0:
        raise InvalidDurationError(
            f'Service duration must be a positive number of minutes, got {duration_minutes!r}.'
        )


# ── Types ────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class DayAvailability:
    """
    Operating hours of a house for one weekday.

    An optional break (e.g. lunch) closes part of the day; slots that
    overlap it are never offered.
    """
    day_of_week: int
    start_time: str
    end_time: str
    is_active: bool = True
    break_start: str | None = None
    break_end: str | None = None

    def __post_init__(self):
        if not 0 <= self.day_of_week <= 6:
            raise ValueError(f'day_of_week must be between 0 (Sunday) and 6 (Saturday), got {self.day_of_week}.')

        start = time_to_minutes(self.start_time)
        end = time_to_minutes(self.end_time)
        if self.is_active and start >= end:
            raise ValueError(f'start_time {self.start_time} must be before end_time {self.end_time}.')

        if (self.break_start is None) != (self.break_end is None):
            raise ValueError('A break needs both break_start and break_end.')
        if self.break_start is not None and time_to_minutes(self.break_start) >= time_to_minutes(self.break_end):
            raise ValueError(f'break_start {self.break_start} must be before break_end {self.break_end}.')

    @property
    def start_minutes(self) -> int:
        return time_to_minutes(self.start_time)

    @property
    def end_minutes(self) -> int:
        return time_to_minutes(self.end_time)

    @property
    def break_minutes(self) -> tuple[int, int] | None:
        if self.break_start is None:
            return None
        return time_to_minutes(self.break_start), time_to_minutes(self.break_end)


@dataclass(frozen=True)
class BookedInterval:
    """An existing reservation, as used for conflict checks."""
    date: date
    start_time: str
    end_time: str
    status: str = 'confirmed'

    def __post_init__(self):
        if time_to_minutes(self.start_time) >= time_to_minutes(self.end_time):
            raise ValueError(f'Booking start {self.start_time} must be before its end {self.end_time}.')

    @property
    def start_minutes(self) -> int:
        return time_to_minutes(self.start_time)

    @property
    def end_minutes(self) -> int:
        return time_to_minutes(self.end_time)

    @classmethod
    def from_record(cls, record: Any) -> 'BookedInterval':
        """
        Build from a booking row or document.

        Accepts mappings and objects exposing scheduled_date, scheduled_time,
        end_time and status. Raises ValueError for malformed records.
        """
        status = _read_field(record, 'status') or 'pending'
        return cls(
            date=_to_date(_read_field(record, 'scheduled_date')),
            start_time=_read_field(record, 'scheduled_time'),
            end_time=_read_field(record, 'end_time'),
            status=str(status),
        )


@dataclass(frozen=True)
class TimeSlot:
    date: date
    time: str
    end_time: str
    available: bool
    day_of_week: int
    day_name: str
    display_date: str


@dataclass
class WeekAvailability:
    """Slots of a rolling window. loaded is False when bookings could not be fetched."""
    slots: list[TimeSlot] = field(default_factory=list)
    loaded: bool = True


class BookingSource(Protocol):
    async def fetch_bookings_for_window(
        self,
        service_id: str,
        house_id: str,
        start: date,
        end: date,
    ) -> list[BookedInterval]:
        ...


# Used when a house has not configured its own hours.
DEFAULT_WEEKLY_AVAILABILITY: tuple[DayAvailability, ...] = (
    DayAvailability(day_of_week=1, start_time='09:00', end_time='18:00'),
    DayAvailability(day_of_week=2, start_time='09:00', end_time='18:00'),
    DayAvailability(day_of_week=3, start_time='09:00', end_time='18:00'),
    DayAvailability(day_of_week=4, start_time='09:00', end_time='18:00'),
    DayAvailability(day_of_week=5, start_time='09:00', end_time='18:00'),
    DayAvailability(day_of_week=6, start_time='10:00', end_time='16:00'),
    DayAvailability(day_of_week=0, start_time='10:00', end_time='16:00', is_active=False),
)


def index_weekly_availability(availability: Iterable[DayAvailability]) -> dict[int, DayAvailability]:
    indexed: dict[int, DayAvailability] = {}
    for day in availability:
        if day.day_of_week in indexed:
            raise ValueError(f'Weekday {day.day_of_week} appears more than once in the availability template.')
        indexed[day.day_of_week] = day
    return indexed


# ── Slot generation ──────────────────────────────────────────────────────


def compute_week_window(reference: date | datetime, days: int | None = None) -> list[date]:
    """Consecutive dates of the rolling window, starting at reference's own date."""
    if days is None:
        days = get_scheduling_config().window_days
    if days <= 0:
        raise ValueError(f'days must be positive, got {days}.')

    start = reference.date() if isinstance(reference, datetime) else reference
    return [start + timedelta(days=offset) for offset in range(days)]


def generate_day_slots(
    target_date: date,
    availability: DayAvailability | None,
    duration_minutes: int,
    existing_bookings: Iterable[BookedInterval],
    now: datetime,
    config: SchedulingConfig | None = None,
) -> list[TimeSlot]:
    """
    Generate the candidate slots of one day, in ascending time order.

    Candidates start every slot_step_minutes from the opening time, and the
    last one ends no later than the closing time. On now's date, candidates
    starting before now + lead_time_minutes are dropped. A candidate that
    overlaps an existing booking on the same date is kept with
    available=False.
    """
    _validate_duration(duration_minutes)

    if availability is None or not availability.is_active:
        return []

    config = config or get_scheduling_config()

    earliest_start = None
    if target_date == now.date():
        earliest_start = now + timedelta(minutes=config.lead_time_minutes)
    day_start = datetime.combine(target_date, datetime.min.time(), tzinfo=now.tzinfo)

    day_bookings = [booking for booking in existing_bookings if booking.date == target_date]
    break_window = availability.break_minutes
    weekday = day_of_week(target_date)
    day_name = get_day_name(weekday)
    display_date = format_date_for_display(target_date)

    slots: list[TimeSlot] = []
    last_start = availability.end_minutes - duration_minutes

    for minutes in range(availability.start_minutes, last_start + 1, config.slot_step_minutes):
        slot_end = minutes + duration_minutes

        if earliest_start is not None and day_start + timedelta(minutes=minutes) < earliest_start:
            continue

        if break_window and minutes < break_window[1] and slot_end > break_window[0]:
            continue

        has_conflict = any(
            minutes < booking.end_minutes and slot_end > booking.start_minutes
            for booking in day_bookings
        )

        slots.append(
            TimeSlot(
                date=target_date,
                time=minutes_to_time(minutes),
                end_time=minutes_to_time(slot_end),
                available=not has_conflict,
                day_of_week=weekday,
                day_name=day_name,
                display_date=display_date,
            )
        )

    return slots


async def load_week_availability(
    store: BookingSource,
    service_id: str,
    house_id: str,
    duration_minutes: int,
    availability: Sequence[DayAvailability] | None = None,
    now: datetime | None = None,
    config: SchedulingConfig | None = None,
) -> WeekAvailability:
    """
    Available slots of the rolling window for a service at a house.

    If the existing bookings cannot be fetched, no slot is offered and the
    result is flagged with loaded=False.
    """
    _validate_duration(duration_minutes)

    config = config or get_scheduling_config()
    now = now or datetime.now()
    template = index_weekly_availability(
        DEFAULT_WEEKLY_AVAILABILITY if availability is None else availability
    )
    window = compute_week_window(now, config.window_days)

    try:
        bookings = await store.fetch_bookings_for_window(service_id, house_id, window[0], window[-1])
    except asyncio.CancelledError:
        task = asyncio.current_task()
        if task is not None and task.cancelling():
            raise
        logger.warning('Booking fetch cancelled for service %s at house %s', service_id, house_id)
        return WeekAvailability(slots=[], loaded=False)
    except Exception:
        logger.exception('Could not fetch bookings for service %s at house %s', service_id, house_id)
        return WeekAvailability(slots=[], loaded=False)

    slots: list[TimeSlot] = []
    for target_date in window:
        day_slots = generate_day_slots(
            target_date,
            template.get(day_of_week(target_date)),
            duration_minutes,
            bookings,
            now,
            config,
        )
        slots.extend(slot for slot in day_slots if slot.available)

    logger.info(
        'Generated %d available slots for service %s at house %s from %s',
        len(slots), service_id, house_id, window[0].isoformat(),
    )
    return WeekAvailability(slots=slots, loaded=True)


async def get_available_time_slots_for_week(
    store: BookingSource,
    service_id: str,
    house_id: str,
    duration_minutes: int,
    availability: Sequence[DayAvailability] | None = None,
    now: datetime | None = None,
    config: SchedulingConfig | None = None,
) -> list[TimeSlot]:
    result = await load_week_availability(
        store,
        service_id,
        house_id,
        duration_minutes,
        availability=availability,
        now=now,
        config=config,
    )
    return result.slots


def group_slots_by_date(slots: Iterable[TimeSlot]) -> dict[date, list[TimeSlot]]:
    grouped: dict[date, list[TimeSlot]] = {}
    for slot in slots:
        grouped.setdefault(slot.date, []).append(slot)
    return grouped
