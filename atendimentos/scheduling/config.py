"""
Scheduling policy for slot generation.
"""

from dataclasses import dataclass
from functools import lru_cache

from atendimentos.core import config


@dataclass(frozen=True)
class SchedulingConfig:
    """
    Tunable values used by the availability calculator.

    Attributes:
        slot_step_minutes: Distance between two candidate start times
        lead_time_minutes: Minimum gap between now and the first bookable slot of today
        window_days: Length of the rolling window, starting today
    """
    slot_step_minutes: int = 30
    lead_time_minutes: int = 120
    window_days: int = 7

    def __post_init__(self):
        if self.slot_step_minutes <= 0:
            raise ValueError(f"slot_step_minutes must be positive, got {self.slot_step_minutes}")
        if self.lead_time_minutes < 0:
            raise ValueError(f"lead_time_minutes must not be negative, got {self.lead_time_minutes}")
        if self.window_days <= 0:
            raise ValueError(f"window_days must be positive, got {self.window_days}")


@lru_cache
def get_scheduling_config() -> SchedulingConfig:
    """Scheduling config built from environment settings (singleton)."""
    return SchedulingConfig(
        slot_step_minutes=config.SLOT_STEP_MINUTES,
        lead_time_minutes=config.BOOKING_LEAD_TIME_MINUTES,
        window_days=config.BOOKING_WINDOW_DAYS,
    )
