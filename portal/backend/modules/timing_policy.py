# portal/backend/modules/timing_policy.py

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Optional

from pydantic import BaseModel

from ..models.db_models import ScheduleSlot
from .clock import CivilDateTime

logger = logging.getLogger(__name__)

DEFAULT_GRACE_BEFORE_MINUTES = 30
DEFAULT_GRACE_AFTER_MINUTES = 120


class ScheduleWindow(BaseModel):
    """The lesson times a caller shows next to a timing decision."""
    start_time: str
    end_time: str
    day_of_week: str


class JournalTimingDecision(BaseModel):
    """Whether a teaching journal may be submitted right now. Never persisted."""
    is_valid: bool
    message: str
    schedule: Optional[ScheduleWindow] = None


def _hhmm(value) -> str:
    return value.strftime("%H:%M")


def _schedule_window(slot: ScheduleSlot) -> ScheduleWindow:
    return ScheduleWindow(
        start_time=_hhmm(slot.start_time),
        end_time=_hhmm(slot.end_time),
        day_of_week=slot.day_of_week.value,
    )


class JournalTimingPolicy(ABC):
    """Strategy deciding whether ``now`` lets a teacher fill a journal for ``slot``."""

    @abstractmethod
    def evaluate(self, slot: ScheduleSlot, now: CivilDateTime) -> JournalTimingDecision:
        raise NotImplementedError


class WindowTimingPolicy(JournalTimingPolicy):
    """
    Accepts submissions on the slot's weekday between
    ``start - grace_before`` and ``end + grace_after`` (both inclusive),
    compared at minute resolution in school-local time.
    """

    def __init__(self, grace_before_minutes: int = DEFAULT_GRACE_BEFORE_MINUTES,
                 grace_after_minutes: int = DEFAULT_GRACE_AFTER_MINUTES):
        if grace_before_minutes < 0 or grace_after_minutes < 0:
            raise ValueError("Grace periods cannot be negative.")
        self.grace_before = timedelta(minutes=grace_before_minutes)
        self.grace_after = timedelta(minutes=grace_after_minutes)

    def allowed_window(self, slot: ScheduleSlot, now: CivilDateTime) -> tuple[datetime, datetime]:
        day = now.local_date
        return (
            datetime.combine(day, slot.start_time) - self.grace_before,
            datetime.combine(day, slot.end_time) + self.grace_after,
        )

    def evaluate(self, slot: ScheduleSlot, now: CivilDateTime) -> JournalTimingDecision:
        window = _schedule_window(slot)

        if slot.day_of_week != now.weekday:
            return JournalTimingDecision(
                is_valid=False,
                message=f"This schedule is for {slot.day_of_week.value}, not today ({now.weekday.value}).",
                schedule=window,
            )

        current = datetime.combine(now.local_date, now.local_time).replace(second=0, microsecond=0)
        allowed_start, allowed_end = self.allowed_window(slot, now)

        if not (allowed_start <= current <= allowed_end):
            return JournalTimingDecision(
                is_valid=False,
                message=(
                    f"Journal can only be filled between {_hhmm(allowed_start)} - {_hhmm(allowed_end)}. "
                    f"Now: {_hhmm(current)}"
                ),
                schedule=window,
            )

        return JournalTimingDecision(is_valid=True, message="Time is valid for filling the journal.", schedule=window)


class AlwaysValidPolicy(JournalTimingPolicy):
    """Accepts every submission. Only for non-production environments."""

    def evaluate(self, slot: ScheduleSlot, now: CivilDateTime) -> JournalTimingDecision:
        return JournalTimingDecision(
            is_valid=True,
            message="Timing checks are disabled in this environment.",
            schedule=_schedule_window(slot),
        )


def build_timing_policy(settings) -> JournalTimingPolicy:
    """Picks the journal timing policy for the running environment."""
    policy_name = (settings.JOURNAL_TIMING_POLICY or "window").strip().lower()

    if policy_name == "always":
        if settings.APP_ENV == "production":
            raise ValueError("The 'always' journal timing policy cannot be used in production.")
        logger.warning("Journal timing checks are DISABLED (JOURNAL_TIMING_POLICY=always).")
        return AlwaysValidPolicy()

    if policy_name != "window":
        raise ValueError(f"Unknown journal timing policy: '{policy_name}'.")

    return WindowTimingPolicy(
        grace_before_minutes=settings.JOURNAL_GRACE_BEFORE_MINUTES,
        grace_after_minutes=settings.JOURNAL_GRACE_AFTER_MINUTES,
    )
