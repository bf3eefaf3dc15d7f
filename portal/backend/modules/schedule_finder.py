# portal/backend/modules/schedule_finder.py

from typing import Dict, Iterable, List, Optional

from ..models.db_models import ScheduleSlot, ActiveScheduleWeek
from ..models.enums import DayOfWeek, WeekType


def is_slot_in_rotation(slot_week_type: WeekType, active_week_type: Optional[WeekType]) -> bool:
    """
    Tells whether a slot of ``slot_week_type`` runs while ``active_week_type``
    is in force. "General" on either side means no rotation applies.
    """
    if active_week_type is None or active_week_type == WeekType.GENERAL:
        return True
    return slot_week_type in (active_week_type, WeekType.GENERAL)


def find_slots_for_day(slots: Iterable[ScheduleSlot], day: DayOfWeek) -> List[ScheduleSlot]:
    """
    Finds all timetable slots scheduled on a given weekday.

    Args:
        slots: Timetable entries, usually for one class or one teacher.
        day: The school-local weekday to look for.

    Returns:
        The matching slots ordered by start time.
    """
    lessons_for_day = [slot for slot in slots if slot.day_of_week == day]
    return sorted(lessons_for_day, key=lambda slot: slot.start_time)


def class_has_lesson_today(slots: Iterable[ScheduleSlot], day: DayOfWeek,
                           active_week: Optional[ActiveScheduleWeek]) -> bool:
    """
    Decides whether a class is really in session on ``day``.

    Without an active-week declaration (or with a "General" one) the class is
    always eligible. Otherwise at least one of the day's slots has to belong to
    the active rotation, which rules out classes that are away this week
    (for example on industry placement).
    """
    if active_week is None or active_week.week_type == WeekType.GENERAL:
        return True
    return any(
        is_slot_in_rotation(slot.week_type, active_week.week_type)
        for slot in find_slots_for_day(slots, day)
    )


def filter_slots_in_rotation(slots: Iterable[ScheduleSlot],
                             active_weeks_by_grade: Dict[int, WeekType]) -> List[ScheduleSlot]:
    """Keeps the slots whose grade level runs their week type right now."""
    return [
        slot for slot in slots
        if is_slot_in_rotation(slot.week_type, active_weeks_by_grade.get(slot.grade_level))
    ]
