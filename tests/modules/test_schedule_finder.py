# tests/modules/test_schedule_finder.py

import pytest
from datetime import time

from portal.backend.modules.schedule_finder import (
    is_slot_in_rotation, find_slots_for_day, class_has_lesson_today, filter_slots_in_rotation
)
from portal.backend.models.db_models import ScheduleSlot, ActiveScheduleWeek
from portal.backend.models.enums import DayOfWeek, WeekType


def make_slot(slot_id: int, day: DayOfWeek, start: time, week_type: WeekType = WeekType.GENERAL,
              grade_level: int = 12) -> ScheduleSlot:
    return ScheduleSlot(
        id=slot_id, assignment_id=1, academic_year_id=1, day_of_week=day,
        start_time=start, end_time=time(start.hour + 1, start.minute), week_type=week_type,
        teacher_user_id=100, class_id=12, grade_level=grade_level
    )


def active_week(week_type: WeekType) -> ActiveScheduleWeek:
    return ActiveScheduleWeek(grade_level=12, academic_year_id=1, week_type=week_type)


@pytest.mark.parametrize("slot_week, active, expected", [
    (WeekType.A, None, True),
    (WeekType.A, WeekType.GENERAL, True),
    (WeekType.A, WeekType.A, True),
    (WeekType.B, WeekType.A, False),
    (WeekType.GENERAL, WeekType.B, True),
])
def test_is_slot_in_rotation(slot_week, active, expected):
    assert is_slot_in_rotation(slot_week, active) is expected


def test_find_slots_for_day_filters_and_sorts():
    slots = [
        make_slot(1, DayOfWeek.MONDAY, time(10, 0)),
        make_slot(2, DayOfWeek.TUESDAY, time(7, 0)),
        make_slot(3, DayOfWeek.MONDAY, time(7, 0)),
    ]

    found = find_slots_for_day(slots, DayOfWeek.MONDAY)

    assert [slot.id for slot in found] == [3, 1]


def test_find_slots_for_day_empty():
    assert find_slots_for_day([], DayOfWeek.FRIDAY) == []


class TestClassHasLessonToday:

    def test_without_active_week_any_class_is_eligible(self):
        assert class_has_lesson_today([], DayOfWeek.MONDAY, None)

    def test_general_active_week_is_always_eligible(self):
        assert class_has_lesson_today([], DayOfWeek.MONDAY, active_week(WeekType.GENERAL))

    def test_only_other_rotation_slots_today_is_not_eligible(self):
        """Active week A, today's only slot is week B: the class is away this week."""
        slots = [make_slot(1, DayOfWeek.MONDAY, time(8, 0), WeekType.B)]

        assert not class_has_lesson_today(slots, DayOfWeek.MONDAY, active_week(WeekType.A))

    def test_switching_active_week_makes_class_eligible(self):
        slots = [make_slot(1, DayOfWeek.MONDAY, time(8, 0), WeekType.B)]

        assert class_has_lesson_today(slots, DayOfWeek.MONDAY, active_week(WeekType.B))

    def test_general_slot_today_counts_in_any_rotation(self):
        slots = [
            make_slot(1, DayOfWeek.MONDAY, time(8, 0), WeekType.B),
            make_slot(2, DayOfWeek.MONDAY, time(10, 0), WeekType.GENERAL),
        ]

        assert class_has_lesson_today(slots, DayOfWeek.MONDAY, active_week(WeekType.A))

    def test_matching_slot_on_another_day_does_not_count(self):
        slots = [make_slot(1, DayOfWeek.TUESDAY, time(8, 0), WeekType.A)]

        assert not class_has_lesson_today(slots, DayOfWeek.MONDAY, active_week(WeekType.A))


def test_filter_slots_in_rotation_uses_each_grade_level():
    slots = [
        make_slot(1, DayOfWeek.MONDAY, time(8, 0), WeekType.A, grade_level=11),
        make_slot(2, DayOfWeek.MONDAY, time(8, 0), WeekType.B, grade_level=11),
        make_slot(3, DayOfWeek.MONDAY, time(8, 0), WeekType.B, grade_level=12),
        make_slot(4, DayOfWeek.MONDAY, time(8, 0), WeekType.A, grade_level=10),
    ]

    kept = filter_slots_in_rotation(slots, {11: WeekType.A, 12: WeekType.B})

    # Grade 10 has no declaration, so its slot stays.
    assert [slot.id for slot in kept] == [1, 3, 4]
