import pytest
import pytest_asyncio
import asyncpg
from datetime import datetime, date, time, timezone, timedelta
from unittest.mock import AsyncMock
from pydantic import ValidationError

from portal.backend.services.journal_service import TeachingJournalService, JournalCreateRequest
from portal.backend.services.exceptions import NotFoundError, TimingError, ConflictError
from portal.backend.modules.clock import SchoolClock
from portal.backend.modules.timing_policy import WindowTimingPolicy, AlwaysValidPolicy
from portal.backend.models.db_models import (
    User, AcademicYear, ActiveScheduleWeek, ScheduleSlot, AttendanceSession, TeachingJournal
)
from portal.backend.models.report_models import JournalListItem
from portal.backend.models.enums import DayOfWeek, WeekType, TeacherStatus, LearningMethod, MissingJournalPeriod

# Monday 2025-01-06, 09:00 in Jakarta.
NOW_UTC = datetime(2025, 1, 6, 2, 0, tzinfo=timezone.utc)
TODAY = date(2025, 1, 6)
TEACHER_ID = 100

# --- Test Fixtures ---

@pytest.fixture
def clock() -> SchoolClock:
    return SchoolClock("Asia/Jakarta", now_provider=lambda: NOW_UTC)

@pytest.fixture
def monday_slot() -> ScheduleSlot:
    return ScheduleSlot(
        id=1, assignment_id=10, academic_year_id=1, day_of_week=DayOfWeek.MONDAY,
        start_time=time(8, 0), end_time=time(9, 30), teacher_user_id=TEACHER_ID, class_id=12,
        subject_name="Mathematics", class_name="XII RPL 1", grade_level=12
    )

@pytest.fixture
def present_request() -> JournalCreateRequest:
    return JournalCreateRequest(
        schedule_id=1, journal_date=TODAY, teacher_status=TeacherStatus.PRESENT,
        material_topic="Quadratic equations", learning_method=LearningMethod.DISCUSSION
    )

@pytest_asyncio.fixture
async def service_instance(clock, monday_slot):
    """Creates a TeachingJournalService with a mocked database client and the default window policy."""
    mock_db_client = AsyncMock()
    mock_db_client.get_teacher_schedule_slot.return_value = monday_slot
    mock_db_client.get_journal_by_schedule_and_date.return_value = None
    mock_db_client.get_attendance_session_by_class_and_date.return_value = None
    mock_db_client.add_journal.side_effect = lambda journal: journal.model_copy(update={"id": 1})
    service = TeachingJournalService(db_client=mock_db_client, clock=clock, timing_policy=WindowTimingPolicy())
    return service, mock_db_client


def make_list_item(journal_id: int, teacher_id: int = TEACHER_ID, daily_session_id=None) -> JournalListItem:
    return JournalListItem(
        id=journal_id, schedule_id=1, teacher_user_id=teacher_id, journal_date=TODAY,
        teacher_status=TeacherStatus.PRESENT, material_topic="Topic", learning_method=LearningMethod.LECTURE,
        daily_session_id=daily_session_id, class_id=12, class_name="XII RPL 1", subject_name="Mathematics",
        day_of_week=DayOfWeek.MONDAY, start_time=time(8, 0), end_time=time(9, 30)
    )


class TestJournalCreateRequest:

    def test_present_requires_topic_and_method(self):
        with pytest.raises(ValidationError, match="Material topic and learning method"):
            JournalCreateRequest(schedule_id=1, journal_date=TODAY, teacher_status=TeacherStatus.PRESENT, material_topic="Only a topic")

    def test_absent_requires_notes(self):
        with pytest.raises(ValidationError, match="Teacher notes are required"):
            JournalCreateRequest(schedule_id=1, journal_date=TODAY, teacher_status=TeacherStatus.SICK)

    def test_absent_with_notes_is_valid(self):
        request = JournalCreateRequest(schedule_id=1, journal_date=TODAY, teacher_status=TeacherStatus.SICK, teacher_notes="Hospitalized, task given via class group.")

        assert request.material_topic is None

    def test_reflection_notes_length_is_bounded(self):
        base = dict(schedule_id=1, journal_date=TODAY, teacher_status=TeacherStatus.PRESENT,
                    material_topic="Topic", learning_method=LearningMethod.PROJECT)

        with pytest.raises(ValidationError):
            JournalCreateRequest(**base, reflection_notes="Too short.")
        with pytest.raises(ValidationError):
            JournalCreateRequest(**base, reflection_notes="x" * 501)
        assert len(JournalCreateRequest(**base, reflection_notes="x" * 100).reflection_notes) == 100


@pytest.mark.asyncio
class TestValidateTiming:

    async def test_foreign_or_missing_schedule(self, service_instance):
        service, mock_db_client = service_instance
        mock_db_client.get_teacher_schedule_slot.return_value = None

        with pytest.raises(NotFoundError, match="Schedule not found or not yours."):
            await service.validate_timing(1, 999)

    async def test_decision_uses_clock_and_policy(self, service_instance):
        service, mock_db_client = service_instance

        decision = await service.validate_timing(1, TEACHER_ID)

        assert decision.is_valid
        assert decision.schedule.day_of_week == "Monday"
        mock_db_client.get_teacher_schedule_slot.assert_awaited_once_with(1, TEACHER_ID)

    async def test_outside_window_is_reported_not_raised(self, service_instance):
        service, _ = service_instance
        # 12:00 in Jakarta, after the 11:30 closing edge.
        service.clock = SchoolClock("Asia/Jakarta", now_provider=lambda: datetime(2025, 1, 6, 5, 0, tzinfo=timezone.utc))

        decision = await service.validate_timing(1, TEACHER_ID)

        assert not decision.is_valid
        assert decision.message == "Journal can only be filled between 07:30 - 11:30. Now: 12:00"


@pytest.mark.asyncio
class TestCreateJournal:

    async def test_links_todays_attendance_session(self, service_instance, present_request):
        service, mock_db_client = service_instance
        mock_db_client.get_attendance_session_by_class_and_date.return_value = AttendanceSession(
            id=7, session_date=TODAY, token="t", class_id=12, expires_at=NOW_UTC + timedelta(hours=1),
            created_by_id=TEACHER_ID, academic_year_id=1
        )

        journal = await service.create_journal(present_request, TEACHER_ID)

        assert journal.id == 1
        assert journal.daily_session_id == 7
        assert journal.teacher_user_id == TEACHER_ID
        mock_db_client.get_attendance_session_by_class_and_date.assert_awaited_once_with(12, TODAY)

    async def test_without_session_the_link_stays_empty(self, service_instance, present_request):
        service, _ = service_instance

        journal = await service.create_journal(present_request, TEACHER_ID)

        assert journal.daily_session_id is None

    async def test_failed_session_lookup_does_not_block_journal(self, service_instance, present_request):
        service, mock_db_client = service_instance
        mock_db_client.get_attendance_session_by_class_and_date.side_effect = ConnectionError("timeout")

        journal = await service.create_journal(present_request, TEACHER_ID)

        assert journal.daily_session_id is None
        mock_db_client.add_journal.assert_awaited_once()

    async def test_outside_window_is_rejected_with_policy_message(self, service_instance, present_request):
        service, mock_db_client = service_instance
        service.clock = SchoolClock("Asia/Jakarta", now_provider=lambda: datetime(2025, 1, 6, 0, 0, tzinfo=timezone.utc))

        with pytest.raises(TimingError, match="Journal can only be filled between 07:30 - 11:30. Now: 07:00"):
            await service.create_journal(present_request, TEACHER_ID)
        mock_db_client.add_journal.assert_not_called()

    async def test_always_valid_policy_still_requires_today(self, service_instance, present_request):
        service, mock_db_client = service_instance
        service.timing_policy = AlwaysValidPolicy()
        backdated = present_request.model_copy(update={"journal_date": TODAY - timedelta(days=7)})

        with pytest.raises(TimingError, match="today"):
            await service.create_journal(backdated, TEACHER_ID)
        mock_db_client.add_journal.assert_not_called()

    async def test_second_journal_for_same_lesson(self, service_instance, present_request):
        service, mock_db_client = service_instance
        mock_db_client.get_journal_by_schedule_and_date.return_value = TeachingJournal(
            id=3, schedule_id=1, teacher_user_id=TEACHER_ID, journal_date=TODAY, teacher_status=TeacherStatus.PRESENT
        )

        with pytest.raises(ConflictError, match="already been created"):
            await service.create_journal(present_request, TEACHER_ID)
        mock_db_client.add_journal.assert_not_called()

    async def test_concurrent_duplicate_is_a_conflict(self, service_instance, present_request):
        service, mock_db_client = service_instance
        mock_db_client.add_journal.side_effect = asyncpg.UniqueViolationError("duplicate key")

        with pytest.raises(ConflictError, match="already been created"):
            await service.create_journal(present_request, TEACHER_ID)


@pytest.mark.asyncio
class TestJournalViews:

    async def test_my_journals_include_attendance_summary(self, service_instance):
        service, mock_db_client = service_instance
        mock_db_client.get_journals.return_value = ([make_list_item(1, daily_session_id=7), make_list_item(2)], 12)
        mock_db_client.get_record_status_counts.return_value = {7: {"Present": 3, "Sick": 1}}

        page = await service.get_my_journals(TEACHER_ID, page=2, limit=5)

        assert page.total == 12
        assert page.total_pages == 3
        first, second = page.journals
        assert first.attendance.total == 4
        assert first.attendance.present == 3
        assert first.attendance.sick == 1
        assert first.attendance.rate == 75.0
        assert second.attendance is None
        mock_db_client.get_record_status_counts.assert_awaited_once_with([7])
        assert mock_db_client.get_journals.call_args.kwargs["offset"] == 5
        assert mock_db_client.get_journals.call_args.kwargs["teacher_user_id"] == TEACHER_ID

    async def test_teacher_cannot_read_another_teachers_journal(self, service_instance):
        service, mock_db_client = service_instance
        mock_db_client.get_journal_item.return_value = make_list_item(1, teacher_id=555)
        teacher = User(id=TEACHER_ID, full_name="Pak Budi", role="Teacher")

        with pytest.raises(NotFoundError):
            await service.get_journal_detail(1, teacher)

    async def test_admin_can_read_any_journal(self, service_instance):
        service, mock_db_client = service_instance
        mock_db_client.get_journal_item.return_value = make_list_item(1, teacher_id=555)
        mock_db_client.get_record_status_counts.return_value = {}
        admin = User(id=1, full_name="Admin", role="Admin")

        journal = await service.get_journal_detail(1, admin)

        assert journal.id == 1

    async def test_delete_only_own_journal(self, service_instance):
        service, mock_db_client = service_instance
        mock_db_client.get_journal.return_value = TeachingJournal(
            id=1, schedule_id=1, teacher_user_id=555, journal_date=TODAY, teacher_status=TeacherStatus.PRESENT
        )

        with pytest.raises(NotFoundError):
            await service.delete_journal(1, TEACHER_ID)
        mock_db_client.delete_journal.assert_not_called()

        mock_db_client.get_journal.return_value = mock_db_client.get_journal.return_value.model_copy(update={"teacher_user_id": TEACHER_ID})
        await service.delete_journal(1, TEACHER_ID)
        mock_db_client.delete_journal.assert_awaited_once_with(1)

    async def test_admin_statistics_week_starts_on_monday(self, service_instance):
        service, mock_db_client = service_instance
        # Thursday 2025-01-09 in Jakarta.
        service.clock = SchoolClock("Asia/Jakarta", now_provider=lambda: datetime(2025, 1, 9, 2, 0, tzinfo=timezone.utc))
        mock_db_client.count_journals.side_effect = [40, 9, 2]

        stats = await service.get_admin_statistics()

        assert (stats.total, stats.this_week, stats.today) == (40, 9, 2)
        calls = mock_db_client.count_journals.await_args_list
        assert calls[1].kwargs == {"date_from": date(2025, 1, 6), "date_to": date(2025, 1, 9)}
        assert calls[2].kwargs == {"date_from": date(2025, 1, 9), "date_to": date(2025, 1, 9)}

    async def test_admin_listing_spans_all_teachers_by_default(self, service_instance):
        service, mock_db_client = service_instance
        mock_db_client.get_journals.return_value = ([make_list_item(1, teacher_id=555)], 1)
        mock_db_client.get_record_status_counts.return_value = {}

        page = await service.list_all_journals(search="budi", teacher_status=TeacherStatus.SICK)

        assert page.total == 1
        assert (page.page, page.limit, page.total_pages) == (1, 20, 1)
        kwargs = mock_db_client.get_journals.call_args.kwargs
        assert kwargs["teacher_user_id"] is None
        assert kwargs["teacher_status"] == "Sick"
        assert kwargs["search"] == "budi"
        assert (kwargs["limit"], kwargs["offset"]) == (20, 0)

    async def test_admin_listing_filters_by_teacher(self, service_instance):
        service, mock_db_client = service_instance
        mock_db_client.get_journals.return_value = ([], 0)

        page = await service.list_all_journals(teacher_id=555, class_id=12, date_from=date(2025, 1, 1), page=3, limit=10)

        assert page.total_pages == 0
        kwargs = mock_db_client.get_journals.call_args.kwargs
        assert (kwargs["teacher_user_id"], kwargs["class_id"], kwargs["date_from"]) == (555, 12, date(2025, 1, 1))
        assert kwargs["offset"] == 20


@pytest.mark.asyncio
class TestMissingJournals:

    @pytest.fixture
    def with_schedule(self, service_instance, monday_slot):
        service, mock_db_client = service_instance
        mock_db_client.get_active_academic_year.return_value = AcademicYear(id=1, year="2024/2025", is_active=True)
        mock_db_client.get_active_schedule_weeks.return_value = [ActiveScheduleWeek(grade_level=12, academic_year_id=1, week_type=WeekType.A)]
        mock_db_client.get_schedule_slots.return_value = [monday_slot]
        mock_db_client.get_journaled_slot_dates.return_value = set()
        return service, mock_db_client

    async def test_today_respects_rotation_and_existing_journals(self, with_schedule, monday_slot):
        service, mock_db_client = with_schedule
        week_b_slot = monday_slot.model_copy(update={"id": 2, "week_type": WeekType.B})
        journaled_slot = monday_slot.model_copy(update={"id": 3})
        tuesday_slot = monday_slot.model_copy(update={"id": 4, "day_of_week": DayOfWeek.TUESDAY})
        mock_db_client.get_schedule_slots.return_value = [monday_slot, week_b_slot, journaled_slot, tuesday_slot]
        mock_db_client.get_journaled_slot_dates.return_value = {(3, TODAY)}

        missing = await service.get_missing_journals()

        assert [(item.slot.id, item.journal_date, item.days_overdue) for item in missing] == [(1, TODAY, 0)]
        mock_db_client.get_schedule_slots.assert_awaited_once_with(1)
        mock_db_client.get_journaled_slot_dates.assert_awaited_once_with(TODAY, TODAY)

    async def test_this_week_starts_on_monday_and_stops_today(self, with_schedule, monday_slot):
        service, mock_db_client = with_schedule
        # Wednesday 2025-01-08 in Jakarta; the Thursday lesson has not happened yet.
        service.clock = SchoolClock("Asia/Jakarta", now_provider=lambda: datetime(2025, 1, 8, 2, 0, tzinfo=timezone.utc))
        tuesday_slot = monday_slot.model_copy(update={"id": 4, "day_of_week": DayOfWeek.TUESDAY})
        thursday_slot = monday_slot.model_copy(update={"id": 5, "day_of_week": DayOfWeek.THURSDAY})
        mock_db_client.get_schedule_slots.return_value = [monday_slot, tuesday_slot, thursday_slot]
        mock_db_client.get_journaled_slot_dates.return_value = {(4, date(2025, 1, 7))}

        missing = await service.get_missing_journals(MissingJournalPeriod.THIS_WEEK)

        assert [(item.slot.id, item.journal_date, item.days_overdue) for item in missing] == [(1, TODAY, 2)]
        mock_db_client.get_journaled_slot_dates.assert_awaited_once_with(TODAY, date(2025, 1, 8))

    async def test_this_month_lists_every_past_lesson_oldest_first(self, with_schedule):
        service, mock_db_client = with_schedule
        # Tuesday 2025-01-14 in Jakarta: Mondays 6 and 13 have passed this month.
        service.clock = SchoolClock("Asia/Jakarta", now_provider=lambda: datetime(2025, 1, 14, 2, 0, tzinfo=timezone.utc))

        missing = await service.get_missing_journals(MissingJournalPeriod.THIS_MONTH)

        assert [(item.journal_date, item.days_overdue) for item in missing] == [
            (date(2025, 1, 6), 8), (date(2025, 1, 13), 1)
        ]
        mock_db_client.get_journaled_slot_dates.assert_awaited_once_with(date(2025, 1, 1), date(2025, 1, 14))

    async def test_no_active_year_means_nothing_missing(self, with_schedule):
        service, mock_db_client = with_schedule
        mock_db_client.get_active_academic_year.return_value = None

        assert await service.get_missing_journals(MissingJournalPeriod.THIS_MONTH) == []
        mock_db_client.get_schedule_slots.assert_not_called()
