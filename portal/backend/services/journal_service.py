import logging
import math
from datetime import date, timedelta
from typing import Dict, List, Optional

import asyncpg
from pydantic import BaseModel, Field, model_validator

# --- Required clients and models ---
from ..db.db_client import AsyncPostgresClient
from ..models.db_models import ScheduleSlot, TeachingJournal, User
from ..models.enums import (
    ADMIN_VIEWER_ROLES, AttendanceStatus, DayOfWeek, LearningMethod, MissingJournalPeriod, TeacherStatus
)
from ..models.report_models import JournalListItem
from ..modules.clock import SchoolClock
from ..modules.schedule_finder import filter_slots_in_rotation, find_slots_for_day
from ..modules.timing_policy import JournalTimingDecision, JournalTimingPolicy
from .exceptions import ConflictError, NotFoundError, ServiceError, TimingError

logger = logging.getLogger(__name__)


# --- Request and view models ---
class JournalCreateRequest(BaseModel):
    """
    A teacher's journal for one lesson. A present teacher documents the lesson
    (topic and method); an absent one explains why in ``teacher_notes``.
    """
    schedule_id: int
    journal_date: date
    teacher_status: TeacherStatus
    teacher_notes: Optional[str] = None
    material_topic: Optional[str] = None
    material_description: Optional[str] = None
    learning_method: Optional[LearningMethod] = None
    learning_media: Optional[str] = None
    learning_achievement: Optional[str] = None
    reflection_notes: Optional[str] = Field(None, min_length=100, max_length=500)

    @model_validator(mode="after")
    def check_required_by_status(self):
        if self.teacher_status == TeacherStatus.PRESENT:
            if not self.material_topic or not self.learning_method:
                raise ValueError("Material topic and learning method are required when the teacher is present.")
        elif not self.teacher_notes:
            raise ValueError("Teacher notes are required when the teacher is not present.")
        return self


class JournalAttendanceSummary(BaseModel):
    total: int = 0
    present: int = 0
    sick: int = 0
    excused: int = 0
    absent: int = 0
    rate: float = 0.0


class JournalWithAttendance(JournalListItem):
    attendance: Optional[JournalAttendanceSummary] = None


class JournalPage(BaseModel):
    journals: List[JournalWithAttendance]
    total: int
    page: int
    limit: int
    total_pages: int


class JournalStatistics(BaseModel):
    total: int
    this_week: int
    today: int


class MissingJournal(BaseModel):
    """A lesson on ``journal_date`` whose teacher has not filled the journal."""
    slot: ScheduleSlot
    journal_date: date
    days_overdue: int


def _period_start(period: MissingJournalPeriod, today: date) -> date:
    if period == MissingJournalPeriod.THIS_WEEK:
        return today - timedelta(days=today.weekday())
    if period == MissingJournalPeriod.THIS_MONTH:
        return today.replace(day=1)
    return today


def _summarize(counts: Dict[str, int]) -> JournalAttendanceSummary:
    total = sum(counts.values())
    present = counts.get(AttendanceStatus.PRESENT.value, 0)
    return JournalAttendanceSummary(
        total=total,
        present=present,
        sick=counts.get(AttendanceStatus.SICK.value, 0),
        excused=counts.get(AttendanceStatus.EXCUSED.value, 0),
        absent=counts.get(AttendanceStatus.ABSENT.value, 0),
        rate=round(present / total * 100, 1) if total else 0.0,
    )


class TeachingJournalService:
    """
    Teaching journals: the timing gate in front of submission, the one-per-lesson
    rule and the views teachers and administrators read them through.
    """
    def __init__(self, db_client: AsyncPostgresClient, clock: SchoolClock, timing_policy: JournalTimingPolicy):
        self.db_client = db_client
        self.clock = clock
        self.timing_policy = timing_policy

    async def _get_owned_slot(self, schedule_id: int, teacher_id: int) -> ScheduleSlot:
        slot = await self.db_client.get_teacher_schedule_slot(schedule_id, teacher_id)
        if not slot:
            logger.warning(f"Teacher {teacher_id} asked for schedule {schedule_id} which is missing or not theirs.")
            raise NotFoundError("Schedule not found or not yours.")
        return slot

    async def validate_timing(self, schedule_id: int, teacher_id: int) -> JournalTimingDecision:
        slot = await self._get_owned_slot(schedule_id, teacher_id)
        return self.timing_policy.evaluate(slot, self.clock.now())

    async def create_journal(self, data: JournalCreateRequest, teacher_id: int) -> TeachingJournal:
        try:
            slot = await self._get_owned_slot(data.schedule_id, teacher_id)
            now = self.clock.now()

            decision = self.timing_policy.evaluate(slot, now)
            if not decision.is_valid:
                logger.warning(f"Teacher {teacher_id} submitted a journal for schedule {slot.id} outside its window.")
                raise TimingError(decision.message)

            if data.journal_date != now.local_date:
                raise TimingError(f"Journals can only be filled for today ({now.local_date.isoformat()}).")

            if await self.db_client.get_journal_by_schedule_and_date(slot.id, now.local_date):
                raise ConflictError("A journal for this schedule has already been created today.")

            journal = TeachingJournal(
                **data.model_dump(),
                teacher_user_id=teacher_id,
                daily_session_id=await self._find_daily_session_id(slot.class_id, now.local_date),
            )
            try:
                saved = await self.db_client.add_journal(journal)
            except asyncpg.UniqueViolationError as e:
                raise ConflictError("A journal for this schedule has already been created today.") from e

            logger.info(f"Journal {saved.id} created by teacher {teacher_id} for schedule {slot.id} (session link: {saved.daily_session_id}).")
            return saved
        except ServiceError:
            raise
        except Exception as e:
            logger.error(f"Error while creating journal for schedule {data.schedule_id}.", exc_info=True)
            raise ServiceError("A server error occurred while saving the journal.") from e

    async def _find_daily_session_id(self, class_id: int, journal_date: date) -> Optional[int]:
        """Today's attendance session of the class, if any. A failed lookup leaves the journal unlinked."""
        try:
            session = await self.db_client.get_attendance_session_by_class_and_date(class_id, journal_date)
            return session.id if session else None
        except Exception as e:
            logger.warning(f"Could not look up attendance session of class {class_id} for journal linking: {e}")
            return None

    async def _attach_attendance(self, journals: List[JournalListItem]) -> List[JournalWithAttendance]:
        session_ids = [j.daily_session_id for j in journals if j.daily_session_id is not None]
        counts = await self.db_client.get_record_status_counts(session_ids)
        return [
            JournalWithAttendance(
                **journal.model_dump(),
                attendance=_summarize(counts.get(journal.daily_session_id, {})) if journal.daily_session_id else None,
            )
            for journal in journals
        ]

    async def _journal_page(self, teacher_id: Optional[int], date_from: Optional[date], date_to: Optional[date],
                            class_id: Optional[int], teacher_status: Optional[TeacherStatus],
                            search: Optional[str], page: int, limit: int) -> JournalPage:
        journals, total = await self.db_client.get_journals(
            teacher_user_id=teacher_id, date_from=date_from, date_to=date_to, class_id=class_id,
            teacher_status=teacher_status.value if teacher_status else None,
            search=search or None, limit=limit, offset=(page - 1) * limit,
        )
        return JournalPage(
            journals=await self._attach_attendance(journals),
            total=total, page=page, limit=limit,
            total_pages=math.ceil(total / limit) if total else 0,
        )

    async def get_my_journals(self, teacher_id: int, date_from: Optional[date] = None, date_to: Optional[date] = None,
                              class_id: Optional[int] = None, teacher_status: Optional[TeacherStatus] = None,
                              search: Optional[str] = None, page: int = 1, limit: int = 10) -> JournalPage:
        return await self._journal_page(teacher_id, date_from, date_to, class_id, teacher_status, search, page, limit)

    async def list_all_journals(self, date_from: Optional[date] = None, date_to: Optional[date] = None,
                                teacher_id: Optional[int] = None, class_id: Optional[int] = None,
                                teacher_status: Optional[TeacherStatus] = None, search: Optional[str] = None,
                                page: int = 1, limit: int = 20) -> JournalPage:
        """Every teacher's journals for administrators. ``search`` also matches the teacher's name."""
        return await self._journal_page(teacher_id, date_from, date_to, class_id, teacher_status, search, page, limit)

    async def get_journal_detail(self, journal_id: int, user: User) -> JournalWithAttendance:
        """Administrators may read any journal; everyone else only their own."""
        journal = await self.db_client.get_journal_item(journal_id)
        if not journal or (user.role not in ADMIN_VIEWER_ROLES and journal.teacher_user_id != user.id):
            raise NotFoundError("Journal not found.")
        return (await self._attach_attendance([journal]))[0]

    async def delete_journal(self, journal_id: int, teacher_id: int) -> None:
        journal = await self.db_client.get_journal(journal_id)
        if not journal or journal.teacher_user_id != teacher_id:
            raise NotFoundError("Journal not found.")
        try:
            await self.db_client.delete_journal(journal_id)
        except Exception as e:
            logger.error(f"Error while deleting journal {journal_id}.", exc_info=True)
            raise ServiceError("A server error occurred while deleting the journal.") from e
        logger.info(f"Journal {journal_id} deleted by teacher {teacher_id}.")

    async def get_admin_statistics(self) -> JournalStatistics:
        today = self.clock.today()
        week_start = today - timedelta(days=today.weekday())
        return JournalStatistics(
            total=await self.db_client.count_journals(),
            this_week=await self.db_client.count_journals(date_from=week_start, date_to=today),
            today=await self.db_client.count_journals(date_from=today, date_to=today),
        )

    async def get_missing_journals(self, period: MissingJournalPeriod = MissingJournalPeriod.TODAY) -> List[MissingJournal]:
        """
        Lessons from the start of ``period`` up to today that have no journal,
        oldest first. Rotation uses the schedule weeks active today.
        """
        academic_year = await self.db_client.get_active_academic_year()
        if not academic_year:
            return []

        today = self.clock.today()
        period_start = _period_start(period, today)

        slots = await self.db_client.get_schedule_slots(academic_year.id)
        active_weeks = await self.db_client.get_active_schedule_weeks(academic_year.id)
        slots = filter_slots_in_rotation(slots, {week.grade_level: week.week_type for week in active_weeks})
        journaled = await self.db_client.get_journaled_slot_dates(period_start, today)

        missing = []
        lesson_date = period_start
        while lesson_date <= today:
            for slot in find_slots_for_day(slots, DayOfWeek.from_weekday(lesson_date.weekday())):
                if (slot.id, lesson_date) not in journaled:
                    missing.append(MissingJournal(
                        slot=slot, journal_date=lesson_date, days_overdue=(today - lesson_date).days
                    ))
            lesson_date += timedelta(days=1)
        return missing
