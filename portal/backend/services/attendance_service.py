import logging
import math
from collections import Counter
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional
from uuid import uuid4

import asyncpg
from pydantic import BaseModel

# --- Required clients and models ---
from ..db.db_client import AsyncPostgresClient
from ..models.db_models import AcademicYear, AttendanceRecord, AttendanceSession
from ..models.enums import AttendanceStatus, CaptureMethod, WeekType
from ..models.report_models import (
    AttendanceExportRow, ClassSummary, RosterEntry, SessionOverview, StudentHistoryEntry
)
from ..modules.clock import SchoolClock
from ..modules.schedule_finder import class_has_lesson_today
from .exceptions import (
    AlreadyRecordedError, ConflictError, EligibilityError, InvalidRequestError, NotFoundError,
    ServiceError, TimingError
)

logger = logging.getLogger(__name__)

DEFAULT_SESSION_TTL = timedelta(hours=3)
SESSION_STATUS_FILTERS = ("all", "active", "expired")


def _rate(part: int, whole: int) -> float:
    return round(part / whole * 100, 1) if whole else 0.0


# --- Request and view models ---
class ManualAttendanceEntry(BaseModel):
    student_user_id: int
    status: AttendanceStatus
    notes: Optional[str] = None


class ClassStatusToday(BaseModel):
    session: AttendanceSession
    students: List[RosterEntry]
    total_students: int
    marked_count: int
    unmarked_count: int


class TeacherClassToday(ClassSummary):
    session_id: Optional[int] = None
    session_status: str = "none"
    session_date: Optional[date] = None
    qr_expires_at: Optional[datetime] = None
    attendance_count: int = 0
    present_count: int = 0


class SessionListItem(SessionOverview):
    session_status: str
    attendance_rate: float


class SessionListPage(BaseModel):
    sessions: List[SessionListItem]
    total: int
    page: int
    limit: int
    total_pages: int


class SessionStatistics(BaseModel):
    total_students: int
    present: int = 0
    sick: int = 0
    excused: int = 0
    absent: int = 0
    unmarked: int = 0
    attendance_rate: float = 0.0


class SessionDetails(BaseModel):
    session: AttendanceSession
    statistics: SessionStatistics
    students: List[RosterEntry]


class ClassAttendanceRate(BaseModel):
    class_id: int
    class_name: str
    present_count: int
    total_students: int
    attendance_rate: float


class AttendanceAdminStatistics(BaseModel):
    report_date: date
    total_sessions: int
    total_students: int
    total_records: int
    present_count: int
    attendance_rate: float
    best_class: Optional[ClassAttendanceRate] = None
    worst_class: Optional[ClassAttendanceRate] = None
    top_classes: List[ClassAttendanceRate] = []


class AttendanceService:
    """
    Daily QR attendance sessions: opening them, scanning into them,
    manual corrections and the read views built on top.
    """
    def __init__(self, db_client: AsyncPostgresClient, clock: SchoolClock,
                 session_ttl: timedelta = DEFAULT_SESSION_TTL):
        self.db_client = db_client
        self.clock = clock
        self.session_ttl = session_ttl

    async def _require_active_year(self) -> AcademicYear:
        academic_year = await self.db_client.get_active_academic_year()
        if not academic_year:
            raise EligibilityError("No active academic year is configured.")
        return academic_year

    def _session_status(self, session: AttendanceSession) -> str:
        return "active" if session.expires_at > self.clock.now().instant else "expired"

    # ===== Session lifecycle =====

    async def create_or_get_session(self, creator_id: int, class_id: int) -> AttendanceSession:
        """
        Returns today's session for the class, opening one when none exists yet.
        An existing session is returned as is; its token and expiry are not touched.
        """
        try:
            school_class = await self.db_client.get_class(class_id)
            if not school_class:
                raise NotFoundError(f"Class {class_id} not found.")

            academic_year = await self._require_active_year()
            now = self.clock.now()

            if now.weekday.is_weekend:
                raise EligibilityError(f"Attendance sessions cannot be opened on {now.weekday.value}.")

            active_week = await self.db_client.get_active_schedule_week(school_class.grade_level, academic_year.id)
            if active_week and active_week.week_type != WeekType.GENERAL:
                slots = await self.db_client.get_class_schedule_slots(class_id, academic_year.id)
                if not class_has_lesson_today(slots, now.weekday, active_week):
                    logger.warning(f"Class {class_id} has no lessons in active week {active_week.week_type.value} today.")
                    raise EligibilityError(
                        f"No active schedule for class {school_class.class_name} today "
                        f"(active week: {active_week.week_type.value})."
                    )

            existing = await self.db_client.get_attendance_session_by_class_and_date(class_id, now.local_date)
            if existing:
                return existing

            try:
                session = await self.db_client.add_attendance_session(
                    session_date=now.local_date,
                    token=str(uuid4()),
                    class_id=class_id,
                    expires_at=now.instant + self.session_ttl,
                    created_by_id=creator_id,
                    academic_year_id=academic_year.id,
                )
            except asyncpg.UniqueViolationError:
                # Another request opened the session first.
                existing = await self.db_client.get_attendance_session_by_class_and_date(class_id, now.local_date)
                if existing:
                    logger.info(f"Concurrent session creation for class {class_id}; returning session {existing.id}.")
                    return existing
                raise ConflictError("An attendance session for this class is being created. Please retry.")

            logger.info(f"Attendance session {session.id} opened for class {class_id} on {session.session_date} by user {creator_id}.")
            return session
        except ServiceError:
            raise
        except Exception as e:
            logger.error(f"Error while opening attendance session for class {class_id}.", exc_info=True)
            raise ServiceError("A server error occurred while opening the attendance session.") from e

    async def scan_attendance(self, student_id: int, token: str) -> AttendanceRecord:
        try:
            session = await self.db_client.get_attendance_session_by_token(token)
            if not session:
                logger.warning(f"Student {student_id} scanned an unknown QR token.")
                raise NotFoundError("Invalid QR token.")

            now = self.clock.now()
            if session.session_date != now.local_date:
                raise TimingError("This QR code does not belong to today's attendance session.")
            if now.instant >= session.expires_at:
                raise TimingError(f"This QR code expired at {self.clock.format_time(session.expires_at)}.")

            academic_year = await self._require_active_year()
            student_class_id = await self.db_client.get_student_class_id(student_id, academic_year.id)
            if student_class_id != session.class_id:
                logger.warning(f"Student {student_id} tried to check into session {session.id} of another class.")
                raise EligibilityError(f"You are not a member of class {session.class_name}.")

            record = AttendanceRecord(
                session_id=session.id,
                class_id=session.class_id,
                session_date=session.session_date,
                student_user_id=student_id,
                status=AttendanceStatus.PRESENT,
                capture_method=CaptureMethod.SCAN,
                marked_at=now.instant,
            )
            try:
                saved = await self.db_client.add_attendance_record(record)
            except asyncpg.UniqueViolationError as e:
                raise AlreadyRecordedError("Your attendance has already been recorded today.") from e

            logger.info(f"Student {student_id} checked into session {session.id}.")
            return saved
        except ServiceError:
            raise
        except Exception as e:
            logger.error(f"Error while recording scan of student {student_id}.", exc_info=True)
            raise ServiceError("A server error occurred while recording attendance.") from e

    async def mark_batch_manual_attendance(self, class_id: int, entries: List[ManualAttendanceEntry]) -> Dict:
        """
        Upserts manual marks for today's session of a class. The whole batch is
        validated first and written in one transaction, so it applies fully or not at all.
        """
        if not entries:
            raise InvalidRequestError("At least one attendance entry is required.")

        try:
            now = self.clock.now()
            session = await self.db_client.get_attendance_session_by_class_and_date(class_id, now.local_date)
            if not session:
                raise NotFoundError("No attendance session for this class today. Open one first.")

            duplicates = sorted(sid for sid, n in Counter(e.student_user_id for e in entries).items() if n > 1)
            if duplicates:
                raise InvalidRequestError(f"Students listed more than once: {', '.join(map(str, duplicates))}.")

            members = set(await self.db_client.get_class_member_ids(class_id, session.academic_year_id))
            outsiders = [e.student_user_id for e in entries if e.student_user_id not in members]
            if outsiders:
                raise EligibilityError(
                    f"Students {', '.join(map(str, outsiders))} are not members of class {session.class_name}."
                )

            records = [
                AttendanceRecord(
                    session_id=session.id,
                    class_id=session.class_id,
                    session_date=session.session_date,
                    student_user_id=entry.student_user_id,
                    status=entry.status,
                    capture_method=CaptureMethod.MANUAL,
                    marked_at=now.instant,
                    notes=entry.notes,
                )
                for entry in entries
            ]
            count = await self.db_client.upsert_attendance_records(records)
            logger.info(f"Manual attendance saved for {count} students in session {session.id}.")
            return {"count": count, "message": f"Attendance saved for {count} students."}
        except ServiceError:
            raise
        except Exception as e:
            logger.error(f"Error while saving manual attendance for class {class_id}. Batch rolled back.", exc_info=True)
            raise ServiceError("A server error occurred while saving attendance. No changes were made.") from e

    async def regenerate_token(self, session_id: int) -> AttendanceSession:
        try:
            if not await self.db_client.get_attendance_session(session_id):
                raise NotFoundError(f"Attendance session {session_id} not found.")
            session = await self.db_client.update_attendance_session_token(
                session_id, str(uuid4()), self.clock.now().instant + self.session_ttl
            )
            if not session:
                raise NotFoundError(f"Attendance session {session_id} not found.")
            logger.info(f"QR token regenerated for session {session_id}.")
            return session
        except ServiceError:
            raise
        except Exception as e:
            logger.error(f"Error while regenerating token of session {session_id}.", exc_info=True)
            raise ServiceError("A server error occurred while regenerating the QR code.") from e

    async def delete_session(self, session_id: int) -> None:
        try:
            deleted = await self.db_client.delete_attendance_session(session_id)
        except Exception as e:
            logger.error(f"Error while deleting session {session_id}.", exc_info=True)
            raise ServiceError("A server error occurred while deleting the attendance session.") from e
        if not deleted:
            raise NotFoundError(f"Attendance session {session_id} not found.")
        logger.info(f"Attendance session {session_id} deleted; its records are kept.")

    # ===== Read views =====

    async def get_class_status_today(self, class_id: int) -> ClassStatusToday:
        session = await self.db_client.get_attendance_session_by_class_and_date(class_id, self.clock.today())
        if not session:
            raise NotFoundError("No attendance session for this class today.")

        students = await self.db_client.get_session_roster(session)
        marked = sum(1 for student in students if student.status is not None)
        return ClassStatusToday(
            session=session,
            students=students,
            total_students=len(students),
            marked_count=marked,
            unmarked_count=len(students) - marked,
        )

    async def get_student_history(self, student_id: int) -> List[StudentHistoryEntry]:
        academic_year = await self._require_active_year()
        class_id = await self.db_client.get_student_class_id(student_id, academic_year.id)
        if class_id is None:
            raise NotFoundError("You are not enrolled in any class this academic year.")
        return await self.db_client.get_student_history(student_id, class_id, academic_year.id)

    async def get_teacher_classes_today(self, teacher_id: int) -> List[TeacherClassToday]:
        academic_year = await self._require_active_year()
        today = self.clock.today()
        classes = await self.db_client.get_teacher_classes(teacher_id, academic_year.id)
        overviews = await self.db_client.get_session_overviews_for_classes([c.id for c in classes], today)
        sessions_by_class = {overview.class_id: overview for overview in overviews}

        result = []
        for school_class in classes:
            item = TeacherClassToday(**school_class.model_dump())
            session = sessions_by_class.get(school_class.id)
            if session:
                item.session_id = session.id
                item.session_status = self._session_status(session)
                item.session_date = session.session_date
                item.qr_expires_at = session.expires_at
                item.attendance_count = session.attendance_count
                item.present_count = session.present_count
            result.append(item)
        return result

    # ===== Admin views =====

    async def list_sessions(self, session_date: Optional[date] = None, class_id: Optional[int] = None,
                            status: str = "all", page: int = 1, limit: int = 20) -> SessionListPage:
        if status not in SESSION_STATUS_FILTERS:
            raise InvalidRequestError(f"Unknown session status filter '{status}'.")
        if page < 1 or not 1 <= limit <= 100:
            raise InvalidRequestError("Page must be at least 1 and limit between 1 and 100.")

        overviews, total = await self.db_client.get_session_overviews(
            session_date=session_date, class_id=class_id, status=status,
            now=self.clock.now().instant, limit=limit, offset=(page - 1) * limit,
        )
        sessions = [
            SessionListItem(
                **overview.model_dump(),
                session_status=self._session_status(overview),
                attendance_rate=_rate(overview.present_count, overview.total_students),
            )
            for overview in overviews
        ]
        return SessionListPage(
            sessions=sessions, total=total, page=page, limit=limit,
            total_pages=math.ceil(total / limit) if total else 0,
        )

    async def get_session_details(self, session_id: int) -> SessionDetails:
        session = await self.db_client.get_attendance_session(session_id)
        if not session:
            raise NotFoundError(f"Attendance session {session_id} not found.")

        students = await self.db_client.get_session_roster(session)
        counts = Counter(student.status for student in students if student.status is not None)
        statistics = SessionStatistics(
            total_students=len(students),
            present=counts[AttendanceStatus.PRESENT],
            sick=counts[AttendanceStatus.SICK],
            excused=counts[AttendanceStatus.EXCUSED],
            absent=counts[AttendanceStatus.ABSENT],
            unmarked=len(students) - sum(counts.values()),
            attendance_rate=_rate(counts[AttendanceStatus.PRESENT], len(students)),
        )
        return SessionDetails(session=session, statistics=statistics, students=students)

    async def get_admin_statistics(self) -> AttendanceAdminStatistics:
        """Today's attendance across the school, with the best and worst classes by present rate."""
        academic_year = await self._require_active_year()
        today = self.clock.today()

        overviews, _ = await self.db_client.get_session_overviews(session_date=today, now=self.clock.now().instant)
        total_students = await self.db_client.count_class_members(academic_year.id)
        total_records = await self.db_client.count_records_for_date(today)

        class_rates = sorted(
            (
                ClassAttendanceRate(
                    class_id=overview.class_id,
                    class_name=overview.class_name or "",
                    present_count=overview.present_count,
                    total_students=overview.total_students,
                    attendance_rate=_rate(overview.present_count, overview.total_students),
                )
                for overview in overviews
            ),
            key=lambda item: item.attendance_rate,
            reverse=True,
        )
        present_count = sum(item.present_count for item in class_rates)
        expected = sum(item.total_students for item in class_rates)

        return AttendanceAdminStatistics(
            report_date=today,
            total_sessions=len(overviews),
            total_students=total_students,
            total_records=total_records,
            present_count=present_count,
            attendance_rate=_rate(present_count, expected),
            best_class=class_rates[0] if class_rates else None,
            worst_class=class_rates[-1] if class_rates else None,
            top_classes=class_rates[:5],
        )

    async def export_attendance_rows(self, session_date: Optional[date] = None,
                                     class_id: Optional[int] = None) -> List[AttendanceExportRow]:
        return await self.db_client.get_export_rows(session_date=session_date, class_id=class_id)

    async def list_classes_for_attendance(self) -> List[ClassSummary]:
        academic_year = await self._require_active_year()
        return await self.db_client.get_classes_with_members(academic_year.id)
