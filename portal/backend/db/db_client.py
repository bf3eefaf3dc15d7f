import logging
from typing import Dict, List, Optional, Set, Tuple
from datetime import date, datetime
import asyncpg

from ..models.db_models import (
    User, AcademicYear, SchoolClass, ActiveScheduleWeek, ScheduleSlot,
    AttendanceSession, AttendanceRecord, TeachingJournal
)
from ..models.report_models import (
    RosterEntry, StudentHistoryEntry, SessionOverview, ClassSummary,
    AttendanceExportRow, JournalListItem
)

logger = logging.getLogger(__name__)

_SLOT_SELECT = """
    SELECT s.id, s.assignment_id, s.academic_year_id, s.day_of_week, s.start_time, s.end_time,
           s.week_type, s.room_name, a.teacher_user_id, a.class_id, a.subject_name,
           t.full_name AS teacher_name, c.class_name, c.grade_level
    FROM ScheduleSlots s
    JOIN TeacherAssignments a ON a.id = s.assignment_id
    JOIN Classes c ON c.id = a.class_id
    LEFT JOIN Users t ON t.id = a.teacher_user_id
"""

_SESSION_SELECT = """
    SELECT s.*, c.class_name
    FROM AttendanceSessions s
    JOIN Classes c ON c.id = s.class_id
"""

_SESSION_OVERVIEW_SELECT = """
    SELECT s.*, c.class_name, c.grade_level, u.full_name AS created_by_name,
           (SELECT COUNT(*) FROM ClassMembers m
             WHERE m.class_id = s.class_id AND m.academic_year_id = s.academic_year_id) AS total_students,
           (SELECT COUNT(*) FROM AttendanceRecords r WHERE r.session_id = s.id) AS attendance_count,
           (SELECT COUNT(*) FROM AttendanceRecords r
             WHERE r.session_id = s.id AND r.status = 'Present') AS present_count
    FROM AttendanceSessions s
    JOIN Classes c ON c.id = s.class_id
    LEFT JOIN Users u ON u.id = s.created_by_id
"""

_SESSION_FILTER = """
    WHERE ($1::date IS NULL OR s.session_date = $1)
      AND ($2::bigint IS NULL OR s.class_id = $2)
      AND ($3::text = 'all'
           OR ($3::text = 'active' AND s.expires_at > $4)
           OR ($3::text = 'expired' AND s.expires_at <= $4))
"""

_JOURNAL_FROM = """
    FROM TeachingJournals j
    JOIN ScheduleSlots s ON s.id = j.schedule_id
    JOIN TeacherAssignments a ON a.id = s.assignment_id
    JOIN Classes c ON c.id = a.class_id
    LEFT JOIN Users t ON t.id = j.teacher_user_id
"""

_JOURNAL_SELECT = """
    SELECT j.*, a.class_id, c.class_name, a.subject_name, s.day_of_week, s.start_time, s.end_time,
           t.full_name AS teacher_name
""" + _JOURNAL_FROM

# $1 NULL lists every teacher's journals.
_JOURNAL_FILTER = """
    WHERE ($1::bigint IS NULL OR j.teacher_user_id = $1)
      AND ($2::date IS NULL OR j.journal_date >= $2)
      AND ($3::date IS NULL OR j.journal_date <= $3)
      AND ($4::bigint IS NULL OR a.class_id = $4)
      AND ($5::text IS NULL OR j.teacher_status = $5)
      AND ($6::text IS NULL
           OR a.subject_name ILIKE '%' || $6 || '%'
           OR c.class_name ILIKE '%' || $6 || '%'
           OR t.full_name ILIKE '%' || $6 || '%')
"""


def _affected_rows(status: str) -> int:
    """Reads the row count from an asyncpg command tag such as 'INSERT 0 3'."""
    try:
        return int(str(status).split()[-1])
    except (ValueError, IndexError):
        return 0


class AsyncPostgresClient:
    """
    PostgreSQL client for every attendance and teaching journal query.
    """
    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool

    # ===== Users & academic structure =====

    async def get_user(self, user_id: int) -> Optional[User]:
        query = "SELECT id, full_name, role, nisn FROM Users WHERE id = $1;"
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, user_id)
            return User(**record) if record else None

    async def get_active_academic_year(self) -> Optional[AcademicYear]:
        query = "SELECT * FROM AcademicYears WHERE is_active = TRUE ORDER BY id DESC LIMIT 1;"
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query)
            return AcademicYear(**record) if record else None

    async def get_class(self, class_id: int) -> Optional[SchoolClass]:
        query = "SELECT * FROM Classes WHERE id = $1;"
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, class_id)
            return SchoolClass(**record) if record else None

    async def get_active_schedule_week(self, grade_level: int, academic_year_id: int) -> Optional[ActiveScheduleWeek]:
        query = "SELECT * FROM ActiveScheduleWeeks WHERE grade_level = $1 AND academic_year_id = $2;"
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, grade_level, academic_year_id)
            return ActiveScheduleWeek(**record) if record else None

    async def get_active_schedule_weeks(self, academic_year_id: int) -> List[ActiveScheduleWeek]:
        query = "SELECT * FROM ActiveScheduleWeeks WHERE academic_year_id = $1;"
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query, academic_year_id)
            return [ActiveScheduleWeek(**record) for record in records]

    async def get_class_schedule_slots(self, class_id: int, academic_year_id: int) -> List[ScheduleSlot]:
        """All timetable slots of a class in an academic year."""
        query = _SLOT_SELECT + " WHERE a.class_id = $1 AND s.academic_year_id = $2 ORDER BY s.start_time;"
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query, class_id, academic_year_id)
            return [ScheduleSlot(**record) for record in records]

    async def get_teacher_schedule_slot(self, schedule_id: int, teacher_user_id: int) -> Optional[ScheduleSlot]:
        """A slot owned by the teacher in the currently active academic year."""
        query = _SLOT_SELECT + """
            JOIN AcademicYears y ON y.id = s.academic_year_id
            WHERE s.id = $1 AND a.teacher_user_id = $2 AND y.is_active = TRUE;
        """
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, schedule_id, teacher_user_id)
            return ScheduleSlot(**record) if record else None

    async def get_schedule_slots(self, academic_year_id: int) -> List[ScheduleSlot]:
        """Every timetable slot of an academic year."""
        query = _SLOT_SELECT + " WHERE s.academic_year_id = $1 ORDER BY s.start_time, c.class_name;"
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query, academic_year_id)
            return [ScheduleSlot(**record) for record in records]

    async def get_student_class_id(self, student_user_id: int, academic_year_id: int) -> Optional[int]:
        """The class a student belongs to in an academic year."""
        query = "SELECT class_id FROM ClassMembers WHERE student_user_id = $1 AND academic_year_id = $2;"
        async with self._pool.acquire() as connection:
            return await connection.fetchval(query, student_user_id, academic_year_id)

    async def get_class_member_ids(self, class_id: int, academic_year_id: int) -> List[int]:
        query = "SELECT student_user_id FROM ClassMembers WHERE class_id = $1 AND academic_year_id = $2;"
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query, class_id, academic_year_id)
            return [record["student_user_id"] for record in records]

    async def get_teacher_classes(self, teacher_user_id: int, academic_year_id: int) -> List[ClassSummary]:
        """Distinct classes a teacher is assigned to, with their member counts."""
        query = """
            SELECT c.id, c.class_name, c.grade_level, c.major_name,
                   (SELECT COUNT(*) FROM ClassMembers m
                     WHERE m.class_id = c.id AND m.academic_year_id = $2) AS total_students
            FROM Classes c
            WHERE c.id IN (SELECT class_id FROM TeacherAssignments
                            WHERE teacher_user_id = $1 AND academic_year_id = $2)
            ORDER BY c.grade_level, c.class_name;
        """
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query, teacher_user_id, academic_year_id)
            return [ClassSummary(**record) for record in records]

    async def get_classes_with_members(self, academic_year_id: int) -> List[ClassSummary]:
        """Classes that have at least one member in the academic year."""
        query = """
            SELECT c.id, c.class_name, c.grade_level, c.major_name, COUNT(m.student_user_id) AS total_students
            FROM Classes c
            JOIN ClassMembers m ON m.class_id = c.id AND m.academic_year_id = $1
            GROUP BY c.id
            ORDER BY c.grade_level, c.class_name;
        """
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query, academic_year_id)
            return [ClassSummary(**record) for record in records]

    async def count_class_members(self, academic_year_id: int) -> int:
        query = "SELECT COUNT(*) FROM ClassMembers WHERE academic_year_id = $1;"
        async with self._pool.acquire() as connection:
            return await connection.fetchval(query, academic_year_id)

    # ===== Attendance sessions =====

    async def add_attendance_session(self, session_date: date, token: str, class_id: int,
                                     expires_at: datetime, created_by_id: int, academic_year_id: int) -> AttendanceSession:
        """
        Inserts a daily session. Raises asyncpg.UniqueViolationError when the class
        already has a session for that date.
        """
        query = """
            WITH inserted AS (
                INSERT INTO AttendanceSessions (session_date, token, class_id, expires_at, created_by_id, academic_year_id)
                VALUES ($1, $2, $3, $4, $5, $6)
                RETURNING *
            )
            SELECT inserted.*, c.class_name FROM inserted JOIN Classes c ON c.id = inserted.class_id;
        """
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, session_date, token, class_id, expires_at, created_by_id, academic_year_id)
            return AttendanceSession(**record)

    async def get_attendance_session(self, session_id: int) -> Optional[AttendanceSession]:
        query = _SESSION_SELECT + " WHERE s.id = $1;"
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, session_id)
            return AttendanceSession(**record) if record else None

    async def get_attendance_session_by_token(self, token: str) -> Optional[AttendanceSession]:
        query = _SESSION_SELECT + " WHERE s.token = $1;"
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, token)
            return AttendanceSession(**record) if record else None

    async def get_attendance_session_by_class_and_date(self, class_id: int, session_date: date) -> Optional[AttendanceSession]:
        query = _SESSION_SELECT + " WHERE s.class_id = $1 AND s.session_date = $2;"
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, class_id, session_date)
            return AttendanceSession(**record) if record else None

    async def update_attendance_session_token(self, session_id: int, token: str, expires_at: datetime) -> Optional[AttendanceSession]:
        """Replaces the QR token and expiry of a session. Records are not touched."""
        query = """
            WITH updated AS (
                UPDATE AttendanceSessions SET token = $2, expires_at = $3
                WHERE id = $1
                RETURNING *
            )
            SELECT updated.*, c.class_name FROM updated JOIN Classes c ON c.id = updated.class_id;
        """
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, session_id, token, expires_at)
            return AttendanceSession(**record) if record else None

    async def delete_attendance_session(self, session_id: int) -> int:
        """Removes the session row only; its attendance records stay."""
        query = "DELETE FROM AttendanceSessions WHERE id = $1;"
        async with self._pool.acquire() as connection:
            return _affected_rows(await connection.execute(query, session_id))

    async def get_session_overviews(self, session_date: Optional[date] = None, class_id: Optional[int] = None,
                                    status: str = "all", now: Optional[datetime] = None,
                                    limit: Optional[int] = None, offset: int = 0) -> Tuple[List[SessionOverview], int]:
        """
        Sessions with member and record counts, newest first, plus the total
        number of matching sessions for pagination.
        """
        query = _SESSION_OVERVIEW_SELECT + _SESSION_FILTER + " ORDER BY s.session_date DESC, c.class_name LIMIT $5 OFFSET $6;"
        count_query = "SELECT COUNT(*) FROM AttendanceSessions s " + _SESSION_FILTER + ";"
        args = (session_date, class_id, status, now)
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query, *args, limit, offset)
            total = await connection.fetchval(count_query, *args)
            return [SessionOverview(**record) for record in records], total

    async def get_session_overviews_for_classes(self, class_ids: List[int], session_date: date) -> List[SessionOverview]:
        if not class_ids:
            return []
        query = _SESSION_OVERVIEW_SELECT + " WHERE s.class_id = ANY($1::bigint[]) AND s.session_date = $2;"
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query, class_ids, session_date)
            return [SessionOverview(**record) for record in records]

    # ===== Attendance records =====

    async def add_attendance_record(self, record: AttendanceRecord) -> AttendanceRecord:
        """
        Inserts a single record. Raises asyncpg.UniqueViolationError when the
        student already has a record for the session.
        """
        query = """
            INSERT INTO AttendanceRecords (session_id, class_id, session_date, student_user_id, status, capture_method, marked_at, notes)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
            RETURNING *;
        """
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(
                query, record.session_id, record.class_id, record.session_date, record.student_user_id,
                record.status.value, record.capture_method.value, record.marked_at, record.notes
            )
            return AttendanceRecord(**row)

    async def upsert_attendance_records(self, records: List[AttendanceRecord]) -> int:
        """
        Inserts or overwrites records for (session, student) inside one
        transaction. Any failing row rolls back the whole batch.
        """
        if not records:
            return 0

        query = """
            INSERT INTO AttendanceRecords (session_id, class_id, session_date, student_user_id, status, capture_method, marked_at, notes)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
            ON CONFLICT (session_id, student_user_id) DO UPDATE SET
                status = EXCLUDED.status,
                capture_method = EXCLUDED.capture_method,
                marked_at = EXCLUDED.marked_at,
                notes = EXCLUDED.notes;
        """
        record_data = [(
            rec.session_id, rec.class_id, rec.session_date, rec.student_user_id,
            rec.status.value, rec.capture_method.value, rec.marked_at, rec.notes
        ) for rec in records]

        async with self._pool.acquire() as connection:
            async with connection.transaction():
                await connection.executemany(query, record_data)
        return len(record_data)

    async def get_session_roster(self, session: AttendanceSession) -> List[RosterEntry]:
        """Members of the session's class with their record for that session, by name."""
        query = """
            SELECT u.id AS student_user_id, u.full_name, u.nisn,
                   r.status, r.capture_method, r.marked_at, r.notes
            FROM ClassMembers m
            JOIN Users u ON u.id = m.student_user_id
            LEFT JOIN AttendanceRecords r ON r.session_id = $3 AND r.student_user_id = m.student_user_id
            WHERE m.class_id = $1 AND m.academic_year_id = $2
            ORDER BY u.full_name;
        """
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query, session.class_id, session.academic_year_id, session.id)
            return [RosterEntry(**record) for record in records]

    async def get_student_history(self, student_user_id: int, class_id: int, academic_year_id: int) -> List[StudentHistoryEntry]:
        query = """
            SELECT s.id AS session_id, s.session_date, c.class_name,
                   r.status, r.capture_method, r.marked_at, r.notes
            FROM AttendanceSessions s
            JOIN Classes c ON c.id = s.class_id
            LEFT JOIN AttendanceRecords r ON r.session_id = s.id AND r.student_user_id = $1
            WHERE s.class_id = $2 AND s.academic_year_id = $3
            ORDER BY s.session_date DESC;
        """
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query, student_user_id, class_id, academic_year_id)
            return [StudentHistoryEntry(**record) for record in records]

    async def count_records_for_date(self, session_date: date) -> int:
        query = "SELECT COUNT(*) FROM AttendanceRecords WHERE session_date = $1;"
        async with self._pool.acquire() as connection:
            return await connection.fetchval(query, session_date)

    async def get_record_status_counts(self, session_ids: List[int]) -> Dict[int, Dict[str, int]]:
        """Per session, how many records carry each status."""
        if not session_ids:
            return {}
        query = """
            SELECT session_id, status, COUNT(*) AS total
            FROM AttendanceRecords
            WHERE session_id = ANY($1::bigint[])
            GROUP BY session_id, status;
        """
        counts: Dict[int, Dict[str, int]] = {}
        async with self._pool.acquire() as connection:
            for record in await connection.fetch(query, session_ids):
                counts.setdefault(record["session_id"], {})[record["status"]] = record["total"]
        return counts

    async def get_export_rows(self, session_date: Optional[date] = None, class_id: Optional[int] = None) -> List[AttendanceExportRow]:
        """Flat record rows for reports. Reads records directly, so deleted sessions still show up."""
        query = """
            SELECT r.session_date, c.class_name, u.full_name AS student_name, u.nisn,
                   r.status, r.capture_method, r.marked_at, r.notes
            FROM AttendanceRecords r
            JOIN Classes c ON c.id = r.class_id
            JOIN Users u ON u.id = r.student_user_id
            WHERE ($1::date IS NULL OR r.session_date = $1)
              AND ($2::bigint IS NULL OR r.class_id = $2)
            ORDER BY r.session_date DESC, c.class_name, u.full_name;
        """
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query, session_date, class_id)
            return [AttendanceExportRow(**record) for record in records]

    # ===== Teaching journals =====

    async def get_journal(self, journal_id: int) -> Optional[TeachingJournal]:
        query = "SELECT * FROM TeachingJournals WHERE id = $1;"
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, journal_id)
            return TeachingJournal(**record) if record else None

    async def get_journal_item(self, journal_id: int) -> Optional[JournalListItem]:
        query = _JOURNAL_SELECT + " WHERE j.id = $1;"
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, journal_id)
            return JournalListItem(**record) if record else None

    async def get_journal_by_schedule_and_date(self, schedule_id: int, journal_date: date) -> Optional[TeachingJournal]:
        query = "SELECT * FROM TeachingJournals WHERE schedule_id = $1 AND journal_date = $2;"
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, schedule_id, journal_date)
            return TeachingJournal(**record) if record else None

    async def add_journal(self, journal: TeachingJournal) -> TeachingJournal:
        """
        Inserts a journal. Raises asyncpg.UniqueViolationError when the schedule
        already has a journal for that date.
        """
        query = """
            INSERT INTO TeachingJournals (
                schedule_id, teacher_user_id, journal_date, teacher_status, teacher_notes,
                material_topic, material_description, learning_method, learning_media,
                learning_achievement, reflection_notes, daily_session_id
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
            RETURNING *;
        """
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(
                query, journal.schedule_id, journal.teacher_user_id, journal.journal_date,
                journal.teacher_status.value, journal.teacher_notes, journal.material_topic,
                journal.material_description,
                journal.learning_method.value if journal.learning_method else None,
                journal.learning_media, journal.learning_achievement, journal.reflection_notes,
                journal.daily_session_id
            )
            return TeachingJournal(**record)

    async def delete_journal(self, journal_id: int) -> int:
        query = "DELETE FROM TeachingJournals WHERE id = $1;"
        async with self._pool.acquire() as connection:
            return _affected_rows(await connection.execute(query, journal_id))

    async def get_journals(self, teacher_user_id: Optional[int] = None, date_from: Optional[date] = None,
                           date_to: Optional[date] = None, class_id: Optional[int] = None,
                           teacher_status: Optional[str] = None, search: Optional[str] = None,
                           limit: int = 10, offset: int = 0) -> Tuple[List[JournalListItem], int]:
        """
        Journals matching the filters, newest first, plus the total number of
        matches. Without ``teacher_user_id`` every teacher's journals are listed.
        """
        args = (teacher_user_id, date_from, date_to, class_id, teacher_status, search)
        query = _JOURNAL_SELECT + _JOURNAL_FILTER + " ORDER BY j.journal_date DESC, s.start_time LIMIT $7 OFFSET $8;"
        count_query = "SELECT COUNT(*) " + _JOURNAL_FROM + _JOURNAL_FILTER + ";"
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query, *args, limit, offset)
            total = await connection.fetchval(count_query, *args)
            return [JournalListItem(**record) for record in records], total

    async def count_journals(self, date_from: Optional[date] = None, date_to: Optional[date] = None) -> int:
        query = """
            SELECT COUNT(*) FROM TeachingJournals
            WHERE ($1::date IS NULL OR journal_date >= $1) AND ($2::date IS NULL OR journal_date <= $2);
        """
        async with self._pool.acquire() as connection:
            return await connection.fetchval(query, date_from, date_to)

    async def get_journaled_slot_dates(self, date_from: date, date_to: date) -> Set[Tuple[int, date]]:
        """The (schedule_id, journal_date) pairs that already have a journal in the range."""
        query = "SELECT schedule_id, journal_date FROM TeachingJournals WHERE journal_date BETWEEN $1 AND $2;"
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query, date_from, date_to)
            return {(record["schedule_id"], record["journal_date"]) for record in records}
