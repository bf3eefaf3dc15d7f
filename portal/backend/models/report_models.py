# portal/backend/models/report_models.py
# Read-side rows assembled by joins in AsyncPostgresClient.

from pydantic import BaseModel
from datetime import date, datetime, time
from typing import Optional

from .db_models import AttendanceSession, TeachingJournal
from .enums import AttendanceStatus, CaptureMethod, DayOfWeek


class RosterEntry(BaseModel):
    """A class member together with their mark (if any) in one session."""
    student_user_id: int
    full_name: str
    nisn: Optional[str] = None
    status: Optional[AttendanceStatus] = None
    capture_method: Optional[CaptureMethod] = None
    marked_at: Optional[datetime] = None
    notes: Optional[str] = None


class StudentHistoryEntry(BaseModel):
    session_id: int
    session_date: date
    class_name: str
    status: Optional[AttendanceStatus] = None
    capture_method: Optional[CaptureMethod] = None
    marked_at: Optional[datetime] = None
    notes: Optional[str] = None


class SessionOverview(AttendanceSession):
    """An attendance session with its class size and how many students are marked."""
    grade_level: Optional[int] = None
    created_by_name: Optional[str] = None
    total_students: int = 0
    attendance_count: int = 0
    present_count: int = 0


class ClassSummary(BaseModel):
    id: int
    class_name: str
    grade_level: int
    major_name: Optional[str] = None
    total_students: int = 0


class AttendanceExportRow(BaseModel):
    session_date: date
    class_name: str
    student_name: str
    nisn: Optional[str] = None
    status: AttendanceStatus
    capture_method: CaptureMethod
    marked_at: datetime
    notes: Optional[str] = None


class JournalListItem(TeachingJournal):
    """A teaching journal joined with its timetable slot."""
    class_id: int
    class_name: str
    subject_name: str
    day_of_week: DayOfWeek
    start_time: time
    end_time: time
    teacher_name: Optional[str] = None
