# portal/backend/models/db_models.py

from pydantic import BaseModel, Field
from datetime import date, datetime, time
from typing import Optional

from .enums import AttendanceStatus, CaptureMethod, WeekType, DayOfWeek, TeacherStatus, LearningMethod


class User(BaseModel):
    """
    Represents a portal user, mapping to the 'Users' table.
    """
    id: int
    full_name: str
    role: str = Field(..., description="One of Admin, Teacher, HomeroomTeacher, DutyOfficer, Principal, VicePrincipal, Student")
    nisn: Optional[str] = Field(None, description="National student number, students only")


class AcademicYear(BaseModel):
    id: int
    year: str
    is_active: bool = False


class SchoolClass(BaseModel):
    """Maps to the 'Classes' table."""
    id: int
    class_name: str
    grade_level: int
    major_name: Optional[str] = None


class ActiveScheduleWeek(BaseModel):
    """
    Which lesson rotation ("A", "B" or "General") is in force for a grade level
    during an academic year. Maps to 'ActiveScheduleWeeks'.
    """
    grade_level: int
    academic_year_id: int
    week_type: WeekType


class ScheduleSlot(BaseModel):
    """
    A static weekly timetable entry joined with its teaching assignment.
    Read-only for the attendance and journal services.
    """
    id: int
    assignment_id: int
    academic_year_id: int
    day_of_week: DayOfWeek
    start_time: time
    end_time: time
    week_type: WeekType = WeekType.GENERAL
    room_name: Optional[str] = None
    # Denormalized from TeacherAssignments / Classes
    teacher_user_id: int
    class_id: int
    subject_name: Optional[str] = None
    teacher_name: Optional[str] = None
    class_name: Optional[str] = None
    grade_level: Optional[int] = None


class AttendanceSession(BaseModel):
    """
    One QR-bearing daily attendance session per (class, school-local day).
    Maps to the 'AttendanceSessions' table.
    """
    id: int
    session_date: date = Field(..., description="School-local civil date of the session")
    token: str = Field(..., description="Opaque QR payload")
    class_id: int
    expires_at: datetime
    created_by_id: int
    academic_year_id: int
    created_at: Optional[datetime] = None
    class_name: Optional[str] = None


class AttendanceRecord(BaseModel):
    """
    A single student's mark for a session. Maps to 'AttendanceRecords'.
    class_id and session_date are copied from the session so the record stays
    reportable after the session row is removed.
    """
    id: Optional[int] = None
    session_id: int
    class_id: int
    session_date: date
    student_user_id: int
    status: AttendanceStatus
    capture_method: CaptureMethod
    marked_at: datetime
    notes: Optional[str] = None


class TeachingJournal(BaseModel):
    """Maps to the 'TeachingJournals' table."""
    id: Optional[int] = None
    schedule_id: int
    teacher_user_id: int
    journal_date: date
    teacher_status: TeacherStatus
    teacher_notes: Optional[str] = None
    material_topic: Optional[str] = None
    material_description: Optional[str] = None
    learning_method: Optional[LearningMethod] = None
    learning_media: Optional[str] = None
    learning_achievement: Optional[str] = None
    reflection_notes: Optional[str] = None
    daily_session_id: Optional[int] = Field(None, description="Weak link to the class's attendance session of the same day")
    created_at: Optional[datetime] = None
