# portal/backend/models/enums.py

from enum import Enum


class Role(str, Enum):
    ADMIN = "Admin"
    TEACHER = "Teacher"
    HOMEROOM_TEACHER = "HomeroomTeacher"
    DUTY_OFFICER = "DutyOfficer"
    PRINCIPAL = "Principal"
    VICE_PRINCIPAL = "VicePrincipal"
    STUDENT = "Student"


class AttendanceStatus(str, Enum):
    PRESENT = "Present"
    SICK = "Sick"
    EXCUSED = "Excused"
    ABSENT = "Absent"


class CaptureMethod(str, Enum):
    """How an attendance record was captured."""
    SCAN = "Scan"
    MANUAL = "Manual"


class WeekType(str, Enum):
    A = "A"
    B = "B"
    GENERAL = "General"


class DayOfWeek(str, Enum):
    MONDAY = "Monday"
    TUESDAY = "Tuesday"
    WEDNESDAY = "Wednesday"
    THURSDAY = "Thursday"
    FRIDAY = "Friday"
    SATURDAY = "Saturday"
    SUNDAY = "Sunday"

    @classmethod
    def from_weekday(cls, weekday: int) -> "DayOfWeek":
        """Maps ``date.weekday()`` (Monday == 0) to a day name."""
        return list(cls)[weekday]

    @property
    def is_weekend(self) -> bool:
        return self in (DayOfWeek.SATURDAY, DayOfWeek.SUNDAY)


class TeacherStatus(str, Enum):
    PRESENT = "Present"
    SICK = "Sick"
    EXCUSED = "Excused"
    ABSENT = "Absent"


class LearningMethod(str, Enum):
    LECTURE = "Lecture"
    DISCUSSION = "Discussion"
    PRACTICE = "Practice"
    DEMONSTRATION = "Demonstration"
    EXPERIMENT = "Experiment"
    STUDENT_PRESENTATION = "StudentPresentation"
    QUESTION_ANSWER = "QuestionAnswer"
    GROUP_LEARNING = "GroupLearning"
    PROJECT = "Project"
    PROBLEM_SOLVING = "ProblemSolving"


class MissingJournalPeriod(str, Enum):
    """How far back the missing-journal report looks, always ending today."""
    TODAY = "today"
    THIS_WEEK = "this_week"
    THIS_MONTH = "this_month"


# Plain strings, compared against User.role.
STAFF_ROLES = frozenset(role.value for role in (Role.TEACHER, Role.HOMEROOM_TEACHER, Role.DUTY_OFFICER, Role.ADMIN))
ADMIN_VIEWER_ROLES = frozenset(role.value for role in (Role.ADMIN, Role.DUTY_OFFICER, Role.PRINCIPAL, Role.VICE_PRINCIPAL))
TEACHER_ROLES = frozenset(role.value for role in (Role.TEACHER, Role.HOMEROOM_TEACHER))
