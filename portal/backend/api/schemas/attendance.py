from pydantic import BaseModel, Field, ConfigDict
from datetime import date, datetime
from typing import List, Optional

from ...models.enums import AttendanceStatus, CaptureMethod
from ...services.attendance_service import ManualAttendanceEntry

class DailySessionCreateRequest(BaseModel):
    """Request model for opening (or fetching) today's session of a class."""
    class_id: int = Field(..., gt=0, description="The class to take attendance for.")

class ScanRequest(BaseModel):
    token: str = Field(..., min_length=1, description="The payload read from the QR code.")

class ManualBatchRequest(BaseModel):
    """Manual marks for today's session of a class. Applied all together or not at all."""
    class_id: int = Field(..., gt=0)
    entries: List[ManualAttendanceEntry] = Field(..., min_length=1)

class ManualBatchResponse(BaseModel):
    count: int
    message: str

class AttendanceSessionResponse(BaseModel):
    """Response model for a daily attendance session."""
    id: int
    session_date: date
    token: str = Field(description="The QR payload. Show it to the class, never to other classes.")
    class_id: int
    class_name: Optional[str] = None
    expires_at: datetime
    created_by_id: int
    academic_year_id: int
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

class AttendanceRecordResponse(BaseModel):
    """Response model for one student's attendance record."""
    session_id: int
    class_id: int
    session_date: date
    student_user_id: int
    status: AttendanceStatus
    capture_method: CaptureMethod
    marked_at: datetime
    notes: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)
