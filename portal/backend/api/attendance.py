from fastapi import APIRouter, Depends, HTTPException, status, Response, Request, Query
from typing import List, Optional
from datetime import date

from ..services.attendance_service import (
    AttendanceService, ClassStatusToday, TeacherClassToday, SessionListPage, SessionDetails,
    AttendanceAdminStatistics
)
from ..services.exceptions import ServiceError
from ..models.db_models import User
from ..models.enums import Role, STAFF_ROLES, ADMIN_VIEWER_ROLES
from ..models.report_models import StudentHistoryEntry, AttendanceExportRow, ClassSummary
from .schemas.attendance import (
    DailySessionCreateRequest,
    ScanRequest,
    ManualBatchRequest,
    ManualBatchResponse,
    AttendanceSessionResponse,
    AttendanceRecordResponse
)
from .auth import get_current_user
from .dependencies import get_attendance_service
from .utilities.errors import to_http_exception
from .utilities.limiter import limiter


router = APIRouter(prefix="/attendance", tags=["Attendance"])

# --- HELPERS ---

def _verify_staff_role(user: User):
    if user.role not in STAFF_ROLES:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="This operation is only valid for school staff.")

def _verify_student_role(user: User):
    if user.role != Role.STUDENT.value:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="This operation is only valid for students.")

def _verify_admin_viewer_role(user: User):
    if user.role not in ADMIN_VIEWER_ROLES:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="This operation is only valid for administrators.")

# === SECTION 1: DAILY SESSION MANAGEMENT ===

@router.post("/daily-session", response_model=AttendanceSessionResponse, summary="Open or fetch today's attendance session of a class")
@limiter.limit("30/minute")
async def create_or_get_daily_session(request: Request, create_request: DailySessionCreateRequest, user: User = Depends(get_current_user), service: AttendanceService = Depends(get_attendance_service)):
    _verify_staff_role(user)
    try:
        return await service.create_or_get_session(creator_id=user.id, class_id=create_request.class_id)
    except ServiceError as e:
        raise to_http_exception(e)

@router.post("/daily-session/{session_id}/regenerate", response_model=AttendanceSessionResponse, summary="Issue a new QR token for a session")
@limiter.limit("10/minute")
async def regenerate_session_token(request: Request, session_id: int, user: User = Depends(get_current_user), service: AttendanceService = Depends(get_attendance_service)):
    _verify_staff_role(user)
    try:
        return await service.regenerate_token(session_id)
    except ServiceError as e:
        raise to_http_exception(e)

@router.delete("/daily-session/{session_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete a session, keeping its records")
@limiter.limit("5/minute")
async def delete_daily_session(request: Request, session_id: int, user: User = Depends(get_current_user), service: AttendanceService = Depends(get_attendance_service)):
    _verify_staff_role(user)
    try:
        await service.delete_session(session_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except ServiceError as e:
        raise to_http_exception(e)

# === SECTION 2: STUDENT CHECK-IN ===

@router.post("/scan", response_model=AttendanceRecordResponse, status_code=status.HTTP_201_CREATED, summary="Check in by scanning the class QR code")
@limiter.limit("10/minute")
async def scan_attendance(request: Request, scan_request: ScanRequest, user: User = Depends(get_current_user), service: AttendanceService = Depends(get_attendance_service)):
    _verify_student_role(user)
    try:
        return await service.scan_attendance(student_id=user.id, token=scan_request.token)
    except ServiceError as e:
        raise to_http_exception(e)

@router.get("/my-history", response_model=List[StudentHistoryEntry], summary="My attendance in every session of my class this year")
@limiter.limit("20/minute")
async def get_my_history(request: Request, user: User = Depends(get_current_user), service: AttendanceService = Depends(get_attendance_service)):
    _verify_student_role(user)
    try:
        return await service.get_student_history(user.id)
    except ServiceError as e:
        raise to_http_exception(e)

# === SECTION 3: CLASS VIEWS AND MANUAL MARKING ===

@router.get("/class-status/{class_id}", response_model=ClassStatusToday, summary="Today's roster of a class with marked and unmarked students")
@limiter.limit("60/minute")
async def get_class_status(request: Request, class_id: int, user: User = Depends(get_current_user), service: AttendanceService = Depends(get_attendance_service)):
    _verify_staff_role(user)
    try:
        return await service.get_class_status_today(class_id)
    except ServiceError as e:
        raise to_http_exception(e)

@router.post("/manual-batch", response_model=ManualBatchResponse, summary="Mark several students manually in one atomic batch")
@limiter.limit("30/minute")
async def mark_manual_batch(request: Request, batch_request: ManualBatchRequest, user: User = Depends(get_current_user), service: AttendanceService = Depends(get_attendance_service)):
    _verify_staff_role(user)
    try:
        return await service.mark_batch_manual_attendance(batch_request.class_id, batch_request.entries)
    except ServiceError as e:
        raise to_http_exception(e)

@router.get("/teacher/classes", response_model=List[TeacherClassToday], summary="My classes with today's session state")
@limiter.limit("30/minute")
async def get_teacher_classes(request: Request, user: User = Depends(get_current_user), service: AttendanceService = Depends(get_attendance_service)):
    _verify_staff_role(user)
    try:
        return await service.get_teacher_classes_today(user.id)
    except ServiceError as e:
        raise to_http_exception(e)

# === SECTION 4: ADMINISTRATION ===

@router.get("/admin/sessions", response_model=SessionListPage, summary="List attendance sessions")
@limiter.limit("30/minute")
async def list_sessions(
    request: Request,
    session_date: Optional[date] = Query(None, alias="date"),
    class_id: Optional[int] = None,
    session_status: str = Query("all", alias="status", description="active, expired or all"),
    page: int = 1,
    limit: int = 20,
    user: User = Depends(get_current_user),
    service: AttendanceService = Depends(get_attendance_service)
):
    _verify_admin_viewer_role(user)
    try:
        return await service.list_sessions(session_date=session_date, class_id=class_id, status=session_status, page=page, limit=limit)
    except ServiceError as e:
        raise to_http_exception(e)

@router.get("/admin/sessions/{session_id}", response_model=SessionDetails, summary="A session with its statistics and student list")
@limiter.limit("30/minute")
async def get_session_details(request: Request, session_id: int, user: User = Depends(get_current_user), service: AttendanceService = Depends(get_attendance_service)):
    _verify_admin_viewer_role(user)
    try:
        return await service.get_session_details(session_id)
    except ServiceError as e:
        raise to_http_exception(e)

@router.get("/admin/statistics", response_model=AttendanceAdminStatistics, summary="Today's attendance across the school")
@limiter.limit("30/minute")
async def get_admin_statistics(request: Request, user: User = Depends(get_current_user), service: AttendanceService = Depends(get_attendance_service)):
    _verify_admin_viewer_role(user)
    try:
        return await service.get_admin_statistics()
    except ServiceError as e:
        raise to_http_exception(e)

@router.get("/admin/export", response_model=List[AttendanceExportRow], summary="Flat attendance rows for reports")
@limiter.limit("10/minute")
async def export_attendance(
    request: Request,
    session_date: Optional[date] = Query(None, alias="date"),
    class_id: Optional[int] = None,
    user: User = Depends(get_current_user),
    service: AttendanceService = Depends(get_attendance_service)
):
    _verify_admin_viewer_role(user)
    try:
        return await service.export_attendance_rows(session_date=session_date, class_id=class_id)
    except ServiceError as e:
        raise to_http_exception(e)

@router.get("/admin/classes", response_model=List[ClassSummary], summary="Classes with members in the active academic year")
@limiter.limit("30/minute")
async def list_classes(request: Request, user: User = Depends(get_current_user), service: AttendanceService = Depends(get_attendance_service)):
    _verify_admin_viewer_role(user)
    try:
        return await service.list_classes_for_attendance()
    except ServiceError as e:
        raise to_http_exception(e)
