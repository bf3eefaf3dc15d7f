from fastapi import APIRouter, Depends, HTTPException, status, Response, Request, Query
from typing import List, Optional
from datetime import date

from ..services.journal_service import (
    TeachingJournalService, JournalCreateRequest, JournalPage, JournalWithAttendance, JournalStatistics,
    MissingJournal
)
from ..services.exceptions import ServiceError
from ..models.db_models import User, TeachingJournal
from ..models.enums import TeacherStatus, MissingJournalPeriod, ADMIN_VIEWER_ROLES, TEACHER_ROLES
from ..modules.timing_policy import JournalTimingDecision
from .auth import get_current_user
from .dependencies import get_journal_service
from .utilities.errors import to_http_exception
from .utilities.limiter import limiter


router = APIRouter(prefix="/teaching-journals", tags=["Teaching Journals"])

# --- HELPERS ---

def _verify_teacher_role(user: User):
    if user.role not in TEACHER_ROLES:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="This operation is only valid for teachers.")

def _verify_admin_viewer_role(user: User):
    if user.role not in ADMIN_VIEWER_ROLES:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="This operation is only valid for administrators.")

# === SECTION 1: SUBMISSION ===

@router.get("/check-timing/{schedule_id}", response_model=JournalTimingDecision, summary="Check whether the journal of a lesson can be filled now")
@limiter.limit("60/minute")
async def check_timing(request: Request, schedule_id: int, user: User = Depends(get_current_user), service: TeachingJournalService = Depends(get_journal_service)):
    """
    Always answers 200 for an owned schedule; `is_valid` tells whether the
    window is open and `message` explains why not.
    """
    _verify_teacher_role(user)
    try:
        return await service.validate_timing(schedule_id, user.id)
    except ServiceError as e:
        raise to_http_exception(e)

@router.post("", response_model=TeachingJournal, status_code=status.HTTP_201_CREATED, summary="Create today's journal for a lesson")
@limiter.limit("20/minute")
async def create_journal(request: Request, journal_request: JournalCreateRequest, user: User = Depends(get_current_user), service: TeachingJournalService = Depends(get_journal_service)):
    _verify_teacher_role(user)
    try:
        return await service.create_journal(journal_request, user.id)
    except ServiceError as e:
        raise to_http_exception(e)

# === SECTION 2: TEACHER VIEWS ===

@router.get("/my-journals", response_model=JournalPage, summary="My journals with the attendance of each lesson")
@limiter.limit("30/minute")
async def get_my_journals(
    request: Request,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    class_id: Optional[int] = None,
    teacher_status: Optional[TeacherStatus] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user: User = Depends(get_current_user),
    service: TeachingJournalService = Depends(get_journal_service)
):
    _verify_teacher_role(user)
    try:
        return await service.get_my_journals(
            user.id, date_from=date_from, date_to=date_to, class_id=class_id,
            teacher_status=teacher_status, search=search, page=page, limit=limit
        )
    except ServiceError as e:
        raise to_http_exception(e)

# === SECTION 3: ADMINISTRATION ===

@router.get("/admin/statistics", response_model=JournalStatistics, summary="Journal counts: all time, this week and today")
@limiter.limit("30/minute")
async def get_journal_statistics(request: Request, user: User = Depends(get_current_user), service: TeachingJournalService = Depends(get_journal_service)):
    _verify_admin_viewer_role(user)
    try:
        return await service.get_admin_statistics()
    except ServiceError as e:
        raise to_http_exception(e)

@router.get("/admin/all", response_model=JournalPage, summary="Every teacher's journals with filters")
@limiter.limit("30/minute")
async def list_all_journals(
    request: Request,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    teacher_id: Optional[int] = None,
    class_id: Optional[int] = None,
    teacher_status: Optional[TeacherStatus] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(get_current_user),
    service: TeachingJournalService = Depends(get_journal_service)
):
    _verify_admin_viewer_role(user)
    try:
        return await service.list_all_journals(
            date_from=date_from, date_to=date_to, teacher_id=teacher_id, class_id=class_id,
            teacher_status=teacher_status, search=search, page=page, limit=limit
        )
    except ServiceError as e:
        raise to_http_exception(e)

@router.get("/admin/missing", response_model=List[MissingJournal], summary="Lessons without a journal in a period ending today")
@limiter.limit("30/minute")
async def get_missing_journals(
    request: Request,
    period: MissingJournalPeriod = MissingJournalPeriod.TODAY,
    user: User = Depends(get_current_user),
    service: TeachingJournalService = Depends(get_journal_service)
):
    _verify_admin_viewer_role(user)
    try:
        return await service.get_missing_journals(period)
    except ServiceError as e:
        raise to_http_exception(e)

# === SECTION 4: SINGLE JOURNAL ===

@router.get("/{journal_id}", response_model=JournalWithAttendance, summary="A journal with the attendance of its lesson")
@limiter.limit("60/minute")
async def get_journal(request: Request, journal_id: int, user: User = Depends(get_current_user), service: TeachingJournalService = Depends(get_journal_service)):
    if user.role not in TEACHER_ROLES and user.role not in ADMIN_VIEWER_ROLES:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="This operation is only valid for teachers and administrators.")
    try:
        return await service.get_journal_detail(journal_id, user)
    except ServiceError as e:
        raise to_http_exception(e)

@router.delete("/{journal_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete one of my journals")
@limiter.limit("10/minute")
async def delete_journal(request: Request, journal_id: int, user: User = Depends(get_current_user), service: TeachingJournalService = Depends(get_journal_service)):
    _verify_teacher_role(user)
    try:
        await service.delete_journal(journal_id, user.id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except ServiceError as e:
        raise to_http_exception(e)
