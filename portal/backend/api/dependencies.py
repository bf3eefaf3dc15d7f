# portal/backend/api/dependencies.py
from datetime import timedelta

from fastapi import Request, Depends
import redis.asyncio as redis
import asyncpg

from ..config.config import settings
from ..db.db_client import AsyncPostgresClient
from ..modules.clock import SchoolClock
from ..modules.timing_policy import JournalTimingPolicy
from ..services.attendance_service import AttendanceService
from ..services.journal_service import TeachingJournalService


def get_redis_pool(request: Request) -> redis.ConnectionPool:
    """
    Provides the Redis connection pool created at startup.
    """
    return request.app.state.redis_pool

def get_postgres_pool(request: Request) -> asyncpg.Pool:
    """
    Provides the PostgreSQL connection pool created at startup.
    """
    return request.app.state.postgres_pool

def get_school_clock(request: Request) -> SchoolClock:
    return request.app.state.school_clock

def get_timing_policy(request: Request) -> JournalTimingPolicy:
    return request.app.state.timing_policy


def get_attendance_service(
    postgres_pool: asyncpg.Pool = Depends(get_postgres_pool),
    clock: SchoolClock = Depends(get_school_clock)
) -> AttendanceService:
    """
    Builds a fresh AttendanceService for every request on top of the shared pool.
    """
    db_client = AsyncPostgresClient(pool=postgres_pool)
    return AttendanceService(
        db_client=db_client,
        clock=clock,
        session_ttl=timedelta(minutes=settings.ATTENDANCE_SESSION_TTL_MINUTES)
    )


def get_journal_service(
    postgres_pool: asyncpg.Pool = Depends(get_postgres_pool),
    clock: SchoolClock = Depends(get_school_clock),
    timing_policy: JournalTimingPolicy = Depends(get_timing_policy)
) -> TeachingJournalService:
    """
    Same as get_attendance_service, with the timing policy chosen at startup.
    """
    db_client = AsyncPostgresClient(pool=postgres_pool)
    return TeachingJournalService(db_client=db_client, clock=clock, timing_policy=timing_policy)
