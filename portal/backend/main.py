# portal/backend/main.py
from fastapi import FastAPI
from contextlib import asynccontextmanager
import redis.asyncio as redis
import asyncpg
import logging

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from fastapi.middleware.cors import CORSMiddleware

from .config.config import settings
from .logging.logging_config import setup_logging
from .api import attendance, teaching_journals

from .modules.clock import SchoolClock
from .modules.timing_policy import build_timing_policy

from .api.utilities.limiter import limiter

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Creates the shared pools, the school clock and the journal timing policy
    on startup, and releases the pools on shutdown.
    """
    setup_logging()
    logger.info("Application starting...")

    # Misconfiguration here must stop the process, so these stay outside the try.
    school_clock = SchoolClock(settings.SCHOOL_TIMEZONE)
    app.state.school_clock = school_clock
    app.state.timing_policy = build_timing_policy(settings)

    try:
        postgres_pool = await asyncpg.create_pool(
            dsn=settings.DATABASE_URL, min_size=5, max_size=20
        )
        redis_pool = redis.ConnectionPool.from_url(
            settings.APPLICATION_REDIS_URL, decode_responses=True
        )

        app.state.postgres_pool = postgres_pool
        app.state.redis_pool = redis_pool
        logger.info("PostgreSQL and Redis connection pools created.")

    except Exception as e:
        logger.error(f"Error during startup: {e}", exc_info=True)
        app.state.postgres_pool = None
        app.state.redis_pool = None

    yield

    logger.info("Application shutting down...")
    if getattr(app.state, 'postgres_pool', None):
        await app.state.postgres_pool.close()
        logger.info("PostgreSQL connection pool closed.")
    if getattr(app.state, 'redis_pool', None):
        await app.state.redis_pool.disconnect()
        logger.info("Redis connection pool closed.")


app = FastAPI(
    title="School Portal Attendance API",
    description="Daily QR attendance and teaching journal API",
    version="1.0.0",
    lifespan=lifespan
)

app.state.limiter = limiter

origins = [
   "*"
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.include_router(attendance.router, prefix="/api/v1")
app.include_router(teaching_journals.router, prefix="/api/v1")

@app.get("/health", tags=["System"])
def health_check():
    """Liveness check."""
    return {"status": "ok", "message": "School Portal Attendance API is running."}
