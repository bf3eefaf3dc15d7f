import os
from dotenv import load_dotenv

load_dotenv()


class Config:
    """
    Settings read straight from environment variables (and an optional .env file).
    """
    APP_ENV: str = os.environ.get("APP_ENV", "development")

    # Database
    DATABASE_URL: str = os.environ.get("DATABASE_URL")

    # Redis
    APPLICATION_REDIS_URL: str = os.environ.get("APPLICATION_REDIS_URL")
    RATE_LIMITER_REDIS_URL: str = os.environ.get("RATE_LIMITER_REDIS_URL", "memory://")

    # JWT verification. Tokens are issued by the portal's identity service.
    SECRET_KEY: str = os.environ.get("SECRET_KEY")
    ALGORITHM: str = os.environ.get("ALGORITHM", "HS256")
    USER_CACHE_TTL_SECONDS: int = int(os.environ.get("USER_CACHE_TTL_SECONDS", 600))

    # School civil time
    SCHOOL_TIMEZONE: str = os.environ.get("SCHOOL_TIMEZONE", "Asia/Jakarta")

    # Daily attendance
    ATTENDANCE_SESSION_TTL_MINUTES: int = int(os.environ.get("ATTENDANCE_SESSION_TTL_MINUTES", 180))

    # Teaching journals
    JOURNAL_GRACE_BEFORE_MINUTES: int = int(os.environ.get("JOURNAL_GRACE_BEFORE_MINUTES", 30))
    JOURNAL_GRACE_AFTER_MINUTES: int = int(os.environ.get("JOURNAL_GRACE_AFTER_MINUTES", 120))
    JOURNAL_TIMING_POLICY: str = os.environ.get("JOURNAL_TIMING_POLICY", "window")

# Single importable settings instance
settings = Config()
