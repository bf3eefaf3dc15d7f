# tests/api/conftest.py
import pytest
import pytest_asyncio
import httpx
from unittest.mock import AsyncMock

from portal.backend.main import app
from portal.backend.api.auth import get_current_user
from portal.backend.api.dependencies import get_attendance_service, get_journal_service
from portal.backend.api.utilities.limiter import limiter
from portal.backend.models.db_models import User
from tests.api.sample_users import STAFF_USER



class CurrentUser:
    """Mutable holder so a test can switch who is calling."""
    def __init__(self, user: User):
        self.user = user


@pytest.fixture
def current_user() -> CurrentUser:
    return CurrentUser(STAFF_USER)


@pytest_asyncio.fixture
async def api_client(current_user):
    """
    An in-process client against the FastAPI app. Authentication and the
    services are replaced with overrides; the lifespan (pools, clock) does not run.
    """
    attendance_service = AsyncMock()
    journal_service = AsyncMock()
    app.dependency_overrides[get_current_user] = lambda: current_user.user
    app.dependency_overrides[get_attendance_service] = lambda: attendance_service
    app.dependency_overrides[get_journal_service] = lambda: journal_service
    limiter.enabled = False

    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test/api/v1") as client:
        yield client, attendance_service, journal_service

    app.dependency_overrides.clear()
    limiter.enabled = True
