# portal/backend/modules/clock.py

from datetime import datetime, date, time, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict

from ..models.enums import DayOfWeek


class CivilDateTime(BaseModel):
    """
    A moment expressed in the school's civil calendar.

    ``instant`` is the aware UTC timestamp; ``local_date``, ``local_time`` and ``weekday``
    are what a wall clock in the school shows at that instant.
    """
    instant: datetime
    local_date: date
    local_time: time
    weekday: DayOfWeek

    model_config = ConfigDict(frozen=True)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SchoolClock:
    """
    Time zone aware clock for every day-of-week and time-window decision.

    The server process may run in any time zone (usually UTC); all civil
    comparisons go through this object instead of raw ``datetime`` getters.
    """
    def __init__(self, timezone_name: str, now_provider: Optional[Callable[[], datetime]] = None):
        self.tz = ZoneInfo(timezone_name)
        self._now_provider = now_provider or _utc_now

    def localize(self, instant: datetime) -> CivilDateTime:
        if instant.tzinfo is None:
            raise ValueError("SchoolClock only accepts timezone-aware datetimes.")
        local = instant.astimezone(self.tz)
        return CivilDateTime(
            instant=instant.astimezone(timezone.utc),
            local_date=local.date(),
            local_time=local.time().replace(tzinfo=None),
            weekday=DayOfWeek.from_weekday(local.weekday()),
        )

    def now(self) -> CivilDateTime:
        return self.localize(self._now_provider())

    def today(self) -> date:
        return self.now().local_date

    def format_time(self, instant: datetime) -> str:
        """Renders an instant as school-local ``HH:MM``."""
        return self.localize(instant).local_time.strftime("%H:%M")
