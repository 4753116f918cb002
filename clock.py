from datetime import datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings


class Clock:
    """Wall clock in the configured timezone, returning naive local datetimes."""

    def __init__(self, timezone: Optional[str] = None) -> None:
        self.timezone = timezone or get_settings().timezone

    def now(self) -> datetime:
        return datetime.now(ZoneInfo(self.timezone)).replace(tzinfo=None)


class FixedClock(Clock):
    def __init__(self, moment: datetime) -> None:
        self.timezone = "UTC"
        self.moment = moment

    def now(self) -> datetime:
        return self.moment

    def advance(self, **kwargs: float) -> None:
        self.moment = self.moment + timedelta(**kwargs)
