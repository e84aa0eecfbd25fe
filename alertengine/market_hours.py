"""
Exchange trading window in the market's local timezone.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo


@dataclass
class MarketStatus:
    """Point-in-time view of the trading window."""

    is_open: bool
    current_time: datetime
    timezone: str
    next_open: Optional[datetime] = None
    next_close: Optional[datetime] = None


class MarketHours:
    """Weekday trading window, inclusive at both ends (default 09:15-15:30 IST)."""

    def __init__(
        self,
        start_hour: int = 9,
        start_minute: int = 15,
        end_hour: int = 15,
        end_minute: int = 30,
        tz: str = "Asia/Kolkata",
    ):
        self.start_hour = start_hour
        self.start_minute = start_minute
        self.end_hour = end_hour
        self.end_minute = end_minute
        self.timezone_name = tz
        self.tz = ZoneInfo(tz)

    @property
    def start_minute_of_day(self) -> int:
        return self.start_hour * 60 + self.start_minute

    @property
    def end_minute_of_day(self) -> int:
        return self.end_hour * 60 + self.end_minute

    def local_time(self, now: datetime) -> datetime:
        """Convert ``now`` to market time. Naive datetimes are treated as UTC."""
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return now.astimezone(self.tz)

    def is_open(self, now: datetime) -> bool:
        """Check whether ``now`` falls inside the trading window."""
        local = self.local_time(now)
        if local.weekday() >= 5:
            return False
        minute_of_day = local.hour * 60 + local.minute
        return self.start_minute_of_day <= minute_of_day <= self.end_minute_of_day

    def status(self, now: datetime) -> MarketStatus:
        """Describe the window relative to ``now``."""
        local = self.local_time(now)
        if self.is_open(now):
            close_at = local.replace(
                hour=self.end_hour, minute=self.end_minute, second=0, microsecond=0
            )
            return MarketStatus(
                is_open=True,
                current_time=local,
                timezone=self.timezone_name,
                next_close=close_at,
            )

        open_at = local.replace(
            hour=self.start_hour, minute=self.start_minute, second=0, microsecond=0
        )
        if local.hour * 60 + local.minute > self.end_minute_of_day:
            open_at += timedelta(days=1)
        while open_at.weekday() >= 5:
            open_at += timedelta(days=1)

        return MarketStatus(
            is_open=False,
            current_time=local,
            timezone=self.timezone_name,
            next_open=open_at,
        )

    def describe(self) -> str:
        return (
            f"{self.start_hour:02d}:{self.start_minute:02d}-"
            f"{self.end_hour:02d}:{self.end_minute:02d} {self.timezone_name}"
        )
