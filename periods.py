"""Calendar-day math for the ledger.

Every "which day does this belong to" question goes through ``DayBuckets``.
Instants are stored as naive UTC; days are dates in the configured local
timezone.
"""

import calendar
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from functools import lru_cache
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings


_OFFSET_RE = re.compile(r"^(?:UTC)?([+-])(\d{1,2})(?::?(\d{2}))?$")


def parse_timezone(value: str) -> tzinfo:
    value = value.strip()
    if value.upper() in ("UTC", "Z"):
        return timezone.utc
    match = _OFFSET_RE.match(value.upper())
    if match:
        sign, hours, minutes = match.groups()
        delta = timedelta(hours=int(hours), minutes=int(minutes or 0))
        if delta >= timedelta(hours=24):
            raise ValueError(f"Invalid UTC offset: {value}")
        return timezone(-delta if sign == "-" else delta)
    return ZoneInfo(value)


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_storage(instant: datetime) -> datetime:
    """Normalize an instant to the naive-UTC form stored in the database."""
    if instant.tzinfo is None:
        return instant
    return instant.astimezone(timezone.utc).replace(tzinfo=None)


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def previous_day(day: date) -> date:
    return day - timedelta(days=1)


def _next_month(year: int, month: int) -> tuple[int, int]:
    if month == 12:
        return year + 1, 1
    return year, month + 1


@dataclass(frozen=True)
class DayBuckets:
    tz: tzinfo

    def day_bucket(self, instant: datetime) -> date:
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=timezone.utc)
        return instant.astimezone(self.tz).date()

    def normalize(self, instant: datetime) -> datetime:
        """Storage form of a client-supplied instant.

        A naive value is wall-clock time in this zone, not UTC.
        """
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=self.tz)
        return to_storage(instant)

    def start_of(self, day: date) -> datetime:
        local = datetime.combine(day, time.min, tzinfo=self.tz)
        return to_storage(local)

    def day_range(self, day: date) -> tuple[datetime, datetime]:
        """Half-open ``[start, end)`` range of stored instants for ``day``."""
        return self.start_of(day), self.start_of(day + timedelta(days=1))

    def month_range(self, year: int, month: int) -> tuple[datetime, datetime]:
        return self.months_range(year, month, year, month)

    def months_range(
        self, start_year: int, start_month: int, end_year: int, end_month: int
    ) -> tuple[datetime, datetime]:
        """Inclusive span of calendar months as a half-open instant range."""
        if not 1 <= start_month <= 12 or not 1 <= end_month <= 12:
            raise ValueError("Month must be between 1 and 12")
        if (start_year, start_month) > (end_year, end_month):
            raise ValueError("Start month must not be after end month")
        after_year, after_month = _next_month(end_year, end_month)
        return (
            self.start_of(date(start_year, start_month, 1)),
            self.start_of(date(after_year, after_month, 1)),
        )

    def today(self, now: Optional[datetime] = None) -> date:
        return self.day_bucket(now or utcnow())


@lru_cache(maxsize=1)
def get_day_buckets() -> DayBuckets:
    return DayBuckets(parse_timezone(get_settings().timezone))
