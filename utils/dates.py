# utils/dates.py
import calendar
from datetime import date, datetime, time, timezone
from typing import Optional, Union
from zoneinfo import ZoneInfo

import config


def utcnow() -> datetime:
     """Naive UTC timestamp, matching how DateTime columns are stored."""
     return datetime.now(timezone.utc).replace(tzinfo=None)


def studio_today() -> date:
     return studio_now().date()


def studio_now() -> datetime:
     return datetime.now(ZoneInfo(config.STUDIO_TIMEZONE))


def studio_time_on(day: date, hour: int) -> datetime:
     """Aware datetime for the given hour of a day in the studio's timezone."""
     return datetime.combine(day, time(hour, 0), tzinfo=ZoneInfo(config.STUDIO_TIMEZONE))


def add_months(value: datetime, months: int) -> datetime:
     """Calendar-month arithmetic, clamped to the last day of the target month."""
     month_index = value.month - 1 + months
     year = value.year + month_index // 12
     month = month_index % 12 + 1
     day = min(value.day, calendar.monthrange(year, month)[1])
     return value.replace(year=year, month=month, day=day)


def as_datetime(value: Optional[Union[date, datetime]]) -> Optional[datetime]:
     """Dates become midday so a class day never slides across midnight in UTC."""
     if value is None:
          return None
     if isinstance(value, datetime):
          if value.tzinfo is not None:
               value = value.astimezone(timezone.utc).replace(tzinfo=None)
          return value
     return datetime.combine(value, time(12, 0))


def day_bounds(day: date) -> tuple[datetime, datetime]:
     return datetime.combine(day, time.min), datetime.combine(day, time.max)
