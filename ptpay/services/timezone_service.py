from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ptpay.config import settings


def get_gym_timezone() -> ZoneInfo:
    try:
        return ZoneInfo(settings.GYM_TIMEZONE)
    except ZoneInfoNotFoundError:
        return ZoneInfo("UTC")


def now_in_gym_tz() -> datetime:
    return datetime.now(get_gym_timezone())


def as_utc(value: datetime) -> datetime:
    # Naive values come back from SQLite and are stored as UTC.
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def month_bounds(year: int, month: int, tz: ZoneInfo | None = None) -> tuple[datetime, datetime]:
    """[first day 00:00, first day of next month 00:00) in the gym timezone, as UTC."""
    tz = tz or get_gym_timezone()
    start = datetime(year, month, 1, tzinfo=tz)
    if month == 12:
        end = datetime(year + 1, 1, 1, tzinfo=tz)
    else:
        end = datetime(year, month + 1, 1, tzinfo=tz)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def start_of_week(now: datetime, tz: ZoneInfo | None = None) -> datetime:
    """Most recent Sunday 00:00 in the gym timezone, as UTC."""
    tz = tz or get_gym_timezone()
    local_now = as_utc(now).astimezone(tz)
    days_since_sunday = (local_now.weekday() + 1) % 7
    sunday = local_now.date() - timedelta(days=days_since_sunday)
    return datetime(sunday.year, sunday.month, sunday.day, tzinfo=tz).astimezone(timezone.utc)
