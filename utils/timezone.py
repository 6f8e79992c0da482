# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Timezone and semester calendar utilities (university local time)
"""
from datetime import date, datetime, timedelta
from typing import List, Optional

import pytz

import config
from models import SemesterInfo

def get_local_zone():
    """Get the university time zone"""
    return pytz.timezone(config.TIMEZONE)


def get_local_time() -> datetime:
    """Get current time in the university time zone"""
    return datetime.now(get_local_zone())


def utc_to_local(utc_dt: datetime) -> datetime:
    """Convert a UTC datetime to university local time"""
    if utc_dt is None:
        return None

    # If the datetime is naive (no timezone), assume it's UTC
    if utc_dt.tzinfo is None:
        utc_dt = pytz.UTC.localize(utc_dt)

    return utc_dt.astimezone(get_local_zone())


def format_local_time(dt: Optional[datetime], include_timezone: bool = True) -> str:
    """Format datetime in local time for logs"""
    if dt is None:
        return "Never"

    local_dt = utc_to_local(dt)
    if include_timezone:
        return local_dt.strftime('%b %d, %Y at %H:%M %Z')
    return local_dt.strftime('%b %d, %Y at %H:%M')


def to_millis(dt: datetime) -> int:
    """Epoch milliseconds of a datetime (naive values are taken as UTC)"""
    if dt.tzinfo is None:
        dt = pytz.UTC.localize(dt)
    return int(round(dt.timestamp() * 1000))


def millis_to_day(millis: int) -> str:
    """Calendar day (YYYY-MM-DD) of an instant in university local time"""
    utc_dt = datetime.fromtimestamp(millis / 1000, tz=pytz.UTC)
    return utc_dt.astimezone(get_local_zone()).strftime('%Y-%m-%d')


def get_week_start(when: Optional[datetime] = None) -> datetime:
    """
    Monday 00:00 local time of the week containing ``when``

    Args:
        when: Any datetime (aware or naive UTC); defaults to now

    Returns:
        Timezone-aware local datetime of the week start
    """
    local_now = utc_to_local(when) if when is not None else get_local_time()
    monday = local_now.date() - timedelta(days=local_now.weekday())
    return get_local_zone().localize(datetime(monday.year, monday.month, monday.day))


def week_start_millis(when: Optional[datetime] = None) -> int:
    """Week start of ``when`` as epoch milliseconds (the upstream week parameter)"""
    return to_millis(get_week_start(when))


def week_starts(when: Optional[datetime], count: int) -> List[datetime]:
    """
    Local Monday 00:00 of ``count`` consecutive weeks, starting with the week of ``when``

    Each Monday is localized on its own, so weeks spanning a DST change
    still start at local midnight.
    """
    first = get_week_start(when).date()
    zone = get_local_zone()
    mondays = (first + timedelta(weeks=i) for i in range(count))
    return [zone.localize(datetime(d.year, d.month, d.day)) for d in mondays]


def get_semester_info(when: Optional[date] = None) -> Optional[SemesterInfo]:
    """
    Semester containing ``when``, or None during the summer break.

    Winter semester: October until the summer semester starts (Feb 15).
    Summer semester: Feb 15 through June. Boundaries come from config.

    Args:
        when: Date or datetime; defaults to today (local time)

    Returns:
        SemesterInfo such as ("2024Z", "2024-2025", 2024) or None
    """
    if when is None:
        when = get_local_time()
    if isinstance(when, datetime) and when.tzinfo is not None:
        when = when.astimezone(get_local_zone())

    year, month, day = when.year, when.month, when.day
    before_summer = (
        month < config.SUMMER_SEMESTER_START_MONTH or
        (month == config.SUMMER_SEMESTER_START_MONTH and day < config.SUMMER_SEMESTER_START_DAY)
    )

    if month >= config.WINTER_SEMESTER_START_MONTH or before_summer:
        # January and early February belong to the academic year started last autumn
        start = year - 1 if before_summer else year
        return SemesterInfo(f"{start}Z", f"{start}-{start + 1}", start)

    if month <= config.SUMMER_SEMESTER_END_MONTH:
        return SemesterInfo(f"{year}L", f"{year - 1}-{year}", year - 1)

    return None


def upstream_winter_semester_id(academic_year_start: int) -> int:
    """Upstream numeric id of the winter semester starting in ``academic_year_start``"""
    return config.WINTER_SEMESTER_BASE_ID + (academic_year_start - config.WINTER_SEMESTER_BASE_YEAR) * 2
