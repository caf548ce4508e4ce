"""Centralized datetime utilities for consistent timezone handling.

Every local-time reading goes through the IANA database via `zoneinfo`.
Offsets are never hardcoded: a fixed `-8:00` for Los Angeles is wrong for
half of the year.

Functions that read the clock accept an optional `now` so callers (and
tests) can evaluate a specific instant. Naive values are read as UTC.

Usage:
    from junto.core.datetime_utils import local_date_now, local_time_now

    today = local_date_now("America/New_York")
    if has_time_of_day_passed(user.preferred_send_time, local_time_now(user.timezone)):
        ...
"""

import re
from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from junto.core.exceptions import InvalidTimeFormat, InvalidTimezone

DEFAULT_TIMEZONE = "UTC"

_SEND_TIME_RE = re.compile(r"^\s*(\d{1,2}):(\d{1,2})(?::(\d{1,2}))?\s*$")

# Legacy write paths stored dates in a few loose formats
_LOOSE_DATE_FORMATS = (
    "%a %b %d %Y",  # Tue Feb 03 2026
    "%a, %d %b %Y",
    "%m/%d/%Y",
    "%Y/%m/%d",
    "%d %b %Y",
    "%b %d %Y",
    "%b %d, %Y",
    "%B %d, %Y",
    "%B %d %Y",
)


def utc_now() -> datetime:
    """Get current UTC time as naive datetime.

    Returns naive datetime for database compatibility.
    """
    return datetime.now(UTC).replace(tzinfo=None)


def get_cutoff(hours: int = 0, days: int = 0) -> datetime:
    """Get cutoff datetime for filtering queries.

    Args:
        hours: Hours to subtract from now
        days: Days to subtract from now

    Returns:
        Naive UTC datetime representing the cutoff point
    """
    delta = timedelta(hours=hours, days=days)
    return utc_now() - delta


def _as_aware_utc(now: datetime | None) -> datetime:
    if now is None:
        return datetime.now(UTC)
    if now.tzinfo is None:
        return now.replace(tzinfo=UTC)
    return now


# =============================================================================
# Per-user timezone utilities
# =============================================================================

def resolve_timezone(tz_name: str | None) -> ZoneInfo:
    """Look up an IANA timezone.

    Args:
        tz_name: Timezone string (e.g., "America/New_York")

    Returns:
        ZoneInfo for the name

    Raises:
        InvalidTimezone: If the name is empty or not in the tz database
    """
    if not tz_name or not tz_name.strip():
        raise InvalidTimezone(tz_name)
    try:
        return ZoneInfo(tz_name.strip())
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise InvalidTimezone(tz_name) from e


def local_now(tz: str | ZoneInfo, now: datetime | None = None) -> datetime:
    """Get the wall-clock reading of an instant in a timezone.

    Args:
        tz: IANA timezone name or ZoneInfo
        now: Instant to read (defaults to the current time)

    Returns:
        Aware datetime in the given timezone

    Raises:
        InvalidTimezone: If tz is a name that cannot be resolved
    """
    zone = tz if isinstance(tz, ZoneInfo) else resolve_timezone(tz)
    return _as_aware_utc(now).astimezone(zone)


def local_time_now(tz: str | ZoneInfo, now: datetime | None = None) -> time:
    """Current (hour, minute, second) as shown by a clock in `tz`."""
    return local_now(tz, now).time().replace(microsecond=0)


def local_date_now(tz: str | ZoneInfo, now: datetime | None = None) -> date:
    """Current calendar date in `tz`. `.isoformat()` gives YYYY-MM-DD."""
    return local_now(tz, now).date()


def is_weekend(tz: str | ZoneInfo, now: datetime | None = None) -> bool:
    """True if it is Saturday or Sunday in `tz`."""
    return local_now(tz, now).weekday() >= 5


def parse_send_time(raw: str | time | None) -> time:
    """Parse a preferred send time into a time object.

    Accepts "HH:MM", "HH:MM:SS" and unpadded forms such as "9:5"
    (09:05), since user-entered values are stored as typed.

    Args:
        raw: Time string or time object

    Returns:
        time object

    Raises:
        InvalidTimeFormat: If the value does not parse or is out of range
    """
    if isinstance(raw, time):
        return raw
    if raw is None:
        raise InvalidTimeFormat(raw)

    match = _SEND_TIME_RE.match(raw)
    if not match:
        raise InvalidTimeFormat(raw)

    hour, minute = int(match.group(1)), int(match.group(2))
    second = int(match.group(3) or 0)
    if not (0 <= hour <= 23 and 0 <= minute <= 59 and 0 <= second <= 59):
        raise InvalidTimeFormat(raw)

    return time(hour=hour, minute=minute, second=second)


def has_time_of_day_passed(preferred: str | time, observed: time) -> bool:
    """Check whether the observed local time is at or past the preferred time.

    Compared at minute granularity; seconds are ignored on both sides. This
    is a same-day comparison and knows nothing about dates.

    Raises:
        InvalidTimeFormat: If `preferred` does not parse
    """
    target = parse_send_time(preferred)
    return (observed.hour, observed.minute) >= (target.hour, target.minute)


def normalize_date(raw: str | date | None) -> date | None:
    """Canonicalize a stored last-sent date.

    Accepts YYYY-MM-DD, ISO datetimes and the loose formats older write
    paths produced. Returns None for anything unparseable; callers treat
    that as "never sent".
    """
    if raw is None:
        return None
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw

    value = raw.strip()
    if not value:
        return None

    try:
        return date.fromisoformat(value)
    except ValueError:
        pass

    try:
        return datetime.fromisoformat(value).date()
    except ValueError:
        pass

    for fmt in _LOOSE_DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue

    return None
