"""Timezone-safe date and time arithmetic for the scheduling engine.

All conversions go through ``zoneinfo`` so that DST transitions are handled
by the IANA database rather than by fixed offsets. Wall-clock values are
kept as ``(date, time)`` pairs; instants are always timezone-aware UTC.
"""

from __future__ import annotations

import logging
import os
import re
import zoneinfo
from datetime import UTC, date, datetime, time, timedelta
from functools import lru_cache
from typing import Optional, Union

from dateutil import parser as date_parser

from ..exceptions import InvalidTimeZone

logger = logging.getLogger(__name__)

TEST_TIME_ENV = "POINTWISE_TEST_TIME"

# Obsolete or shorthand names that older clients still send
TZ_ALIAS_MAP: dict[str, str] = {
    "US/Pacific": "America/Los_Angeles",
    "US/Mountain": "America/Denver",
    "US/Central": "America/Chicago",
    "US/Eastern": "America/New_York",
    "US/Alaska": "America/Anchorage",
    "US/Hawaii": "Pacific/Honolulu",
    "US/Arizona": "America/Phoenix",
    "GMT": "UTC",
    "Etc/UTC": "UTC",
    "Etc/GMT": "UTC",
    "Etc/Universal": "UTC",
    "Universal": "UTC",
    "Zulu": "UTC",
    "Z": "UTC",
    "Asia/Rangoon": "Asia/Yangon",
    "America/Godthab": "America/Nuuk",
}

_TIME_OF_DAY_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")

DateLike = Union[date, datetime]


def resolve_timezone_alias(tz_name: str) -> str:
    """Resolve an alias to its canonical IANA identifier.

    Examples:
        >>> resolve_timezone_alias("US/Pacific")
        'America/Los_Angeles'
        >>> resolve_timezone_alias("Europe/Berlin")
        'Europe/Berlin'
    """
    return TZ_ALIAS_MAP.get(tz_name, tz_name)


@lru_cache(maxsize=64)
def _load_zone(canonical: str) -> zoneinfo.ZoneInfo:
    return zoneinfo.ZoneInfo(canonical)


def resolve_time_zone(tz_name: str) -> zoneinfo.ZoneInfo:
    """Return the ``ZoneInfo`` for an IANA identifier.

    Args:
        tz_name: IANA identifier or one of the aliases in ``TZ_ALIAS_MAP``

    Returns:
        ZoneInfo instance

    Raises:
        InvalidTimeZone: If the identifier is empty, malformed or unknown.
            There is deliberately no fallback zone.
    """
    if not tz_name or not isinstance(tz_name, str):
        raise InvalidTimeZone(f"Invalid time zone identifier: {tz_name!r}")

    try:
        return _load_zone(resolve_timezone_alias(tz_name.strip()))
    except (zoneinfo.ZoneInfoNotFoundError, ValueError, OSError) as e:
        logger.debug("Rejected time zone %r: %s", tz_name, e)
        raise InvalidTimeZone(f"Unknown time zone: {tz_name!r}") from e


def is_valid_time_zone(tz_name: str) -> bool:
    """Check whether ``tz_name`` resolves to a known zone."""
    try:
        resolve_time_zone(tz_name)
    except InvalidTimeZone:
        return False
    return True


def now_utc() -> datetime:
    """Return the current UTC time as an aware datetime.

    Can be overridden via the POINTWISE_TEST_TIME environment variable
    (ISO 8601, e.g. "2024-03-10T08:00:00-08:00"). Naive values are read as UTC.
    """
    test_time = os.environ.get(TEST_TIME_ENV)
    if test_time:
        try:
            dt = date_parser.isoparse(test_time)
        except ValueError as e:
            logger.warning("Failed to parse %s=%r: %s", TEST_TIME_ENV, test_time, e)
        else:
            if dt.tzinfo is None:
                return dt.replace(tzinfo=UTC)
            return dt.astimezone(UTC)

    return datetime.now(UTC)


def ensure_utc(instant: datetime) -> datetime:
    """Return ``instant`` in UTC, reading naive datetimes as UTC."""
    if instant.tzinfo is None:
        return instant.replace(tzinfo=UTC)
    return instant.astimezone(UTC)


def to_local(utc_instant: datetime, time_zone: str) -> tuple[date, time]:
    """Convert an instant to the wall-clock ``(date, time)`` of a zone.

    The returned time carries ``fold=1`` for the second pass through a
    repeated hour, which makes ``to_utc(*to_local(x, tz), tz) == x`` exact.

    Raises:
        InvalidTimeZone: If the zone is unknown.
    """
    tz = resolve_time_zone(time_zone)
    local = ensure_utc(utc_instant).astimezone(tz)
    return local.date(), local.time()


def to_utc(local_date: date, local_time: Optional[time], time_zone: str) -> datetime:
    """Convert a wall-clock date and optional time of day to a UTC instant.

    Date-only values are anchored at local midnight. Times falling in a DST
    gap resolve the way zoneinfo resolves ``fold=0`` (the pre-transition
    offset), which lands on the wall time shifted forward by the gap.

    Raises:
        InvalidTimeZone: If the zone is unknown.
    """
    tz = resolve_time_zone(time_zone)
    if isinstance(local_date, datetime):
        local_date = local_date.date()
    wall = local_time if local_time is not None else time(0, 0)
    local = datetime.combine(local_date, wall.replace(tzinfo=None), tzinfo=tz)
    return local.astimezone(UTC)


def combine_local(local_date: date, local_time: Optional[time], time_zone: str) -> datetime:
    """Return an aware datetime in ``time_zone`` for a wall-clock date/time."""
    return to_utc(local_date, local_time, time_zone).astimezone(resolve_time_zone(time_zone))


def local_today(time_zone: str, reference_now: Optional[datetime] = None) -> date:
    """Return today's date in ``time_zone``."""
    reference = reference_now if reference_now is not None else now_utc()
    return to_local(reference, time_zone)[0]


def day_start(time_zone: str, reference_now: Optional[datetime] = None) -> datetime:
    """Return the UTC instant at which "today" begins in ``time_zone``.

    Args:
        time_zone: IANA identifier
        reference_now: Instant that defines "today" (defaults to now_utc())
    """
    today = local_today(time_zone, reference_now)
    return to_utc(today, None, time_zone)


def day_end(time_zone: str, reference_now: Optional[datetime] = None) -> datetime:
    """Return the exclusive UTC end of "today" in ``time_zone``.

    This is the start of the next local day, so ``day_end - day_start`` is
    23, 24 or 25 hours depending on DST transitions.
    """
    today = local_today(time_zone, reference_now)
    return to_utc(today + timedelta(days=1), None, time_zone)


def _as_date(value: DateLike, time_zone: Optional[str]) -> date:
    if isinstance(value, datetime):
        if time_zone is not None and value.tzinfo is not None:
            return value.astimezone(resolve_time_zone(time_zone)).date()
        return value.date()
    return value


def is_before(value: DateLike, reference: DateLike, time_zone: Optional[str] = None) -> bool:
    """Check whether ``value`` falls on a date strictly before ``reference``."""
    return _as_date(value, time_zone) < _as_date(reference, time_zone)


def is_after(value: DateLike, reference: DateLike, time_zone: Optional[str] = None) -> bool:
    """Check whether ``value`` falls on a date strictly after ``reference``."""
    return _as_date(value, time_zone) > _as_date(reference, time_zone)


def is_between(
    value: DateLike,
    start: DateLike,
    end: DateLike,
    time_zone: Optional[str] = None,
) -> bool:
    """Check whether ``value`` falls on a date within ``[start, end]`` (inclusive)."""
    day = _as_date(value, time_zone)
    return _as_date(start, time_zone) <= day <= _as_date(end, time_zone)


def parse_time_of_day(value: str) -> time:
    """Parse an "HH:MM" (24 hour) string.

    Raises:
        ValueError: If the value is not a valid time of day.
    """
    if not isinstance(value, str):
        raise ValueError(f"Time of day must be a string, got {type(value).__name__}")
    match = _TIME_OF_DAY_RE.match(value.strip())
    if not match:
        raise ValueError(f"Invalid time of day {value!r}, expected HH:MM")
    return time(int(match.group(1)), int(match.group(2)))


def format_time_of_day(value: time) -> str:
    """Format a time as "HH:MM"."""
    return f"{value.hour:02d}:{value.minute:02d}"
