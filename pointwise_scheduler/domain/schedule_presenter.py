"""Display status and schedule labels for task instances.

This module is the single source of truth for the status badge and the
"Starts ... · Due ..." line shown next to a task. Nothing here is persisted:
overdue in particular is derived from the current time on every render.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time
from enum import Enum
from typing import Optional

from ..core.calendar_math import resolve_time_zone, to_local, to_utc
from ..models import TaskInstance, TaskStatus

logger = logging.getLogger(__name__)

LABEL_SEPARATOR = " · "


class DisplayStatus(str, Enum):
    """Status shown to the user."""

    PENDING = "pending"
    COMPLETED = "completed"
    OVERDUE = "overdue"


@dataclass(frozen=True)
class LocaleFormat:
    """Date and time patterns for one locale."""

    date_pattern: str
    clock_24h: bool
    month_names: tuple[str, ...] = ()


_EN_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

# Patterns use str.format fields: {day}, {day2}, {month2}, {mon}, {year}
LOCALE_FORMATS: dict[str, LocaleFormat] = {
    "en-US": LocaleFormat("{mon} {day}, {year}", clock_24h=False, month_names=_EN_MONTHS),
    "en-GB": LocaleFormat("{day} {mon} {year}", clock_24h=True, month_names=_EN_MONTHS),
    "de-DE": LocaleFormat("{day2}.{month2}.{year}", clock_24h=True),
    "fr-FR": LocaleFormat("{day2}/{month2}/{year}", clock_24h=True),
}

# Language-only fallbacks, e.g. "de-AT" -> "de-DE"
LANGUAGE_DEFAULTS = {"en": "en-US", "de": "de-DE", "fr": "fr-FR"}

ISO_FORMAT = LocaleFormat("{year}-{month2}-{day2}", clock_24h=True)


def resolve_locale(locale: Optional[str]) -> LocaleFormat:
    """Pick the format for a locale tag.

    Exact tags win, then the language prefix, then ISO 8601.

    Examples:
        >>> resolve_locale("en_GB") is LOCALE_FORMATS["en-GB"]
        True
        >>> resolve_locale("de-AT") is LOCALE_FORMATS["de-DE"]
        True
    """
    if not locale:
        return ISO_FORMAT

    tag = locale.replace("_", "-")
    for known, fmt in LOCALE_FORMATS.items():
        if known.lower() == tag.lower():
            return fmt

    language = tag.split("-", 1)[0].lower()
    default = LANGUAGE_DEFAULTS.get(language)
    if default is not None:
        return LOCALE_FORMATS[default]

    logger.debug("No date format for locale %r, using ISO 8601", locale)
    return ISO_FORMAT


def format_date(value: date, locale: Optional[str]) -> str:
    """Format a date for a locale."""
    fmt = resolve_locale(locale)
    return fmt.date_pattern.format(
        day=value.day,
        day2=f"{value.day:02d}",
        month2=f"{value.month:02d}",
        mon=fmt.month_names[value.month - 1] if fmt.month_names else f"{value.month:02d}",
        year=f"{value.year:04d}",
    )


def format_time(value: time, locale: Optional[str]) -> str:
    """Format a time of day for a locale.

    12-hour locales drop the hour's leading zero ("9:30 AM").
    """
    fmt = resolve_locale(locale)
    if fmt.clock_24h:
        return f"{value.hour:02d}:{value.minute:02d}"

    hour = value.hour % 12 or 12
    am_pm = "AM" if value.hour < 12 else "PM"
    return f"{hour}:{value.minute:02d} {am_pm}"


def _local_now_for(instance: TaskInstance, now_local: datetime) -> datetime:
    """Reduce ``now_local`` to a naive wall-clock value in the instance's zone."""
    if now_local.tzinfo is None:
        return now_local
    local_date, local_time = to_local(now_local, instance.time_zone)
    return datetime.combine(local_date, local_time)


def status_of(instance: TaskInstance, now_local: datetime) -> DisplayStatus:
    """Derive the display status of an instance.

    Args:
        instance: Task instance
        now_local: Current time; naive values are wall-clock time in the
            instance's zone, aware values are converted to it

    Returns:
        COMPLETED for completed tasks, OVERDUE when the due date is in the
        past (or is today with a due time that has passed), else PENDING
    """
    if instance.status == TaskStatus.COMPLETED:
        return DisplayStatus.COMPLETED

    if instance.due_date is None:
        return DisplayStatus.PENDING

    now = _local_now_for(instance, now_local)
    if instance.due_date < now.date():
        return DisplayStatus.OVERDUE

    if instance.has_due_time and datetime.combine(instance.due_date, instance.due_time) < now:
        return DisplayStatus.OVERDUE

    return DisplayStatus.PENDING


def _format_moment(
    value_date: date,
    value_time: Optional[time],
    source_zone: str,
    target_zone: Optional[str],
    locale: Optional[str],
) -> str:
    # Date-only values are calendar days, so they are never shifted
    if value_time is None:
        return format_date(value_date, locale)

    if target_zone and target_zone != source_zone:
        value_date, value_time = to_local(to_utc(value_date, value_time, source_zone), target_zone)
    return f"{format_date(value_date, locale)} {format_time(value_time, locale)}"


def label(instance: TaskInstance, locale: Optional[str], time_zone: Optional[str] = None) -> str:
    """Build the human readable start/due summary of an instance.

    Args:
        instance: Task instance
        locale: Locale tag such as "en-US"; unknown tags fall back to ISO 8601
        time_zone: Zone to show timed values in; the instance's zone when None

    Returns:
        e.g. "Starts Jan 5, 2024 9:00 AM · Due Jan 6, 2024", or "" when the
        instance has neither a start nor a due date

    Raises:
        InvalidTimeZone: If ``time_zone`` is unknown, or a timed value must be
            converted out of an unknown instance zone
    """
    if time_zone:
        resolve_time_zone(time_zone)

    parts = []
    if instance.start_date is not None:
        start = _format_moment(
            instance.start_date, instance.start_time, instance.time_zone, time_zone, locale
        )
        parts.append(f"Starts {start}")
    if instance.due_date is not None:
        due = _format_moment(
            instance.due_date, instance.due_time, instance.time_zone, time_zone, locale
        )
        parts.append(f"Due {due}")
    return LABEL_SEPARATOR.join(parts)
