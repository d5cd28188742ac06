"""Recurrence rule expansion for recurring task templates.

Turns a ``RecurrenceRule`` and a date window into the ordered occurrences
the rule implies inside that window. Date iteration is delegated to
``dateutil.rrule``; times of day, occurrence bounds and window clipping are
layered on top here.

The window is only a view: an occurrence's ``position`` is its index in the
unwindowed sequence, and ``max_occurrences`` is enforced against that global
position, so expanding a later window never renumbers or resurrects
occurrences an unwindowed expansion would have cut off.
"""

import logging
from collections.abc import Iterator
from datetime import date, datetime, time
from typing import Optional, Union

from dateutil.rrule import DAILY, FR, MO, MONTHLY, SA, SU, TH, TU, WE, WEEKLY, rrule

from ..core.calendar_math import parse_time_of_day, to_local
from ..exceptions import InvalidRule
from ..models import Frequency, Occurrence, RecurrenceRule

logger = logging.getLogger(__name__)

# Weekday numbering follows the client convention: 0 = Sunday .. 6 = Saturday
WEEKDAY_TO_RRULE = {0: SU, 1: MO, 2: TU, 3: WE, 4: TH, 5: FR, 6: SA}

FREQUENCY_TO_RRULE = {
    Frequency.DAILY: DAILY,
    Frequency.WEEKLY: WEEKLY,
    Frequency.MONTHLY: MONTHLY,
}


def _frequency_of(rule: RecurrenceRule) -> Frequency:
    try:
        return Frequency(rule.frequency)
    except ValueError as e:
        raise InvalidRule(f"Unsupported frequency: {rule.frequency!r}") from e


def validate_rule(rule: RecurrenceRule) -> list[tuple[int, time]]:
    """Validate a rule's shape.

    Args:
        rule: Rule to check

    Returns:
        The (time slot index, time of day) pairs sorted by time of day

    Raises:
        InvalidRule: On the first shape violation found
    """
    frequency = _frequency_of(rule)

    if isinstance(rule.interval, bool) or not isinstance(rule.interval, int) or rule.interval < 1:
        raise InvalidRule(f"interval must be an integer >= 1, got {rule.interval!r}")

    if not rule.times_of_day:
        raise InvalidRule("times_of_day must contain at least one HH:MM entry")

    slots: list[tuple[int, time]] = []
    for index, raw in enumerate(rule.times_of_day):
        try:
            slots.append((index, parse_time_of_day(raw)))
        except ValueError as e:
            raise InvalidRule(str(e)) from e

    if len({t for _, t in slots}) != len(slots):
        raise InvalidRule(f"times_of_day contains duplicates: {rule.times_of_day!r}")

    if frequency == Frequency.WEEKLY:
        if not rule.days_of_week:
            raise InvalidRule("weekly rules require at least one day in days_of_week")
        bad = sorted(d for d in rule.days_of_week if not 0 <= d <= 6)
        if bad:
            raise InvalidRule(f"days_of_week values must be within 0..6, got {bad}")
    elif rule.days_of_week:
        raise InvalidRule(f"days_of_week is only valid for weekly rules, not {frequency.value}")

    if frequency == Frequency.MONTHLY:
        if not rule.days_of_month:
            raise InvalidRule("monthly rules require at least one day in days_of_month")
        bad = sorted(d for d in rule.days_of_month if not 1 <= d <= 31)
        if bad:
            raise InvalidRule(f"days_of_month values must be within 1..31, got {bad}")
    elif rule.days_of_month:
        raise InvalidRule(f"days_of_month is only valid for monthly rules, not {frequency.value}")

    if rule.end_date is not None and rule.end_date < rule.start_date:
        raise InvalidRule(
            f"end_date {rule.end_date.isoformat()} precedes start_date {rule.start_date.isoformat()}"
        )

    if rule.max_occurrences is not None and rule.max_occurrences < 1:
        raise InvalidRule(f"max_occurrences must be >= 1, got {rule.max_occurrences!r}")

    return sorted(slots, key=lambda slot: slot[1])


def _build_date_rule(rule: RecurrenceRule) -> rrule:
    """Build the dateutil rule that yields the matching dates.

    Bounds (end_date, max_occurrences) are applied by the caller, since
    ``count`` would count dates rather than (date, time slot) occurrences.
    """
    frequency = _frequency_of(rule)
    kwargs: dict = {
        "dtstart": datetime.combine(rule.start_date, time(0, 0)),
        "interval": rule.interval,
        "cache": False,
    }

    if frequency == Frequency.WEEKLY:
        # Weeks start on Sunday, so interval counting begins with the
        # Sunday-started week that contains start_date.
        kwargs["wkst"] = SU
        kwargs["byweekday"] = [WEEKDAY_TO_RRULE[d] for d in sorted(rule.days_of_week)]
    elif frequency == Frequency.MONTHLY:
        # RFC 5545 semantics: a BYMONTHDAY beyond the month's length is skipped
        kwargs["bymonthday"] = sorted(rule.days_of_month)

    return rrule(FREQUENCY_TO_RRULE[frequency], **kwargs)


def _iter_occurrences(
    rule: RecurrenceRule, slots: list[tuple[int, time]]
) -> Iterator[Occurrence]:
    """Yield the unwindowed sequence in order, stopping at the rule's bounds."""
    slot_count = len(slots)
    max_occurrences: Optional[int] = rule.max_occurrences

    for date_index, dt in enumerate(_build_date_rule(rule)):
        day = dt.date()
        if rule.end_date is not None and day > rule.end_date:
            return

        first_position = date_index * slot_count
        for rank, (slot_index, time_of_day) in enumerate(slots):
            position = first_position + rank
            if max_occurrences is not None and position >= max_occurrences:
                return
            yield Occurrence(
                date=day,
                time_of_day=time_of_day,
                time_slot_index=slot_index,
                position=position,
            )


def expand(
    rule: RecurrenceRule,
    window_start: date,
    window_end: date,
) -> list[Occurrence]:
    """Expand a rule into the occurrences within ``[window_start, window_end]``.

    Args:
        rule: Recurrence rule
        window_start: First local date of the window (inclusive)
        window_end: Last local date of the window (inclusive)

    Returns:
        Occurrences strictly ordered by (date, time of day)

    Raises:
        InvalidRule: If the rule is malformed
    """
    slots = validate_rule(rule)

    if isinstance(window_start, datetime):
        window_start = window_start.date()
    if isinstance(window_end, datetime):
        window_end = window_end.date()

    lower = max(window_start, rule.start_date)
    upper = window_end if rule.end_date is None else min(window_end, rule.end_date)
    if upper < lower:
        return []

    occurrences: list[Occurrence] = []
    for occurrence in _iter_occurrences(rule, slots):
        if occurrence.date > upper:
            break
        if occurrence.date >= lower:
            occurrences.append(occurrence)

    logger.debug(
        "Expanded %s rule over %s..%s: %d occurrences",
        _frequency_of(rule).value,
        window_start.isoformat(),
        window_end.isoformat(),
        len(occurrences),
    )
    return occurrences


def find_next_occurrence(
    rule: RecurrenceRule,
    after: Union[date, datetime],
    time_zone: Optional[str] = None,
) -> Optional[Occurrence]:
    """Return the first occurrence strictly after ``after``.

    A date skips every occurrence on or before that day. A naive datetime is
    wall-clock time in the rule's zone, so later slots of the same day still
    count. An aware datetime is first converted to ``time_zone``.

    Args:
        rule: Recurrence rule
        after: Date or datetime to search from
        time_zone: Zone of the rule's wall-clock values; required for aware datetimes

    Returns:
        The next occurrence, or None once the rule's bounds are exhausted

    Raises:
        InvalidRule: If the rule is malformed
        InvalidTimeZone: If ``time_zone`` is unknown
        ValueError: If ``after`` is aware and no ``time_zone`` is given
    """
    slots = validate_rule(rule)

    after_time: Optional[time] = None
    if isinstance(after, datetime):
        if after.tzinfo is not None:
            if time_zone is None:
                raise ValueError("time_zone is required to compare an aware datetime")
            after_day, after_time = to_local(after, time_zone)
        else:
            after_day, after_time = after.date(), after.time()
    else:
        after_day = after

    for occurrence in _iter_occurrences(rule, slots):
        if occurrence.date < after_day:
            continue
        if occurrence.date == after_day and (
            after_time is None or occurrence.time_of_day <= after_time
        ):
            continue
        return occurrence
    return None


def contains(rule: RecurrenceRule, occurrence_date: date, time_slot_index: int) -> bool:
    """Check whether (date, time slot) belongs to the rule's logical sequence.

    Raises:
        InvalidRule: If the rule is malformed
    """
    return find_occurrence(rule, occurrence_date, time_slot_index) is not None


def find_occurrence(
    rule: RecurrenceRule, occurrence_date: date, time_slot_index: int
) -> Optional[Occurrence]:
    """Return the occurrence at (date, time slot), or None if the rule has none there."""
    for occurrence in expand(rule, occurrence_date, occurrence_date):
        if occurrence.time_slot_index == time_slot_index:
            return occurrence
    return None
