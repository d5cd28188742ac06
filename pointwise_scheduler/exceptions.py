"""Exception hierarchy for the recurring-task scheduling engine.

Every failure the engine reports to a caller is one of the types below, so
API layers can map them to form errors (or, for ``Conflict``, to a
reload-and-retry) without inspecting messages.
"""


class SchedulerError(Exception):
    """Base exception for all scheduling engine errors.

    Callers that only need to distinguish engine failures from programming
    errors can catch this single type.
    """


class InvalidRule(SchedulerError):
    """Recurrence rule is malformed.

    Raised when:
    - interval is lower than 1
    - times_of_day is empty, malformed or contains duplicates
    - days_of_week / days_of_month do not match the frequency
    - selector values are out of range
    - end_date precedes start_date or max_occurrences is lower than 1

    Rejected before any write happens.
    """


class UnknownOccurrence(SchedulerError):
    """Occurrence key is not part of the template's logical sequence.

    Also raised for keys that belong to another template or that were
    already deleted from the series.
    """


class MalformedKey(SchedulerError):
    """Occurrence key could not be decoded."""


class InvalidTimeZone(SchedulerError):
    """Time zone identifier is not a known IANA zone."""


class TemplateNotFound(SchedulerError):
    """No recurring template exists for the given id."""


class Conflict(SchedulerError):
    """Optimistic version check failed.

    Another writer changed the record since it was loaded. This is the only
    error a caller is expected to retry, after reloading the template.
    """


class ConfirmationRequired(SchedulerError):
    """A destructive operation was invoked without explicit acknowledgment."""


class StorageError(SchedulerError):
    """The persistence collaborator failed to read or write its data."""


class InvalidFields(SchedulerError):
    """Field values were rejected for a template or task instance.

    Raised when:
    - an update sets a required field to None or to a value of the wrong type
    - a template ID is empty or its edited and deleted key sets overlap
    - a series-only or standalone-only operation gets the other kind of task
    """


class InstanceNotFound(SchedulerError):
    """No task instance exists for the given id."""
