"""pointwise_scheduler - recurring-task scheduling engine.

Expands recurring task templates into dated task instances, tracks edited
and deleted occurrences per series, and renders schedules across time zones.
"""

__version__ = "0.1.0"

from typing import Optional

from .domain.schedule_presenter import DisplayStatus, label, status_of
from .domain.series_manager import SeriesManager
from .exceptions import (
    ConfirmationRequired,
    Conflict,
    InstanceNotFound,
    InvalidFields,
    InvalidRule,
    InvalidTimeZone,
    MalformedKey,
    SchedulerError,
    StorageError,
    TemplateNotFound,
    UnknownOccurrence,
)
from .models import (
    Frequency,
    InstanceUpdate,
    Occurrence,
    RecurrenceRule,
    RecurringTemplate,
    TaskInstance,
    TaskStatus,
    TemplateContentUpdate,
)
from .storage import InMemorySeriesStore, JsonFileSeriesStore, SeriesStore

__all__ = [
    "ConfirmationRequired",
    "Conflict",
    "DisplayStatus",
    "Frequency",
    "InMemorySeriesStore",
    "InstanceNotFound",
    "InstanceUpdate",
    "InvalidFields",
    "InvalidRule",
    "InvalidTimeZone",
    "JsonFileSeriesStore",
    "MalformedKey",
    "Occurrence",
    "RecurrenceRule",
    "RecurringTemplate",
    "SchedulerError",
    "SeriesManager",
    "SeriesStore",
    "StorageError",
    "TaskInstance",
    "TaskStatus",
    "TemplateContentUpdate",
    "TemplateNotFound",
    "UnknownOccurrence",
    "label",
    "status_of",
]


def _init_logging(level_name: Optional[str]) -> None:
    """Initialize root logging to stream to console.

    Installs a colorized console handler (only when the root logger has no
    handler yet) and sets the root level. POINTWISE_DEBUG (truthy values:
    "1", "true", "yes", "on") forces DEBUG.
    """
    import logging
    import os
    import sys

    from colorlog import ColoredFormatter

    debug_env = os.environ.get("POINTWISE_DEBUG", "")
    if debug_env.strip().lower() in ("1", "true", "yes", "on"):
        level_name = "DEBUG"

    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler(stream=sys.stderr)
        # HH:MM:SS  LEVEL   logger.name: message; only the level is colorized
        fmt = "%(asctime)s %(log_color)s%(levelname)-7s%(reset)s %(name)s: %(message)s"
        log_colors = {
            "DEBUG": "cyan",
            "INFO": "green",
            "WARNING": "yellow",
            "ERROR": "red",
            "CRITICAL": "bold_red",
        }
        handler.setFormatter(ColoredFormatter(fmt, datefmt="%H:%M:%S", log_colors=log_colors))
        root.addHandler(handler)

    level = logging.INFO
    if isinstance(level_name, str):
        candidate = getattr(logging, level_name.upper(), None)
        if isinstance(candidate, int):
            level = candidate
    root.setLevel(level)
    logging.getLogger(__name__).debug(
        "Logging initialized at level %s", logging.getLevelName(level)
    )
