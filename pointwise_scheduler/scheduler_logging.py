"""
Central logging configuration for pointwise_scheduler.

Keeps the scheduler's own modules at INFO (DEBUG on request) and stamps every
record with the operation ID of the series manager call that produced it.
"""

import logging
import os
from typing import Optional

from .core.operation_context import get_operation_id

SCHEDULER_MODULES = [
    "pointwise_scheduler",
    "pointwise_scheduler.core.calendar_math",
    "pointwise_scheduler.core.settings",
    "pointwise_scheduler.recurrence.rule_expander",
    "pointwise_scheduler.recurrence.instance_keys",
    "pointwise_scheduler.storage.series_store",
    "pointwise_scheduler.storage.json_store",
    "pointwise_scheduler.domain.series_manager",
    "pointwise_scheduler.domain.schedule_presenter",
]

# Third-party loggers that are noisy at DEBUG
QUIET_LOGGERS = ["dateutil", "pydantic", "yaml"]


class OperationIdFilter(logging.Filter):
    """Add the current operation ID to all log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Add operation ID to log record.

        Args:
            record: Log record to enhance

        Returns:
            True to allow record to be logged
        """
        record.operation_id = get_operation_id()
        return True


def _env_debug() -> bool:
    return os.getenv("POINTWISE_DEBUG", "").strip().lower() in ("1", "true", "yes", "on")


def configure_scheduler_logging(
    debug_mode: bool = False, force_debug: Optional[bool] = None
) -> None:
    """
    Configure logging levels for the scheduler.

    Args:
        debug_mode: Whether to enable debug logging for scheduler modules
        force_debug: Override debug mode setting (None to use env var detection)

    Environment Variables:
        POINTWISE_DEBUG: Set to '1', 'true', 'yes' to force debug logging
        POINTWISE_LOG_LEVEL: Override root log level (DEBUG, INFO, WARNING, ERROR)
    """
    env_log_level = os.getenv("POINTWISE_LOG_LEVEL", "").strip().upper()

    if force_debug is not None:
        final_debug = force_debug
    elif _env_debug():
        final_debug = True
    else:
        final_debug = debug_mode

    root_level = logging.DEBUG if final_debug else logging.INFO
    if env_log_level in ("DEBUG", "INFO", "WARNING", "ERROR"):
        root_level = getattr(logging, env_log_level)

    # Keep any handler installed by _init_logging (and its colors)
    root_logger = logging.getLogger()
    root_logger.setLevel(root_level)

    if not root_logger.handlers:
        handler = logging.StreamHandler()
        handler.setLevel(root_level)
        handler.setFormatter(
            logging.Formatter(
                "[%(asctime)s] [%(operation_id)s] %(levelname)s - %(name)s - %(message)s"
            )
        )
        root_logger.addHandler(handler)

    for existing_handler in root_logger.handlers:
        if not any(isinstance(f, OperationIdFilter) for f in existing_handler.filters):
            existing_handler.addFilter(OperationIdFilter())

    logger_config: dict[str, int] = {name: logging.WARNING for name in QUIET_LOGGERS}
    scheduler_level = logging.DEBUG if final_debug else logging.INFO
    for module in SCHEDULER_MODULES:
        logger_config[module] = scheduler_level

    for logger_name, level in logger_config.items():
        logging.getLogger(logger_name).setLevel(level)

    if final_debug:
        root_logger.info("Debug logging enabled for pointwise_scheduler modules")
    else:
        root_logger.debug("Production logging configuration applied")


def get_logging_status() -> dict[str, str]:
    """
    Get current logging configuration status.

    Returns:
        Dictionary mapping logger names to their current levels
    """
    status = {"root": logging.getLevelName(logging.getLogger().level)}
    for logger_name in ["pointwise_scheduler", *QUIET_LOGGERS]:
        status[logger_name] = logging.getLevelName(logging.getLogger(logger_name).level)
    return status
