"""Command-line entry for pointwise_scheduler.

Expands a rule, or materializes a template into task instances, from YAML
files. Useful for checking what a recurrence rule actually produces.
"""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import date
from pathlib import Path
from typing import Any, NoReturn, Optional

import yaml
from pydantic import ValidationError

from . import _init_logging
from .core.calendar_math import format_time_of_day, now_utc
from .core.settings import SchedulerSettings, load_settings
from .domain.schedule_presenter import label, status_of
from .domain.series_manager import SeriesManager
from .exceptions import SchedulerError, TemplateNotFound
from .models import RecurrenceRule, RecurringTemplate
from .recurrence.rule_expander import expand
from .scheduler_logging import configure_scheduler_logging
from .storage import InMemorySeriesStore, JsonFileSeriesStore, SeriesStore

logger = logging.getLogger(__name__)

EXIT_SCHEDULER_ERROR = 2


def _iso_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got {value!r}") from e


def _create_parser() -> argparse.ArgumentParser:
    """Create argument parser for the pointwise_scheduler CLI.

    Returns:
        Configured argument parser
    """
    parser = argparse.ArgumentParser(
        prog="pointwise_scheduler",
        description="Pointwise scheduler - recurring task expansion tools",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m pointwise_scheduler expand --rule rule.yaml --start 2024-01-01 --end 2024-01-31
  python -m pointwise_scheduler materialize --template standup.yaml \\
      --store tasks.json --start 2024-01-01 --end 2024-01-14 --locale en-GB
        """,
    )
    parser.add_argument("--config", metavar="FILE", help="YAML settings file")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    expand_parser = subparsers.add_parser("expand", help="Print the occurrences of a rule")
    expand_parser.add_argument("--rule", required=True, metavar="FILE", help="Rule YAML file")
    expand_parser.add_argument("--start", required=True, type=_iso_date, help="Window start")
    expand_parser.add_argument("--end", required=True, type=_iso_date, help="Window end")

    mat_parser = subparsers.add_parser(
        "materialize", help="Print the task instances of a template"
    )
    mat_parser.add_argument(
        "--template", required=True, metavar="FILE", help="Template YAML file"
    )
    mat_parser.add_argument(
        "--store",
        metavar="FILE",
        help="JSON series store (default: store_path setting, else in-memory)",
    )
    mat_parser.add_argument("--start", required=True, type=_iso_date, help="Window start")
    mat_parser.add_argument("--end", required=True, type=_iso_date, help="Window end")
    mat_parser.add_argument("--locale", help="Locale for labels (default: default_locale)")
    mat_parser.add_argument("--time-zone", help="Zone to show times in (default: template zone)")

    return parser


def _read_yaml(path: str, section: str) -> dict[str, Any]:
    """Read a YAML mapping, unwrapping ``section`` when present."""
    with Path(path).open(encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if not isinstance(data, dict):
        raise SchedulerError(f"{path} must contain a YAML mapping")
    inner = data.get(section)
    return inner if isinstance(inner, dict) else data


def _run_expand(args: argparse.Namespace) -> None:
    rule = RecurrenceRule.model_validate(_read_yaml(args.rule, "rule"))
    for occurrence in expand(rule, args.start, args.end):
        print(
            f"{occurrence.date.isoformat()} {format_time_of_day(occurrence.time_of_day)}"
            f"  slot={occurrence.time_slot_index}  #{occurrence.position}"
        )


def _open_store(args: argparse.Namespace, settings: SchedulerSettings) -> SeriesStore:
    path = args.store or settings.store_path
    if path:
        return JsonFileSeriesStore(path)
    return InMemorySeriesStore()


def _run_materialize(args: argparse.Namespace, settings: SchedulerSettings) -> None:
    data = _read_yaml(args.template, "template")
    data.setdefault("time_zone", settings.default_timezone)
    template = RecurringTemplate.model_validate(data)

    manager = SeriesManager(_open_store(args, settings), settings)
    try:
        manager.get_template(template.id)
    except TemplateNotFound:
        manager.create_template(template)

    locale = args.locale or settings.default_locale
    now = now_utc()
    for instance in manager.materialize(template.id, args.start, args.end):
        status = status_of(instance, now).value
        marker = "*" if instance.is_edited_instance else " "
        print(f"{marker} {status:<9} {label(instance, locale, args.time_zone)}  [{instance.id}]")


def main(argv: Optional[list[str]] = None) -> NoReturn:
    """Run the pointwise_scheduler CLI.

    Exits with status 2 and a one-line message when the engine rejects the
    input, so scripts can tell bad input from crashes.
    """
    parser = _create_parser()
    args = parser.parse_args(argv)

    try:
        settings = load_settings(args.config)
        _init_logging(settings.log_level)
        configure_scheduler_logging(debug_mode=settings.debug or args.debug)

        if args.command == "expand":
            _run_expand(args)
        else:
            _run_materialize(args, settings)
    except (SchedulerError, ValidationError, OSError, yaml.YAMLError) as exc:
        logger.debug("Command %s failed", args.command, exc_info=True)
        message = " ".join(str(exc).split())
        print(f"error: {type(exc).__name__}: {message}", file=sys.stderr)
        sys.exit(EXIT_SCHEDULER_ERROR)

    sys.exit(0)


if __name__ == "__main__":
    main()
