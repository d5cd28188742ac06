"""Series manager: reconciles rule expansion with per-occurrence exceptions.

A template's rule yields the occurrences it plans. Two key sets on the
template carve exceptions out of that plan:

- ``edited_instance_keys``: occurrences detached into standalone edited
  instances. The persisted instance represents them from then on, and rule
  changes never touch them again.
- ``deleted_instance_keys``: occurrences removed from the series for good.

A key is in at most one of the two sets. Every mutation loads the template,
checks its version, and writes back through the store inside one
``atomic()`` block, so a failed validation or a version conflict leaves
every record unchanged.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from datetime import date, datetime, time, timedelta
from typing import Any, Optional, TypeVar, Union

from dateutil.relativedelta import relativedelta
from pydantic import BaseModel, ValidationError

from ..core.calendar_math import (
    format_time_of_day,
    local_today,
    now_utc,
    parse_time_of_day,
    resolve_time_zone,
)
from ..core.operation_context import operation_scope
from ..core.settings import SchedulerSettings, get_settings
from ..exceptions import (
    ConfirmationRequired,
    Conflict,
    InstanceNotFound,
    InvalidFields,
    InvalidRule,
    UnknownOccurrence,
)
from ..models import (
    Frequency,
    InstanceUpdate,
    Occurrence,
    OccurrenceKey,
    RecurrenceRule,
    RecurringTemplate,
    TaskInstance,
    TaskStatus,
    TemplateContentUpdate,
)
from ..recurrence import instance_keys
from ..recurrence.rule_expander import (
    expand,
    find_next_occurrence,
    find_occurrence,
    validate_rule,
)
from ..storage.series_store import SeriesStore

logger = logging.getLogger(__name__)

_ModelT = TypeVar("_ModelT", bound=BaseModel)

# Linkage fields a caller may not rewrite through a field update
_PROTECTED_INSTANCE_FIELDS = (
    "id",
    "source_recurring_task_id",
    "recurrence_instance_key",
    "is_edited_instance",
    "version",
)


def _coerce_update(
    model: type[_ModelT], fields: Union[_ModelT, Mapping[str, Any], None]
) -> _ModelT:
    """Accept an update model, a plain mapping or None.

    Raises:
        InvalidFields: If the mapping does not validate against ``model``
    """
    if fields is None:
        return model()
    if isinstance(fields, model):
        return fields
    try:
        return model.model_validate(dict(fields))
    except ValidationError as e:
        raise InvalidFields(f"Invalid {model.__name__}: {e}") from e


def _apply(record: _ModelT, changes: Mapping[str, Any]) -> _ModelT:
    """Return a re-validated copy of ``record`` with ``changes`` applied.

    Raises:
        InvalidFields: If the merged record does not validate
    """
    try:
        return type(record).model_validate({**record.model_dump(), **changes})
    except ValidationError as e:
        raise InvalidFields(f"Invalid {type(record).__name__} fields: {e}") from e


def _sort_key(instance: TaskInstance) -> tuple[date, time, str]:
    anchor = instance.start_date or instance.due_date or date.min
    moment = instance.start_time or instance.due_time or time.min
    return (anchor, moment, instance.id)


class SeriesManager:
    """Operations on recurring series, backed by a ``SeriesStore``.

    The manager itself holds no per-series state; everything it knows about
    a series is read from the store on each call.
    """

    def __init__(self, store: SeriesStore, settings: Optional[SchedulerSettings] = None) -> None:
        """Initialize the manager.

        Args:
            store: Persistence collaborator for templates and instances
            settings: Scheduler settings; process-wide settings when omitted
        """
        self._store = store
        self._settings = settings if settings is not None else get_settings()

    @property
    def store(self) -> SeriesStore:
        """The persistence collaborator."""
        return self._store

    # Loading and validation helpers

    def _load(self, template_id: str, expected_version: Optional[int]) -> RecurringTemplate:
        template = self._store.load_template(template_id)
        if expected_version is not None and template.version != expected_version:
            logger.info(
                "Version conflict on template %s: stored %d, expected %d",
                template_id,
                template.version,
                expected_version,
            )
            raise Conflict(
                f"Template {template_id!r} is at version {template.version}, "
                f"expected {expected_version}"
            )
        return template

    def _check_key(
        self, template: RecurringTemplate, key: str, decoded: OccurrenceKey
    ) -> Optional[Occurrence]:
        """Check that ``key`` names a live occurrence of ``template``.

        Returns:
            The planned occurrence, or None for an edited key the current rule
            no longer produces

        Raises:
            UnknownOccurrence: If the key belongs elsewhere, was deleted or is
                not part of the sequence
        """
        if decoded.template_id != template.id:
            raise UnknownOccurrence(f"Occurrence {key!r} does not belong to template {template.id!r}")
        if key in template.deleted_instance_keys:
            raise UnknownOccurrence(f"Occurrence {key!r} was deleted from the series")

        occurrence = find_occurrence(template.rule, decoded.date, decoded.time_slot_index)
        if occurrence is None and key not in template.edited_instance_keys:
            raise UnknownOccurrence(
                f"Occurrence {key!r} is not part of the sequence of template {template.id!r}"
            )
        return occurrence

    @staticmethod
    def _generate_instance(
        template: RecurringTemplate, key: str, occurrence_date: date, start_time: Optional[time]
    ) -> TaskInstance:
        """Build the instance the template plans for one occurrence."""
        due_date: Optional[date] = None
        due_time: Optional[time] = None
        if template.due_offset_days is not None:
            due_date = occurrence_date + timedelta(days=template.due_offset_days)
            due_time = template.due_time

        return TaskInstance(
            id=instance_keys.instance_id_for(template.id, key),
            title=template.title,
            context=template.description,
            category=template.category,
            xp_value=template.xp_value,
            start_date=occurrence_date,
            start_time=start_time,
            due_date=due_date,
            due_time=due_time,
            time_zone=template.time_zone,
            source_recurring_task_id=template.id,
            recurrence_instance_key=key,
        )

    def _seed_instance(
        self,
        template: RecurringTemplate,
        key: str,
        decoded: OccurrenceKey,
        occurrence: Optional[Occurrence],
    ) -> TaskInstance:
        """Return the persisted instance for ``key``, or the generated one."""
        existing = self._store.load_instance(key)
        if existing is not None:
            return existing

        if occurrence is not None:
            start_time: Optional[time] = occurrence.time_of_day
        elif decoded.time_slot_index < len(template.rule.times_of_day):
            # Edited key whose instance went missing and that the rule no longer plans
            start_time = parse_time_of_day(template.rule.times_of_day[decoded.time_slot_index])
        else:
            start_time = None
        return self._generate_instance(template, key, decoded.date, start_time)

    @contextmanager
    def _mutation(self) -> Iterator[str]:
        with operation_scope() as operation_id, self._store.atomic():
            yield operation_id

    @staticmethod
    def _validate_new_template(template: RecurringTemplate) -> None:
        if not template.id:
            raise InvalidFields("template id must be a non-empty string")
        validate_rule(template.rule)
        resolve_time_zone(template.time_zone)
        if template.edited_instance_keys & template.deleted_instance_keys:
            raise InvalidFields("edited and deleted instance keys must be disjoint")

    # Templates

    def create_template(self, template: RecurringTemplate) -> RecurringTemplate:
        """Validate and store a new template.

        Raises:
            InvalidRule: If the rule is malformed
            InvalidTimeZone: If the template's zone is unknown
            Conflict: If a template with the same ID already exists
            InvalidFields: If the ID is empty or the exception sets overlap
        """
        self._validate_new_template(template)

        with self._mutation():
            stored = self._store.save_template(template, expected_version=0)

        logger.info("Created %s template %s", stored.rule.frequency.value, stored.id)
        return stored

    def get_template(self, template_id: str) -> RecurringTemplate:
        """Load a template.

        Raises:
            TemplateNotFound: If no template has this ID
        """
        return self._store.load_template(template_id)

    # Reading

    def materialize(
        self, template_id: str, window_start: date, window_end: date
    ) -> list[TaskInstance]:
        """Return the series' instances within ``[window_start, window_end]``.

        Planned occurrences are generated from the rule, except that deleted
        keys are dropped, edited keys are represented by their persisted
        edited instance, and other persisted instances (for example a
        completed occurrence) replace their generated counterpart. Nothing is
        written.

        Raises:
            TemplateNotFound: If no template has this ID
            InvalidRule: If the stored rule is malformed
        """
        template = self._store.load_template(template_id)
        if window_end < window_start:
            return []

        persisted = self._store.find_instances(template.id)
        overlays: dict[str, TaskInstance] = {}
        edited: list[TaskInstance] = []
        for instance in persisted:
            key = instance.recurrence_instance_key
            if key is None:
                continue
            if instance.is_edited_instance:
                if key in template.edited_instance_keys:
                    edited.append(instance)
            else:
                overlays[key] = instance

        excluded = template.edited_instance_keys | template.deleted_instance_keys
        instances: list[TaskInstance] = []
        for occurrence in expand(template.rule, window_start, window_end):
            key = instance_keys.encode(template.id, occurrence.date, occurrence.time_slot_index)
            if key in excluded:
                continue
            overlay = overlays.get(key)
            if overlay is not None:
                instances.append(overlay)
            else:
                instances.append(
                    self._generate_instance(template, key, occurrence.date, occurrence.time_of_day)
                )

        for instance in edited:
            anchor = instance.start_date
            if anchor is None:
                anchor = instance_keys.decode(instance.recurrence_instance_key).date
            if window_start <= anchor <= window_end:
                instances.append(instance)

        instances.sort(key=_sort_key)
        logger.debug(
            "Materialized template %s over %s..%s: %d instances (%d edited)",
            template.id,
            window_start.isoformat(),
            window_end.isoformat(),
            len(instances),
            sum(1 for i in instances if i.is_edited_instance),
        )
        return instances

    def materialize_upcoming(
        self, template_id: str, today: Optional[date] = None
    ) -> list[TaskInstance]:
        """Materialize the buffer window that starts today in the template's zone.

        The window covers ``upcoming_days``, ``upcoming_weeks`` or
        ``upcoming_months`` (per the rule's frequency) including today.
        """
        template = self._store.load_template(template_id)
        if today is None:
            today = local_today(template.time_zone)

        frequency = Frequency(template.rule.frequency)
        if frequency == Frequency.DAILY:
            span = relativedelta(days=self._settings.upcoming_days)
        elif frequency == Frequency.WEEKLY:
            span = relativedelta(weeks=self._settings.upcoming_weeks)
        else:
            span = relativedelta(months=self._settings.upcoming_months)

        window_end = today + span - timedelta(days=1)
        return self.materialize(template_id, today, window_end)

    def next_occurrence(
        self, template_id: str, after: Union[date, datetime, None] = None
    ) -> Optional[TaskInstance]:
        """Return the first planned instance strictly after ``after``.

        ``after`` defaults to now. Dates and naive datetimes are read in the
        template's zone. Deleted and edited keys are skipped, and a persisted
        snapshot (such as a completed occurrence) is returned in place of the
        generated instance.

        Raises:
            TemplateNotFound: If no template has this ID
            InvalidRule: If the stored rule is malformed
        """
        template = self._store.load_template(template_id)
        cursor: Union[date, datetime] = now_utc() if after is None else after
        excluded = template.edited_instance_keys | template.deleted_instance_keys

        while True:
            occurrence = find_next_occurrence(template.rule, cursor, template.time_zone)
            if occurrence is None:
                return None
            key = instance_keys.encode(template.id, occurrence.date, occurrence.time_slot_index)
            if key not in excluded:
                existing = self._store.load_instance(key)
                if existing is not None:
                    return existing
                return self._generate_instance(
                    template, key, occurrence.date, occurrence.time_of_day
                )
            cursor = datetime.combine(occurrence.date, occurrence.time_of_day)

    # Single-occurrence mutations

    def edit_single(
        self,
        template_id: str,
        key: str,
        new_fields: Union[InstanceUpdate, Mapping[str, Any], None],
        expected_version: Optional[int] = None,
    ) -> TaskInstance:
        """Detach one occurrence into a standalone edited instance.

        Editing an already edited occurrence updates its instance.

        Raises:
            MalformedKey: If the key does not decode
            UnknownOccurrence: If the key is not a live occurrence of the template
            TemplateNotFound: If no template has this ID
            Conflict: If the template changed since ``expected_version``
            InvalidFields: If an explicitly set field value is rejected
        """
        decoded = instance_keys.decode(key)
        update = _coerce_update(InstanceUpdate, new_fields)

        with self._mutation():
            template = self._load(template_id, expected_version)
            occurrence = self._check_key(template, key, decoded)
            base = self._seed_instance(template, key, decoded, occurrence)

            changes = {
                k: v for k, v in update.changes().items() if k not in _PROTECTED_INSTANCE_FIELDS
            }
            changes["is_edited_instance"] = True
            edited = _apply(base, changes)
            saved = self._store.save_instance(edited, expected_version=base.version)

            template.edited_instance_keys.add(key)
            self._store.save_template(template, expected_version=template.version)

        logger.info("Edited occurrence %s of template %s", key, template_id)
        return saved

    def delete_single(
        self, template_id: str, key: str, expected_version: Optional[int] = None
    ) -> None:
        """Remove one occurrence from the series permanently.

        An edited occurrence's instance is deleted and its key moves from the
        edited set to the deleted set.

        Raises:
            MalformedKey: If the key does not decode
            UnknownOccurrence: If the key is not a live occurrence of the template
            TemplateNotFound: If no template has this ID
            Conflict: If the template changed since ``expected_version``
        """
        decoded = instance_keys.decode(key)

        with self._mutation():
            template = self._load(template_id, expected_version)
            self._check_key(template, key, decoded)

            existing = self._store.load_instance(key)
            if existing is not None:
                self._store.delete_instance(existing.id)

            template.edited_instance_keys.discard(key)
            template.deleted_instance_keys.add(key)
            self._store.save_template(template, expected_version=template.version)

        logger.info("Deleted occurrence %s of template %s", key, template_id)

    def complete_occurrence(
        self,
        template_id: str,
        key: str,
        completed: bool = True,
        expected_version: Optional[int] = None,
    ) -> TaskInstance:
        """Mark one occurrence completed (or pending again).

        The occurrence is persisted so that later materializations show its
        status. Non-edited occurrences stay attached to the series.

        Raises:
            MalformedKey: If the key does not decode
            UnknownOccurrence: If the key is not a live occurrence of the template
            TemplateNotFound: If no template has this ID
            Conflict: If the template or instance changed concurrently
        """
        decoded = instance_keys.decode(key)

        with self._mutation():
            template = self._load(template_id, expected_version)
            occurrence = self._check_key(template, key, decoded)
            base = self._seed_instance(template, key, decoded, occurrence)

            if completed:
                changes = {"status": TaskStatus.COMPLETED, "completed_at": now_utc()}
            else:
                changes = {"status": TaskStatus.PENDING, "completed_at": None}
            saved = self._store.save_instance(_apply(base, changes), expected_version=base.version)

        logger.info(
            "Marked occurrence %s of template %s %s", key, template_id, saved.status.value
        )
        return saved

    # Series mutations

    def edit_series(
        self,
        template_id: str,
        rule: Optional[RecurrenceRule] = None,
        content: Union[TemplateContentUpdate, Mapping[str, Any], None] = None,
        expected_version: Optional[int] = None,
    ) -> RecurringTemplate:
        """Replace the rule and/or shared content of a series.

        Edited and deleted occurrences keep their exclusion; only planned
        occurrences follow the new rule and content.

        Raises:
            InvalidRule: If the new rule is malformed
            InvalidTimeZone: If the new zone is unknown
            TemplateNotFound: If no template has this ID
            Conflict: If the template changed since ``expected_version``
            InvalidFields: If an explicitly set field value is rejected
        """
        if rule is not None:
            validate_rule(rule)
        update = _coerce_update(TemplateContentUpdate, content)
        changes: dict[str, Any] = update.changes()
        if changes.get("time_zone") is not None:
            resolve_time_zone(changes["time_zone"])

        with self._mutation():
            template = self._load(template_id, expected_version)
            updated = _apply(template, changes)
            if rule is not None:
                updated.rule = rule.model_copy(deep=True)
            saved = self._store.save_template(updated, expected_version=template.version)

        logger.info(
            "Edited series %s (rule %s, fields %s)",
            template_id,
            "replaced" if rule is not None else "unchanged",
            sorted(changes),
        )
        return saved

    def _delete_series_locked(self, template: RecurringTemplate) -> int:
        instances = self._store.find_instances(template.id)
        for instance in instances:
            self._store.delete_instance(instance.id)
        self._store.delete_template(template.id, expected_version=template.version)
        return len(instances)

    def delete_series(self, template_id: str, expected_version: Optional[int] = None) -> None:
        """Delete a template and every instance that references it.

        Raises:
            TemplateNotFound: If no template has this ID
            Conflict: If the template changed since ``expected_version``
        """
        with self._mutation():
            template = self._load(template_id, expected_version)
            removed = self._delete_series_locked(template)

        logger.info("Deleted series %s and %d instances", template_id, removed)

    def convert_to_one_time(
        self,
        template_id: str,
        key: str,
        final_fields: Union[InstanceUpdate, Mapping[str, Any], None],
        *,
        acknowledged: bool,
        expected_version: Optional[int] = None,
    ) -> TaskInstance:
        """Replace a whole series by one standalone task.

        The new task is seeded from the chosen occurrence (its edited instance
        when there is one) with ``final_fields`` applied, and carries no
        recurrence linkage. The template and all its instances are deleted in
        the same atomic change.

        Raises:
            ConfirmationRequired: Unless ``acknowledged`` is True
            MalformedKey: If the key does not decode
            UnknownOccurrence: If the key is not a live occurrence of the template
            TemplateNotFound: If no template has this ID
            Conflict: If the template changed since ``expected_version``
            InvalidFields: If an explicitly set field value is rejected
        """
        if acknowledged is not True:
            raise ConfirmationRequired(
                "convert_to_one_time deletes the whole series; pass acknowledged=True"
            )

        decoded = instance_keys.decode(key)
        update = _coerce_update(InstanceUpdate, final_fields)

        with self._mutation():
            template = self._load(template_id, expected_version)
            occurrence = self._check_key(template, key, decoded)
            base = self._seed_instance(template, key, decoded, occurrence)

            changes = {
                k: v for k, v in update.changes().items() if k not in _PROTECTED_INSTANCE_FIELDS
            }
            changes.update(
                id=str(uuid.uuid4()),
                source_recurring_task_id=None,
                recurrence_instance_key=None,
                is_edited_instance=False,
                version=0,
            )
            one_time = _apply(base, changes)

            removed = self._delete_series_locked(template)
            saved = self._store.save_instance(one_time, expected_version=0)

        logger.info(
            "Converted series %s to one-time task %s (removed %d instances)",
            template_id,
            saved.id,
            removed,
        )
        return saved

    def convert_to_recurring(
        self,
        instance_id: str,
        rule: Union[RecurrenceRule, Mapping[str, Any]],
        template_id: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> RecurringTemplate:
        """Turn a standalone task into a recurring template.

        The task's content, zone and schedule carry over. When ``rule`` is a
        mapping, a missing ``start_date`` defaults to the task's start date
        (or today in the task's zone) and missing ``times_of_day`` to the
        task's start time. A due date on or after the rule's start becomes the
        template's due offset. The standalone task is deleted and the template
        created in the same atomic change.

        Args:
            instance_id: ID of the standalone task
            rule: Complete rule, or rule fields to complete from the task
            template_id: ID for the new template; a new uuid when omitted
            expected_version: Version of the task the caller loaded

        Raises:
            InstanceNotFound: If no task has this ID
            InvalidFields: If the task belongs to a series or the template ID is empty
            InvalidRule: If the rule is malformed
            InvalidTimeZone: If the task's zone is unknown
            Conflict: If the task changed since ``expected_version`` or the
                template ID is taken
        """
        with self._mutation():
            instance = self._store.load_instance_by_id(instance_id)
            if instance is None:
                raise InstanceNotFound(f"Task instance not found: {instance_id!r}")
            if not instance.is_one_time:
                raise InvalidFields(
                    f"Task {instance_id!r} already belongs to series "
                    f"{instance.source_recurring_task_id!r}"
                )
            if expected_version is not None and instance.version != expected_version:
                raise Conflict(
                    f"Task {instance_id!r} is at version {instance.version}, "
                    f"expected {expected_version}"
                )

            if isinstance(rule, RecurrenceRule):
                new_rule = rule.model_copy(deep=True)
            else:
                fields = dict(rule)
                fields.setdefault(
                    "start_date", instance.start_date or local_today(instance.time_zone)
                )
                if "times_of_day" not in fields and instance.start_time is not None:
                    fields["times_of_day"] = [format_time_of_day(instance.start_time)]
                try:
                    new_rule = RecurrenceRule.model_validate(fields)
                except ValidationError as e:
                    raise InvalidRule(f"Invalid recurrence rule: {e}") from e

            due_offset_days: Optional[int] = None
            if instance.due_date is not None and instance.due_date >= new_rule.start_date:
                due_offset_days = (instance.due_date - new_rule.start_date).days

            template = RecurringTemplate(
                id=str(uuid.uuid4()) if template_id is None else template_id,
                title=instance.title,
                description=instance.context,
                category=instance.category,
                xp_value=instance.xp_value,
                rule=new_rule,
                time_zone=instance.time_zone,
                due_offset_days=due_offset_days,
                due_time=instance.due_time if due_offset_days is not None else None,
            )
            self._validate_new_template(template)

            self._store.delete_instance(instance.id)
            stored = self._store.save_template(template, expected_version=0)

        logger.info(
            "Converted task %s to %s template %s",
            instance_id,
            stored.rule.frequency.value,
            stored.id,
        )
        return stored
