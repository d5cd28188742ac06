"""Persistence collaborator for templates and task instances.

The series manager only talks to the ``SeriesStore`` protocol. Every save
takes the version the caller loaded; a mismatch raises ``Conflict`` rather
than merging, which serializes writers per record. ``atomic()`` groups
several writes into one all-or-nothing change.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import AbstractContextManager, contextmanager
from typing import Optional, Protocol

from ..exceptions import Conflict, TemplateNotFound
from ..models import RecurringTemplate, TaskInstance

logger = logging.getLogger(__name__)


class SeriesStore(Protocol):
    """Storage interface required by the series manager."""

    def load_template(self, template_id: str) -> RecurringTemplate:
        """Return the template or raise TemplateNotFound."""
        ...

    def save_template(
        self, template: RecurringTemplate, expected_version: int
    ) -> RecurringTemplate:
        """Store the template if its stored version equals expected_version.

        ``expected_version=0`` creates a template that must not exist yet.
        Returns the stored copy with its bumped version.
        """
        ...

    def delete_template(self, template_id: str, expected_version: int) -> None:
        """Delete the template if its stored version equals expected_version."""
        ...

    def load_instance(self, key: str) -> Optional[TaskInstance]:
        """Return the persisted instance materializing an occurrence key."""
        ...

    def load_instance_by_id(self, instance_id: str) -> Optional[TaskInstance]:
        """Return a persisted instance by ID."""
        ...

    def find_instances(self, template_id: str) -> list[TaskInstance]:
        """Return every persisted instance referencing the template."""
        ...

    def save_instance(self, instance: TaskInstance, expected_version: int) -> TaskInstance:
        """Store the instance if its stored version equals expected_version (0 = new)."""
        ...

    def delete_instance(self, instance_id: str) -> None:
        """Delete an instance; unknown IDs are ignored."""
        ...

    def atomic(self) -> AbstractContextManager[None]:
        """Group writes so that they all apply or none do."""
        ...


class InMemorySeriesStore:
    """Thread-safe in-memory ``SeriesStore``.

    Records are copied on the way in and out so callers never share mutable
    state with the store. Subclasses can persist state by overriding
    ``_commit``, which runs once per outermost write.
    """

    def __init__(self) -> None:
        """Create an empty store."""
        self._lock = threading.RLock()
        self._templates: dict[str, RecurringTemplate] = {}
        self._instances: dict[str, TaskInstance] = {}
        self._depth = 0

    # Transactions

    @contextmanager
    def atomic(self) -> Iterator[None]:
        """Apply every write inside the block, or none of them.

        Holds the store lock for the whole block, so concurrent writers on the
        same store are serialized. Nested blocks join the outermost one.
        """
        with self._lock:
            if self._depth:
                self._depth += 1
                try:
                    yield
                finally:
                    self._depth -= 1
                return

            snapshot = (dict(self._templates), dict(self._instances))
            self._depth = 1
            try:
                yield
                self._commit()
            except BaseException:
                self._templates, self._instances = snapshot
                logger.debug("Rolled back store transaction")
                raise
            finally:
                self._depth = 0

    def _commit(self) -> None:
        """Hook run after the outermost write succeeds."""

    # Templates

    def load_template(self, template_id: str) -> RecurringTemplate:
        with self._lock:
            template = self._templates.get(template_id)
            if template is None:
                raise TemplateNotFound(f"Recurring template not found: {template_id!r}")
            return template.model_copy(deep=True)

    def save_template(
        self, template: RecurringTemplate, expected_version: int
    ) -> RecurringTemplate:
        with self.atomic():
            current = self._templates.get(template.id)
            current_version = current.version if current is not None else 0
            if current_version != expected_version:
                raise Conflict(
                    f"Template {template.id!r} is at version {current_version}, "
                    f"expected {expected_version}"
                )

            stored = template.model_copy(update={"version": current_version + 1}, deep=True)
            self._templates[template.id] = stored
            logger.debug("Saved template %s at version %d", template.id, stored.version)
            return stored.model_copy(deep=True)

    def delete_template(self, template_id: str, expected_version: int) -> None:
        with self.atomic():
            current = self._templates.get(template_id)
            if current is None:
                raise TemplateNotFound(f"Recurring template not found: {template_id!r}")
            if current.version != expected_version:
                raise Conflict(
                    f"Template {template_id!r} is at version {current.version}, "
                    f"expected {expected_version}"
                )
            del self._templates[template_id]
            logger.debug("Deleted template %s", template_id)

    def list_templates(self) -> list[RecurringTemplate]:
        """Return every stored template ordered by ID."""
        with self._lock:
            return [self._templates[k].model_copy(deep=True) for k in sorted(self._templates)]

    # Instances

    def load_instance(self, key: str) -> Optional[TaskInstance]:
        with self._lock:
            for instance in self._instances.values():
                if instance.recurrence_instance_key == key:
                    return instance.model_copy(deep=True)
            return None

    def load_instance_by_id(self, instance_id: str) -> Optional[TaskInstance]:
        with self._lock:
            instance = self._instances.get(instance_id)
            return instance.model_copy(deep=True) if instance is not None else None

    def find_instances(self, template_id: str) -> list[TaskInstance]:
        with self._lock:
            return [
                instance.model_copy(deep=True)
                for instance in self._instances.values()
                if instance.source_recurring_task_id == template_id
            ]

    def save_instance(self, instance: TaskInstance, expected_version: int) -> TaskInstance:
        with self.atomic():
            current = self._instances.get(instance.id)
            current_version = current.version if current is not None else 0
            if current_version != expected_version:
                raise Conflict(
                    f"Instance {instance.id!r} is at version {current_version}, "
                    f"expected {expected_version}"
                )

            key = instance.recurrence_instance_key
            if key is not None:
                for other in self._instances.values():
                    if other.id != instance.id and other.recurrence_instance_key == key:
                        raise Conflict(f"Occurrence {key!r} is already stored as {other.id!r}")

            stored = instance.model_copy(update={"version": current_version + 1}, deep=True)
            self._instances[instance.id] = stored
            logger.debug("Saved instance %s at version %d", instance.id, stored.version)
            return stored.model_copy(deep=True)

    def delete_instance(self, instance_id: str) -> None:
        with self.atomic():
            if self._instances.pop(instance_id, None) is not None:
                logger.debug("Deleted instance %s", instance_id)

    def list_instances(self) -> list[TaskInstance]:
        """Return every stored instance ordered by ID."""
        with self._lock:
            return [self._instances[k].model_copy(deep=True) for k in sorted(self._instances)]
