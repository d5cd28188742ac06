"""Data models for recurring task templates and task instances."""

from dataclasses import dataclass
from datetime import date, datetime, time
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_serializer


class Frequency(str, Enum):
    """Supported recurrence frequencies."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class TaskStatus(str, Enum):
    """Stored task status. Overdue is derived at render time, never stored."""

    PENDING = "pending"
    COMPLETED = "completed"


class RecurrenceRule(BaseModel):
    """Recurrence rule of a template.

    Shape is checked by ``rule_expander.validate_rule`` rather than by field
    validators so that stored records always load, and so that a bad rule is
    reported as ``InvalidRule`` instead of a pydantic error.
    """

    frequency: Frequency = Field(..., description="daily, weekly or monthly")
    interval: int = Field(default=1, description="Step between periods (>= 1)")
    days_of_week: set[int] = Field(
        default_factory=set, description="Weekdays for weekly rules (0=Sunday .. 6=Saturday)"
    )
    days_of_month: set[int] = Field(
        default_factory=set, description="Days of month for monthly rules (1..31)"
    )
    times_of_day: list[str] = Field(
        default_factory=list, description="HH:MM times; one occurrence per entry per date"
    )
    start_date: date = Field(..., description="First date the rule may produce")
    end_date: Optional[date] = Field(default=None, description="Last date the rule may produce")
    max_occurrences: Optional[int] = Field(
        default=None, description="Upper bound on the global occurrence count"
    )

    @field_serializer("days_of_week", "days_of_month")
    def serialize_day_set(self, days: set[int]) -> list[int]:
        """Serialize day selectors as sorted lists for stable JSON."""
        return sorted(days)


class RecurringTemplate(BaseModel):
    """Recurrence rule plus the shared content of a series."""

    # Identity
    id: str = Field(..., description="Template ID")

    # Content
    title: str = Field(..., description="Task title")
    description: Optional[str] = Field(default=None, description="Task description")
    category: Optional[str] = Field(default=None, description="Task category")
    xp_value: int = Field(default=0, description="XP awarded on completion")

    # Schedule
    rule: RecurrenceRule = Field(..., description="Recurrence rule")
    time_zone: str = Field(default="UTC", description="Zone the rule's dates and times live in")
    due_offset_days: Optional[int] = Field(
        default=None, description="Days between an occurrence and its due date"
    )
    due_time: Optional[time] = Field(default=None, description="Due time for generated instances")

    # Exception bookkeeping
    edited_instance_keys: set[str] = Field(
        default_factory=set, description="Keys detached into standalone edited instances"
    )
    deleted_instance_keys: set[str] = Field(
        default_factory=set, description="Keys removed from the series"
    )

    # Optimistic concurrency token
    version: int = Field(default=0, description="Bumped by every successful save")

    @field_serializer("edited_instance_keys", "deleted_instance_keys")
    def serialize_key_set(self, keys: set[str]) -> list[str]:
        """Serialize key sets as sorted lists for stable JSON."""
        return sorted(keys)


class TaskInstance(BaseModel):
    """Concrete task record, either standalone or born from a template."""

    # Identity
    id: str = Field(..., description="Instance ID")

    # Content
    title: str = Field(..., description="Task title")
    context: Optional[str] = Field(default=None, description="Task description/context")
    category: Optional[str] = Field(default=None, description="Task category")
    xp_value: int = Field(default=0, description="XP awarded on completion")

    # Schedule (wall-clock values in time_zone)
    start_date: Optional[date] = Field(default=None, description="Local start date")
    start_time: Optional[time] = Field(default=None, description="Local start time")
    due_date: Optional[date] = Field(default=None, description="Local due date")
    due_time: Optional[time] = Field(default=None, description="Local due time")
    time_zone: str = Field(default="UTC", description="Zone of the wall-clock values")

    # Status
    status: TaskStatus = Field(default=TaskStatus.PENDING, description="Stored status")
    completed_at: Optional[datetime] = Field(default=None, description="Completion instant (UTC)")

    # Recurrence linkage
    source_recurring_task_id: Optional[str] = Field(
        default=None, description="Template this instance was born from (weak reference)"
    )
    recurrence_instance_key: Optional[str] = Field(
        default=None, description="Occurrence key this instance materializes"
    )
    is_edited_instance: bool = Field(
        default=False, description="Detached from rule-driven regeneration"
    )

    # Optimistic concurrency token
    version: int = Field(default=0, description="Bumped by every successful save")

    @property
    def has_due_time(self) -> bool:
        """Check if the instance carries a due time of day."""
        return self.due_time is not None

    @property
    def is_recurring_instance(self) -> bool:
        """Check if the instance belongs to a series."""
        return self.source_recurring_task_id is not None

    @property
    def is_one_time(self) -> bool:
        """Check if the instance is a standalone one-time task."""
        return self.source_recurring_task_id is None and self.recurrence_instance_key is None

    @field_serializer("completed_at", when_used="unless-none")
    def serialize_datetime(self, dt: datetime) -> str:
        """Serialize datetime fields to ISO format."""
        return dt.isoformat()


class InstanceUpdate(BaseModel):
    """Field changes for a single instance.

    Only fields explicitly passed are applied, so ``InstanceUpdate(due_time=None)``
    clears the due time while ``InstanceUpdate()`` changes nothing.
    """

    title: Optional[str] = None
    context: Optional[str] = None
    category: Optional[str] = None
    xp_value: Optional[int] = None
    start_date: Optional[date] = None
    start_time: Optional[time] = None
    due_date: Optional[date] = None
    due_time: Optional[time] = None
    status: Optional[TaskStatus] = None

    def changes(self) -> dict[str, Any]:
        """Return the explicitly set fields."""
        return self.model_dump(exclude_unset=True)


class TemplateContentUpdate(BaseModel):
    """Content changes for a whole series."""

    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    xp_value: Optional[int] = None
    time_zone: Optional[str] = None
    due_offset_days: Optional[int] = None
    due_time: Optional[time] = None

    def changes(self) -> dict[str, Any]:
        """Return the explicitly set fields."""
        return self.model_dump(exclude_unset=True)


@dataclass(frozen=True, order=True)
class Occurrence:
    """One logical (date, time slot) pair produced by a rule.

    Ordering follows (date, time_of_day), which is the order the expander
    emits occurrences in.
    """

    date: date
    time_of_day: time
    time_slot_index: int
    position: int


@dataclass(frozen=True)
class OccurrenceKey:
    """Decoded occurrence key."""

    template_id: str
    date: date
    time_slot_index: int
