"""Tests for pydantic models and update objects."""

from datetime import UTC, date, datetime, time

import pytest

from pointwise_scheduler.models import (
    Frequency,
    InstanceUpdate,
    Occurrence,
    RecurrenceRule,
    RecurringTemplate,
    TaskInstance,
    TaskStatus,
    TemplateContentUpdate,
)

pytestmark = pytest.mark.unit


class TestRecurrenceRule:
    """Rule data model."""

    def test_rule_when_dumped_to_json_then_day_sets_sorted(self):
        rule = RecurrenceRule(
            frequency=Frequency.WEEKLY,
            days_of_week={5, 1, 3},
            times_of_day=["09:00"],
            start_date=date(2024, 1, 1),
        )

        data = rule.model_dump(mode="json")

        assert data["days_of_week"] == [1, 3, 5]
        assert data["frequency"] == "weekly"
        assert data["start_date"] == "2024-01-01"

    def test_rule_when_loaded_from_strings_then_coerced(self):
        rule = RecurrenceRule.model_validate(
            {"frequency": "monthly", "days_of_month": [31], "times_of_day": ["08:00"], "start_date": "2024-01-01"}
        )
        assert rule.frequency == Frequency.MONTHLY
        assert rule.days_of_month == {31}
        assert rule.start_date == date(2024, 1, 1)


class TestRecurringTemplate:
    """Template data model."""

    def test_template_when_round_tripped_through_json_then_equal(self, weekly_template):
        weekly_template.deleted_instance_keys.add("occ1:standup:20240108:0")

        restored = RecurringTemplate.model_validate_json(weekly_template.model_dump_json())

        assert restored == weekly_template


class TestTaskInstance:
    """Instance data model."""

    def test_instance_when_generated_then_linkage_properties(self):
        instance = TaskInstance(
            id="x", title="t", source_recurring_task_id="s", recurrence_instance_key="k"
        )
        assert instance.is_recurring_instance
        assert not instance.is_one_time
        assert instance.status == TaskStatus.PENDING

    def test_instance_when_standalone_then_one_time(self):
        instance = TaskInstance(id="x", title="t", due_date=date(2024, 1, 1), due_time=time(8, 0))
        assert instance.is_one_time
        assert instance.has_due_time

    def test_instance_when_completed_at_dumped_then_iso_string(self):
        instance = TaskInstance(
            id="x", title="t", completed_at=datetime(2024, 1, 8, 15, 0, tzinfo=UTC)
        )
        assert instance.model_dump(mode="json")["completed_at"] == "2024-01-08T15:00:00+00:00"


class TestUpdates:
    """Partial update objects."""

    def test_instance_update_when_nothing_set_then_no_changes(self):
        assert InstanceUpdate().changes() == {}

    def test_instance_update_when_none_passed_explicitly_then_included(self):
        assert InstanceUpdate(due_time=None, title="x").changes() == {"due_time": None, "title": "x"}

    def test_template_content_update_when_set_then_only_set_fields(self):
        assert TemplateContentUpdate(xp_value=5).changes() == {"xp_value": 5}


class TestOccurrence:
    """Expander output value."""

    def test_occurrence_when_sorted_then_by_date_and_time(self):
        later = Occurrence(date(2024, 1, 1), time(18, 0), 0, 1)
        earlier = Occurrence(date(2024, 1, 1), time(9, 0), 1, 0)
        assert sorted([later, earlier]) == [earlier, later]
