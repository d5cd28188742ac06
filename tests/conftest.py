"""Shared fixtures for pointwise_scheduler tests."""

import os
from collections.abc import Generator
from datetime import date, time
from typing import Any

import pytest

from pointwise_scheduler.core.settings import SchedulerSettings, reset_settings
from pointwise_scheduler.domain.series_manager import SeriesManager
from pointwise_scheduler.models import Frequency, RecurrenceRule, RecurringTemplate
from pointwise_scheduler.storage import InMemorySeriesStore


@pytest.fixture(autouse=True)
def clean_test_environment(monkeypatch: Any) -> Generator[None, Any, None]:
    """Ensure POINTWISE_* environment variables do not leak into tests.

    Some tests set POINTWISE_TEST_TIME to freeze "now"; settings tests set
    other POINTWISE_* variables. All of them are cleared before each test
    and the cached process-wide settings are dropped after it.
    """
    for key in list(os.environ):
        if key.upper().startswith("POINTWISE_"):
            monkeypatch.delenv(key, raising=False)
    yield
    reset_settings()


@pytest.fixture
def test_timezone() -> str:
    """Return a deterministic timezone identifier for tests."""
    return "America/New_York"


@pytest.fixture
def settings() -> SchedulerSettings:
    """Settings with the default buffer windows."""
    return SchedulerSettings()


@pytest.fixture
def store() -> InMemorySeriesStore:
    """Empty in-memory series store."""
    return InMemorySeriesStore()


@pytest.fixture
def manager(store: InMemorySeriesStore, settings: SchedulerSettings) -> SeriesManager:
    """Series manager over the in-memory store."""
    return SeriesManager(store, settings)


@pytest.fixture
def weekly_rule() -> RecurrenceRule:
    """Mondays and Wednesdays at 09:00 starting Monday 2024-01-01."""
    return RecurrenceRule(
        frequency=Frequency.WEEKLY,
        interval=1,
        days_of_week={1, 3},
        times_of_day=["09:00"],
        start_date=date(2024, 1, 1),
    )


@pytest.fixture
def weekly_template(weekly_rule: RecurrenceRule, test_timezone: str) -> RecurringTemplate:
    """Unsaved weekly standup template."""
    return RecurringTemplate(
        id="standup",
        title="Standup",
        description="Daily team sync",
        category="work",
        xp_value=10,
        rule=weekly_rule,
        time_zone=test_timezone,
        due_offset_days=0,
        due_time=time(9, 30),
    )


@pytest.fixture
def saved_template(
    manager: SeriesManager, weekly_template: RecurringTemplate
) -> RecurringTemplate:
    """Weekly standup template stored through the manager (version 1)."""
    return manager.create_template(weekly_template)
