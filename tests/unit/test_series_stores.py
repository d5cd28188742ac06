"""Tests for the in-memory and JSON-file series stores."""

import json
from datetime import date, time

import pytest

from pointwise_scheduler.exceptions import Conflict, StorageError, TemplateNotFound
from pointwise_scheduler.models import TaskInstance, TaskStatus
from pointwise_scheduler.storage import InMemorySeriesStore, JsonFileSeriesStore
from pointwise_scheduler.storage import json_store

pytestmark = pytest.mark.unit


def _instance(instance_id: str = "i1", key: str | None = "occ1:standup:20240103:0", **kw):
    data = {
        "id": instance_id,
        "title": "Standup",
        "start_date": date(2024, 1, 3),
        "start_time": time(9, 0),
        "source_recurring_task_id": "standup" if key else None,
        "recurrence_instance_key": key,
    }
    data.update(kw)
    return TaskInstance(**data)


class TestInMemoryTemplates:
    """Versioned template records."""

    def test_save_template_when_new_then_version_1(self, store, weekly_template):
        stored = store.save_template(weekly_template, expected_version=0)
        assert stored.version == 1
        assert store.load_template("standup").version == 1

    def test_save_template_when_version_matches_then_bumped(self, store, weekly_template):
        stored = store.save_template(weekly_template, expected_version=0)
        stored.title = "Renamed"

        again = store.save_template(stored, expected_version=1)

        assert again.version == 2
        assert store.load_template("standup").title == "Renamed"

    def test_save_template_when_version_stale_then_conflict(self, store, weekly_template):
        store.save_template(weekly_template, expected_version=0)

        with pytest.raises(Conflict):
            store.save_template(weekly_template, expected_version=0)

    def test_load_template_when_missing_then_template_not_found(self, store):
        with pytest.raises(TemplateNotFound):
            store.load_template("missing")

    def test_load_template_when_result_mutated_then_store_unaffected(self, store, weekly_template):
        store.save_template(weekly_template, expected_version=0)

        loaded = store.load_template("standup")
        loaded.edited_instance_keys.add("occ1:standup:20240103:0")
        loaded.rule.days_of_week.add(5)

        reloaded = store.load_template("standup")
        assert reloaded.edited_instance_keys == set()
        assert reloaded.rule.days_of_week == {1, 3}

    def test_delete_template_when_version_stale_then_conflict(self, store, weekly_template):
        store.save_template(weekly_template, expected_version=0)

        with pytest.raises(Conflict):
            store.delete_template("standup", expected_version=3)
        store.delete_template("standup", expected_version=1)
        with pytest.raises(TemplateNotFound):
            store.load_template("standup")


class TestInMemoryInstances:
    """Versioned instance records."""

    def test_save_instance_when_new_then_loadable_by_key_and_id(self, store):
        saved = store.save_instance(_instance(), expected_version=0)

        assert saved.version == 1
        assert store.load_instance("occ1:standup:20240103:0") == saved
        assert store.load_instance_by_id("i1") == saved
        assert store.find_instances("standup") == [saved]

    def test_save_instance_when_version_stale_then_conflict(self, store):
        store.save_instance(_instance(), expected_version=0)
        with pytest.raises(Conflict):
            store.save_instance(_instance(title="x"), expected_version=0)

    def test_save_instance_when_key_taken_by_other_id_then_conflict(self, store):
        store.save_instance(_instance("i1"), expected_version=0)
        with pytest.raises(Conflict):
            store.save_instance(_instance("i2"), expected_version=0)

    def test_delete_instance_when_unknown_then_ignored(self, store):
        store.delete_instance("nope")
        assert store.list_instances() == []

    def test_load_instance_when_missing_then_none(self, store):
        assert store.load_instance("occ1:x:20240101:0") is None
        assert store.load_instance_by_id("x") is None


class TestAtomic:
    """All-or-nothing write groups."""

    def test_atomic_when_block_raises_then_all_writes_rolled_back(self, store, weekly_template):
        with pytest.raises(RuntimeError), store.atomic():
            store.save_template(weekly_template, expected_version=0)
            store.save_instance(_instance(), expected_version=0)
            raise RuntimeError("boom")

        with pytest.raises(TemplateNotFound):
            store.load_template("standup")
        assert store.list_instances() == []

    def test_atomic_when_nested_then_commit_runs_once(self, weekly_template):
        commits = []

        class CountingStore(InMemorySeriesStore):
            def _commit(self):
                commits.append(len(self.list_instances()))

        store = CountingStore()
        with store.atomic():
            store.save_template(weekly_template, expected_version=0)
            with store.atomic():
                store.save_instance(_instance(), expected_version=0)

        assert commits == [1]

    def test_atomic_when_commit_fails_then_rolled_back(self, weekly_template):
        class BrokenStore(InMemorySeriesStore):
            def _commit(self):
                raise StorageError("disk gone")

        store = BrokenStore()
        with pytest.raises(StorageError):
            store.save_template(weekly_template, expected_version=0)
        with pytest.raises(TemplateNotFound):
            store.load_template("standup")


@pytest.mark.integration
class TestJsonFileSeriesStore:
    """Persistence to a JSON document."""

    def test_json_store_when_reopened_then_state_restored(self, tmp_path, weekly_template):
        path = tmp_path / "series.json"
        store = JsonFileSeriesStore(path)
        weekly_template.edited_instance_keys.add("occ1:standup:20240103:0")
        store.save_template(weekly_template, expected_version=0)
        store.save_instance(
            _instance(is_edited_instance=True, status=TaskStatus.COMPLETED), expected_version=0
        )

        reopened = JsonFileSeriesStore(path)

        template = reopened.load_template("standup")
        assert template == store.load_template("standup")
        assert template.rule.days_of_week == {1, 3}
        assert template.due_time == time(9, 30)
        instance = reopened.load_instance_by_id("i1")
        assert instance.status == TaskStatus.COMPLETED
        assert instance.is_edited_instance
        assert instance.start_time == time(9, 0)

    def test_json_store_when_written_then_stable_document(self, tmp_path, weekly_template):
        path = tmp_path / "series.json"
        store = JsonFileSeriesStore(path)
        store.save_template(weekly_template, expected_version=0)

        data = json.loads(path.read_text(encoding="utf-8"))

        assert data["format"] == json_store.FORMAT_VERSION
        assert data["templates"]["standup"]["rule"]["days_of_week"] == [1, 3]
        assert data["templates"]["standup"]["version"] == 1
        assert data["instances"] == {}
        assert list(tmp_path.iterdir()) == [path]

    def test_json_store_when_file_missing_then_empty(self, tmp_path):
        store = JsonFileSeriesStore(tmp_path / "nested" / "series.json")
        assert store.list_templates() == []
        assert store.path.parent.exists()

    @pytest.mark.parametrize("content", ["{not json", "[]", '{"templates": {"x": {"id": 1}}}'])
    def test_json_store_when_file_corrupt_then_storage_error(self, tmp_path, content):
        path = tmp_path / "series.json"
        path.write_text(content, encoding="utf-8")

        with pytest.raises(StorageError):
            JsonFileSeriesStore(path)

    def test_json_store_when_write_fails_then_storage_error_and_rollback(
        self, tmp_path, weekly_template, monkeypatch
    ):
        path = tmp_path / "series.json"
        store = JsonFileSeriesStore(path)

        def failing_tempfile(*args, **kwargs):
            raise OSError("read-only file system")

        monkeypatch.setattr(json_store.tempfile, "NamedTemporaryFile", failing_tempfile)

        with pytest.raises(StorageError):
            store.save_template(weekly_template, expected_version=0)
        with pytest.raises(TemplateNotFound):
            store.load_template("standup")
        assert not path.exists()
