"""Unit tests for LocalStorage, backups, recovery and migrations."""

import json
import threading
import time
from datetime import date

import pytest
import yaml

from tasknest.data import LocalStorage, MigrationEngine, SlotStore, export_filename, validate_and_migrate
from tasknest.data.debounce import Debouncer
from tasknest.migration import Migration
from tasknest.models import StorageSnapshot, Task, ViewMode
from tasknest.recovery import FileOperationError, ImportFormatError, MigrationError, StorageWriteError
from tasknest.version import APP_SCHEMA_VERSION


def count_primary_writes(monkeypatch, storage):
    """Wrap the slot store so writes to the primary key are counted."""
    writes = []
    original = storage.slots.set

    def counting_set(key, value):
        if key == storage.storage_key:
            writes.append(value)
        return original(key, value)

    monkeypatch.setattr(storage.slots, "set", counting_set)
    return writes


def wait_for(condition, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(0.01)
    return condition()


class TestSlotStore:
    """Test the file-backed slot store."""

    def test_set_get_remove(self, slots):
        """Test basic slot access."""
        assert slots.get("missing") is None
        slots.set("taskManager", "{}")
        assert slots.get("taskManager") == "{}"
        assert slots.exists("taskManager")
        assert slots.remove("taskManager")
        assert not slots.remove("taskManager")

    def test_keys_by_prefix(self, slots):
        """Test listing keys in lexicographic order."""
        for key in ("b_2", "a", "b_1"):
            slots.set(key, "x")
        assert slots.keys("b_") == ["b_1", "b_2"]
        assert slots.keys() == ["a", "b_1", "b_2"]

    def test_invalid_key(self, slots):
        """Test that path-like keys are rejected."""
        with pytest.raises(ValueError):
            slots.set("../escape", "x")


class TestDebouncer:
    """Test the debounce primitive."""

    def test_partials_merge_and_run_once(self):
        """Test that later keys win and the action runs once."""
        calls = []
        debouncer = Debouncer(10, calls.append)
        debouncer.call({"tasks": 1, "user": "a"})
        debouncer.call({"tasks": 2})
        assert debouncer.pending
        assert debouncer.flush()
        assert calls == [{"tasks": 2, "user": "a"}]
        assert not debouncer.pending
        assert not debouncer.flush()

    def test_cancel_drops_pending(self):
        """Test cancelling a scheduled action."""
        calls = []
        debouncer = Debouncer(10, calls.append)
        debouncer.call({"tasks": 1})
        assert debouncer.cancel()
        assert not debouncer.flush()
        assert calls == []

    def test_timer_fires_after_quiet_window(self):
        """Test that the action runs on its own once calls stop."""
        calls = []
        debouncer = Debouncer(0.05, calls.append)
        for i in range(5):
            debouncer.call({"n": i})
        assert wait_for(lambda: calls)
        time.sleep(0.1)
        assert calls == [{"n": 4}]


class TestSave:
    """Test saving snapshots."""

    def test_save_writes_primary_and_backup(self, storage):
        """Test a plain save."""
        snapshot = storage.save({"tasks": [Task(id="1", title="A")]})
        stored = json.loads(storage.slots.get("taskManager"))
        assert [t["id"] for t in stored["tasks"]] == ["1"]
        assert stored["version"] == APP_SCHEMA_VERSION
        assert storage.backups.count() == 1
        assert storage.last_saved == snapshot.last_modified

    def test_save_merges_partial(self, storage):
        """Test that fields not in the partial are kept."""
        storage.save({"tasks": [Task(id="1")], "currentCategory": "urgent"})
        snapshot = storage.save({"currentView": "calendar"})
        assert [t.id for t in snapshot.tasks] == ["1"]
        assert snapshot.current_category == "urgent"
        assert snapshot.current_view == ViewMode.CALENDAR

    def test_unknown_field_is_rejected(self, storage):
        """Test that a typo in a partial does not pass silently."""
        with pytest.raises(KeyError):
            storage.save({"taks": []})

    def test_backups_are_pruned(self, storage):
        """Test that only the newest backups are kept."""
        for i in range(7):
            storage.save({"tasks": [Task(id=str(i))]})
        backups = storage.list_backups()
        assert len(backups) == 5
        newest = json.loads(storage.slots.get(backups[0]))
        assert newest["tasks"][0]["id"] == "6"

    def test_write_failure_raises_and_keeps_state(self, storage, monkeypatch):
        """Test that a failed write leaves the in-memory snapshot alone."""
        before = storage.save({"tasks": [Task(id="1")]})

        def broken_set(key, value):
            raise FileOperationError("disk full")

        monkeypatch.setattr(storage.slots, "set", broken_set)
        with pytest.raises(StorageWriteError):
            storage.save({"tasks": []})
        assert storage.current() is before


class TestAutoSave:
    """Test debounced auto-save."""

    def test_burst_writes_once(self, storage, monkeypatch):
        """Test that a burst of auto-saves produces a single write."""
        writes = count_primary_writes(monkeypatch, storage)
        for i in range(5):
            storage.auto_save({"tasks": [Task(id=str(i))]})
        assert writes == []
        assert wait_for(lambda: writes)
        time.sleep(0.15)
        assert len(writes) == 1
        assert json.loads(writes[0])["tasks"][0]["id"] == "4"

    def test_flush_writes_pending(self, slots, monkeypatch):
        """Test flushing before the window closes."""
        storage = LocalStorage(slots, autosave_delay=10)
        writes = count_primary_writes(monkeypatch, storage)
        storage.auto_save({"tasks": [Task(id="1")]})
        storage.auto_save({"currentView": "settings"})
        assert storage.save_pending
        assert storage.flush()
        assert len(writes) == 1
        saved = json.loads(writes[0])
        assert saved["currentView"] == "settings"
        assert saved["tasks"][0]["id"] == "1"

    def test_background_failure_is_recorded(self, storage, monkeypatch):
        """Test that a failed background save ends up on last_error."""
        def broken_set(key, value):
            raise FileOperationError("read-only")

        monkeypatch.setattr(storage.slots, "set", broken_set)
        storage.auto_save({"tasks": []})
        assert wait_for(lambda: storage.last_error is not None)
        assert isinstance(storage.last_error, StorageWriteError)

    def test_import_waits_for_auto_save_in_flight(self, storage, monkeypatch):
        """Test that an import during a slow background write still ends up on disk and in memory."""
        storage.save({"tasks": [Task(id="old")]})
        original = storage.slots.set
        writing = threading.Event()

        def slow_set(key, value):
            if key == storage.storage_key and '"stale"' in value:
                writing.set()
                time.sleep(0.2)
            return original(key, value)

        monkeypatch.setattr(storage.slots, "set", slow_set)
        storage.auto_save({"tasks": [Task(id="stale")]})
        assert writing.wait(2.0)
        storage.import_snapshot(json.dumps({"tasks": [{"id": "fresh", "title": "Fresh"}]}))
        time.sleep(0.1)

        assert [t["id"] for t in json.loads(storage.slots.get("taskManager"))["tasks"]] == ["fresh"]
        assert [t.id for t in storage.current().tasks] == ["fresh"]
        newest = storage.backups.read_backup(storage.list_backups()[0])
        assert [t["id"] for t in newest["tasks"]] == ["fresh"]

    def test_import_drops_auto_save_waiting_to_write(self, storage, monkeypatch):
        """Test that a background save queued before an import never writes."""
        writes = count_primary_writes(monkeypatch, storage)
        with storage._lock:
            storage.auto_save({"tasks": [Task(id="stale")]})
            # the timer fires and blocks on the lock
            time.sleep(0.15)
            storage.import_snapshot(json.dumps({"tasks": [{"id": "fresh"}]}))
        time.sleep(0.15)

        assert len(writes) == 1
        assert [t.id for t in storage.current().tasks] == ["fresh"]
        assert storage.last_error is None

    def test_clear_drops_auto_save_waiting_to_write(self, storage):
        """Test that clearing storage is not undone by a queued background save."""
        storage.save({"tasks": [Task(id="old")]})
        with storage._lock:
            storage.auto_save({"tasks": [Task(id="stale")]})
            time.sleep(0.15)
            storage.clear()
        time.sleep(0.15)

        assert storage.slots.get("taskManager") is None
        assert storage.list_backups() == []


class TestLoad:
    """Test loading and the recovery chain."""

    def test_empty_storage_uses_defaults(self, storage):
        """Test the seeded snapshot when nothing is stored."""
        snapshot = storage.load()
        assert snapshot.user.name == "Lia"
        assert [t.id for t in snapshot.tasks] == ["1", "2", "3", "4", "5"]
        assert [c.id for c in snapshot.categories] == ["all", "urgent", "completed"]

    def test_load_returns_saved_data(self, slots):
        """Test a plain load after save."""
        LocalStorage(slots).save({"tasks": [Task(id="x", title="Saved")]})
        snapshot = LocalStorage(slots).load()
        assert [t.title for t in snapshot.tasks] == ["Saved"]

    def test_corrupt_primary_recovers_latest_backup(self, slots):
        """Test that a broken primary falls back to the newest backup."""
        first = LocalStorage(slots)
        first.save({"tasks": [Task(id="old")]})
        first.save({"tasks": [Task(id="new")]})
        slots.set("taskManager", "{not json")

        snapshot = LocalStorage(slots).load()
        assert [t.id for t in snapshot.tasks] == ["new"]

    def test_non_object_primary_recovers(self, slots):
        """Test that a primary holding a JSON array counts as corrupt."""
        LocalStorage(slots).save({"tasks": [Task(id="kept")]})
        slots.set("taskManager", "[1, 2, 3]")
        assert [t.id for t in LocalStorage(slots).load().tasks] == ["kept"]

    def test_broken_backups_are_skipped(self, slots):
        """Test that recovery moves past unreadable backups."""
        storage = LocalStorage(slots)
        storage.save({"tasks": [Task(id="good")]})
        storage.save({"tasks": [Task(id="bad")]})
        slots.set(storage.list_backups()[0], "garbage")
        slots.set("taskManager", "garbage")
        assert [t.id for t in LocalStorage(slots).load().tasks] == ["good"]

    def test_everything_corrupt_uses_defaults(self, slots):
        """Test the final fallback."""
        storage = LocalStorage(slots)
        storage.save({"tasks": []})
        for key in storage.list_backups():
            slots.set(key, "null")
        slots.set("taskManager", "oops")
        assert len(LocalStorage(slots).load().tasks) == 5

    def test_invalid_tasks_are_dropped(self, slots):
        """Test that malformed task entries do not sink the whole snapshot."""
        slots.set("taskManager", json.dumps({"tasks": [{"id": "1", "title": "ok"}, {"title": "no id"}, "junk"]}))
        snapshot = LocalStorage(slots).load()
        assert [t.id for t in snapshot.tasks] == ["1"]


class TestValidateAndMigrate:
    """Test snapshot normalization."""

    def test_missing_fields_get_defaults(self):
        """Test filling every absent top-level field."""
        snapshot = validate_and_migrate({})
        assert snapshot.tasks == []
        assert [p.id for p in snapshot.properties] == ["status", "priority", "dueDate", "tags"]
        assert snapshot.current_view == ViewMode.LIST
        assert snapshot.current_category == "all"
        assert snapshot.version == APP_SCHEMA_VERSION

    def test_unknown_view_falls_back_to_list(self):
        """Test coercion of an unknown view mode."""
        assert validate_and_migrate({"currentView": "kanban"}).current_view == ViewMode.LIST

    def test_non_object_yields_defaults(self):
        """Test that a non-dictionary becomes the seeded snapshot."""
        assert len(validate_and_migrate("nonsense").tasks) == 5


class AddEffort(Migration):
    VERSION = "1.0.0"

    def upgrade(self, data):
        for task in data["tasks"]:
            task.setdefault("properties", {})["effort"] = "M"
        return data


class Broken(Migration):
    VERSION = "1.0.0"

    def upgrade(self, data):
        raise KeyError("tasks")


class TestMigrations:
    """Test the migration engine."""

    def test_old_snapshot_is_upgraded(self):
        """Test that steps newer than the snapshot run."""
        engine = MigrationEngine([AddEffort()])
        snapshot = validate_and_migrate({"version": "0.9.0", "tasks": [{"id": "1"}]}, engine)
        assert snapshot.tasks[0].properties["effort"] == "M"
        assert snapshot.version == "1.0.0"

    def test_current_snapshot_passes_through(self):
        """Test that an up-to-date snapshot is untouched."""
        engine = MigrationEngine([AddEffort()])
        snapshot = validate_and_migrate({"version": APP_SCHEMA_VERSION, "tasks": [{"id": "1"}]}, engine)
        assert "effort" not in snapshot.tasks[0].properties

    def test_migration_path(self):
        """Test path selection edge cases."""
        engine = MigrationEngine([AddEffort()])
        assert len(engine.get_migration_path("0.1.0")) == 1
        assert engine.get_migration_path("not-a-version") == []
        assert engine.get_migration_path("9.0.0") == []

    def test_register_requires_version(self):
        """Test that a step without VERSION is refused."""
        class Unversioned(Migration):
            def upgrade(self, data):
                return data

        with pytest.raises(ValueError):
            MigrationEngine([Unversioned()])

    def test_failing_step_raises_migration_error(self):
        """Test that step errors are wrapped."""
        with pytest.raises(MigrationError):
            MigrationEngine([Broken()]).migrate({"version": "0.1.0", "tasks": []})

    def test_failed_migration_falls_back_on_load(self, slots):
        """Test that load survives a broken migration."""
        slots.set("taskManager", json.dumps({"version": "0.1.0", "tasks": []}))
        storage = LocalStorage(slots, migrations=[Broken()])
        assert len(storage.load().tasks) == 5


class TestImportExport:
    """Test exporting and importing snapshots."""

    def test_round_trip(self, slots, tmp_path):
        """Test that an export imports into a fresh store unchanged."""
        source = LocalStorage(slots)
        saved = source.save({
            "user": {"name": "Sam", "email": "sam@example.com"},
            "tasks": [
                Task(id="a", title="A", properties={"priority": "High", "tags": ["Work"]}),
                Task(id="b", title="B", parent_id="a", description="Child", completed=True, estimate=3),
            ],
            "categories": [{"id": "work", "name": "Work", "filter": {"propertyId": "tags", "value": "Work"}}],
            "currentView": "calendar",
            "currentCategory": "work",
        })
        text = source.export_snapshot()

        target = LocalStorage(SlotStore(tmp_path / "other"))
        imported = target.import_snapshot(text)
        reloaded = LocalStorage(SlotStore(tmp_path / "other")).load()
        expected = saved.model_dump(exclude={"last_modified"})
        assert imported.model_dump(exclude={"last_modified"}) == expected
        assert reloaded.model_dump(exclude={"last_modified"}) == expected

    @pytest.mark.parametrize("text", ["{broken", "[1, 2]", "42", '{"lastModified": "not a date"}'])
    def test_invalid_import_leaves_data(self, storage, text):
        """Test that rejected imports change nothing."""
        storage.save({"tasks": [Task(id="keep")]})
        before = storage.slots.get("taskManager")
        with pytest.raises(ImportFormatError, match="Invalid data format"):
            storage.import_snapshot(text)
        assert storage.slots.get("taskManager") == before
        assert [t.id for t in storage.current().tasks] == ["keep"]

    @pytest.mark.parametrize("text", [None, 42])
    def test_import_rejects_non_text(self, storage, text):
        """Test that something other than a string is refused as bad data."""
        with pytest.raises(ImportFormatError, match="Invalid data format"):
            storage.import_snapshot(text)

    def test_import_cancels_pending_autosave(self, slots):
        """Test that an import is not overwritten by an older pending save."""
        storage = LocalStorage(slots, autosave_delay=10)
        storage.auto_save({"tasks": [Task(id="stale")]})
        storage.import_snapshot(StorageSnapshot(tasks=[Task(id="fresh")]).to_json())
        assert not storage.flush()
        assert [t.id for t in storage.load().tasks] == ["fresh"]

    def test_export_to_directory_uses_dated_name(self, storage, tmp_path):
        """Test the default export file name."""
        path = storage.export_to_file(tmp_path)
        assert path.name == f"backup-{date.today().isoformat()}.json"
        assert json.loads(path.read_text())["version"] == APP_SCHEMA_VERSION

    def test_export_filename(self):
        """Test building the export name for a given day."""
        assert export_filename(date(2024, 3, 9)) == "backup-2024-03-09.json"

    def test_yaml_export_and_import(self, storage, tmp_path):
        """Test exporting to YAML and reading it back."""
        storage.save({"tasks": [Task(id="y", title="Yaml task")]})
        path = storage.export_to_file(tmp_path / "export.yml")
        assert yaml.safe_load(path.read_text())["tasks"][0]["title"] == "Yaml task"

        storage.save({"tasks": []})
        assert [t.id for t in storage.import_from_file(path).tasks] == ["y"]

    def test_import_from_corrupt_file(self, storage, tmp_path):
        """Test that a corrupt file is reported as a format error."""
        path = tmp_path / "bad.json"
        path.write_text("{nope")
        with pytest.raises(ImportFormatError):
            storage.import_from_file(path)


class TestMaintenance:
    """Test stats, backups restore and clear."""

    def test_stats(self, storage):
        """Test the reported size, backup count and timestamp."""
        snapshot = storage.save({"tasks": [Task(id="1", title="Größe")]})
        stats = storage.stats()
        assert stats.size == len(snapshot.to_json().encode("utf-8"))
        assert stats.backup_count == 1
        assert stats.last_modified == snapshot.last_modified

    def test_restore_backup(self, storage):
        """Test bringing back an older backup."""
        storage.save({"tasks": [Task(id="first")]})
        oldest = storage.list_backups()[0]
        storage.save({"tasks": [Task(id="second")]})
        restored = storage.restore_backup(oldest)
        assert [t.id for t in restored.tasks] == ["first"]
        assert [t.id for t in storage.load().tasks] == ["first"]

    def test_restore_rejects_foreign_key(self, storage):
        """Test that only backup keys can be restored."""
        storage.save({"tasks": []})
        with pytest.raises(ValueError):
            storage.restore_backup("taskManager")

    def test_clear(self, storage):
        """Test wiping primary and backups."""
        storage.save({"tasks": [Task(id="1")]})
        storage.save({"tasks": [Task(id="2")]})
        storage.clear()
        assert storage.slots.get("taskManager") is None
        assert storage.list_backups() == []
        assert len(storage.load().tasks) == 5
