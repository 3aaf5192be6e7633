"""
LocalStorage - snapshot persistence for TaskNest.

This module provides the main interface for saving and loading the full
application snapshot: debounced auto-save, rolling backups, recovery from
corrupt data, export/import and storage statistics.
"""
import json
import threading
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

from .backup import BackupManager
from .debounce import Debouncer
from .defaults import default_snapshot
from .io import DATA_YAML, atomic_write, atomic_write_text, data_type_for, load_structured_file
from .migrate import MigrationEngine
from .slots import SlotStore
from .validate import find_property_problems, validate_and_migrate
from tasknest.config import Settings, get_settings
from tasknest.migration import Migration
from tasknest.models import StorageSnapshot, StorageStats, utcnow
from tasknest.recovery import CorruptionError, FileOperationError, ImportFormatError, StorageWriteError, TaskNestError
from tasknest.version import APP_SCHEMA_VERSION
from tasknest.logs import get_logger

log = get_logger("data")

SnapshotPartial = Union[Mapping[str, Any], StorageSnapshot]

# camelCase wire name -> field name
_FIELD_NAMES = {
    (field.alias or name): name for name, field in StorageSnapshot.model_fields.items()
}

def _normalize_partial(partial: Optional[SnapshotPartial]) -> Dict[str, Any]:
    if partial is None:
        return {}
    if isinstance(partial, StorageSnapshot):
        return {name: getattr(partial, name) for name in StorageSnapshot.model_fields}
    normalized = {}
    for key, value in partial.items():
        name = _FIELD_NAMES.get(key, key)
        if name not in StorageSnapshot.model_fields:
            raise KeyError(f"Unknown snapshot field: {key}")
        normalized[name] = value
    return normalized

# pending auto-save partials carry the save generation they were queued under
_GENERATION_KEY = "__generation__"

def export_filename(day: Optional[date] = None) -> str:
    return f"backup-{(day or date.today()).isoformat()}.json"

class LocalStorage:
    """Persists StorageSnapshots in a slot store under one primary key plus rolling backups."""

    def __init__(self, slots: SlotStore, storage_key: str = "taskManager", autosave_delay: float = 1.0,
                 backup_count: int = 5, migrations: Optional[List[Migration]] = None):
        self.slots = slots
        self.storage_key = storage_key
        self.backups = BackupManager(slots, storage_key, backup_count)
        self.engine = MigrationEngine(migrations)
        self.last_error: Optional[Exception] = None
        self.last_saved = None
        self._current: Optional[StorageSnapshot] = None
        # Serializes every read-modify-write of the slots; the debounce timer saves from its own thread.
        self._lock = threading.RLock()
        # Bumped by cancel, import, restore and clear; auto-saves queued under an older value are dropped.
        self._generation = 0
        self._debouncer = Debouncer(autosave_delay, self._write_autosave, on_error=self._autosave_failed)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "LocalStorage":
        settings = settings or get_settings()
        return cls(
            SlotStore(settings.slots_dir),
            storage_key=settings.storage_key,
            autosave_delay=settings.autosave_delay,
            backup_count=settings.backup_count,
        )

    # ---- load ----

    def _parse(self, raw: Any, source: str) -> StorageSnapshot:
        if not isinstance(raw, dict):
            raise CorruptionError(f"{source} does not hold a snapshot object")
        try:
            return self.validate_and_migrate(raw)
        except ValueError as e:
            raise CorruptionError(f"{source} failed validation: {e}") from e

    def _read_primary(self) -> Optional[StorageSnapshot]:
        text = self.slots.get(self.storage_key)
        if text is None:
            return None
        try:
            raw = json.loads(text)
        except json.JSONDecodeError as e:
            raise CorruptionError(f"Primary slot {self.storage_key} is not valid JSON: {e}") from e
        return self._parse(raw, f"Primary slot {self.storage_key}")

    def _recover_from_backup(self) -> Optional[StorageSnapshot]:
        for backup_key in self.backups.list_backups():
            try:
                snapshot = self._parse(self.backups.read_backup(backup_key), f"Backup {backup_key}")
            except (TaskNestError, ValueError, FileNotFoundError) as e:
                log.warning(f"Failed to recover from backup {backup_key}: {e}")
                continue
            log.info(f"Recovered data from backup {backup_key}")
            return snapshot
        return None

    def load(self) -> StorageSnapshot:
        """
        Load the stored snapshot.

        Falls back to the newest backup that parses when the primary slot is
        missing or corrupt, and to the seeded default snapshot when nothing
        usable is stored. Never raises.
        """
        with self._lock:
            return self._load()

    def _load(self) -> StorageSnapshot:
        snapshot = None
        try:
            snapshot = self._read_primary()
        except (TaskNestError, ValueError) as e:
            log.error(f"Failed to load data: {e}")

        if snapshot is None:
            try:
                snapshot = self._recover_from_backup()
            except FileOperationError as e:
                log.error(f"Failed to recover from any backup: {e}")

        if snapshot is None:
            log.info("Using default data")
            snapshot = default_snapshot()

        problems = find_property_problems(snapshot)
        if problems:
            log.info(f"{len(problems)} task(s) have property values outside the property schema")
            for task_id, task_problems in problems.items():
                log.debug(f"Task {task_id}: {'; '.join(task_problems)}")

        self._current = snapshot
        return snapshot

    def current(self) -> StorageSnapshot:
        """The last loaded or saved snapshot, loading it on first use."""
        with self._lock:
            if self._current is None:
                return self._load()
            return self._current

    def validate_and_migrate(self, raw: Any) -> StorageSnapshot:
        return validate_and_migrate(raw, self.engine)

    # ---- save ----

    def save(self, partial: Optional[SnapshotPartial] = None) -> StorageSnapshot:
        """
        Merge partial onto the current snapshot and persist it.

        Writes the primary slot, then a timestamped backup, then prunes old
        backups. Raises StorageWriteError when a write fails; the in-memory
        snapshot only advances after the primary write succeeded.
        """
        with self._lock:
            base = self.current()
            merged = {name: getattr(base, name) for name in StorageSnapshot.model_fields}
            merged.update(_normalize_partial(partial))
            merged.update(version=APP_SCHEMA_VERSION, last_modified=utcnow())
            snapshot = StorageSnapshot.model_validate(merged)

            try:
                self.slots.set(self.storage_key, snapshot.to_json())
            except FileOperationError as e:
                log.error(f"Failed to save data: {e}")
                raise StorageWriteError(f"Failed to save data to local storage: {e}") from e

            self._current = snapshot
            self.last_saved = snapshot.last_modified
            self.backups.create_backup(snapshot)
            log.debug(f"Data saved successfully ({len(snapshot.tasks)} tasks)")
            return snapshot

    def auto_save(self, partial: SnapshotPartial):
        """Debounced save; calls inside the quiet window collapse into one write."""
        with self._lock:
            generation = self._generation
        self._debouncer.call({**_normalize_partial(partial), _GENERATION_KEY: generation})

    def _write_autosave(self, pending: Dict[str, Any]) -> Optional[StorageSnapshot]:
        partial = dict(pending)
        generation = partial.pop(_GENERATION_KEY, None)
        with self._lock:
            if generation != self._generation:
                log.info("Dropped an auto-save superseded by an import, restore or clear")
                return None
            return self.save(partial)

    def _invalidate_pending(self) -> bool:
        # caller holds the lock
        self._generation += 1
        return self._debouncer.cancel()

    def replace(self, snapshot: SnapshotPartial) -> StorageSnapshot:
        """Save snapshot, superseding any auto-save that is pending or in flight."""
        with self._lock:
            self._invalidate_pending()
            return self.save(snapshot)

    def _autosave_failed(self, error: Exception):
        self.last_error = error
        log.error(f"Auto-save failed: {error}")

    @property
    def save_pending(self) -> bool:
        return self._debouncer.pending

    def flush(self) -> bool:
        """Write a pending auto-save now. Returns False when nothing was pending."""
        return self._debouncer.flush()

    def cancel_pending(self) -> bool:
        """Drop the pending auto-save, along with any that is already being written."""
        with self._lock:
            return self._invalidate_pending()

    # ---- export / import ----

    def export_snapshot(self) -> str:
        return self.current().to_json(indent=2)

    def _import_raw(self, raw: Any) -> StorageSnapshot:
        if not isinstance(raw, dict):
            raise ImportFormatError("Invalid data format")
        try:
            snapshot = self.validate_and_migrate(raw)
        except (TaskNestError, ValueError) as e:
            log.error(f"Failed to import data: {e}")
            raise ImportFormatError("Invalid data format") from e

        return self.replace(snapshot)

    def import_snapshot(self, text: str) -> StorageSnapshot:
        """Validate exported text and persist it as the current snapshot."""
        try:
            raw = json.loads(text)
        except (TypeError, json.JSONDecodeError) as e:
            log.error(f"Failed to import data: {e}")
            raise ImportFormatError("Invalid data format") from e
        return self._import_raw(raw)

    def export_to_file(self, path: Optional[Union[Path, str]] = None) -> Path:
        """Write the snapshot to path (default backup-<date>.json in the working directory)."""
        path = Path(path) if path is not None else Path.cwd() / export_filename()
        if path.is_dir():
            path = path / export_filename()
        if data_type_for(path) == DATA_YAML:
            atomic_write(DATA_YAML, path, self.current().to_dict(), create_dirs=True)
        else:
            atomic_write_text(path, self.export_snapshot(), create_dirs=True)
        log.info(f"Exported snapshot to {path}")
        return path

    def import_from_file(self, path: Union[Path, str]) -> StorageSnapshot:
        try:
            raw = load_structured_file(path)
        except CorruptionError as e:
            log.error(f"Failed to import data: {e}")
            raise ImportFormatError("Invalid data format") from e
        if raw is None:
            raise FileNotFoundError(f"Import file {path} not found")
        return self._import_raw(raw)

    # ---- backups, maintenance ----

    def list_backups(self) -> List[str]:
        return self.backups.list_backups()

    def restore_backup(self, backup_key: str) -> StorageSnapshot:
        """Make a backup the current snapshot again."""
        with self._lock:
            snapshot = self._parse(self.backups.read_backup(backup_key), f"Backup {backup_key}")
            return self.replace(snapshot)

    def clear(self):
        """Delete the primary slot and every backup."""
        with self._lock:
            self._invalidate_pending()
            self.slots.remove(self.storage_key)
            removed = self.backups.clear_backups()
            self._current = None
            self.last_saved = None
        log.info(f"Cleared stored data and {removed} backup(s)")

    def stats(self) -> StorageStats:
        snapshot = self.current()
        return StorageStats(
            size=len(snapshot.to_json().encode("utf-8")),
            backup_count=self.backups.count(),
            last_modified=snapshot.last_modified,
        )
