"""
TaskContext - the application's composition root.

Ties the in-memory TaskStore to LocalStorage and the optional remote mirror.
Every mutation goes through here so it is auto-saved and mirrored.
"""
from typing import Any, List, Mapping, Optional, Set, Union

from .config import Settings, get_settings
from .data import LocalStorage
from .models import Category, StorageSnapshot, StorageStats, Task, TaskNode, TaskProperty, UserProfile, ViewMode
from .store import ALL_CATEGORY, OutlineRow, TaskStore
from .sync import HttpRemoteStore, RemoteSync
from .logs import get_logger

log = get_logger("context")


class TaskContext:
    """Loaded application state plus every operation that changes it."""

    def __init__(self, storage: LocalStorage, remote: Optional[RemoteSync] = None):
        self.storage = storage
        self.remote = remote
        self._apply(storage.load())

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "TaskContext":
        settings = settings or get_settings()
        remote = RemoteSync(HttpRemoteStore(settings.remote_url)) if settings.remote_url else None
        return cls(LocalStorage.from_settings(settings), remote)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Write any pending auto-save and let the mirror finish."""
        self.close()

    def _apply(self, snapshot: StorageSnapshot):
        self.store = TaskStore(snapshot.tasks, snapshot.properties, snapshot.categories)
        self.user = snapshot.user
        self.current_view = snapshot.current_view
        self.current_category = snapshot.current_category

    def _persist(self, *fields: str):
        values = {
            "tasks": lambda: list(self.store.tasks),
            "properties": lambda: list(self.store.properties),
            "categories": lambda: list(self.store.categories),
            "user": lambda: self.user,
            "current_view": lambda: self.current_view,
            "current_category": lambda: self.current_category,
        }
        self.storage.auto_save({name: values[name]() for name in fields})

    def _mirror_tasks(self, tasks: List[Task]):
        if self.remote is not None:
            for task in tasks:
                self.remote.save_task(task)

    # ---- reads ----

    @property
    def tasks(self) -> List[Task]:
        return list(self.store.tasks)

    @property
    def properties(self) -> List[TaskProperty]:
        return list(self.store.properties)

    @property
    def categories(self) -> List[Category]:
        return list(self.store.categories)

    def get_task(self, task_id: str) -> Optional[Task]:
        return self.store.get(task_id)

    def tree(self, category_id: Optional[str] = None) -> List[TaskNode]:
        return self.store.get_task_tree(self.store.category_predicate(category_id or self.current_category))

    def rows(self, search: str = "", sort_by: str = "createdAt", descending: bool = False,
             category_id: Optional[str] = None) -> List[OutlineRow]:
        """Outline rows for the selected category, optionally searched and sorted."""
        predicate = self.store.category_predicate(category_id or self.current_category)
        return self.store.sort_rows(self.store.search(search, predicate), sort_by, descending)

    # ---- tasks ----

    def add_task(self, data: Union[Mapping[str, Any], Task, None] = None, after_id: Optional[str] = None) -> Task:
        """
        Create a task, appended or placed after after_id's subtree.

        Tasks created while a filtering category is selected pick up the
        properties that make them show up in it.
        """
        fields = dict(data or {}) if not isinstance(data, Task) else data.model_dump()
        defaults = self.store.default_properties_for(self.current_category)
        if defaults:
            fields["properties"] = {**defaults, **(fields.get("properties") or {})}

        if after_id is None:
            task = self.store.add_task(fields)
        else:
            task = self.store.add_task_after(fields, after_id)
        self._persist("tasks")
        self._mirror_tasks([task])
        return task

    def update_task(self, task_id: str, **changes) -> Optional[Task]:
        task = self.store.update_task(task_id, **changes)
        if task is not None:
            self._persist("tasks")
            self._mirror_tasks([task])
        return task

    def toggle_completed(self, task_id: str) -> Optional[Task]:
        """Flip the completed flag and keep the status property in step."""
        task = self.store.get(task_id)
        if task is None:
            return None
        completed = not task.completed
        properties = dict(task.properties)
        properties["status"] = "Completed" if completed else "Not Started"
        return self.update_task(task_id, completed=completed, properties=properties)

    def delete_task(self, task_id: str) -> Set[str]:
        removed = self.store.delete_task(task_id)
        if removed:
            self._persist("tasks")
            if self.remote is not None:
                for removed_id in removed:
                    self.remote.delete_task(removed_id)
        return removed

    def indent(self, task_id: str) -> bool:
        moved = self.store.indent(task_id, self.store.category_predicate(self.current_category))
        if moved:
            self._persist("tasks")
            self._mirror_tasks([self.store.get(task_id)])
        return moved

    def unindent(self, task_id: str) -> bool:
        moved = self.store.unindent(task_id, self.store.category_predicate(self.current_category))
        if moved:
            self._persist("tasks")
            self._mirror_tasks([self.store.get(task_id)])
        return moved

    # ---- properties and tags ----

    def add_property(self, data: Union[Mapping[str, Any], TaskProperty]) -> TaskProperty:
        prop = self.store.add_property(data)
        self._persist("properties")
        return prop

    def update_property(self, property_id: str, **changes) -> Optional[TaskProperty]:
        prop = self.store.update_property(property_id, **changes)
        if prop is not None:
            self._persist("properties")
        return prop

    def get_all_tags(self) -> List[str]:
        return self.store.get_all_tags()

    def delete_tag_option(self, tag: str) -> List[Task]:
        touched = self.store.delete_tag_option(tag)
        self._persist("tasks", "properties")
        self._mirror_tasks(touched)
        return touched

    # ---- categories ----

    def add_category(self, data: Union[Mapping[str, Any], Category]) -> Category:
        category = self.store.add_category(data)
        self._persist("categories")
        if self.remote is not None:
            self.remote.save_category(category)
        return category

    def update_category(self, category_id: str, **changes) -> Optional[Category]:
        category = self.store.update_category(category_id, **changes)
        if category is not None:
            self._persist("categories")
            if self.remote is not None:
                self.remote.save_category(category)
        return category

    def delete_category(self, category_id: str) -> bool:
        if not self.store.delete_category(category_id):
            return False
        fields = ["categories"]
        if self.current_category == category_id:
            self.current_category = ALL_CATEGORY
            fields.append("current_category")
        self._persist(*fields)
        if self.remote is not None:
            self.remote.delete_category(category_id)
        return True

    # ---- user and view state ----

    def update_user(self, **changes) -> UserProfile:
        self.user = UserProfile.model_validate({**self.user.model_dump(), **changes})
        self._persist("user")
        return self.user

    def set_current_view(self, view: Union[ViewMode, str]):
        self.current_view = ViewMode(view)
        self._persist("current_view")

    def set_current_category(self, category_id: str):
        self.current_category = category_id
        self._persist("current_category")

    # ---- persistence ----

    def snapshot(self) -> StorageSnapshot:
        """In-memory state as a snapshot, whether or not it has been written yet."""
        return StorageSnapshot(
            user=self.user,
            tasks=list(self.store.tasks),
            properties=list(self.store.properties),
            categories=list(self.store.categories),
            current_view=self.current_view,
            current_category=self.current_category,
        )

    def save(self) -> StorageSnapshot:
        """Write the full in-memory state now, dropping any pending auto-save."""
        return self.storage.replace(self.snapshot())

    def export_data(self) -> str:
        self.storage.flush()
        return self.storage.export_snapshot()

    def import_data(self, text: str) -> StorageSnapshot:
        """Replace all state with exported text. Invalid text leaves everything as it was."""
        snapshot = self.storage.import_snapshot(text)
        self._apply(snapshot)
        return snapshot

    def import_file(self, path) -> StorageSnapshot:
        snapshot = self.storage.import_from_file(path)
        self._apply(snapshot)
        return snapshot

    def export_file(self, path=None):
        self.storage.flush()
        return self.storage.export_to_file(path)

    def restore_backup(self, backup_key: str) -> StorageSnapshot:
        snapshot = self.storage.restore_backup(backup_key)
        self._apply(snapshot)
        return snapshot

    def clear(self) -> StorageSnapshot:
        """Wipe stored data and start over from the seeded defaults."""
        self.storage.clear()
        self._apply(self.storage.load())
        return self.snapshot()

    def stats(self) -> StorageStats:
        self.storage.flush()
        return self.storage.stats()

    def flush(self) -> bool:
        return self.storage.flush()

    def close(self):
        self.storage.flush()
        if self.remote is not None:
            self.remote.wait()
            self.remote.shutdown()
        log.debug("Context closed")
