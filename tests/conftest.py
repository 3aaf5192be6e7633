"""Shared fixtures for the TaskNest test suite."""

import os
import tempfile

# Settings and logging are read at import time; keep them out of the real home directory.
os.environ.setdefault("TASKNEST_DATA_DIR", tempfile.mkdtemp(prefix="tasknest-tests-"))

import pytest

from tasknest.data import LocalStorage, SlotStore
from tasknest.models import Task
from tasknest.data.defaults import default_categories, default_properties
from tasknest.store import TaskStore


@pytest.fixture()
def slots(tmp_path):
    return SlotStore(tmp_path / "slots")


@pytest.fixture()
def storage(slots):
    """LocalStorage with a short debounce window so timer tests stay fast."""
    return LocalStorage(slots, autosave_delay=0.05)


@pytest.fixture()
def store():
    """Empty task list with the default property schema and categories."""
    return TaskStore([], default_properties(), default_categories())


@pytest.fixture()
def make_task():
    def _make(task_id, title=None, parent_id=None, **properties):
        return Task(id=task_id, title=title or task_id, parent_id=parent_id, properties=properties)
    return _make


class FakeRemote:
    """In-memory RemoteStore that records every call."""

    def __init__(self):
        self.calls = []

    def save_task(self, task):
        self.calls.append(("save_task", task.id))

    def delete_task(self, task_id):
        self.calls.append(("delete_task", task_id))

    def save_category(self, category):
        self.calls.append(("save_category", category.id))

    def delete_category(self, category_id):
        self.calls.append(("delete_category", category_id))

    def get_tasks(self):
        return []

    def get_categories(self):
        return []


class FailingRemote(FakeRemote):
    """RemoteStore whose every write fails like an unreachable server."""

    def save_task(self, task):
        super().save_task(task)
        raise ConnectionError("server unreachable")

    def delete_task(self, task_id):
        super().delete_task(task_id)
        raise ConnectionError("server unreachable")


@pytest.fixture()
def fake_remote():
    return FakeRemote()


@pytest.fixture()
def failing_remote():
    return FailingRemote()
