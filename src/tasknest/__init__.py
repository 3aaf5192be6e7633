"""
TaskNest - a personal outliner for nested tasks.

This package keeps an ordered list of tasks whose parent links form a tree:
- TaskStore: insertion, subtree deletion, indent/unindent and tree views
- LocalStorage: debounced saves, rolling backups, recovery and import/export
- TaskContext: wires both together with an optional remote mirror
"""

from .version import VERSION, APP_SCHEMA_VERSION
from .models import (
    Task,
    TaskProperty,
    PropertyType,
    Category,
    CategoryFilter,
    UserProfile,
    StorageSnapshot,
    TaskNode,
    ViewMode,
)
from .store import TaskStore
from .data import LocalStorage
from .context import TaskContext

__version__ = VERSION

__all__ = [
    "VERSION",
    "APP_SCHEMA_VERSION",
    "Task",
    "TaskProperty",
    "PropertyType",
    "Category",
    "CategoryFilter",
    "UserProfile",
    "StorageSnapshot",
    "TaskNode",
    "ViewMode",
    "TaskStore",
    "LocalStorage",
    "TaskContext",
]
