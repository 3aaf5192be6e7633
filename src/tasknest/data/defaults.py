"""Seed data used when nothing usable is stored."""
from datetime import datetime, timezone
from typing import List

from tasknest.models import Category, StorageSnapshot, Task, TaskProperty, UserProfile


def _day(year: int, month: int, day: int) -> datetime:
    return datetime(year, month, day, tzinfo=timezone.utc)


def default_properties() -> List[TaskProperty]:
    return [
        TaskProperty(id="status", name="Status", type="select", options=["Not Started", "Completed", "On Hold"]),
        TaskProperty(id="priority", name="Priority", type="select", options=["Low", "Medium", "High", "Urgent"]),
        TaskProperty(id="dueDate", name="Due Date", type="date"),
        TaskProperty(id="tags", name="Tags", type="multiselect",
                     options=["Work", "Personal", "Project", "Meeting", "Research"]),
    ]


def default_categories() -> List[Category]:
    return [
        Category(id="all", name="All Tasks"),
        Category(id="urgent", name="Urgent", filter={"propertyId": "priority", "value": "Urgent"}),
        Category(id="completed", name="Completed", filter={"propertyId": "status", "value": "Completed"}),
    ]


def example_tasks() -> List[Task]:
    return [
        Task(id="1", title="Project Planning",
             description="Plan the new project structure and timeline",
             properties={"status": "Not Started", "priority": "High", "tags": ["Work", "Project"]},
             created_at=_day(2024, 1, 15), updated_at=_day(2024, 1, 15)),
        Task(id="2", title="Research competitors",
             description="Analyze competitor features and pricing", parent_id="1",
             properties={"status": "Completed", "priority": "Medium", "tags": ["Research"]},
             completed=True, created_at=_day(2024, 1, 16), updated_at=_day(2024, 1, 18)),
        Task(id="3", title="Create wireframes", parent_id="1",
             properties={"status": "Not Started", "priority": "High", "dueDate": "2024-02-01"},
             created_at=_day(2024, 1, 16), updated_at=_day(2024, 1, 16)),
        Task(id="4", title="Team Meeting",
             description="Weekly sync with the development team",
             properties={"status": "Not Started", "priority": "Medium", "tags": ["Meeting", "Work"],
                         "dueDate": "2024-01-25"},
             created_at=_day(2024, 1, 20), updated_at=_day(2024, 1, 20)),
        Task(id="5", title="Personal workout plan",
             description="Create a new fitness routine for the month",
             properties={"status": "Not Started", "priority": "Low", "tags": ["Personal"]},
             created_at=_day(2024, 1, 22), updated_at=_day(2024, 1, 22)),
    ]


def default_snapshot() -> StorageSnapshot:
    return StorageSnapshot(
        user=UserProfile(name="Lia", email="lia@example.com"),
        tasks=example_tasks(),
        properties=default_properties(),
        categories=default_categories(),
    )
