from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel, ValidationError

from .defaults import default_categories, default_properties, default_snapshot
from .migrate import MigrationEngine
from tasknest.models import Category, StorageSnapshot, Task, TaskProperty, UserProfile, ViewMode, utcnow, validate_task_properties
from tasknest.version import APP_SCHEMA_VERSION
from tasknest.logs import get_logger

log = get_logger("data.validate")

VIEW_MODES = {mode.value for mode in ViewMode}

def _valid_items(items: List[Any], model: Type[BaseModel], label: str) -> List[BaseModel]:
    """Validate list entries one by one, dropping the ones that don't fit the model."""
    valid = []
    for index, item in enumerate(items):
        try:
            valid.append(model.model_validate(item))
        except ValidationError as e:
            log.warning(f"Dropping invalid {label} #{index}: {e.error_count()} error(s)")
    return valid

def validate_and_migrate(raw: Any, engine: Optional[MigrationEngine] = None) -> StorageSnapshot:
    """
    Normalize a raw snapshot dictionary into a StorageSnapshot.

    Every missing top-level field gets its default; non-list tasks become an
    empty list and non-list properties/categories fall back to the default
    schema. Registered migrations run before the entries are validated.
    Anything that is not a dictionary yields the seeded default snapshot.
    """
    if not isinstance(raw, dict):
        log.warning("Snapshot is not an object, using default data")
        return default_snapshot()

    user = raw.get("user")
    current_view = raw.get("currentView")
    data: Dict[str, Any] = {
        "user": user if isinstance(user, dict) else UserProfile().to_dict(),
        "tasks": raw["tasks"] if isinstance(raw.get("tasks"), list) else [],
        "properties": raw["properties"] if isinstance(raw.get("properties"), list) else [p.to_dict() for p in default_properties()],
        "categories": raw["categories"] if isinstance(raw.get("categories"), list) else [c.to_dict() for c in default_categories()],
        "currentView": current_view if current_view in VIEW_MODES else ViewMode.LIST.value,
        "currentCategory": raw.get("currentCategory") or "all",
        "version": raw.get("version") or APP_SCHEMA_VERSION,
        "lastModified": raw.get("lastModified") or utcnow().isoformat(),
    }

    data = (engine or MigrationEngine()).migrate(data)

    return StorageSnapshot(
        user=UserProfile.model_validate(data["user"]),
        tasks=_valid_items(data["tasks"], Task, "task"),
        properties=_valid_items(data["properties"], TaskProperty, "property"),
        categories=_valid_items(data["categories"], Category, "category"),
        current_view=data["currentView"],
        current_category=data["currentCategory"],
        version=data["version"],
        last_modified=data["lastModified"],
    )

def find_property_problems(snapshot: StorageSnapshot) -> Dict[str, List[str]]:
    """Soft check of every task's property bag against the snapshot's property schema."""
    problems = {}
    for task in snapshot.tasks:
        task_problems = validate_task_properties(task, snapshot.properties)
        if task_problems:
            problems[task.id] = task_problems
    return problems
