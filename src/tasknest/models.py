from pydantic import BaseModel, ConfigDict, Field, field_validator
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
import json

from jsonschema import Draft202012Validator

from .version import APP_SCHEMA_VERSION

DATE_PATTERN = r'^\d{4}-\d{2}-\d{2}$'

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

class PropertyType(Enum):
    SELECT = "select"
    MULTISELECT = "multiselect"
    DATE = "date"
    TEXT = "text"
    NUMBER = "number"

class PropertyKind(Enum):
    """Shape of a value found in a task's property bag."""
    TEXT = "text"
    STRING_ARRAY = "string_array"
    SCALAR = "scalar"
    ABSENT = "absent"

class ViewMode(Enum):
    LIST = "list"
    CALENDAR = "calendar"
    SETTINGS = "settings"
    HELP = "help"

def property_kind(value: Any) -> PropertyKind:
    """Tag a raw property value with its kind. Lists of anything count as string arrays."""
    if value is None:
        return PropertyKind.ABSENT
    if isinstance(value, str):
        return PropertyKind.TEXT
    if isinstance(value, (list, tuple)):
        return PropertyKind.STRING_ARRAY
    return PropertyKind.SCALAR

class BaseJSONModel(BaseModel):
    """Shared serialization helpers. Wire names are the camelCase aliases."""

    model_config = ConfigDict(populate_by_name=True)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")

    def to_json(self, indent: Optional[int] = None) -> str:
        return json.dumps(self.to_dict(), indent=indent, ensure_ascii=False)

    @classmethod
    def from_json(cls, text: str):
        return cls.model_validate_json(text)

class TaskProperty(BaseJSONModel):
    """Schema descriptor for one kind of task property."""

    id: str = Field(description="Property key used in task property bags")
    name: str = Field(description="Display name")
    type: PropertyType = Field(description="Kind of value the property holds")
    options: Optional[List[str]] = Field(default=None, description="Enumerated options for select kinds")

    def json_schema(self) -> Dict[str, Any]:
        """JSON Schema fragment describing values of this property."""
        if self.type == PropertyType.SELECT:
            schema: Dict[str, Any] = {"type": "string"}
            if self.options:
                schema["enum"] = list(self.options)
            return schema
        if self.type == PropertyType.MULTISELECT:
            # tag options are suggestions only; any string is accepted
            return {"type": "array", "items": {"type": "string"}}
        if self.type == PropertyType.DATE:
            return {"type": "string", "pattern": DATE_PATTERN}
        if self.type == PropertyType.NUMBER:
            return {"type": "number"}
        return {"type": "string"}

class Task(BaseJSONModel):
    """A single outline item. Order lives in the task sequence, not here."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str = Field(description="Unique, opaque identifier")
    title: str = Field(default="", description="Single-line title")
    description: Optional[str] = Field(default=None, description="Optional longer text")
    parent_id: Optional[str] = Field(default=None, alias="parentId", description="Parent task id, root when absent")
    properties: Dict[str, Any] = Field(default_factory=dict, description="Property bag keyed by property id")
    completed: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")
    updated_at: datetime = Field(default_factory=utcnow, alias="updatedAt")

    @field_validator('parent_id', mode='before')
    @classmethod
    def empty_parent_is_root(cls, v):
        if v == "":
            return None
        return v

    @field_validator('properties', mode='before')
    @classmethod
    def coerce_properties(cls, v):
        if v is None or not isinstance(v, dict):
            return {}
        return v

    def kind_of(self, key: str) -> PropertyKind:
        return property_kind(self.properties.get(key))

    @property
    def tags(self) -> List[str]:
        value = self.properties.get("tags")
        if property_kind(value) != PropertyKind.STRING_ARRAY:
            return []
        return [str(tag) for tag in value]

    @property
    def due_date(self) -> Optional[str]:
        value = self.properties.get("dueDate")
        return value if isinstance(value, str) and value else None

class CategoryFilter(BaseJSONModel):
    property_id: Optional[str] = Field(default=None, alias="propertyId")
    value: Any = Field(default=None)

    def matches(self, task: Task) -> bool:
        """Equality on scalar values, containment on list values."""
        if not self.property_id:
            return True
        task_value = task.properties.get(self.property_id)
        if property_kind(task_value) == PropertyKind.STRING_ARRAY:
            return self.value in task_value
        return task_value == self.value

class Category(BaseJSONModel):
    id: str = Field(description="Unique identifier; 'all', 'urgent' and 'completed' are reserved")
    name: str = Field(description="Display name")
    icon: Optional[str] = Field(default=None, description="Icon tag for the sidebar")
    filter: CategoryFilter = Field(default_factory=CategoryFilter)

class UserProfile(BaseJSONModel):
    name: str = Field(default="User")
    email: str = Field(default="user@example.com")

class StorageSnapshot(BaseJSONModel):
    """Complete persisted application state; the unit of save, load, backup, export and import."""

    user: UserProfile = Field(default_factory=UserProfile)
    tasks: List[Task] = Field(default_factory=list)
    properties: List[TaskProperty] = Field(default_factory=list)
    categories: List[Category] = Field(default_factory=list)
    current_view: ViewMode = Field(default=ViewMode.LIST, alias="currentView")
    current_category: Optional[str] = Field(default="all", alias="currentCategory")
    version: str = Field(default=APP_SCHEMA_VERSION)
    last_modified: datetime = Field(default_factory=utcnow, alias="lastModified")

class StorageStats(BaseJSONModel):
    size: int = Field(description="Serialized snapshot size in bytes")
    backup_count: int = Field(alias="backupCount")
    last_modified: datetime = Field(alias="lastModified")

class TaskNode(BaseModel):
    """Tree view node built on demand over the flat task sequence."""

    task: Task
    children: List['TaskNode'] = Field(default_factory=list)

    @property
    def id(self) -> str:
        return self.task.id

    def walk(self, level: int = 0):
        """Yield (task, level) for this node and its subtree in document order."""
        yield self.task, level
        for child in self.children:
            yield from child.walk(level + 1)

TaskNode.model_rebuild()

def validate_task_properties(task: Task, schema: List[TaskProperty]) -> List[str]:
    """
    Check a task's property bag against the property schema.

    Values are never rejected; problems are returned as readable strings.
    Keys missing from the schema and absent values are not checked.
    """
    problems = []
    for prop in schema:
        value = task.properties.get(prop.id)
        if property_kind(value) == PropertyKind.ABSENT:
            continue
        validator = Draft202012Validator(prop.json_schema())
        for error in validator.iter_errors(value):
            problems.append(f"{prop.id}: {error.message}")
    return problems
