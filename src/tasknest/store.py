"""
TaskStore - ordered task sequence with tree views derived on demand.

Tasks live in one flat list whose order is document order. Hierarchy is only
the parent_id links; the tree is rebuilt from the list whenever it is needed.
"""
import calendar
import time
from datetime import date
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Set, Tuple, Union

from .models import Category, Task, TaskNode, TaskProperty, utcnow
from .recovery import CycleError
from .logs import get_logger

log = get_logger("store")

TaskPredicate = Callable[[Task], bool]
OutlineRow = Tuple[Task, int]

ALL_CATEGORY = "all"
URGENT_CATEGORY = "urgent"
COMPLETED_CATEGORY = "completed"
RESERVED_CATEGORIES = (ALL_CATEGORY, URGENT_CATEGORY, COMPLETED_CATEGORY)

PRIORITY_ORDER = {"Urgent": 4, "High": 3, "Medium": 2, "Low": 1}
SORT_KEYS = ("title", "createdAt", "priority", "status")

# Fields callers may not overwrite through update_*
_IMMUTABLE_FIELDS = {"id", "created_at", "createdAt"}


def new_id(existing: Iterable[str]) -> str:
    """Timestamp-derived id (milliseconds), bumped until unused."""
    taken = set(existing)
    stamp = int(time.time() * 1000)
    while str(stamp) in taken:
        stamp += 1
    return str(stamp)


def _as_dict(data: Union[Mapping[str, Any], Any]) -> Dict[str, Any]:
    if data is None:
        return {}
    if hasattr(data, "model_dump"):
        return data.model_dump()
    return dict(data)


def _normalize_changes(changes: Mapping[str, Any]) -> Dict[str, Any]:
    """Map camelCase wire names onto field names so updates merge cleanly."""
    aliases = {"parentId": "parent_id", "createdAt": "created_at", "updatedAt": "updated_at"}
    return {aliases.get(key, key): value for key, value in changes.items()}


class TaskStore:
    """Holds tasks, the property schema and categories for one user."""

    def __init__(self, tasks: Optional[List[Task]] = None,
                 properties: Optional[List[TaskProperty]] = None,
                 categories: Optional[List[Category]] = None):
        self.tasks: List[Task] = list(tasks or [])
        self.properties: List[TaskProperty] = list(properties or [])
        self.categories: List[Category] = list(categories or [])

    def __len__(self) -> int:
        return len(self.tasks)

    def __iter__(self) -> Iterator[Task]:
        return iter(self.tasks)

    def ids(self) -> List[str]:
        return [task.id for task in self.tasks]

    def get(self, task_id: Optional[str]) -> Optional[Task]:
        if not task_id:
            return None
        return next((t for t in self.tasks if t.id == task_id), None)

    def index_of(self, task_id: str) -> int:
        return next((i for i, t in enumerate(self.tasks) if t.id == task_id), -1)

    # ---- hierarchy ----

    def is_descendant(self, task_id: str, ancestor_id: str,
                      lookup: Optional[Dict[str, Task]] = None) -> bool:
        """
        Walk parent links upward from task_id looking for ancestor_id.

        The walk stops at a root or a missing parent. It is bounded by the
        number of tasks; running past the bound means the chain loops.
        """
        if lookup is None:
            lookup = {t.id: t for t in self.tasks}
        current = lookup.get(task_id)
        steps = 0
        while current is not None and current.parent_id:
            if current.parent_id == ancestor_id:
                return True
            steps += 1
            if steps > len(lookup):
                raise CycleError(f"Parent chain of task {task_id} loops")
            current = lookup.get(current.parent_id)
        return False

    def descendants(self, task_id: str) -> Set[str]:
        """
        Ids whose parent chain reaches task_id.

        Children may sit before or after their parent in the sequence, so the
        closure is grown pass by pass until a pass adds nothing.
        """
        reached = {task_id}
        found_new = True
        while found_new:
            found_new = False
            for task in self.tasks:
                if task.parent_id and task.parent_id in reached and task.id not in reached:
                    reached.add(task.id)
                    found_new = True
        reached.discard(task_id)
        return reached

    # ---- task mutations ----

    def _build_task(self, data: Union[Mapping[str, Any], Task, None]) -> Task:
        fields = _normalize_changes(_as_dict(data))
        for key in ("id", "created_at", "updated_at"):
            fields.pop(key, None)
        now = utcnow()
        return Task.model_validate({**fields, "id": new_id(self.ids()), "created_at": now, "updated_at": now})

    def add_task(self, data: Union[Mapping[str, Any], Task, None] = None) -> Task:
        """Append a new task with a fresh id and timestamps."""
        task = self._build_task(data)
        self.tasks.append(task)
        log.debug(f"Added task {task.id} at end ({len(self.tasks)} tasks)")
        return task

    def add_task_after(self, data: Union[Mapping[str, Any], Task, None], after_id: str) -> Task:
        """
        Insert a new task after after_id and its whole subtree.

        The new task lands after the last contiguous descendant of the anchor,
        so the anchor's subtree stays together. An unknown anchor appends.
        """
        task = self._build_task(data)
        after_index = self.index_of(after_id)
        if after_index == -1:
            self.tasks.append(task)
            log.debug(f"Anchor {after_id} not found, appended task {task.id}")
            return task

        lookup = {t.id: t for t in self.tasks}
        insert_index = after_index + 1
        while insert_index < len(self.tasks) and self.is_descendant(self.tasks[insert_index].id, after_id, lookup):
            insert_index += 1

        self.tasks.insert(insert_index, task)
        log.debug(f"Inserted task {task.id} at {insert_index} after {after_id}")
        return task

    def update_task(self, task_id: str, **changes) -> Optional[Task]:
        """
        Merge changes into a task and refresh its updated_at.

        Returns the updated task, or None when task_id is unknown. Pointing a
        task at itself or at one of its descendants raises CycleError.
        """
        index = self.index_of(task_id)
        if index == -1:
            log.debug(f"update_task: {task_id} not found")
            return None

        changes = _normalize_changes(changes)
        for key in _IMMUTABLE_FIELDS:
            changes.pop(key, None)

        new_parent = changes.get("parent_id")
        if new_parent:
            if new_parent == task_id or self.is_descendant(new_parent, task_id):
                raise CycleError(f"Task {task_id} cannot be moved under {new_parent}")

        current = self.tasks[index]
        merged = {**current.model_dump(), **changes, "updated_at": utcnow()}
        updated = Task.model_validate(merged)
        self.tasks[index] = updated
        return updated

    def delete_task(self, task_id: str) -> Set[str]:
        """Remove task_id and every descendant. Returns the removed ids."""
        to_delete = {task_id} | self.descendants(task_id)
        removed = {t.id for t in self.tasks if t.id in to_delete}
        if not removed:
            return removed
        self.tasks = [t for t in self.tasks if t.id not in removed]
        log.debug(f"Deleted {len(removed)} task(s) rooted at {task_id}")
        return removed

    # ---- tree views ----

    def get_task_tree(self, predicate: Optional[TaskPredicate] = None) -> List[TaskNode]:
        """
        Build a forest over the (optionally filtered) sequence.

        A task whose parent is missing or filtered out becomes a root. Sibling
        lists and the root list keep sequence order. Tasks caught in a parent
        cycle never reach a root and are left out.
        """
        visible = [t for t in self.tasks if predicate is None or predicate(t)]

        nodes: Dict[str, TaskNode] = {}
        for task in visible:
            nodes[task.id] = TaskNode(task=task)

        roots: List[TaskNode] = []
        for task in visible:
            node = nodes[task.id]
            if task.parent_id and task.parent_id in nodes:
                nodes[task.parent_id].children.append(node)
            else:
                roots.append(node)
        return roots

    def flatten(self, predicate: Optional[TaskPredicate] = None) -> List[OutlineRow]:
        """Outline rows (task, level) in display order."""
        rows: List[OutlineRow] = []
        stack = [(node, 0) for node in reversed(self.get_task_tree(predicate))]
        while stack:
            node, level = stack.pop()
            rows.append((node.task, level))
            stack.extend((child, level + 1) for child in reversed(node.children))
        return rows

    def indent(self, task_id: str, predicate: Optional[TaskPredicate] = None) -> bool:
        """
        Make the task a child of the nearest preceding outline row whose
        level is at or above its own. Returns True if the parent changed.
        """
        rows = self.flatten(predicate)
        position = next((i for i, (t, _) in enumerate(rows) if t.id == task_id), -1)
        if position <= 0:
            return False

        task, level = rows[position]
        new_parent = None
        for previous, previous_level in reversed(rows[:position]):
            if previous_level <= level:
                new_parent = previous.id
                break

        if new_parent == task.parent_id:
            return False
        self.update_task(task_id, parent_id=new_parent)
        log.debug(f"Indented {task_id} under {new_parent}")
        return True

    def unindent(self, task_id: str, predicate: Optional[TaskPredicate] = None) -> bool:
        """Promote the task to its parent's parent. Returns True if it moved."""
        rows = self.flatten(predicate)
        row = next(((t, level) for t, level in rows if t.id == task_id), None)
        if row is None or row[1] == 0:
            return False

        parent = self.get(row[0].parent_id)
        if parent is None:
            return False
        self.update_task(task_id, parent_id=parent.parent_id)
        log.debug(f"Unindented {task_id} to {parent.parent_id or 'root'}")
        return True

    # ---- filtering, search and sorting ----

    def category_predicate(self, category_id: Optional[str]) -> Optional[TaskPredicate]:
        """Predicate for a category, or None when the category shows everything."""
        if not category_id or category_id == ALL_CATEGORY:
            return None
        if category_id == URGENT_CATEGORY:
            return lambda t: t.properties.get("priority") == "Urgent"
        if category_id == COMPLETED_CATEGORY:
            return lambda t: t.completed or t.properties.get("status") == "Completed"

        category = self.get_category(category_id)
        if category is None or not category.filter.property_id:
            return None
        return category.filter.matches

    def filter_for_category(self, category_id: Optional[str]) -> List[Task]:
        predicate = self.category_predicate(category_id)
        return [t for t in self.tasks if predicate is None or predicate(t)]

    def default_properties_for(self, category_id: Optional[str]) -> Dict[str, Any]:
        """Properties stamped onto tasks created while a category is selected."""
        if category_id == URGENT_CATEGORY:
            return {"priority": "Urgent"}
        category = self.get_category(category_id) if category_id not in RESERVED_CATEGORIES else None
        if category and category.filter.property_id == "tags" and isinstance(category.filter.value, str):
            return {"tags": [category.filter.value]}
        return {}

    def search(self, term: str, predicate: Optional[TaskPredicate] = None) -> List[OutlineRow]:
        rows = self.flatten(predicate)
        if not term:
            return rows
        needle = term.lower()
        return [
            (task, level) for task, level in rows
            if needle in task.title.lower() or needle in (task.description or "").lower()
        ]

    @staticmethod
    def sort_rows(rows: List[OutlineRow], sort_by: str = "createdAt", descending: bool = False) -> List[OutlineRow]:
        """Order outline rows; createdAt ascending keeps document order."""
        if sort_by not in SORT_KEYS:
            raise ValueError(f"Unknown sort key: {sort_by}")
        if sort_by == "createdAt" and not descending:
            return list(rows)

        def key(row: OutlineRow):
            task = row[0]
            if sort_by == "title":
                return task.title.lower()
            if sort_by == "createdAt":
                return task.created_at
            if sort_by == "priority":
                return PRIORITY_ORDER.get(task.properties.get("priority"), 0)
            return str(task.properties.get("status") or "")

        return sorted(rows, key=key, reverse=descending)

    # ---- calendar ----

    def tasks_for_date(self, day: Union[date, str], predicate: Optional[TaskPredicate] = None) -> List[Task]:
        target = day.isoformat() if isinstance(day, date) else day
        return [t for t in self.tasks if (predicate is None or predicate(t)) and t.due_date == target]

    def tasks_without_due_date(self, predicate: Optional[TaskPredicate] = None) -> List[Task]:
        return [t for t in self.tasks if (predicate is None or predicate(t)) and t.due_date is None]

    @staticmethod
    def month_grid(year: int, month: int) -> List[Optional[date]]:
        """Days of a month, padded with None so the list starts on a Sunday."""
        first_weekday, days_in_month = calendar.monthrange(year, month)
        padding = (first_weekday + 1) % 7
        return [None] * padding + [date(year, month, d) for d in range(1, days_in_month + 1)]

    # ---- properties and tags ----

    def get_property(self, property_id: str) -> Optional[TaskProperty]:
        return next((p for p in self.properties if p.id == property_id), None)

    def add_property(self, data: Union[Mapping[str, Any], TaskProperty]) -> TaskProperty:
        fields = _as_dict(data)
        fields["id"] = new_id(p.id for p in self.properties)
        prop = TaskProperty.model_validate(fields)
        self.properties.append(prop)
        return prop

    def update_property(self, property_id: str, **changes) -> Optional[TaskProperty]:
        for i, prop in enumerate(self.properties):
            if prop.id == property_id:
                changes.pop("id", None)
                updated = TaskProperty.model_validate({**prop.model_dump(), **changes})
                self.properties[i] = updated
                return updated
        return None

    def get_all_tags(self) -> List[str]:
        """Every tag used by any task, in first-seen order."""
        seen: Dict[str, None] = {}
        for task in self.tasks:
            for tag in task.tags:
                seen.setdefault(tag, None)
        return list(seen)

    def delete_tag_option(self, tag: str) -> List[Task]:
        """Drop a tag from the tags property options and from every task. Returns touched tasks."""
        tags_property = self.get_property("tags")
        if tags_property and tags_property.options and tag in tags_property.options:
            self.update_property("tags", options=[o for o in tags_property.options if o != tag])

        touched = []
        for task in list(self.tasks):
            if tag in task.tags:
                remaining = [t for t in task.properties["tags"] if t != tag]
                touched.append(self.update_task(task.id, properties={**task.properties, "tags": remaining}))
        log.debug(f"Removed tag {tag!r} from {len(touched)} task(s)")
        return touched

    # ---- categories ----

    def get_category(self, category_id: Optional[str]) -> Optional[Category]:
        return next((c for c in self.categories if c.id == category_id), None)

    def add_category(self, data: Union[Mapping[str, Any], Category]) -> Category:
        fields = _as_dict(data)
        fields["id"] = new_id(c.id for c in self.categories)
        category = Category.model_validate(fields)
        self.categories.append(category)
        return category

    def update_category(self, category_id: str, **changes) -> Optional[Category]:
        for i, category in enumerate(self.categories):
            if category.id == category_id:
                changes.pop("id", None)
                updated = Category.model_validate({**category.model_dump(), **changes})
                self.categories[i] = updated
                return updated
        return None

    def delete_category(self, category_id: str) -> bool:
        before = len(self.categories)
        self.categories = [c for c in self.categories if c.id != category_id]
        return len(self.categories) != before
