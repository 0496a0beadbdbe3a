"""
TaskFlow - Entity Schema Definition
===================================
Tasks, subtasks, activity entries and the static category taxonomy.

Attribute names are snake_case in Python; every persisted or exported
document uses the camelCase aliases (dueDate, createdAt, taskTitle, ...).
"""

import random
import string
from datetime import date, datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_id(length: int = 10) -> str:
    """Short random identifier (base36)"""
    return "".join(random.choices(_ID_ALPHABET, k=length))


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TaskStatus(str, Enum):
    """Task lifecycle states"""
    PENDING = "pending"           # To do
    IN_PROGRESS = "in-progress"   # Being worked on
    COMPLETED = "completed"       # Done


STATUS_CYCLE = [TaskStatus.PENDING, TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED]


class TaskPriority(str, Enum):
    """Task priority levels"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Recurrence(str, Enum):
    """Recurrence label. Never expanded into future instances."""
    NONE = "none"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    CUSTOM = "custom"


class ActivityAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    COMPLETED = "completed"
    STATUS_CHANGED = "status_changed"
    SUBTASK_COMPLETED = "subtask_completed"


class CamelModel(BaseModel):
    """Base model: snake_case attributes, camelCase JSON"""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Subtask(CamelModel):
    """Checklist item owned by exactly one task"""
    id: str = Field(default_factory=lambda: generate_id(8))
    title: str = Field(min_length=1)
    completed: bool = False


class Task(CamelModel):
    """Individual task definition"""
    id: str = Field(default_factory=generate_id)
    title: str = Field(min_length=1)
    description: str = ""
    priority: TaskPriority = TaskPriority.MEDIUM
    status: TaskStatus = TaskStatus.PENDING
    category: str = "personal"              # Category id, not enforced
    tags: List[str] = Field(default_factory=list)
    due_date: Optional[datetime] = None
    subtasks: List[Subtask] = Field(default_factory=list)
    recurrence: Recurrence = Recurrence.NONE

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("due_date", "created_at", "updated_at")
    @classmethod
    def normalize_tz(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v)

    # Derived views used by list/grid/calendar layouts

    def subtask_progress(self) -> Tuple[int, int, int]:
        """(done, total, percent); percent is 0 when there are no subtasks"""
        total = len(self.subtasks)
        done = sum(1 for s in self.subtasks if s.completed)
        if not total:
            return 0, 0, 0
        return done, total, int(done / total * 100)

    def is_overdue(self, now: Optional[datetime] = None) -> bool:
        if self.due_date is None or self.status == TaskStatus.COMPLETED:
            return False
        return self.due_date < as_utc(now or utcnow())

    def is_due_today(self, now: Optional[datetime] = None) -> bool:
        if self.due_date is None:
            return False
        return self.due_date.date() == as_utc(now or utcnow()).date()

    def next_status(self) -> TaskStatus:
        idx = STATUS_CYCLE.index(self.status)
        return STATUS_CYCLE[(idx + 1) % len(STATUS_CYCLE)]


class ActivityEntry(CamelModel):
    """Immutable audit record of one mutation"""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=generate_id)
    task_id: str                      # Weak reference, task may be gone
    task_title: str                   # Title snapshot at event time
    action: ActivityAction
    detail: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)

    @field_validator("timestamp")
    @classmethod
    def normalize_tz(cls, v: datetime) -> datetime:
        return as_utc(v)


class Category(CamelModel):
    """Static taxonomy entry; icon and color are resolved by presentation"""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    icon: str
    color: str


ALL_CATEGORY = "all"

DEFAULT_CATEGORIES: List[Category] = [
    Category(id=ALL_CATEGORY, name="All Tasks", icon="Inbox", color="primary"),
    Category(id="personal", name="Personal", icon="User", color="accent"),
    Category(id="work", name="Work", icon="Briefcase", color="status-progress"),
    Category(id="health", name="Health", icon="Heart", color="priority-high"),
    Category(id="learning", name="Learning", icon="BookOpen", color="priority-low"),
]


def get_category(category_id: str) -> Optional[Category]:
    for category in DEFAULT_CATEGORIES:
        if category.id == category_id:
            return category
    return None


# ============================================================
# EDITING BOUNDARY
# ============================================================

def _clean_tags(tags: Optional[List[str]]) -> Optional[List[str]]:
    if tags is None:
        return None
    cleaned: List[str] = []
    for tag in tags:
        tag = tag.strip()
        if tag and tag not in cleaned:
            cleaned.append(tag)
    return cleaned


class TaskDraft(CamelModel):
    """Fields supplied when creating a task (id and timestamps are assigned)"""
    title: str
    description: str = ""
    priority: TaskPriority = TaskPriority.MEDIUM
    status: TaskStatus = TaskStatus.PENDING
    category: str = "personal"
    tags: List[str] = Field(default_factory=list)
    due_date: Optional[datetime] = None
    subtasks: List[Subtask] = Field(default_factory=list)
    recurrence: Recurrence = Recurrence.NONE

    @field_validator("title")
    @classmethod
    def title_required(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("title must not be empty")
        return v

    @field_validator("description")
    @classmethod
    def strip_description(cls, v: str) -> str:
        return v.strip()

    @field_validator("tags")
    @classmethod
    def unique_tags(cls, v: List[str]) -> List[str]:
        return _clean_tags(v) or []

    @field_validator("due_date")
    @classmethod
    def due_tz(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v)


class TaskUpdate(CamelModel):
    """Partial update; only fields explicitly set are merged"""
    model_config = ConfigDict(extra="ignore")

    title: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[TaskPriority] = None
    status: Optional[TaskStatus] = None
    category: Optional[str] = None
    tags: Optional[List[str]] = None
    due_date: Optional[datetime] = None
    subtasks: Optional[List[Subtask]] = None
    recurrence: Optional[Recurrence] = None

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("title must not be empty")
        return v

    @field_validator("tags")
    @classmethod
    def unique_tags(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        return _clean_tags(v)

    @field_validator("due_date")
    @classmethod
    def due_tz(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v)

    def changes(self) -> Dict[str, object]:
        """Explicitly supplied fields, keyed by attribute name"""
        changes: Dict[str, object] = {}
        for name in self.model_fields_set:
            value = getattr(self, name)
            # None only clears the due date; for other fields it means "unchanged"
            if value is None and name != "due_date":
                continue
            changes[name] = value
        return changes


class TaskStats(BaseModel):
    """Aggregate statistics over the task collection"""
    total: int = 0
    pending: int = 0
    in_progress: int = 0
    completed: int = 0
    overdue: int = 0
    completion_rate: int = 0     # Percent, 0 when there are no tasks


def export_filename(day: date) -> str:
    return f"taskflow-backup-{day.isoformat()}.json"
