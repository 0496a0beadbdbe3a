"""
TaskFlow - Personal Task Tracker
================================

Tasks with priority, status, category, tags, due dates, subtasks and a
recurrence label, kept in manual order, with a bounded activity log and
JSON backup/restore.

Usage:
    from taskflow import TaskManager, LocalJsonBackend

    manager = TaskManager(LocalJsonBackend(".taskflow"))
    manager.load()

    task = manager.create_task(title="Ship release", priority="high", category="work")
    manager.add_subtask(task.id, "Tag the build")
    manager.update_task(task.id, status="completed")

    print(manager.compute_stats())
    manager.export_to_file("backups/")
"""

from .schema import (
    Task,
    Subtask,
    ActivityEntry,
    ActivityAction,
    Category,
    TaskStatus,
    TaskPriority,
    Recurrence,
    TaskDraft,
    TaskUpdate,
    TaskStats,
    DEFAULT_CATEGORIES,
    get_category,
)

from .activity import ActivityLog
from .errors import TaskflowError, PersistenceError, NotAuthenticatedError, SnapshotError
from .filters import TaskFilter, filter_tasks, tasks_for_day, calendar_month
from .persistence import StorageBackend, MemoryBackend, LocalJsonBackend, SupabaseBackend
from .manager import TaskManager, ImportPolicy, ImportSummary, SyncFailure, parse_snapshot

__version__ = "1.0.0"
__all__ = [
    "TaskManager",
    "ImportPolicy",
    "ImportSummary",
    "SyncFailure",
    "parse_snapshot",
    "Task",
    "Subtask",
    "ActivityEntry",
    "ActivityAction",
    "Category",
    "TaskStatus",
    "TaskPriority",
    "Recurrence",
    "TaskDraft",
    "TaskUpdate",
    "TaskStats",
    "DEFAULT_CATEGORIES",
    "get_category",
    "ActivityLog",
    "TaskflowError",
    "PersistenceError",
    "NotAuthenticatedError",
    "SnapshotError",
    "TaskFilter",
    "filter_tasks",
    "tasks_for_day",
    "calendar_month",
    "StorageBackend",
    "MemoryBackend",
    "LocalJsonBackend",
    "SupabaseBackend",
]
