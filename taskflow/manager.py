"""
TaskFlow - Task Manager
=======================
The single authority for task and activity state.

Every mutation follows the same path: apply to the in-memory collection,
record an activity entry, then hand the change to the storage backend.
A backend failure never rolls the in-memory change back; it is recorded
as a SyncFailure and the task stays unconfirmed until a later write for
it succeeds.
"""

import json
import logging
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple, Union

from pydantic import BaseModel, Field, ValidationError

from .activity import DEFAULT_ACTIVITY_LIMIT, ActivityLog
from .errors import PersistenceError, SnapshotError
from .filters import TaskFilter, filter_tasks
from .persistence import StorageBackend
from .schema import (
    ALL_CATEGORY,
    DEFAULT_CATEGORIES,
    ActivityAction,
    ActivityEntry,
    Subtask,
    Task,
    TaskDraft,
    TaskStats,
    TaskStatus,
    TaskUpdate,
    as_utc,
    export_filename,
    generate_id,
    utcnow,
)

logger = logging.getLogger(__name__)


class ImportPolicy(str, Enum):
    """How an imported snapshot meets existing state"""
    REPLACE = "replace"   # Wholesale replacement (local semantics)
    APPEND = "append"     # Add alongside existing tasks (remote semantics)


class SyncFailure(BaseModel):
    """A change that was applied locally but not confirmed by the backend"""
    operation: str
    task_ids: List[str] = Field(default_factory=list)
    error: str
    timestamp: datetime = Field(default_factory=utcnow)


class ImportSummary(BaseModel):
    policy: ImportPolicy
    tasks: int = 0
    activity: int = 0


# Fields an imported task may omit
_IMPORT_DEFAULTS: Dict[str, Any] = {
    "description": "",
    "priority": "medium",
    "status": "pending",
    "category": "personal",
    "tags": [],
    "subtasks": [],
    "recurrence": "none",
}


def parse_snapshot(
    document: Union[str, bytes, Dict[str, Any]],
    now: Optional[datetime] = None,
) -> Tuple[List[Task], List[ActivityEntry]]:
    """
    Validate an export document and return its tasks and activity.

    Raises SnapshotError if anything in it is unusable; callers can rely on
    all-or-nothing behaviour.
    """
    now = now or utcnow()

    if isinstance(document, (str, bytes)):
        try:
            document = json.loads(document)
        except ValueError as e:
            raise SnapshotError(f"Not valid JSON: {e}") from e

    if not isinstance(document, dict):
        raise SnapshotError("Expected a JSON object with 'tasks' and 'activity'")

    if "tasks" not in document:
        raise SnapshotError("Not a TaskFlow backup: no 'tasks' array")
    raw_tasks = document["tasks"]
    raw_activity = document.get("activity", [])
    if not isinstance(raw_tasks, list):
        raise SnapshotError("'tasks' must be an array")
    if not isinstance(raw_activity, list):
        raise SnapshotError("'activity' must be an array")

    tasks: List[Task] = []
    seen: Set[str] = set()
    for i, raw in enumerate(raw_tasks, start=1):
        if not isinstance(raw, dict):
            raise SnapshotError(f"Task #{i} is not an object")
        title = raw.get("title")
        if not isinstance(title, str) or not title.strip():
            raise SnapshotError(f"Task #{i} has no title")

        data = dict(raw)
        for key, default in _IMPORT_DEFAULTS.items():
            if data.get(key) is None:
                data[key] = default
        if not data.get("id"):
            data["id"] = generate_id()
        if not (data.get("createdAt") or data.get("created_at")):
            data["createdAt"] = now
        if not (data.get("updatedAt") or data.get("updated_at")):
            data["updatedAt"] = data.get("createdAt") or data.get("created_at")

        try:
            task = Task.model_validate(data)
        except ValidationError as e:
            raise SnapshotError(f"Task #{i} is invalid: {e.error_count()} error(s)") from e

        if task.updated_at < task.created_at:
            task.updated_at = task.created_at
        while task.id in seen:
            task.id = generate_id()
        seen.add(task.id)
        tasks.append(task)

    activity: List[ActivityEntry] = []
    for i, raw in enumerate(raw_activity, start=1):
        try:
            activity.append(ActivityEntry.model_validate(raw))
        except ValidationError as e:
            raise SnapshotError(f"Activity entry #{i} is invalid: {e.error_count()} error(s)") from e

    return tasks, activity


class TaskManager:
    """
    Task store service

    Create one per session and pass it to whatever needs task state.

    Key features:
    - Most-recent-first task list with manual reordering
    - Bounded activity log of every mutation
    - Works against blob (local file) or row (Supabase) backends
    - Snapshot export / import
    """

    def __init__(
        self,
        backend: StorageBackend,
        activity_limit: int = DEFAULT_ACTIVITY_LIMIT,
        clock: Optional[Callable[[], datetime]] = None,
        import_policy: ImportPolicy = ImportPolicy.REPLACE,
    ):
        self.backend = backend
        self.import_policy = ImportPolicy(import_policy)
        self._clock = clock or utcnow
        self._tasks: List[Task] = []
        self._activity = ActivityLog(limit=activity_limit, clock=self._clock)
        self.sync_failures: List[SyncFailure] = []
        self._unconfirmed: Set[str] = set()

    # ========================================
    # STATE
    # ========================================

    @property
    def tasks(self) -> List[Task]:
        """Current manual ordering (copy of the list, shared task objects)"""
        return list(self._tasks)

    @property
    def activity(self) -> List[ActivityEntry]:
        return self._activity.entries

    def get_task(self, task_id: str) -> Optional[Task]:
        for task in self._tasks:
            if task.id == task_id:
                return task
        return None

    def _index_of(self, task_id: str) -> int:
        for i, task in enumerate(self._tasks):
            if task.id == task_id:
                return i
        return -1

    def _new_task_id(self) -> str:
        ids = {t.id for t in self._tasks}
        task_id = generate_id()
        while task_id in ids:
            task_id = generate_id()
        return task_id

    def _touch(self, task: Task) -> None:
        task.updated_at = max(as_utc(self._clock()), task.created_at)

    # ========================================
    # PERSISTENCE OPERATIONS
    # ========================================

    def load(self) -> bool:
        """Populate state from the backend. Returns False if the backend failed."""
        try:
            tasks = self.backend.load_tasks()
            activity = self.backend.load_activity()
        except PersistenceError as e:
            self._record_failure("load", [], e)
            self._tasks = []
            self._activity.clear()
            return False

        self._tasks = []
        seen: Set[str] = set()
        for task in tasks:
            if task.id in seen:
                logger.warning(f"Dropping duplicate task id {task.id} ({task.title!r})")
                continue
            seen.add(task.id)
            self._tasks.append(task)
        self._activity = ActivityLog(activity, limit=self._activity.limit, clock=self._clock)

        logger.info(f"📂 Loaded {len(self._tasks)} tasks, {len(self._activity)} activity entries")
        return True

    def _record_failure(self, operation: str, task_ids: Sequence[str], error: Exception) -> None:
        failure = SyncFailure(operation=operation, task_ids=list(task_ids), error=str(error))
        self.sync_failures.append(failure)
        self._unconfirmed.update(task_ids)
        logger.warning(f"⚠️ {operation} not saved: {error}")

    def _save_tasks(self, operation: str, changed: Sequence[str] = (), deleted: Sequence[str] = ()) -> bool:
        try:
            self.backend.save_tasks(self.tasks, changed=changed, deleted=deleted)
        except PersistenceError as e:
            self._record_failure(operation, list(changed) + list(deleted), e)
            return False
        self._unconfirmed.difference_update(changed)
        self._unconfirmed.difference_update(deleted)
        return True

    def _save_activity(self, added: Sequence[ActivityEntry] = (), cleared: bool = False) -> bool:
        try:
            self.backend.save_activity(self.activity, added=added, cleared=cleared)
        except PersistenceError as e:
            self._record_failure("activity", [], e)
            return False
        return True

    def _log(self, task: Task, action: ActivityAction, detail: Optional[str] = None) -> ActivityEntry:
        entry = self._activity.record(task.id, task.title, action, detail)
        self._save_activity(added=[entry])
        return entry

    def is_confirmed(self, task_id: str) -> bool:
        """False while the latest backend write touching this task has failed"""
        return task_id not in self._unconfirmed

    def drain_sync_failures(self) -> List[SyncFailure]:
        failures, self.sync_failures = self.sync_failures, []
        return failures

    # ========================================
    # TASK OPERATIONS
    # ========================================

    def create_task(self, draft: Union[TaskDraft, Dict[str, Any], None] = None, **fields: Any) -> Task:
        """Create a task at the top of the list"""
        if not isinstance(draft, TaskDraft):
            draft = TaskDraft.model_validate({**(draft or {}), **fields})

        now = self._clock()
        task = Task.model_validate({
            **draft.model_dump(),
            "id": self._new_task_id(),
            "created_at": now,
            "updated_at": now,
        })
        self._tasks.insert(0, task)

        # Every position shifted down by one
        self._save_tasks("create", changed=[t.id for t in self._tasks])
        self._log(task, ActivityAction.CREATED)
        logger.info(f"✅ Created task: {task.title} ({task.id})")
        return task

    def update_task(
        self,
        task_id: str,
        update: Union[TaskUpdate, Dict[str, Any], None] = None,
        **fields: Any,
    ) -> Optional[Task]:
        """
        Merge the supplied fields into a task.

        A status change is logged as `completed` or `status_changed`; any
        other edit as `updated`. Unknown ids are ignored and log nothing.
        """
        task = self.get_task(task_id)
        if task is None:
            logger.debug(f"update_task: no task {task_id}")
            return None

        if not isinstance(update, TaskUpdate):
            update = TaskUpdate.model_validate({**(update or {}), **fields})
        changes = update.changes()

        previous = task.status
        for name, value in changes.items():
            if name == "subtasks":
                value = [s.model_copy() for s in value]
            elif name == "tags":
                value = list(value)
            setattr(task, name, value)
        self._touch(task)

        new_status = changes.get("status")
        if new_status is not None and new_status != previous:
            if new_status == TaskStatus.COMPLETED:
                action = ActivityAction.COMPLETED
            else:
                action = ActivityAction.STATUS_CHANGED
            detail = f"{previous.value} → {new_status.value}"
        else:
            action = ActivityAction.UPDATED
            detail = None

        self._save_tasks("update", changed=[task.id])
        self._log(task, action, detail)
        logger.info(f"✏️ Updated task: {task.title} ({task.id})")
        return task

    def cycle_status(self, task_id: str) -> Optional[Task]:
        """Advance pending → in-progress → completed → pending"""
        task = self.get_task(task_id)
        if task is None:
            return None
        return self.update_task(task_id, TaskUpdate(status=task.next_status()))

    def delete_task(self, task_id: str) -> bool:
        """Hard delete; subtasks go with it. Unknown ids are a no-op."""
        idx = self._index_of(task_id)
        if idx < 0:
            return False
        task = self._tasks.pop(idx)
        self._unconfirmed.discard(task.id)

        # Later tasks move up one position
        self._save_tasks(
            "delete",
            changed=[t.id for t in self._tasks[idx:]],
            deleted=[task.id],
        )
        self._log(task, ActivityAction.DELETED)
        logger.info(f"🗑️ Deleted task: {task.title} ({task.id})")
        return True

    def reorder_tasks(self, moved_id: str, target_id: str) -> bool:
        """
        Move a task to the position currently held by another.

        Array-move semantics: extract `moved_id`, then insert it at the old
        index of `target_id`. No-op if either id is absent.
        """
        old_index = self._index_of(moved_id)
        new_index = self._index_of(target_id)
        if old_index < 0 or new_index < 0 or old_index == new_index:
            return False

        moved = self._tasks.pop(old_index)
        self._tasks.insert(new_index, moved)

        lo, hi = min(old_index, new_index), max(old_index, new_index)
        shifted = [t.id for t in self._tasks[lo:hi + 1]]
        self._save_tasks("reorder", changed=shifted)
        logger.debug(f"Moved {moved_id} from {old_index} to {new_index}")
        return True

    # ========================================
    # SUBTASK OPERATIONS
    # ========================================

    def _get_subtask(self, task: Task, subtask_id: str) -> Optional[Subtask]:
        for subtask in task.subtasks:
            if subtask.id == subtask_id:
                return subtask
        return None

    def toggle_subtask(self, task_id: str, subtask_id: str) -> Optional[Subtask]:
        task = self.get_task(task_id)
        if task is None:
            return None
        subtask = self._get_subtask(task, subtask_id)
        if subtask is None:
            return None

        subtask.completed = not subtask.completed
        self._touch(task)

        state = "Checked" if subtask.completed else "Unchecked"
        self._save_tasks("toggle subtask", changed=[task.id])
        self._log(task, ActivityAction.SUBTASK_COMPLETED, f'{state} "{subtask.title}"')
        return subtask

    def add_subtask(self, task_id: str, title: str) -> Optional[Subtask]:
        task = self.get_task(task_id)
        if task is None:
            return None

        ids = {s.id for s in task.subtasks}
        subtask = Subtask(title=title.strip())
        while subtask.id in ids:
            subtask.id = generate_id(8)
        task.subtasks.append(subtask)
        self._touch(task)

        self._save_tasks("add subtask", changed=[task.id])
        return subtask

    def delete_subtask(self, task_id: str, subtask_id: str) -> bool:
        task = self.get_task(task_id)
        if task is None:
            return False
        subtask = self._get_subtask(task, subtask_id)
        if subtask is None:
            return False

        task.subtasks.remove(subtask)
        self._touch(task)

        self._save_tasks("delete subtask", changed=[task.id])
        return True

    # ========================================
    # QUERIES
    # ========================================

    def filter(self, flt: Optional[TaskFilter] = None, **predicates: str) -> List[Task]:
        if flt is None:
            flt = TaskFilter(**predicates)
        return filter_tasks(self._tasks, flt)

    def compute_stats(self, now: Optional[datetime] = None) -> TaskStats:
        now = now or self._clock()
        total = len(self._tasks)
        completed = sum(1 for t in self._tasks if t.status == TaskStatus.COMPLETED)
        return TaskStats(
            total=total,
            pending=sum(1 for t in self._tasks if t.status == TaskStatus.PENDING),
            in_progress=sum(1 for t in self._tasks if t.status == TaskStatus.IN_PROGRESS),
            completed=completed,
            overdue=sum(1 for t in self._tasks if t.is_overdue(now)),
            # half-up rounding
            completion_rate=int(completed * 100 / total + 0.5) if total else 0,
        )

    def category_counts(self) -> Dict[str, int]:
        counts = {c.id: 0 for c in DEFAULT_CATEGORIES}
        counts[ALL_CATEGORY] = len(self._tasks)
        for task in self._tasks:
            counts[task.category] = counts.get(task.category, 0) + 1
        return counts

    # ========================================
    # ACTIVITY
    # ========================================

    def clear_activity(self) -> None:
        self._activity.clear()
        self._save_activity(cleared=True)
        logger.info("🧹 Cleared activity log")

    # ========================================
    # BACKUP / RESTORE
    # ========================================

    def export_snapshot(self) -> Dict[str, Any]:
        """Full backup document: {tasks, activity, exportedAt}"""
        return {
            "tasks": [t.to_json_dict() for t in self._tasks],
            "activity": [e.to_json_dict() for e in self._activity],
            "exportedAt": self._clock().isoformat(),
        }

    def export_to_file(self, directory: Union[str, Path] = ".") -> Path:
        document = self.export_snapshot()
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / export_filename(self._clock().date())
        with open(path, "w", encoding="utf-8") as f:
            json.dump(document, f, indent=2, ensure_ascii=False)
        logger.info(f"💾 Exported {len(document['tasks'])} tasks to {path}")
        return path

    def import_snapshot(
        self,
        document: Union[str, bytes, Dict[str, Any]],
        policy: Optional[ImportPolicy] = None,
    ) -> ImportSummary:
        """
        Restore tasks and activity from an export document.

        Raises SnapshotError for a malformed document, in which case the
        current state is left exactly as it was.
        """
        policy = ImportPolicy(policy or self.import_policy)
        tasks, activity = parse_snapshot(document, now=self._clock())

        if policy == ImportPolicy.REPLACE:
            old_ids = [t.id for t in self._tasks]
            new_ids = {t.id for t in tasks}
            self._tasks = tasks
            self._activity.replace(activity)
            self._unconfirmed.clear()

            self._save_tasks(
                "import",
                changed=[t.id for t in tasks],
                deleted=[i for i in old_ids if i not in new_ids],
            )
            self._save_activity(added=self.activity, cleared=True)
        else:
            live = {t.id for t in self._tasks}
            for task in tasks:
                while task.id in live:
                    task.id = generate_id()
                live.add(task.id)
            self._tasks.extend(tasks)

            known = {e.id for e in self._activity}
            fresh = [e for e in activity if e.id not in known]
            self._activity.replace(list(self._activity) + fresh)

            self._save_tasks("import", changed=[t.id for t in tasks])
            self._save_activity(added=fresh)

        logger.info(f"📥 Imported {len(tasks)} tasks ({policy.value})")
        return ImportSummary(policy=policy, tasks=len(tasks), activity=len(activity))

    def import_file(self, path: Union[str, Path], policy: Optional[ImportPolicy] = None) -> ImportSummary:
        try:
            with open(path, "r", encoding="utf-8") as f:
                text = f.read()
        except (OSError, UnicodeDecodeError) as e:
            raise SnapshotError(f"Cannot read {path}: {e}") from e
        return self.import_snapshot(text, policy=policy)

    # ========================================
    # REPORTING
    # ========================================

    def get_status_report(self) -> str:
        """Human-readable summary"""
        stats = self.compute_stats()
        rate = stats.completion_rate
        lines = [
            "📋 TaskFlow",
            f"Progress: {'█' * (rate // 10)}{'░' * (10 - rate // 10)} {rate}%",
            f"Total: {stats.total} | To do: {stats.pending} | "
            f"In progress: {stats.in_progress} | Completed: {stats.completed} | "
            f"Overdue: {stats.overdue}",
            "",
            "Categories:",
        ]
        counts = self.category_counts()
        for category in DEFAULT_CATEGORIES:
            lines.append(f"  {category.name:<10} {counts.get(category.id, 0)}")
        return "\n".join(lines)

