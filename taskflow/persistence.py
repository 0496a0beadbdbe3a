"""
TaskFlow - Persistence Adapters
===============================
Durable storage for the task collection and the activity log.

Two shapes are supported behind one interface:

- Blob stores (LocalJsonBackend, MemoryBackend) keep each collection under a
  fixed key and rewrite it wholesale after every change.
- Row stores (SupabaseBackend) keep one row per task / activity entry scoped
  to the signed-in user and apply per-row inserts, updates and deletes using
  the change hints passed by the TaskManager.

The TaskManager only ever talks to StorageBackend, so it works unmodified
against either shape.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError

from .activity import DEFAULT_ACTIVITY_LIMIT
from .errors import NotAuthenticatedError, PersistenceError
from .schema import ActivityEntry, Task

logger = logging.getLogger(__name__)

TASKS_KEY = "tasks"
ACTIVITY_KEY = "activity"

# Rows beyond the activity cap removed per trim
TRIM_BATCH = 1000


class StorageBackend:
    """Interface between the TaskManager and durable storage"""

    def load_tasks(self) -> List[Task]:
        raise NotImplementedError

    def load_activity(self) -> List[ActivityEntry]:
        raise NotImplementedError

    def save_tasks(
        self,
        tasks: Sequence[Task],
        *,
        changed: Sequence[str] = (),
        deleted: Sequence[str] = (),
    ) -> None:
        """
        Persist the ordered task collection.

        `changed` names tasks that were created, edited or moved; `deleted`
        names tasks that no longer exist. Blob stores may ignore both.
        """
        raise NotImplementedError

    def save_activity(
        self,
        log: Sequence[ActivityEntry],
        *,
        added: Sequence[ActivityEntry] = (),
        cleared: bool = False,
    ) -> None:
        raise NotImplementedError


# ========================================
# BLOB STORES
# ========================================

class MemoryBackend(StorageBackend):
    """In-process blob store; nothing survives the process"""

    def __init__(
        self,
        tasks: Optional[Sequence[Task]] = None,
        activity: Optional[Sequence[ActivityEntry]] = None,
    ):
        self.tasks: List[Task] = [t.model_copy(deep=True) for t in tasks or []]
        self.activity: List[ActivityEntry] = list(activity or [])

    def load_tasks(self) -> List[Task]:
        return [t.model_copy(deep=True) for t in self.tasks]

    def load_activity(self) -> List[ActivityEntry]:
        return list(self.activity)

    def save_tasks(self, tasks, *, changed=(), deleted=()) -> None:
        self.tasks = [t.model_copy(deep=True) for t in tasks]

    def save_activity(self, log, *, added=(), cleared=False) -> None:
        self.activity = list(log)


class LocalJsonBackend(StorageBackend):
    """
    Single-device store: <data_dir>/tasks.json and <data_dir>/activity.json,
    each a JSON array of camelCase entities.

    A file that cannot be parsed is treated as an empty collection. The bad
    file is kept aside as <name>.json.corrupt before it can be overwritten.
    """

    def __init__(self, data_dir: str = ".taskflow"):
        self.data_dir = Path(data_dir)

    def _get_file(self, key: str) -> Path:
        return self.data_dir / f"{key}.json"

    def _quarantine(self, path: Path, reason: str) -> None:
        logger.warning(f"Ignoring unreadable {path.name}: {reason}")
        try:
            path.replace(path.with_name(path.name + ".corrupt"))
        except OSError as e:
            logger.warning(f"Could not move aside {path}: {e}")

    def _read(self, key: str) -> Optional[List[Any]]:
        path = self._get_file(key)
        if not path.exists():
            return []
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            self._quarantine(path, str(e))
            return None
        if not isinstance(data, list):
            self._quarantine(path, "expected a JSON array")
            return None
        return data

    def _write(self, key: str, items: List[Dict[str, Any]]) -> None:
        path = self._get_file(key)
        tmp = path.with_name(path.name + ".tmp")
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(items, f, indent=2, ensure_ascii=False)
            os.replace(tmp, path)
        except OSError as e:
            raise PersistenceError(f"Could not write {path}: {e}") from e

    def load_tasks(self) -> List[Task]:
        raw = self._read(TASKS_KEY)
        if not raw:
            return []
        try:
            tasks = [Task.model_validate(item) for item in raw]
        except ValidationError as e:
            self._quarantine(self._get_file(TASKS_KEY), f"{e.error_count()} invalid field(s)")
            return []
        logger.info(f"Loaded {len(tasks)} tasks from {self.data_dir}")
        return tasks

    def load_activity(self) -> List[ActivityEntry]:
        raw = self._read(ACTIVITY_KEY)
        if not raw:
            return []
        try:
            return [ActivityEntry.model_validate(item) for item in raw]
        except ValidationError as e:
            self._quarantine(self._get_file(ACTIVITY_KEY), f"{e.error_count()} invalid field(s)")
            return []

    def save_tasks(self, tasks, *, changed=(), deleted=()) -> None:
        self._write(TASKS_KEY, [t.to_json_dict() for t in tasks])
        logger.debug(f"Saved {len(tasks)} tasks to {self._get_file(TASKS_KEY)}")

    def save_activity(self, log, *, added=(), cleared=False) -> None:
        self._write(ACTIVITY_KEY, [e.to_json_dict() for e in log])


# ========================================
# ROW STORE
# ========================================

def task_to_row(task: Task, user_id: str, sort_order: int) -> Dict[str, Any]:
    row = task.model_dump(mode="json")
    row["user_id"] = user_id
    row["sort_order"] = sort_order
    return row


def row_to_task(row: Dict[str, Any]) -> Task:
    # user_id and sort_order are adapter-only columns
    return Task.model_validate(
        {k: v for k, v in row.items() if k not in ("user_id", "sort_order")}
    )


def entry_to_row(entry: ActivityEntry, user_id: str) -> Dict[str, Any]:
    row = entry.model_dump(mode="json")
    row["user_id"] = user_id
    return row


def row_to_entry(row: Dict[str, Any]) -> ActivityEntry:
    return ActivityEntry.model_validate({k: v for k, v in row.items() if k != "user_id"})


class SupabaseBackend(StorageBackend):
    """
    Multi-user store on Supabase (PostgREST).

    Tables:
        tasks(id, user_id, title, description, priority, status, category,
              tags, due_date, subtasks, recurrence, sort_order,
              created_at, updated_at)
        activity_log(id, user_id, task_id, task_title, action, detail,
                     timestamp)

    `client` is a supabase.Client (or anything with the same fluent
    table().select()...execute() API). `user_id` is the authenticated user;
    without one every operation raises NotAuthenticatedError.
    """

    TASKS_TABLE = "tasks"
    ACTIVITY_TABLE = "activity_log"

    def __init__(
        self,
        client: Any,
        user_id: Optional[str] = None,
        activity_limit: int = DEFAULT_ACTIVITY_LIMIT,
    ):
        self.client = client
        self.user_id = user_id
        self.activity_limit = activity_limit

    def _require_user(self) -> str:
        if not self.user_id:
            raise NotAuthenticatedError("Sign in required for remote storage")
        return self.user_id

    def _execute(self, query: Any, what: str) -> Any:
        try:
            return query.execute()
        except Exception as e:
            raise PersistenceError(f"Supabase {what} failed: {e}") from e

    def load_tasks(self) -> List[Task]:
        user_id = self._require_user()
        res = self._execute(
            self.client.table(self.TASKS_TABLE)
            .select("*")
            .eq("user_id", user_id)
            .order("sort_order"),
            "task fetch",
        )
        tasks = []
        for row in res.data or []:
            try:
                tasks.append(row_to_task(row))
            except ValidationError as e:
                logger.warning(f"Skipping malformed task row {row.get('id')}: {e.error_count()} error(s)")
        logger.info(f"Fetched {len(tasks)} tasks for user {user_id}")
        return tasks

    def load_activity(self) -> List[ActivityEntry]:
        user_id = self._require_user()
        res = self._execute(
            self.client.table(self.ACTIVITY_TABLE)
            .select("*")
            .eq("user_id", user_id)
            .order("timestamp", desc=True)
            .limit(self.activity_limit),
            "activity fetch",
        )
        entries = []
        for row in res.data or []:
            try:
                entries.append(row_to_entry(row))
            except ValidationError as e:
                logger.warning(f"Skipping malformed activity row {row.get('id')}: {e.error_count()} error(s)")
        return entries

    def save_tasks(self, tasks, *, changed=(), deleted=()) -> None:
        user_id = self._require_user()

        for task_id in deleted:
            self._execute(
                self.client.table(self.TASKS_TABLE)
                .delete()
                .eq("user_id", user_id)
                .eq("id", task_id),
                "task delete",
            )
            logger.debug(f"Deleted remote task {task_id}")

        if changed:
            wanted = set(changed)
            rows = [
                task_to_row(task, user_id, position)
                for position, task in enumerate(tasks)
                if task.id in wanted
            ]
            if rows:
                self._execute(
                    self.client.table(self.TASKS_TABLE).upsert(rows),
                    "task upsert",
                )
                logger.debug(f"Upserted {len(rows)} remote task row(s)")

    def save_activity(self, log, *, added=(), cleared=False) -> None:
        user_id = self._require_user()
        if cleared:
            self._execute(
                self.client.table(self.ACTIVITY_TABLE).delete().eq("user_id", user_id),
                "activity clear",
            )
        if added:
            self._execute(
                self.client.table(self.ACTIVITY_TABLE).insert(
                    [entry_to_row(e, user_id) for e in added]
                ),
                "activity insert",
            )
            self._trim_activity(user_id)

    def _trim_activity(self, user_id: str) -> None:
        """Drop this user's rows beyond the newest `activity_limit`"""
        res = self._execute(
            self.client.table(self.ACTIVITY_TABLE)
            .select("id")
            .eq("user_id", user_id)
            .order("timestamp", desc=True)
            .range(self.activity_limit, self.activity_limit + TRIM_BATCH - 1),
            "activity trim",
        )
        stale = [row["id"] for row in res.data or []]
        if stale:
            self._execute(
                self.client.table(self.ACTIVITY_TABLE)
                .delete()
                .eq("user_id", user_id)
                .in_("id", stale),
                "activity trim",
            )
            logger.debug(f"Trimmed {len(stale)} remote activity row(s)")
