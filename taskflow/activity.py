"""
TaskFlow - Activity Logger
==========================
Bounded, most-recent-first history of task mutations.

Only the TaskManager records entries. Past entries are never edited or
removed one by one; the log is either aged out by the size cap or cleared.
"""

import logging
from datetime import datetime
from typing import Callable, Iterable, List, Optional

from .schema import ActivityAction, ActivityEntry, utcnow

logger = logging.getLogger(__name__)

DEFAULT_ACTIVITY_LIMIT = 200


class ActivityLog:
    """Append-only ring of ActivityEntry, newest first"""

    def __init__(
        self,
        entries: Optional[Iterable[ActivityEntry]] = None,
        limit: int = DEFAULT_ACTIVITY_LIMIT,
        clock: Callable[[], datetime] = utcnow,
    ):
        if limit < 1:
            raise ValueError("activity limit must be positive")
        self.limit = limit
        self._clock = clock
        self._entries: List[ActivityEntry] = list(entries or [])[:limit]

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(list(self._entries))

    @property
    def entries(self) -> List[ActivityEntry]:
        return list(self._entries)

    def record(
        self,
        task_id: str,
        task_title: str,
        action: ActivityAction,
        detail: Optional[str] = None,
    ) -> ActivityEntry:
        """Insert a new entry at the head and drop anything past the cap"""
        entry = ActivityEntry(
            task_id=task_id,
            task_title=task_title,
            action=action,
            detail=detail,
            timestamp=self._clock(),
        )
        self._entries.insert(0, entry)
        del self._entries[self.limit:]
        logger.debug(f"Activity: {action.value} {task_title!r} ({task_id})")
        return entry

    def replace(self, entries: Iterable[ActivityEntry]) -> None:
        """Swap the whole history (snapshot import); newest first, capped"""
        ordered = sorted(entries, key=lambda e: e.timestamp, reverse=True)
        self._entries = ordered[:self.limit]

    def clear(self) -> None:
        self._entries.clear()
