"""
TaskFlow - Filter / Query Layer
===============================
Read-only derivations over the task collection: filtered list views and
the calendar layout. Nothing here mutates a task or is persisted.
"""

import calendar
from datetime import date, timedelta, tzinfo
from typing import Iterable, List, Optional, Tuple

from pydantic import BaseModel

from .schema import ALL_CATEGORY, Task

ANY = "all"


class TaskFilter(BaseModel):
    """Active list predicates; "all" and "" mean no constraint"""
    category: str = ALL_CATEGORY
    status: str = ANY
    priority: str = ANY
    search: str = ""

    @property
    def has_filters(self) -> bool:
        return (
            self.category != ALL_CATEGORY
            or self.status != ANY
            or self.priority != ANY
            or bool(self.search)
        )


def matches(task: Task, flt: TaskFilter) -> bool:
    if flt.category != ALL_CATEGORY and task.category != flt.category:
        return False
    if flt.status != ANY and task.status.value != flt.status:
        return False
    if flt.priority != ANY and task.priority.value != flt.priority:
        return False
    if flt.search:
        q = flt.search.lower()
        return (
            q in task.title.lower()
            or q in task.description.lower()
            or any(q in tag.lower() for tag in task.tags)
        )
    return True


def filter_tasks(tasks: Iterable[Task], flt: TaskFilter) -> List[Task]:
    """All predicates ANDed; store order is preserved"""
    return [t for t in tasks if matches(t, flt)]


# ============================================================
# CALENDAR
# ============================================================

def _due_day(task: Task, tz: Optional[tzinfo]) -> Optional[date]:
    if task.due_date is None:
        return None
    due = task.due_date.astimezone(tz) if tz is not None else task.due_date
    return due.date()


def tasks_for_day(
    tasks: Iterable[Task], day: date, tz: Optional[tzinfo] = None
) -> List[Task]:
    """Tasks due on `day`; days are UTC dates unless `tz` is given"""
    return [t for t in tasks if _due_day(t, tz) == day]


def calendar_month(
    tasks: Iterable[Task], year: int, month: int, tz: Optional[tzinfo] = None
) -> List[List[Tuple[date, List[Task]]]]:
    """
    Weeks (Sunday first) covering the month, each day paired with its tasks.

    Leading/trailing days from neighbouring months are included so every
    week has seven cells. Due dates are bucketed by UTC day unless `tz`
    is given.
    """
    tasks = list(tasks)
    first = date(year, month, 1)
    last = date(year, month, calendar.monthrange(year, month)[1])

    # date.weekday(): Monday=0 .. Sunday=6
    start = first - timedelta(days=(first.weekday() + 1) % 7)
    end = last + timedelta(days=(5 - last.weekday()) % 7)

    weeks: List[List[Tuple[date, List[Task]]]] = []
    day = start
    while day <= end:
        week = []
        for _ in range(7):
            week.append((day, tasks_for_day(tasks, day, tz)))
            day += timedelta(days=1)
        weeks.append(week)
    return weeks
