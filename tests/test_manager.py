# tests/test_manager.py

from __future__ import annotations

import json
from datetime import datetime, timedelta
from pathlib import Path

import pytest
from pydantic import ValidationError

from taskflow.errors import SnapshotError
from taskflow.manager import ImportPolicy, TaskManager
from taskflow.persistence import LocalJsonBackend, MemoryBackend
from taskflow.schema import ActivityAction, TaskPriority, TaskStatus, TaskUpdate

from .fakes import Clock, FlakyBackend


def _ids(manager: TaskManager) -> list[str]:
    return [t.id for t in manager.tasks]


def _check_timestamps(manager: TaskManager) -> None:
    for task in manager.tasks:
        assert task.updated_at >= task.created_at


# ---- create / update / delete ----


def test_create_prepends_and_logs(manager: TaskManager, clock: Clock) -> None:
    first = manager.create_task(title="First")
    clock.advance()
    second = manager.create_task(title="Second", priority="high", tags=["a", "a"])

    assert _ids(manager) == [second.id, first.id]
    assert second.priority is TaskPriority.HIGH
    assert second.tags == ["a"]
    assert second.created_at == second.updated_at == clock.now
    assert [e.action for e in manager.activity] == [ActivityAction.CREATED, ActivityAction.CREATED]
    assert manager.activity[0].task_title == "Second"


def test_create_rejects_blank_title(manager: TaskManager) -> None:
    with pytest.raises(ValidationError):
        manager.create_task(title="  ")
    assert manager.tasks == []
    assert manager.activity == []


def test_update_merges_fields_and_touches(manager: TaskManager, clock: Clock) -> None:
    task = manager.create_task(title="Draft", description="v1")
    clock.advance(60)

    updated = manager.update_task(task.id, description="v2", tags=["docs"])
    assert updated is task
    assert task.title == "Draft"
    assert task.description == "v2"
    assert task.tags == ["docs"]
    assert task.updated_at == clock.now
    assert task.created_at < task.updated_at
    assert manager.activity[0].action == ActivityAction.UPDATED
    assert manager.activity[0].detail is None


def test_update_status_logs_transition(manager: TaskManager, clock: Clock) -> None:
    task = manager.create_task(title="Report")

    manager.update_task(task.id, status="in-progress")
    entry = manager.activity[0]
    assert entry.action == ActivityAction.STATUS_CHANGED
    assert entry.detail == "pending → in-progress"

    manager.update_task(task.id, TaskUpdate(status=TaskStatus.COMPLETED))
    entry = manager.activity[0]
    assert entry.action == ActivityAction.COMPLETED
    assert entry.detail == "in-progress → completed"

    # same status again is a plain update
    manager.update_task(task.id, status="completed")
    assert manager.activity[0].action == ActivityAction.UPDATED


def test_update_unknown_id_is_silent(manager: TaskManager) -> None:
    manager.create_task(title="Only")
    before = manager.activity

    assert manager.update_task("nope", title="Ghost") is None
    assert manager.activity == before


def test_update_can_clear_due_date(manager: TaskManager, clock: Clock) -> None:
    task = manager.create_task(title="Pay rent", due_date=clock.now + timedelta(days=3))
    manager.update_task(task.id, due_date=None)
    assert task.due_date is None


def test_cycle_status(manager: TaskManager) -> None:
    task = manager.create_task(title="Loop")
    assert manager.cycle_status(task.id).status is TaskStatus.IN_PROGRESS
    assert manager.cycle_status(task.id).status is TaskStatus.COMPLETED
    assert manager.activity[0].action == ActivityAction.COMPLETED
    assert manager.cycle_status(task.id).status is TaskStatus.PENDING
    assert manager.cycle_status("missing") is None


def test_create_then_delete_restores_collection(manager: TaskManager) -> None:
    manager.create_task(title="Keep")
    before = [t.model_copy(deep=True) for t in manager.tasks]
    activity_before = len(manager.activity)

    temp = manager.create_task(title="Temp")
    assert manager.delete_task(temp.id)

    assert manager.tasks == before
    added = manager.activity[: len(manager.activity) - activity_before]
    assert [e.action for e in added] == [ActivityAction.DELETED, ActivityAction.CREATED]
    assert added[0].task_title == "Temp"
    assert added[0].task_id == temp.id


def test_delete_is_idempotent(manager: TaskManager) -> None:
    task = manager.create_task(title="Once")
    assert manager.delete_task(task.id)
    count = len(manager.activity)
    assert not manager.delete_task(task.id)
    assert len(manager.activity) == count


def test_delete_moves_later_tasks_up(clock: Clock) -> None:
    backend = FlakyBackend()
    manager = TaskManager(backend, clock=clock)
    manager.load()
    c = manager.create_task(title="C")
    b = manager.create_task(title="B")
    manager.create_task(title="A")

    manager.delete_task(b.id)
    assert backend.calls[-1] == {"changed": [c.id], "deleted": [b.id]}


def test_naive_clock_is_read_as_utc(backend: MemoryBackend) -> None:
    manager = TaskManager(backend, clock=lambda: datetime(2026, 10, 19, 9, 0))
    manager.load()
    task = manager.create_task(title="Naive", due_date=datetime(2026, 10, 18))
    manager.update_task(task.id, title="Still naive")

    assert task.updated_at.tzinfo is not None
    assert task.updated_at >= task.created_at
    assert manager.compute_stats().overdue == 1


# ---- subtasks ----


def test_subtask_lifecycle(manager: TaskManager, clock: Clock) -> None:
    task = manager.create_task(title="Move house")
    clock.advance()
    sub = manager.add_subtask(task.id, " Book van ")
    assert sub.title == "Book van"
    assert sub.completed is False
    assert task.subtasks == [sub]
    assert task.updated_at == clock.now

    clock.advance()
    assert manager.delete_subtask(task.id, sub.id)
    assert task.subtasks == []
    assert task.updated_at == clock.now

    assert manager.add_subtask("missing", "x") is None
    assert not manager.delete_subtask(task.id, sub.id)
    _check_timestamps(manager)


def test_toggle_subtask_twice(manager: TaskManager) -> None:
    task = manager.create_task(title="Trip", subtasks=[{"title": "Pack"}])
    sub = task.subtasks[0]

    manager.toggle_subtask(task.id, sub.id)
    assert sub.completed is True
    manager.toggle_subtask(task.id, sub.id)
    assert sub.completed is False

    first, second = manager.activity[1], manager.activity[0]
    assert first.action == second.action == ActivityAction.SUBTASK_COMPLETED
    assert first.detail == 'Checked "Pack"'
    assert second.detail == 'Unchecked "Pack"'


def test_toggle_unknown_subtask_is_noop(manager: TaskManager) -> None:
    task = manager.create_task(title="Trip")
    count = len(manager.activity)
    assert manager.toggle_subtask(task.id, "nope") is None
    assert manager.toggle_subtask("nope", "nope") is None
    assert len(manager.activity) == count


# ---- reorder ----


def test_reorder_moves_to_target_position(manager: TaskManager) -> None:
    c = manager.create_task(title="C")
    b = manager.create_task(title="B")
    a = manager.create_task(title="A")
    assert _ids(manager) == [a.id, b.id, c.id]

    assert manager.reorder_tasks(a.id, c.id)
    assert _ids(manager) == [b.id, c.id, a.id]

    assert manager.reorder_tasks(a.id, b.id)
    assert _ids(manager) == [a.id, b.id, c.id]


def test_reorder_round_trip(manager: TaskManager) -> None:
    for title in "EDCBA":
        manager.create_task(title=title)
    a, e = manager.tasks[0], manager.tasks[4]

    manager.reorder_tasks(a.id, e.id)
    manager.reorder_tasks(e.id, a.id)

    order = _ids(manager)
    assert order.index(a.id) < order.index(e.id)


def test_reorder_missing_id_is_noop(manager: TaskManager) -> None:
    a = manager.create_task(title="A")
    manager.create_task(title="B")
    before = _ids(manager)
    assert not manager.reorder_tasks(a.id, "missing")
    assert not manager.reorder_tasks("missing", a.id)
    assert not manager.reorder_tasks(a.id, a.id)
    assert _ids(manager) == before


def test_reorder_survives_reload(tmp_path: Path, clock: Clock) -> None:
    manager = TaskManager(LocalJsonBackend(tmp_path), clock=clock)
    manager.load()
    for title in "CBA":
        manager.create_task(title=title)
    manager.reorder_tasks(manager.tasks[0].id, manager.tasks[2].id)
    expected = _ids(manager)

    reloaded = TaskManager(LocalJsonBackend(tmp_path), clock=clock)
    assert reloaded.load()
    assert _ids(reloaded) == expected


# ---- queries ----


def test_stats_on_empty_collection(manager: TaskManager) -> None:
    stats = manager.compute_stats()
    assert stats.total == 0
    assert stats.completion_rate == 0


def test_stats_counts(manager: TaskManager, clock: Clock) -> None:
    manager.create_task(title="Late", due_date=clock.now - timedelta(days=1))
    manager.create_task(title="Late but done", status="completed", due_date=clock.now - timedelta(days=1))
    manager.create_task(title="Busy", status="in-progress", due_date=clock.now + timedelta(days=1))

    stats = manager.compute_stats()
    assert (stats.total, stats.pending, stats.in_progress, stats.completed) == (3, 1, 1, 1)
    assert stats.overdue == 1
    assert stats.completion_rate == 33


def test_completion_rate_rounds_half_up(manager: TaskManager) -> None:
    manager.create_task(title="done", status="completed")
    for i in range(7):
        manager.create_task(title=f"open {i}")
    assert manager.compute_stats().completion_rate == 13


def test_scenario_filter_and_search(manager: TaskManager) -> None:
    t1 = manager.create_task(title="Buy milk", priority="low", category="personal")
    t2 = manager.create_task(title="Ship release", priority="high", category="work")

    assert manager.filter(category="work") == [t2]
    assert manager.filter(search="milk") == [t1]
    assert manager.compute_stats().total == 2


def test_category_counts(manager: TaskManager) -> None:
    manager.create_task(title="a", category="work")
    manager.create_task(title="b", category="work")
    manager.create_task(title="c", category="garden")
    counts = manager.category_counts()
    assert counts["all"] == 3
    assert counts["work"] == 2
    assert counts["personal"] == 0
    assert counts["garden"] == 1


def test_status_report(manager: TaskManager) -> None:
    manager.create_task(title="a", status="completed")
    manager.create_task(title="b")
    report = manager.get_status_report()
    assert "50%" in report
    assert "Work" in report


def test_invariant_holds_after_every_mutation(manager: TaskManager, clock: Clock) -> None:
    task = manager.create_task(title="x", subtasks=[{"title": "s"}])
    _check_timestamps(manager)
    # clock going backwards must not break updatedAt >= createdAt
    clock.advance(-3600)
    manager.update_task(task.id, title="y")
    _check_timestamps(manager)
    manager.toggle_subtask(task.id, task.subtasks[0].id)
    _check_timestamps(manager)


# ---- activity ----


def test_activity_keeps_200_most_recent(manager: TaskManager, clock: Clock) -> None:
    task = manager.create_task(title="busy")
    for i in range(204):
        clock.advance()
        manager.update_task(task.id, description=str(i))

    activity = manager.activity
    assert len(activity) == 200
    assert activity[0].timestamp == clock.now
    assert activity[-1].action == ActivityAction.UPDATED
    # the created entry and the first four updates aged out
    assert ActivityAction.CREATED not in {e.action for e in activity}
    stamps = [e.timestamp for e in activity]
    assert stamps == sorted(stamps, reverse=True)


def test_clear_activity(manager: TaskManager, backend: MemoryBackend) -> None:
    manager.create_task(title="x")
    manager.clear_activity()
    assert manager.activity == []
    assert backend.activity == []


# ---- persistence & sync failures ----


def test_mutations_are_saved(manager: TaskManager, backend: MemoryBackend) -> None:
    task = manager.create_task(title="Saved")
    manager.add_subtask(task.id, "child")
    assert [t.id for t in backend.tasks] == [task.id]
    assert backend.tasks[0].subtasks[0].title == "child"
    assert backend.activity[0].action == ActivityAction.CREATED


def test_backend_failure_is_recorded_not_rolled_back(clock: Clock) -> None:
    backend = FlakyBackend()
    manager = TaskManager(backend, clock=clock)
    manager.load()

    backend.failing = True
    task = manager.create_task(title="Offline")
    assert manager.tasks == [task]
    assert not manager.is_confirmed(task.id)
    assert manager.sync_failures[0].operation == "create"
    assert task.id in manager.sync_failures[0].task_ids

    backend.failing = False
    manager.update_task(task.id, title="Online")
    assert manager.is_confirmed(task.id)

    failures = manager.drain_sync_failures()
    assert len(failures) == 1
    assert manager.sync_failures == []


def test_load_drops_duplicate_ids(clock: Clock) -> None:
    seed = TaskManager(MemoryBackend(), clock=clock)
    task = seed.create_task(title="dup")
    backend = MemoryBackend(tasks=[task, task])

    manager = TaskManager(backend, clock=clock)
    assert manager.load()
    assert _ids(manager) == [task.id]


# ---- export / import ----


def test_export_import_round_trip(manager: TaskManager, clock: Clock) -> None:
    t = manager.create_task(title="Ship", category="work", tags=["release"],
                            due_date=clock.now + timedelta(days=2), recurrence="weekly")
    manager.add_subtask(t.id, "Tag build")
    manager.create_task(title="Rest", status="completed")
    tasks_before = [x.to_json_dict() for x in manager.tasks]
    activity_before = [e.to_json_dict() for e in manager.activity]

    document = manager.export_snapshot()
    assert set(document) == {"tasks", "activity", "exportedAt"}

    summary = manager.import_snapshot(json.loads(json.dumps(document)))
    assert summary.policy is ImportPolicy.REPLACE
    assert summary.tasks == 2
    assert [x.to_json_dict() for x in manager.tasks] == tasks_before
    assert [e.to_json_dict() for e in manager.activity] == activity_before


def test_import_replace_discards_existing(manager: TaskManager, backend: MemoryBackend) -> None:
    manager.create_task(title="Old")
    manager.import_snapshot({"tasks": [{"id": "n1", "title": "New"}], "activity": []})
    assert _ids(manager) == ["n1"]
    assert manager.activity == []
    assert [t.id for t in backend.tasks] == ["n1"]


def test_import_applies_defaults(manager: TaskManager, clock: Clock) -> None:
    manager.import_snapshot({"tasks": [{"title": "Bare"}]})
    task = manager.tasks[0]
    # a backup without an activity array restores an empty log
    assert manager.activity == []
    assert task.id
    assert task.priority is TaskPriority.MEDIUM
    assert task.status is TaskStatus.PENDING
    assert task.category == "personal"
    assert task.tags == [] and task.subtasks == []
    assert task.recurrence.value == "none"
    assert task.created_at == task.updated_at == clock.now


@pytest.mark.parametrize(
    "document",
    [
        "not json {",
        "[1, 2, 3]",
        {"tasks": "nope"},
        {"tasks": [{"title": "ok"}, {"description": "no title"}]},
        {"tasks": [{"title": "bad", "priority": "urgent"}]},
        {"tasks": [], "activity": [{"action": "created"}]},
        {},
        {"settings": {"theme": "dark"}},
        {"activity": []},
    ],
)
def test_malformed_import_leaves_state_untouched(manager: TaskManager, document) -> None:
    manager.create_task(title="Precious")
    tasks_before = [t.to_json_dict() for t in manager.tasks]
    activity_before = manager.activity

    with pytest.raises(SnapshotError):
        manager.import_snapshot(document)

    assert [t.to_json_dict() for t in manager.tasks] == tasks_before
    assert manager.activity == activity_before


def test_import_append_keeps_ids_unique(backend: MemoryBackend, clock: Clock) -> None:
    manager = TaskManager(backend, clock=clock, import_policy=ImportPolicy.APPEND)
    manager.load()
    existing = manager.create_task(title="Mine")
    document = manager.export_snapshot()

    summary = manager.import_snapshot(document)
    assert summary.policy is ImportPolicy.APPEND
    assert len(manager.tasks) == 2
    assert manager.tasks[0] is existing
    assert manager.tasks[1].title == "Mine"
    assert len(set(_ids(manager))) == 2
    # the same activity entries are not duplicated
    assert len(manager.activity) == 1


def test_export_and_import_file(manager: TaskManager, tmp_path: Path, clock: Clock) -> None:
    manager.create_task(title="Backup me")
    path = manager.export_to_file(tmp_path / "backups")
    assert path.name == f"taskflow-backup-{clock.now.date().isoformat()}.json"

    other = TaskManager(MemoryBackend(), clock=clock)
    other.import_file(path)
    assert [t.title for t in other.tasks] == ["Backup me"]

    with pytest.raises(SnapshotError):
        other.import_file(tmp_path / "missing.json")
