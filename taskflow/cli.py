#!/usr/bin/env python3
"""
TaskFlow - CLI Interface
========================
Command-line front end for the personal task tracker.

Usage:
    taskflow add "Buy milk" -p low -c personal --due 2026-10-21
    taskflow list --category work --search release
    taskflow status <id>                 Cycle pending → in-progress → completed
    taskflow subtask add <id> "Call bank"
    taskflow move <id> <target-id>
    taskflow stats
    taskflow calendar --month 2026-10
    taskflow export --out backups/
    taskflow import backups/taskflow-backup-2026-10-19.json
"""

import argparse
import json
import logging
import sys
from datetime import date, datetime, timezone
from typing import List, Optional

from taskflow.config import Settings, load_settings
from taskflow.errors import TaskflowError
from taskflow.filters import TaskFilter, calendar_month
from taskflow.manager import ImportPolicy, TaskManager
from taskflow.persistence import LocalJsonBackend, StorageBackend, SupabaseBackend
from taskflow.schema import (
    DEFAULT_CATEGORIES,
    Recurrence,
    Task,
    TaskPriority,
    TaskStatus,
    TaskUpdate,
)

STATUS_ICONS = {
    TaskStatus.PENDING: "⬜",
    TaskStatus.IN_PROGRESS: "🔵",
    TaskStatus.COMPLETED: "✅",
}

PRIORITY_ICONS = {
    TaskPriority.HIGH: "🔴",
    TaskPriority.MEDIUM: "🟡",
    TaskPriority.LOW: "🟢",
}

PRIORITIES = [p.value for p in TaskPriority]
STATUSES = [s.value for s in TaskStatus]
RECURRENCES = [r.value for r in Recurrence]


def parse_due(value: str) -> datetime:
    """YYYY-MM-DD or full ISO timestamp; naive values are taken as UTC"""
    try:
        dt = datetime.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid date: {value!r}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def parse_month(value: str) -> date:
    try:
        return datetime.strptime(value, "%Y-%m").date()
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid month (YYYY-MM): {value!r}")


def build_backend(settings: Settings) -> StorageBackend:
    if settings.backend == "supabase":
        if not settings.supabase_url or not settings.supabase_key:
            raise TaskflowError("SUPABASE_URL and SUPABASE_KEY are required for the supabase backend")
        from supabase import create_client

        client = create_client(settings.supabase_url, settings.supabase_key)
        return SupabaseBackend(client, user_id=settings.user_id)
    if settings.backend != "local":
        raise TaskflowError(f"Unknown backend: {settings.backend}")
    return LocalJsonBackend(settings.data_dir)


def format_task(task: Task) -> str:
    icon = STATUS_ICONS.get(task.status, "❓")
    parts = [f"{icon} [{task.id}] {PRIORITY_ICONS.get(task.priority, '')} {task.title}"]
    meta = [task.category]
    if task.due_date:
        due = task.due_date.strftime("%b %d")
        if task.is_overdue():
            due += " (overdue)"
        elif task.is_due_today():
            due += " (today)"
        meta.append(f"due {due}")
    done, total, _ = task.subtask_progress()
    if total:
        meta.append(f"{done}/{total} subtasks")
    if task.recurrence != Recurrence.NONE:
        meta.append(f"repeats {task.recurrence.value}")
    parts.append(f"({', '.join(meta)})")
    if task.tags:
        parts.append(" ".join(f"#{t}" for t in task.tags))
    return "  ".join(parts)


def print_task_detail(task: Task) -> None:
    print(format_task(task))
    if task.description:
        print(f"   {task.description}")
    for sub in task.subtasks:
        box = "☑" if sub.completed else "☐"
        print(f"   {box} [{sub.id}] {sub.title}")
    print(f"   Created: {task.created_at.isoformat()}  Updated: {task.updated_at.isoformat()}")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="taskflow",
        description="TaskFlow - personal task tracker",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  taskflow add "Ship release" -p high -c work -t release
  taskflow list --status in-progress
  taskflow update <id> --title "Ship 1.2"
  taskflow subtask toggle <id> <subtask-id>
  taskflow activity --clear
        """
    )
    parser.add_argument("--dir", help="Data directory for the local backend")
    parser.add_argument("--backend", choices=["local", "supabase"], help="Storage backend")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at INFO level")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # ADD command
    add_parser = subparsers.add_parser("add", help="Create a task")
    add_parser.add_argument("title", help="Task title")
    add_parser.add_argument("-d", "--description", default="", help="Description")
    add_parser.add_argument("-p", "--priority", choices=PRIORITIES, default="medium")
    add_parser.add_argument("-s", "--status", choices=STATUSES, default="pending")
    add_parser.add_argument("-c", "--category", default="personal", help="Category id")
    add_parser.add_argument("-t", "--tag", action="append", default=[], help="Tag (repeatable)")
    add_parser.add_argument("--due", type=parse_due, help="Due date (YYYY-MM-DD)")
    add_parser.add_argument("--subtask", action="append", default=[], help="Subtask title (repeatable)")
    add_parser.add_argument("-r", "--recurrence", choices=RECURRENCES, default="none")

    # LIST command
    list_parser = subparsers.add_parser("list", help="List tasks")
    list_parser.add_argument("--category", default="all")
    list_parser.add_argument("--status", choices=["all"] + STATUSES, default="all")
    list_parser.add_argument("--priority", choices=["all"] + PRIORITIES, default="all")
    list_parser.add_argument("--search", default="", help="Match title, description or tags")
    list_parser.add_argument("--json", action="store_true", help="Output as JSON")

    # SHOW command
    show_parser = subparsers.add_parser("show", help="Show a task")
    show_parser.add_argument("task_id")
    show_parser.add_argument("--json", action="store_true", help="Output as JSON")

    # UPDATE command
    update_parser = subparsers.add_parser("update", help="Edit task fields")
    update_parser.add_argument("task_id")
    update_parser.add_argument("--title")
    update_parser.add_argument("-d", "--description")
    update_parser.add_argument("-p", "--priority", choices=PRIORITIES)
    update_parser.add_argument("-s", "--status", choices=STATUSES)
    update_parser.add_argument("-c", "--category")
    update_parser.add_argument("-t", "--tag", action="append", help="Replace tags (repeatable)")
    update_parser.add_argument("--due", type=parse_due)
    update_parser.add_argument("--no-due", action="store_true", help="Clear the due date")
    update_parser.add_argument("-r", "--recurrence", choices=RECURRENCES)

    # STATUS command
    status_parser = subparsers.add_parser("status", help="Set or cycle task status")
    status_parser.add_argument("task_id")
    status_parser.add_argument("status", nargs="?", choices=STATUSES, help="Omit to cycle")

    # DELETE command
    delete_parser = subparsers.add_parser("delete", help="Delete a task")
    delete_parser.add_argument("task_id")

    # MOVE command
    move_parser = subparsers.add_parser("move", help="Move a task to another task's position")
    move_parser.add_argument("task_id")
    move_parser.add_argument("target_id")

    # SUBTASK command
    subtask_parser = subparsers.add_parser("subtask", help="Manage subtasks")
    subtask_sub = subtask_parser.add_subparsers(dest="subtask_command")
    st_add = subtask_sub.add_parser("add", help="Append a subtask")
    st_add.add_argument("task_id")
    st_add.add_argument("title")
    st_toggle = subtask_sub.add_parser("toggle", help="Check / uncheck a subtask")
    st_toggle.add_argument("task_id")
    st_toggle.add_argument("subtask_id")
    st_delete = subtask_sub.add_parser("delete", help="Remove a subtask")
    st_delete.add_argument("task_id")
    st_delete.add_argument("subtask_id")

    # STATS command
    stats_parser = subparsers.add_parser("stats", help="Show progress statistics")
    stats_parser.add_argument("--json", action="store_true", help="Output as JSON")

    # CALENDAR command
    calendar_parser = subparsers.add_parser("calendar", help="Month view of due dates")
    calendar_parser.add_argument("--month", type=parse_month, help="YYYY-MM (default: this month)")

    # ACTIVITY command
    activity_parser = subparsers.add_parser("activity", help="Show the activity log")
    activity_parser.add_argument("--clear", action="store_true", help="Clear all entries")
    activity_parser.add_argument("-n", "--limit", type=int, default=20)
    activity_parser.add_argument("--json", action="store_true", help="Output as JSON")

    # EXPORT command
    export_parser = subparsers.add_parser("export", help="Write a JSON backup")
    export_parser.add_argument("--out", default=".", help="Output directory")

    # IMPORT command
    import_parser = subparsers.add_parser("import", help="Restore from a JSON backup")
    import_parser.add_argument("file")
    import_parser.add_argument("--policy", choices=[p.value for p in ImportPolicy])

    # CATEGORIES command
    subparsers.add_parser("categories", help="List categories with task counts")

    return parser


def run(args: argparse.Namespace, manager: TaskManager) -> int:
    if args.command == "add":
        task = manager.create_task(
            title=args.title,
            description=args.description,
            priority=args.priority,
            status=args.status,
            category=args.category,
            tags=args.tag,
            due_date=args.due,
            subtasks=[{"title": t} for t in args.subtask],
            recurrence=args.recurrence,
        )
        print(f"✅ Created: {task.title} [{task.id}]")

    elif args.command == "list":
        flt = TaskFilter(
            category=args.category,
            status=args.status,
            priority=args.priority,
            search=args.search,
        )
        tasks = manager.filter(flt)
        if args.json:
            print(json.dumps([t.to_json_dict() for t in tasks], indent=2))
        elif not tasks:
            print("No tasks found")
        else:
            for task in tasks:
                print(format_task(task))

    elif args.command == "show":
        task = manager.get_task(args.task_id)
        if not task:
            print(f"❌ Task not found: {args.task_id}")
            return 1
        if args.json:
            print(json.dumps(task.to_json_dict(), indent=2))
        else:
            print_task_detail(task)

    elif args.command == "update":
        fields = {
            "title": args.title,
            "description": args.description,
            "priority": args.priority,
            "status": args.status,
            "category": args.category,
            "tags": args.tag,
            "recurrence": args.recurrence,
        }
        fields = {k: v for k, v in fields.items() if v is not None}
        if args.no_due:
            fields["due_date"] = None
        elif args.due is not None:
            fields["due_date"] = args.due
        if not fields:
            print("Nothing to update")
            return 1
        task = manager.update_task(args.task_id, TaskUpdate(**fields))
        if not task:
            print(f"❌ Task not found: {args.task_id}")
            return 1
        print(f"✏️ Updated: {task.title}")

    elif args.command == "status":
        if args.status:
            task = manager.update_task(args.task_id, TaskUpdate(status=args.status))
        else:
            task = manager.cycle_status(args.task_id)
        if not task:
            print(f"❌ Task not found: {args.task_id}")
            return 1
        print(f"{STATUS_ICONS[task.status]} {task.title}: {task.status.value}")

    elif args.command == "delete":
        if not manager.delete_task(args.task_id):
            print(f"❌ Task not found: {args.task_id}")
            return 1
        print(f"🗑️ Deleted: {args.task_id}")

    elif args.command == "move":
        if not manager.reorder_tasks(args.task_id, args.target_id):
            print("❌ Both tasks must exist and differ")
            return 1
        print(f"↕️ Moved {args.task_id}")

    elif args.command == "subtask":
        if args.subtask_command == "add":
            sub = manager.add_subtask(args.task_id, args.title)
            if not sub:
                print(f"❌ Task not found: {args.task_id}")
                return 1
            print(f"➕ Added subtask [{sub.id}] {sub.title}")
        elif args.subtask_command == "toggle":
            sub = manager.toggle_subtask(args.task_id, args.subtask_id)
            if not sub:
                print(f"❌ Subtask not found: {args.subtask_id}")
                return 1
            print(f"{'☑' if sub.completed else '☐'} {sub.title}")
        elif args.subtask_command == "delete":
            if not manager.delete_subtask(args.task_id, args.subtask_id):
                print(f"❌ Subtask not found: {args.subtask_id}")
                return 1
            print(f"➖ Removed subtask {args.subtask_id}")
        else:
            print("Usage: taskflow subtask {add,toggle,delete} ...")
            return 1

    elif args.command == "stats":
        if args.json:
            print(json.dumps(manager.compute_stats().model_dump(), indent=2))
        else:
            print(manager.get_status_report())

    elif args.command == "calendar":
        month = args.month or date.today()
        print(month.strftime("%B %Y"))
        print("  ".join(f"{d:<9}" for d in ["Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat"]))
        for week in calendar_month(manager.tasks, month.year, month.month):
            cells = []
            for day, tasks in week:
                label = f"{day.day:>2}" if day.month == month.month else "  "
                count = f"({len(tasks)})" if tasks else ""
                cells.append(f"{label} {count:<6}")
            print("  ".join(cells))
            for day, tasks in week:
                for task in tasks[:3]:
                    print(f"    {day.isoformat()} {PRIORITY_ICONS[task.priority]} {task.title}")
                if len(tasks) > 3:
                    print(f"    {day.isoformat()} +{len(tasks) - 3} more")

    elif args.command == "activity":
        if args.clear:
            manager.clear_activity()
            print("🧹 Activity cleared")
        else:
            entries = manager.activity[:args.limit]
            if args.json:
                print(json.dumps([e.to_json_dict() for e in entries], indent=2))
            elif not entries:
                print("No activity yet")
            else:
                for entry in entries:
                    when = entry.timestamp.strftime("%b %d, %H:%M")
                    line = f"  {when}  {entry.action.value:<17} \"{entry.task_title}\""
                    if entry.detail:
                        line += f" - {entry.detail}"
                    print(line)

    elif args.command == "export":
        path = manager.export_to_file(args.out)
        print(f"💾 Exported to {path}")

    elif args.command == "import":
        policy = ImportPolicy(args.policy) if args.policy else None
        summary = manager.import_file(args.file, policy)
        print(f"📥 Imported {summary.tasks} tasks, {summary.activity} activity entries ({summary.policy.value})")

    elif args.command == "categories":
        counts = manager.category_counts()
        for category in DEFAULT_CATEGORIES:
            print(f"  {category.id:<10} {category.name:<10} {counts.get(category.id, 0)}")

    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    settings = load_settings()
    if args.dir:
        settings.data_dir = args.dir
    if args.backend:
        settings.backend = args.backend

    level = logging.INFO if args.verbose else getattr(logging, settings.log_level, logging.WARNING)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    try:
        manager = TaskManager(
            build_backend(settings),
            import_policy=ImportPolicy(settings.import_policy),
        )
        manager.load()
        code = run(args, manager)
    except (TaskflowError, ValueError) as e:
        print(f"❌ {e}")
        return 1

    failures = manager.drain_sync_failures()
    for failure in failures:
        print(f"⚠️ Not saved ({failure.operation}): {failure.error}")
    return 1 if failures else code


if __name__ == "__main__":
    sys.exit(main())
