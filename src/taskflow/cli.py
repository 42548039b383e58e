from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path
from typing import Any, Callable, Optional

from loguru import logger
from rich.console import Console
from rich.table import Table

from .config import VALID_LOG_LEVELS, get_log_level, load_engine_config
from .service import WorkflowService
from .utils import _parse_iso
from .workflow.context import ActorContext
from .workflow.engine import STATUS_COLORS, status_label
from .workflow.errors import WorkflowError
from .workflow.model import RecurringFrequency, TaskPriority, TaskStatus


def _configure_logging(level: str = "INFO") -> None:
    """Configure loguru logger with the specified level."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{module}</cyan>:<cyan>{line}</cyan> - "
            "{message}"
        ),
    )


def _resolve_project_dir(project_dir: Optional[str]) -> Path:
    return Path(project_dir).expanduser().resolve() if project_dir else Path.cwd().resolve()


def _ctx(args: argparse.Namespace) -> tuple[WorkflowService, ActorContext]:
    service = WorkflowService.for_project_dir(_resolve_project_dir(args.project_dir))
    return service, ActorContext(actor_id=args.actor, organization_id=args.org)


def _emit(payload: dict[str, Any]) -> None:
    sys.stdout.write(json.dumps(payload, indent=2, default=str) + '\n')


def _task_table(tasks: list[dict[str, Any]]) -> None:
    table = Table(title="Tasks", show_header=True)
    table.add_column("ID", style="cyan")
    table.add_column("Title")
    table.add_column("Status", style="bold")
    table.add_column("Priority")
    table.add_column("Assigned")
    table.add_column("Due")
    for task in tasks:
        color = STATUS_COLORS[TaskStatus(task['status'])]
        table.add_row(
            task['id'],
            task['title'],
            f"[{color}]{status_label(task['status'])}[/{color}]",
            task['priority'],
            task.get('assigned_to') or '',
            task.get('due_date') or '',
        )
    Console().print(table)


def _task_create(args: argparse.Namespace) -> int:
    service, ctx = _ctx(args)
    fields: dict[str, Any] = {
        'title': args.title,
        'description': args.description or '',
        'priority': args.priority,
        'project_id': args.project_id,
        'assigned_to': args.assigned_to,
        'start_date': args.start_date,
        'due_date': args.due_date,
        'budget_hours': args.budget_hours,
        'time_tracking_enabled': args.time_tracking,
        'is_billable': args.billable,
    }
    if args.recurring:
        fields.update(is_recurring=True, recurring_frequency=args.recurring, recurring_ends_on=args.recurring_ends_on)
    result = service.create_task(ctx, fields)
    _emit({'task': result.value.to_dict(), 'warnings': result.warnings})
    return 0


def _task_list(args: argparse.Namespace) -> int:
    service, ctx = _ctx(args)
    tasks = service.list_tasks(
        ctx,
        project_id=args.project_id,
        assignee=args.assignee,
        status=args.status,
        search=args.search,
    )
    data = [task.to_dict() for task in tasks]
    if args.table:
        _task_table(data)
    else:
        _emit({'tasks': data, 'total': len(data)})
    return 0


def _task_show(args: argparse.Namespace) -> int:
    service, ctx = _ctx(args)
    task = service.get_task(ctx, args.task_id)
    _emit({'task': task.to_dict(), 'time': service.time_summary(ctx, args.task_id)})
    return 0


def _task_transition(args: argparse.Namespace) -> int:
    service, ctx = _ctx(args)
    task = service.transition_status(
        ctx, args.task_id, args.status, reason=args.reason, expected_version=args.expected_version
    )
    _emit({'task': task.to_dict()})
    return 0


def _task_history(args: argparse.Namespace) -> int:
    service, ctx = _ctx(args)
    entries = [entry.to_dict() for entry in service.get_history(ctx, args.task_id)]
    if not args.table:
        _emit({'history': entries})
        return 0
    table = Table(title=f"History: {args.task_id}", show_header=True)
    table.add_column("When", style="dim")
    table.add_column("Actor", style="cyan")
    table.add_column("Action", style="bold")
    table.add_column("Description")
    for entry in entries:
        table.add_row(entry['timestamp'], entry['actor'], entry['action'], entry['description'])
    Console().print(table)
    return 0


def _project_create(args: argparse.Namespace) -> int:
    service, ctx = _ctx(args)
    project = service.create_project(
        ctx,
        args.name,
        description=args.description or '',
        start_date=args.start_date,
        end_date=args.end_date,
    )
    _emit({'project': project.to_dict()})
    return 0


def _project_stats(args: argparse.Namespace) -> int:
    service, ctx = _ctx(args)
    stats = service.get_stats(ctx, args.project_id)
    if not args.table:
        _emit({'stats': stats.to_dict()})
        return 0
    table = Table(show_header=False, box=None)
    table.add_row("Tasks:", str(stats.total))
    table.add_row("Completed:", str(stats.completed))
    table.add_row("In progress:", str(stats.in_progress))
    table.add_row("Pending:", str(stats.pending))
    table.add_row("Progress:", f"{stats.progress_pct}%")
    table.add_row("Timeline:", f"{stats.timeline_pct}%")
    table.add_row("Schedule:", stats.schedule_label)
    console = Console()
    console.print(f"[bold]Project: {stats.project_id}[/bold]")
    console.print(table)
    return 0


def _member_add(args: argparse.Namespace) -> int:
    service, ctx = _ctx(args)
    member = service.add_member(ctx, args.name, args.email, title=args.title, member_id=args.id)
    _emit({'member': member.to_dict()})
    return 0


def _recurrence_tick(args: argparse.Namespace) -> int:
    service, ctx = _ctx(args)
    now = None
    if args.now:
        now = _parse_iso(args.now)
        if now is None:
            sys.stderr.write(f"Invalid --now timestamp: {args.now}\n")
            return 1
    spawned = service.recurrence_tick(ctx, now)
    _emit({'spawned': [task.to_dict() for task in spawned]})
    return 0


def _server(args: argparse.Namespace) -> int:
    try:
        import uvicorn
    except ImportError:
        sys.stderr.write("Install server extras: pip install 'taskflow[server]'\n")
        return 1

    from .server import create_app

    app = create_app(project_dir=_resolve_project_dir(args.project_dir))
    uvicorn.run(app, host=args.host, port=args.port, reload=args.reload)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Taskflow task lifecycle and workflow engine')
    parser.add_argument('--project-dir', default=None, help='Target project directory (default: current working directory)')
    parser.add_argument('--actor', default=os.environ.get('TASKFLOW_ACTOR', 'cli'), help='Acting team member ID')
    parser.add_argument('--org', default=os.environ.get('TASKFLOW_ORG', 'default'), help='Organization scope')
    parser.add_argument('--log-level', default=None, type=str.upper, choices=sorted(VALID_LOG_LEVELS))
    subparsers = parser.add_subparsers(dest='command', required=True)

    server = subparsers.add_parser('server', help='Start the web server')
    server.add_argument('--host', default='127.0.0.1')
    server.add_argument('--port', default=8000, type=int)
    server.add_argument('--reload', action='store_true')
    server.set_defaults(func=_server)

    task = subparsers.add_parser('task', help='Manage tasks')
    task_sub = task.add_subparsers(dest='task_cmd', required=True)
    tcreate = task_sub.add_parser('create', help='Create a task')
    tcreate.add_argument('title')
    tcreate.add_argument('--description', default='')
    tcreate.add_argument('--priority', default=TaskPriority.MEDIUM.value, choices=[p.value for p in TaskPriority])
    tcreate.add_argument('--project-id', default=None)
    tcreate.add_argument('--assigned-to', default=None)
    tcreate.add_argument('--start-date', default=None)
    tcreate.add_argument('--due-date', default=None)
    tcreate.add_argument('--budget-hours', default=None, type=float)
    tcreate.add_argument('--time-tracking', action='store_true')
    tcreate.add_argument('--billable', action='store_true')
    tcreate.add_argument('--recurring', default=None, choices=[f.value for f in RecurringFrequency])
    tcreate.add_argument('--recurring-ends-on', default=None)
    tcreate.set_defaults(func=_task_create)
    tlist = task_sub.add_parser('list', help='List tasks')
    tlist.add_argument('--status', default=None, choices=[s.value for s in TaskStatus])
    tlist.add_argument('--project-id', default=None)
    tlist.add_argument('--assignee', default=None)
    tlist.add_argument('--search', default=None)
    tlist.add_argument('--table', action='store_true')
    tlist.set_defaults(func=_task_list)
    tshow = task_sub.add_parser('show', help='Show a task')
    tshow.add_argument('task_id')
    tshow.set_defaults(func=_task_show)
    ttransition = task_sub.add_parser('transition', help='Change task status')
    ttransition.add_argument('task_id')
    ttransition.add_argument('status', choices=[s.value for s in TaskStatus])
    ttransition.add_argument('--reason', default=None)
    ttransition.add_argument('--expected-version', default=None, type=int)
    ttransition.set_defaults(func=_task_transition)
    thistory = task_sub.add_parser('history', help='Show task history')
    thistory.add_argument('task_id')
    thistory.add_argument('--table', action='store_true')
    thistory.set_defaults(func=_task_history)

    project = subparsers.add_parser('project', help='Manage projects')
    project_sub = project.add_subparsers(dest='project_cmd', required=True)
    pcreate = project_sub.add_parser('create', help='Create a project')
    pcreate.add_argument('name')
    pcreate.add_argument('--description', default='')
    pcreate.add_argument('--start-date', default=None)
    pcreate.add_argument('--end-date', default=None)
    pcreate.set_defaults(func=_project_create)
    pstats = project_sub.add_parser('stats', help='Show project statistics')
    pstats.add_argument('project_id')
    pstats.add_argument('--table', action='store_true')
    pstats.set_defaults(func=_project_stats)

    member = subparsers.add_parser('member', help='Manage team members')
    member_sub = member.add_subparsers(dest='member_cmd', required=True)
    madd = member_sub.add_parser('add', help='Add a team member')
    madd.add_argument('name')
    madd.add_argument('email')
    madd.add_argument('--title', default=None)
    madd.add_argument('--id', default=None)
    madd.set_defaults(func=_member_add)

    recurrence = subparsers.add_parser('recurrence', help='Recurring task maintenance')
    recurrence_sub = recurrence.add_subparsers(dest='recurrence_cmd', required=True)
    rtick = recurrence_sub.add_parser('tick', help='Spawn missing successors of finished recurring tasks')
    rtick.add_argument('--now', default=None, help='ISO-8601 timestamp to use as the current time')
    rtick.set_defaults(func=_recurrence_tick)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    handler: Optional[Callable[[argparse.Namespace], int]] = getattr(args, 'func', None)
    if handler is None:
        parser.print_help()
        return 1

    level = args.log_level
    if level is None:
        config, _ = load_engine_config(_resolve_project_dir(args.project_dir))
        level = get_log_level(config)
    _configure_logging(level)

    try:
        return int(handler(args) or 0)
    except WorkflowError as exc:
        sys.stderr.write(json.dumps({'error': exc.to_dict()}, default=str) + '\n')
        return 1


def entrypoint() -> None:
    sys.exit(main())
