"""Per-project rollups, always recomputed from the tasks."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Optional

from ..utils import _now, round_half_up
from .context import ActorContext
from .model import Project, RESOLVED_STATUSES, TaskStatus
from .store import TaskStore


@dataclass
class ProjectStats:
    project_id: str
    total: int = 0
    completed: int = 0
    in_progress: int = 0
    pending: int = 0
    progress_pct: int = 0
    timeline_pct: int = 0
    days_remaining: Optional[int] = None
    schedule_label: str = "No end date set"
    by_status: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def timeline_pct(start: Optional[date], end: Optional[date], today: date) -> int:
    """Share of the project's calendar window that has elapsed."""
    if start is None or end is None:
        return 0
    if today < start:
        return 0
    if today > end:
        return 100
    total_days = (end - start).days
    if total_days <= 0:
        return 100
    return round_half_up((today - start).days / total_days * 100)


def schedule_label(end: Optional[date], today: date) -> str:
    if end is None:
        return "No end date set"
    diff = (end - today).days
    if diff < 0:
        return f"{abs(diff)} days overdue"
    if diff == 0:
        return "Due today"
    if diff == 1:
        return "1 day remaining"
    return f"{diff} days remaining"


class ProjectAggregator:
    """Read-only consumer of the store; never writes statistics back."""

    def __init__(self, store: TaskStore, clock: Callable[[], datetime] = _now) -> None:
        self.store = store
        self._clock = clock

    def stats_for(self, ctx: ActorContext, project_id: str, today: Optional[date] = None) -> ProjectStats:
        today = today or self._clock().date()
        with self.store.transaction() as tx:
            project = tx.require_project(project_id, ctx.organization_id)
            tasks = tx.find_tasks(organization_id=ctx.organization_id, project_id=project_id)
        return self._compute(project, [t.status for t in tasks], today)

    @staticmethod
    def _compute(project: Project, statuses: list[TaskStatus], today: date) -> ProjectStats:
        by_status = {s.value: 0 for s in TaskStatus}
        for status in statuses:
            by_status[status.value] += 1
        total = len(statuses)
        completed = sum(1 for s in statuses if s in RESOLVED_STATUSES)
        return ProjectStats(
            project_id=project.id,
            total=total,
            completed=completed,
            in_progress=by_status[TaskStatus.IN_PROGRESS.value],
            pending=by_status[TaskStatus.PENDING.value],
            progress_pct=round_half_up(completed / total * 100) if total else 0,
            timeline_pct=timeline_pct(project.start_date, project.end_date, today),
            days_remaining=(project.end_date - today).days if project.end_date else None,
            schedule_label=schedule_label(project.end_date, today),
            by_status=by_status,
        )
