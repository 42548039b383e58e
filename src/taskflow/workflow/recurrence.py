"""Spawn the next occurrence of a recurring task.

Driven entirely by the ``now`` value the caller passes in; there are no
timers.  The successor is a brand new task, never a mutation of the
completed one.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Callable, Optional

from dateutil.relativedelta import relativedelta
from loguru import logger

from ..utils import _iso, _now
from .history import HistoryRecorder
from .model import HistoryAction, RecurringFrequency, Task, TaskStatus
from .store import StoreTx, TaskStore

_PERIODS: dict[RecurringFrequency, timedelta | relativedelta] = {
    RecurringFrequency.DAILY: timedelta(days=1),
    RecurringFrequency.WEEKLY: timedelta(days=7),
    RecurringFrequency.BIWEEKLY: timedelta(days=14),
    # relativedelta clamps to month end (Jan 31 + 1 month = Feb 28/29)
    RecurringFrequency.MONTHLY: relativedelta(months=1),
    RecurringFrequency.QUARTERLY: relativedelta(months=3),
}

# Fields copied from the completed occurrence onto its successor.
TEMPLATE_FIELDS = (
    "organization_id",
    "project_id",
    "title",
    "description",
    "priority",
    "category",
    "visibility",
    "tags",
    "estimated_hours",
    "budget_hours",
    "time_tracking_enabled",
    "is_billable",
    "client_reference",
    "is_recurring",
    "recurring_frequency",
    "recurring_ends_on",
    "assigned_to",
    "assignees",
    "approvers",
    "watchers",
    "acceptance_criteria",
    "notes",
)

SYSTEM_ACTOR = "system:recurrence"


def advance(value: date, frequency: RecurringFrequency) -> date:
    return value + _PERIODS[frequency]


def next_dates(task: Task, today: date) -> tuple[Optional[date], Optional[date]]:
    """Return ``(next_start, next_due)`` one period after the task's dates.

    A task without any dates recurs from ``today``.
    """
    freq = task.recurring_frequency
    if freq is None:
        return None, None
    if task.start_date is None and task.due_date is None:
        return advance(today, freq), None
    next_start = advance(task.start_date, freq) if task.start_date else None
    next_due = advance(task.due_date, freq) if task.due_date else None
    return next_start, next_due


class RecurrenceScheduler:
    def __init__(self, store: TaskStore, history: HistoryRecorder, clock: Callable[[], datetime] = _now) -> None:
        self.store = store
        self.history = history
        self._clock = clock

    def on_completed(self, tx: StoreTx, task: Task, now: datetime) -> Optional[Task]:
        """Create the successor of a just-completed recurring task.

        Returns the new task, or None when the series has ended, the task is
        not recurring, or a successor already exists.
        """
        if not task.is_recurring or task.recurring_frequency is None:
            return None
        if tx.successors_of(task.id):
            logger.debug("Task {} already has a successor; skipping", task.id)
            return None

        next_start, next_due = next_dates(task, now.date())
        anchor = next_start or next_due
        if task.recurring_ends_on is not None and anchor is not None and anchor > task.recurring_ends_on:
            logger.info("Recurring series for {} ended on {}", task.id, task.recurring_ends_on)
            return None

        now_iso = _iso(now)
        successor = Task(
            **{name: _copy(getattr(task, name)) for name in TEMPLATE_FIELDS},
            start_date=next_start,
            due_date=next_due,
            status=TaskStatus.PENDING,
            recurrence_parent_id=task.id,
            created_by=SYSTEM_ACTOR,
            created_at=now_iso,
            updated_at=now_iso,
        )
        tx.add_task(successor)
        self.history.append(
            tx,
            successor.id,
            SYSTEM_ACTOR,
            HistoryAction.CREATED,
            f"Created as the next {task.recurring_frequency.value} occurrence of {task.id}",
            {"predecessor_id": task.id},
        )
        logger.info("Spawned {} as successor of recurring task {}", successor.id, task.id)
        return successor

    def tick(self, now: Optional[datetime] = None, organization_id: Optional[str] = None) -> list[Task]:
        """Spawn successors missing for any finished recurring task.

        Normally successors are created when the task completes; this batch
        pass catches tasks that were imported or finished before recurrence
        was switched on.
        """
        now = now or self._clock()
        spawned: list[Task] = []
        with self.store.transaction() as tx:
            for task in tx.tasks_in_status(TaskStatus.COMPLETED, TaskStatus.APPROVED):
                if organization_id and task.organization_id != organization_id:
                    continue
                successor = self.on_completed(tx, task, now)
                if successor is not None:
                    spawned.append(successor)
        return spawned


def _copy(value):
    return list(value) if isinstance(value, list) else value
