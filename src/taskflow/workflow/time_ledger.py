"""Time entries and the derived time-spent / budget figures."""

from __future__ import annotations

import math
from datetime import datetime
from numbers import Real
from typing import Any, Callable, Optional

from loguru import logger

from ..utils import _iso, _now
from .context import ActorContext
from .errors import InvalidAmount, TimeTrackingDisabled
from .history import HistoryRecorder
from .model import HistoryAction, Task, TimeEntry
from .store import StoreTx, TaskStore


def _validated_hours(hours: Any) -> float:
    if isinstance(hours, bool) or not isinstance(hours, Real):
        raise InvalidAmount(hours)
    value = float(hours)
    if not math.isfinite(value) or value <= 0:
        raise InvalidAmount(hours)
    return value


def _fmt_hours(value: float) -> str:
    return f"{value:g}h"


class TimeLedger:
    """Record time against tasks.

    ``time_spent`` on a task is always the sum over its entry log,
    recomputed on every write, never adjusted incrementally.  Ledger writes
    do not bump the task's revision: entries are append-only and commute,
    so concurrent logging never conflicts with status edits.
    """

    def __init__(self, store: TaskStore, history: HistoryRecorder, clock: Callable[[], datetime] = _now) -> None:
        self.store = store
        self.history = history
        self._clock = clock

    def add_entry(
        self,
        ctx: ActorContext,
        task_id: str,
        hours: float,
        description: str = "",
    ) -> TimeEntry:
        with self.store.transaction() as tx:
            task = tx.require_task(task_id, ctx.organization_id)
            if not task.time_tracking_enabled:
                raise TimeTrackingDisabled(task_id)
            amount = _validated_hours(hours)

            entry = TimeEntry(
                task_id=task_id,
                actor=ctx.actor_id,
                hours=amount,
                description=description or "",
                timestamp=_iso(self._clock()),
            )
            tx.add_time_entry(entry)
            task.time_spent = self.recompute(tx, task)
            task.touch(entry.timestamp)
            tx.save_task(task, bump_version=False)

            self.history.append(
                tx,
                task_id,
                ctx.actor_id,
                HistoryAction.TIME_LOGGED,
                f"Logged {_fmt_hours(amount)}" + (f": {description}" if description else ""),
                {"hours": amount, "time_entry_id": entry.id, "time_spent": task.time_spent},
            )
        logger.info("Logged {} on {} (total {})", _fmt_hours(amount), task_id, _fmt_hours(task.time_spent))
        return entry

    @staticmethod
    def recompute(tx: StoreTx, task: Task) -> float:
        return float(sum(e.hours for e in tx.time_entries_for(task.id)))

    def entries_for(self, task_id: str, organization_id: Optional[str] = None) -> list[TimeEntry]:
        with self.store.transaction() as tx:
            tx.require_task(task_id, organization_id)
            return sorted(tx.time_entries_for(task_id), key=lambda e: e.timestamp)

    def remaining_budget(self, task_id: str, organization_id: Optional[str] = None) -> Optional[float]:
        """``budget_hours - time_spent``; negative means over budget, ``None`` means no budget."""
        with self.store.transaction() as tx:
            task = tx.require_task(task_id, organization_id)
            if task.budget_hours is None:
                return None
            return task.budget_hours - self.recompute(tx, task)

    def summary(self, task_id: str, organization_id: Optional[str] = None) -> dict[str, Any]:
        with self.store.transaction() as tx:
            task = tx.require_task(task_id, organization_id)
            spent = self.recompute(tx, task)
            entries = len(tx.time_entries_for(task_id))
        remaining = None if task.budget_hours is None else task.budget_hours - spent
        return {
            "task_id": task_id,
            "time_tracking_enabled": task.time_tracking_enabled,
            "is_billable": task.is_billable,
            "entries": entries,
            "time_spent": spent,
            "estimated_hours": task.estimated_hours,
            "budget_hours": task.budget_hours,
            "remaining_budget": remaining,
            "over_budget": remaining is not None and remaining < 0,
        }
