"""Reassign a task's owner and keep the latest delegation on the task."""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional

from loguru import logger

from ..utils import _iso, _now
from .collaborators import Notifier, dispatch_safely
from .context import ActorContext, OperationResult
from .history import HistoryRecorder
from .model import HistoryAction, Task
from .store import TaskStore


class DelegationManager:
    def __init__(
        self,
        store: TaskStore,
        history: HistoryRecorder,
        notifier: Optional[Notifier] = None,
        clock: Callable[[], datetime] = _now,
    ) -> None:
        self.store = store
        self.history = history
        self.notifier = notifier
        self._clock = clock

    def delegate(
        self,
        ctx: ActorContext,
        task_id: str,
        to_member_id: str,
        notes: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> OperationResult[Task]:
        """Make ``to_member_id`` the task owner.

        Status is left alone.  Earlier delegation metadata is overwritten;
        the full trail lives in the task history.  The notification is sent
        after the commit and a failure only adds a warning.
        """
        with self.store.transaction() as tx:
            task = tx.require_task(task_id, ctx.organization_id)
            tx.check_version(task, expected_version)
            member = tx.require_member(to_member_id, ctx.organization_id)

            now_iso = _iso(self._clock())
            previous = task.assigned_to
            task.assigned_to = member.id
            task.delegated_by = ctx.actor_id
            task.delegation_date = now_iso
            task.delegation_notes = notes or None
            task.touch(now_iso)
            tx.save_task(task)

            description = f"Delegated to {member.name or member.id}"
            if notes:
                description += f": {notes}"
            self.history.append(
                tx,
                task.id,
                ctx.actor_id,
                HistoryAction.DELEGATED,
                description,
                {"from_member": previous, "to_member": member.id},
            )
        logger.info("Task {} delegated by {} to {}", task.id, ctx.actor_id, member.id)

        result = OperationResult(task)
        warning = dispatch_safely(
            self.notifier,
            "task.delegated",
            {
                "task_id": task.id,
                "title": task.title,
                "organization_id": ctx.organization_id,
                "delegated_by": ctx.actor_id,
                "delegated_to": member.id,
                "recipient_email": member.email,
                "notes": notes,
            },
        )
        if warning:
            result.warnings.append(warning)
        return result
