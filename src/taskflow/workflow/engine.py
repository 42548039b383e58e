"""Workflow engine: the single authoritative task state machine.

This is the primary entry-point for task creation, editing and status
changes.  It wraps :class:`TaskStore` with the business rules (transition
table, rejection reasons, prerequisite gating, field invariants) and makes
sure every change lands together with its history entry.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Any, Callable, Optional

from loguru import logger

from ..utils import _iso, _now, _parse_date
from .context import ActorContext
from .errors import (
    BlockedByPrerequisite,
    InvalidTransition,
    MissingReason,
    ValidationError,
)
from .graph import RelationshipGraph
from .history import HistoryRecorder
from .model import (
    HistoryAction,
    RecurringFrequency,
    Task,
    TaskPriority,
    TaskStatus,
    Visibility,
)
from .recurrence import RecurrenceScheduler
from .store import StoreTx, TaskStore


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------

TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.IN_PROGRESS, TaskStatus.ON_HOLD, TaskStatus.REVIEW}),
    TaskStatus.IN_PROGRESS: frozenset({TaskStatus.REVIEW, TaskStatus.COMPLETED, TaskStatus.ON_HOLD, TaskStatus.PENDING}),
    TaskStatus.ON_HOLD: frozenset({TaskStatus.PENDING, TaskStatus.IN_PROGRESS}),
    TaskStatus.REVIEW: frozenset({TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED}),
    TaskStatus.COMPLETED: frozenset({TaskStatus.APPROVED, TaskStatus.REJECTED, TaskStatus.IN_PROGRESS}),  # reopen allowed
    TaskStatus.APPROVED: frozenset(),
    TaskStatus.REJECTED: frozenset(),
}

INITIAL_STATUS = TaskStatus.PENDING
TERMINAL_STATUSES = frozenset(s for s, targets in TRANSITIONS.items() if not targets)

# Entering these requires every prerequisite to be completed or approved.
GATED_STATUSES = frozenset({TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED})

STATUS_LABELS: dict[TaskStatus, str] = {
    TaskStatus.PENDING: "Pending",
    TaskStatus.IN_PROGRESS: "In Progress",
    TaskStatus.REVIEW: "Review",
    TaskStatus.ON_HOLD: "On Hold",
    TaskStatus.COMPLETED: "Completed",
    TaskStatus.APPROVED: "Approved",
    TaskStatus.REJECTED: "Rejected",
}

# Badge tone per status, as rendered by the dashboard.
STATUS_COLORS: dict[TaskStatus, str] = {
    TaskStatus.PENDING: "gray",
    TaskStatus.IN_PROGRESS: "yellow",
    TaskStatus.REVIEW: "blue",
    TaskStatus.ON_HOLD: "orange",
    TaskStatus.COMPLETED: "green",
    TaskStatus.APPROVED: "green",
    TaskStatus.REJECTED: "red",
}


def parse_status(value: TaskStatus | str) -> TaskStatus:
    """Parse user input into a :class:`TaskStatus`, raising :class:`ValidationError`."""
    try:
        return TaskStatus(getattr(value, "value", value))
    except ValueError:
        raise ValidationError(
            f"'status' must be one of {[s.value for s in TaskStatus]}, got {value!r}", field="status"
        ) from None


def allowed_transitions(status: TaskStatus | str) -> frozenset[TaskStatus]:
    return TRANSITIONS[TaskStatus(getattr(status, "value", status))]


def status_label(status: TaskStatus | str) -> str:
    return STATUS_LABELS[TaskStatus(getattr(status, "value", status))]


def describe_state_machine() -> dict[str, Any]:
    """Serializable view of the state machine for UI layers."""
    return {
        "states": [s.value for s in TaskStatus],
        "initial": INITIAL_STATUS.value,
        "terminal": sorted(s.value for s in TERMINAL_STATUSES),
        "transitions": {s.value: sorted(t.value for t in targets) for s, targets in TRANSITIONS.items()},
        "guards": {
            TaskStatus.REJECTED.value: "requires a non-empty reason",
            TaskStatus.IN_PROGRESS.value: "all prerequisites completed or approved",
            TaskStatus.COMPLETED.value: "all prerequisites completed or approved",
        },
        "labels": {s.value: label for s, label in STATUS_LABELS.items()},
        "colors": {s.value: color for s, color in STATUS_COLORS.items()},
    }


# ---------------------------------------------------------------------------
# Field handling
# ---------------------------------------------------------------------------

EDITABLE_FIELDS = frozenset({
    "title",
    "description",
    "priority",
    "category",
    "visibility",
    "tags",
    "start_date",
    "due_date",
    "estimated_hours",
    "budget_hours",
    "time_tracking_enabled",
    "is_billable",
    "client_reference",
    "is_recurring",
    "recurring_frequency",
    "recurring_ends_on",
    "assignees",
    "approvers",
    "watchers",
    "project_id",
    "acceptance_criteria",
    "notes",
})
# The owner is set at creation; later changes go through delegation.
CREATE_ONLY_FIELDS = frozenset({"assigned_to"})

_ENUM_FIELDS = {
    "priority": TaskPriority,
    "visibility": Visibility,
    "recurring_frequency": RecurringFrequency,
}
_DATE_FIELDS = ("start_date", "due_date", "recurring_ends_on")
_HOUR_FIELDS = ("estimated_hours", "budget_hours")
_BOOL_FIELDS = ("time_tracking_enabled", "is_billable", "is_recurring")
_MEMBER_LIST_FIELDS = ("assignees", "approvers", "watchers")


def _coerce_fields(changes: dict[str, Any]) -> dict[str, Any]:
    """Turn raw input values into model types, raising :class:`ValidationError`."""
    out: dict[str, Any] = {}
    for key, value in changes.items():
        if key in _ENUM_FIELDS:
            enum_cls = _ENUM_FIELDS[key]
            if value is None or value == "":
                if key != "recurring_frequency":
                    raise ValidationError(f"'{key}' cannot be empty", field=key)
                out[key] = None
                continue
            try:
                out[key] = enum_cls(getattr(value, "value", value))
            except ValueError:
                raise ValidationError(
                    f"'{key}' must be one of {[e.value for e in enum_cls]}, got {value!r}", field=key
                ) from None
        elif key in _DATE_FIELDS:
            try:
                out[key] = _parse_date(value)
            except (TypeError, ValueError):
                raise ValidationError(f"'{key}' must be a YYYY-MM-DD date, got {value!r}", field=key) from None
        elif key in _HOUR_FIELDS:
            if value is None or value == "":
                out[key] = None
                continue
            try:
                number = float(value)
            except (TypeError, ValueError):
                raise ValidationError(f"'{key}' must be a number, got {value!r}", field=key) from None
            if not math.isfinite(number):
                raise ValidationError(f"'{key}' must be a finite number", field=key)
            out[key] = number
        elif key in _BOOL_FIELDS:
            if not isinstance(value, bool):
                raise ValidationError(f"'{key}' must be true or false", field=key)
            out[key] = value
        elif key in _MEMBER_LIST_FIELDS or key == "tags":
            if value is None:
                value = []
            if isinstance(value, str) or not isinstance(value, (list, tuple, set)):
                raise ValidationError(f"'{key}' must be a list", field=key)
            out[key] = list(dict.fromkeys(str(v) for v in value))
        elif key in ("title", "description", "acceptance_criteria", "notes"):
            out[key] = "" if value is None else str(value)
        else:
            out[key] = value or None
    return out


def _raise_first(errors: list[tuple[str, str]]) -> None:
    if errors:
        field, message = errors[0]
        raise ValidationError(message, field=field, errors=[m for _, m in errors])


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class WorkflowEngine:
    """Create, edit and move tasks through the fixed lifecycle.

    Parameters
    ----------
    enforce_prerequisites:
        When True (the default) a task cannot enter ``in_progress`` or
        ``completed`` while any prerequisite is unresolved.
    """

    def __init__(
        self,
        store: TaskStore,
        history: HistoryRecorder,
        graph: RelationshipGraph,
        recurrence: RecurrenceScheduler,
        clock: Callable[[], datetime] = _now,
        enforce_prerequisites: bool = True,
    ) -> None:
        self.store = store
        self.history = history
        self.graph = graph
        self.recurrence = recurrence
        self._clock = clock
        self.enforce_prerequisites = enforce_prerequisites

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def create_task(self, ctx: ActorContext, **fields: Any) -> Task:
        """Validate and persist a new ``pending`` task with one ``created`` entry."""
        status = fields.pop("status", None)
        if status not in (None, "", INITIAL_STATUS, INITIAL_STATUS.value):
            raise ValidationError(f"New tasks start in '{INITIAL_STATUS.value}'", field="status")
        self._reject_unknown(fields, EDITABLE_FIELDS | CREATE_ONLY_FIELDS)
        values = _coerce_fields(fields)

        now_iso = _iso(self._clock())
        task = Task(
            organization_id=ctx.organization_id,
            created_by=ctx.actor_id,
            created_at=now_iso,
            updated_at=now_iso,
            **values,
        )
        _raise_first(task.validation_errors())

        with self.store.transaction() as tx:
            self._check_references(tx, ctx, task)
            tx.add_task(task)
            self.history.append(
                tx,
                task.id,
                ctx.actor_id,
                HistoryAction.CREATED,
                f"Created task '{task.title}'",
                {"status": task.status.value},
            )
        logger.info("Created task {}: {}", task.id, task.title)
        return task

    def get_task(self, ctx: ActorContext, task_id: str) -> Task:
        with self.store.transaction() as tx:
            return tx.require_task(task_id, ctx.organization_id)

    def list_tasks(self, ctx: ActorContext, **filters: Any) -> list[Task]:
        with self.store.transaction() as tx:
            return tx.find_tasks(organization_id=ctx.organization_id, **filters)

    def update_task(
        self,
        ctx: ActorContext,
        task_id: str,
        changes: dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> Task:
        """Apply a partial edit.  Status and derived fields are not editable here."""
        if "assigned_to" in changes:
            raise ValidationError("Use delegation to change the task owner", field="assigned_to")
        self._reject_unknown(changes, EDITABLE_FIELDS)
        values = _coerce_fields(changes)

        with self.store.transaction() as tx:
            task = tx.require_task(task_id, ctx.organization_id)
            tx.check_version(task, expected_version)

            changed = sorted(k for k, v in values.items() if getattr(task, k) != v)
            if not changed:
                return task
            for key in changed:
                setattr(task, key, values[key])
            _raise_first(task.validation_errors())
            self._check_references(tx, ctx, task)

            task.touch(_iso(self._clock()))
            tx.save_task(task)
            self.history.append(
                tx,
                task.id,
                ctx.actor_id,
                HistoryAction.UPDATED,
                f"Updated {', '.join(changed)}",
                {"fields": changed},
            )
        logger.info("Updated task {} fields={}", task.id, changed)
        return task

    def delete_task(self, ctx: ActorContext, task_id: str) -> bool:
        """Remove a task and every edge pointing at it.  Its history is kept."""
        with self.store.transaction() as tx:
            task = tx.require_task(task_id, ctx.organization_id)
            self.graph.detach(tx, task, ctx.actor_id)
            tx.remove_task(task_id)
            self.history.append(
                tx,
                task_id,
                ctx.actor_id,
                HistoryAction.DELETED,
                f"Deleted task '{task.title}'",
                {"organization_id": task.organization_id},
            )
        logger.info("Deleted task {}", task_id)
        return True

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------

    def transition(
        self,
        ctx: ActorContext,
        task_id: str,
        new_status: TaskStatus | str,
        reason: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> Task:
        """Move a task to ``new_status``, enforcing the transition table."""
        target = parse_status(new_status)
        with self.store.transaction() as tx:
            task = tx.require_task(task_id, ctx.organization_id)
            tx.check_version(task, expected_version)
            current = task.status

            valid = TRANSITIONS[current]
            if target not in valid:
                raise InvalidTransition(task.id, current.value, target.value, [s.value for s in valid])
            if target is TaskStatus.REJECTED and not (reason and reason.strip()):
                raise MissingReason()
            if self.enforce_prerequisites and target in GATED_STATUSES:
                unresolved = self.graph.unresolved_in(tx, task)
                if unresolved:
                    raise BlockedByPrerequisite(task.id, target.value, [t.id for t in unresolved])

            now = self._clock()
            self._apply(task, target, ctx, reason, _iso(now))
            tx.save_task(task)

            description = f"Status changed from {status_label(current)} to {status_label(target)}"
            if reason and reason.strip():
                description += f": {reason.strip()}"
            self.history.append(
                tx,
                task.id,
                ctx.actor_id,
                HistoryAction.STATUS_CHANGED,
                description,
                {"from": current.value, "to": target.value},
            )

            if target is TaskStatus.COMPLETED and task.is_recurring:
                self.recurrence.on_completed(tx, task, now)

        logger.info("Task {} {} -> {} by {}", task.id, current.value, target.value, ctx.actor_id)
        return task

    def approve(self, ctx: ActorContext, task_id: str, expected_version: Optional[int] = None) -> Task:
        return self.transition(ctx, task_id, TaskStatus.APPROVED, expected_version=expected_version)

    def reject(
        self,
        ctx: ActorContext,
        task_id: str,
        reason: Optional[str],
        expected_version: Optional[int] = None,
    ) -> Task:
        return self.transition(ctx, task_id, TaskStatus.REJECTED, reason=reason, expected_version=expected_version)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _apply(task: Task, target: TaskStatus, ctx: ActorContext, reason: Optional[str], now_iso: str) -> None:
        task.status = target
        if target is TaskStatus.COMPLETED:
            task.completed_at = now_iso
        elif target is TaskStatus.IN_PROGRESS:
            task.completed_at = None
        elif target is TaskStatus.REJECTED:
            task.rejected_by = ctx.actor_id
            task.rejection_date = now_iso
            task.rejection_reason = (reason or "").strip()
        task.touch(now_iso)

    @staticmethod
    def _reject_unknown(fields: dict[str, Any], allowed: frozenset[str]) -> None:
        unknown = sorted(set(fields) - allowed)
        if unknown:
            raise ValidationError(f"Fields cannot be set directly: {unknown}", field=unknown[0])

    @staticmethod
    def _check_references(tx: StoreTx, ctx: ActorContext, task: Task) -> None:
        if task.project_id:
            tx.require_project(task.project_id, ctx.organization_id)
        member_ids = [task.assigned_to] if task.assigned_to else []
        for name in _MEMBER_LIST_FIELDS:
            member_ids.extend(getattr(task, name))
        for member_id in dict.fromkeys(member_ids):
            tx.require_member(member_id, ctx.organization_id)
