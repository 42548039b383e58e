"""Error kinds raised by the workflow engine.

Every error is detected before any write happens, so raising one always
leaves the store in its pre-operation state.  Only
:class:`ConcurrentModification` is meant to be retried by callers.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional


class WorkflowError(Exception):
    """Base class for all workflow errors."""

    kind = "workflow_error"
    retryable = False

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = {k: v for k, v in context.items() if v is not None}

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "message": self.message, **self.context}


class ValidationError(WorkflowError):
    """Input violates a field rule (missing title, bad date ordering, ...)."""

    kind = "validation_error"

    def __init__(self, message: str, field: Optional[str] = None, **context: Any) -> None:
        super().__init__(message, field=field, **context)
        self.field = field


class MissingReason(ValidationError):
    kind = "missing_reason"

    def __init__(self, message: str = "A reason is required to reject a task") -> None:
        super().__init__(message, field="reason")


class InvalidTransition(WorkflowError):
    kind = "invalid_transition"

    def __init__(self, task_id: str, current: str, attempted: str, allowed: Iterable[str]) -> None:
        allowed_list = sorted(allowed)
        super().__init__(
            f"Cannot transition {task_id} from {current} to {attempted}. "
            f"Valid targets: {allowed_list}",
            task_id=task_id,
            current=current,
            attempted=attempted,
            allowed=allowed_list,
        )
        self.current = current
        self.attempted = attempted


class BlockedByPrerequisite(WorkflowError):
    kind = "blocked_by_prerequisite"

    def __init__(self, task_id: str, attempted: str, unresolved: list[str]) -> None:
        super().__init__(
            f"Cannot move {task_id} to {attempted}; unresolved prerequisites: {unresolved}",
            task_id=task_id,
            attempted=attempted,
            unresolved=unresolved,
        )
        self.unresolved = unresolved


class CycleDetected(WorkflowError):
    kind = "cycle_detected"

    def __init__(self, from_id: str, to_id: str) -> None:
        super().__init__(
            f"Making {from_id} a prerequisite of {to_id} would create a cycle",
            from_task=from_id,
            to_task=to_id,
        )


class TimeTrackingDisabled(WorkflowError):
    kind = "time_tracking_disabled"

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Time tracking is disabled for task {task_id}", task_id=task_id)


class InvalidAmount(WorkflowError):
    kind = "invalid_amount"

    def __init__(self, hours: Any) -> None:
        super().__init__(f"Hours must be a positive number, got {hours!r}", field="hours", hours=str(hours))


class NotFound(WorkflowError):
    kind = "not_found"

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity} {entity_id} not found", entity=entity, entity_id=entity_id)
        self.entity = entity
        self.entity_id = entity_id


class UnknownMember(NotFound):
    kind = "unknown_member"

    def __init__(self, member_id: str) -> None:
        super().__init__("Team member", member_id)


class ConcurrentModification(WorkflowError):
    """The task changed since the caller read it; re-read and retry."""

    kind = "concurrent_modification"
    retryable = True

    def __init__(self, task_id: str, expected: int, actual: int) -> None:
        super().__init__(
            f"Task {task_id} was modified concurrently (expected version {expected}, found {actual})",
            task_id=task_id,
            expected_version=expected,
            actual_version=actual,
        )
