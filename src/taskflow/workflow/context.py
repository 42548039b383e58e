"""Explicit call context and operation results.

No operation reads the acting user or organization from process-wide
state: callers pass an :class:`ActorContext` on every call.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from .errors import ValidationError

T = TypeVar("T")


@dataclass(frozen=True)
class ActorContext:
    """Who is acting, and in which organization."""

    actor_id: str
    organization_id: str

    def __post_init__(self) -> None:
        if not self.actor_id:
            raise ValidationError("An acting team member is required", field="actor_id")
        if not self.organization_id:
            raise ValidationError("An organization scope is required", field="organization_id")


@dataclass
class OperationResult(Generic[T]):
    """Outcome of an operation whose collaborator steps may partially fail.

    ``value`` is the committed result; ``warnings`` lists collaborator
    failures (attachment uploads, notifications) that did not roll it back.
    """

    value: T
    warnings: list[str] = field(default_factory=list)
    extras: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.warnings
