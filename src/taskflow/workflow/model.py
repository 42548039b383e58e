"""Data model for the workflow engine.

Tasks, projects, team members, time entries and history entries are plain
dataclasses that serialize to YAML/JSON friendly dicts.  Calendar fields
(``start_date``, ``due_date``, ...) are :class:`datetime.date` objects in
memory and ``YYYY-MM-DD`` strings on disk; timestamps are ISO-8601 strings,
as they are everywhere else in the store.
"""

from __future__ import annotations

import math
import uuid
from dataclasses import asdict, dataclass, field, fields
from datetime import date
from enum import Enum
from typing import Any, Optional

from ..utils import _date_iso, _now_iso, _parse_date


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    REVIEW = "review"
    ON_HOLD = "on_hold"
    COMPLETED = "completed"
    APPROVED = "approved"
    REJECTED = "rejected"


# Statuses that satisfy a prerequisite and count as "done" in project stats.
RESOLVED_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.APPROVED})


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class Visibility(str, Enum):
    TEAM = "team"
    PRIVATE = "private"
    PUBLIC = "public"


class RecurringFrequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"


class ProjectStatus(str, Enum):
    PLANNING = "planning"
    ACTIVE = "active"
    ON_HOLD = "on_hold"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class HistoryAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    STATUS_CHANGED = "status_changed"
    DELEGATED = "delegated"
    TIME_LOGGED = "time_logged"
    RELATIONSHIP_ADDED = "relationship_added"
    RELATIONSHIP_REMOVED = "relationship_removed"
    ATTACHMENT_ADDED = "attachment_added"
    DELETED = "deleted"


class EdgeKind(str, Enum):
    PREREQUISITE = "prerequisite"
    LINKED = "linked"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _generate_id(prefix: str) -> str:
    """Short human-friendly ID: ``<prefix>-<8hex>``."""
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


def _coerce_enum(enum_cls: type[Enum], raw: Any, default: Optional[Enum]) -> Optional[Enum]:
    if raw is None or raw == "":
        return default
    if isinstance(raw, enum_cls):
        return raw
    try:
        return enum_cls(str(raw))
    except ValueError:
        return default


def _str_list(raw: Any) -> list[str]:
    if not raw:
        return []
    return [str(v) for v in raw]


def _opt_float(raw: Any) -> Optional[float]:
    if raw is None or raw == "":
        return None
    return float(raw)


def _serialize(obj: Any) -> dict[str, Any]:
    data: dict[str, Any] = {}
    for k, v in asdict(obj).items():
        if isinstance(v, Enum):
            data[k] = v.value
        elif isinstance(v, date):
            data[k] = _date_iso(v)
        else:
            data[k] = v
    return data


# ---------------------------------------------------------------------------
# Task
# ---------------------------------------------------------------------------

@dataclass
class Task:
    """A unit of work with status, ownership, dates and an optional time budget."""

    # Identity and scope
    id: str = field(default_factory=lambda: _generate_id("task"))
    organization_id: str = ""
    project_id: Optional[str] = None
    title: str = ""
    description: str = ""

    # Classification
    status: TaskStatus = TaskStatus.PENDING
    priority: TaskPriority = TaskPriority.MEDIUM
    category: Optional[str] = None
    visibility: Visibility = Visibility.TEAM
    tags: list[str] = field(default_factory=list)

    # Schedule
    start_date: Optional[date] = None
    due_date: Optional[date] = None

    # Effort and billing
    estimated_hours: Optional[float] = None
    budget_hours: Optional[float] = None
    time_spent: float = 0.0
    time_tracking_enabled: bool = False
    is_billable: bool = False
    client_reference: Optional[str] = None

    # Recurrence
    is_recurring: bool = False
    recurring_frequency: Optional[RecurringFrequency] = None
    recurring_ends_on: Optional[date] = None
    recurrence_parent_id: Optional[str] = None

    # People (member ids; back-references only)
    assigned_to: Optional[str] = None
    assignees: list[str] = field(default_factory=list)
    approvers: list[str] = field(default_factory=list)
    watchers: list[str] = field(default_factory=list)

    # Relationships
    prerequisite_ids: list[str] = field(default_factory=list)
    linked_ids: list[str] = field(default_factory=list)
    dependent_ids: list[str] = field(default_factory=list)

    # Most recent delegation / rejection
    delegated_by: Optional[str] = None
    delegation_date: Optional[str] = None
    delegation_notes: Optional[str] = None
    rejected_by: Optional[str] = None
    rejection_date: Optional[str] = None
    rejection_reason: Optional[str] = None

    # Work definition
    acceptance_criteria: str = ""
    notes: str = ""

    # Provenance
    created_by: Optional[str] = None
    created_at: str = field(default_factory=_now_iso)
    updated_at: str = field(default_factory=_now_iso)
    completed_at: Optional[str] = None

    # Optimistic concurrency revision
    version: int = 1

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validation_errors(self) -> list[tuple[str, str]]:
        """Return ``(field, message)`` pairs for every violated invariant."""
        errors: list[tuple[str, str]] = []
        if not self.title or not self.title.strip():
            errors.append(("title", "'title' is required and must be non-empty"))
        if not self.organization_id:
            errors.append(("organization_id", "'organization_id' is required"))
        if self.start_date and self.due_date and self.due_date < self.start_date:
            errors.append(("due_date", "'due_date' must be on or after 'start_date'"))
        for name in ("estimated_hours", "budget_hours"):
            value = getattr(self, name)
            if value is not None and (not math.isfinite(value) or value < 0):
                errors.append((name, f"'{name}' must be a non-negative number"))
        if self.is_billable and not self.time_tracking_enabled:
            errors.append(("is_billable", "billable tasks require 'time_tracking_enabled'"))
        if self.is_recurring:
            if self.recurring_frequency is None:
                errors.append(("recurring_frequency", "recurring tasks require 'recurring_frequency'"))
            if self.recurring_ends_on is None:
                errors.append(("recurring_ends_on", "recurring tasks require 'recurring_ends_on'"))
        return errors

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a plain dict for YAML/JSON persistence."""
        return _serialize(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        """Deserialize from a plain dict.

        Enum fields fall back to their defaults when unrecognised; dates and
        numbers are coerced and raise :class:`ValueError` when malformed.
        """
        d = dict(data)
        known = {f.name for f in fields(cls)}
        for key in list(d):
            if key not in known:
                d.pop(key)

        d["status"] = _coerce_enum(TaskStatus, d.get("status"), TaskStatus.PENDING)
        d["priority"] = _coerce_enum(TaskPriority, d.get("priority"), TaskPriority.MEDIUM)
        d["visibility"] = _coerce_enum(Visibility, d.get("visibility"), Visibility.TEAM)
        d["recurring_frequency"] = _coerce_enum(RecurringFrequency, d.get("recurring_frequency"), None)
        for key in ("start_date", "due_date", "recurring_ends_on"):
            d[key] = _parse_date(d.get(key))
        for key in ("estimated_hours", "budget_hours"):
            d[key] = _opt_float(d.get(key))
        d["time_spent"] = float(d.get("time_spent") or 0.0)
        for key in ("tags", "assignees", "approvers", "watchers",
                    "prerequisite_ids", "linked_ids", "dependent_ids"):
            d[key] = _str_list(d.get(key))
        for key in ("time_tracking_enabled", "is_billable", "is_recurring"):
            d[key] = bool(d.get(key, False))
        d["version"] = int(d.get("version") or 1)
        for key in ("title", "description", "acceptance_criteria", "notes"):
            d[key] = str(d.get(key) or "")
        d.setdefault("created_at", _now_iso())
        d.setdefault("updated_at", d["created_at"])
        return cls(**d)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def touch(self, now_iso: Optional[str] = None) -> None:
        self.updated_at = now_iso or _now_iso()

    @property
    def is_resolved(self) -> bool:
        return self.status in RESOLVED_STATUSES


# ---------------------------------------------------------------------------
# Other entities
# ---------------------------------------------------------------------------

@dataclass
class Project:
    id: str = field(default_factory=lambda: _generate_id("proj"))
    organization_id: str = ""
    name: str = ""
    description: str = ""
    status: ProjectStatus = ProjectStatus.ACTIVE
    priority: TaskPriority = TaskPriority.MEDIUM
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    created_at: str = field(default_factory=_now_iso)

    def validation_errors(self) -> list[tuple[str, str]]:
        errors: list[tuple[str, str]] = []
        if not self.name or not self.name.strip():
            errors.append(("name", "'name' is required and must be non-empty"))
        if not self.organization_id:
            errors.append(("organization_id", "'organization_id' is required"))
        if self.start_date and self.end_date and self.end_date < self.start_date:
            errors.append(("end_date", "'end_date' must be on or after 'start_date'"))
        return errors

    def to_dict(self) -> dict[str, Any]:
        return _serialize(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Project":
        return cls(
            id=str(data.get("id") or _generate_id("proj")),
            organization_id=str(data.get("organization_id") or ""),
            name=str(data.get("name") or ""),
            description=str(data.get("description") or ""),
            status=_coerce_enum(ProjectStatus, data.get("status"), ProjectStatus.ACTIVE),
            priority=_coerce_enum(TaskPriority, data.get("priority"), TaskPriority.MEDIUM),
            start_date=_parse_date(data.get("start_date")),
            end_date=_parse_date(data.get("end_date")),
            created_at=str(data.get("created_at") or _now_iso()),
        )


@dataclass
class TeamMember:
    id: str = field(default_factory=lambda: _generate_id("member"))
    organization_id: str = ""
    name: str = ""
    email: str = ""
    title: Optional[str] = None  # free-form role label

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TeamMember":
        return cls(**{k: data.get(k) for k in cls.__dataclass_fields__ if k in data})


@dataclass(frozen=True)
class TimeEntry:
    task_id: str
    actor: str
    hours: float
    description: str = ""
    timestamp: str = field(default_factory=_now_iso)
    id: str = field(default_factory=lambda: _generate_id("time"))

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TimeEntry":
        return cls(
            id=str(data["id"]),
            task_id=str(data["task_id"]),
            actor=str(data.get("actor") or ""),
            hours=float(data["hours"]),
            description=str(data.get("description") or ""),
            timestamp=str(data.get("timestamp") or _now_iso()),
        )


@dataclass(frozen=True)
class HistoryEntry:
    task_id: str
    actor: str
    action: HistoryAction
    description: str = ""
    timestamp: str = field(default_factory=_now_iso)
    details: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: _generate_id("hist"))

    def to_dict(self) -> dict[str, Any]:
        return _serialize(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HistoryEntry":
        return cls(
            id=str(data["id"]),
            task_id=str(data["task_id"]),
            actor=str(data.get("actor") or ""),
            action=HistoryAction(str(data["action"])),
            description=str(data.get("description") or ""),
            timestamp=str(data.get("timestamp") or _now_iso()),
            details=dict(data.get("details") or {}),
        )
