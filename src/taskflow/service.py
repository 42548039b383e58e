"""Wire the workflow components together and expose the operation surface.

:class:`WorkflowService` is what the REST layer and the CLI talk to.  It owns
one store, one clock and one instance of each component, so every component
sees the same state and the same notion of "now".
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

from loguru import logger

from .config import get_attachment_max_bytes, get_enforce_prerequisites, load_engine_config
from .constants import ATTACHMENTS_DIR, STATE_DIR_NAME
from .utils import _iso, _now, _parse_date
from .workflow.aggregator import ProjectAggregator, ProjectStats
from .workflow.collaborators import (
    Attachment,
    AttachmentError,
    AttachmentStore,
    FileAttachmentStore,
    LogNotifier,
    Notifier,
)
from .workflow.context import ActorContext, OperationResult
from .workflow.delegation import DelegationManager
from .workflow.engine import WorkflowEngine, describe_state_machine, parse_status
from .workflow.errors import NotFound, ValidationError
from .workflow.graph import RelationshipGraph
from .workflow.history import HistoryRecorder
from .workflow.model import (
    EdgeKind,
    HistoryAction,
    HistoryEntry,
    Project,
    ProjectStatus,
    Task,
    TaskPriority,
    TeamMember,
    TimeEntry,
)
from .workflow.recurrence import RecurrenceScheduler
from .workflow.store import TaskStore
from .workflow.time_ledger import TimeLedger


@dataclass(frozen=True)
class AttachmentUpload:
    filename: str
    content: bytes
    # Set when the payload could not be decoded; the upload is then refused.
    error: Optional[str] = None

    @classmethod
    def from_base64(cls, filename: str, content_base64: str) -> "AttachmentUpload":
        try:
            content = base64.b64decode(content_base64, validate=True)
        except (binascii.Error, ValueError) as exc:
            return cls(filename=filename, content=b"", error=f"content is not valid base64 ({exc})")
        return cls(filename=filename, content=content)


class WorkflowService:
    """Operation surface: ``create_task`` ... ``get_stats``.

    Parameters
    ----------
    store:
        Task store shared by all components.
    attachments:
        Blob store for task attachments; uploads are optional.
    notifier:
        Fire-and-forget notification sink.
    clock:
        Source of "now" for every timestamp, due-date and recurrence decision.
    """

    def __init__(
        self,
        store: TaskStore,
        *,
        attachments: Optional[AttachmentStore] = None,
        notifier: Optional[Notifier] = None,
        clock: Callable[[], datetime] = _now,
        enforce_prerequisites: bool = True,
    ) -> None:
        self.store = store
        self.attachments = attachments
        self.clock = clock
        self.history = HistoryRecorder(store, clock)
        self.graph = RelationshipGraph(store, self.history)
        self.recurrence = RecurrenceScheduler(store, self.history, clock)
        self.engine = WorkflowEngine(
            store,
            self.history,
            self.graph,
            self.recurrence,
            clock=clock,
            enforce_prerequisites=enforce_prerequisites,
        )
        self.ledger = TimeLedger(store, self.history, clock)
        self.delegation = DelegationManager(store, self.history, notifier=notifier, clock=clock)
        self.aggregator = ProjectAggregator(store, clock)

    @classmethod
    def for_project_dir(
        cls,
        project_dir: Path,
        *,
        notifier: Optional[Notifier] = None,
        clock: Callable[[], datetime] = _now,
    ) -> "WorkflowService":
        """Build a file-backed service rooted at ``<project_dir>/.taskflow``."""
        project_dir = project_dir.resolve()
        state_dir = project_dir / STATE_DIR_NAME
        state_dir.mkdir(parents=True, exist_ok=True)
        config, err = load_engine_config(project_dir)
        if err:
            logger.warning("Ignoring unreadable config: {}", err)
        return cls(
            TaskStore.at(state_dir),
            attachments=FileAttachmentStore(state_dir / ATTACHMENTS_DIR, get_attachment_max_bytes(config)),
            notifier=notifier or LogNotifier(),
            clock=clock,
            enforce_prerequisites=get_enforce_prerequisites(config),
        )

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def create_task(
        self,
        ctx: ActorContext,
        fields: dict[str, Any],
        attachments: Iterable[AttachmentUpload] = (),
    ) -> OperationResult[Task]:
        """Create the task, then upload each attachment independently.

        The task stays created whatever happens to the uploads; every failed
        upload becomes a warning on the result.
        """
        task = self.engine.create_task(ctx, **fields)
        result: OperationResult[Task] = OperationResult(task, extras={"attachments": []})
        for upload in attachments:
            try:
                stored = self._upload(ctx, task, upload)
            except AttachmentError as exc:
                logger.warning("Attachment upload failed for {}: {}", task.id, exc)
                result.warnings.append(f"Attachment '{upload.filename}' was not uploaded: {exc}")
                continue
            result.extras["attachments"].append(stored)
        return result

    def _upload(self, ctx: ActorContext, task: Task, upload: AttachmentUpload) -> Attachment:
        if upload.error:
            raise AttachmentError(upload.error)
        if self.attachments is None:
            raise AttachmentError("attachments are not configured")
        stored = self.attachments.add(task.id, upload.filename, upload.content)
        with self.store.transaction() as tx:
            tx.require_task(task.id, ctx.organization_id)
            self.history.append(
                tx,
                task.id,
                ctx.actor_id,
                HistoryAction.ATTACHMENT_ADDED,
                f"Attached {stored.filename}",
                {"attachment_id": stored.id, "size": stored.size},
            )
        return stored

    def get_task(self, ctx: ActorContext, task_id: str) -> Task:
        return self.engine.get_task(ctx, task_id)

    def update_task(
        self,
        ctx: ActorContext,
        task_id: str,
        changes: dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> Task:
        return self.engine.update_task(ctx, task_id, changes, expected_version=expected_version)

    def delete_task(self, ctx: ActorContext, task_id: str) -> bool:
        return self.engine.delete_task(ctx, task_id)

    def list_tasks(
        self,
        ctx: ActorContext,
        *,
        project_id: Optional[str] = None,
        assignee: Optional[str] = None,
        status: Optional[str] = None,
        due_from: Optional[date | str] = None,
        due_to: Optional[date | str] = None,
        search: Optional[str] = None,
    ) -> list[Task]:
        try:
            start, end = _parse_date(due_from), _parse_date(due_to)
        except ValueError:
            raise ValidationError("Due date filters must be YYYY-MM-DD dates", field="due_from") from None
        if status:
            parse_status(status)
        return self.engine.list_tasks(
            ctx,
            project_id=project_id,
            assignee=assignee,
            status=status,
            due_from=start,
            due_to=end,
            search=search,
        )

    def list_by_project(self, ctx: ActorContext, project_id: str) -> list[Task]:
        with self.store.transaction() as tx:
            tx.require_project(project_id, ctx.organization_id)
        return self.engine.list_tasks(ctx, project_id=project_id)

    # ------------------------------------------------------------------
    # Workflow
    # ------------------------------------------------------------------

    def transition_status(
        self,
        ctx: ActorContext,
        task_id: str,
        new_status: str,
        reason: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> Task:
        return self.engine.transition(ctx, task_id, new_status, reason=reason, expected_version=expected_version)

    def approve(self, ctx: ActorContext, task_id: str, expected_version: Optional[int] = None) -> Task:
        return self.engine.approve(ctx, task_id, expected_version=expected_version)

    def reject(
        self,
        ctx: ActorContext,
        task_id: str,
        reason: Optional[str],
        expected_version: Optional[int] = None,
    ) -> Task:
        return self.engine.reject(ctx, task_id, reason, expected_version=expected_version)

    def delegate(
        self,
        ctx: ActorContext,
        task_id: str,
        to_member_id: str,
        notes: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> OperationResult[Task]:
        return self.delegation.delegate(ctx, task_id, to_member_id, notes, expected_version=expected_version)

    def recurrence_tick(self, ctx: ActorContext, now: Optional[datetime] = None) -> list[Task]:
        return self.recurrence.tick(now or self.clock(), organization_id=ctx.organization_id)

    @staticmethod
    def state_machine() -> dict[str, Any]:
        return describe_state_machine()

    # ------------------------------------------------------------------
    # Time
    # ------------------------------------------------------------------

    def add_time_entry(self, ctx: ActorContext, task_id: str, hours: float, description: str = "") -> TimeEntry:
        return self.ledger.add_entry(ctx, task_id, hours, description)

    def list_time_entries(self, ctx: ActorContext, task_id: str) -> list[TimeEntry]:
        return self.ledger.entries_for(task_id, ctx.organization_id)

    def time_summary(self, ctx: ActorContext, task_id: str) -> dict[str, Any]:
        return self.ledger.summary(task_id, ctx.organization_id)

    # ------------------------------------------------------------------
    # Relationships
    # ------------------------------------------------------------------

    def add_prerequisite(self, ctx: ActorContext, task_id: str, prerequisite_id: str) -> bool:
        """Make ``prerequisite_id`` something ``task_id`` waits for."""
        return self.graph.add_edge(ctx, EdgeKind.PREREQUISITE, prerequisite_id, task_id)

    def remove_prerequisite(self, ctx: ActorContext, task_id: str, prerequisite_id: str) -> bool:
        return self.graph.remove_edge(ctx, EdgeKind.PREREQUISITE, prerequisite_id, task_id)

    def add_linked_task(self, ctx: ActorContext, task_id: str, linked_id: str) -> bool:
        return self.graph.add_edge(ctx, EdgeKind.LINKED, task_id, linked_id)

    def remove_linked_task(self, ctx: ActorContext, task_id: str, linked_id: str) -> bool:
        return self.graph.remove_edge(ctx, EdgeKind.LINKED, task_id, linked_id)

    def unresolved_prerequisites(self, ctx: ActorContext, task_id: str) -> list[Task]:
        return self.graph.unresolved_prerequisites(task_id, ctx.organization_id)

    # ------------------------------------------------------------------
    # History, stats, attachments
    # ------------------------------------------------------------------

    def get_history(self, ctx: ActorContext, task_id: str) -> list[HistoryEntry]:
        """History of a task, including one that has since been deleted.

        A deleted task's history stays scoped to the organization recorded on
        its ``deleted`` entry.
        """
        with self.store.transaction() as tx:
            if tx.get_task(task_id) is not None:
                tx.require_task(task_id, ctx.organization_id)
            else:
                owners = {
                    h.details.get("organization_id")
                    for h in tx.history_for(task_id)
                    if h.action is HistoryAction.DELETED
                }
                if ctx.organization_id not in owners:
                    raise NotFound("Task", task_id)
        return self.history.list_for(task_id)

    def get_stats(self, ctx: ActorContext, project_id: str, today: Optional[date] = None) -> ProjectStats:
        return self.aggregator.stats_for(ctx, project_id, today=today)

    def list_attachments(self, ctx: ActorContext, task_id: str) -> list[Attachment]:
        self.get_task(ctx, task_id)
        if self.attachments is None:
            return []
        return self.attachments.list(task_id)

    def download_attachment(self, ctx: ActorContext, attachment_id: str) -> tuple[Attachment, bytes]:
        if self.attachments is None:
            raise AttachmentError("attachments are not configured")
        attachment, data = self.attachments.download(attachment_id)
        self.get_task(ctx, attachment.task_id)
        return attachment, data

    # ------------------------------------------------------------------
    # Organization data
    # ------------------------------------------------------------------

    def create_project(
        self,
        ctx: ActorContext,
        name: str,
        *,
        description: str = "",
        status: str = ProjectStatus.ACTIVE.value,
        priority: str = TaskPriority.MEDIUM.value,
        start_date: Optional[date | str] = None,
        end_date: Optional[date | str] = None,
    ) -> Project:
        try:
            project = Project(
                organization_id=ctx.organization_id,
                name=name,
                description=description or "",
                status=ProjectStatus(status),
                priority=TaskPriority(priority),
                start_date=_parse_date(start_date),
                end_date=_parse_date(end_date),
                created_at=_iso(self.clock()),
            )
        except ValueError as exc:
            raise ValidationError(f"Invalid project: {exc}", field="project") from None
        errors = project.validation_errors()
        if errors:
            field, message = errors[0]
            raise ValidationError(message, field=field)
        with self.store.transaction() as tx:
            tx.add_project(project)
        logger.info("Created project {}: {}", project.id, project.name)
        return project

    def get_project(self, ctx: ActorContext, project_id: str) -> Project:
        with self.store.transaction() as tx:
            return tx.require_project(project_id, ctx.organization_id)

    def add_member(
        self,
        ctx: ActorContext,
        name: str,
        email: str,
        title: Optional[str] = None,
        member_id: Optional[str] = None,
    ) -> TeamMember:
        if not name or not name.strip():
            raise ValidationError("'name' is required", field="name")
        if not email or "@" not in email:
            raise ValidationError("'email' must be an email address", field="email")
        kwargs: dict[str, Any] = {"id": member_id} if member_id else {}
        member = TeamMember(
            organization_id=ctx.organization_id,
            name=name.strip(),
            email=email.strip().lower(),
            title=title,
            **kwargs,
        )
        with self.store.transaction() as tx:
            if tx.get_member(member.id) is not None:
                raise ValidationError(f"Team member {member.id} already exists", field="id")
            tx.add_member(member)
        logger.info("Added team member {} ({})", member.id, member.email)
        return member

    def list_members(self, ctx: ActorContext) -> list[TeamMember]:
        with self.store.transaction() as tx:
            return tx.list_members(ctx.organization_id)
