"""Task API endpoints.

This module provides a FastAPI router with task CRUD, status transitions,
delegation, time tracking, relationships, history and attachment listing.
It is mounted under ``/api/v1/tasks`` by the main ``create_app`` factory.
Workflow errors raised by the service are turned into JSON responses by the
app-level handler, so the endpoints here never catch them.
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from ..service import AttachmentUpload
from ..workflow.context import ActorContext
from .deps import get_actor


# ---------------------------------------------------------------------------
# Pydantic request / response models
# ---------------------------------------------------------------------------

class AttachmentPayload(BaseModel):
    filename: str
    content_base64: str


class CreateTaskRequest(BaseModel):
    title: str
    description: str = ""
    status: Optional[str] = None
    priority: str = "medium"
    category: Optional[str] = None
    visibility: str = "team"
    tags: list[str] = Field(default_factory=list)
    start_date: Optional[str] = None
    due_date: Optional[str] = None
    estimated_hours: Optional[float] = None
    budget_hours: Optional[float] = None
    time_tracking_enabled: bool = False
    is_billable: bool = False
    client_reference: Optional[str] = None
    is_recurring: bool = False
    recurring_frequency: Optional[str] = None
    recurring_ends_on: Optional[str] = None
    assigned_to: Optional[str] = None
    assignees: list[str] = Field(default_factory=list)
    approvers: list[str] = Field(default_factory=list)
    watchers: list[str] = Field(default_factory=list)
    project_id: Optional[str] = None
    acceptance_criteria: str = ""
    notes: str = ""
    attachments: list[AttachmentPayload] = Field(default_factory=list)


class UpdateTaskRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[str] = None
    category: Optional[str] = None
    visibility: Optional[str] = None
    tags: Optional[list[str]] = None
    start_date: Optional[str] = None
    due_date: Optional[str] = None
    estimated_hours: Optional[float] = None
    budget_hours: Optional[float] = None
    time_tracking_enabled: Optional[bool] = None
    is_billable: Optional[bool] = None
    client_reference: Optional[str] = None
    is_recurring: Optional[bool] = None
    recurring_frequency: Optional[str] = None
    recurring_ends_on: Optional[str] = None
    # Rejected by the engine; owners change through /delegate.
    assigned_to: Optional[str] = None
    assignees: Optional[list[str]] = None
    approvers: Optional[list[str]] = None
    watchers: Optional[list[str]] = None
    project_id: Optional[str] = None
    acceptance_criteria: Optional[str] = None
    notes: Optional[str] = None
    expected_version: Optional[int] = None


class TransitionRequest(BaseModel):
    status: str
    reason: Optional[str] = None
    expected_version: Optional[int] = None


class ApproveRequest(BaseModel):
    expected_version: Optional[int] = None


class RejectRequest(BaseModel):
    reason: Optional[str] = None
    expected_version: Optional[int] = None


class DelegateRequest(BaseModel):
    to_member_id: str
    notes: Optional[str] = None
    expected_version: Optional[int] = None


class TimeEntryRequest(BaseModel):
    # Left untyped so that zero, negative or non-numeric amounts reach the
    # ledger and come back as ``invalid_amount``.
    hours: Any
    description: str = ""


class AddPrerequisiteRequest(BaseModel):
    prerequisite_id: str


class AddLinkRequest(BaseModel):
    linked_id: str


class TaskResponse(BaseModel):
    """Standard wrapper for task responses."""
    task: dict[str, Any]
    warnings: list[str] = Field(default_factory=list)


class CreateTaskResponse(TaskResponse):
    attachments: list[dict[str, Any]] = Field(default_factory=list)


class TaskListResponse(BaseModel):
    tasks: list[dict[str, Any]]
    total: int


class TimeEntryListResponse(BaseModel):
    entries: list[dict[str, Any]]
    total_hours: float


class HistoryResponse(BaseModel):
    history: list[dict[str, Any]]


class RelationshipResponse(BaseModel):
    changed: bool
    task: dict[str, Any]


class StateMachineResponse(BaseModel):
    states: list[str]
    initial: str
    terminal: list[str]
    transitions: dict[str, list[str]]
    guards: dict[str, str]
    labels: dict[str, str]
    colors: dict[str, str]


# ---------------------------------------------------------------------------
# Router factory
# ---------------------------------------------------------------------------

def create_task_router(get_service: Any) -> APIRouter:
    """Create the task API router.

    Parameters
    ----------
    get_service:
        A callable ``(project_dir_param: str | None) -> WorkflowService`` that
        resolves the service for the current request's project directory.
    """
    router = APIRouter(prefix="/api/v1/tasks", tags=["tasks"])

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    @router.get("", response_model=TaskListResponse)
    async def list_tasks(
        project_dir: Optional[str] = Query(None),
        project_id: Optional[str] = Query(None),
        assignee: Optional[str] = Query(None),
        status: Optional[str] = Query(None),
        due_from: Optional[str] = Query(None),
        due_to: Optional[str] = Query(None),
        search: Optional[str] = Query(None),
        ctx: ActorContext = Depends(get_actor),
    ) -> TaskListResponse:
        service = get_service(project_dir)
        tasks = service.list_tasks(
            ctx,
            project_id=project_id,
            assignee=assignee,
            status=status,
            due_from=due_from,
            due_to=due_to,
            search=search,
        )
        data = [t.to_dict() for t in tasks]
        return TaskListResponse(tasks=data, total=len(data))

    @router.post("", response_model=CreateTaskResponse, status_code=201)
    async def create_task(
        body: CreateTaskRequest,
        project_dir: Optional[str] = Query(None),
        ctx: ActorContext = Depends(get_actor),
    ) -> CreateTaskResponse:
        service = get_service(project_dir)
        fields = body.model_dump(exclude={"attachments"})
        if fields.get("status") is None:
            fields.pop("status")
        uploads = [AttachmentUpload.from_base64(a.filename, a.content_base64) for a in body.attachments]
        result = service.create_task(ctx, fields, uploads)
        return CreateTaskResponse(
            task=result.value.to_dict(),
            warnings=result.warnings,
            attachments=[a.to_dict() for a in result.extras.get("attachments", [])],
        )

    @router.get("/meta/state-machine", response_model=StateMachineResponse)
    async def get_state_machine(
        project_dir: Optional[str] = Query(None),
    ) -> StateMachineResponse:
        service = get_service(project_dir)
        return StateMachineResponse(**service.state_machine())

    @router.get("/{task_id}", response_model=TaskResponse)
    async def get_task(
        task_id: str,
        project_dir: Optional[str] = Query(None),
        ctx: ActorContext = Depends(get_actor),
    ) -> TaskResponse:
        service = get_service(project_dir)
        return TaskResponse(task=service.get_task(ctx, task_id).to_dict())

    @router.patch("/{task_id}", response_model=TaskResponse)
    async def update_task(
        task_id: str,
        body: UpdateTaskRequest,
        project_dir: Optional[str] = Query(None),
        ctx: ActorContext = Depends(get_actor),
    ) -> TaskResponse:
        service = get_service(project_dir)
        changes = body.model_dump(exclude_unset=True)
        expected_version = changes.pop("expected_version", None)
        task = service.update_task(ctx, task_id, changes, expected_version=expected_version)
        return TaskResponse(task=task.to_dict())

    @router.delete("/{task_id}")
    async def delete_task(
        task_id: str,
        project_dir: Optional[str] = Query(None),
        ctx: ActorContext = Depends(get_actor),
    ) -> dict[str, str]:
        service = get_service(project_dir)
        service.delete_task(ctx, task_id)
        return {"status": "deleted"}

    # ------------------------------------------------------------------
    # Status transitions & delegation
    # ------------------------------------------------------------------

    @router.post("/{task_id}/transition", response_model=TaskResponse)
    async def transition_task(
        task_id: str,
        body: TransitionRequest,
        project_dir: Optional[str] = Query(None),
        ctx: ActorContext = Depends(get_actor),
    ) -> TaskResponse:
        service = get_service(project_dir)
        task = service.transition_status(
            ctx, task_id, body.status, reason=body.reason, expected_version=body.expected_version
        )
        return TaskResponse(task=task.to_dict())

    @router.post("/{task_id}/approve", response_model=TaskResponse)
    async def approve_task(
        task_id: str,
        body: Optional[ApproveRequest] = None,
        project_dir: Optional[str] = Query(None),
        ctx: ActorContext = Depends(get_actor),
    ) -> TaskResponse:
        service = get_service(project_dir)
        expected_version = body.expected_version if body else None
        task = service.approve(ctx, task_id, expected_version=expected_version)
        return TaskResponse(task=task.to_dict())

    @router.post("/{task_id}/reject", response_model=TaskResponse)
    async def reject_task(
        task_id: str,
        body: RejectRequest,
        project_dir: Optional[str] = Query(None),
        ctx: ActorContext = Depends(get_actor),
    ) -> TaskResponse:
        service = get_service(project_dir)
        task = service.reject(ctx, task_id, body.reason, expected_version=body.expected_version)
        return TaskResponse(task=task.to_dict())

    @router.post("/{task_id}/delegate", response_model=TaskResponse)
    async def delegate_task(
        task_id: str,
        body: DelegateRequest,
        project_dir: Optional[str] = Query(None),
        ctx: ActorContext = Depends(get_actor),
    ) -> TaskResponse:
        service = get_service(project_dir)
        result = service.delegate(
            ctx, task_id, body.to_member_id, notes=body.notes, expected_version=body.expected_version
        )
        return TaskResponse(task=result.value.to_dict(), warnings=result.warnings)

    # ------------------------------------------------------------------
    # Time tracking
    # ------------------------------------------------------------------

    @router.get("/{task_id}/time-entries", response_model=TimeEntryListResponse)
    async def list_time_entries(
        task_id: str,
        project_dir: Optional[str] = Query(None),
        ctx: ActorContext = Depends(get_actor),
    ) -> TimeEntryListResponse:
        service = get_service(project_dir)
        entries = service.list_time_entries(ctx, task_id)
        return TimeEntryListResponse(
            entries=[e.to_dict() for e in entries],
            total_hours=sum(e.hours for e in entries),
        )

    @router.post("/{task_id}/time-entries", status_code=201)
    async def add_time_entry(
        task_id: str,
        body: TimeEntryRequest,
        project_dir: Optional[str] = Query(None),
        ctx: ActorContext = Depends(get_actor),
    ) -> dict[str, Any]:
        service = get_service(project_dir)
        entry = service.add_time_entry(ctx, task_id, body.hours, body.description)
        return {"entry": entry.to_dict(), "task": service.get_task(ctx, task_id).to_dict()}

    @router.get("/{task_id}/time-summary")
    async def time_summary(
        task_id: str,
        project_dir: Optional[str] = Query(None),
        ctx: ActorContext = Depends(get_actor),
    ) -> dict[str, Any]:
        service = get_service(project_dir)
        return service.time_summary(ctx, task_id)

    # ------------------------------------------------------------------
    # Relationships
    # ------------------------------------------------------------------

    @router.get("/{task_id}/prerequisites/unresolved", response_model=TaskListResponse)
    async def unresolved_prerequisites(
        task_id: str,
        project_dir: Optional[str] = Query(None),
        ctx: ActorContext = Depends(get_actor),
    ) -> TaskListResponse:
        service = get_service(project_dir)
        data = [t.to_dict() for t in service.unresolved_prerequisites(ctx, task_id)]
        return TaskListResponse(tasks=data, total=len(data))

    @router.post("/{task_id}/prerequisites", response_model=RelationshipResponse)
    async def add_prerequisite(
        task_id: str,
        body: AddPrerequisiteRequest,
        project_dir: Optional[str] = Query(None),
        ctx: ActorContext = Depends(get_actor),
    ) -> RelationshipResponse:
        service = get_service(project_dir)
        changed = service.add_prerequisite(ctx, task_id, body.prerequisite_id)
        return RelationshipResponse(changed=changed, task=service.get_task(ctx, task_id).to_dict())

    @router.delete("/{task_id}/prerequisites/{prerequisite_id}", response_model=RelationshipResponse)
    async def remove_prerequisite(
        task_id: str,
        prerequisite_id: str,
        project_dir: Optional[str] = Query(None),
        ctx: ActorContext = Depends(get_actor),
    ) -> RelationshipResponse:
        service = get_service(project_dir)
        changed = service.remove_prerequisite(ctx, task_id, prerequisite_id)
        return RelationshipResponse(changed=changed, task=service.get_task(ctx, task_id).to_dict())

    @router.post("/{task_id}/linked", response_model=RelationshipResponse)
    async def add_linked_task(
        task_id: str,
        body: AddLinkRequest,
        project_dir: Optional[str] = Query(None),
        ctx: ActorContext = Depends(get_actor),
    ) -> RelationshipResponse:
        service = get_service(project_dir)
        changed = service.add_linked_task(ctx, task_id, body.linked_id)
        return RelationshipResponse(changed=changed, task=service.get_task(ctx, task_id).to_dict())

    @router.delete("/{task_id}/linked/{linked_id}", response_model=RelationshipResponse)
    async def remove_linked_task(
        task_id: str,
        linked_id: str,
        project_dir: Optional[str] = Query(None),
        ctx: ActorContext = Depends(get_actor),
    ) -> RelationshipResponse:
        service = get_service(project_dir)
        changed = service.remove_linked_task(ctx, task_id, linked_id)
        return RelationshipResponse(changed=changed, task=service.get_task(ctx, task_id).to_dict())

    # ------------------------------------------------------------------
    # History & attachments
    # ------------------------------------------------------------------

    @router.get("/{task_id}/history", response_model=HistoryResponse)
    async def get_history(
        task_id: str,
        project_dir: Optional[str] = Query(None),
        ctx: ActorContext = Depends(get_actor),
    ) -> HistoryResponse:
        service = get_service(project_dir)
        return HistoryResponse(history=[h.to_dict() for h in service.get_history(ctx, task_id)])

    @router.get("/{task_id}/attachments")
    async def list_attachments(
        task_id: str,
        project_dir: Optional[str] = Query(None),
        ctx: ActorContext = Depends(get_actor),
    ) -> dict[str, Any]:
        service = get_service(project_dir)
        return {"attachments": [a.to_dict() for a in service.list_attachments(ctx, task_id)]}

    return router
