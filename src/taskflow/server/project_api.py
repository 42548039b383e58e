"""Organization-level endpoints: projects, team members, recurrence and attachment downloads."""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from loguru import logger
from pydantic import BaseModel

from ..utils import _parse_iso
from ..workflow.context import ActorContext
from ..workflow.errors import ValidationError
from .deps import get_actor


class CreateProjectRequest(BaseModel):
    name: str
    description: str = ""
    status: str = "active"
    priority: str = "medium"
    start_date: Optional[str] = None
    end_date: Optional[str] = None


class AddMemberRequest(BaseModel):
    name: str
    email: str
    title: Optional[str] = None
    id: Optional[str] = None


class RecurrenceTickRequest(BaseModel):
    now: Optional[str] = None


def create_project_router(get_service: Any) -> APIRouter:
    """Create the router for projects, members, recurrence and attachments."""
    router = APIRouter(prefix="/api/v1", tags=["projects"])

    @router.post("/projects", status_code=201)
    async def create_project(
        body: CreateProjectRequest,
        project_dir: Optional[str] = Query(None),
        ctx: ActorContext = Depends(get_actor),
    ) -> dict[str, Any]:
        service = get_service(project_dir)
        project = service.create_project(ctx, **body.model_dump())
        return {"project": project.to_dict()}

    @router.get("/projects/{project_id}")
    async def get_project(
        project_id: str,
        project_dir: Optional[str] = Query(None),
        ctx: ActorContext = Depends(get_actor),
    ) -> dict[str, Any]:
        service = get_service(project_dir)
        return {"project": service.get_project(ctx, project_id).to_dict()}

    @router.get("/projects/{project_id}/tasks")
    async def list_project_tasks(
        project_id: str,
        project_dir: Optional[str] = Query(None),
        ctx: ActorContext = Depends(get_actor),
    ) -> dict[str, Any]:
        service = get_service(project_dir)
        data = [t.to_dict() for t in service.list_by_project(ctx, project_id)]
        return {"tasks": data, "total": len(data)}

    @router.get("/projects/{project_id}/stats")
    async def project_stats(
        project_id: str,
        project_dir: Optional[str] = Query(None),
        ctx: ActorContext = Depends(get_actor),
    ) -> dict[str, Any]:
        service = get_service(project_dir)
        return {"stats": service.get_stats(ctx, project_id).to_dict()}

    @router.get("/members")
    async def list_members(
        project_dir: Optional[str] = Query(None),
        ctx: ActorContext = Depends(get_actor),
    ) -> dict[str, Any]:
        service = get_service(project_dir)
        return {"members": [m.to_dict() for m in service.list_members(ctx)]}

    @router.post("/members", status_code=201)
    async def add_member(
        body: AddMemberRequest,
        project_dir: Optional[str] = Query(None),
        ctx: ActorContext = Depends(get_actor),
    ) -> dict[str, Any]:
        service = get_service(project_dir)
        member = service.add_member(ctx, body.name, body.email, title=body.title, member_id=body.id)
        return {"member": member.to_dict()}

    @router.post("/recurrence/tick")
    async def recurrence_tick(
        body: Optional[RecurrenceTickRequest] = None,
        project_dir: Optional[str] = Query(None),
        ctx: ActorContext = Depends(get_actor),
    ) -> dict[str, Any]:
        service = get_service(project_dir)
        now = None
        if body and body.now:
            now = _parse_iso(body.now)
            if now is None:
                raise ValidationError("'now' must be an ISO-8601 timestamp", field="now")
        spawned = service.recurrence_tick(ctx, now)
        if spawned:
            logger.info("Recurrence tick spawned {} task(s)", len(spawned))
        return {"spawned": [t.to_dict() for t in spawned]}

    @router.get("/attachments/{attachment_id}")
    async def download_attachment(
        attachment_id: str,
        project_dir: Optional[str] = Query(None),
        ctx: ActorContext = Depends(get_actor),
    ) -> Response:
        service = get_service(project_dir)
        attachment, data = service.download_attachment(ctx, attachment_id)
        return Response(
            content=data,
            media_type="application/octet-stream",
            headers={"Content-Disposition": f'attachment; filename="{attachment.filename}"'},
        )

    return router
