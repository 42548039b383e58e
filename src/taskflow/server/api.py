"""FastAPI web server for the taskflow workflow engine."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from .. import __version__
from ..service import WorkflowService
from ..workflow.collaborators import AttachmentError
from ..workflow.errors import ConcurrentModification, NotFound, ValidationError, WorkflowError
from .project_api import create_project_router
from .task_api import create_task_router


def error_status(exc: WorkflowError) -> int:
    """HTTP status code for a workflow error."""
    if isinstance(exc, NotFound):
        return 404
    if isinstance(exc, ValidationError):
        return 422
    if isinstance(exc, ConcurrentModification):
        return 409
    return 400


def create_app(
    project_dir: Optional[Path] = None,
    enable_cors: bool = True,
    service: Optional[WorkflowService] = None,
) -> FastAPI:
    """Create and configure FastAPI application.

    Args:
        project_dir: Default project directory.
        enable_cors: Whether to enable CORS.
        service: Pre-built service to serve every request with (tests,
            embedding). When omitted, one file-backed service is created per
            project directory.

    Returns:
        Configured FastAPI app.
    """
    app = FastAPI(
        title="Taskflow",
        description="Task lifecycle and workflow engine",
        version=__version__,
    )

    if enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.state.default_project_dir = project_dir
    services: dict[Path, WorkflowService] = {}
    services_lock = threading.Lock()

    def _get_project_dir(project_dir_param: Optional[str] = None) -> Path:
        """Get project directory from parameter or default."""
        if project_dir_param:
            return Path(project_dir_param)
        if app.state.default_project_dir:
            return app.state.default_project_dir
        return Path.cwd()

    def _get_service(project_dir_param: Optional[str] = None) -> WorkflowService:
        if service is not None:
            return service
        path = _get_project_dir(project_dir_param).resolve()
        with services_lock:
            if path not in services:
                services[path] = WorkflowService.for_project_dir(path)
            return services[path]

    @app.exception_handler(WorkflowError)
    async def _workflow_error(request: Request, exc: WorkflowError) -> JSONResponse:
        status = error_status(exc)
        logger.debug("{} {} -> {} {}", request.method, request.url.path, status, exc.kind)
        return JSONResponse(status_code=status, content={"error": exc.to_dict()})

    @app.exception_handler(AttachmentError)
    async def _attachment_error(request: Request, exc: AttachmentError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={"error": {"kind": "attachment_error", "message": str(exc)}},
        )

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "name": "Taskflow",
            "version": __version__,
            "status": "running",
        }

    app.include_router(create_task_router(_get_service))
    app.include_router(create_project_router(_get_service))

    return app
