"""Request-scoped dependencies shared by the routers."""

from __future__ import annotations

from typing import Optional

from fastapi import Header

from ..workflow.context import ActorContext


async def get_actor(
    x_actor_id: Optional[str] = Header(None),
    x_organization_id: Optional[str] = Header(None),
) -> ActorContext:
    """Build the caller's context from the ``X-Actor-Id`` / ``X-Organization-Id`` headers.

    Missing headers surface as a ``validation_error`` through the app's
    error handler.
    """
    return ActorContext(
        actor_id=(x_actor_id or "").strip(),
        organization_id=(x_organization_id or "").strip(),
    )
