"""Shared fixtures: an in-memory store, a fixed clock and a small team."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from taskflow.service import WorkflowService
from taskflow.workflow.context import ActorContext
from taskflow.workflow.model import TaskStatus
from taskflow.workflow.store import TaskStore

ORG = "org-acme"


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2024, 3, 10, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def store() -> TaskStore:
    return TaskStore.in_memory()


@pytest.fixture
def service(store: TaskStore, clock: FixedClock) -> WorkflowService:
    return WorkflowService(store, clock=clock)


@pytest.fixture
def ctx() -> ActorContext:
    return ActorContext(actor_id="alice", organization_id=ORG)


@pytest.fixture
def team(service: WorkflowService, ctx: ActorContext) -> dict[str, str]:
    alice = service.add_member(ctx, "Alice", "alice@example.com", member_id="alice")
    bob = service.add_member(ctx, "Bob", "bob@example.com", title="Reviewer", member_id="bob")
    return {"alice": alice.id, "bob": bob.id}


@pytest.fixture
def force_status(store: TaskStore):
    """Put a task straight into a status, bypassing the engine."""

    def _force(task_id: str, status: str) -> None:
        with store.transaction() as tx:
            task = tx.get_task(task_id)
            task.status = TaskStatus(status)
            tx.save_task(task)

    return _force
