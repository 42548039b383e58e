"""Tests for time tracking (workflow/time_ledger.py)."""

from __future__ import annotations

import pytest

from taskflow.workflow.errors import InvalidAmount, TimeTrackingDisabled
from taskflow.workflow.model import HistoryAction, Task


@pytest.fixture
def tracked(service, ctx) -> Task:
    return service.create_task(
        ctx,
        {"title": "Client audit", "time_tracking_enabled": True, "is_billable": True, "budget_hours": 5},
    ).value


class TestAddEntry:
    def test_tracking_disabled(self, service, ctx) -> None:
        task = service.create_task(ctx, {"title": "Untracked"}).value
        with pytest.raises(TimeTrackingDisabled):
            service.add_time_entry(ctx, task.id, 2)
        assert service.list_time_entries(ctx, task.id) == []
        assert service.get_task(ctx, task.id).time_spent == 0

    def test_disabled_is_reported_before_bad_amount(self, service, ctx) -> None:
        task = service.create_task(ctx, {"title": "Untracked"}).value
        with pytest.raises(TimeTrackingDisabled):
            service.add_time_entry(ctx, task.id, -3)

    @pytest.mark.parametrize("hours", [0, -1, -0.5, float("nan"), float("inf"), "2", None, True])
    def test_invalid_amount(self, service, ctx, tracked: Task, hours) -> None:
        with pytest.raises(InvalidAmount):
            service.add_time_entry(ctx, tracked.id, hours)
        assert service.list_time_entries(ctx, tracked.id) == []

    def test_time_spent_is_sum_of_entries(self, service, ctx, clock, tracked: Task) -> None:
        first = service.add_time_entry(ctx, tracked.id, 1.5, "Kickoff call")
        clock.advance(hours=2)
        service.add_time_entry(ctx, tracked.id, 2.25)

        task = service.get_task(ctx, tracked.id)
        entries = service.list_time_entries(ctx, tracked.id)
        assert task.time_spent == 3.75
        assert task.time_spent == sum(e.hours for e in entries)
        assert entries[0].id == first.id
        assert entries[0].actor == "alice"
        assert entries[0].description == "Kickoff call"

        logged = [h for h in service.get_history(ctx, tracked.id) if h.action is HistoryAction.TIME_LOGGED]
        assert len(logged) == 2
        assert logged[0].details["hours"] == 1.5
        assert logged[1].details["time_spent"] == 3.75

    def test_logging_does_not_bump_version(self, service, ctx, tracked: Task) -> None:
        service.add_time_entry(ctx, tracked.id, 1)
        assert service.get_task(ctx, tracked.id).version == 1
        moved = service.transition_status(ctx, tracked.id, "in_progress", expected_version=1)
        assert moved.time_spent == 1


class TestBudget:
    def test_remaining_budget(self, service, ctx, tracked: Task) -> None:
        service.add_time_entry(ctx, tracked.id, 2)
        assert service.ledger.remaining_budget(tracked.id, ctx.organization_id) == 3

    def test_over_budget_goes_negative(self, service, ctx, tracked: Task) -> None:
        service.add_time_entry(ctx, tracked.id, 4)
        service.add_time_entry(ctx, tracked.id, 2)
        summary = service.time_summary(ctx, tracked.id)
        assert summary["time_spent"] == 6
        assert summary["remaining_budget"] == -1
        assert summary["over_budget"] is True
        assert summary["entries"] == 2

    def test_no_budget(self, service, ctx) -> None:
        task = service.create_task(ctx, {"title": "Open ended", "time_tracking_enabled": True}).value
        service.add_time_entry(ctx, task.id, 8)
        assert service.ledger.remaining_budget(task.id) is None
        summary = service.time_summary(ctx, task.id)
        assert summary["remaining_budget"] is None
        assert summary["over_budget"] is False
