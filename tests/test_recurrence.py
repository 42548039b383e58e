"""Tests for recurring tasks (workflow/recurrence.py)."""

from __future__ import annotations

from datetime import date

import pytest

from taskflow.workflow.context import ActorContext
from taskflow.workflow.model import HistoryAction, RecurringFrequency, Task, TaskStatus
from taskflow.workflow.recurrence import SYSTEM_ACTOR, advance


def _recurring(service, ctx, **fields) -> Task:
    values = {
        "title": "Weekly status report",
        "is_recurring": True,
        "recurring_frequency": "weekly",
        "recurring_ends_on": "2024-12-31",
    }
    values.update(fields)
    return service.create_task(ctx, values).value


def _complete(service, ctx, task_id: str) -> Task:
    service.transition_status(ctx, task_id, "in_progress")
    return service.transition_status(ctx, task_id, "completed")


def _successors(service, ctx, task_id: str) -> list[Task]:
    return [t for t in service.list_tasks(ctx) if t.recurrence_parent_id == task_id]


class TestAdvance:
    @pytest.mark.parametrize(
        "start, frequency, expected",
        [
            (date(2024, 3, 4), RecurringFrequency.DAILY, date(2024, 3, 5)),
            (date(2024, 3, 4), RecurringFrequency.WEEKLY, date(2024, 3, 11)),
            (date(2024, 3, 4), RecurringFrequency.BIWEEKLY, date(2024, 3, 18)),
            (date(2024, 1, 31), RecurringFrequency.MONTHLY, date(2024, 2, 29)),
            (date(2023, 1, 31), RecurringFrequency.MONTHLY, date(2023, 2, 28)),
            (date(2024, 11, 30), RecurringFrequency.QUARTERLY, date(2025, 2, 28)),
            (date(2024, 12, 31), RecurringFrequency.DAILY, date(2025, 1, 1)),
        ],
    )
    def test_periods(self, start: date, frequency: RecurringFrequency, expected: date) -> None:
        assert advance(start, frequency) == expected


class TestOnCompleted:
    def test_weekly_successor(self, service, ctx, team) -> None:
        task = _recurring(
            service,
            ctx,
            start_date="2024-03-04",
            due_date="2024-03-08",
            assigned_to=team["bob"],
            approvers=[team["alice"]],
            time_tracking_enabled=True,
            tags=["ops"],
        )
        service.add_time_entry(ctx, task.id, 2)
        _complete(service, ctx, task.id)

        (successor,) = _successors(service, ctx, task.id)
        assert successor.id != task.id
        assert successor.status is TaskStatus.PENDING
        assert successor.start_date == date(2024, 3, 11)
        assert successor.due_date == date(2024, 3, 15)
        assert successor.title == task.title
        assert successor.assigned_to == "bob"
        assert successor.approvers == ["alice"]
        assert successor.tags == ["ops"]
        assert successor.recurring_frequency is RecurringFrequency.WEEKLY
        assert successor.time_spent == 0
        assert successor.completed_at is None
        assert successor.created_by == SYSTEM_ACTOR

        (created,) = service.get_history(ctx, successor.id)
        assert created.action is HistoryAction.CREATED
        assert created.details == {"predecessor_id": task.id}
        assert service.list_time_entries(ctx, successor.id) == []

        original = service.get_task(ctx, task.id)
        assert original.status is TaskStatus.COMPLETED

    def test_monthly_clamps_to_month_end(self, service, ctx) -> None:
        task = _recurring(service, ctx, recurring_frequency="monthly", due_date="2024-01-31")
        _complete(service, ctx, task.id)
        (successor,) = _successors(service, ctx, task.id)
        assert successor.due_date == date(2024, 2, 29)
        assert successor.start_date is None

    def test_no_dates_recur_from_today(self, service, ctx) -> None:
        task = _recurring(service, ctx, recurring_frequency="daily")
        _complete(service, ctx, task.id)
        (successor,) = _successors(service, ctx, task.id)
        assert successor.start_date == date(2024, 3, 11)
        assert successor.due_date is None

    def test_series_end(self, service, ctx) -> None:
        # clock is 2024-03-10; the series ended yesterday
        task = _recurring(service, ctx, due_date="2024-03-08", recurring_ends_on="2024-03-09")
        _complete(service, ctx, task.id)
        assert _successors(service, ctx, task.id) == []
        assert len(service.list_tasks(ctx)) == 1

    def test_series_end_without_dates(self, service, ctx) -> None:
        task = _recurring(service, ctx, recurring_frequency="daily", recurring_ends_on="2024-03-09")
        _complete(service, ctx, task.id)
        assert _successors(service, ctx, task.id) == []

    def test_last_occurrence_on_end_date(self, service, ctx) -> None:
        task = _recurring(service, ctx, due_date="2024-03-08", recurring_ends_on="2024-03-15")
        _complete(service, ctx, task.id)
        (successor,) = _successors(service, ctx, task.id)
        assert successor.due_date == date(2024, 3, 15)

    def test_reopen_and_complete_spawns_once(self, service, ctx) -> None:
        task = _recurring(service, ctx, due_date="2024-03-08")
        _complete(service, ctx, task.id)
        service.transition_status(ctx, task.id, "in_progress")
        service.transition_status(ctx, task.id, "completed")
        assert len(_successors(service, ctx, task.id)) == 1

    def test_relationships_not_copied(self, service, ctx) -> None:
        prereq = service.create_task(ctx, {"title": "Gather metrics"}).value
        task = _recurring(service, ctx, due_date="2024-03-08")
        service.add_prerequisite(ctx, task.id, prereq.id)
        _complete(service, ctx, prereq.id)
        _complete(service, ctx, task.id)
        (successor,) = _successors(service, ctx, task.id)
        assert successor.prerequisite_ids == []
        assert successor.linked_ids == []

    def test_non_recurring_has_no_successor(self, service, ctx) -> None:
        task = service.create_task(ctx, {"title": "One off"}).value
        _complete(service, ctx, task.id)
        assert len(service.list_tasks(ctx)) == 1


class TestTick:
    def test_tick_spawns_missing_successors(self, service, ctx, force_status) -> None:
        task = _recurring(service, ctx, due_date="2024-03-08")
        force_status(task.id, "approved")

        spawned = service.recurrence_tick(ctx)
        assert [t.recurrence_parent_id for t in spawned] == [task.id]
        assert spawned[0].due_date == date(2024, 3, 15)

        assert service.recurrence_tick(ctx) == []

    def test_tick_after_normal_completion_is_noop(self, service, ctx) -> None:
        task = _recurring(service, ctx, due_date="2024-03-08")
        _complete(service, ctx, task.id)
        assert service.recurrence_tick(ctx) == []
        assert len(_successors(service, ctx, task.id)) == 1

    def test_tick_is_scoped_to_organization(self, service, ctx, force_status) -> None:
        task = _recurring(service, ctx, due_date="2024-03-08")
        force_status(task.id, "completed")
        assert service.recurrence_tick(ActorContext("mallory", "org-other")) == []
        assert len(service.recurrence_tick(ctx)) == 1
