"""Tests for project statistics (workflow/aggregator.py)."""

from __future__ import annotations

from datetime import date

import pytest

from taskflow.workflow.aggregator import schedule_label, timeline_pct
from taskflow.workflow.context import ActorContext
from taskflow.workflow.errors import NotFound, ValidationError


@pytest.fixture
def project(service, ctx):
    return service.create_project(ctx, "Website relaunch", start_date="2024-03-01", end_date="2024-03-31")


def _add_tasks(service, ctx, project_id: str, force_status, statuses: list[str]) -> None:
    for i, status in enumerate(statuses):
        task = service.create_task(ctx, {"title": f"Step {i}", "project_id": project_id}).value
        if status != "pending":
            force_status(task.id, status)


class TestProjectStats:
    def test_half_done(self, service, ctx, project, force_status) -> None:
        _add_tasks(service, ctx, project.id, force_status, ["completed", "approved", "in_progress", "pending"])
        stats = service.get_stats(ctx, project.id)
        assert stats.total == 4
        assert stats.completed == 2
        assert stats.in_progress == 1
        assert stats.pending == 1
        assert stats.progress_pct == 50
        assert stats.by_status["approved"] == 1
        assert stats.by_status["rejected"] == 0

    def test_empty_project(self, service, ctx, project) -> None:
        stats = service.get_stats(ctx, project.id)
        assert stats.total == 0
        assert stats.progress_pct == 0

    @pytest.mark.parametrize(
        "statuses, expected",
        [
            (["completed", "pending", "pending"], 33),
            (["completed", "completed", "pending"], 67),
            (["completed"] + ["pending"] * 7, 13),
            (["rejected", "review"], 0),
        ],
    )
    def test_rounding(self, service, ctx, project, force_status, statuses, expected) -> None:
        _add_tasks(service, ctx, project.id, force_status, statuses)
        assert service.get_stats(ctx, project.id).progress_pct == expected

    def test_other_projects_are_ignored(self, service, ctx, project, force_status) -> None:
        other = service.create_project(ctx, "Hiring")
        _add_tasks(service, ctx, other.id, force_status, ["completed"])
        _add_tasks(service, ctx, project.id, force_status, ["pending"])
        assert service.get_stats(ctx, project.id).total == 1
        assert [t.project_id for t in service.list_by_project(ctx, other.id)] == [other.id]

    def test_schedule_from_clock(self, service, ctx, project) -> None:
        # clock is 2024-03-10
        stats = service.get_stats(ctx, project.id)
        assert stats.days_remaining == 21
        assert stats.schedule_label == "21 days remaining"
        assert stats.timeline_pct == 30

    def test_explicit_today(self, service, ctx, project) -> None:
        stats = service.get_stats(ctx, project.id, today=date(2024, 4, 2))
        assert stats.timeline_pct == 100
        assert stats.days_remaining == -2
        assert stats.schedule_label == "2 days overdue"

    def test_stats_are_org_scoped(self, service, project) -> None:
        with pytest.raises(NotFound):
            service.get_stats(ActorContext("mallory", "org-other"), project.id)

    def test_to_dict(self, service, ctx, project) -> None:
        data = service.get_stats(ctx, project.id).to_dict()
        assert data["project_id"] == project.id
        assert set(data) >= {"total", "completed", "progress_pct", "timeline_pct", "by_status"}


class TestProjects:
    def test_invalid_dates(self, service, ctx) -> None:
        with pytest.raises(ValidationError) as excinfo:
            service.create_project(ctx, "Backwards", start_date="2024-03-10", end_date="2024-03-01")
        assert excinfo.value.field == "end_date"

    def test_name_required(self, service, ctx) -> None:
        with pytest.raises(ValidationError):
            service.create_project(ctx, "  ")

    def test_unknown_status(self, service, ctx) -> None:
        with pytest.raises(ValidationError):
            service.create_project(ctx, "Launch", status="archived")


class TestTimeline:
    @pytest.mark.parametrize(
        "start, end, today, expected",
        [
            (date(2024, 3, 1), date(2024, 3, 31), date(2024, 3, 16), 50),
            (date(2024, 3, 1), date(2024, 3, 31), date(2024, 2, 1), 0),
            (date(2024, 3, 1), date(2024, 3, 31), date(2024, 4, 1), 100),
            (date(2024, 3, 1), date(2024, 3, 31), date(2024, 3, 1), 0),
            (date(2024, 3, 1), date(2024, 3, 31), date(2024, 3, 31), 100),
            (date(2024, 3, 5), date(2024, 3, 5), date(2024, 3, 5), 100),
            (None, date(2024, 3, 31), date(2024, 3, 16), 0),
            (date(2024, 3, 1), None, date(2024, 3, 16), 0),
        ],
    )
    def test_timeline_pct(self, start, end, today, expected) -> None:
        assert timeline_pct(start, end, today) == expected

    @pytest.mark.parametrize(
        "end, expected",
        [
            (None, "No end date set"),
            (date(2024, 3, 7), "3 days overdue"),
            (date(2024, 3, 9), "1 days overdue"),
            (date(2024, 3, 10), "Due today"),
            (date(2024, 3, 11), "1 day remaining"),
            (date(2024, 3, 20), "10 days remaining"),
        ],
    )
    def test_schedule_label(self, end, expected) -> None:
        assert schedule_label(end, date(2024, 3, 10)) == expected
