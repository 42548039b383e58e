"""Tests for the transactional store (workflow/store.py)."""

from __future__ import annotations

from datetime import date
from pathlib import Path

import pytest
import yaml

from taskflow.workflow.errors import ConcurrentModification, NotFound
from taskflow.workflow.model import HistoryAction, HistoryEntry, Task, TaskStatus
from taskflow.workflow.store import StoreTx, TaskStore


@pytest.fixture
def state_dir(tmp_path: Path) -> Path:
    d = tmp_path / ".taskflow"
    d.mkdir()
    return d


@pytest.fixture
def file_store(state_dir: Path) -> TaskStore:
    return TaskStore.at(state_dir)


class TestFileBackend:
    def test_empty_read(self, file_store: TaskStore) -> None:
        assert file_store.list_tasks() == []

    def test_persists_across_instances(self, file_store: TaskStore, state_dir: Path) -> None:
        with file_store.transaction() as tx:
            tx.add_task(Task(id="t1", title="First", organization_id="org", due_date=date(2024, 5, 1)))

        reopened = TaskStore.at(state_dir)
        task = reopened.get_task("t1")
        assert task is not None
        assert task.title == "First"
        assert task.due_date == date(2024, 5, 1)

        raw = yaml.safe_load((state_dir / "workflow.yaml").read_text())
        assert raw["version"] == 1
        assert raw["tasks"][0]["due_date"] == "2024-05-01"
        assert raw["tasks"][0]["status"] == "pending"

    def test_no_write_without_changes(self, file_store: TaskStore, state_dir: Path) -> None:
        with file_store.transaction() as tx:
            tx.get_task("nope")
        assert not (state_dir / "workflow.yaml").exists()

    def test_rollback_on_exception(self, file_store: TaskStore) -> None:
        with file_store.transaction() as tx:
            tx.add_task(Task(id="t1", title="Keep", organization_id="org"))

        with pytest.raises(RuntimeError):
            with file_store.transaction() as tx:
                task = tx.get_task("t1")
                task.title = "Lost"
                tx.save_task(task)
                tx.add_task(Task(id="t2", title="Also lost", organization_id="org"))
                raise RuntimeError("boom")

        assert file_store.get_task("t1").title == "Keep"
        assert file_store.get_task("t2") is None

    def test_non_mapping_document_is_refused(self, file_store: TaskStore, state_dir: Path) -> None:
        (state_dir / "workflow.yaml").write_text("- just\n- a list\n")
        with pytest.raises(RuntimeError, match="expected a mapping"):
            with file_store.transaction():
                pass
        assert (state_dir / "workflow.yaml").read_text() == "- just\n- a list\n"


class TestTransactions:
    def test_duplicate_add_raises(self, store: TaskStore) -> None:
        with store.transaction() as tx:
            tx.add_task(Task(id="t1", title="First", organization_id="org"))
            with pytest.raises(ValueError, match="already exists"):
                tx.add_task(Task(id="t1", title="Duplicate", organization_id="org"))

    def test_save_bumps_version(self, store: TaskStore) -> None:
        with store.transaction() as tx:
            tx.add_task(Task(id="t1", title="First", organization_id="org"))
        with store.transaction() as tx:
            task = tx.get_task("t1")
            tx.save_task(task)
        assert store.get_task("t1").version == 2

    def test_save_without_bump(self, store: TaskStore) -> None:
        with store.transaction() as tx:
            tx.add_task(Task(id="t1", title="First", organization_id="org"))
        with store.transaction() as tx:
            tx.save_task(tx.get_task("t1"), bump_version=False)
        assert store.get_task("t1").version == 1

    def test_stale_copy_is_rejected(self, store: TaskStore) -> None:
        with store.transaction() as tx:
            tx.add_task(Task(id="t1", title="First", organization_id="org"))
        stale = store.get_task("t1")

        with store.transaction() as tx:
            tx.save_task(tx.get_task("t1"))

        with pytest.raises(ConcurrentModification):
            with store.transaction() as tx:
                tx.save_task(stale)

    def test_check_version(self) -> None:
        task = Task(id="t1", title="First", organization_id="org", version=3)
        StoreTx.check_version(task, None)
        StoreTx.check_version(task, 3)
        with pytest.raises(ConcurrentModification) as excinfo:
            StoreTx.check_version(task, 2)
        assert excinfo.value.retryable
        assert excinfo.value.to_dict()["actual_version"] == 3

    def test_require_task_scopes_by_organization(self, store: TaskStore) -> None:
        with store.transaction() as tx:
            tx.add_task(Task(id="t1", title="First", organization_id="org-a"))
        with store.transaction() as tx:
            assert tx.require_task("t1", "org-a").id == "t1"
            with pytest.raises(NotFound):
                tx.require_task("t1", "org-b")
            with pytest.raises(NotFound):
                tx.require_task("missing")

    def test_find_tasks_filters(self, store: TaskStore) -> None:
        with store.transaction() as tx:
            tx.add_task(Task(id="a", title="Quarterly report", organization_id="org", project_id="p1",
                             assigned_to="bob", due_date=date(2024, 3, 5)))
            tx.add_task(Task(id="b", title="Fix login", organization_id="org", assignees=["bob"],
                             status=TaskStatus.IN_PROGRESS, due_date=date(2024, 3, 20)))
            tx.add_task(Task(id="c", title="Other org", organization_id="elsewhere"))

        def ids(tasks: list[Task]) -> list[str]:
            return sorted(t.id for t in tasks)

        assert ids(store.list_tasks(organization_id="org")) == ["a", "b"]
        assert ids(store.list_tasks(project_id="p1")) == ["a"]
        assert ids(store.list_tasks(assignee="bob")) == ["a", "b"]
        assert ids(store.list_tasks(status="in_progress")) == ["b"]
        assert ids(store.list_tasks(due_from=date(2024, 3, 10))) == ["b"]
        assert ids(store.list_tasks(due_to=date(2024, 3, 10))) == ["a"]
        assert ids(store.list_tasks(search="REPORT")) == ["a"]

    def test_history_round_trip(self, store: TaskStore) -> None:
        entry = HistoryEntry(task_id="t1", actor="alice", action=HistoryAction.CREATED, details={"status": "pending"})
        with store.transaction() as tx:
            tx.append_history(entry)
        with store.transaction() as tx:
            (loaded,) = tx.history_for("t1")
        assert loaded == entry
