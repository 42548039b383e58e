"""Task store with transactional, lock-protected access.

All state (tasks, projects, members, time entries and history) lives in one
document so that a state change and its history entry are saved together.
Every read and write goes through :meth:`TaskStore.transaction`, which holds
an exclusive lock for the whole load → validate → mutate → save sequence and
saves nothing when the body raises.
"""

from __future__ import annotations

import copy
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import date
from pathlib import Path
from typing import Any, Iterator, Optional

import filelock
import yaml
from loguru import logger

from ..constants import LOCK_FILENAME, LOCK_TIMEOUT, STORE_FILENAME, STORE_SCHEMA_VERSION
from ..io_utils import _atomic_write_yaml
from .errors import ConcurrentModification, NotFound, UnknownMember
from .model import HistoryEntry, Project, Task, TaskStatus, TeamMember, TimeEntry


def _empty_document() -> dict[str, Any]:
    return {
        "version": STORE_SCHEMA_VERSION,
        "tasks": [],
        "projects": [],
        "members": [],
        "time_entries": [],
        "history": [],
    }


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------

class StoreBackend(ABC):
    """Persistence mechanism behind :class:`TaskStore`."""

    @abstractmethod
    def locked(self) -> Any:
        """Return a context manager holding the exclusive store lock."""
        raise NotImplementedError

    @abstractmethod
    def load(self) -> dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    def save(self, document: dict[str, Any]) -> None:
        raise NotImplementedError


class YamlFileBackend(StoreBackend):
    """Single YAML file guarded by a cross-process file lock."""

    def __init__(self, path: Path, lock_path: Path, timeout: float = LOCK_TIMEOUT) -> None:
        self.path = path
        self._file_lock = filelock.FileLock(str(lock_path), timeout=timeout)
        self._thread_lock = threading.RLock()

    @contextmanager
    def locked(self) -> Iterator[None]:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self._thread_lock:
            with self._file_lock:
                yield

    def load(self) -> dict[str, Any]:
        if not self.path.exists():
            return _empty_document()
        raw = yaml.safe_load(self.path.read_text(encoding="utf-8"))
        if raw is None:
            return _empty_document()
        if not isinstance(raw, dict):
            # Refuse to continue: saving now would overwrite whatever is on disk.
            raise RuntimeError(f"{self.path.name}: expected a mapping, got {type(raw).__name__}")
        document = _empty_document()
        document.update(raw)
        return document

    def save(self, document: dict[str, Any]) -> None:
        _atomic_write_yaml(self.path, document)


class MemoryBackend(StoreBackend):
    """Process-local backend, used for embedding and tests."""

    def __init__(self) -> None:
        self._document = _empty_document()
        self._lock = threading.RLock()

    def locked(self) -> Any:
        return self._lock

    def load(self) -> dict[str, Any]:
        return copy.deepcopy(self._document)

    def save(self, document: dict[str, Any]) -> None:
        self._document = copy.deepcopy(document)


# ---------------------------------------------------------------------------
# TaskStore
# ---------------------------------------------------------------------------

class TaskStore:
    """Repository for tasks and the records that hang off them.

    Parameters
    ----------
    backend:
        Where the document is persisted.  Use :meth:`at` for the file-backed
        store inside a state directory and :meth:`in_memory` for tests.
    """

    def __init__(self, backend: StoreBackend) -> None:
        self._backend = backend

    @classmethod
    def at(cls, state_dir: Path) -> "TaskStore":
        return cls(YamlFileBackend(state_dir / STORE_FILENAME, state_dir / LOCK_FILENAME))

    @classmethod
    def in_memory(cls) -> "TaskStore":
        return cls(MemoryBackend())

    @contextmanager
    def transaction(self) -> Iterator["StoreTx"]:
        """Acquire the lock, load the document, yield a transaction, save on exit.

        Usage::

            with store.transaction() as tx:
                task = tx.require_task("task-abc123", org_id)
                task.title = "Renamed"
                tx.save_task(task)
                # saved on exit unless the block raised
        """
        with self._backend.locked():
            tx = StoreTx.from_document(self._backend.load())
            yield tx
            if tx.dirty:
                self._backend.save(tx.to_document())

    # -- read-only conveniences ---------------------------------------------

    def get_task(self, task_id: str) -> Optional[Task]:
        with self.transaction() as tx:
            return tx.get_task(task_id)

    def list_tasks(self, **filters: Any) -> list[Task]:
        with self.transaction() as tx:
            return tx.find_tasks(**filters)


class StoreTx:
    """In-memory view of the document for the duration of one transaction.

    Mutations mark the transaction dirty; the owning :class:`TaskStore`
    writes the document back when the ``with`` block exits cleanly.
    """

    def __init__(
        self,
        tasks: list[Task],
        projects: list[Project],
        members: list[TeamMember],
        time_entries: list[TimeEntry],
        history: list[HistoryEntry],
    ) -> None:
        self._tasks: dict[str, Task] = {t.id: t for t in tasks}
        self._projects: dict[str, Project] = {p.id: p for p in projects}
        self._members: dict[str, TeamMember] = {m.id: m for m in members}
        self._time_entries = time_entries
        self._history = history
        self.dirty = False

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "StoreTx":
        def _items(key: str) -> list[dict[str, Any]]:
            raw = document.get(key) or []
            return [item for item in raw if isinstance(item, dict)] if isinstance(raw, list) else []

        return cls(
            tasks=[Task.from_dict(d) for d in _items("tasks")],
            projects=[Project.from_dict(d) for d in _items("projects")],
            members=[TeamMember.from_dict(d) for d in _items("members")],
            time_entries=[TimeEntry.from_dict(d) for d in _items("time_entries")],
            history=[HistoryEntry.from_dict(d) for d in _items("history")],
        )

    def to_document(self) -> dict[str, Any]:
        return {
            "version": STORE_SCHEMA_VERSION,
            "tasks": [t.to_dict() for t in self._tasks.values()],
            "projects": [p.to_dict() for p in self._projects.values()],
            "members": [m.to_dict() for m in self._members.values()],
            "time_entries": [e.to_dict() for e in self._time_entries],
            "history": [h.to_dict() for h in self._history],
        }

    # -- tasks ----------------------------------------------------------------

    def get_task(self, task_id: str) -> Optional[Task]:
        return self._tasks.get(task_id)

    def require_task(self, task_id: str, organization_id: Optional[str] = None) -> Task:
        """Return the task or raise :class:`NotFound`.

        Tasks outside ``organization_id`` are reported as missing.
        """
        task = self._tasks.get(task_id)
        if task is None or (organization_id is not None and task.organization_id != organization_id):
            raise NotFound("Task", task_id)
        return task

    def list_tasks(self) -> list[Task]:
        return list(self._tasks.values())

    def find_tasks(
        self,
        *,
        organization_id: Optional[str] = None,
        project_id: Optional[str] = None,
        assignee: Optional[str] = None,
        status: Optional[str] = None,
        due_from: Optional[date] = None,
        due_to: Optional[date] = None,
        search: Optional[str] = None,
    ) -> list[Task]:
        """Filter tasks.  ``assignee`` matches the owner or any assignee."""
        out: list[Task] = []
        for t in self._tasks.values():
            if organization_id and t.organization_id != organization_id:
                continue
            if project_id and t.project_id != project_id:
                continue
            if assignee and t.assigned_to != assignee and assignee not in t.assignees:
                continue
            if status and t.status.value != str(getattr(status, "value", status)):
                continue
            if due_from or due_to:
                if t.due_date is None:
                    continue
                if due_from and t.due_date < due_from:
                    continue
                if due_to and t.due_date > due_to:
                    continue
            if search:
                q = search.lower()
                if q not in t.title.lower() and q not in t.description.lower() and q not in t.id.lower():
                    continue
            out.append(t)
        return out

    def add_task(self, task: Task) -> Task:
        if task.id in self._tasks:
            raise ValueError(f"Task {task.id} already exists")
        self._tasks[task.id] = task
        self.dirty = True
        return task

    def save_task(self, task: Task, *, bump_version: bool = True) -> Task:
        """Write ``task`` back, checking and incrementing its revision.

        A task object whose ``version`` no longer matches the stored one was
        read before someone else wrote it, and is rejected.
        """
        stored = self._tasks.get(task.id)
        if stored is None:
            raise NotFound("Task", task.id)
        if stored is not task and stored.version != task.version:
            raise ConcurrentModification(task.id, task.version, stored.version)
        if bump_version:
            task.version += 1
        self._tasks[task.id] = task
        self.dirty = True
        return task

    def remove_task(self, task_id: str) -> bool:
        if self._tasks.pop(task_id, None) is None:
            return False
        self.dirty = True
        return True

    @staticmethod
    def check_version(task: Task, expected_version: Optional[int]) -> None:
        if expected_version is not None and task.version != expected_version:
            raise ConcurrentModification(task.id, expected_version, task.version)

    def successors_of(self, task_id: str) -> list[Task]:
        return [t for t in self._tasks.values() if t.recurrence_parent_id == task_id]

    def tasks_in_status(self, *statuses: TaskStatus) -> list[Task]:
        wanted = set(statuses)
        return [t for t in self._tasks.values() if t.status in wanted]

    # -- projects -------------------------------------------------------------

    def get_project(self, project_id: str) -> Optional[Project]:
        return self._projects.get(project_id)

    def require_project(self, project_id: str, organization_id: Optional[str] = None) -> Project:
        project = self._projects.get(project_id)
        if project is None or (organization_id is not None and project.organization_id != organization_id):
            raise NotFound("Project", project_id)
        return project

    def add_project(self, project: Project) -> Project:
        if project.id in self._projects:
            raise ValueError(f"Project {project.id} already exists")
        self._projects[project.id] = project
        self.dirty = True
        return project

    # -- members --------------------------------------------------------------

    def get_member(self, member_id: str) -> Optional[TeamMember]:
        return self._members.get(member_id)

    def require_member(self, member_id: str, organization_id: Optional[str] = None) -> TeamMember:
        member = self._members.get(member_id)
        if member is None or (organization_id is not None and member.organization_id != organization_id):
            raise UnknownMember(member_id)
        return member

    def list_members(self, organization_id: Optional[str] = None) -> list[TeamMember]:
        return [
            m for m in self._members.values()
            if organization_id is None or m.organization_id == organization_id
        ]

    def add_member(self, member: TeamMember) -> TeamMember:
        if member.id in self._members:
            raise ValueError(f"Team member {member.id} already exists")
        self._members[member.id] = member
        self.dirty = True
        return member

    # -- time entries ---------------------------------------------------------

    def add_time_entry(self, entry: TimeEntry) -> TimeEntry:
        self._time_entries.append(entry)
        self.dirty = True
        return entry

    def time_entries_for(self, task_id: str) -> list[TimeEntry]:
        return [e for e in self._time_entries if e.task_id == task_id]

    # -- history --------------------------------------------------------------

    def append_history(self, entry: HistoryEntry) -> HistoryEntry:
        self._history.append(entry)
        self.dirty = True
        logger.debug("history {} {} {}", entry.task_id, entry.action.value, entry.description)
        return entry

    def history_for(self, task_id: str) -> list[HistoryEntry]:
        return [h for h in self._history if h.task_id == task_id]
