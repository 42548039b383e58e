"""Prerequisite / linked / dependent edges between tasks.

A prerequisite edge ``A → B`` means *A must finish before B*; it is stored
as ``A`` in ``B.prerequisite_ids`` and, as the inverse view, ``B`` in
``A.dependent_ids``.  Linked edges are symmetric and imply no ordering.
"""

from __future__ import annotations

from typing import Optional

from loguru import logger

from .context import ActorContext
from .errors import CycleDetected, ValidationError
from .history import HistoryRecorder
from .model import EdgeKind, HistoryAction, Task
from .store import StoreTx, TaskStore


def _add_unique(values: list[str], item: str) -> bool:
    if item in values:
        return False
    values.append(item)
    return True


def _discard(values: list[str], item: str) -> bool:
    if item not in values:
        return False
    values.remove(item)
    return True


class RelationshipGraph:
    """Maintain task relationships and keep prerequisite edges acyclic.

    Edge edits run inside a store transaction, whose exclusive lock also
    serialises cycle detection: two concurrent insertions can never jointly
    create a cycle that neither saw.
    """

    def __init__(self, store: TaskStore, history: HistoryRecorder) -> None:
        self.store = store
        self.history = history

    # ------------------------------------------------------------------
    # Edits
    # ------------------------------------------------------------------

    def add_edge(self, ctx: ActorContext, kind: str | EdgeKind, from_id: str, to_id: str) -> bool:
        """Add an edge; return False when it already existed.

        Raises :class:`CycleDetected` when a prerequisite edge would close a
        cycle (including ``from_id == to_id``).
        """
        edge = self._kind(kind)
        with self.store.transaction() as tx:
            source = tx.require_task(from_id, ctx.organization_id)
            target = tx.require_task(to_id, ctx.organization_id)

            if edge is EdgeKind.PREREQUISITE:
                if from_id in target.prerequisite_ids:
                    return False
                if self.would_cycle(tx, from_id, to_id):
                    raise CycleDetected(from_id, to_id)
                target.prerequisite_ids.append(from_id)
                _add_unique(source.dependent_ids, to_id)
                description = f"Added prerequisite {from_id} ({source.title})"
                anchor = target
            else:
                if from_id == to_id:
                    raise ValidationError("A task cannot be linked to itself", field="task_id")
                if to_id in source.linked_ids:
                    return False
                source.linked_ids.append(to_id)
                _add_unique(target.linked_ids, from_id)
                description = f"Linked to {to_id} ({target.title})"
                anchor = source

            self._save_pair(tx, source, target)
            self.history.append(
                tx,
                anchor.id,
                ctx.actor_id,
                HistoryAction.RELATIONSHIP_ADDED,
                description,
                {"kind": edge.value, "from": from_id, "to": to_id},
            )
        logger.info("Added {} edge {} -> {}", edge.value, from_id, to_id)
        return True

    def remove_edge(self, ctx: ActorContext, kind: str | EdgeKind, from_id: str, to_id: str) -> bool:
        """Remove an edge; return False when there was nothing to remove."""
        edge = self._kind(kind)
        with self.store.transaction() as tx:
            source = tx.require_task(from_id, ctx.organization_id)
            target = tx.require_task(to_id, ctx.organization_id)

            if edge is EdgeKind.PREREQUISITE:
                if not _discard(target.prerequisite_ids, from_id):
                    return False
                _discard(source.dependent_ids, to_id)
                description = f"Removed prerequisite {from_id}"
                anchor = target
            else:
                if not _discard(source.linked_ids, to_id):
                    return False
                _discard(target.linked_ids, from_id)
                description = f"Unlinked {to_id}"
                anchor = source

            self._save_pair(tx, source, target)
            self.history.append(
                tx,
                anchor.id,
                ctx.actor_id,
                HistoryAction.RELATIONSHIP_REMOVED,
                description,
                {"kind": edge.value, "from": from_id, "to": to_id},
            )
        logger.info("Removed {} edge {} -> {}", edge.value, from_id, to_id)
        return True

    def detach(self, tx: StoreTx, task: Task, actor: str) -> None:
        """Drop every edge that references ``task`` from the other side.

        Each neighbour gets one ``relationship_removed`` entry per edge it
        lost, written in ``tx``.
        """
        for other in tx.list_tasks():
            if other.id == task.id:
                continue
            removed = []
            if _discard(other.prerequisite_ids, task.id):
                removed.append((EdgeKind.PREREQUISITE, task.id, other.id, f"Removed prerequisite {task.id}"))
            if _discard(other.dependent_ids, task.id):
                removed.append((EdgeKind.PREREQUISITE, other.id, task.id, f"Removed dependent {task.id}"))
            if _discard(other.linked_ids, task.id):
                removed.append((EdgeKind.LINKED, other.id, task.id, f"Unlinked {task.id}"))
            if not removed:
                continue
            tx.save_task(other)
            for edge, from_id, to_id, description in removed:
                self.history.append(
                    tx,
                    other.id,
                    actor,
                    HistoryAction.RELATIONSHIP_REMOVED,
                    f"{description} (task deleted)",
                    {"kind": edge.value, "from": from_id, "to": to_id, "reason": "deleted"},
                )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @staticmethod
    def would_cycle(tx: StoreTx, from_id: str, to_id: str) -> bool:
        """Return True if making ``from_id`` a prerequisite of ``to_id`` closes a cycle.

        Depth-first search from ``to_id`` along dependent edges; reaching
        ``from_id`` means ``to_id`` already (transitively) precedes it.
        """
        if from_id == to_id:
            return True
        visited: set[str] = set()
        stack: list[str] = [to_id]
        while stack:
            current = stack.pop()
            if current == from_id:
                return True
            if current in visited:
                continue
            visited.add(current)
            node = tx.get_task(current)
            if node is not None:
                stack.extend(node.dependent_ids)
        return False

    @staticmethod
    def unresolved_in(tx: StoreTx, task: Task) -> list[Task]:
        unresolved: list[Task] = []
        for dep_id in task.prerequisite_ids:
            dep = tx.get_task(dep_id)
            if dep is not None and not dep.is_resolved:
                unresolved.append(dep)
        return unresolved

    def unresolved_prerequisites(self, task_id: str, organization_id: Optional[str] = None) -> list[Task]:
        """Prerequisite tasks whose status is neither completed nor approved."""
        with self.store.transaction() as tx:
            task = tx.require_task(task_id, organization_id)
            return self.unresolved_in(tx, task)

    def dependency_graph(self, ctx: ActorContext, project_id: Optional[str] = None) -> dict[str, list[str]]:
        """Adjacency list ``{task_id: [prerequisite ids]}`` for the organization."""
        with self.store.transaction() as tx:
            tasks = tx.find_tasks(organization_id=ctx.organization_id, project_id=project_id)
        return {t.id: list(t.prerequisite_ids) for t in tasks}

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _kind(kind: str | EdgeKind) -> EdgeKind:
        try:
            return EdgeKind(getattr(kind, "value", kind))
        except ValueError:
            raise ValidationError(
                f"Unknown relationship kind {kind!r}; expected one of {[k.value for k in EdgeKind]}",
                field="kind",
            ) from None

    @staticmethod
    def _save_pair(tx: StoreTx, source: Task, target: Task) -> None:
        tx.save_task(source)
        if target is not source:
            tx.save_task(target)
