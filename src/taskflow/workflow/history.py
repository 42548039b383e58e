"""Append-only per-task audit log."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Optional

from ..utils import _iso, _now, _parse_iso
from .model import HistoryAction, HistoryEntry
from .store import StoreTx, TaskStore


_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class HistoryRecorder:
    """Write and read :class:`HistoryEntry` records.

    ``append`` always runs inside the caller's transaction, so an entry is
    saved if and only if the state change it describes is saved.
    """

    def __init__(self, store: TaskStore, clock: Callable[[], datetime] = _now) -> None:
        self.store = store
        self._clock = clock

    def append(
        self,
        tx: StoreTx,
        task_id: str,
        actor: str,
        action: HistoryAction,
        description: str,
        details: Optional[dict[str, Any]] = None,
    ) -> HistoryEntry:
        entry = HistoryEntry(
            task_id=task_id,
            actor=actor,
            action=action,
            description=description,
            timestamp=_iso(self._clock()),
            details=dict(details or {}),
        )
        return tx.append_history(entry)

    def list_for(self, task_id: str) -> list[HistoryEntry]:
        """Entries for ``task_id`` ordered oldest to newest.

        Entries sharing a timestamp keep their append order.
        """
        with self.store.transaction() as tx:
            entries = tx.history_for(task_id)
        return sorted(entries, key=lambda e: _parse_iso(e.timestamp) or _EPOCH)
