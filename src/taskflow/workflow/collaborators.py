"""External collaborators consumed by the engine: attachments and notifications.

Neither is transactional with task writes.  Attachment uploads run after the
task is committed and each failure is reported on its own; notifications are
fire-and-forget.
"""

from __future__ import annotations

import re
import uuid
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from ..constants import DEFAULT_ATTACHMENT_MAX_BYTES
from .errors import NotFound

_UNSAFE_NAME_RE = re.compile(r"[^A-Za-z0-9._-]+")


class AttachmentError(Exception):
    """An upload was refused or could not be stored."""


@dataclass(frozen=True)
class Attachment:
    id: str
    task_id: str
    filename: str
    size: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class AttachmentStore(ABC):
    @abstractmethod
    def add(self, task_id: str, filename: str, content: bytes) -> Attachment:
        raise NotImplementedError

    @abstractmethod
    def list(self, task_id: str) -> list[Attachment]:
        raise NotImplementedError

    @abstractmethod
    def download(self, attachment_id: str) -> tuple[Attachment, bytes]:
        raise NotImplementedError


def _safe_filename(filename: str) -> str:
    name = Path(filename or "").name
    name = _UNSAFE_NAME_RE.sub("_", name).strip("._")
    return name or "attachment"


class FileAttachmentStore(AttachmentStore):
    """Store blobs under ``<root>/<task_id>/<attachment_id>/<filename>``."""

    def __init__(self, root: Path, max_bytes: int = DEFAULT_ATTACHMENT_MAX_BYTES) -> None:
        self.root = root
        self.max_bytes = max_bytes

    def add(self, task_id: str, filename: str, content: bytes) -> Attachment:
        if not content:
            raise AttachmentError(f"{filename}: file is empty")
        if len(content) > self.max_bytes:
            raise AttachmentError(f"{filename}: {len(content)} bytes exceeds the {self.max_bytes} byte limit")
        attachment_id = f"att-{uuid.uuid4().hex[:10]}"
        target_dir = self.root / _safe_filename(task_id) / attachment_id
        try:
            target_dir.mkdir(parents=True, exist_ok=False)
            (target_dir / _safe_filename(filename)).write_bytes(content)
        except OSError as exc:
            raise AttachmentError(f"{filename}: {exc}") from exc
        return Attachment(id=attachment_id, task_id=task_id, filename=_safe_filename(filename), size=len(content))

    def list(self, task_id: str) -> list[Attachment]:
        task_dir = self.root / _safe_filename(task_id)
        if not task_dir.is_dir():
            return []
        out: list[Attachment] = []
        for att_dir in sorted(p for p in task_dir.iterdir() if p.is_dir()):
            for blob in att_dir.iterdir():
                if blob.is_file():
                    out.append(Attachment(id=att_dir.name, task_id=task_id, filename=blob.name, size=blob.stat().st_size))
        return out

    def download(self, attachment_id: str) -> tuple[Attachment, bytes]:
        safe_id = _safe_filename(attachment_id)
        if self.root.is_dir():
            for att_dir in self.root.glob(f"*/{safe_id}"):
                for blob in att_dir.iterdir():
                    if blob.is_file():
                        data = blob.read_bytes()
                        return Attachment(id=safe_id, task_id=att_dir.parent.name, filename=blob.name, size=len(data)), data
        raise NotFound("Attachment", attachment_id)


class Notifier(ABC):
    @abstractmethod
    def notify(self, event: str, payload: dict[str, Any]) -> None:
        raise NotImplementedError


class LogNotifier(Notifier):
    """Default notifier: records the event in the log only."""

    def notify(self, event: str, payload: dict[str, Any]) -> None:
        logger.info("notify {} {}", event, payload)


def dispatch_safely(notifier: Optional[Notifier], event: str, payload: dict[str, Any]) -> Optional[str]:
    """Send a notification; return a warning string instead of raising."""
    if notifier is None:
        return None
    try:
        notifier.notify(event, payload)
    except Exception as exc:
        logger.warning("Notification {} failed: {}", event, exc)
        return f"Notification '{event}' could not be delivered: {exc}"
    return None
