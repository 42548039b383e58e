"""Load optional engine configuration from `.taskflow/config.yaml`."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from .constants import (
    CONFIG_FILE,
    DEFAULT_ATTACHMENT_MAX_BYTES,
    DEFAULT_LOG_LEVEL,
    STATE_DIR_NAME,
)
from .io_utils import _load_data_with_error

VALID_LOG_LEVELS = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}


def load_engine_config(project_dir: Path) -> tuple[dict[str, Any], str | None]:
    """Load the optional engine config file.

    Args:
        project_dir: Directory that holds the `.taskflow/` state directory.

    Returns:
        A tuple of `(config, error_message)`. If the file is missing, returns `({}, None)`.
    """
    project_dir = project_dir.resolve()
    path = project_dir / STATE_DIR_NAME / CONFIG_FILE
    if not path.exists():
        return {}, None
    data, err = _load_data_with_error(path, {})
    if err:
        return {}, err
    return data, None


def _get_nested(config: dict[str, Any], *keys: str) -> Any:
    cur: Any = config
    for key in keys:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(key)
    return cur


def get_workflow_config(config: dict[str, Any]) -> dict[str, Any]:
    """Extract the `workflow` block from the engine config."""
    raw = _get_nested(config, "workflow")
    return raw if isinstance(raw, dict) else {}


def get_enforce_prerequisites(config: dict[str, Any]) -> bool:
    """Whether unresolved prerequisites block starting or completing a task.

    Defaults to True when unset or not a boolean.
    """
    raw = get_workflow_config(config).get("enforce_prerequisites")
    return raw if isinstance(raw, bool) else True


def get_attachment_max_bytes(config: dict[str, Any]) -> int:
    raw = _get_nested(config, "attachments", "max_bytes")
    if isinstance(raw, int) and not isinstance(raw, bool) and raw > 0:
        return raw
    return DEFAULT_ATTACHMENT_MAX_BYTES


def get_log_level(config: dict[str, Any]) -> str:
    raw = _get_nested(config, "logging", "level")
    if isinstance(raw, str) and raw.upper() in VALID_LOG_LEVELS:
        return raw.upper()
    return DEFAULT_LOG_LEVEL
