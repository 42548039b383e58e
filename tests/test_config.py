from __future__ import annotations

from pathlib import Path

import pytest

from taskflow.config import (
    get_attachment_max_bytes,
    get_enforce_prerequisites,
    get_log_level,
    load_engine_config,
)
from taskflow.constants import DEFAULT_ATTACHMENT_MAX_BYTES


def _write_config(project_dir: Path, text: str) -> None:
    state_dir = project_dir / ".taskflow"
    state_dir.mkdir(parents=True, exist_ok=True)
    (state_dir / "config.yaml").write_text(text)


def test_missing_config(tmp_path: Path) -> None:
    assert load_engine_config(tmp_path) == ({}, None)


def test_values_are_read(tmp_path: Path) -> None:
    _write_config(
        tmp_path,
        "workflow:\n  enforce_prerequisites: false\n"
        "attachments:\n  max_bytes: 2048\n"
        "logging:\n  level: debug\n",
    )
    config, err = load_engine_config(tmp_path)
    assert err is None
    assert get_enforce_prerequisites(config) is False
    assert get_attachment_max_bytes(config) == 2048
    assert get_log_level(config) == "DEBUG"


@pytest.mark.parametrize(
    "text",
    [
        "",
        "workflow: nope\n",
        "workflow:\n  enforce_prerequisites: sometimes\nattachments:\n  max_bytes: -5\nlogging:\n  level: loud\n",
        "attachments:\n  max_bytes: true\n",
    ],
)
def test_malformed_values_fall_back_to_defaults(tmp_path: Path, text: str) -> None:
    _write_config(tmp_path, text)
    config, _ = load_engine_config(tmp_path)
    assert get_enforce_prerequisites(config) is True
    assert get_attachment_max_bytes(config) == DEFAULT_ATTACHMENT_MAX_BYTES
    assert get_log_level(config) == "INFO"


def test_unparseable_config_is_reported(tmp_path: Path) -> None:
    _write_config(tmp_path, "workflow: [unclosed\n")
    config, err = load_engine_config(tmp_path)
    assert config == {}
    assert err is not None and "YAMLError" in err


def test_non_mapping_config_is_reported(tmp_path: Path) -> None:
    _write_config(tmp_path, "- a\n- b\n")
    config, err = load_engine_config(tmp_path)
    assert config == {}
    assert "expected object" in err
