"""Shared constants for on-disk state layout and defaults."""

STATE_DIR_NAME = ".taskflow"
CONFIG_FILE = "config.yaml"

STORE_FILENAME = "workflow.yaml"
LOCK_FILENAME = "workflow.lock"
STORE_SCHEMA_VERSION = 1
LOCK_TIMEOUT = 30  # seconds

ATTACHMENTS_DIR = "attachments"
DEFAULT_ATTACHMENT_MAX_BYTES = 10 * 1024 * 1024

DEFAULT_LOG_LEVEL = "INFO"
