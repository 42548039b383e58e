"""taskflow: the task lifecycle and workflow engine behind the project dashboard."""

__version__ = "0.3.0"
