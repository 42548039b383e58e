"""HTTP surface for the workflow engine."""

from .api import create_app

__all__ = ["create_app"]
