"""Storage abstractions for Lanewarden."""

from .registry import ProjectRegistry
from .task_store import TaskStore

__all__ = [
    "ProjectRegistry",
    "TaskStore",
]
