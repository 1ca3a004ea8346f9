"""Lanewarden: kanban lanes driving coding-agent sessions and git worktrees."""

__version__ = "0.1.0"

__all__ = ["__version__"]
