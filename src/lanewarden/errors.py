"""Error taxonomy shared by every Lanewarden component."""

from __future__ import annotations


class LanewardenError(RuntimeError):
    """Base class for errors raised by the orchestration core."""


class NotFoundError(LanewardenError):
    """Raised when a project, task, worktree or document does not exist."""


class InvalidStateError(LanewardenError):
    """Raised when an operation is not allowed in the task's current state."""


class VersionControlError(LanewardenError):
    """Raised when a git operation fails in a way the caller must see."""


class AgentRuntimeError(LanewardenError):
    """Raised when the external agent runtime fails to start or run."""


class PersistenceError(LanewardenError):
    """Raised when the task store or a conversation log cannot be read or written."""


class StoreConflictError(PersistenceError):
    """Raised when the task store changed on disk between read and write."""


__all__ = [
    "AgentRuntimeError",
    "InvalidStateError",
    "LanewardenError",
    "NotFoundError",
    "PersistenceError",
    "StoreConflictError",
    "VersionControlError",
]
