"""Git worktree management for task isolation."""

from .git import FakeGitRunner, GitResult, GitRunner
from .manager import MergeResult, WorktreeInfo, WorktreeManager, branch_name, worktree_path

__all__ = [
    "FakeGitRunner",
    "GitResult",
    "GitRunner",
    "MergeResult",
    "WorktreeInfo",
    "WorktreeManager",
    "branch_name",
    "worktree_path",
]
