"""Task board: records, lanes and the state machine that mutates them."""

from .lanes import DEFAULT_LANES, LANE_IDS, WORKTREE_LANES, default_lanes, is_lane
from .models import (
    AgentSessionRef,
    Lane,
    LaneId,
    ProjectData,
    ProjectRef,
    StructuredOutput,
    Task,
    TaskStatus,
    Worktree,
)

__all__ = [
    "AgentSessionRef",
    "DEFAULT_LANES",
    "LANE_IDS",
    "Lane",
    "LaneId",
    "ProjectData",
    "ProjectRef",
    "StructuredOutput",
    "Task",
    "TaskStatus",
    "WORKTREE_LANES",
    "Worktree",
    "default_lanes",
    "is_lane",
]
