"""Fixed lane set and the effects attached to lane transitions."""

from __future__ import annotations

from .models import Lane, LaneId

DEFAULT_LANES: tuple[Lane, ...] = (
    Lane(id=LaneId.DESIGN, name="Design", order=0, color="#8B5CF6"),
    Lane(id=LaneId.DEVELOP, name="Develop", order=1, color="#3B82F6"),
    Lane(id=LaneId.TEST, name="Test", order=2, color="#10B981"),
    Lane(id=LaneId.PENDING_MERGE, name="Pending merge", order=3, color="#F59E0B"),
    Lane(id=LaneId.ARCHIVED, name="Archived", order=4, color="#6B7280"),
    Lane(id=LaneId.DEPRECATED, name="Deprecated", order=5, color="#EF4444"),
)

LANE_IDS: frozenset[str] = frozenset(lane.value for lane in LaneId)

# Entering one of these lanes without an active worktree creates one.
WORKTREE_LANES: frozenset[str] = frozenset({LaneId.DEVELOP.value, LaneId.TEST.value})

# Lane advance applied when a run reports completion without an explicit target.
AUTO_ADVANCE: dict[str, str] = {
    LaneId.DEVELOP.value: LaneId.TEST.value,
    LaneId.TEST.value: LaneId.PENDING_MERGE.value,
}

_OUTPUT_TYPES = {
    LaneId.DESIGN.value: "design",
    LaneId.DEVELOP.value: "development",
    LaneId.TEST.value: "testing",
}


def is_lane(lane_id: str) -> bool:
    return lane_id in LANE_IDS


def default_lanes() -> list[Lane]:
    return [lane.model_copy() for lane in DEFAULT_LANES]


def next_lane_on_completion(lane_id: str) -> str | None:
    return AUTO_ADVANCE.get(lane_id)


def output_type_for_lane(lane_id: str) -> str:
    return _OUTPUT_TYPES.get(lane_id, "generic")


def requires_merge(source_lane: str, target_lane: str) -> bool:
    return source_lane == LaneId.PENDING_MERGE.value and target_lane == LaneId.ARCHIVED.value


__all__ = [
    "AUTO_ADVANCE",
    "DEFAULT_LANES",
    "LANE_IDS",
    "WORKTREE_LANES",
    "default_lanes",
    "is_lane",
    "next_lane_on_completion",
    "output_type_for_lane",
    "requires_merge",
]
