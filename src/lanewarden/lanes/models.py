"""Lane profile models."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator

from ..board.lanes import LANE_IDS


class LaneProfile(BaseModel):
    """Configuration describing how agents are primed inside one lane."""

    id: str = Field(..., description="Lane identifier; one of the fixed board lanes.")
    name: str | None = Field(default=None, description="Display name override for the lane.")
    order: int | None = Field(default=None, description="Board position override.")
    color: str | None = Field(default=None, description="Hex colour used by the board.")
    system_prompt: str | None = Field(
        default=None,
        description="Instructions prepended to every agent prompt started in this lane.",
    )
    output_schema: dict[str, Any] | None = Field(
        default=None,
        description="JSON schema the agent's structured output must satisfy.",
    )

    @field_validator("id")
    @classmethod
    def _validate_id(cls, value: str) -> str:
        normalized = value.strip()
        if normalized not in LANE_IDS:
            raise ValueError(f"Unknown lane '{normalized}'; expected one of {', '.join(sorted(LANE_IDS))}")
        return normalized

    @field_validator("system_prompt")
    @classmethod
    def _strip_prompt(cls, value: str | None) -> str | None:
        if value is None:
            return None
        stripped = value.strip()
        return stripped or None

    @field_validator("output_schema")
    @classmethod
    def _validate_schema(cls, value: dict[str, Any] | None) -> dict[str, Any] | None:
        if value is not None and value.get("type") != "object":
            raise ValueError("output_schema must describe a JSON object")
        return value


__all__ = ["LaneProfile"]
