"""Lane profile loading utilities."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable

import yaml
from pydantic import ValidationError

from ..board.models import Lane
from .models import LaneProfile
from .schemas import default_schema_for_lane


class LaneProfileLoadError(RuntimeError):
    """Raised when one or more lane profile files cannot be parsed."""


class LaneProfileLoader:
    """Loads lane profiles from YAML files on disk."""

    def __init__(self, search_paths: Iterable[Path] | None = None) -> None:
        paths = [Path(path) for path in (search_paths or [])]
        self._search_paths: list[Path] = [path for path in paths if path.exists()]

    @property
    def search_paths(self) -> list[Path]:
        """Return the normalized search paths."""

        return list(self._search_paths)

    def load_all(self) -> dict[str, LaneProfile]:
        """Load profiles from all configured search paths.

        Later search paths override earlier ones when lane ids collide. A file
        may hold a single profile or a list of profiles.
        """

        profiles: dict[str, LaneProfile] = {}
        errors: list[str] = []

        for base in self._search_paths:
            for path in sorted(base.glob("*.yml")) + sorted(base.glob("*.yaml")):
                try:
                    document = yaml.safe_load(path.read_text(encoding="utf-8"))
                except yaml.YAMLError as exc:
                    errors.append(f"Failed to parse YAML in {path}: {exc}")
                    continue

                if document is None:
                    continue

                entries = document if isinstance(document, list) else [document]
                for entry in entries:
                    try:
                        profile = LaneProfile.model_validate(entry)
                    except ValidationError as exc:
                        errors.append(f"Lane profile validation error in {path}: {exc}")
                        continue
                    profiles[profile.id] = profile

        if errors:
            raise LaneProfileLoadError("; ".join(errors))

        return profiles


class LaneCatalog:
    """Resolved view of lane profiles layered on the built-in defaults."""

    def __init__(self, profiles: dict[str, LaneProfile] | None = None) -> None:
        self._profiles = dict(profiles or {})

    @classmethod
    def from_paths(cls, search_paths: Iterable[Path] | None = None) -> "LaneCatalog":
        return cls(LaneProfileLoader(search_paths).load_all())

    def profile(self, lane_id: str) -> LaneProfile | None:
        return self._profiles.get(lane_id)

    def system_prompt(self, lane_id: str, lanes: Iterable[Lane] = ()) -> str:
        """Project lane prompt, then the loaded profile prompt, else empty."""

        for lane in lanes:
            if lane.id == lane_id and lane.system_prompt:
                return lane.system_prompt
        profile = self._profiles.get(lane_id)
        if profile is not None and profile.system_prompt:
            return profile.system_prompt
        return ""

    def output_schema(self, lane_id: str) -> dict[str, Any]:
        profile = self._profiles.get(lane_id)
        if profile is not None and profile.output_schema is not None:
            return profile.output_schema
        return default_schema_for_lane(lane_id)

    def apply_to(self, lanes: list[Lane]) -> list[Lane]:
        """Return ``lanes`` with display overrides from the loaded profiles."""

        resolved: list[Lane] = []
        for lane in lanes:
            profile = self._profiles.get(lane.id)
            if profile is None:
                resolved.append(lane)
                continue
            updates: dict[str, Any] = {}
            if profile.name is not None:
                updates["name"] = profile.name
            if profile.order is not None:
                updates["order"] = profile.order
            if profile.color is not None:
                updates["color"] = profile.color
            resolved.append(lane.model_copy(update=updates))
        return resolved


__all__ = ["LaneCatalog", "LaneProfileLoadError", "LaneProfileLoader"]
