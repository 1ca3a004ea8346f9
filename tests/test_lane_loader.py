from pathlib import Path
import textwrap

import pytest

from lanewarden.board.lanes import default_lanes
from lanewarden.lanes import LaneCatalog, LaneProfileLoadError, LaneProfileLoader, default_schema_for_lane


def write_profile(path: Path, *, name: str, prompt: str = "Prompt") -> None:
    path.write_text(
        textwrap.dedent(
            """
            id: develop
            name: {name}
            color: "#000000"
            system_prompt: |
              {prompt}
            """
        ).strip().format(name=name, prompt=prompt),
        encoding="utf-8",
    )


def test_loader_merges_paths(tmp_path: Path) -> None:
    base = tmp_path / "base"
    base.mkdir()
    override = tmp_path / "override"
    override.mkdir()

    write_profile(base / "develop.yaml", name="Base")
    write_profile(override / "develop.yml", name="Override")

    profiles = LaneProfileLoader([base, override]).load_all()

    assert profiles["develop"].name == "Override"


def test_loader_accepts_lists_and_skips_missing_paths(tmp_path: Path) -> None:
    (tmp_path / "lanes.yaml").write_text(
        "- id: design\n  system_prompt: Think first\n- id: test\n  order: 9\n",
        encoding="utf-8",
    )

    profiles = LaneProfileLoader([tmp_path, tmp_path / "missing"]).load_all()

    assert set(profiles) == {"design", "test"}
    assert profiles["test"].order == 9


def test_loader_handles_missing_profiles(tmp_path: Path) -> None:
    assert LaneProfileLoader([tmp_path]).load_all() == {}


def test_loader_reports_unknown_lane(tmp_path: Path) -> None:
    (tmp_path / "broken.yaml").write_text("id: review\nname: Review", encoding="utf-8")

    with pytest.raises(LaneProfileLoadError):
        LaneProfileLoader([tmp_path]).load_all()


def test_loader_reports_invalid_yaml(tmp_path: Path) -> None:
    (tmp_path / "broken.yaml").write_text("id: [design", encoding="utf-8")

    with pytest.raises(LaneProfileLoadError):
        LaneProfileLoader([tmp_path]).load_all()


def test_catalog_prefers_project_lane_prompt(tmp_path: Path) -> None:
    write_profile(tmp_path / "develop.yaml", name="Build", prompt="Profile prompt")
    catalog = LaneCatalog.from_paths([tmp_path])
    lanes = default_lanes()

    assert catalog.system_prompt("develop", lanes) == "Profile prompt"
    assert catalog.system_prompt("design", lanes) == ""

    lanes[1] = lanes[1].model_copy(update={"system_prompt": "Project prompt"})
    assert catalog.system_prompt("develop", lanes) == "Project prompt"


def test_catalog_applies_display_overrides(tmp_path: Path) -> None:
    write_profile(tmp_path / "develop.yaml", name="Build")
    lanes = LaneCatalog.from_paths([tmp_path]).apply_to(default_lanes())

    develop = next(lane for lane in lanes if lane.id == "develop")
    assert develop.name == "Build"
    assert develop.color == "#000000"
    assert next(lane for lane in lanes if lane.id == "design").name == "Design"


def test_catalog_falls_back_to_default_schemas() -> None:
    catalog = LaneCatalog()

    assert catalog.output_schema("design") == default_schema_for_lane("design")
    assert "summary" in catalog.output_schema("design")["required"]
    assert catalog.output_schema("develop")["type"] == "object"
