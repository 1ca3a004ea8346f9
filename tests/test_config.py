from __future__ import annotations

import os
from pathlib import Path

import pytest
from pydantic import ValidationError

from lanewarden.config import LanewardenSettings, get_settings


def test_settings_read_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("LANEWARDEN_HOME", str(tmp_path / "home"))
    monkeypatch.setenv("LANEWARDEN_PORT", "9999")
    monkeypatch.setenv("LANEWARDEN_LOG_LEVEL", " debug ")
    monkeypatch.setenv("LANEWARDEN_PERMISSION_MODE", "acceptEdits")
    monkeypatch.setenv("LANEWARDEN_PROJECT_ID", "proj-1")

    settings = LanewardenSettings()

    assert settings.home_dir == tmp_path / "home"
    assert settings.port == 9999
    assert settings.log_level == "DEBUG"
    assert settings.permission_mode == "acceptEdits"
    assert settings.mcp_project_id == "proj-1"


def test_lane_paths_split_on_pathsep(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    first = tmp_path / "a"
    second = tmp_path / "b"
    monkeypatch.setenv("LANEWARDEN_LANE_PATHS", f"{first}{os.pathsep} {second}")

    settings = LanewardenSettings()

    assert settings.lane_profile_paths == (first, second)


def test_empty_lane_paths_fall_back_to_default(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LANEWARDEN_LANE_PATHS", "")
    assert LanewardenSettings().lane_profile_paths == (Path("lanes"),)


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("LANEWARDEN_LOG_LEVEL", "chatty"),
        ("LANEWARDEN_PERMISSION_MODE", "yolo"),
        ("LANEWARDEN_SESSION_LINGER_SECONDS", "-1"),
        ("LANEWARDEN_STORE_RETRIES", "0"),
    ],
)
def test_invalid_values_are_rejected(monkeypatch: pytest.MonkeyPatch, name: str, value: str) -> None:
    monkeypatch.setenv(name, value)
    with pytest.raises(ValidationError):
        LanewardenSettings()


def test_get_settings_resolves_and_caches(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("LANEWARDEN_HOME", str(tmp_path / "nested" / ".." / "home"))
    monkeypatch.setenv("LANEWARDEN_LANE_PATHS", str(tmp_path / "lanes"))
    get_settings.cache_clear()
    try:
        settings = get_settings()
        assert settings.home_dir == (tmp_path / "home").resolve()
        assert settings.lane_profile_paths == ((tmp_path / "lanes").resolve(),)
        assert get_settings() is settings
    finally:
        get_settings.cache_clear()
