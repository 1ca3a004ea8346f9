"""Async runner for the git CLI."""

from __future__ import annotations

import asyncio
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Sequence

from ..errors import VersionControlError

# Variables that would redirect git away from the directory we pass as cwd.
_SANITIZED_VARS = {
    "GIT_DIR",
    "GIT_WORK_TREE",
    "GIT_INDEX_FILE",
    "GIT_OBJECT_DIRECTORY",
    "GIT_COMMON_DIR",
}


def sanitize_environment(additional: Mapping[str, str] | None = None) -> dict[str, str]:
    """Return an environment suitable for non-interactive git subprocesses."""

    env = dict(os.environ)
    for key in _SANITIZED_VARS:
        env.pop(key, None)
    env["GIT_TERMINAL_PROMPT"] = "0"
    if additional:
        env.update(additional)
    return env


@dataclass(slots=True)
class GitResult:
    """Holds the outcome of a git invocation."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        return self.stdout.strip()

    def describe(self) -> str:
        detail = self.stderr.strip() or self.stdout.strip()
        return detail or f"git exited with status {self.returncode}"


class GitRunner:
    """Execute git commands asynchronously."""

    def __init__(self, executable: Path | None = None) -> None:
        self._executable_path = self._resolve_executable(executable)

    @staticmethod
    def _resolve_executable(explicit: Path | None) -> Path:
        if explicit is not None:
            candidate = Path(explicit)
            if candidate.exists() and candidate.is_file():
                return candidate
            raise VersionControlError(f"git executable not found at {candidate}")

        binary = shutil.which("git")
        if binary is None:
            raise VersionControlError("git executable not found on PATH")
        return Path(binary)

    @property
    def executable(self) -> Path:
        return self._executable_path

    async def run(
        self,
        cwd: str | Path,
        *args: str,
        config: Sequence[tuple[str, str]] = (),
    ) -> GitResult:
        prefix: list[str] = []
        for key, value in config:
            prefix.extend(["-c", f"{key}={value}"])
        return await self._invoke(Path(cwd), *prefix, *args)

    async def _invoke(self, cwd: Path, *args: str) -> GitResult:
        cmd = [str(self._executable_path), *args]
        process = await asyncio.create_subprocess_exec(
            *cmd,
            cwd=str(cwd),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=sanitize_environment(),
        )
        stdout_bytes, stderr_bytes = await process.communicate()
        stdout = stdout_bytes.decode("utf-8", errors="replace")
        stderr = stderr_bytes.decode("utf-8", errors="replace")
        return GitResult(args=tuple(args), returncode=process.returncode, stdout=stdout, stderr=stderr)


class FakeGitRunner(GitRunner):
    """Test double that records invocations and returns scripted results.

    ``responses`` maps a leading argument tuple (for example ``("merge-base",)``)
    to the result returned for any invocation starting with it. Unmatched
    invocations either run real git (``passthrough=True``) or succeed with
    empty output.
    """

    def __init__(  # type: ignore[override]
        self,
        responses: Mapping[tuple[str, ...], GitResult] | None = None,
        *,
        passthrough: bool = False,
    ) -> None:
        self._responses = dict(responses or {})
        self._passthrough = passthrough
        self._invocations: list[tuple[str, ...]] = []
        self._executable_path = Path(shutil.which("git") or "/usr/bin/git")

    async def _invoke(self, cwd: Path, *args: str) -> GitResult:  # type: ignore[override]
        self._invocations.append(tuple(args))
        command = _strip_config(args)
        for prefix, result in self._responses.items():
            if command[: len(prefix)] == prefix:
                return result
        if self._passthrough:
            return await super()._invoke(cwd, *args)
        return GitResult(args=tuple(args), returncode=0, stdout="", stderr="")

    @property
    def invocations(self) -> list[tuple[str, ...]]:
        return [_strip_config(args) for args in self._invocations]

    def called(self, *prefix: str) -> int:
        return sum(1 for args in self.invocations if args[: len(prefix)] == prefix)


def _strip_config(args: Sequence[str]) -> tuple[str, ...]:
    items = list(args)
    while len(items) >= 2 and items[0] == "-c":
        items = items[2:]
    return tuple(items)


__all__ = ["FakeGitRunner", "GitResult", "GitRunner", "sanitize_environment"]
