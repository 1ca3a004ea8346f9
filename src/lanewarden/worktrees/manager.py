"""Worktree lifecycle: one branch-scoped working directory per task."""

from __future__ import annotations

import asyncio
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path

from ..board.models import Worktree
from ..errors import VersionControlError
from ..storage.paths import STATE_DIR_NAME, WORKTREES_DIR_NAME
from .git import GitRunner

logger = logging.getLogger(__name__)

# Generated directories never swept into the bootstrap commit of an empty repository.
BOOTSTRAP_IGNORES = (WORKTREES_DIR_NAME, STATE_DIR_NAME, "node_modules", ".venv", "__pycache__")

PROJECT_CONFIG_DIR = ".claude"

# Per-worktree state directory written by earlier releases.
LEGACY_WORKTREE_DIRS = (".lanewarden-state",)

FALLBACK_BASE = "HEAD"


def branch_name(task_id: str) -> str:
    return f"task/{task_id}"


def worktree_path(project_path: str | Path, task_id: str) -> Path:
    return Path(project_path) / WORKTREES_DIR_NAME / task_id


@dataclass(slots=True)
class MergeResult:
    success: bool
    message: str
    conflict: bool = False


@dataclass(slots=True)
class WorktreeInfo:
    path: str
    branch: str | None
    head: str | None


class WorktreeManager:
    """Create, merge and remove git worktrees for tasks."""

    def __init__(
        self,
        git: GitRunner | None = None,
        *,
        author_name: str = "lanewarden",
        author_email: str = "lanewarden@localhost",
    ) -> None:
        self._git = git or GitRunner()
        self._author_name = author_name
        self._author_email = author_email

    @property
    def git(self) -> GitRunner:
        return self._git

    async def is_repository(self, project_path: str | Path) -> bool:
        if not Path(project_path).is_dir():
            return False
        result = await self._git.run(project_path, "rev-parse", "--is-inside-work-tree")
        return result.ok and result.output == "true"

    async def _identity_config(self, cwd: str | Path) -> list[tuple[str, str]]:
        config: list[tuple[str, str]] = []
        name = await self._git.run(cwd, "config", "--get", "user.name")
        if not name.ok or not name.output:
            config.append(("user.name", self._author_name))
        email = await self._git.run(cwd, "config", "--get", "user.email")
        if not email.ok or not email.output:
            config.append(("user.email", self._author_email))
        return config

    async def branch_exists(self, project_path: str | Path, branch: str) -> bool:
        result = await self._git.run(
            project_path, "show-ref", "--verify", "--quiet", f"refs/heads/{branch}"
        )
        return result.ok

    async def _ensure_initial_commit(self, project_path: Path) -> None:
        head = await self._git.run(project_path, "rev-parse", "--verify", "HEAD")
        if head.ok:
            return
        excludes = [f":(exclude){name}" for name in BOOTSTRAP_IGNORES]
        added = await self._git.run(project_path, "add", "-A", "--", ".", *excludes)
        if not added.ok:
            raise VersionControlError(f"Failed to stage initial commit: {added.describe()}")
        committed = await self._git.run(
            project_path,
            "commit",
            "--allow-empty",
            "-m",
            "Initial commit",
            config=await self._identity_config(project_path),
        )
        if not committed.ok:
            raise VersionControlError(f"Failed to create initial commit: {committed.describe()}")
        logger.info("Created bootstrap commit", extra={"project_path": str(project_path)})

    async def resolve_base_branch(self, project_path: str | Path, explicit: str | None = None) -> str:
        """Pick the branch new worktrees fork from and merges land on."""

        if explicit:
            return explicit
        current = await self._git.run(project_path, "rev-parse", "--abbrev-ref", "HEAD")
        if current.ok and current.output and current.output != "HEAD":
            return current.output
        remote = await self._git.run(
            project_path, "symbolic-ref", "--short", "refs/remotes/origin/HEAD"
        )
        if remote.ok and remote.output:
            local = remote.output.removeprefix("origin/")
            if await self.branch_exists(project_path, local):
                return local
            return remote.output
        for candidate in ("main", "master"):
            if await self.branch_exists(project_path, candidate):
                return candidate
        return FALLBACK_BASE

    async def _exclude_worktrees_dir(self, project_path: Path) -> None:
        common = await self._git.run(project_path, "rev-parse", "--git-common-dir")
        if not common.ok or not common.output:
            return
        git_dir = Path(common.output)
        if not git_dir.is_absolute():
            git_dir = project_path / git_dir
        exclude = git_dir / "info" / "exclude"
        entry = f"/{WORKTREES_DIR_NAME}/"

        def _append() -> None:
            existing = exclude.read_text(encoding="utf-8") if exclude.exists() else ""
            if entry in existing.splitlines():
                return
            exclude.parent.mkdir(parents=True, exist_ok=True)
            prefix = "" if not existing or existing.endswith("\n") else "\n"
            exclude.write_text(f"{existing}{prefix}{entry}\n", encoding="utf-8")

        await asyncio.to_thread(_append)

    @staticmethod
    def _prepare_worktree(project_path: Path, path: Path) -> None:
        source = project_path / PROJECT_CONFIG_DIR
        if source.is_dir():
            shutil.copytree(source, path / PROJECT_CONFIG_DIR, dirs_exist_ok=True)
        for name in LEGACY_WORKTREE_DIRS:
            legacy = path / name
            if legacy.is_dir():
                shutil.rmtree(legacy, ignore_errors=True)

    async def create_worktree(
        self,
        project_path: str | Path,
        task_id: str,
        base_branch: str | None = None,
    ) -> Worktree | None:
        """Create (or return the existing) worktree for a task.

        Returns ``None`` when ``project_path`` is not inside a git repository.
        """

        project = Path(project_path)
        if not await self.is_repository(project):
            logger.info(
                "Project is not a git repository, skipping worktree",
                extra={"project_path": str(project), "task_id": task_id},
            )
            return None

        branch = branch_name(task_id)
        path = worktree_path(project, task_id)
        if path.exists():
            return Worktree(path=str(path), branch=branch)

        await self._ensure_initial_commit(project)
        path.parent.mkdir(parents=True, exist_ok=True)
        await self._exclude_worktrees_dir(project)

        if await self.branch_exists(project, branch):
            result = await self._git.run(project, "worktree", "add", str(path), branch)
        else:
            base = await self.resolve_base_branch(project, base_branch)
            result = await self._git.run(project, "worktree", "add", "-b", branch, str(path), base)
        if not result.ok:
            raise VersionControlError(
                f"Failed to create worktree for task {task_id}: {result.describe()}"
            )

        await asyncio.to_thread(self._prepare_worktree, project, path)
        logger.info(
            "Created worktree",
            extra={"task_id": task_id, "path": str(path), "branch": branch},
        )
        return Worktree(path=str(path), branch=branch)

    async def remove_worktree(self, project_path: str | Path, path: str | Path) -> None:
        """Force-remove a worktree registration and its directory.

        Conversation logs live under the project state directory and are untouched.
        """

        if not Path(path).exists():
            await self._git.run(project_path, "worktree", "prune")
            return
        result = await self._git.run(project_path, "worktree", "remove", "--force", str(path))
        if not result.ok:
            raise VersionControlError(f"Failed to remove worktree {path}: {result.describe()}")
        logger.info("Removed worktree", extra={"path": str(path)})

    async def delete_branch(self, project_path: str | Path, branch: str, *, force: bool = False) -> bool:
        result = await self._git.run(project_path, "branch", "-D" if force else "-d", branch)
        if not result.ok:
            logger.warning(
                "Failed to delete branch",
                extra={"branch": branch, "error": result.describe()},
            )
        return result.ok

    async def _commit_pending(self, path: Path, branch: str) -> MergeResult | None:
        status = await self._git.run(path, "status", "--porcelain")
        if not status.ok:
            return MergeResult(False, f"Failed to inspect worktree {path}: {status.describe()}")
        if not status.output:
            return None
        added = await self._git.run(path, "add", "-A")
        if not added.ok:
            return MergeResult(False, f"Failed to stage changes in {path}: {added.describe()}")
        committed = await self._git.run(
            path,
            "commit",
            "-m",
            f"Auto-commit pending changes on {branch} before merge",
            config=await self._identity_config(path),
        )
        if not committed.ok:
            return MergeResult(False, f"Failed to commit changes in {path}: {committed.describe()}")
        return None

    async def merge_worktree(
        self,
        project_path: str | Path,
        path: str | Path,
        branch: str,
        target_branch: str | None = None,
    ) -> MergeResult:
        """Fold a task branch into the target branch of the main working copy.

        Steps run strictly in order: commit pending work, check the branch is
        ahead, checkout target, ``merge --no-ff``, verify ancestry, and only
        then remove the worktree and the merged branch.
        """

        project = Path(project_path)
        worktree_dir = Path(path)
        target = await self.resolve_base_branch(project, target_branch)

        if worktree_dir.exists():
            failure = await self._commit_pending(worktree_dir, branch)
            if failure is not None:
                return failure

        ahead = await self._git.run(project, "rev-list", "--count", f"{target}..{branch}")
        if not ahead.ok:
            return MergeResult(False, f"Failed to compare {branch} with {target}: {ahead.describe()}")
        if int(ahead.output or "0") == 0:
            return MergeResult(False, f"Nothing to merge: {branch} has no commits ahead of {target}")

        checkout = await self._git.run(project, "checkout", target)
        if not checkout.ok:
            return MergeResult(False, f"Failed to checkout {target}: {checkout.describe()}")

        merged = await self._git.run(
            project,
            "merge",
            "--no-ff",
            "-m",
            f"Merge {branch} into {target}",
            branch,
            config=await self._identity_config(project),
        )
        if not merged.ok:
            unmerged = await self._git.run(project, "diff", "--name-only", "--diff-filter=U")
            conflict = "CONFLICT" in merged.stdout or bool(unmerged.ok and unmerged.output)
            if conflict:
                await self._git.run(project, "merge", "--abort")
                logger.warning("Merge conflict, aborted", extra={"branch": branch, "target": target})
                return MergeResult(
                    False,
                    f"Merge conflict between {branch} and {target}. The merge was aborted; "
                    f"resolve the conflict manually in {worktree_dir} and try again.",
                    conflict=True,
                )
            return MergeResult(False, f"Merge of {branch} into {target} failed: {merged.describe()}")

        verified = await self._git.run(project, "merge-base", "--is-ancestor", branch, "HEAD")
        if not verified.ok:
            logger.error(
                "Merge reported success but branch is not an ancestor of HEAD",
                extra={"branch": branch, "target": target},
            )
            return MergeResult(
                False,
                f"Merge of {branch} into {target} could not be verified; the worktree was kept",
            )

        try:
            await self.remove_worktree(project, worktree_dir)
        except VersionControlError as exc:
            logger.warning("Failed to remove merged worktree", extra={"path": str(worktree_dir), "error": str(exc)})
        await self.delete_branch(project, branch)
        return MergeResult(True, f"Merged {branch} into {target}")

    async def cleanup(self, project_path: str | Path) -> None:
        """Prune registrations whose directories were deleted outside git."""

        result = await self._git.run(project_path, "worktree", "prune")
        if not result.ok:
            raise VersionControlError(f"Failed to prune worktrees: {result.describe()}")

    async def list_worktrees(self, project_path: str | Path) -> list[WorktreeInfo]:
        result = await self._git.run(project_path, "worktree", "list", "--porcelain")
        if not result.ok:
            return []
        entries: list[WorktreeInfo] = []
        current: dict[str, str] = {}
        for line in [*result.stdout.splitlines(), ""]:
            if not line:
                if current.get("worktree"):
                    branch = current.get("branch")
                    entries.append(
                        WorktreeInfo(
                            path=current["worktree"],
                            branch=branch.removeprefix("refs/heads/") if branch else None,
                            head=current.get("HEAD"),
                        )
                    )
                current = {}
                continue
            key, _, value = line.partition(" ")
            current[key] = value
        main = Path(project_path).resolve()
        return [entry for entry in entries if Path(entry.path).resolve() != main]


__all__ = [
    "MergeResult",
    "WorktreeInfo",
    "WorktreeManager",
    "branch_name",
    "worktree_path",
]
