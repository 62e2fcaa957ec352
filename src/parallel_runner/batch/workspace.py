"""Git worktree provisioning for isolated job execution."""

from __future__ import annotations

import logging
import shutil
import subprocess
from pathlib import Path

from parallel_runner.batch.errors import NotAWorkspaceError, WorkspaceError
from parallel_runner.batch.models import Workspace

logger = logging.getLogger(__name__)


class WorkspaceProvisioner:
    """Creates one worktree + branch per job and removes the worktree afterwards.

    Branches are kept after the job finishes so successful work can be merged.
    """

    def __init__(self, *, repo_dir: Path | None = None, git_executable: str = "git") -> None:
        self.repo_dir = repo_dir
        self.git_executable = git_executable

    def current_branch(self) -> str:
        try:
            completed = self._git("rev-parse", "--abbrev-ref", "HEAD")
        except OSError as error:
            raise NotAWorkspaceError(f"Cannot run git: {error}") from error
        branch = completed.stdout.strip()
        if completed.returncode != 0 or not branch or branch == "HEAD":
            raise NotAWorkspaceError("Not in a Git repository or detached HEAD state.")
        return branch

    def is_repository(self) -> bool:
        try:
            completed = self._git("rev-parse", "--git-dir")
        except OSError:
            return False
        return completed.returncode == 0

    def create(self, base_branch: str, job_id: str, base_dir: Path) -> Workspace:
        branch_name = workspace_branch_name(base_branch, job_id)
        path = base_dir / f"task-{job_id}"
        try:
            base_dir.mkdir(parents=True, exist_ok=True)
            completed = self._git(
                "worktree",
                "add",
                str(path),
                "-b",
                branch_name,
                base_branch,
            )
        except OSError as error:
            raise WorkspaceError(f"Failed to create worktree for job {job_id}: {error}") from error
        if completed.returncode != 0:
            raise WorkspaceError(
                f"Failed to create worktree for job {job_id}: "
                f"{completed.stderr.strip() or f'git exited with {completed.returncode}'}",
            )
        return Workspace(base_branch=base_branch, branch_name=branch_name, path=path)

    def destroy(self, path: Path) -> None:
        try:
            completed = self._git("worktree", "remove", "--force", str(path))
            if completed.returncode != 0:
                logger.warning(
                    "git worktree remove failed for %s: %s",
                    path,
                    completed.stderr.strip(),
                )
        except OSError as error:
            logger.warning("git worktree remove failed for %s: %s", path, error)

        if path.exists():
            try:
                shutil.rmtree(path)
            except OSError as error:
                logger.warning("Failed to remove workspace directory %s: %s", path, error)

    def _git(self, *args: str) -> subprocess.CompletedProcess[str]:
        return subprocess.run(  # noqa: S603
            [self.git_executable, *args],
            cwd=self.repo_dir,
            capture_output=True,
            text=True,
            check=False,
        )


def workspace_branch_name(base_branch: str, job_id: str) -> str:
    return f"{base_branch}-task-{job_id}"
