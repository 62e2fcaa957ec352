"""Runtime configuration for the parallel runner."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_WORKER_COMMAND = "claude -p {prompt} --dangerously-skip-permissions"


@dataclass(slots=True)
class Settings:
    """Application settings loaded from ``PARALLEL_RUNNER_*`` environment variables."""

    results_dir: Path = Path("results")
    worker_command: str = DEFAULT_WORKER_COMMAND
    worktree_root: Path = Path("..") / "parallel-runner-worktrees"
    poll_interval_seconds: float = 0.2
    preview_chars: int = 50
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls, results_dir: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local use."""

        return cls(
            results_dir=results_dir
            or Path(os.getenv("PARALLEL_RUNNER_RESULTS_DIR", "results")),
            worker_command=os.getenv("PARALLEL_RUNNER_WORKER_COMMAND", DEFAULT_WORKER_COMMAND),
            worktree_root=Path(
                os.getenv(
                    "PARALLEL_RUNNER_WORKTREE_ROOT",
                    str(Path("..") / "parallel-runner-worktrees"),
                ),
            ),
            poll_interval_seconds=float(
                os.getenv("PARALLEL_RUNNER_POLL_INTERVAL_SECONDS", "0.2"),
            ),
            preview_chars=int(os.getenv("PARALLEL_RUNNER_PREVIEW_CHARS", "50")),
            log_level=os.getenv("PARALLEL_RUNNER_LOG_LEVEL", "WARNING").strip().upper(),
        )

    def validate(self) -> None:
        """Raise configuration error for unusable values."""

        if not self.worker_command.strip():
            raise ValueError("PARALLEL_RUNNER_WORKER_COMMAND must not be empty.")
        if "{prompt}" not in self.worker_command:
            raise ValueError("PARALLEL_RUNNER_WORKER_COMMAND must include {prompt}.")
        if self.poll_interval_seconds <= 0:
            raise ValueError("PARALLEL_RUNNER_POLL_INTERVAL_SECONDS must be > 0.")
        if self.preview_chars <= 0:
            raise ValueError("PARALLEL_RUNNER_PREVIEW_CHARS must be > 0.")

    def resolved_worktree_root(self, cwd: Path | None = None) -> Path:
        root = self.worktree_root
        if root.is_absolute():
            return root
        return ((cwd or Path.cwd()) / root).resolve()
