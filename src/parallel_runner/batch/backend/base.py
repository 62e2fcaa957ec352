"""Worker launcher interface for scheduler job execution."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol


@dataclass(slots=True)
class WorkerLaunchRequest:
    """Inputs required to start one worker process."""

    job_id: str
    prompt: str
    cwd: Path | None = None
    output_path: Path | None = None


class WorkerProcess(Protocol):
    """Handle of a started worker process."""

    @property
    def pid(self) -> int:
        """OS process id."""

    def poll(self) -> int | None:
        """Return the exit code once the process finished, otherwise ``None``."""


class WorkerLauncher(Protocol):
    """Protocol implemented by worker launchers."""

    def ensure_available(self) -> str:
        """Return the resolved worker executable or raise ``WorkerNotAvailableError``."""

    def launch(self, request: WorkerLaunchRequest) -> WorkerProcess:
        """Start a worker without waiting for it; raise ``LaunchError`` on failure."""
