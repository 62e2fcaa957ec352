"""Error taxonomy for batch execution and session queries."""

from __future__ import annotations


class RunnerError(RuntimeError):
    """Base class for all runner errors surfaced to the CLI."""


class ValidationError(RunnerError):
    """Batch input is malformed or run options are invalid."""


class WorkerNotAvailableError(RunnerError):
    """Worker executable is missing or not executable."""


class LaunchError(RunnerError):
    """Worker subprocess could not be created."""


class WorkspaceError(RunnerError):
    """Isolated workspace could not be provisioned for one job."""


class NotAWorkspaceError(RunnerError):
    """Current directory is not a git checkout on a named branch."""


class JobFailure(RunnerError):
    """One or more jobs exited with a non-zero code."""

    def __init__(self, message: str, *, failed_job_ids: tuple[str, ...] = ()) -> None:
        super().__init__(message)
        self.failed_job_ids = failed_job_ids


class SessionNotFoundError(RunnerError):
    """No snapshot exists for the requested session id."""


class SessionCorruptError(RunnerError):
    """Session snapshot exists but cannot be decoded."""
