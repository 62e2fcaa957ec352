"""Bounded parallel scheduler that runs one worker process per job."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path

from parallel_runner.batch.backend import WorkerLauncher, WorkerLaunchRequest
from parallel_runner.batch.errors import LaunchError, ValidationError, WorkspaceError
from parallel_runner.batch.models import ExecutionResult, Job, RunningJob, Workspace, preview_text
from parallel_runner.batch.session import SessionRecorder
from parallel_runner.batch.workspace import WorkspaceProvisioner

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class IsolationPlan:
    """Worktree settings applied to every admitted job."""

    provisioner: WorkspaceProvisioner
    base_branch: str
    root_dir: Path


class BatchScheduler:
    """Admits jobs under a concurrency cap and reaps them in exit order.

    The scheduler is single-threaded: it alternates between admitting jobs
    (never blocking on workers) and waiting for any in-flight worker to exit.
    Every admission and every reap is forwarded to the optional
    ``SessionRecorder`` so that another process can follow progress.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        launcher: WorkerLauncher,
        isolation: IsolationPlan | None = None,
        recorder: SessionRecorder | None = None,
        output_path_for: Callable[[Job], Path] | None = None,
        poll_interval_seconds: float = 0.2,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
        on_progress: Callable[[str], None] | None = None,
    ) -> None:
        self.launcher = launcher
        self.isolation = isolation
        self.recorder = recorder
        self.output_path_for = output_path_for
        self.poll_interval_seconds = poll_interval_seconds
        self._clock = clock
        self._sleep = sleep
        self._on_progress = on_progress or (lambda _msg: None)

    def run(self, jobs: Sequence[Job], *, max_parallel: int | None = None) -> list[ExecutionResult]:
        """Execute every job once; results are returned in completion order.

        A ``LaunchError`` stops further admissions. Jobs already running are
        reaped normally before the error is re-raised.
        """

        if not jobs:
            return []
        limit = resolve_parallelism(max_parallel, len(jobs))
        running: list[RunningJob] = []
        results: list[ExecutionResult] = []
        launch_error: LaunchError | None = None
        cursor = 0

        while cursor < len(jobs) or running:
            while cursor < len(jobs) and len(running) < limit:
                job = jobs[cursor]
                cursor += 1
                try:
                    running.append(self._admit(job))
                except LaunchError as error:
                    logger.error("Launch failed for job %s: %s", job.id, error)
                    self._on_progress(f"Launch failed for task {job.sequence_number}: {error}")
                    launch_error = error
                    cursor = len(jobs)

            if not running:
                continue

            entry, exit_code = self._wait_for_any(running)
            running.remove(entry)
            results.append(self._reap(entry, exit_code))

        if launch_error is not None:
            raise launch_error
        return results

    def _admit(self, job: Job) -> RunningJob:
        started_at = self._clock()
        self._on_progress(
            f"Starting task {job.sequence_number} (ID: {job.id}): {preview_text(job.text, 40)}",
        )
        workspace = self._provision(job)
        request = WorkerLaunchRequest(
            job_id=job.id,
            prompt=build_job_prompt(job, workspace),
            cwd=workspace.path if workspace is not None else None,
            output_path=self.output_path_for(job) if self.output_path_for is not None else None,
        )
        try:
            process = self.launcher.launch(request)
        except LaunchError:
            if workspace is not None:
                self._release(workspace)
            raise

        logger.info("Launched job %s as pid %s", job.id, process.pid)
        if self.recorder is not None:
            self.recorder.job_started(job)
        return RunningJob(job=job, process=process, started_at=started_at, workspace=workspace)

    def _provision(self, job: Job) -> Workspace | None:
        if self.isolation is None:
            return None
        try:
            workspace = self.isolation.provisioner.create(
                self.isolation.base_branch,
                job.id,
                self.isolation.root_dir,
            )
        except WorkspaceError as error:
            logger.warning("Job %s runs without isolation: %s", job.id, error)
            self._on_progress(
                f"Failed to create worktree for task {job.sequence_number}: {error}",
            )
            self._on_progress("Falling back to main repository execution")
            return None
        self._on_progress(f"Created worktree branch: {workspace.branch_name} at {workspace.path}")
        return workspace

    def _wait_for_any(self, running: list[RunningJob]) -> tuple[RunningJob, int]:
        while True:
            for entry in running:
                exit_code = entry.process.poll()
                if exit_code is not None:
                    return entry, exit_code
            self._sleep(self.poll_interval_seconds)

    def _reap(self, entry: RunningJob, exit_code: int) -> ExecutionResult:
        job = entry.job
        duration = max(0, int(self._clock() - entry.started_at))
        branch_name = ""
        if entry.workspace is not None:
            branch_name = entry.workspace.branch_name
            self._release(entry.workspace)

        result = ExecutionResult(
            job_id=job.id,
            sequence_number=job.sequence_number,
            exit_code=exit_code,
            duration_seconds=duration,
            branch_name=branch_name,
        )
        logger.info("Job %s exited with code %s after %ss", job.id, exit_code, duration)
        self._on_progress(
            f"Task {job.sequence_number} (ID: {job.id}) completed in {duration}s "
            f"with exit code {exit_code}",
        )
        if branch_name:
            self._on_progress(f"Branch available for merge: {branch_name}")
        if self.recorder is not None:
            self.recorder.job_finished(result)
        return result

    def _release(self, workspace: Workspace) -> None:
        if self.isolation is None:
            return
        self.isolation.provisioner.destroy(workspace.path)
        self._on_progress(f"Cleaned up worktree: {workspace.path}")


def resolve_parallelism(max_parallel: int | None, job_count: int) -> int:
    """Clamp the concurrency cap to the job count; ``None`` means unbounded."""

    if max_parallel is None:
        return job_count
    if max_parallel < 1:
        raise ValidationError(f"max_parallel must be >= 1, got {max_parallel}.")
    return min(max_parallel, job_count)


def build_job_prompt(job: Job, workspace: Workspace | None) -> str:
    """Wrap the job text with its id and, when isolated, the worktree details."""

    lines = [f"Transaction ID: {job.id}"]
    if workspace is not None:
        lines.extend(
            [
                f"Working Branch: {workspace.branch_name}",
                f"Git Worktree: {workspace.path}",
                "",
                "You are working in a separate git worktree. "
                "Please commit your changes before completing the task.",
            ],
        )
    response_prefix = f"[ID: {job.id}]"
    if workspace is not None:
        response_prefix += f" [BRANCH: {workspace.branch_name}]"
    lines.extend(["", job.text, "", f"Please start your response with: {response_prefix}"])
    return "\n".join(lines)
