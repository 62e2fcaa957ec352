"""Controllers for runner CLI commands."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TextIO

from parallel_runner.batch.backend import CliWorkerLauncher
from parallel_runner.batch.detached import spawn_session_runner
from parallel_runner.batch.errors import RunnerError, ValidationError
from parallel_runner.batch.jobs import parse_batch_document, read_batch_input
from parallel_runner.batch.models import BatchPlan, Job, SessionStatus, preview_text
from parallel_runner.batch.presentation import (
    render_overview,
    render_results,
    render_session_list,
    render_status,
    render_summary,
)
from parallel_runner.batch.query import SessionQueryService
from parallel_runner.batch.scheduler import BatchScheduler, IsolationPlan, resolve_parallelism
from parallel_runner.batch.session import SessionRecorder
from parallel_runner.batch.store import SessionStore
from parallel_runner.batch.workspace import WorkspaceProvisioner
from parallel_runner.config import Settings

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RunBatchCommand:
    """CLI input for starting a batch."""

    results_dir: Path | None
    input_path: Path | None
    stdin: TextIO
    max_parallel: int | None
    use_worktree: bool
    sync: bool
    verbose: bool
    on_progress: Callable[[str], None] | None = None


@dataclass(slots=True)
class RunSessionCommand:
    """CLI input for the detached runner body."""

    results_dir: Path | None
    session_id: str
    on_progress: Callable[[str], None] | None = None


@dataclass(slots=True)
class SessionQueryCommand:
    """CLI input for single-session queries."""

    results_dir: Path | None
    session_id: str


@dataclass(slots=True)
class SessionListCommand:
    """CLI input for cross-session queries."""

    results_dir: Path | None


@dataclass(slots=True)
class CommandResult:
    """Lines to render plus the aggregate outcome used for the exit code."""

    lines: list[str]
    success: bool = True
    session_id: str | None = None
    failed_job_ids: tuple[str, ...] = ()


class RunnerCliController:
    """Coordinates batch execution and session query CLI operations."""

    def run_batch(self, command: RunBatchCommand) -> CommandResult:
        settings = _settings(command.results_dir)
        launcher = CliWorkerLauncher(settings.worker_command)
        launcher.ensure_available()

        jobs = parse_batch_document(read_batch_input(command.input_path, command.stdin))
        resolve_parallelism(command.max_parallel, len(jobs))

        lines: list[str] = []
        progress = command.on_progress or lines.append
        provisioner = WorkspaceProvisioner()
        isolation: IsolationPlan | None = None
        if command.use_worktree:
            isolation = IsolationPlan(
                provisioner=provisioner,
                base_branch=provisioner.current_branch(),
                root_dir=settings.resolved_worktree_root(),
            )
            progress(f"Using git worktree mode from branch: {isolation.base_branch}")
            progress(f"Worktree base: {isolation.root_dir}")
        elif provisioner.is_repository():
            progress(
                "💡 Recommendation: you are in a git repository. "
                "Consider the --worktree flag for isolated task execution.",
            )
        if command.verbose:
            for line in _loaded_prompt_lines(jobs):
                progress(line)

        store = SessionStore(settings.results_dir)
        if command.sync:
            return self._run_blocking(
                command=command,
                settings=settings,
                store=store,
                launcher=launcher,
                isolation=isolation,
                jobs=jobs,
                progress=progress,
                lines=lines,
            )

        recorder = SessionRecorder.start(
            store=store,
            jobs=jobs,
            preview_chars=settings.preview_chars,
        )
        session_id = recorder.session_id
        store.write_plan(
            session_id,
            BatchPlan(
                jobs=tuple(jobs),
                max_parallel=command.max_parallel,
                use_worktree=command.use_worktree,
            ),
        )
        try:
            pid = spawn_session_runner(
                session_id=session_id,
                results_dir=settings.results_dir,
                log_path=store.runner_log_path(session_id),
            )
        except RunnerError as error:
            recorder.fail(error)
            raise
        logger.info("Session %s runner started as pid %s", session_id, pid)

        lines.extend(
            [
                f"🚀 Started session: {session_id}",
                f"📂 Results directory: {store.session_dir(session_id)}",
                "",
                "Use these commands to monitor progress:",
                f"  parallel-runner status {session_id}",
                f"  parallel-runner results {session_id}",
                "",
                "For synchronous execution, use: parallel-runner run --sync [options]",
            ],
        )
        return CommandResult(lines=lines, session_id=session_id)

    def run_session(self, command: RunSessionCommand) -> CommandResult:
        """Execute a persisted batch to completion; body of the detached runner."""

        settings = _settings(command.results_dir)
        store = SessionStore(settings.results_dir)
        session = store.read(command.session_id)
        if session.is_terminal:
            raise ValidationError(
                f"Session {command.session_id} is already {session.overall_status.value}.",
            )
        recorder = SessionRecorder(store=store, session=session)

        try:
            plan = store.read_plan(command.session_id)
            isolation: IsolationPlan | None = None
            if plan.use_worktree:
                provisioner = WorkspaceProvisioner()
                isolation = IsolationPlan(
                    provisioner=provisioner,
                    base_branch=provisioner.current_branch(),
                    root_dir=settings.resolved_worktree_root(),
                )
            scheduler = BatchScheduler(
                launcher=CliWorkerLauncher(settings.worker_command),
                isolation=isolation,
                recorder=recorder,
                output_path_for=recorder.output_path,
                poll_interval_seconds=settings.poll_interval_seconds,
                on_progress=command.on_progress,
            )
            results = scheduler.run(list(plan.jobs), max_parallel=plan.max_parallel)
        except Exception as error:
            logger.exception("Session %s failed", command.session_id)
            recorder.fail(error)
            raise
        recorder.close()

        failed = tuple(result.job_id for result in results if not result.success)
        return CommandResult(
            lines=[
                f"Session {command.session_id} completed: "
                f"{recorder.session.successful}/{recorder.session.total} successful",
            ],
            success=not failed,
            session_id=command.session_id,
            failed_job_ids=failed,
        )

    def status(self, command: SessionQueryCommand) -> CommandResult:
        session = _query_service(command.results_dir).status(command.session_id)
        failed = session.overall_status is SessionStatus.ERROR or (
            session.overall_status is SessionStatus.COMPLETED
            and session.successful < session.total
        )
        return CommandResult(
            lines=render_status(session),
            success=not failed,
            session_id=session.session_id,
        )

    def results(self, command: SessionQueryCommand) -> CommandResult:
        session, outputs = _query_service(command.results_dir).results(command.session_id)
        return CommandResult(lines=render_results(session, outputs), session_id=session.session_id)

    def list_sessions(self, command: SessionListCommand) -> CommandResult:
        return CommandResult(lines=render_session_list(_query_service(command.results_dir).list()))

    def overview(self, command: SessionListCommand) -> CommandResult:
        return CommandResult(lines=render_overview(_query_service(command.results_dir).overview()))

    def _run_blocking(  # noqa: PLR0913
        self,
        *,
        command: RunBatchCommand,
        settings: Settings,
        store: SessionStore,
        launcher: CliWorkerLauncher,
        isolation: IsolationPlan | None,
        jobs: list[Job],
        progress: Callable[[str], None],
        lines: list[str],
    ) -> CommandResult:
        recorder = SessionRecorder.start(
            store=store,
            jobs=jobs,
            preview_chars=settings.preview_chars,
        )
        parallel_note = (
            f" (max {command.max_parallel} parallel)"
            if command.max_parallel is not None and command.max_parallel < len(jobs)
            else ""
        )
        progress(f"Starting {len(jobs)} worker instances{parallel_note}...")
        scheduler = BatchScheduler(
            launcher=launcher,
            isolation=isolation,
            recorder=recorder,
            poll_interval_seconds=settings.poll_interval_seconds,
            on_progress=progress,
        )
        started = time.monotonic()
        try:
            results = scheduler.run(jobs, max_parallel=command.max_parallel)
        except Exception as error:
            recorder.fail(error)
            raise
        recorder.close()

        lines.extend(
            render_summary(
                results,
                duration_seconds=int(time.monotonic() - started),
                use_worktree=command.use_worktree,
            ),
        )
        lines.append(f"Session: {recorder.session_id}")
        failed = tuple(result.job_id for result in results if not result.success)
        return CommandResult(
            lines=lines,
            success=not failed,
            session_id=recorder.session_id,
            failed_job_ids=failed,
        )


def _settings(results_dir: Path | None) -> Settings:
    try:
        settings = Settings.from_env(results_dir=results_dir)
        settings.validate()
    except ValueError as error:
        raise ValidationError(str(error)) from error
    return settings


def _query_service(results_dir: Path | None) -> SessionQueryService:
    return SessionQueryService(SessionStore(_settings(results_dir).results_dir))


def _loaded_prompt_lines(jobs: list[Job]) -> list[str]:
    lines = [f"Loaded {len(jobs)} prompts:"]
    for job in jobs:
        lines.append(f"  {job.sequence_number} (ID: {job.id}): {preview_text(job.text, 50)}")
    lines.append("")
    return lines
