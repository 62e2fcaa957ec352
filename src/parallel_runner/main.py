"""CLI entrypoint for parallel-runner."""

import logging
import sys
from pathlib import Path

import rich_click as click

from parallel_runner import __version__
from parallel_runner.batch.controllers import (
    CommandResult,
    RunBatchCommand,
    RunnerCliController,
    RunSessionCommand,
    SessionListCommand,
    SessionQueryCommand,
)
from parallel_runner.batch.errors import JobFailure, RunnerError
from parallel_runner.config import Settings

click.rich_click.USE_MARKDOWN = True
RUNNER_CONTROLLER = RunnerCliController()

_RESULTS_DIR_OPTION = click.option(
    "--results-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Session store directory. Defaults to PARALLEL_RUNNER_RESULTS_DIR or ./results.",
)


class SetupError(click.ClickException):
    """Setup, validation or lookup failure (exit code 2)."""

    exit_code = 2


@click.group()
@click.version_option(version=__version__, prog_name="parallel-runner")
@click.option("--verbose", is_flag=True, default=False, help="Enable INFO logging.")
def parallel_runner(verbose: bool) -> None:
    """Run many CLI agent prompts in parallel with durable, queryable sessions."""

    try:
        level = "INFO" if verbose else Settings.from_env().log_level
    except ValueError as error:
        raise SetupError(f"Invalid configuration: {error}") from error
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)8s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


@parallel_runner.command("run")
@click.argument(
    "input_file",
    required=False,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@_RESULTS_DIR_OPTION
@click.option(
    "--max-parallel",
    type=click.IntRange(min=1),
    default=None,
    help="Maximum number of workers running at the same time. Default: unlimited.",
)
@click.option(
    "--worktree/--no-worktree",
    "use_worktree",
    default=False,
    show_default=True,
    help="Run each prompt in its own git worktree on branch `<current>-task-<id>`.",
)
@click.option(
    "--sync/--detach",
    default=False,
    show_default=True,
    help="Wait for every prompt to finish instead of returning a session id.",
)
@click.option(
    "--verbose",
    "show_prompts",
    is_flag=True,
    default=False,
    help="List loaded prompts before starting and enable INFO logging.",
)
def run(  # noqa: PLR0913
    input_file: Path | None,
    results_dir: Path | None,
    max_parallel: int | None,
    use_worktree: bool,
    sync: bool,
    show_prompts: bool,
) -> None:
    """Start a batch from a `{"prompts": [...]}` JSON file or piped STDIN."""

    if show_prompts:
        logging.getLogger().setLevel(logging.INFO)
    result = _invoke(
        RUNNER_CONTROLLER.run_batch,
        RunBatchCommand(
            results_dir=results_dir,
            input_path=input_file,
            stdin=sys.stdin,
            max_parallel=max_parallel,
            use_worktree=use_worktree,
            sync=sync,
            verbose=show_prompts,
            on_progress=click.echo if sync else None,
        ),
    )
    _emit_lines(result.lines)
    if not result.success:
        _fail(JobFailure("Some workers failed.", failed_job_ids=result.failed_job_ids))


@parallel_runner.command("run-session", hidden=True)
@click.argument("session_id")
@_RESULTS_DIR_OPTION
def run_session(session_id: str, results_dir: Path | None) -> None:
    """Execute a previously started session in the foreground."""

    result = _invoke(
        RUNNER_CONTROLLER.run_session,
        RunSessionCommand(
            results_dir=results_dir,
            session_id=session_id,
            on_progress=click.echo,
        ),
    )
    _emit_lines(result.lines)
    if not result.success:
        _fail(JobFailure("Some workers failed.", failed_job_ids=result.failed_job_ids))


@parallel_runner.command("status")
@click.argument("session_id")
@_RESULTS_DIR_OPTION
def status(session_id: str, results_dir: Path | None) -> None:
    """Show progress and per-task state of one session."""

    result = _invoke(
        RUNNER_CONTROLLER.status,
        SessionQueryCommand(results_dir=results_dir, session_id=session_id),
    )
    _emit_lines(result.lines)
    if not result.success:
        _fail(JobFailure(f"Session {session_id} finished with failures."))


@parallel_runner.command("results")
@click.argument("session_id")
@_RESULTS_DIR_OPTION
def results(session_id: str, results_dir: Path | None) -> None:
    """Print captured worker output of every task in one session."""

    result = _invoke(
        RUNNER_CONTROLLER.results,
        SessionQueryCommand(results_dir=results_dir, session_id=session_id),
    )
    _emit_lines(result.lines)


@parallel_runner.command("list")
@_RESULTS_DIR_OPTION
def list_sessions(results_dir: Path | None) -> None:
    """List all sessions, newest first."""

    _emit_lines(
        _invoke(RUNNER_CONTROLLER.list_sessions, SessionListCommand(results_dir=results_dir)).lines,
    )


@parallel_runner.command("overview")
@_RESULTS_DIR_OPTION
def overview(results_dir: Path | None) -> None:
    """Show aggregate statistics across all sessions."""

    _emit_lines(
        _invoke(RUNNER_CONTROLLER.overview, SessionListCommand(results_dir=results_dir)).lines,
    )


def _invoke(handler, command) -> CommandResult:
    try:
        return handler(command)
    except RunnerError as error:
        _fail(error)
        raise  # pragma: no cover


def _fail(error: RunnerError) -> None:
    if isinstance(error, JobFailure):
        raise click.ClickException(str(error)) from error
    raise SetupError(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    parallel_runner()
