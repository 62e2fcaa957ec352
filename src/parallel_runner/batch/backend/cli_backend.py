"""Subprocess-based launcher for CLI agent workers."""

from __future__ import annotations

import os
import shlex
import shutil
import subprocess
from pathlib import Path

from parallel_runner.batch.backend.base import WorkerLaunchRequest
from parallel_runner.batch.errors import LaunchError, ValidationError, WorkerNotAvailableError


class CliWorkerLauncher:
    """Start one CLI worker per job from a ``{prompt}`` command template."""

    def __init__(self, command_template: str) -> None:
        self.command_template = command_template

    def ensure_available(self) -> str:
        command_head = build_run_args(command_template=self.command_template, prompt="")[0]
        resolved = shutil.which(command_head)
        if resolved is None:
            raise WorkerNotAvailableError(
                f"Worker executable not found in PATH: {command_head}",
            )
        return resolved

    def launch(self, request: WorkerLaunchRequest) -> subprocess.Popen[bytes]:
        run_args = build_run_args(command_template=self.command_template, prompt=request.prompt)
        env = os.environ.copy()
        env["PARALLEL_RUNNER_JOB_ID"] = request.job_id

        if request.output_path is None:
            return _spawn(run_args=run_args, cwd=request.cwd, env=env)

        request.output_path.parent.mkdir(parents=True, exist_ok=True)
        with request.output_path.open("wb") as output_handle:
            return _spawn(
                run_args=run_args,
                cwd=request.cwd,
                env=env,
                stdout=output_handle,
                stderr=subprocess.STDOUT,
            )


def build_run_args(*, command_template: str, prompt: str) -> list[str]:
    """Render the worker command template into an argv list."""

    stripped = command_template.strip()
    if not stripped:
        raise ValidationError("Worker command template is empty.")
    if "{prompt}" not in stripped:
        raise ValidationError("Worker command template must include {prompt}.")

    try:
        rendered = stripped.format(prompt=shlex.quote(prompt))
    except (KeyError, IndexError) as error:
        raise ValidationError(
            f"Unsupported command template placeholder: {error}",
        ) from error

    argv = shlex.split(rendered)
    if not argv:
        raise ValidationError("Worker command template rendered empty command.")
    return argv


def _spawn(
    *,
    run_args: list[str],
    cwd: Path | None,
    env: dict[str, str],
    stdout=None,
    stderr=None,
) -> subprocess.Popen[bytes]:
    try:
        return subprocess.Popen(  # noqa: S603
            run_args,
            cwd=cwd,
            env=env,
            stdin=subprocess.DEVNULL,
            stdout=stdout,
            stderr=stderr,
        )
    except FileNotFoundError as error:
        raise LaunchError(f"Worker command not found: {run_args[0]}") from error
    except OSError as error:
        raise LaunchError(f"Worker failed to start: {error}") from error
