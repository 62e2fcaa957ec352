"""Spawn the detached runner process that executes a persisted batch."""

from __future__ import annotations

import subprocess
import sys
from pathlib import Path

from parallel_runner.batch.errors import LaunchError


def spawn_session_runner(
    *,
    session_id: str,
    results_dir: Path,
    log_path: Path,
    python_executable: str | None = None,
) -> int:
    """Start ``run-session`` in its own process session and return its pid.

    The caller does not wait for the child; the session store is the only
    channel between them.
    """

    run_args = [
        python_executable or sys.executable,
        "-m",
        "parallel_runner.main",
        "run-session",
        session_id,
        "--results-dir",
        str(results_dir.resolve()),
    ]
    log_path.parent.mkdir(parents=True, exist_ok=True)
    try:
        with log_path.open("ab") as log_handle:
            process = subprocess.Popen(  # noqa: S603
                run_args,
                stdin=subprocess.DEVNULL,
                stdout=log_handle,
                stderr=subprocess.STDOUT,
                start_new_session=True,
                close_fds=True,
            )
    except OSError as error:
        raise LaunchError(f"Failed to start background runner: {error}") from error
    return process.pid
