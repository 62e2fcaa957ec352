"""Worker launcher implementations."""

from parallel_runner.batch.backend.base import WorkerLauncher, WorkerLaunchRequest, WorkerProcess
from parallel_runner.batch.backend.cli_backend import CliWorkerLauncher, build_run_args

__all__ = [
    "CliWorkerLauncher",
    "WorkerLaunchRequest",
    "WorkerLauncher",
    "WorkerProcess",
    "build_run_args",
]
