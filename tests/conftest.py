"""Shared test fixtures."""

from __future__ import annotations

import shlex
import sys

import pytest

ECHO_WORKER_COMMAND_TEMPLATE = (
    f"{shlex.quote(sys.executable)} -m parallel_runner.batch.backend.echo_worker "
    "-p {prompt} --dangerously-skip-permissions"
)


@pytest.fixture()
def echo_worker(monkeypatch, tmp_path):
    """Point the runner at the stub worker and an isolated results directory."""

    results_dir = tmp_path / "results"
    monkeypatch.setenv("PARALLEL_RUNNER_WORKER_COMMAND", ECHO_WORKER_COMMAND_TEMPLATE)
    monkeypatch.setenv("PARALLEL_RUNNER_RESULTS_DIR", str(results_dir))
    monkeypatch.setenv("PARALLEL_RUNNER_POLL_INTERVAL_SECONDS", "0.05")
    return results_dir


@pytest.fixture()
def echo_worker_command() -> str:
    return ECHO_WORKER_COMMAND_TEMPLATE
