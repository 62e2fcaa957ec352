from __future__ import annotations

import json
from pathlib import Path

import allure
import pytest

from parallel_runner.batch.backend import CliWorkerLauncher, WorkerLaunchRequest
from parallel_runner.batch.errors import LaunchError, ValidationError, WorkspaceError
from parallel_runner.batch.models import Job, Session, SessionStatus, TaskStatus, Workspace
from parallel_runner.batch.scheduler import (
    BatchScheduler,
    IsolationPlan,
    build_job_prompt,
    resolve_parallelism,
)
from parallel_runner.batch.session import SessionRecorder
from parallel_runner.batch.store import SessionStore

pytestmark = [
    allure.epic("Batch Runner"),
    allure.feature("Bounded Parallel Scheduler"),
]


class FakeClock:
    def __init__(self) -> None:
        self.now = 1_000.0

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.now += seconds


class FakeProcess:
    def __init__(self, launcher: FakeLauncher, pid: int, exit_code: int, polls: int) -> None:
        self._launcher = launcher
        self.pid = pid
        self._exit_code = exit_code
        self._remaining = polls
        self._finished = False

    def poll(self) -> int | None:
        if self._remaining > 0:
            self._remaining -= 1
            return None
        if not self._finished:
            self._finished = True
            self._launcher.in_flight -= 1
        return self._exit_code


class FakeLauncher:
    """Records the concurrency high-water mark of launched fake processes."""

    def __init__(
        self,
        *,
        exit_codes: dict[str, int] | None = None,
        latencies: dict[str, int] | None = None,
        fail_on: str | None = None,
    ) -> None:
        self.exit_codes = exit_codes or {}
        self.latencies = latencies or {}
        self.fail_on = fail_on
        self.requests: list[WorkerLaunchRequest] = []
        self.in_flight = 0
        self.high_water = 0

    def ensure_available(self) -> str:
        return "fake-worker"

    def launch(self, request: WorkerLaunchRequest) -> FakeProcess:
        if request.job_id == self.fail_on:
            raise LaunchError("fork failed: resource temporarily unavailable")
        self.requests.append(request)
        self.in_flight += 1
        self.high_water = max(self.high_water, self.in_flight)
        return FakeProcess(
            self,
            pid=1000 + len(self.requests),
            exit_code=self.exit_codes.get(request.job_id, 0),
            polls=self.latencies.get(request.job_id, 1),
        )


class FakeProvisioner:
    def __init__(self, *, failing_job_ids: set[str]) -> None:
        self.failing_job_ids = failing_job_ids
        self.destroyed: list[Path] = []

    def create(self, base_branch: str, job_id: str, base_dir: Path) -> Workspace:
        if job_id in self.failing_job_ids:
            raise WorkspaceError(f"fatal: a branch named '{base_branch}-task-{job_id}' exists")
        return Workspace(
            base_branch=base_branch,
            branch_name=f"{base_branch}-task-{job_id}",
            path=base_dir / f"task-{job_id}",
        )

    def destroy(self, path: Path) -> None:
        self.destroyed.append(path)


class RecordingStore(SessionStore):
    def __init__(self, root_dir: Path) -> None:
        super().__init__(root_dir)
        self.snapshots: list[dict] = []

    def write(self, session: Session) -> None:
        self.snapshots.append(session.to_payload())
        super().write(session)


def _jobs(*texts: str) -> list[Job]:
    return [
        Job(id=f"job-{index}", text=text, sequence_number=index)
        for index, text in enumerate(texts, start=1)
    ]


def _scheduler(launcher, *, recorder=None, isolation=None, clock=None) -> BatchScheduler:
    clock = clock or FakeClock()
    return BatchScheduler(
        launcher=launcher,
        recorder=recorder,
        isolation=isolation,
        poll_interval_seconds=1.0,
        clock=clock,
        sleep=clock.sleep,
    )


def test_two_ok_jobs_with_limit_one_complete_sequentially(tmp_path: Path) -> None:
    jobs = _jobs("ok", "ok")
    store = SessionStore(tmp_path / "results")
    recorder = SessionRecorder.start(store=store, jobs=jobs, session_id="scenario-a")
    launcher = FakeLauncher()

    results = _scheduler(launcher, recorder=recorder).run(jobs, max_parallel=1)
    recorder.close()

    snapshot = store.read("scenario-a")
    assert snapshot.total == 2
    assert snapshot.completed == 2
    assert snapshot.successful == 2
    assert snapshot.overall_status is SessionStatus.COMPLETED
    assert launcher.high_water == 1
    assert [result.success for result in results] == [True, True]


@pytest.mark.parametrize("max_parallel", [1, 2, 3, 5])
def test_concurrency_never_exceeds_limit(max_parallel: int) -> None:
    jobs = _jobs(*(f"job {index}" for index in range(7)))
    launcher = FakeLauncher(latencies={job.id: (index % 3) + 1 for index, job in enumerate(jobs)})

    results = _scheduler(launcher).run(jobs, max_parallel=max_parallel)

    assert launcher.high_water == max_parallel
    assert sorted(result.job_id for result in results) == sorted(job.id for job in jobs)


def test_unbounded_runs_every_job_at_once() -> None:
    jobs = _jobs("a", "b", "c", "d")
    launcher = FakeLauncher(latencies={job.id: 2 for job in jobs})

    _scheduler(launcher).run(jobs)

    assert launcher.high_water == len(jobs)


def test_failing_job_is_recorded_without_stopping_batch(tmp_path: Path) -> None:
    jobs = _jobs("fail")
    store = SessionStore(tmp_path / "results")
    recorder = SessionRecorder.start(store=store, jobs=jobs, session_id="scenario-b")
    launcher = FakeLauncher(exit_codes={"job-1": 1})

    results = _scheduler(launcher, recorder=recorder).run(jobs)
    recorder.close()

    snapshot = store.read("scenario-b")
    assert snapshot.completed == 1
    assert snapshot.successful == 0
    assert snapshot.tasks[0].status is TaskStatus.COMPLETED
    assert snapshot.tasks[0].success is False
    assert results[0].exit_code == 1
    assert not results[0].success


def test_task_order_matches_input_when_completion_is_reversed(tmp_path: Path) -> None:
    jobs = _jobs("slow", "medium", "fast", "fastest")
    store = SessionStore(tmp_path / "results")
    recorder = SessionRecorder.start(store=store, jobs=jobs, session_id="reversed")
    launcher = FakeLauncher(
        latencies={job.id: (len(jobs) - index) * 2 for index, job in enumerate(jobs)},
    )

    results = _scheduler(launcher, recorder=recorder).run(jobs)

    assert [result.job_id for result in results] == ["job-4", "job-3", "job-2", "job-1"]
    snapshot = store.read("reversed")
    assert [task.transaction_id for task in snapshot.tasks] == [job.id for job in jobs]
    assert [task.task_num for task in snapshot.tasks] == [1, 2, 3, 4]


def test_counters_hold_invariants_at_every_snapshot(tmp_path: Path) -> None:
    jobs = _jobs("a", "b", "c", "d", "e")
    store = RecordingStore(tmp_path / "results")
    recorder = SessionRecorder.start(store=store, jobs=jobs)
    launcher = FakeLauncher(
        exit_codes={"job-2": 1, "job-5": 7},
        latencies={"job-1": 3, "job-3": 2},
    )

    _scheduler(launcher, recorder=recorder).run(jobs, max_parallel=2)
    recorder.close()

    # initial + one per admission + one per reap + final
    assert len(store.snapshots) == 1 + 2 * len(jobs) + 1
    for payload in store.snapshots:
        assert payload["successful"] <= payload["completed"] <= payload["total"]
    final = store.snapshots[-1]
    assert final["completed"] == final["total"] == 5
    assert final["successful"] == 3
    assert final["overall_status"] == "completed"


def test_duration_is_whole_seconds_between_admission_and_reap() -> None:
    jobs = _jobs("three polls")
    launcher = FakeLauncher(latencies={"job-1": 3})

    results = _scheduler(launcher).run(jobs)

    assert results[0].duration_seconds == 3


def test_workspace_failure_falls_back_to_unisolated_run(tmp_path: Path) -> None:
    jobs = _jobs("first", "second", "third")
    provisioner = FakeProvisioner(failing_job_ids={"job-2"})
    isolation = IsolationPlan(
        provisioner=provisioner,
        base_branch="main",
        root_dir=tmp_path / "worktrees",
    )
    launcher = FakeLauncher()

    results = _scheduler(launcher, isolation=isolation).run(jobs)

    by_id = {result.job_id: result for result in results}
    assert all(result.success for result in results)
    assert by_id["job-2"].branch_name == ""
    assert by_id["job-1"].branch_name == "main-task-job-1"
    assert by_id["job-3"].branch_name == "main-task-job-3"

    requests = {request.job_id: request for request in launcher.requests}
    assert requests["job-2"].cwd is None
    assert "Working Branch" not in requests["job-2"].prompt
    assert requests["job-1"].cwd == tmp_path / "worktrees" / "task-job-1"
    assert sorted(provisioner.destroyed) == [
        tmp_path / "worktrees" / "task-job-1",
        tmp_path / "worktrees" / "task-job-3",
    ]


def test_launch_error_stops_admission_but_reaps_running_jobs(tmp_path: Path) -> None:
    jobs = _jobs("runs", "cannot fork", "never admitted")
    store = SessionStore(tmp_path / "results")
    recorder = SessionRecorder.start(store=store, jobs=jobs, session_id="launch-error")
    launcher = FakeLauncher(fail_on="job-2", latencies={"job-1": 2})

    with pytest.raises(LaunchError, match="fork failed"):
        _scheduler(launcher, recorder=recorder).run(jobs, max_parallel=3)

    assert [request.job_id for request in launcher.requests] == ["job-1"]
    snapshot = store.read("launch-error")
    assert snapshot.completed == 1
    assert snapshot.task("job-1").status is TaskStatus.COMPLETED
    assert snapshot.task("job-3").status is TaskStatus.PENDING


def test_resolve_parallelism_clamps_and_rejects_non_positive() -> None:
    assert resolve_parallelism(None, 4) == 4
    assert resolve_parallelism(10, 4) == 4
    assert resolve_parallelism(2, 4) == 2
    with pytest.raises(ValidationError, match="max_parallel"):
        resolve_parallelism(0, 4)


def test_empty_batch_returns_no_results() -> None:
    assert _scheduler(FakeLauncher()).run([]) == []


def test_build_job_prompt_includes_worktree_details() -> None:
    job = Job(id="abc", text="Refactor utils.py", sequence_number=1)
    workspace = Workspace(base_branch="main", branch_name="main-task-abc", path=Path("/w/task-abc"))

    isolated = build_job_prompt(job, workspace)
    plain = build_job_prompt(job, None)

    assert isolated.startswith("Transaction ID: abc\nWorking Branch: main-task-abc\n")
    assert "Git Worktree: /w/task-abc" in isolated
    assert isolated.endswith("[ID: abc] [BRANCH: main-task-abc]")
    assert "Refactor utils.py" in plain
    assert "Working Branch" not in plain
    assert plain.endswith("Please start your response with: [ID: abc]")


def test_scheduler_runs_real_workers_and_captures_output(
    tmp_path: Path,
    echo_worker_command: str,
) -> None:
    jobs = _jobs("say hello", "exit=3 broken", "sleep=0.2 slow hello")
    store = SessionStore(tmp_path / "results")
    recorder = SessionRecorder.start(store=store, jobs=jobs, session_id="real")
    scheduler = BatchScheduler(
        launcher=CliWorkerLauncher(echo_worker_command),
        recorder=recorder,
        output_path_for=recorder.output_path,
        poll_interval_seconds=0.02,
    )

    results = scheduler.run(jobs, max_parallel=2)
    recorder.close()

    exit_codes = {result.job_id: result.exit_code for result in results}
    assert exit_codes == {"job-1": 0, "job-2": 3, "job-3": 0}
    snapshot = store.read("real")
    assert snapshot.successful == 2
    assert "say hello" in (store.read_output("real", "job-1") or "")
    failing_output = store.read_output("real", "job-2") or ""
    assert "Transaction ID: job-2" in failing_output
    assert "failing with exit code 3" in failing_output
    status = json.loads((store.session_dir("real") / "status.json").read_text("utf-8"))
    assert status["overall_status"] == "completed"


def test_cli_launcher_reports_missing_executable(tmp_path: Path) -> None:
    launcher = CliWorkerLauncher("definitely-not-a-real-worker-binary -p {prompt}")

    with pytest.raises(LaunchError, match="not found"):
        launcher.launch(WorkerLaunchRequest(job_id="x", prompt="hi", output_path=tmp_path / "o"))
