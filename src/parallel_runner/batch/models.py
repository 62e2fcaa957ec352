"""Domain models for batch jobs, sessions and execution results."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from parallel_runner.batch.backend.base import WorkerProcess


class TaskStatus(str, Enum):
    """Per-job lifecycle states inside a session."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"


class SessionStatus(str, Enum):
    """Overall session lifecycle states."""

    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class Job:
    """One unit of work: an instruction passed to one worker invocation."""

    id: str
    text: str
    sequence_number: int


@dataclass(frozen=True, slots=True)
class Workspace:
    """Git worktree provisioned for one job."""

    base_branch: str
    branch_name: str
    path: Path


@dataclass(slots=True)
class RunningJob:
    """Job admitted by the scheduler and not reaped yet."""

    job: Job
    process: WorkerProcess
    started_at: float
    workspace: Workspace | None = None


@dataclass(frozen=True, slots=True)
class ExecutionResult:
    """Outcome of one reaped worker process."""

    job_id: str
    sequence_number: int
    exit_code: int
    duration_seconds: int
    branch_name: str = ""

    @property
    def success(self) -> bool:
        return self.exit_code == 0


@dataclass(slots=True)
class TaskSnapshot:
    """Per-job status entry persisted with the session."""

    task_num: int
    transaction_id: str
    prompt_preview: str
    status: TaskStatus = TaskStatus.PENDING
    success: bool = False
    duration: int | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "task_num": self.task_num,
            "transaction_id": self.transaction_id,
            "prompt_preview": self.prompt_preview,
            "status": self.status.value,
            "success": self.success,
        }
        if self.duration is not None:
            payload["duration"] = self.duration
        return payload

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> TaskSnapshot:
        if not isinstance(payload, dict):
            raise TypeError(f"Task entry must be an object, got {type(payload).__name__}")
        duration = payload.get("duration")
        return cls(
            task_num=int(payload["task_num"]),
            transaction_id=str(payload["transaction_id"]),
            prompt_preview=str(payload["prompt_preview"]),
            status=TaskStatus(payload["status"]),
            success=bool(payload["success"]),
            duration=int(duration) if duration is not None else None,
        )


@dataclass(slots=True)
class Session:
    """Durable record of one batch's progress and outcome.

    Counters and status transitions are guarded here so every persisted
    snapshot satisfies ``successful <= completed <= total`` and the overall
    status never leaves a terminal state.
    """

    session_id: str
    start_time: int
    total: int
    tasks: list[TaskSnapshot] = field(default_factory=list)
    overall_status: SessionStatus = SessionStatus.RUNNING
    completed: int = 0
    successful: int = 0
    end_time: int | None = None
    error: str | None = None

    @classmethod
    def for_jobs(
        cls,
        *,
        session_id: str,
        jobs: list[Job],
        start_time: int,
        preview_chars: int = 50,
    ) -> Session:
        return cls(
            session_id=session_id,
            start_time=start_time,
            total=len(jobs),
            tasks=[
                TaskSnapshot(
                    task_num=job.sequence_number,
                    transaction_id=job.id,
                    prompt_preview=preview_text(job.text, preview_chars),
                )
                for job in jobs
            ],
        )

    @property
    def is_terminal(self) -> bool:
        return self.overall_status is not SessionStatus.RUNNING

    def task(self, job_id: str) -> TaskSnapshot:
        for task in self.tasks:
            if task.transaction_id == job_id:
                return task
        raise KeyError(f"Unknown task in session {self.session_id}: {job_id}")

    def mark_running(self, job_id: str) -> None:
        self._ensure_open()
        task = self.task(job_id)
        if task.status is not TaskStatus.PENDING:
            raise ValueError(f"Task {job_id} cannot start from status={task.status.value}")
        task.status = TaskStatus.RUNNING

    def mark_completed(self, job_id: str, *, success: bool, duration: int) -> None:
        self._ensure_open()
        task = self.task(job_id)
        if task.status is TaskStatus.COMPLETED:
            raise ValueError(f"Task {job_id} is already completed")
        if self.completed >= self.total:
            raise ValueError(f"Session {self.session_id} has no tasks left to complete")
        task.status = TaskStatus.COMPLETED
        task.success = success
        task.duration = duration
        self.completed += 1
        if success:
            self.successful += 1

    def finish(self, *, end_time: int) -> None:
        self._ensure_open()
        self.overall_status = SessionStatus.COMPLETED
        self.end_time = end_time

    def fail(self, *, end_time: int, error: str) -> None:
        self._ensure_open()
        self.overall_status = SessionStatus.ERROR
        self.end_time = end_time
        self.error = error

    def _ensure_open(self) -> None:
        if self.is_terminal:
            raise ValueError(
                f"Session {self.session_id} is already {self.overall_status.value}",
            )

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "session_id": self.session_id,
            "overall_status": self.overall_status.value,
            "start_time": self.start_time,
            "total": self.total,
            "completed": self.completed,
            "successful": self.successful,
            "tasks": [task.to_payload() for task in self.tasks],
        }
        if self.end_time is not None:
            payload["end_time"] = self.end_time
        if self.error is not None:
            payload["error"] = self.error
        return payload

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> Session:
        tasks = payload["tasks"]
        if not isinstance(tasks, list):
            raise TypeError(f"Session tasks must be an array, got {type(tasks).__name__}")
        end_time = payload.get("end_time")
        session = cls(
            session_id=str(payload["session_id"]),
            overall_status=SessionStatus(payload["overall_status"]),
            start_time=int(payload["start_time"]),
            end_time=int(end_time) if end_time is not None else None,
            total=int(payload["total"]),
            completed=int(payload["completed"]),
            successful=int(payload["successful"]),
            tasks=[TaskSnapshot.from_payload(item) for item in tasks],
            error=payload.get("error"),
        )
        if not 0 <= session.successful <= session.completed <= session.total:
            raise ValueError(
                "Inconsistent session counters: "
                f"total={session.total} completed={session.completed} "
                f"successful={session.successful}",
            )
        return session


@dataclass(frozen=True, slots=True)
class BatchPlan:
    """Normalized jobs and run options handed to the detached runner."""

    jobs: tuple[Job, ...]
    max_parallel: int | None = None
    use_worktree: bool = False

    def to_payload(self) -> dict[str, Any]:
        return {
            "max_parallel": self.max_parallel,
            "use_worktree": self.use_worktree,
            "jobs": [
                {"id": job.id, "text": job.text, "sequence_number": job.sequence_number}
                for job in self.jobs
            ],
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> BatchPlan:
        max_parallel = payload.get("max_parallel")
        return cls(
            jobs=tuple(
                Job(
                    id=str(item["id"]),
                    text=str(item["text"]),
                    sequence_number=int(item["sequence_number"]),
                )
                for item in payload["jobs"]
            ),
            max_parallel=int(max_parallel) if max_parallel is not None else None,
            use_worktree=bool(payload.get("use_worktree", False)),
        )


def preview_text(text: str, limit: int) -> str:
    """Truncate ``text`` to ``limit`` characters, marking the cut with an ellipsis."""

    if len(text) <= limit:
        return text
    return text[:limit] + "..."
