"""Read-only queries over persisted sessions."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from parallel_runner.batch.errors import SessionCorruptError, SessionNotFoundError
from parallel_runner.batch.models import Session, SessionStatus, TaskSnapshot
from parallel_runner.batch.store import SessionStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TaskOutput:
    """Captured output for one task; ``text`` is ``None`` until the blob exists."""

    task: TaskSnapshot
    text: str | None


@dataclass(frozen=True, slots=True)
class SessionSummary:
    """One row of the session listing."""

    session_id: str
    status: SessionStatus
    start_time: int
    total: int
    completed: int
    successful: int
    end_time: int | None = None
    readable: bool = True

    @property
    def duration_seconds(self) -> int | None:
        if self.end_time is None or not self.start_time:
            return None
        return self.end_time - self.start_time


@dataclass(frozen=True, slots=True)
class SessionOverview:
    """Aggregate counters across all sessions."""

    total_sessions: int = 0
    running_sessions: int = 0
    completed_sessions: int = 0
    error_sessions: int = 0
    total_tasks: int = 0
    successful_tasks: int = 0

    @property
    def success_rate(self) -> float | None:
        if self.total_tasks == 0:
            return None
        return self.successful_tasks / self.total_tasks * 100


class SessionQueryService:
    """Stateless queries; every call re-reads the store."""

    def __init__(self, store: SessionStore) -> None:
        self.store = store

    def status(self, session_id: str) -> Session:
        return self.store.read(session_id)

    def results(self, session_id: str) -> tuple[Session, list[TaskOutput]]:
        session = self.store.read(session_id)
        outputs = [
            TaskOutput(
                task=task,
                text=self.store.read_output(session_id, task.transaction_id),
            )
            for task in session.tasks
        ]
        return session, outputs

    def list(self) -> list[SessionSummary]:
        summaries = [self._summarize(session_id) for session_id in self.store.list_session_ids()]
        return sorted(summaries, key=lambda summary: summary.start_time, reverse=True)

    def overview(self) -> SessionOverview:
        by_status = {status: 0 for status in SessionStatus}
        total_tasks = 0
        successful_tasks = 0
        summaries = self.list()
        for summary in summaries:
            by_status[summary.status] += 1
            total_tasks += summary.total
            successful_tasks += summary.successful
        return SessionOverview(
            total_sessions=len(summaries),
            running_sessions=by_status[SessionStatus.RUNNING],
            completed_sessions=by_status[SessionStatus.COMPLETED],
            error_sessions=by_status[SessionStatus.ERROR],
            total_tasks=total_tasks,
            successful_tasks=successful_tasks,
        )

    def _summarize(self, session_id: str) -> SessionSummary:
        try:
            session = self.store.read(session_id)
        except (SessionNotFoundError, SessionCorruptError) as error:
            logger.warning("Listing session %s as error: %s", session_id, error)
            return SessionSummary(
                session_id=session_id,
                status=SessionStatus.ERROR,
                start_time=0,
                total=0,
                completed=0,
                successful=0,
                readable=False,
            )
        return SessionSummary(
            session_id=session.session_id,
            status=session.overall_status,
            start_time=session.start_time,
            total=session.total,
            completed=session.completed,
            successful=session.successful,
            end_time=session.end_time,
        )
