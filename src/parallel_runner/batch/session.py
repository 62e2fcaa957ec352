"""Incremental session snapshot updates driven by scheduler events."""

from __future__ import annotations

import time
import uuid
from collections.abc import Callable
from pathlib import Path

from parallel_runner.batch.models import ExecutionResult, Job, Session
from parallel_runner.batch.store import SessionStore


def generate_session_id() -> str:
    return str(uuid.uuid4())


class SessionRecorder:
    """Applies admission/reap events to a session and persists every change."""

    def __init__(
        self,
        *,
        store: SessionStore,
        session: Session,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.session = session
        self._clock = clock

    @classmethod
    def start(  # noqa: PLR0913
        cls,
        *,
        store: SessionStore,
        jobs: list[Job],
        session_id: str | None = None,
        preview_chars: int = 50,
        clock: Callable[[], float] = time.time,
    ) -> SessionRecorder:
        """Create the session directory and persist the initial snapshot."""

        session = Session.for_jobs(
            session_id=session_id or generate_session_id(),
            jobs=jobs,
            start_time=int(clock()),
            preview_chars=preview_chars,
        )
        store.create(session.session_id)
        store.write(session)
        return cls(store=store, session=session, clock=clock)

    @property
    def session_id(self) -> str:
        return self.session.session_id

    def output_path(self, job: Job) -> Path:
        return self.store.output_path(self.session_id, job.id)

    def job_started(self, job: Job) -> None:
        self.session.mark_running(job.id)
        self.store.write(self.session)

    def job_finished(self, result: ExecutionResult) -> None:
        self.session.mark_completed(
            result.job_id,
            success=result.success,
            duration=result.duration_seconds,
        )
        self.store.write(self.session)

    def close(self) -> None:
        self.session.finish(end_time=int(self._clock()))
        self.store.write(self.session)

    def fail(self, error: BaseException | str) -> None:
        self.session.fail(end_time=int(self._clock()), error=str(error).strip())
        self.store.write(self.session)
