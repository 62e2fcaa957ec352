"""File-backed session store shared by the runner and query invocations."""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any

from parallel_runner.batch.errors import SessionCorruptError, SessionNotFoundError
from parallel_runner.batch.models import BatchPlan, Session

SESSION_DIR_PREFIX = "session-"
STATUS_FILE_NAME = "status.json"
BATCH_FILE_NAME = "batch.json"
RUNNER_LOG_FILE_NAME = "runner.log"


class SessionStore:
    """Persists one directory per session under ``root_dir``.

    Layout::

        <root_dir>/session-<id>/status.json     overall + per-task snapshot
        <root_dir>/session-<id>/batch.json      jobs and options for the runner
        <root_dir>/session-<id>/task-<job>.txt  captured worker output
        <root_dir>/session-<id>/runner.log      detached runner diagnostics

    Snapshots are replaced atomically so a concurrent reader sees either the
    previous or the next document, never a partial one.
    """

    def __init__(self, root_dir: Path) -> None:
        self.root_dir = root_dir

    def session_dir(self, session_id: str) -> Path:
        return self.root_dir / f"{SESSION_DIR_PREFIX}{session_id}"

    def create(self, session_id: str) -> Path:
        session_dir = self.session_dir(session_id)
        session_dir.mkdir(parents=True, exist_ok=True)
        return session_dir

    def write(self, session: Session) -> None:
        path = self.session_dir(session.session_id) / STATUS_FILE_NAME
        write_json_atomic(path, session.to_payload())

    def read(self, session_id: str) -> Session:
        path = self._existing_file(session_id, STATUS_FILE_NAME)
        try:
            return Session.from_payload(load_json(path))
        except (OSError, ValueError, TypeError, KeyError) as error:
            raise SessionCorruptError(
                f"Session {session_id} has an unreadable status snapshot: {error}",
            ) from error

    def write_plan(self, session_id: str, plan: BatchPlan) -> None:
        write_json_atomic(self.session_dir(session_id) / BATCH_FILE_NAME, plan.to_payload())

    def read_plan(self, session_id: str) -> BatchPlan:
        path = self._existing_file(session_id, BATCH_FILE_NAME)
        try:
            return BatchPlan.from_payload(load_json(path))
        except (OSError, ValueError, TypeError, KeyError) as error:
            raise SessionCorruptError(
                f"Session {session_id} has an unreadable batch plan: {error}",
            ) from error

    def output_path(self, session_id: str, job_id: str) -> Path:
        return self.session_dir(session_id) / f"task-{job_id}.txt"

    def read_output(self, session_id: str, job_id: str) -> str | None:
        path = self.output_path(session_id, job_id)
        if not path.is_file():
            return None
        return path.read_text("utf-8", errors="replace")

    def runner_log_path(self, session_id: str) -> Path:
        return self.session_dir(session_id) / RUNNER_LOG_FILE_NAME

    def list_session_ids(self) -> list[str]:
        if not self.root_dir.is_dir():
            return []
        return sorted(
            entry.name[len(SESSION_DIR_PREFIX) :]
            for entry in self.root_dir.iterdir()
            if entry.is_dir() and entry.name.startswith(SESSION_DIR_PREFIX)
        )

    def _existing_file(self, session_id: str, name: str) -> Path:
        if not session_id or "/" in session_id or "\\" in session_id:
            raise SessionNotFoundError(f"Session {session_id!r} not found.")
        path = self.session_dir(session_id) / name
        if not path.is_file():
            raise SessionNotFoundError(
                f"Session {session_id} not found or no status available.",
            )
        return path


def write_json_atomic(path: Path, payload: dict[str, Any]) -> None:
    """Persist JSON payload via a sibling temp file and ``os.replace``."""

    path.parent.mkdir(parents=True, exist_ok=True)
    text = json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True)
    fd, temp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_name, path)
    except BaseException:
        Path(temp_name).unlink(missing_ok=True)
        raise


def load_json(path: Path) -> dict[str, Any]:
    """Load JSON document and validate top-level object type."""

    payload = json.loads(path.read_text("utf-8"))
    if not isinstance(payload, dict):
        raise TypeError(f"Expected JSON object in {path}")
    return payload
