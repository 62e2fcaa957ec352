"""Batch input parsing and job normalization."""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, TextIO

from parallel_runner.batch.errors import ValidationError
from parallel_runner.batch.models import Job


@dataclass(frozen=True, slots=True)
class TextItem:
    """Bare instruction string from the input document."""

    text: str


@dataclass(frozen=True, slots=True)
class RecordItem:
    """Structured ``{"prompt": ..., "id": ...}`` entry from the input document."""

    text: str
    job_id: str | None = None


PromptItem = TextItem | RecordItem


def read_batch_input(path: Path | None, stream: TextIO) -> str:
    """Read the batch document from ``path`` or, when omitted, from a piped ``stream``."""

    if path is not None:
        try:
            return path.read_text("utf-8")
        except UnicodeDecodeError as error:
            raise ValidationError(f"Input is not valid UTF-8: {error}") from error
        except OSError as error:
            raise ValidationError(f"Cannot open {path}: {error}") from error
    if stream.isatty():
        raise ValidationError(
            "No input provided. Use a JSON file as argument or pipe JSON to STDIN.",
        )
    try:
        return stream.read()
    except UnicodeDecodeError as error:
        raise ValidationError(f"Input is not valid UTF-8: {error}") from error


def parse_batch_document(raw: str) -> list[Job]:
    """Decode a ``{"prompts": [...]}`` document into normalized jobs."""

    if not raw or not raw.strip():
        raise ValidationError("Empty input provided.")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as error:
        raise ValidationError(f"Invalid JSON format: {error}") from error

    if not isinstance(payload, dict) or "prompts" not in payload:
        raise ValidationError("JSON must contain a 'prompts' array.")
    prompts = payload["prompts"]
    if not isinstance(prompts, list):
        raise ValidationError("The 'prompts' field must be an array.")
    if not prompts:
        raise ValidationError("No prompts provided in input.")

    return normalize_jobs([parse_item(item) for item in prompts])


def parse_item(raw: Any) -> PromptItem:
    """Resolve one raw input entry into its tagged shape."""

    if isinstance(raw, str):
        return TextItem(text=raw)
    if isinstance(raw, dict):
        if "prompt" not in raw:
            raise ValidationError("Prompt objects must contain a 'prompt' field.")
        text = raw["prompt"]
        if not isinstance(text, str):
            raise ValidationError("The 'prompt' field must be a string.")
        return RecordItem(text=text, job_id=_coerce_id(raw.get("id")))
    raise ValidationError("Prompts must be strings or objects with a 'prompt' field.")


def normalize_jobs(items: list[PromptItem]) -> list[Job]:
    """Assign ids and sequence numbers; caller-supplied ids are kept verbatim."""

    jobs: list[Job] = []
    seen: set[str] = set()
    for sequence_number, item in enumerate(items, start=1):
        job_id = item.job_id if isinstance(item, RecordItem) else None
        if job_id is None:
            job_id = generate_job_id()
        if job_id in seen:
            raise ValidationError(f"Duplicate prompt id in batch: {job_id!r}")
        seen.add(job_id)
        jobs.append(Job(id=job_id, text=item.text, sequence_number=sequence_number))
    return jobs


def generate_job_id() -> str:
    return str(uuid.uuid4())


def _coerce_id(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise ValidationError(f"Prompt 'id' must be a string or integer, got {value!r}.")
    text = str(value)
    if not text.strip():
        raise ValidationError("Prompt 'id' must not be blank.")
    if any(separator in text for separator in ("/", "\\")) or text in {".", ".."}:
        raise ValidationError(f"Prompt 'id' must be usable as a file name, got {text!r}.")
    return text
