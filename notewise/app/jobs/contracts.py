from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Union


class JobKind(str, Enum):
    RAG_INDEX = "rag-index"
    SUMMARIZE = "summarize"
    QUIZ_GENERATE = "quiz-generate"


class JobState(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATES = frozenset({JobState.COMPLETED, JobState.FAILED})

ALLOWED_TRANSITIONS: dict[JobState, frozenset[JobState]] = {
    JobState.WAITING: frozenset({JobState.ACTIVE, JobState.FAILED}),
    JobState.ACTIVE: frozenset({JobState.COMPLETED, JobState.FAILED}),
    JobState.COMPLETED: frozenset(),
    JobState.FAILED: frozenset(),
}


class InvalidJobPayloadError(Exception):
    pass


class InvalidJobTransitionError(Exception):
    pass


@dataclass(frozen=True)
class TextSource:
    text: str


@dataclass(frozen=True)
class DocumentSource:
    url: str


@dataclass(frozen=True)
class VideoSource:
    url: str
    transcript: str | None = None


JobSource = Union[TextSource, DocumentSource, VideoSource]


@dataclass(frozen=True)
class JobPayload:
    source: JobSource
    filename: str
    user_id: str
    feature: str


@dataclass(frozen=True)
class Job:
    job_id: str
    kind: JobKind
    payload: JobPayload
    state: JobState
    created_at: float
    updated_at: float
    result: dict[str, Any] | None = None
    failure_reason: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES


def ensure_transition(job: Job, target: JobState) -> None:
    if target not in ALLOWED_TRANSITIONS[job.state]:
        raise InvalidJobTransitionError(
            f"Job {job.job_id} cannot move from {job.state.value} to {target.value}"
        )


def source_to_dict(source: JobSource) -> dict[str, Any]:
    if isinstance(source, TextSource):
        return {"type": "text", "text": source.text}
    if isinstance(source, DocumentSource):
        return {"type": "document", "url": source.url}
    if isinstance(source, VideoSource):
        return {"type": "video", "url": source.url, "transcript": source.transcript}
    raise InvalidJobPayloadError(f"Unsupported job source: {type(source).__name__}")


def source_from_dict(raw: object) -> JobSource:
    if not isinstance(raw, dict):
        raise InvalidJobPayloadError("Job source must be an object")
    source_type = raw.get("type")
    if source_type == "text":
        text = raw.get("text")
        if not isinstance(text, str):
            raise InvalidJobPayloadError("Text source requires a text field")
        return TextSource(text=text)
    if source_type == "document":
        url = raw.get("url")
        if not isinstance(url, str) or not url:
            raise InvalidJobPayloadError("Document source requires a url field")
        return DocumentSource(url=url)
    if source_type == "video":
        url = raw.get("url")
        transcript = raw.get("transcript")
        if not isinstance(url, str) or not url:
            raise InvalidJobPayloadError("Video source requires a url field")
        if transcript is not None and not isinstance(transcript, str):
            raise InvalidJobPayloadError("Video transcript must be a string")
        return VideoSource(url=url, transcript=transcript)
    raise InvalidJobPayloadError(f"Unknown job source type: {source_type!r}")


def payload_to_dict(payload: JobPayload) -> dict[str, Any]:
    return {
        "source": source_to_dict(payload.source),
        "filename": payload.filename,
        "user_id": payload.user_id,
        "feature": payload.feature,
    }


def payload_from_dict(raw: object) -> JobPayload:
    if not isinstance(raw, dict):
        raise InvalidJobPayloadError("Job payload must be an object")
    filename = raw.get("filename")
    user_id = raw.get("user_id")
    feature = raw.get("feature")
    if not all(isinstance(value, str) for value in (filename, user_id, feature)):
        raise InvalidJobPayloadError(
            "Job payload requires filename, user_id and feature strings"
        )
    return JobPayload(
        source=source_from_dict(raw.get("source")),
        filename=filename,
        user_id=user_id,
        feature=feature,
    )
