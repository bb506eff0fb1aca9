from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from uuid import uuid4

from notewise.app.credits.contracts import (
    FEATURE_CHAT,
    FEATURE_QUIZ,
    FEATURE_SUMMARIZER,
    InsufficientCreditsError,
)
from notewise.app.credits.ledger import CreditLedger
from notewise.app.jobs.contracts import (
    DocumentSource,
    JobKind,
    JobPayload,
    JobSource,
    TextSource,
    VideoSource,
)
from notewise.app.jobs.store import EnqueueError, JobQueue
from notewise.app.sources.youtube import (
    InvalidVideoUrlError,
    TranscriptFetcher,
    extract_video_id,
)

LOGGER = logging.getLogger(__name__)

TEXT_FILENAME = "study-notes"
VIDEO_DISPLAY_FILENAME = "YouTube Video"

FEATURE_BY_KIND: dict[JobKind, str] = {
    JobKind.SUMMARIZE: FEATURE_SUMMARIZER,
    JobKind.QUIZ_GENERATE: FEATURE_QUIZ,
    JobKind.RAG_INDEX: FEATURE_CHAT,
}

_ARTIFACT_BY_KIND = {
    JobKind.SUMMARIZE: "Summary",
    JobKind.QUIZ_GENERATE: "Quiz",
}


class InvalidJobInputError(Exception):
    pass


class MissingIdentityError(Exception):
    pass


@dataclass(frozen=True)
class JobReceipt:
    job_id: str
    filename: str
    message: str


class JobDispatcher:
    """Validates requests, charges one credit and enqueues exactly one job.

    The credit is deducted before the enqueue is confirmed, so a failed enqueue
    leaves the credit consumed.
    """

    def __init__(
        self,
        *,
        queue: JobQueue,
        ledger: CreditLedger,
        upload_dir: str | Path,
        transcript_fetcher: TranscriptFetcher | None = None,
    ) -> None:
        self._queue = queue
        self._ledger = ledger
        self._upload_dir = Path(upload_dir)
        self._transcript_fetcher = transcript_fetcher

    async def submit_document(
        self,
        *,
        kind: JobKind,
        user_id: str | None,
        filename: str | None,
        file_bytes: bytes | None,
        email: str | None = None,
    ) -> JobReceipt:
        _ensure_generation_kind(kind)
        display_name = _validate_pdf(filename, file_bytes)
        feature = await self._precheck(user_id, kind, email=email)
        url = await self._store_upload(display_name, file_bytes or b"")
        return await self._accept(
            kind=kind,
            user_id=str(user_id),
            feature=feature,
            source=DocumentSource(url=url),
            filename=display_name,
            display_filename=display_name,
            message=(
                "PDF uploaded successfully. "
                f"{_ARTIFACT_BY_KIND[kind]} is being generated."
            ),
        )

    async def submit_text(
        self,
        *,
        kind: JobKind,
        user_id: str | None,
        text: str | None,
        email: str | None = None,
    ) -> JobReceipt:
        _ensure_generation_kind(kind)
        if not isinstance(text, str) or not text.strip():
            raise InvalidJobInputError("No text provided")
        feature = await self._precheck(user_id, kind, email=email)
        return await self._accept(
            kind=kind,
            user_id=str(user_id),
            feature=feature,
            source=TextSource(text=text),
            filename=TEXT_FILENAME,
            display_filename=TEXT_FILENAME,
            message=f"{_ARTIFACT_BY_KIND[kind]} generation started.",
        )

    async def submit_video(
        self,
        *,
        kind: JobKind,
        user_id: str | None,
        url: str | None,
        email: str | None = None,
    ) -> JobReceipt:
        _ensure_generation_kind(kind)
        if not isinstance(url, str) or not url.strip():
            raise InvalidJobInputError("No YouTube URL provided")
        if extract_video_id(url.strip()) is None:
            raise InvalidVideoUrlError(
                "Invalid YouTube URL format. Please use a valid YouTube link."
            )
        if self._transcript_fetcher is None:
            raise InvalidJobInputError("YouTube transcripts are not available")
        feature = await self._precheck(user_id, kind, email=email)

        # Fetch failures propagate before any credit is deducted.
        transcript = await self._transcript_fetcher.fetch(url.strip())
        return await self._accept(
            kind=kind,
            user_id=str(user_id),
            feature=feature,
            source=VideoSource(url=url.strip(), transcript=transcript.text),
            filename=f"youtube-{transcript.video_id}",
            display_filename=VIDEO_DISPLAY_FILENAME,
            message=(
                "YouTube transcript fetched. "
                f"{_ARTIFACT_BY_KIND[kind]} is being generated."
            ),
        )

    async def submit_index(
        self,
        *,
        user_id: str | None,
        filename: str | None,
        file_bytes: bytes | None,
        email: str | None = None,
    ) -> JobReceipt:
        display_name = _validate_pdf(filename, file_bytes)
        feature = await self._precheck(user_id, JobKind.RAG_INDEX, email=email)
        url = await self._store_upload(display_name, file_bytes or b"")
        return await self._accept(
            kind=JobKind.RAG_INDEX,
            user_id=str(user_id),
            feature=feature,
            source=DocumentSource(url=url),
            filename=display_name,
            display_filename=display_name,
            message="PDF uploaded and queued for indexing.",
        )

    async def _precheck(
        self, user_id: str | None, kind: JobKind, *, email: str | None
    ) -> str:
        if not isinstance(user_id, str) or not user_id.strip():
            raise MissingIdentityError("Unauthorized - Please sign in")
        feature = FEATURE_BY_KIND[kind]
        await self._ledger.ensure_account(user_id, email=email)
        check = await self._ledger.check(user_id, feature)
        if not check.has_credits:
            LOGGER.info(
                "Rejected job request without credits",
                extra={"user_id": user_id, "feature": feature},
            )
            raise InsufficientCreditsError(feature, remaining=check.remaining)
        return feature

    async def _accept(
        self,
        *,
        kind: JobKind,
        user_id: str,
        feature: str,
        source: JobSource,
        filename: str,
        display_filename: str,
        message: str,
    ) -> JobReceipt:
        await self._ledger.deduct(user_id, feature)
        payload = JobPayload(
            source=source, filename=filename, user_id=user_id, feature=feature
        )
        try:
            job = await self._queue.enqueue(kind, payload)
        except EnqueueError:
            LOGGER.error(
                "Enqueue failed after credit deduction; credit stays consumed",
                extra={"user_id": user_id, "feature": feature, "kind": kind.value},
                exc_info=True,
            )
            raise
        LOGGER.info(
            "Enqueued job",
            extra={"job_id": job.job_id, "kind": kind.value, "user_id": user_id},
        )
        return JobReceipt(job_id=job.job_id, filename=display_filename, message=message)

    async def _store_upload(self, filename: str, file_bytes: bytes) -> str:
        stored_name = f"{int(time.time() * 1000)}-{uuid4().hex[:8]}-{filename}"
        path = self._upload_dir / stored_name
        try:
            await asyncio.to_thread(_write_file, path, file_bytes)
        except OSError as exc:
            raise EnqueueError(f"Failed to store upload: {exc}") from exc
        return path.resolve().as_uri()


def _write_file(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)


def _ensure_generation_kind(kind: JobKind) -> None:
    if kind not in _ARTIFACT_BY_KIND:
        raise InvalidJobInputError(f"Unsupported job kind: {kind.value}")


def _validate_pdf(filename: str | None, file_bytes: bytes | None) -> str:
    if not file_bytes:
        raise InvalidJobInputError("No PDF file uploaded")
    name = Path(filename or "").name
    if not name.lower().endswith(".pdf"):
        raise InvalidJobInputError("Only PDF uploads are supported")
    return name
