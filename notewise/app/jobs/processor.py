from __future__ import annotations

import logging
from typing import Any

from notewise.app.credits.ledger import CreditLedger
from notewise.app.ingestion.service import DocumentIndexer
from notewise.app.jobs.contracts import (
    DocumentSource,
    InvalidJobPayloadError,
    Job,
    JobKind,
)
from notewise.app.quiz.service import QuizService
from notewise.app.sources.resolver import DocumentSourceResolver
from notewise.app.summarizer.service import SummarizerService

LOGGER = logging.getLogger(__name__)


class JobProcessor:
    """Runs the pipeline matching a job's kind and returns its result body."""

    def __init__(
        self,
        *,
        resolver: DocumentSourceResolver,
        summarizer: SummarizerService,
        quiz: QuizService,
        indexer: DocumentIndexer,
        ledger: CreditLedger | None = None,
        refund_on_failure: bool = False,
    ) -> None:
        self._resolver = resolver
        self._summarizer = summarizer
        self._quiz = quiz
        self._indexer = indexer
        self._ledger = ledger
        self._refund_on_failure = refund_on_failure

    async def process(self, job: Job) -> dict[str, Any]:
        payload = job.payload
        if job.kind == JobKind.RAG_INDEX:
            if not isinstance(payload.source, DocumentSource):
                raise InvalidJobPayloadError("rag-index jobs require a document URL")
            text = await self._resolver.resolve(payload.source)
            return await self._indexer.index(
                text,
                job_id=job.job_id,
                filename=payload.filename,
                user_id=payload.user_id,
            )
        if job.kind == JobKind.SUMMARIZE:
            text = await self._resolver.resolve(payload.source)
            return await self._summarizer.summarize(text, filename=payload.filename)
        if job.kind == JobKind.QUIZ_GENERATE:
            text = await self._resolver.resolve(payload.source)
            return await self._quiz.generate(text, filename=payload.filename)
        raise InvalidJobPayloadError(f"Unsupported job kind: {job.kind}")

    async def on_failure(self, job: Job) -> None:
        if not self._refund_on_failure or self._ledger is None:
            return
        try:
            remaining = await self._ledger.refund(
                job.payload.user_id, job.payload.feature
            )
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning(
                "Credit refund failed",
                extra={"job_id": job.job_id, "user_id": job.payload.user_id},
                exc_info=exc,
            )
            return
        LOGGER.info(
            "Refunded credit for failed job",
            extra={
                "job_id": job.job_id,
                "feature": job.payload.feature,
                "remaining": remaining,
            },
        )
