from __future__ import annotations

import logging
from collections.abc import Awaitable
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, File, Header, HTTPException, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from notewise.app.auth.verify import (
    AuthVerificationError,
    Identity,
    resolve_identity,
)
from notewise.app.credits.contracts import (
    FEATURE_CHAT_MESSAGE,
    InsufficientCreditsError,
    Plan,
)
from notewise.app.jobs.contracts import JobKind
from notewise.app.jobs.dispatch import (
    InvalidJobInputError,
    JobReceipt,
    MissingIdentityError,
)
from notewise.app.jobs.status import job_status_view
from notewise.app.jobs.store import EnqueueError
from notewise.app.services import AppServices, build_services
from notewise.app.sources.youtube import (
    InvalidVideoUrlError,
    TranscriptUnavailableError,
)
from notewise.core.config import load_app_config

LOGGER = logging.getLogger(__name__)


class TextJobRequest(BaseModel):
    text: str | None = None


class VideoJobRequest(BaseModel):
    url: str | None = None


def _quota_exception(exc: InsufficientCreditsError) -> HTTPException:
    return HTTPException(
        status_code=402,
        detail={
            "error": "Insufficient credits",
            "remaining": exc.remaining,
            "message": f"You've run out of {exc.feature} credits.",
        },
    )


async def _submit(operation: Awaitable[JobReceipt]) -> dict[str, str]:
    try:
        receipt = await operation
    except (
        InvalidJobInputError,
        InvalidVideoUrlError,
        TranscriptUnavailableError,
    ) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except MissingIdentityError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    except InsufficientCreditsError as exc:
        raise _quota_exception(exc) from exc
    except EnqueueError as exc:
        raise HTTPException(
            status_code=500, detail="Failed to process upload"
        ) from exc
    return {
        "message": receipt.message,
        "jobId": receipt.job_id,
        "filename": receipt.filename,
    }


def create_app(services: AppServices | None = None) -> FastAPI:
    services = services or build_services(load_app_config())
    config = services.config

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        await services.queue.connect()
        if config.run_embedded_worker:
            await services.worker.start()
        try:
            yield
        finally:
            if services.worker.running:
                await services.worker.stop()
            else:
                await services.queue.close()

    app = FastAPI(title=config.app_name, version=config.app_version, lifespan=lifespan)
    app.state.services = services

    def optional_identity(
        authorization: str | None = Header(default=None, alias="Authorization"),
        x_user_id: str | None = Header(default=None, alias="X-User-Id"),
        x_user_email: str | None = Header(default=None, alias="X-User-Email"),
    ) -> Identity | None:
        try:
            return resolve_identity(
                authorization=authorization,
                user_id_header=x_user_id,
                email_header=x_user_email,
                settings=services.auth_settings,
            )
        except AuthVerificationError as exc:
            raise HTTPException(status_code=401, detail=str(exc)) from exc

    def require_identity(
        identity: Identity | None = Depends(optional_identity),
    ) -> Identity:
        if identity is None:
            raise HTTPException(
                status_code=401, detail="Unauthorized - Please sign in"
            )
        return identity

    async def _status(job_id: str) -> dict[str, object]:
        job = await services.queue.get(job_id)
        if job is None:
            raise HTTPException(status_code=404, detail="Job not found")
        return job_status_view(job)

    async def _submit_pdf(
        kind: JobKind, pdf: UploadFile | None, identity: Identity | None
    ) -> dict[str, str]:
        file_bytes = await pdf.read() if pdf is not None else None
        return await _submit(
            services.dispatcher.submit_document(
                kind=kind,
                user_id=identity.user_id if identity else None,
                email=identity.email if identity else None,
                filename=pdf.filename if pdf is not None else None,
                file_bytes=file_bytes,
            )
        )

    async def _submit_text(
        kind: JobKind, request: TextJobRequest, identity: Identity | None
    ) -> dict[str, str]:
        return await _submit(
            services.dispatcher.submit_text(
                kind=kind,
                user_id=identity.user_id if identity else None,
                email=identity.email if identity else None,
                text=request.text,
            )
        )

    async def _submit_video(
        kind: JobKind, request: VideoJobRequest, identity: Identity | None
    ) -> dict[str, str]:
        return await _submit(
            services.dispatcher.submit_video(
                kind=kind,
                user_id=identity.user_id if identity else None,
                email=identity.email if identity else None,
                url=request.url,
            )
        )

    @app.get("/")
    async def root() -> JSONResponse:
        return JSONResponse(
            content={
                "name": config.app_name,
                "version": config.app_version,
                "environment": config.environment,
                "docs": "/docs",
            }
        )

    @app.get("/health")
    async def health() -> dict[str, bool]:
        return {"ok": True}

    @app.get("/ready")
    async def ready() -> JSONResponse:
        worker_required = config.run_embedded_worker
        is_ready = services.worker.running or not worker_required
        return JSONResponse(
            content={
                "ready": is_ready,
                "job_backend": config.job_backend,
                "credit_backend": config.credit_backend,
                "embedded_worker": services.worker.running,
                "llm": "gemini" if config.google_api_key else "deterministic",
            },
            status_code=200 if is_ready else 503,
        )

    @app.post("/summarizer/pdf")
    async def summarize_pdf(
        pdf: UploadFile | None = File(default=None),
        identity: Identity | None = Depends(optional_identity),
    ) -> dict[str, str]:
        return await _submit_pdf(JobKind.SUMMARIZE, pdf, identity)

    @app.post("/summarizer/text")
    async def summarize_text(
        request: TextJobRequest,
        identity: Identity | None = Depends(optional_identity),
    ) -> dict[str, str]:
        return await _submit_text(JobKind.SUMMARIZE, request, identity)

    @app.post("/summarizer/youtube")
    async def summarize_youtube(
        request: VideoJobRequest,
        identity: Identity | None = Depends(optional_identity),
    ) -> dict[str, str]:
        return await _submit_video(JobKind.SUMMARIZE, request, identity)

    @app.get("/summarizer/status/{job_id}")
    async def summarizer_status(job_id: str) -> dict[str, object]:
        return await _status(job_id)

    @app.post("/quiz/pdf")
    async def quiz_pdf(
        pdf: UploadFile | None = File(default=None),
        identity: Identity | None = Depends(optional_identity),
    ) -> dict[str, str]:
        return await _submit_pdf(JobKind.QUIZ_GENERATE, pdf, identity)

    @app.post("/quiz/text")
    async def quiz_text(
        request: TextJobRequest,
        identity: Identity | None = Depends(optional_identity),
    ) -> dict[str, str]:
        return await _submit_text(JobKind.QUIZ_GENERATE, request, identity)

    @app.post("/quiz/youtube")
    async def quiz_youtube(
        request: VideoJobRequest,
        identity: Identity | None = Depends(optional_identity),
    ) -> dict[str, str]:
        return await _submit_video(JobKind.QUIZ_GENERATE, request, identity)

    @app.get("/quiz/status/{job_id}")
    async def quiz_status(job_id: str) -> dict[str, object]:
        return await _status(job_id)

    @app.post("/upload/pdf")
    async def upload_pdf(
        pdf: UploadFile | None = File(default=None),
        identity: Identity | None = Depends(optional_identity),
    ) -> dict[str, str]:
        file_bytes = await pdf.read() if pdf is not None else None
        return await _submit(
            services.dispatcher.submit_index(
                user_id=identity.user_id if identity else None,
                email=identity.email if identity else None,
                filename=pdf.filename if pdf is not None else None,
                file_bytes=file_bytes,
            )
        )

    @app.get("/jobs/{job_id}")
    async def job_status(job_id: str) -> dict[str, object]:
        return await _status(job_id)

    @app.get("/chat")
    async def chat(
        message: str | None = None,
        identity: Identity = Depends(require_identity),
    ) -> dict[str, object]:
        if not message or not message.strip():
            raise HTTPException(status_code=400, detail="message is required")
        ledger = services.ledger
        await ledger.ensure_account(identity.user_id, email=identity.email)
        check = await ledger.check(identity.user_id, FEATURE_CHAT_MESSAGE)
        if not check.has_credits:
            raise _quota_exception(
                InsufficientCreditsError(FEATURE_CHAT_MESSAGE, check.remaining)
            )
        try:
            await ledger.deduct(identity.user_id, FEATURE_CHAT_MESSAGE)
        except InsufficientCreditsError as exc:
            raise _quota_exception(exc) from exc

        try:
            answer = await services.chat.answer(message.strip())
        except Exception as exc:  # noqa: BLE001
            LOGGER.error("Chat answer failed", exc_info=exc)
            raise HTTPException(
                status_code=500, detail="Failed to answer question"
            ) from exc
        sources = [
            {
                "content": hit.content,
                "source": hit.source,
                "page": hit.page,
                "score": hit.score,
            }
            for hit in answer.sources
        ]
        chat_id: str | None = None
        try:
            record = await services.chat_history.save(
                user_id=identity.user_id,
                question=message.strip(),
                answer=answer.answer,
                sources=sources,
            )
            chat_id = record.chat_id
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning(
                "Chat history save failed",
                extra={"user_id": identity.user_id},
                exc_info=exc,
            )
        return {"answer": answer.answer, "sources": sources, "chatId": chat_id}

    @app.get("/chat-history/{chat_id}")
    async def chat_history(chat_id: str) -> dict[str, object]:
        record = await services.chat_history.get(chat_id)
        if record is None:
            raise HTTPException(status_code=404, detail="Chat not found")
        return {
            "id": record.chat_id,
            "question": record.question,
            "answer": record.answer,
            "sources": list(record.sources),
            "createdAt": record.created_at.isoformat(),
        }

    @app.get("/recent-chats")
    async def recent_chats(
        identity: Identity = Depends(require_identity),
    ) -> list[dict[str, str]]:
        records = await services.chat_history.recent(identity.user_id)
        return [
            {
                "id": record.chat_id,
                "question": record.question,
                "createdAt": record.created_at.isoformat(),
            }
            for record in records
        ]

    @app.get("/user/stats")
    async def user_stats(
        identity: Identity = Depends(require_identity),
    ) -> dict[str, object]:
        await services.ledger.ensure_account(identity.user_id, email=identity.email)
        stats = await services.ledger.stats(identity.user_id)
        return {
            "email": stats.email,
            "name": stats.name,
            "plan": stats.plan.value,
            "isOwner": stats.plan == Plan.OWNER,
            "isUnlimited": stats.is_unlimited,
            "credits": stats.credits,
            "usage": stats.usage,
        }

    return app
