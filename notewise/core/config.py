from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class PipelineSettings:
    summary_direct_threshold: int = 10_000
    summary_chunk_size: int = 3_000
    summary_chunk_overlap: int = 500
    summary_max_chunks: int = 10
    summary_pause_every: int = 3
    summary_pause_seconds: float = 2.0
    summary_chunk_timeout_seconds: float = 40.0
    quiz_direct_threshold: int = 15_000
    quiz_chunk_size: int = 7_000
    quiz_chunk_overlap: int = 700
    quiz_max_chunks: int = 3
    rag_chunk_size: int = 1_000
    rag_chunk_overlap: int = 150


@dataclass(frozen=True)
class AppConfig:
    app_name: str
    app_version: str
    environment: str
    google_api_key: str | None
    summary_model: str
    quiz_model: str
    chat_model: str
    embedding_backend: str
    gemini_embedding_model: str
    embedding_dimensions: int
    supabase_url: str | None
    supabase_service_role_key: str | None
    supabase_jwks_url: str | None
    supabase_jwt_audience: str | None
    supabase_jwt_issuer: str | None
    job_backend: str
    redis_url: str
    job_queue_name: str
    worker_concurrency: int
    run_embedded_worker: bool
    upload_dir: str
    credit_backend: str
    owner_emails: tuple[str, ...]
    refund_credits_on_failure: bool
    pipeline: PipelineSettings


def _read_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.lower().strip() in {"1", "true", "yes", "on"}


def _read_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        parsed = float(raw)
    except ValueError:
        return default
    return parsed if parsed >= 0 else default


def _read_owner_emails() -> tuple[str, ...]:
    raw = os.getenv("OWNER_EMAILS", "")
    return tuple(
        email.strip().lower() for email in raw.split(",") if email.strip()
    )


def load_app_config() -> AppConfig:
    supabase_url = os.getenv("SUPABASE_URL")
    default_jwks_url = (
        f"{supabase_url.rstrip('/')}/auth/v1/.well-known/jwks.json"
        if supabase_url
        else None
    )
    pipeline = PipelineSettings(
        summary_pause_seconds=_read_float("SUMMARY_RATE_LIMIT_PAUSE_SECONDS", 2.0),
        summary_chunk_timeout_seconds=_read_float(
            "SUMMARY_CHUNK_TIMEOUT_SECONDS", 40.0
        ),
    )
    return AppConfig(
        app_name=os.getenv("APP_NAME", "Notewise Study Assistant"),
        app_version=os.getenv("APP_VERSION", "0.1.0"),
        environment=os.getenv("APP_ENV", "development"),
        google_api_key=os.getenv("GOOGLE_API_KEY") or os.getenv("GEMINI_API_KEY"),
        summary_model=os.getenv("SUMMARY_MODEL", "gemini-2.5-flash-lite"),
        quiz_model=os.getenv("QUIZ_MODEL", "gemini-2.0-flash-lite"),
        chat_model=os.getenv("CHAT_MODEL", "gemini-2.0-flash-lite"),
        embedding_backend=os.getenv("EMBEDDING_BACKEND", "deterministic"),
        gemini_embedding_model=os.getenv(
            "GEMINI_EMBEDDING_MODEL", "models/gemini-embedding-001"
        ),
        embedding_dimensions=int(os.getenv("EMBEDDING_DIMENSIONS", "768")),
        supabase_url=supabase_url,
        supabase_service_role_key=os.getenv("SUPABASE_SERVICE_ROLE_KEY"),
        supabase_jwks_url=os.getenv("SUPABASE_JWKS_URL", default_jwks_url),
        supabase_jwt_audience=os.getenv("SUPABASE_JWT_AUDIENCE"),
        supabase_jwt_issuer=os.getenv("SUPABASE_JWT_ISSUER", supabase_url),
        job_backend=os.getenv("JOB_BACKEND", "memory").lower().strip(),
        redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
        job_queue_name=os.getenv("JOB_QUEUE_NAME", "file-upload-queue"),
        worker_concurrency=int(os.getenv("WORKER_CONCURRENCY", "10")),
        run_embedded_worker=_read_bool("RUN_EMBEDDED_WORKER", True),
        upload_dir=os.getenv("UPLOAD_DIR", ".tmp/uploads"),
        credit_backend=os.getenv("CREDIT_BACKEND", "memory").lower().strip(),
        owner_emails=_read_owner_emails(),
        refund_credits_on_failure=_read_bool("REFUND_CREDITS_ON_FAILURE", False),
        pipeline=pipeline,
    )
