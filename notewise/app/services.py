from __future__ import annotations

from dataclasses import dataclass

from notewise.app.auth.verify import AuthSettings, auth_settings_from_config
from notewise.app.credits.ledger import CreditLedger, build_credit_ledger
from notewise.app.ingestion.service import DocumentIndexer
from notewise.app.jobs.dispatch import JobDispatcher
from notewise.app.jobs.processor import JobProcessor
from notewise.app.jobs.store import JobQueue, build_job_queue
from notewise.app.jobs.worker import JobWorker
from notewise.app.llm.executor import LlmTaskExecutor
from notewise.app.llm.providers import (
    TASK_CHAT,
    TASK_CHUNK_SUMMARY,
    TASK_QUIZ,
    TASK_SUMMARY,
    build_text_generator,
)
from notewise.app.quiz.service import QuizService
from notewise.app.retrieval.embeddings import EmbeddingProvider, build_embedding_provider
from notewise.app.retrieval.history import ChatHistoryStore, build_chat_history_store
from notewise.app.retrieval.service import ChatService
from notewise.app.retrieval.store import DocumentStore, build_document_store
from notewise.app.sources.resolver import DocumentSourceResolver, HttpDocumentFetcher
from notewise.app.sources.youtube import YouTubeTranscriptFetcher
from notewise.app.summarizer.service import SummarizerService
from notewise.core.config import AppConfig

SUMMARY_TEMPERATURE = 0.3
QUIZ_TEMPERATURE = 0.5
CHAT_TEMPERATURE = 0.2


@dataclass
class AppServices:
    config: AppConfig
    auth_settings: AuthSettings
    queue: JobQueue
    ledger: CreditLedger
    dispatcher: JobDispatcher
    worker: JobWorker
    chat: ChatService
    chat_history: ChatHistoryStore


def _executor(config: AppConfig, *, task: str, model: str, temperature: float):
    return LlmTaskExecutor(
        build_text_generator(
            task=task,
            api_key=config.google_api_key,
            model=model,
            temperature=temperature,
        )
    )


def build_job_processor(
    config: AppConfig,
    *,
    ledger: CreditLedger,
    embedding_provider: EmbeddingProvider,
    document_store: DocumentStore,
) -> JobProcessor:
    summarizer = SummarizerService(
        executor=_executor(
            config,
            task=TASK_SUMMARY,
            model=config.summary_model,
            temperature=SUMMARY_TEMPERATURE,
        ),
        chunk_executor=_executor(
            config,
            task=TASK_CHUNK_SUMMARY,
            model=config.summary_model,
            temperature=SUMMARY_TEMPERATURE,
        ),
        settings=config.pipeline,
    )
    quiz = QuizService(
        executor=_executor(
            config,
            task=TASK_QUIZ,
            model=config.quiz_model,
            temperature=QUIZ_TEMPERATURE,
        ),
        settings=config.pipeline,
    )
    indexer = DocumentIndexer(
        embedding_provider=embedding_provider,
        document_store=document_store,
        settings=config.pipeline,
    )
    resolver = DocumentSourceResolver(
        document_fetcher=HttpDocumentFetcher(),
        transcript_fetcher=YouTubeTranscriptFetcher(),
    )
    return JobProcessor(
        resolver=resolver,
        summarizer=summarizer,
        quiz=quiz,
        indexer=indexer,
        ledger=ledger,
        refund_on_failure=config.refund_credits_on_failure,
    )


def build_services(config: AppConfig) -> AppServices:
    queue = build_job_queue(
        backend=config.job_backend,
        redis_url=config.redis_url,
        queue_name=config.job_queue_name,
    )
    ledger = build_credit_ledger(
        backend=config.credit_backend,
        supabase_url=config.supabase_url,
        service_key=config.supabase_service_role_key,
        owner_emails=config.owner_emails,
    )
    embedding_provider = build_embedding_provider(
        backend=config.embedding_backend,
        api_key=config.google_api_key,
        model=config.gemini_embedding_model,
        dimensions=config.embedding_dimensions,
    )
    document_store = build_document_store(
        supabase_url=config.supabase_url,
        service_key=config.supabase_service_role_key,
    )
    processor = build_job_processor(
        config,
        ledger=ledger,
        embedding_provider=embedding_provider,
        document_store=document_store,
    )
    return AppServices(
        config=config,
        auth_settings=auth_settings_from_config(config),
        queue=queue,
        ledger=ledger,
        dispatcher=JobDispatcher(
            queue=queue,
            ledger=ledger,
            upload_dir=config.upload_dir,
            transcript_fetcher=YouTubeTranscriptFetcher(),
        ),
        worker=JobWorker(
            queue=queue,
            processor=processor,
            concurrency=config.worker_concurrency,
        ),
        chat=ChatService(
            embedding_provider=embedding_provider,
            document_store=document_store,
            executor=_executor(
                config,
                task=TASK_CHAT,
                model=config.chat_model,
                temperature=CHAT_TEMPERATURE,
            ),
        ),
        chat_history=build_chat_history_store(
            supabase_url=config.supabase_url,
            service_key=config.supabase_service_role_key,
        ),
    )
