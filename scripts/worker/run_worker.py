from __future__ import annotations

import asyncio
import logging
import signal

from notewise.app.credits.ledger import build_credit_ledger
from notewise.app.jobs.store import build_job_queue
from notewise.app.jobs.worker import JobWorker
from notewise.app.retrieval.embeddings import build_embedding_provider
from notewise.app.retrieval.store import build_document_store
from notewise.app.services import build_job_processor
from notewise.core.config import load_app_config

logging.basicConfig(level=logging.INFO)
LOGGER = logging.getLogger(__name__)


async def run() -> None:
    config = load_app_config()
    if config.job_backend != "redis":
        raise SystemExit("A standalone worker needs JOB_BACKEND=redis")

    ledger = build_credit_ledger(
        backend=config.credit_backend,
        supabase_url=config.supabase_url,
        service_key=config.supabase_service_role_key,
        owner_emails=config.owner_emails,
    )
    processor = build_job_processor(
        config,
        ledger=ledger,
        embedding_provider=build_embedding_provider(
            backend=config.embedding_backend,
            api_key=config.google_api_key,
            model=config.gemini_embedding_model,
            dimensions=config.embedding_dimensions,
        ),
        document_store=build_document_store(
            supabase_url=config.supabase_url,
            service_key=config.supabase_service_role_key,
        ),
    )
    worker = JobWorker(
        queue=build_job_queue(
            backend=config.job_backend,
            redis_url=config.redis_url,
            queue_name=config.job_queue_name,
        ),
        processor=processor,
        concurrency=config.worker_concurrency,
    )

    stop_requested = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_requested.set)

    await worker.start()
    LOGGER.info("Worker listening", extra={"queue": config.job_queue_name})
    await stop_requested.wait()
    LOGGER.info("Draining in-flight jobs")
    await worker.stop()


if __name__ == "__main__":
    asyncio.run(run())
