from __future__ import annotations

import asyncio
import logging

from notewise.app.jobs.contracts import Job
from notewise.app.jobs.processor import JobProcessor
from notewise.app.jobs.store import JobQueue

LOGGER = logging.getLogger(__name__)


class JobWorker:
    """Bounded pool of consumers pulling jobs from a shared queue.

    ``stop()`` lets every consumer finish the job it holds before the queue
    connection is closed.
    """

    def __init__(
        self,
        *,
        queue: JobQueue,
        processor: JobProcessor,
        concurrency: int = 10,
        poll_interval_seconds: float = 1.0,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._queue = queue
        self._processor = processor
        self._concurrency = concurrency
        self._poll_interval_seconds = poll_interval_seconds
        self._tasks: list[asyncio.Task[None]] = []
        self._shutdown = asyncio.Event()

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    async def start(self) -> None:
        if self.running:
            return
        await self._queue.connect()
        self._shutdown.clear()
        self._tasks = [
            asyncio.create_task(self._consume(), name=f"job-worker-{slot}")
            for slot in range(self._concurrency)
        ]
        LOGGER.info("Job worker started", extra={"concurrency": self._concurrency})

    async def stop(self) -> None:
        if not self._tasks:
            return
        self._shutdown.set()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        await self._queue.close()
        LOGGER.info("Job worker stopped")

    async def process_next(self, timeout_seconds: float = 0.0) -> Job | None:
        """Claim and run a single job, returning its terminal record."""
        job = await self._queue.dequeue(timeout_seconds)
        if job is None:
            return None
        return await self.run_job(job)

    async def run_job(self, job: Job) -> Job:
        LOGGER.info(
            "Processing job",
            extra={"job_id": job.job_id, "kind": job.kind.value},
        )
        try:
            result = await self._processor.process(job)
        except Exception as exc:  # noqa: BLE001
            reason = str(exc) or type(exc).__name__
            LOGGER.error(
                "Job failed",
                extra={"job_id": job.job_id, "kind": job.kind.value, "reason": reason},
                exc_info=exc,
            )
            failed = await self._queue.mark_failed(job.job_id, reason)
            await self._processor.on_failure(job)
            return failed
        completed = await self._queue.mark_completed(job.job_id, result)
        LOGGER.info(
            "Job completed",
            extra={"job_id": job.job_id, "kind": job.kind.value},
        )
        return completed

    async def _consume(self) -> None:
        while not self._shutdown.is_set():
            try:
                job = await self._queue.dequeue(self._poll_interval_seconds)
            except Exception as exc:  # noqa: BLE001
                LOGGER.error("Failed to dequeue job", exc_info=exc)
                await asyncio.sleep(self._poll_interval_seconds)
                continue
            if job is None:
                continue
            try:
                await self.run_job(job)
            except Exception as exc:  # noqa: BLE001
                LOGGER.error(
                    "Failed to record job outcome",
                    extra={"job_id": job.job_id},
                    exc_info=exc,
                )
