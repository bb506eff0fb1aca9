from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

LOGGER = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 1.0
DEFAULT_MAX_ATTEMPTS = 120
TERMINAL_STATUSES = frozenset({"completed", "failed"})


class JobNotFoundError(Exception):
    pass


class JobFailedError(Exception):
    def __init__(self, job_id: str, reason: str) -> None:
        super().__init__(f"Job {job_id} failed: {reason}")
        self.job_id = job_id
        self.reason = reason


class PollingTimeoutError(Exception):
    """Raised once the attempt ceiling is hit; the job itself may still finish."""

    def __init__(self, job_id: str, attempts: int) -> None:
        super().__init__(f"Job {job_id} did not finish after {attempts} attempts")
        self.job_id = job_id
        self.attempts = attempts


async def poll_job_status(
    client: httpx.AsyncClient,
    job_id: str,
    *,
    status_path: str = "/jobs/{job_id}",
    interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> dict[str, Any]:
    """Poll a job status endpoint until the job completes.

    Returns the completed body. Raises ``JobNotFoundError`` on a 404,
    ``JobFailedError`` when the job is failed and ``PollingTimeoutError`` after
    ``max_attempts`` non-terminal responses.
    """
    path = status_path.format(job_id=job_id)
    for attempt in range(1, max_attempts + 1):
        response = await client.get(path)
        if response.status_code == 404:
            raise JobNotFoundError(f"Job {job_id} not found")
        response.raise_for_status()
        body = response.json()
        status = body.get("status") if isinstance(body, dict) else None
        if status == "completed":
            return body
        if status == "failed":
            raise JobFailedError(job_id, str(body.get("error") or "unknown error"))
        LOGGER.debug(
            "Job not finished yet",
            extra={"job_id": job_id, "status": status, "attempt": attempt},
        )
        if attempt < max_attempts:
            await sleep(interval_seconds)
    raise PollingTimeoutError(job_id, max_attempts)
