from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Callable
from dataclasses import replace
from typing import Any
from uuid import uuid4

from notewise.app.jobs.contracts import (
    InvalidJobPayloadError,
    Job,
    JobKind,
    JobPayload,
    JobState,
    ensure_transition,
    payload_from_dict,
    payload_to_dict,
)

LOGGER = logging.getLogger(__name__)


class EnqueueError(Exception):
    pass


class JobQueue:
    """Durable job queue plus the record of each job's state and result."""

    async def connect(self) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        raise NotImplementedError

    async def enqueue(self, kind: JobKind, payload: JobPayload) -> Job:
        raise NotImplementedError

    async def dequeue(self, timeout_seconds: float) -> Job | None:
        """Claim the next waiting job, moving it to ``active``."""
        raise NotImplementedError

    async def get(self, job_id: str) -> Job | None:
        raise NotImplementedError

    async def mark_completed(self, job_id: str, result: dict[str, Any]) -> Job:
        raise NotImplementedError

    async def mark_failed(self, job_id: str, reason: str) -> Job:
        raise NotImplementedError

    async def count(self) -> int:
        raise NotImplementedError


def new_job_id() -> str:
    return f"job-{uuid4().hex}"


class InMemoryJobQueue(JobQueue):
    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._jobs: dict[str, Job] = {}
        self._waiting: asyncio.Queue[str] | None = None

    async def connect(self) -> None:
        if self._waiting is None:
            self._waiting = asyncio.Queue()
            for job in sorted(self._jobs.values(), key=lambda item: item.created_at):
                if job.state == JobState.WAITING:
                    self._waiting.put_nowait(job.job_id)

    async def close(self) -> None:
        self._waiting = None

    async def enqueue(self, kind: JobKind, payload: JobPayload) -> Job:
        if self._waiting is None:
            raise EnqueueError("Job queue is not connected")
        now = self._clock()
        job = Job(
            job_id=new_job_id(),
            kind=kind,
            payload=payload,
            state=JobState.WAITING,
            created_at=now,
            updated_at=now,
        )
        self._jobs[job.job_id] = job
        await self._waiting.put(job.job_id)
        return job

    async def dequeue(self, timeout_seconds: float) -> Job | None:
        if self._waiting is None:
            return None
        try:
            job_id = self._waiting.get_nowait()
        except asyncio.QueueEmpty:
            if timeout_seconds <= 0:
                return None
            try:
                job_id = await asyncio.wait_for(self._waiting.get(), timeout_seconds)
            except asyncio.TimeoutError:
                return None
        job = self._jobs.get(job_id)
        if job is None or job.state != JobState.WAITING:
            return None
        return self._transition(job, JobState.ACTIVE)

    async def get(self, job_id: str) -> Job | None:
        return self._jobs.get(job_id)

    async def mark_completed(self, job_id: str, result: dict[str, Any]) -> Job:
        return self._transition(self._require(job_id), JobState.COMPLETED, result=result)

    async def mark_failed(self, job_id: str, reason: str) -> Job:
        return self._transition(
            self._require(job_id), JobState.FAILED, failure_reason=reason
        )

    async def count(self) -> int:
        return len(self._jobs)

    def _require(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise KeyError(f"Unknown job: {job_id}")
        return job

    def _transition(self, job: Job, target: JobState, **changes: Any) -> Job:
        ensure_transition(job, target)
        updated = replace(job, state=target, updated_at=self._clock(), **changes)
        self._jobs[job.job_id] = updated
        return updated


def job_to_mapping(job: Job) -> dict[str, str]:
    return {
        "job_id": job.job_id,
        "kind": job.kind.value,
        "payload": json.dumps(payload_to_dict(job.payload)),
        "state": job.state.value,
        "created_at": repr(job.created_at),
        "updated_at": repr(job.updated_at),
        "result": json.dumps(job.result) if job.result is not None else "",
        "failure_reason": job.failure_reason or "",
    }


def job_from_mapping(mapping: dict[str, str]) -> Job:
    try:
        kind = JobKind(mapping["kind"])
        state = JobState(mapping["state"])
        payload = payload_from_dict(json.loads(mapping["payload"]))
        created_at = float(mapping["created_at"])
        updated_at = float(mapping.get("updated_at") or created_at)
        raw_result = mapping.get("result") or ""
        result = json.loads(raw_result) if raw_result else None
    except (KeyError, ValueError) as exc:
        raise InvalidJobPayloadError(f"Corrupt job record: {exc}") from exc
    if result is not None and not isinstance(result, dict):
        raise InvalidJobPayloadError("Job result must be an object")
    return Job(
        job_id=mapping.get("job_id", ""),
        kind=kind,
        payload=payload,
        state=state,
        created_at=created_at,
        updated_at=updated_at,
        result=result,
        failure_reason=mapping.get("failure_reason") or None,
    )


class RedisJobQueue(JobQueue):
    """Redis-backed queue: one hash per job, a waiting list and an active list.

    ``BLMOVE`` hands each waiting job id to exactly one consumer.
    """

    def __init__(
        self,
        *,
        url: str,
        queue_name: str,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._url = url
        self._prefix = f"notewise:{queue_name}"
        self._clock = clock
        self._redis = None

    def _job_key(self, job_id: str) -> str:
        return f"{self._prefix}:job:{job_id}"

    @property
    def _waiting_key(self) -> str:
        return f"{self._prefix}:waiting"

    @property
    def _active_key(self) -> str:
        return f"{self._prefix}:active"

    @property
    def _ids_key(self) -> str:
        return f"{self._prefix}:ids"

    async def connect(self) -> None:
        if self._redis is not None:
            return
        import redis.asyncio as redis

        client = redis.from_url(self._url, decode_responses=True)
        await client.ping()
        self._redis = client
        LOGGER.info("Connected to Redis job queue", extra={"queue": self._prefix})

    async def close(self) -> None:
        if self._redis is None:
            return
        await self._redis.aclose()
        self._redis = None

    def _client(self):
        if self._redis is None:
            raise EnqueueError("Job queue is not connected")
        return self._redis

    async def enqueue(self, kind: JobKind, payload: JobPayload) -> Job:
        client = self._client()
        now = self._clock()
        job = Job(
            job_id=new_job_id(),
            kind=kind,
            payload=payload,
            state=JobState.WAITING,
            created_at=now,
            updated_at=now,
        )
        try:
            async with client.pipeline(transaction=True) as pipe:
                pipe.hset(self._job_key(job.job_id), mapping=job_to_mapping(job))
                pipe.sadd(self._ids_key, job.job_id)
                pipe.lpush(self._waiting_key, job.job_id)
                await pipe.execute()
        except Exception as exc:
            raise EnqueueError(f"Failed to enqueue job: {exc}") from exc
        return job

    async def dequeue(self, timeout_seconds: float) -> Job | None:
        client = self._client()
        if timeout_seconds <= 0:
            job_id = await client.lmove(
                self._waiting_key, self._active_key, "RIGHT", "LEFT"
            )
        else:
            job_id = await client.blmove(
                self._waiting_key,
                self._active_key,
                timeout_seconds,
                "RIGHT",
                "LEFT",
            )
        if not job_id:
            return None
        job = await self.get(job_id)
        if job is None or job.state != JobState.WAITING:
            await client.lrem(self._active_key, 0, job_id)
            return None
        return await self._transition(job, JobState.ACTIVE)

    async def get(self, job_id: str) -> Job | None:
        mapping = await self._client().hgetall(self._job_key(job_id))
        if not mapping:
            return None
        return job_from_mapping(mapping)

    async def mark_completed(self, job_id: str, result: dict[str, Any]) -> Job:
        return await self._transition(
            await self._require(job_id), JobState.COMPLETED, result=result
        )

    async def mark_failed(self, job_id: str, reason: str) -> Job:
        return await self._transition(
            await self._require(job_id), JobState.FAILED, failure_reason=reason
        )

    async def count(self) -> int:
        return int(await self._client().scard(self._ids_key))

    async def _require(self, job_id: str) -> Job:
        job = await self.get(job_id)
        if job is None:
            raise KeyError(f"Unknown job: {job_id}")
        return job

    async def _transition(self, job: Job, target: JobState, **changes: Any) -> Job:
        ensure_transition(job, target)
        updated = replace(job, state=target, updated_at=self._clock(), **changes)
        client = self._client()
        async with client.pipeline(transaction=True) as pipe:
            pipe.hset(self._job_key(job.job_id), mapping=job_to_mapping(updated))
            if updated.is_terminal:
                pipe.lrem(self._active_key, 0, job.job_id)
            await pipe.execute()
        return updated


def build_job_queue(*, backend: str, redis_url: str, queue_name: str) -> JobQueue:
    if backend == "redis":
        return RedisJobQueue(url=redis_url, queue_name=queue_name)
    return InMemoryJobQueue()
