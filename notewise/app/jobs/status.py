from __future__ import annotations

from typing import Any

from notewise.app.jobs.contracts import Job, JobState


def job_status_view(job: Job) -> dict[str, Any]:
    """Render a job for pollers.

    Non-terminal jobs only expose ``status``; completed jobs merge their result
    fields into the body and failed jobs carry ``error``.
    """
    if job.state == JobState.COMPLETED:
        view: dict[str, Any] = {"status": JobState.COMPLETED.value}
        view.update(job.result or {})
        return view
    if job.state == JobState.FAILED:
        return {
            "status": JobState.FAILED.value,
            "error": job.failure_reason or "Job failed",
        }
    return {"status": job.state.value}
