"""Derive display values (progress percentage, status text) from a JobStatus."""

from typing import Optional

from job_polling_client.models import JobState, JobStatus

UNKNOWN_PROGRESS = 10.0

FALLBACK_PROGRESS = {
    JobState.pending: 25.0,
    JobState.processing: 50.0,
    JobState.completed: 100.0,
    JobState.failed: 0.0,
}

FALLBACK_MESSAGES = {
    JobState.pending: "Your request is queued and will start processing shortly...",
    JobState.processing: "Processing your request... Almost done!",
    JobState.completed: "Your content has been generated successfully!",
    JobState.failed: "An error occurred while processing your request.",
}


def derive_progress(job_status: Optional[JobStatus]) -> float:
    """Reported progress wins; otherwise estimate from the status value.

    Reported values are passed through as-is, including ones outside 0-100.
    """
    if job_status is None:
        return UNKNOWN_PROGRESS
    if job_status.progress is not None:
        return job_status.progress
    return FALLBACK_PROGRESS.get(job_status.status, UNKNOWN_PROGRESS)


def derive_message(job_status: Optional[JobStatus], default_message: str) -> str:
    if job_status is None:
        return default_message
    if job_status.message:
        return job_status.message
    if job_status.status is JobState.failed and job_status.error:
        return job_status.error
    return FALLBACK_MESSAGES.get(job_status.status, default_message)
