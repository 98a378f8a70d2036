import json
from enum import Enum
from typing import Any, Optional

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, field_validator


class JobState(str, Enum):
    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"


TERMINAL_STATES = (JobState.completed, JobState.failed)


class JobStatus(BaseModel):
    """A single status report for a job, replaced wholesale on every check.

    Any field may be missing; status webhooks are not consistent about what
    they send back.
    """

    model_config = ConfigDict(extra="allow", frozen=True, coerce_numbers_to_str=True)

    id: Optional[str] = None
    status: Optional[JobState] = None
    progress: Optional[float] = None
    message: Optional[str] = None
    result: Any = None
    error: Optional[str] = None

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value):
        if value is None or isinstance(value, JobState):
            return value
        normalized = str(value).strip().lower()
        if normalized in {state.value for state in JobState}:
            return normalized
        logger.warning(f"Ignoring unknown job status {value!r}")
        return None

    @field_validator("message", "error", mode="before")
    @classmethod
    def _stringify_text(cls, value):
        if value is None or isinstance(value, str):
            return value
        if isinstance(value, (dict, list)):
            return json.dumps(value, sort_keys=True)
        return str(value)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATES


class StatusPollingConfig(BaseModel):
    polling_interval: float = Field(default=6.0, gt=0)
    max_attempts: int = Field(default=10, ge=1)
    # Per-request HTTP timeout; WebhookStatusChecker.from_config applies it and
    # aclose() waits at most this long for checks still in flight.
    request_timeout: float = Field(default=10.0, gt=0)
    default_message: str = "Processing your request..."

    @property
    def timeout_budget(self) -> float:
        return self.polling_interval * self.max_attempts


class SessionOutcome(str, Enum):
    idle = "idle"
    polling = "polling"
    settled = "settled"
    timed_out = "timed_out"


class PollingSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    job_id: Optional[str]
    outcome: SessionOutcome
    job_status: Optional[JobStatus]
    is_polling: bool
    attempts: int
    max_attempts: int
    last_error: Optional[str]
    progress: float
    message: str

    @property
    def timed_out(self) -> bool:
        return self.outcome is SessionOutcome.timed_out
