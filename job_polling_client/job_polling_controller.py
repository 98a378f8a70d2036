import asyncio
import inspect
from typing import Any, Awaitable, Callable, Mapping, Optional, Set, Union

from loguru import logger

from job_polling_client.models import (
    JobStatus,
    PollingSnapshot,
    SessionOutcome,
    StatusPollingConfig,
)
from job_polling_client.status_view import derive_message, derive_progress

StatusCheck = Callable[[str], Awaitable[Union[JobStatus, Mapping[str, Any]]]]

CHECK_FAILED_MESSAGE = "Failed to check job status"
TIMEOUT_MESSAGE = "Job status check timed out"


class JobPollingController:
    """Tracks a single job by polling its status until it settles or times out.

    ``start`` runs the first check right away and then one check per
    ``polling_interval`` until the job reports ``completed``/``failed``, the
    attempt budget runs out, or ``stop`` is called. Every check is tagged with
    the session it belongs to; results from a stopped or replaced session are
    dropped when they arrive.
    """

    def __init__(
        self,
        check_status: StatusCheck,
        config: Optional[StatusPollingConfig] = None,
        on_status_change: Optional[Callable[[JobStatus], Any]] = None,
    ):
        self.check_status = check_status
        self.config = config or StatusPollingConfig()
        self.on_status_change = on_status_change
        self.logger = logger

        self._session_id = 0
        self._job_id: Optional[str] = None
        self._job_status: Optional[JobStatus] = None
        self._applied_attempt = 0
        self._is_polling = False
        self._attempts = 0
        self._last_error: Optional[str] = None
        self._outcome = SessionOutcome.idle

        self._timer: Optional[asyncio.Task] = None
        self._session_checks: Set[asyncio.Task] = set()
        self._all_checks: Set[asyncio.Task] = set()
        self._idle = asyncio.Event()
        self._idle.set()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
        return False

    @property
    def job_id(self) -> Optional[str]:
        return self._job_id

    @property
    def job_status(self) -> Optional[JobStatus]:
        return self._job_status

    @property
    def is_polling(self) -> bool:
        return self._is_polling

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def max_attempts(self) -> int:
        return self.config.max_attempts

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    @property
    def outcome(self) -> SessionOutcome:
        return self._outcome

    @property
    def timed_out(self) -> bool:
        return self._outcome is SessionOutcome.timed_out

    @property
    def progress(self) -> float:
        return derive_progress(self._job_status)

    @property
    def message(self) -> str:
        return derive_message(self._job_status, self.config.default_message)

    def snapshot(self) -> PollingSnapshot:
        return PollingSnapshot(
            job_id=self._job_id,
            outcome=self._outcome,
            job_status=self._job_status,
            is_polling=self._is_polling,
            attempts=self._attempts,
            max_attempts=self.max_attempts,
            last_error=self._last_error,
            progress=self.progress,
            message=self.message,
        )

    def start(self, job_id: Optional[str]) -> None:
        """Begin a new polling session for ``job_id``, replacing any current one."""
        if not job_id:
            self.logger.warning("Cannot start polling without a job id")
            return

        loop = asyncio.get_running_loop()
        self._retire_timer()

        self._session_id += 1
        session_id = self._session_id
        self._job_id = job_id
        self._job_status = None
        self._applied_attempt = 0
        self._last_error = None
        self._attempts = 0
        self._is_polling = True
        self._outcome = SessionOutcome.polling
        self._session_checks = set()
        self._idle.clear()

        self.logger.info(
            f"Polling job {job_id} every {self.config.polling_interval}s "
            f"(max {self.max_attempts} attempts)"
        )
        self._issue_check(session_id)
        self._timer = loop.create_task(self._run_timer(session_id))

    def stop(self) -> None:
        """Cancel the timer and leave the session. Does nothing when idle."""
        self._retire_timer()
        if not self._is_polling:
            return
        self.logger.info(f"Stopped polling job {self._job_id}")
        self._finish(SessionOutcome.idle)

    async def wait(self) -> PollingSnapshot:
        """Wait until the current session stops polling."""
        await self._idle.wait()
        return self.snapshot()

    async def poll_until_complete(self, job_id: str) -> PollingSnapshot:
        self.start(job_id)
        return await self.wait()

    async def aclose(self) -> None:
        """Stop polling and let checks that are still in flight finish."""
        self.stop()
        if self._all_checks:
            await asyncio.wait(
                set(self._all_checks), timeout=self.config.request_timeout
            )

    def _is_current(self, session_id: int) -> bool:
        return self._is_polling and session_id == self._session_id

    def _retire_timer(self) -> None:
        timer, self._timer = self._timer, None
        if timer is not None and not timer.done():
            timer.cancel()

    def _finish(self, outcome: SessionOutcome) -> None:
        self._is_polling = False
        self._outcome = outcome
        self._idle.set()

    def _issue_check(self, session_id: int) -> None:
        self._attempts += 1
        attempt = self._attempts
        self.logger.debug(
            f"Status check attempt {attempt}/{self.max_attempts} for job {self._job_id}"
        )

        task = asyncio.get_running_loop().create_task(
            self._check_once(session_id, self._job_id, attempt)
        )
        for checks in (self._session_checks, self._all_checks):
            checks.add(task)
            task.add_done_callback(checks.discard)

    async def _run_timer(self, session_id: int) -> None:
        interval = self.config.polling_interval

        while self._is_current(session_id) and self._attempts < self.max_attempts:
            await asyncio.sleep(interval)
            if not self._is_current(session_id):
                return
            self._issue_check(session_id)

        if not self._is_current(session_id):
            return

        # The last check gets one interval to come back before giving up.
        outstanding = set(self._session_checks)
        if outstanding:
            await asyncio.wait(outstanding, timeout=interval)

        if self._is_current(session_id):
            self.logger.warning(
                f"Job {self._job_id} did not settle within {self.max_attempts} attempts"
            )
            self._timer = None
            self._last_error = TIMEOUT_MESSAGE
            self._finish(SessionOutcome.timed_out)

    async def _check_once(self, session_id: int, job_id: str, attempt: int) -> None:
        try:
            payload = await self.check_status(job_id)
            job_status = (
                payload
                if isinstance(payload, JobStatus)
                else JobStatus.model_validate(payload)
            )
        except Exception as e:
            if not self._is_current(session_id) or attempt < self._applied_attempt:
                self.logger.debug(
                    f"Ignoring failed check {attempt} for job {job_id}: {e}"
                )
                return
            self.logger.error(f"Error checking status of job {job_id}: {e}")
            self._last_error = f"{CHECK_FAILED_MESSAGE}: {e}"
            return

        if not self._is_current(session_id) or attempt < self._applied_attempt:
            self.logger.warning(
                f"Discarding stale status {job_status.status} for job {job_id} "
                f"(attempt {attempt})"
            )
            return

        previous = self._job_status
        self._job_status = job_status
        self._applied_attempt = attempt

        if job_status.is_terminal:
            self.logger.info(f"Job {job_id} finished with status {job_status.status.value}")
            self._retire_timer()
            self._finish(SessionOutcome.settled)

        if job_status != previous:
            await self._handle_status_change(job_status)

    async def _handle_status_change(self, job_status: JobStatus) -> None:
        """Invoke the status change callback, awaiting it if it is a coroutine."""
        self.logger.debug(f"Job status changed to {job_status.status}")
        if self.on_status_change is None:
            return
        try:
            result = self.on_status_change(job_status)
            if inspect.isawaitable(result):
                await result
        except Exception:
            self.logger.exception("Status change callback failed")
