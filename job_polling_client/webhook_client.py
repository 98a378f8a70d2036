import asyncio
from typing import Any, Mapping, Optional

import aiohttp
from loguru import logger
from pydantic import ValidationError

from job_polling_client.errors import (
    InvalidResponseError,
    SubmissionError,
    TransportError,
)
from job_polling_client.models import JobStatus, StatusPollingConfig

JSON_HEADERS = {"Content-Type": "application/json"}


class _WebhookClient:
    def __init__(self, url: str, timeout: float = 10.0):
        self.url = url
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.logger = logger
        self._session: Optional[aiohttp.ClientSession] = None
        self._owns_session = False

    async def __aenter__(self):
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False

    @classmethod
    def from_config(cls, url: str, config: StatusPollingConfig):
        return cls(url, timeout=config.request_timeout)

    def use_session(self, session: aiohttp.ClientSession) -> None:
        """Share an existing session instead of opening one."""
        self._session = session
        self._owns_session = False

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None
        self._owns_session = False

    def _require_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            raise RuntimeError(
                f"{type(self).__name__} not initialized. Use 'async with' context manager."
            )
        return self._session

    async def _read_json(self, response: aiohttp.ClientResponse, url: str) -> Any:
        try:
            return await response.json()
        except (aiohttp.ContentTypeError, ValueError) as e:
            self.logger.error(f"Invalid JSON response from {url}: {e}")
            raise InvalidResponseError(url, "response was not valid JSON") from e


class WebhookStatusChecker(_WebhookClient):
    """Status-check capability backed by a GET webhook taking ``?id=<job_id>``."""

    async def __call__(self, job_id: str) -> JobStatus:
        return await self.get_status(job_id)

    async def get_status(self, job_id: str) -> JobStatus:
        session = self._require_session()
        url = self.url

        try:
            async with session.get(
                url, params={"id": job_id}, headers=JSON_HEADERS
            ) as response:
                response.raise_for_status()
                data = await self._read_json(response, url)
        except aiohttp.ClientResponseError as e:
            self.logger.error(f"HTTP error {e.status} at {url}: {e.message}")
            raise TransportError(url, "failed to check job status", e.status) from e
        except aiohttp.ClientError as e:
            self.logger.error(f"Error requesting {url}: {e}")
            raise TransportError(url, str(e) or type(e).__name__) from e
        except asyncio.TimeoutError as e:
            self.logger.error(f"Timed out requesting {url}")
            raise TransportError(url, "request timed out") from e

        if not isinstance(data, Mapping):
            raise InvalidResponseError(
                url, f"expected a JSON object, got {type(data).__name__}"
            )
        try:
            return JobStatus.model_validate(data)
        except ValidationError as e:
            raise InvalidResponseError(url, f"malformed job status: {e}") from e


class WebhookJobSubmitter(_WebhookClient):
    """Submission capability: POSTs the form payload and returns the job id."""

    async def submit(self, payload: Mapping[str, Any]) -> str:
        session = self._require_session()
        url = self.url

        try:
            async with session.post(
                url, json=dict(payload), headers=JSON_HEADERS
            ) as response:
                response.raise_for_status()
                data = await self._read_json(response, url)
        except aiohttp.ClientResponseError as e:
            self.logger.error(f"HTTP error {e.status} at {url}: {e.message}")
            raise SubmissionError(f"Failed to submit form: HTTP {e.status}") from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.logger.error(f"Error submitting to {url}: {e!r}")
            raise SubmissionError(f"Failed to submit form: {e!r}") from e
        except InvalidResponseError as e:
            raise SubmissionError(str(e)) from e

        job_id = None
        if isinstance(data, Mapping):
            job_id = data.get("jobId") or data.get("id")
        if not job_id:
            raise SubmissionError("No job ID returned from server")

        self.logger.info(f"Submitted job {job_id}")
        return str(job_id)
