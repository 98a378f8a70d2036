import asyncio
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from job_polling_client.errors import SubmissionError
from job_polling_client.job_polling_controller import JobPollingController
from job_polling_client.models import JobState, SessionOutcome, StatusPollingConfig
from job_polling_client.webhook_client import WebhookJobSubmitter, WebhookStatusChecker
from job_status_server import JobStatusServer

BASE_URL_TEMPLATE = "http://localhost:{}"


@pytest_asyncio.fixture
async def server(unused_tcp_port_factory) -> AsyncGenerator[JobStatusServer, None]:
    """Start and yield a test JobStatusServer instance on a random port."""
    port = unused_tcp_port_factory()
    server_instance = JobStatusServer(completion_time=0.6, error_rate=0.0)
    await server_instance.start(port=port)
    try:
        yield server_instance, port
    finally:
        await server_instance.stop()


@pytest.fixture
def config() -> StatusPollingConfig:
    """Provide a fast configuration for the controller."""
    return StatusPollingConfig(polling_interval=0.1, max_attempts=20, request_timeout=2.0)


async def submit_and_poll(base_url, config, on_status_change=None):
    async with WebhookJobSubmitter(f"{base_url}/submit") as submitter:
        job_id = await submitter.submit({"webinarTopic": "Budget travel"})

    async with WebhookStatusChecker(f"{base_url}/status", config.request_timeout) as checker:
        async with JobPollingController(checker, config, on_status_change) as controller:
            return await controller.poll_until_complete(job_id)


@pytest.mark.asyncio
async def test_successful_completion(server, config):
    """Test normal successful completion flow."""
    status_changes = []
    server_instance, port = server

    async def status_callback(job_status):
        status_changes.append(job_status.status)

    result = await submit_and_poll(
        BASE_URL_TEMPLATE.format(port), config, on_status_change=status_callback
    )

    assert result.outcome is SessionOutcome.settled
    assert result.job_status.status is JobState.completed
    assert result.job_status.result
    assert result.progress == 100
    assert JobState.pending in status_changes
    assert JobState.processing in status_changes
    assert status_changes[-1] is JobState.completed
    assert server_instance.status_requests == result.attempts


@pytest.mark.asyncio
async def test_failed_job(server, config):
    """The job reporting failure is a settled outcome, not a timeout."""
    server_instance, port = server
    server_instance.error_rate = 1.0

    result = await submit_and_poll(BASE_URL_TEMPLATE.format(port), config)

    assert result.outcome is SessionOutcome.settled
    assert result.job_status.status is JobState.failed
    assert result.message == "Generation failed"
    assert result.attempts == 1


@pytest.mark.asyncio
async def test_timeout_scenario(server, config):
    """Test timeout handling."""
    server_instance, port = server
    server_instance.completion_time = 30.0
    config.max_attempts = 3

    result = await submit_and_poll(BASE_URL_TEMPLATE.format(port), config)

    assert result.timed_out
    assert result.attempts == 3
    assert server_instance.status_requests == 3
    assert result.job_status.status is JobState.pending


@pytest.mark.asyncio
async def test_server_faults_are_retried(server, config):
    """HTTP 500s are recorded and polling carries on until the budget runs out."""
    server_instance, port = server
    server_instance.fault_rate = 1.0
    config.max_attempts = 3

    result = await submit_and_poll(BASE_URL_TEMPLATE.format(port), config)

    assert result.timed_out
    assert server_instance.status_requests == 3
    assert result.job_status is None


@pytest.mark.asyncio
async def test_server_unavailable(config, unused_tcp_port_factory):
    """Submitting to a server that is not running fails without polling."""
    base_url = BASE_URL_TEMPLATE.format(unused_tcp_port_factory())

    with pytest.raises(SubmissionError):
        await submit_and_poll(base_url, config)


@pytest.mark.asyncio
async def test_status_endpoint_unavailable(config, unused_tcp_port_factory):
    """Connection errors on status checks count as failed attempts."""
    config.max_attempts = 2
    base_url = BASE_URL_TEMPLATE.format(unused_tcp_port_factory())

    async with WebhookStatusChecker(f"{base_url}/status", config.request_timeout) as checker:
        controller = JobPollingController(checker, config)
        result = await controller.poll_until_complete("job-1")

    assert result.timed_out
    assert result.attempts == 2


@pytest.mark.asyncio
async def test_multiple_controllers(server, config):
    """Test multiple controllers polling simultaneously."""
    server_instance, port = server
    base_url = BASE_URL_TEMPLATE.format(port)

    results = await asyncio.gather(
        *[submit_and_poll(base_url, config) for _ in range(3)]
    )

    for result in results:
        assert result.job_status.status is JobState.completed
