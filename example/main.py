import asyncio

import aiohttp
from job_polling_client.errors import SubmissionError
from job_polling_client.job_polling_controller import JobPollingController
from job_polling_client.models import StatusPollingConfig
from job_polling_client.status_view import derive_message, derive_progress
from job_polling_client.webhook_client import WebhookJobSubmitter, WebhookStatusChecker
from job_status_server import JobStatusServer


async def status_changed(job_status):
    print(f"Status changed to: {job_status.status}")
    print(f"Progress: {derive_progress(job_status):.0f}%")
    print(f"Message: {derive_message(job_status, 'Initializing...')}")


async def main():
    PORT = 8000
    server = JobStatusServer(completion_time=20.0, error_rate=0.05, fault_rate=0.1)
    await server.start(port=PORT)
    print(f"Server started on http://localhost:{PORT}")

    config = StatusPollingConfig(
        polling_interval=2.0,
        max_attempts=20,
        default_message="Initializing... Receiving input and preparing queries",
    )

    submitter = WebhookJobSubmitter(f"http://localhost:{PORT}/submit")
    checker = WebhookStatusChecker.from_config(f"http://localhost:{PORT}/status", config)

    try:
        async with aiohttp.ClientSession(timeout=checker.timeout) as session:
            submitter.use_session(session)
            checker.use_session(session)

            job_id = await submitter.submit(
                {"webinarTopic": "10 Minute Workout Routines", "targetBuyer": "Working Mums"}
            )
            print(f"Job started: {job_id}")

            async with JobPollingController(
                checker, config, on_status_change=status_changed
            ) as controller:
                final = await controller.poll_until_complete(job_id)

        if final.timed_out:
            print(f"Polling timed out after {final.attempts}/{final.max_attempts} attempts")
        else:
            print(f"Final status: {final.job_status.status.value}")
            print(f"Result: {final.job_status.result or final.job_status.error}")
        if final.last_error:
            print(f"Last error: {final.last_error}")
    except SubmissionError as e:
        print(f"Error occurred: {e}")
    finally:
        await server.stop()


if __name__ == "__main__":
    asyncio.run(main())
