import random
import uuid
from datetime import datetime

from aiohttp import web
from loguru import logger


class JobStatusServer:
    """Simulates a submit webhook and a status webhook for long-running jobs."""

    def __init__(
        self,
        completion_time: float = 10.0,
        error_rate: float = 0.1,
        fault_rate: float = 0.0,
    ):
        self.completion_time = completion_time
        self.error_rate = error_rate
        self.fault_rate = fault_rate
        self.jobs = {}
        self.status_requests = 0
        self.app = web.Application()
        self.app.router.add_post("/submit", self.handle_submit)
        self.app.router.add_get("/status", self.handle_status)
        self.logger = logger
        self.runner = None

    async def handle_submit(self, request):
        payload = await request.json()
        job_id = uuid.uuid4().hex
        self.jobs[job_id] = {"started": datetime.now(), "payload": payload}
        self.logger.info(f"Accepted job {job_id}")
        return web.json_response({"jobId": job_id})

    async def handle_status(self, request):
        self.status_requests += 1
        job_id = request.query.get("id")
        job = self.jobs.get(job_id)
        if job is None:
            return web.json_response({"error": "unknown job"}, status=404)

        if random.random() < self.fault_rate:
            self.logger.info("Returning HTTP 500")
            return web.json_response({"error": "internal error"}, status=500)

        if random.random() < self.error_rate:
            self.logger.info("Returning failed status")
            return web.json_response(
                {"id": job_id, "status": "failed", "error": "Generation failed"}
            )

        elapsed = (datetime.now() - job["started"]).total_seconds()

        if elapsed >= self.completion_time:
            self.logger.info("Returning completed status")
            return web.json_response(
                {
                    "id": job_id,
                    "status": "completed",
                    "result": [{"output": f"Content for {job['payload']}"}],
                }
            )
        elif elapsed < self.completion_time / 4:
            self.logger.info(f"Returning pending status (elapsed: {elapsed:.1f}s)")
            return web.json_response({"id": job_id, "status": "pending"})
        else:
            progress = round(100 * elapsed / self.completion_time)
            self.logger.info(f"Returning processing status ({progress}%)")
            return web.json_response(
                {"id": job_id, "status": "processing", "progress": progress}
            )

    async def start(self, port: int = 8080):
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        site = web.TCPSite(self.runner, "localhost", port)
        await site.start()
        self.logger.info(f"Server started on port {port}")
        return site

    async def stop(self):
        if self.runner is not None:
            await self.runner.cleanup()
            self.runner = None
