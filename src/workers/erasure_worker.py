"""Background runner for erasure jobs.

Erasure runs outside the request that triggered it: the API submits the job
id here and returns the job handle for polling. One asyncio task per job;
submitting a job that already has a live task is a no-op. On startup,
``resume_incomplete`` re-submits jobs a previous process left pending or
running; ``drain`` waits for (or cancels) live tasks on shutdown.
"""

from __future__ import annotations

import asyncio

from structlog import get_logger

from src.application.services.erasure_service import ErasureService
from src.domain.models.erasure_job import ErasureJob
from src.infrastructure.observability.correlation import ensure_correlation_id

logger = get_logger()


class ErasureWorker:
    """Owns the asyncio tasks running erasure jobs."""

    def __init__(self, service: ErasureService) -> None:
        self._service = service
        self._tasks: dict[str, asyncio.Task[ErasureJob | None]] = {}

    @property
    def active_jobs(self) -> list[str]:
        return [job_id for job_id, task in self._tasks.items() if not task.done()]

    def submit(self, job_id: str) -> asyncio.Task[ErasureJob | None]:
        """Start running ``job_id`` unless it is already running here."""
        existing = self._tasks.get(job_id)
        if existing is not None and not existing.done():
            return existing
        task = asyncio.create_task(self._run(job_id), name=f"erasure-{job_id}")
        self._tasks[job_id] = task
        task.add_done_callback(lambda _t, j=job_id: self._forget(j, _t))
        return task

    def _forget(self, job_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(job_id) is task:
            del self._tasks[job_id]

    async def _run(self, job_id: str) -> ErasureJob | None:
        ensure_correlation_id()
        log = logger.bind(job_id=job_id)
        try:
            return await self._service.run_job(job_id)
        except asyncio.CancelledError:
            log.warning("erasure_task_cancelled")
            raise
        except Exception as e:
            # The job is checkpointed as failed; a new erase request re-queues it.
            log.error("erasure_task_failed", error_type=type(e).__name__, error=str(e))
            return None

    async def resume_incomplete(self) -> int:
        jobs = await self._service.resume_incomplete()
        for job in jobs:
            self.submit(job.job_id)
        return len(jobs)

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for live jobs; cancel whatever is still running after ``timeout``.

        A cancelled job stays ``running`` in storage and is resumed by the
        next process.
        """
        tasks = [t for t in self._tasks.values() if not t.done()]
        if not tasks:
            return
        done, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning("erasure_worker_drain_cancelled", cancelled=len(pending))
        logger.info("erasure_worker_drained", finished=len(done))
