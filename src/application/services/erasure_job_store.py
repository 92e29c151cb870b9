"""Persistence of erasure jobs.

Two document tables:
- ``erasure_jobs`` keyed by job id, holding the job checkpoint (CAS on
  version for every checkpoint write)
- ``erasure_job_index`` keyed by account id, pointing at the account's
  current job. Swapping the pointer is a CAS write, so at most one job per
  account is ever active.
"""

from __future__ import annotations

from structlog import get_logger

from src.application.ports.row_store import In, Order, Precondition, RowStoreProtocol
from src.application.services.storage_retry import StorageRetryPolicy
from src.domain.errors.concurrent_modification import ConflictError
from src.domain.errors.not_found import NotFoundError
from src.domain.models.erasure_job import ErasureJob, ErasureJobStatus

logger = get_logger()

JOBS_TABLE = "erasure_jobs"
JOB_INDEX_TABLE = "erasure_job_index"


class ErasureJobStore:
    """CAS-protected storage of erasure jobs and the per-account index."""

    def __init__(
        self, store: RowStoreProtocol, retry: StorageRetryPolicy | None = None
    ) -> None:
        self._store = store
        self._retry = retry or StorageRetryPolicy()

    async def get(self, job_id: str) -> ErasureJob:
        """Load a job.

        Raises:
            NotFoundError: Unknown job id.
        """
        row = await self._retry.run(
            "erasure_job_get", lambda: self._store.get(JOBS_TABLE, job_id)
        )
        if row is None:
            raise NotFoundError("erasure_job", job_id)
        return ErasureJob.from_row(row.with_version())

    async def index_entry(self, account_id: str) -> tuple[str | None, int]:
        """Current job id of the account and the index row version."""
        row = await self._retry.run(
            "erasure_index_get", lambda: self._store.get(JOB_INDEX_TABLE, account_id)
        )
        if row is None:
            return None, 0
        return row.data.get("job_id"), row.version

    async def current_for_account(self, account_id: str) -> ErasureJob | None:
        job, _ = await self.fence(account_id)
        return job

    async def fence(self, account_id: str) -> tuple[ErasureJob | None, Precondition]:
        """Current job of the account and a guard on its index row.

        Claiming a new job moves the index row, so an audit append made
        under the returned guard fails once erasure was requested after
        the read.
        """
        job_id, version = await self.index_entry(account_id)
        guard = Precondition(JOB_INDEX_TABLE, account_id, version)
        if job_id is None:
            return None, guard
        return await self.get(job_id), guard

    async def claim(self, job: ErasureJob, expected_index_version: int) -> ErasureJob:
        """Insert ``job`` and point the account index at it.

        The index swap is the CAS that decides which concurrent request
        owns the account; the job row is written first so the index never
        points at a missing job.

        Raises:
            ConflictError: The index moved since it was read.
        """
        version = await self._retry.run(
            "erasure_job_insert",
            lambda: self._store.upsert(JOBS_TABLE, job.job_id, job.to_row(), 0),
        )
        try:
            await self._retry.run(
                "erasure_index_swap",
                lambda: self._store.upsert(
                    JOB_INDEX_TABLE,
                    job.account_id,
                    {"account_id": job.account_id, "job_id": job.job_id},
                    expected_index_version,
                ),
            )
        except ConflictError:
            # Lost the index: retire the unreferenced job row.
            await self._retry.run(
                "erasure_job_abandon",
                lambda: self._store.upsert(
                    JOBS_TABLE,
                    job.job_id,
                    {"status": ErasureJobStatus.CANCELLED.value, "error": "superseded"},
                    version,
                ),
            )
            raise
        logger.info("erasure_job_claimed", job_id=job.job_id, account_id=job.account_id)
        return ErasureJob.from_row({**job.to_row(), "version": version})

    async def save(self, job: ErasureJob) -> ErasureJob:
        """Checkpoint ``job`` against its version.

        Raises:
            ConflictError: Someone else wrote the job since it was read.
        """
        version = await self._retry.run(
            "erasure_job_save",
            lambda: self._store.upsert(JOBS_TABLE, job.job_id, job.to_row(), job.version),
        )
        return ErasureJob.from_row({**job.to_row(), "version": version})

    async def list_incomplete(self) -> list[ErasureJob]:
        """Jobs left pending or running (e.g. by a crashed process)."""
        rows = await self._retry.run(
            "erasure_job_list_incomplete",
            lambda: self._store.query(
                JOBS_TABLE,
                filters={
                    "status": In(
                        (ErasureJobStatus.PENDING.value, ErasureJobStatus.RUNNING.value)
                    )
                },
                order=Order("created_at"),
            ),
        )
        return [ErasureJob.from_row(r.with_version()) for r in rows]
