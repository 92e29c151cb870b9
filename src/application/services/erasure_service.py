"""Erasure workflow: checkpointed, resumable, idempotent.

Steps (see ErasureStep), each idempotent and checkpointed on the job row:

1. settle_pending       resolve markers left by interrupted requests
2. stage_revocations    stage a REVOKE on every active handle (job id is
                        the transaction id)
   -- point of no return --
3. commit_revocations   commit the staged revocations
4. reset_config         reset the privacy configuration to defaults
5. erase_bindings       re-point bindings of the account's handles to the
                        erased placeholder
6. apply_retention      purge expired audit entries, anonymize the rest
7. record_completion    append a data_deletion entry (job id and counts)

A cancellation before the point of no return discards the staged
revocations and ends the job as cancelled. Crossing the point of no return
is a CAS write on the job row that fails if a cancellation landed first, so
the two can never both win.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import replace
from datetime import timedelta

from structlog import get_logger
from uuid6 import uuid7

from src.application.ports.time_authority import TimeAuthorityProtocol
from src.application.services.audit_trail_service import AuditTrailService
from src.application.services.erasure_job_store import ErasureJobStore
from src.application.services.identity_vault_service import IdentityVaultService
from src.application.services.policy_enforcer_service import PolicyEnforcerService
from src.application.services.privacy_config_service import PrivacyConfigService
from src.application.services.storage_retry import StorageRetryPolicy
from src.domain.errors.erasure import ErasureInProgressError
from src.domain.models.audit_entry import ActorMetadata, AuditActionKind
from src.domain.models.erasure_job import ErasureJob, ErasureJobStatus, ErasureStep
from src.domain.models.pending_change import PendingAction

logger = get_logger()

SYSTEM_ACTOR = ActorMetadata.system("erasure")


class ErasureService:
    """Request, run, cancel and inspect erasure jobs.

    Attributes:
        _configs: Privacy configuration store.
        _vault: Identity vault.
        _audit: Audit trail.
        _enforcer: Policy enforcer (recovery sweep).
        _jobs: Erasure job store.
        _time: Time authority.
        _retention: Audit entries older than this are purged.
        _retry: Retry policy for checkpoint CAS races.
        _max_cas_retries: Retries after a lost checkpoint CAS.
    """

    def __init__(
        self,
        configs: PrivacyConfigService,
        vault: IdentityVaultService,
        audit: AuditTrailService,
        enforcer: PolicyEnforcerService,
        jobs: ErasureJobStore,
        time_authority: TimeAuthorityProtocol,
        retention: timedelta = timedelta(days=365),
        retry: StorageRetryPolicy | None = None,
        max_cas_retries: int = 8,
    ) -> None:
        self._configs = configs
        self._vault = vault
        self._audit = audit
        self._enforcer = enforcer
        self._jobs = jobs
        self._time = time_authority
        self._retention = retention
        self._retry = retry or StorageRetryPolicy()
        self._max_cas_retries = max_cas_retries

    async def request_erasure(self, account_id: str) -> ErasureJob:
        """Start (or find) the erasure job of an account.

        - pending, running or done job: returned as is (a second request
          for an erased account is a no-op success)
        - failed job: re-queued as pending
        - cancelled job or none: a new job is created

        Raises:
            NotFoundError: Account not provisioned.
        """

        async def _request() -> ErasureJob:
            job_id, index_version = await self._jobs.index_entry(account_id)
            if job_id is not None:
                current = await self._jobs.get(job_id)
                if current.status in (
                    ErasureJobStatus.PENDING,
                    ErasureJobStatus.RUNNING,
                    ErasureJobStatus.DONE,
                ):
                    return current
                if current.status == ErasureJobStatus.FAILED:
                    requeued = replace(
                        current,
                        status=ErasureJobStatus.PENDING,
                        error=None,
                        updated_at=self._time.now(),
                    )
                    return await self._jobs.save(requeued)

            await self._configs.get_config(account_id)
            now = self._time.now()
            job = ErasureJob(
                job_id=str(uuid7()),
                account_id=account_id,
                status=ErasureJobStatus.PENDING,
                created_at=now,
                updated_at=now,
            )
            return await self._jobs.claim(job, index_version)

        job = await self._retry.run_cas(
            "erasure_request", _request, self._max_cas_retries
        )
        logger.info(
            "erasure_requested",
            account_id=account_id,
            job_id=job.job_id,
            status=job.status.value,
        )
        return job

    async def get_status(self, job_id: str) -> ErasureJob:
        return await self._jobs.get(job_id)

    async def resume_incomplete(self) -> list[ErasureJob]:
        """Jobs a worker should pick up again after a restart."""
        jobs = await self._jobs.list_incomplete()
        if jobs:
            logger.info("erasure_jobs_to_resume", count=len(jobs))
        return jobs

    async def _update(
        self, job_id: str, mutate: Callable[[ErasureJob], ErasureJob | None]
    ) -> ErasureJob:
        """Re-read the job, apply ``mutate`` and save it under CAS.

        ``mutate`` returning None leaves the job unchanged.
        """

        async def _once() -> ErasureJob:
            job = await self._jobs.get(job_id)
            updated = mutate(job)
            if updated is None:
                return job
            return await self._jobs.save(updated)

        return await self._retry.run_cas(
            "erasure_checkpoint", _once, self._max_cas_retries
        )

    async def cancel(self, job_id: str) -> ErasureJob:
        """Cancel a job before its point of no return.

        A job that is not running is compensated and cancelled right away;
        a running job is flagged and its runner compensates at the next
        checkpoint.

        Raises:
            NotFoundError: Unknown job.
            ErasureInProgressError: The job is done or past the point of no
                return.
        """
        job = await self._jobs.get(job_id)
        if job.status == ErasureJobStatus.CANCELLED:
            return job

        def _flag(current: ErasureJob) -> ErasureJob | None:
            if current.status == ErasureJobStatus.DONE or current.point_of_no_return:
                raise ErasureInProgressError(
                    current.account_id,
                    current.job_id,
                    message=f"Erasure job {current.job_id} can no longer be cancelled",
                )
            if current.is_terminal or current.cancel_requested:
                return None
            return replace(current, cancel_requested=True, updated_at=self._time.now())

        job = await self._update(job_id, _flag)
        logger.info("erasure_cancel_requested", job_id=job_id, status=job.status.value)
        if job.status in (ErasureJobStatus.PENDING, ErasureJobStatus.FAILED):
            return await self._compensate(job)
        return job

    async def _compensate(self, job: ErasureJob) -> ErasureJob:
        """Discard the job's staged revocations and end it as cancelled."""
        discarded = 0
        for handle in await self._vault.list_pending_handles(job.account_id):
            marker = handle.pending
            if marker.transaction_id == job.job_id and marker.action == PendingAction.REVOKE:
                if await self._vault.discard_handle(handle.id, job.job_id):
                    discarded += 1

        def _cancelled(current: ErasureJob) -> ErasureJob | None:
            if current.status == ErasureJobStatus.CANCELLED:
                return None
            now = self._time.now()
            counts = {**current.counts, "revocations_discarded": discarded}
            return replace(
                current,
                status=ErasureJobStatus.CANCELLED,
                counts=counts,
                finished_at=now,
                updated_at=now,
            )

        job = await self._update(job.job_id, _cancelled)
        logger.info("erasure_job_cancelled", job_id=job.job_id, discarded=discarded)
        return job

    async def run_job(self, job_id: str) -> ErasureJob:
        """Run (or resume) a job from its first unfinished step.

        Raises:
            Whatever a step raised, after the job was checkpointed as failed.
        """
        log = logger.bind(job_id=job_id)

        def _start(current: ErasureJob) -> ErasureJob | None:
            if current.is_terminal:
                return None
            return replace(
                current,
                status=ErasureJobStatus.RUNNING,
                error=None,
                updated_at=self._time.now(),
            )

        job = await self._update(job_id, _start)
        if job.is_terminal:
            return job
        log = log.bind(account_id=job.account_id)
        log.info("erasure_job_started", completed_steps=len(job.completed_steps))

        try:
            while True:
                job = await self._jobs.get(job_id)
                if job.is_terminal:
                    return job
                if job.cancel_requested and not job.point_of_no_return:
                    return await self._compensate(job)
                step = job.next_step
                if step is None:
                    break
                if step == ErasureStep.COMMIT_REVOCATIONS and not job.point_of_no_return:
                    job = await self._update(job_id, self._cross_point_of_no_return)
                    if not job.point_of_no_return:
                        continue
                    log.info("erasure_point_of_no_return")

                counts = await self._run_step(job, step)
                await self._update(
                    job_id,
                    lambda current, s=step, c=counts: current.with_step_completed(
                        s, self._time.now(), **c
                    ),
                )
                log.info("erasure_step_completed", step=step.value, **counts)

            def _done(current: ErasureJob) -> ErasureJob:
                now = self._time.now()
                return replace(
                    current,
                    status=ErasureJobStatus.DONE,
                    finished_at=now,
                    updated_at=now,
                )

            job = await self._update(job_id, _done)
        except Exception as e:
            log.error("erasure_job_failed", error_type=type(e).__name__)
            message = f"{type(e).__name__}: {e}"
            await self._update(
                job_id,
                lambda current: replace(
                    current,
                    status=ErasureJobStatus.FAILED,
                    error=message,
                    updated_at=self._time.now(),
                ),
            )
            raise

        log.info("erasure_job_done", counts=job.counts)
        return job

    def _cross_point_of_no_return(self, current: ErasureJob) -> ErasureJob | None:
        if current.cancel_requested or current.point_of_no_return:
            return None
        return replace(current, point_of_no_return=True, updated_at=self._time.now())

    async def _run_step(self, job: ErasureJob, step: ErasureStep) -> dict[str, int]:
        account_id = job.account_id

        if step == ErasureStep.SETTLE_PENDING:
            report = await self._enforcer.recover_pending(
                account_id,
                grace=timedelta(0),
                include_erasing=True,
                exclude_transactions=frozenset({job.job_id}),
            )
            return {"pending_settled": report.resolved}

        if step == ErasureStep.STAGE_REVOCATIONS:
            active = await self._vault.list_handles(account_id, include_revoked=False)
            for handle in active:
                await self._vault.stage_revocation(handle.id, job.job_id)
            return {"revocations_staged": len(active)}

        if step == ErasureStep.COMMIT_REVOCATIONS:
            revoked = 0
            for handle in await self._vault.list_handles(account_id, include_revoked=False):
                if handle.pending is None:
                    await self._vault.stage_revocation(handle.id, job.job_id)
                await self._vault.commit_handle(handle.id, job.job_id)
                revoked += 1
            return {"handles_revoked": revoked}

        if step == ErasureStep.RESET_CONFIG:
            await self._configs.reset_to_defaults(account_id)
            return {}

        if step == ErasureStep.ERASE_BINDINGS:
            handles = await self._vault.list_handles(account_id)
            erased = await self._vault.erase_bindings_for_handles([h.id for h in handles])
            return {"bindings_erased": erased}

        if step == ErasureStep.APPLY_RETENTION:
            cutoff = self._time.now() - self._retention
            purged, anonymized = await self._audit.apply_retention(account_id, cutoff)
            return {"audit_purged": purged, "audit_anonymized": anonymized}

        if step == ErasureStep.RECORD_COMPLETION:
            if not await self._audit.find_by_transaction(account_id, job.job_id):
                counts = dict(job.counts)
                await self._audit.append(
                    self._audit.new_entry(
                        account_id,
                        AuditActionKind.DATA_DELETION,
                        job.job_id,
                        new_value={"job_id": job.job_id, "counts": counts},
                        actor=SYSTEM_ACTOR,
                    )
                )
            return {}

        raise ValueError(f"Unknown erasure step: {step}")
