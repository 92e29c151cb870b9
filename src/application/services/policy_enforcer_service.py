"""Policy enforcer: the caller-facing privacy intents.

Every intent runs as one logical transaction across the config store, the
identity vault and the audit trail:

1. validate, then stage each change behind a pending marker carrying a
   fresh transaction id
2. append the audit entry with the same transaction id
3. commit the staged changes
4. (the commit clears the pending marker)

If anything fails before step 2 completes, the staged markers are
discarded and the error propagates: nothing changed and nothing was
recorded. Once the entry is durable the transaction is never rolled back;
a crash or storage failure during step 3 leaves markers that
``recover_pending`` completes, because their audit entry exists. A marker
without an entry is discarded by the same sweep.

Mutating intents are refused while the account has an unfinished erasure
job (ErasureInProgressError) and after it completed (AccountErasedError).
The check also yields a fence on the account's erasure index row, and the
audit entry of step 2 is appended only while that row is unchanged. An
intent that passed the check just before a job was claimed therefore
fails at step 2 and discards its markers, instead of committing over the
erasure.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import timedelta
from typing import Any

from structlog import get_logger
from uuid6 import uuid7

from src.application.dtos.privacy import (
    AccountProvisioning,
    HandleRotation,
    IdentitySwitch,
    RecoveryReport,
    SettingsChange,
)
from src.application.ports.follow_graph import FollowGraphProtocol
from src.application.ports.row_store import Precondition
from src.application.ports.time_authority import TimeAuthorityProtocol
from src.application.services.audit_trail_service import AuditTrailService
from src.application.services.erasure_job_store import ErasureJobStore
from src.application.services.identity_vault_service import IdentityVaultService
from src.application.services.privacy_config_service import PrivacyConfigService
from src.domain.errors.concurrent_modification import ConflictError, StaleTransactionError
from src.domain.errors.erasure import AccountErasedError, ErasureInProgressError
from src.domain.errors.validation import ValidationError
from src.domain.models.anonymous_handle import HandleGenerationParams
from src.domain.models.audit_entry import ActorMetadata, AuditActionKind, AuditEntry
from src.domain.models.erasure_job import ErasureJobStatus
from src.domain.models.pending_change import PendingChange
from src.domain.models.privacy_config import PrivacyConfig, PrivacyLevel
from src.domain.models.resource_identity import (
    AnonymousHandleIdentity,
    RealAccountIdentity,
    ResourceRef,
)
from src.domain.primitives.ensure_atomicity import AtomicOperationContext
from src.domain.services.privacy_recommendations import (
    PrivacyRecommendation,
    recommendations_for,
)
from src.domain.services.visibility_policy import (
    can_send_message,
    can_view_activity,
    can_view_profile,
)

logger = get_logger()


def _new_transaction_id() -> str:
    return str(uuid7())


class PolicyEnforcerService:
    """Coordinator turning caller intents into audited transactions.

    Attributes:
        _configs: Privacy configuration store.
        _vault: Identity vault (handles and bindings).
        _audit: Audit trail.
        _jobs: Erasure job store (mutation guard).
        _follows: Follow graph for visibility checks.
        _time: Time authority.
        _pending_grace: Minimum marker age before the sweep resolves it.
    """

    def __init__(
        self,
        configs: PrivacyConfigService,
        vault: IdentityVaultService,
        audit: AuditTrailService,
        jobs: ErasureJobStore,
        follows: FollowGraphProtocol,
        time_authority: TimeAuthorityProtocol,
        pending_grace: timedelta = timedelta(seconds=30),
    ) -> None:
        self._configs = configs
        self._vault = vault
        self._audit = audit
        self._jobs = jobs
        self._follows = follows
        self._time = time_authority
        self._pending_grace = pending_grace

    async def ensure_mutable(self, account_id: str) -> Precondition:
        """Refuse privacy mutations for accounts under or after erasure.

        Returns:
            Guard for the intent's audit append. It stops holding as soon
            as an erasure job is claimed for the account, so a request
            admitted here can never record its change once erasure started.

        Raises:
            ErasureInProgressError: An erasure job is pending, running or
                failed (awaiting retry).
            AccountErasedError: The account's erasure completed.
        """
        job, fence = await self._jobs.fence(account_id)
        if job is None:
            return fence
        if job.status == ErasureJobStatus.DONE:
            raise AccountErasedError(account_id, job.job_id)
        if job.blocks_mutations:
            raise ErasureInProgressError(account_id, job.job_id)
        return fence

    async def _append_audit(
        self, ctx: AtomicOperationContext, fence: Precondition, entry: AuditEntry
    ) -> AuditEntry:
        """Append the intent's entry under its erasure fence.

        Raises:
            ErasureInProgressError: Erasure was requested since the intent
                started; the context discards the staged changes.
        """
        try:
            stored = await self._audit.append(entry, precondition=fence)
        except ConflictError:
            logger.warning(
                "intent_fenced_by_erasure",
                account_id=entry.account_id,
                transaction_id=entry.transaction_id,
            )
            await self.ensure_mutable(entry.account_id)
            raise
        ctx.mark_audited()
        return stored

    # ------------------------------------------------------------------
    # Intents
    # ------------------------------------------------------------------

    async def create_account(
        self,
        account_id: str,
        actor: ActorMetadata | None = None,
        handle_params: HandleGenerationParams | None = None,
    ) -> AccountProvisioning:
        """Provision privacy state for a new account, all-or-nothing.

        Creates the default (anonymous) configuration and the first
        anonymous handle in one audited transaction.

        Raises:
            AccountAlreadyProvisionedError: The account already exists.
            GeneratorExhaustedError: No handle could be generated.
            AuditUnavailableError: Nothing was created.
        """
        fence = await self.ensure_mutable(account_id)
        txn = _new_transaction_id()
        log = logger.bind(account_id=account_id, transaction_id=txn)

        async with AtomicOperationContext(txn) as ctx:
            config = await self._configs.stage_provision(account_id, txn)
            ctx.add_rollback(lambda: self._configs.discard_pending(account_id, txn))

            handle = await self._vault.create_handle(
                account_id, handle_params or HandleGenerationParams(), txn
            )
            ctx.add_rollback(lambda: self._vault.discard_handle(handle.id, txn))

            entry = await self._append_audit(
                ctx,
                fence,
                self._audit.new_entry(
                    account_id,
                    AuditActionKind.PRIVACY_SETTING_CHANGE,
                    txn,
                    old_value={},
                    new_value={
                        "provisioned": True,
                        "is_anonymous": config.is_anonymous,
                        "privacy_level": config.privacy_level.value,
                        "handle_id": handle.id,
                    },
                    actor=actor,
                ),
            )
            config = await self._configs.commit_pending(account_id, txn)
            handle = await self._vault.commit_handle(handle.id, txn)

        log.info("account_privacy_provisioned", handle_id=handle.id)
        return AccountProvisioning(config=config, handle=handle, audit_entry=entry)

    async def update_privacy_setting(
        self,
        account_id: str,
        partial: dict[str, Any],
        actor: ActorMetadata | None = None,
    ) -> SettingsChange:
        """Validate and apply a partial settings update.

        A patch that changes nothing is discarded without an audit entry.

        Raises:
            ValidationError: Bad field, value or dependency.
            NotFoundError: Account not provisioned.
            ConflictError: Lost the CAS race too many times.
            AuditUnavailableError: Nothing was changed.
        """
        return await self._change_settings(account_id, partial, actor)

    async def _change_settings(
        self,
        account_id: str,
        partial: dict[str, Any],
        actor: ActorMetadata | None,
        derive: Callable[[PrivacyConfig], dict[str, Any]] | None = None,
    ) -> SettingsChange:
        fence = await self.ensure_mutable(account_id)
        txn = _new_transaction_id()

        async with AtomicOperationContext(txn) as ctx:
            old, new = await self._configs.apply_update(
                account_id, partial, txn, derive=derive
            )
            ctx.add_rollback(lambda: self._configs.discard_pending(account_id, txn))

            changed = old.changed_settings(new)
            if not changed:
                await self._configs.discard_pending(account_id, txn)
                return SettingsChange(old=old, new=old, audit_entry=None)

            entry = await self._append_audit(
                ctx,
                fence,
                self._audit.new_entry(
                    account_id,
                    AuditActionKind.PRIVACY_SETTING_CHANGE,
                    txn,
                    old_value={k: v[0] for k, v in changed.items()},
                    new_value={k: v[1] for k, v in changed.items()},
                    actor=actor,
                ),
            )
            new = await self._configs.commit_pending(account_id, txn)

        logger.info(
            "privacy_settings_changed",
            account_id=account_id,
            transaction_id=txn,
            changed=sorted(changed),
            sequence=entry.sequence,
        )
        return SettingsChange(old=old, new=new, audit_entry=entry)

    async def toggle_anonymous_mode(
        self,
        account_id: str,
        enabled: bool,
        actor: ActorMetadata | None = None,
    ) -> SettingsChange:
        """Switch anonymous mode on or off.

        Turning it off while ``privacy_level`` is anonymous also lowers the
        level to private, keeping the level/flag dependency intact. The
        level is judged on the row being staged, not on an earlier read.
        """
        if not isinstance(enabled, bool):
            raise ValidationError("enabled must be a boolean", field="enabled")

        def _lower_level(current: PrivacyConfig) -> dict[str, Any]:
            if not enabled and current.privacy_level == PrivacyLevel.ANONYMOUS:
                return {"privacy_level": PrivacyLevel.PRIVATE.value}
            return {}

        return await self._change_settings(
            account_id, {"is_anonymous": enabled}, actor, derive=_lower_level
        )

    async def reveal_resource_identity(
        self,
        account_id: str,
        resource: ResourceRef,
        actor: ActorMetadata | None = None,
    ) -> IdentitySwitch:
        """Attribute ``resource`` to the caller's real account.

        Raises:
            NotFoundError, OwnershipError, BindingErasedError, ConflictError,
            AuditUnavailableError.
        """
        return await self._switch(account_id, resource, actor, reveal=True)

    async def hide_resource_identity(
        self,
        account_id: str,
        resource: ResourceRef,
        actor: ActorMetadata | None = None,
    ) -> IdentitySwitch:
        """Attribute ``resource`` to one of the caller's anonymous handles."""
        return await self._switch(account_id, resource, actor, reveal=False)

    async def _switch(
        self,
        account_id: str,
        resource: ResourceRef,
        actor: ActorMetadata | None,
        reveal: bool,
    ) -> IdentitySwitch:
        fence = await self.ensure_mutable(account_id)
        txn = _new_transaction_id()
        log = logger.bind(
            account_id=account_id, resource=resource.key, transaction_id=txn
        )

        async with AtomicOperationContext(txn) as ctx:
            if reveal:
                staged = await self._vault.reveal_identity(resource, account_id, txn)
            else:
                staged = await self._vault.hide_identity(resource, account_id, txn)
            ctx.add_rollback(lambda: self._vault.discard_binding(resource, txn))
            if staged.issued_handle is not None:
                issued_id = staged.issued_handle.id
                ctx.add_rollback(lambda: self._vault.discard_handle(issued_id, txn))

            entry = await self._append_audit(
                ctx,
                fence,
                self._audit.new_entry(
                    account_id,
                    AuditActionKind.IDENTITY_REVEAL if reveal else AuditActionKind.IDENTITY_HIDE,
                    txn,
                    old_value={"anonymous": staged.before.is_anonymous},
                    new_value={"anonymous": not reveal},
                    actor=actor,
                    resource_type=resource.resource_type.value,
                    resource_id=resource.resource_id,
                ),
            )
            issued = None
            if staged.issued_handle is not None:
                issued = await self._vault.commit_handle(staged.issued_handle.id, txn)
            binding = await self._vault.commit_binding(resource, txn)

        log.info(
            "identity_switched",
            direction="reveal" if reveal else "hide",
            sequence=entry.sequence,
            version=binding.version,
        )
        return IdentitySwitch(binding=binding, audit_entry=entry, issued_handle=issued)

    async def record_anonymous_post(
        self,
        account_id: str,
        resource: ResourceRef,
        actor: ActorMetadata | None = None,
    ) -> IdentitySwitch:
        """Bind a newly authored resource to the caller's anonymous handle.

        A handle is created on demand when the account has none active.

        Raises:
            AlreadyBoundError: The resource already has a binding.
        """
        fence = await self.ensure_mutable(account_id)
        txn = _new_transaction_id()

        async with AtomicOperationContext(txn) as ctx:
            handle = await self._vault.active_handle(account_id)
            issued = None
            if handle is None:
                issued = await self._vault.create_handle(
                    account_id, HandleGenerationParams(), txn
                )
                ctx.add_rollback(lambda: self._vault.discard_handle(issued.id, txn))
                handle = issued

            await self._vault.bind_resource(
                resource,
                AnonymousHandleIdentity(handle_id=handle.id, owner_account_id=account_id),
                txn,
            )
            ctx.add_rollback(lambda: self._vault.discard_binding(resource, txn))

            entry = await self._append_audit(
                ctx,
                fence,
                self._audit.new_entry(
                    account_id,
                    AuditActionKind.ANONYMOUS_POST,
                    txn,
                    new_value={"anonymous": True, "handle_id": handle.id},
                    actor=actor,
                    resource_type=resource.resource_type.value,
                    resource_id=resource.resource_id,
                ),
            )
            if issued is not None:
                issued = await self._vault.commit_handle(issued.id, txn)
            binding = await self._vault.commit_binding(resource, txn)

        logger.info(
            "anonymous_post_recorded",
            account_id=account_id,
            resource=resource.key,
            sequence=entry.sequence,
        )
        return IdentitySwitch(binding=binding, audit_entry=entry, issued_handle=issued)

    async def register_resource(
        self,
        account_id: str,
        resource: ResourceRef,
        anonymous: bool | None = None,
        actor: ActorMetadata | None = None,
    ) -> IdentitySwitch | None:
        """Bind a newly authored resource to its author.

        ``anonymous=None`` follows the account's ``is_anonymous`` setting.
        Anonymous authorship is recorded as an anonymous post; publishing
        under the real account is not a privacy transition and is committed
        without an audit entry (returns None).
        """
        if anonymous is None:
            anonymous = (await self._configs.get_config(account_id)).is_anonymous
        if anonymous:
            return await self.record_anonymous_post(account_id, resource, actor)

        await self.ensure_mutable(account_id)
        txn = _new_transaction_id()
        async with AtomicOperationContext(txn) as ctx:
            await self._vault.bind_resource(
                resource, RealAccountIdentity(account_id=account_id), txn
            )
            ctx.add_rollback(lambda: self._vault.discard_binding(resource, txn))
            # Erasure leaves real-bound resources alone; only refuse new ones.
            await self.ensure_mutable(account_id)
            await self._vault.commit_binding(resource, txn)
        return None

    async def record_data_access(
        self,
        account_id: str,
        accessor_id: str,
        purpose: str,
        resource: ResourceRef | None = None,
        actor: ActorMetadata | None = None,
    ) -> AuditEntry:
        """Record that someone accessed the account's privacy data.

        No state changes, so this is allowed while an erasure runs.
        """
        if not purpose or not purpose.strip():
            raise ValidationError("purpose must not be empty", field="purpose")
        entry = await self._audit.append(
            self._audit.new_entry(
                account_id,
                AuditActionKind.DATA_ACCESS,
                _new_transaction_id(),
                new_value={"accessor_id": accessor_id, "purpose": purpose},
                actor=actor,
                resource_type=resource.resource_type.value if resource else None,
                resource_id=resource.resource_id if resource else None,
            )
        )
        logger.info("data_access_recorded", account_id=account_id, sequence=entry.sequence)
        return entry

    async def rotate_anonymous_handle(
        self,
        account_id: str,
        params: HandleGenerationParams | None = None,
        actor: ActorMetadata | None = None,
    ) -> HandleRotation:
        """Issue a new handle and revoke the previously active ones.

        Existing bindings keep pointing at the revoked handles; only new
        attributions use the new one.
        """
        fence = await self.ensure_mutable(account_id)
        txn = _new_transaction_id()

        async with AtomicOperationContext(txn) as ctx:
            previous = await self._vault.list_handles(account_id, include_revoked=False)
            handle = await self._vault.create_handle(
                account_id, params or HandleGenerationParams(), txn
            )
            ctx.add_rollback(lambda: self._vault.discard_handle(handle.id, txn))

            revoked_ids: list[str] = []
            for old in previous:
                await self._vault.stage_revocation(old.id, txn)
                ctx.add_rollback(lambda h=old.id: self._vault.discard_handle(h, txn))
                revoked_ids.append(old.id)

            entry = await self._append_audit(
                ctx,
                fence,
                self._audit.new_entry(
                    account_id,
                    AuditActionKind.PRIVACY_SETTING_CHANGE,
                    txn,
                    old_value={"active_handle_ids": revoked_ids},
                    new_value={"active_handle_ids": [handle.id]},
                    actor=actor,
                ),
            )
            handle = await self._vault.commit_handle(handle.id, txn)
            for handle_id in revoked_ids:
                await self._vault.commit_handle(handle_id, txn)

        logger.info(
            "anonymous_handle_rotated",
            account_id=account_id,
            handle_id=handle.id,
            revoked=len(revoked_ids),
        )
        return HandleRotation(
            handle=handle, revoked_handle_ids=tuple(revoked_ids), audit_entry=entry
        )

    # ------------------------------------------------------------------
    # Read-side policy
    # ------------------------------------------------------------------

    async def can_view_profile(self, viewer_id: str, owner_id: str) -> bool:
        owner = await self._configs.get_config(owner_id)
        follows = await self._follows.is_following(viewer_id, owner_id)
        return can_view_profile(viewer_id, owner, follows)

    async def can_view_activity(self, viewer_id: str, owner_id: str) -> bool:
        owner = await self._configs.get_config(owner_id)
        follows = await self._follows.is_following(viewer_id, owner_id)
        return can_view_activity(viewer_id, owner, follows)

    async def can_send_message(self, sender_id: str, recipient_id: str) -> bool:
        recipient = await self._configs.get_config(recipient_id)
        follows = await self._follows.is_following(sender_id, recipient_id)
        return can_send_message(sender_id, recipient, follows)

    async def recommendations(self, account_id: str) -> list[PrivacyRecommendation]:
        config: PrivacyConfig = await self._configs.get_config(account_id)
        return recommendations_for(config)

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------

    async def recover_pending(
        self,
        account_id: str | None = None,
        grace: timedelta | None = None,
        include_erasing: bool = False,
        exclude_transactions: frozenset[str] = frozenset(),
    ) -> RecoveryReport:
        """Resolve pending markers left by interrupted transactions.

        A marker whose transaction has an audit entry is committed; one
        without is discarded. Markers younger than ``grace`` belong to
        requests that may still be running and are skipped, as are markers
        of accounts with an unfinished erasure job (the job owns them)
        unless ``include_erasing`` is set.

        Args:
            account_id: Restrict the sweep to one account.
            grace: Minimum marker age (defaults to the configured grace).
            include_erasing: Also resolve markers of accounts under erasure.
            exclude_transactions: Transaction ids to leave alone.

        Returns:
            What was committed, discarded and skipped.
        """
        grace = self._pending_grace if grace is None else grace
        now = self._time.now()
        report = RecoveryReport()
        decisions: dict[str, bool] = {}
        erasing: dict[str, bool] = {}

        async def _resolve(marker: PendingChange) -> bool | None:
            """True = commit, False = discard, None = skip."""
            if marker.transaction_id in exclude_transactions:
                return None
            if not marker.is_older_than(grace, now):
                return None
            if not include_erasing:
                if marker.account_id not in erasing:
                    job = await self._jobs.current_for_account(marker.account_id)
                    erasing[marker.account_id] = bool(job and job.blocks_mutations)
                if erasing[marker.account_id]:
                    return None
            if marker.transaction_id not in decisions:
                found = await self._audit.find_by_transaction(
                    marker.account_id, marker.transaction_id
                )
                decisions[marker.transaction_id] = bool(found)
            return decisions[marker.transaction_id]

        def _note(marker: PendingChange, committed: bool) -> None:
            target = report.committed if committed else report.discarded
            if marker.transaction_id not in target:
                target.append(marker.transaction_id)

        for handle in await self._vault.list_pending_handles(account_id):
            marker = handle.pending
            decision = await _resolve(marker)
            if decision is None:
                report.skipped += 1
                continue
            try:
                if decision:
                    await self._vault.commit_handle(handle.id, marker.transaction_id)
                else:
                    await self._vault.discard_handle(handle.id, marker.transaction_id)
            except StaleTransactionError:
                continue
            _note(marker, decision)

        for binding in await self._vault.list_pending_bindings(account_id):
            marker = binding.pending
            decision = await _resolve(marker)
            if decision is None:
                report.skipped += 1
                continue
            try:
                if decision:
                    await self._vault.commit_binding(binding.resource, marker.transaction_id)
                else:
                    await self._vault.discard_binding(binding.resource, marker.transaction_id)
            except StaleTransactionError:
                continue
            _note(marker, decision)

        for marker in await self._configs.list_pending(account_id):
            decision = await _resolve(marker)
            if decision is None:
                report.skipped += 1
                continue
            try:
                if decision:
                    await self._configs.commit_pending(marker.account_id, marker.transaction_id)
                else:
                    await self._configs.discard_pending(marker.account_id, marker.transaction_id)
            except StaleTransactionError:
                continue
            _note(marker, decision)

        logger.info(
            "pending_recovery_completed",
            account_id=account_id,
            committed=len(report.committed),
            discarded=len(report.discarded),
            skipped=report.skipped,
        )
        return report
