"""Identity vault: anonymous handle issuance and resource identity bindings.

Handles:
- Names are reserved through an insert-only CAS write on ``handle_names``
  keyed by the case-folded handle. A reservation is never released, so a
  handle string is never issued twice, even after revocation.
- Issue and revoke are staged behind a pending marker and committed by the
  caller once the paired audit entry exists.

Bindings:
- Each resource type is stored by its own adapter, reached through the
  BindingAdapterRegistry.
- Reveal/hide stage the new identity in the binding's pending slot with a
  compare-and-swap on ``version``. A lost race, or a pending marker left by
  a concurrent request, makes the caller re-read and retry up to
  ``max_cas_retries`` times before ConflictError surfaces.
- The committed identity is always exactly one of real account, anonymous
  handle or the erased placeholder.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any

from structlog import get_logger
from uuid6 import uuid7

from src.application.ports.row_store import Order, RowStoreProtocol
from src.application.ports.time_authority import TimeAuthorityProtocol
from src.application.services.binding_adapter_registry import BindingAdapterRegistry
from src.application.services.storage_retry import StorageRetryPolicy
from src.domain.errors.binding import BindingErasedError
from src.domain.errors.concurrent_modification import (
    AlreadyBoundError,
    ConflictError,
    StaleTransactionError,
)
from src.domain.errors.handle_generation import GeneratorExhaustedError
from src.domain.errors.not_found import NotFoundError
from src.domain.errors.ownership import OwnershipError
from src.domain.models.anonymous_handle import (
    AnonymousHandle,
    HandleGenerationParams,
    normalize_handle,
)
from src.domain.models.pending_change import PendingAction, PendingChange
from src.domain.models.resource_identity import (
    ERASED_IDENTITY,
    ActingIdentity,
    AnonymousHandleIdentity,
    BindingState,
    RealAccountIdentity,
    ResourceIdentityBinding,
    ResourceRef,
    identity_to_dict,
)
from src.domain.services.handle_generator import HandleGenerator

logger = get_logger()

HANDLES_TABLE = "anonymous_handles"
HANDLE_NAMES_TABLE = "handle_names"


@dataclass(frozen=True)
class Attribution:
    """What the platform shows as the author of a resource.

    Attributes:
        resource: The resource.
        state: Binding state.
        account_id: Real account id when real-bound, else None.
        handle: Handle string when anonymous-bound, else None.
    """

    resource: ResourceRef
    state: BindingState
    account_id: str | None = None
    handle: str | None = None


@dataclass(frozen=True)
class StagedSwitch:
    """Result of staging a reveal or hide.

    Attributes:
        before: Binding as committed before the switch.
        staged: Binding carrying the pending marker.
        issued_handle: Handle created on demand by a hide, staged under the
            same transaction id.
    """

    before: ResourceIdentityBinding
    staged: ResourceIdentityBinding
    issued_handle: AnonymousHandle | None = None


class IdentityVaultService:
    """Anonymous handles and resource identity bindings.

    Attributes:
        _store: Row store for handles and name reservations.
        _bindings: Resource type -> binding storage adapter.
        _generator: Handle candidate generator.
        _time: Time authority.
        _retry: Retry policy for storage failures and lost CAS races.
        _max_cas_retries: Retries after a lost CAS before ConflictError.
        _max_handle_retries: Generation attempts before GeneratorExhaustedError.
    """

    def __init__(
        self,
        store: RowStoreProtocol,
        bindings: BindingAdapterRegistry,
        time_authority: TimeAuthorityProtocol,
        generator: HandleGenerator | None = None,
        retry: StorageRetryPolicy | None = None,
        max_cas_retries: int = 8,
        max_handle_retries: int = 10,
    ) -> None:
        self._store = store
        self._bindings = bindings
        self._time = time_authority
        self._generator = generator or HandleGenerator()
        self._retry = retry or StorageRetryPolicy()
        self._max_cas_retries = max_cas_retries
        self._max_handle_retries = max_handle_retries

    # ------------------------------------------------------------------
    # Handles
    # ------------------------------------------------------------------

    async def create_handle(
        self,
        account_id: str,
        params: HandleGenerationParams,
        transaction_id: str,
    ) -> AnonymousHandle:
        """Generate, reserve and stage a new handle for ``account_id``.

        Invalid candidates and name collisions both count as failed
        attempts.

        Args:
            account_id: Owner of the new handle.
            params: Generation parameters.
            transaction_id: Transaction the ISSUE marker belongs to.

        Returns:
            The handle, staged (not yet active).

        Raises:
            GeneratorExhaustedError: No free valid name within the budget.
        """
        log = logger.bind(account_id=account_id, transaction_id=transaction_id)
        handle_id = str(uuid7())
        now = self._time.now()

        for attempt in range(1, self._max_handle_retries + 1):
            candidate = self._generator.valid_candidate(params)
            if candidate is None:
                log.debug("handle_candidate_rejected", attempt=attempt)
                continue
            if not await self._reserve_name(candidate, handle_id, account_id):
                log.debug("handle_name_collision", attempt=attempt)
                continue

            handle = AnonymousHandle(
                id=handle_id,
                owner_account_id=account_id,
                handle_string=candidate,
                created_at=now,
                generation_params=params,
                pending=PendingChange(
                    transaction_id=transaction_id,
                    action=PendingAction.ISSUE,
                    account_id=account_id,
                    staged_at=now,
                ),
            )
            version = await self._retry.run(
                "handle_insert",
                lambda: self._store.upsert(HANDLES_TABLE, handle_id, handle.to_row(), 0),
            )
            log.info("anonymous_handle_staged", handle_id=handle_id, attempts=attempt)
            return replace(handle, version=version)

        log.warning("handle_generation_exhausted", attempts=self._max_handle_retries)
        raise GeneratorExhaustedError(account_id, self._max_handle_retries)

    async def _reserve_name(self, candidate: str, handle_id: str, account_id: str) -> bool:
        try:
            await self._retry.run(
                "handle_name_reserve",
                lambda: self._store.upsert(
                    HANDLE_NAMES_TABLE,
                    normalize_handle(candidate),
                    {"handle_id": handle_id, "owner_account_id": account_id},
                    0,
                ),
            )
        except ConflictError:
            return False
        return True

    async def suggest_handles(
        self, count: int, params: HandleGenerationParams
    ) -> list[str]:
        """Valid, currently unreserved handle strings (nothing is reserved).

        At most ``count * max_handle_retries`` candidates are tried, so the
        result may be shorter than ``count``.
        """
        suggestions: list[str] = []
        seen: set[str] = set()
        for _ in range(count * self._max_handle_retries):
            if len(suggestions) >= count:
                break
            candidate = self._generator.valid_candidate(params)
            if candidate is None or normalize_handle(candidate) in seen:
                continue
            seen.add(normalize_handle(candidate))
            taken = await self._retry.run(
                "handle_name_get",
                lambda c=candidate: self._store.get(HANDLE_NAMES_TABLE, normalize_handle(c)),
            )
            if taken is None:
                suggestions.append(candidate)
        return suggestions

    async def get_handle(self, handle_id: str) -> AnonymousHandle:
        row = await self._retry.run(
            "handle_get", lambda: self._store.get(HANDLES_TABLE, handle_id)
        )
        if row is None or row.data.get("discarded"):
            raise NotFoundError("anonymous_handle", handle_id)
        return AnonymousHandle.from_row(row.with_version())

    async def list_handles(
        self, account_id: str, include_revoked: bool = True
    ) -> list[AnonymousHandle]:
        """Issued handles of an account, oldest first.

        Staged-but-uncommitted and discarded issues are excluded.
        """
        rows = await self._retry.run(
            "handle_list",
            lambda: self._store.query(
                HANDLES_TABLE,
                filters={"owner_account_id": account_id},
                order=Order("created_at"),
            ),
        )
        handles = [
            AnonymousHandle.from_row(r.with_version())
            for r in rows
            if not r.data.get("discarded")
        ]
        handles = [h for h in handles if h.is_issued]
        if not include_revoked:
            handles = [h for h in handles if not h.revoked]
        return handles

    async def active_handle(self, account_id: str) -> AnonymousHandle | None:
        """Newest handle usable for new attributions."""
        active = [h for h in await self.list_handles(account_id) if h.is_active]
        return active[-1] if active else None

    async def stage_revocation(self, handle_id: str, transaction_id: str) -> AnonymousHandle:
        """Stage a REVOKE marker. Idempotent for an already revoked handle
        or a revocation already staged by the same transaction.
        """

        async def _stage() -> AnonymousHandle:
            handle = await self.get_handle(handle_id)
            if handle.revoked:
                return handle
            if handle.pending is not None:
                if (
                    handle.pending.transaction_id == transaction_id
                    and handle.pending.action == PendingAction.REVOKE
                ):
                    return handle
                raise ConflictError(
                    table=HANDLES_TABLE,
                    key=handle_id,
                    expected_version=handle.version,
                    message=f"Handle {handle_id} has a change in flight",
                )
            staged = replace(
                handle,
                pending=PendingChange(
                    transaction_id=transaction_id,
                    action=PendingAction.REVOKE,
                    account_id=handle.owner_account_id,
                    staged_at=self._time.now(),
                ),
            )
            version = await self._retry.run(
                "handle_stage_revoke",
                lambda: self._store.upsert(
                    HANDLES_TABLE, handle_id, staged.to_row(), handle.version
                ),
            )
            return replace(staged, version=version)

        return await self._retry.run_cas(
            "handle_stage_revocation", _stage, self._max_cas_retries
        )

    async def commit_handle(self, handle_id: str, transaction_id: str) -> AnonymousHandle:
        """Commit the staged ISSUE or REVOKE of ``transaction_id``.

        Idempotent once the handle is revoked by the same revocation.

        Raises:
            StaleTransactionError: The marker is gone.
        """

        async def _commit() -> AnonymousHandle:
            handle = await self.get_handle(handle_id)
            marker = handle.pending
            if marker is None or marker.transaction_id != transaction_id:
                if handle.revoked:
                    return handle
                raise StaleTransactionError(HANDLES_TABLE, handle_id, transaction_id)
            if marker.action == PendingAction.REVOKE:
                committed = handle.with_revocation(self._time.now())
            else:
                committed = replace(handle, pending=None)
            version = await self._retry.run(
                "handle_commit",
                lambda: self._store.upsert(
                    HANDLES_TABLE, handle_id, committed.to_row(), handle.version
                ),
            )
            return replace(committed, version=version)

        handle = await self._retry.run_cas(
            "handle_commit", _commit, self._max_cas_retries
        )
        logger.info("anonymous_handle_committed", handle_id=handle_id, revoked=handle.revoked)
        return handle

    async def discard_handle(self, handle_id: str, transaction_id: str) -> bool:
        """Drop the staged change of ``transaction_id``.

        A discarded ISSUE retires the handle for good (its name stays
        reserved). A discarded REVOKE leaves the handle active.
        """

        async def _discard() -> bool:
            row = await self._retry.run(
                "handle_get", lambda: self._store.get(HANDLES_TABLE, handle_id)
            )
            if row is None:
                return False
            handle = AnonymousHandle.from_row(row.with_version())
            marker = handle.pending
            if marker is None or marker.transaction_id != transaction_id:
                return False
            patch: dict[str, Any] = {"pending": None, "has_pending": False}
            if marker.action == PendingAction.ISSUE:
                patch["discarded"] = True
            await self._retry.run(
                "handle_discard",
                lambda: self._store.upsert(HANDLES_TABLE, handle_id, patch, row.version),
            )
            return True

        discarded = await self._retry.run_cas(
            "handle_discard", _discard, self._max_cas_retries
        )
        if discarded:
            logger.info("anonymous_handle_pending_discarded", handle_id=handle_id)
        return discarded

    async def list_pending_handles(
        self, account_id: str | None = None
    ) -> list[AnonymousHandle]:
        filters: dict[str, Any] = {"has_pending": True}
        if account_id is not None:
            filters["owner_account_id"] = account_id
        rows = await self._retry.run(
            "handle_list_pending",
            lambda: self._store.query(HANDLES_TABLE, filters=filters),
        )
        return [AnonymousHandle.from_row(r.with_version()) for r in rows]

    # ------------------------------------------------------------------
    # Bindings
    # ------------------------------------------------------------------

    async def _read_binding(self, resource: ResourceRef) -> ResourceIdentityBinding | None:
        adapter = self._bindings.resolve(resource.resource_type)
        return await self._retry.run("binding_read", lambda: adapter.read(resource))

    async def _write_binding(
        self, binding: ResourceIdentityBinding, expected_version: int
    ) -> ResourceIdentityBinding:
        adapter = self._bindings.resolve(binding.resource.resource_type)
        return await self._retry.run(
            "binding_update",
            lambda: adapter.update_binding(binding, expected_version),
        )

    async def get_binding(self, resource: ResourceRef) -> ResourceIdentityBinding:
        """Committed binding of ``resource``.

        Raises:
            NotFoundError: The resource was never bound (or its first bind is
                still uncommitted).
        """
        binding = await self._read_binding(resource)
        if binding is None or not binding.bound:
            raise NotFoundError("identity_binding", resource.key)
        return binding

    async def bind_resource(
        self,
        resource: ResourceRef,
        identity: ActingIdentity,
        transaction_id: str,
    ) -> ResourceIdentityBinding:
        """Stage the first binding of a new resource.

        Raises:
            AlreadyBoundError: The resource already has a binding, or its
                first binding is in flight.
        """
        if identity == ERASED_IDENTITY:
            raise ValueError("A resource cannot be bound to the erased placeholder")
        adapter = self._bindings.resolve(resource.resource_type)
        owner = (
            identity.account_id
            if isinstance(identity, RealAccountIdentity)
            else identity.owner_account_id
        )
        now = self._time.now()
        staged = ResourceIdentityBinding(
            resource=resource,
            identity=identity,
            version=0,
            updated_at=now,
            pending=PendingChange(
                transaction_id=transaction_id,
                action=PendingAction.BIND,
                account_id=owner,
                staged_at=now,
                payload={"identity": identity_to_dict(identity)},
            ),
            bound=False,
        )

        existing = await self._read_binding(resource)
        if existing is None:
            binding = await self._retry.run("binding_create", lambda: adapter.create(staged))
        elif existing.bound or existing.pending is not None:
            raise AlreadyBoundError(resource.key)
        else:
            try:
                binding = await self._write_binding(staged, existing.version)
            except ConflictError as e:
                raise AlreadyBoundError(resource.key) from e
        logger.info(
            "resource_binding_staged",
            resource=resource.key,
            identity_kind=identity.kind.value,
            transaction_id=transaction_id,
        )
        return binding

    async def reveal_identity(
        self, resource: ResourceRef, caller_account_id: str, transaction_id: str
    ) -> StagedSwitch:
        """Stage a switch of ``resource`` to the caller's real account.

        Raises:
            NotFoundError: Resource never bound.
            BindingErasedError: Binding is erased.
            OwnershipError: Caller does not control the binding.
            ConflictError: Still racing after the CAS retry budget.
        """

        async def _target(_: ResourceIdentityBinding) -> tuple[ActingIdentity, None]:
            return RealAccountIdentity(account_id=caller_account_id), None

        return await self._stage_switch(
            resource, caller_account_id, transaction_id, PendingAction.REVEAL, _target
        )

    async def hide_identity(
        self,
        resource: ResourceRef,
        caller_account_id: str,
        transaction_id: str,
        params: HandleGenerationParams | None = None,
    ) -> StagedSwitch:
        """Stage a switch of ``resource`` to the caller's anonymous handle.

        A binding already on an active handle keeps it. Otherwise the
        caller's newest active handle is used, or one is created on demand
        (staged under the same transaction) when the caller has none.

        Raises:
            NotFoundError: Resource never bound.
            BindingErasedError: Binding is erased.
            OwnershipError: Caller does not control the binding.
            GeneratorExhaustedError: On-demand handle could not be generated.
            ConflictError: Still racing after the CAS retry budget.
        """
        issued: list[AnonymousHandle] = []

        async def _target(
            current: ResourceIdentityBinding,
        ) -> tuple[ActingIdentity, AnonymousHandle | None]:
            if isinstance(current.identity, AnonymousHandleIdentity):
                bound = await self.get_handle(current.identity.handle_id)
                if bound.is_active:
                    return current.identity, None
            handle = await self.active_handle(caller_account_id)
            if handle is None:
                if not issued:
                    issued.append(
                        await self.create_handle(
                            caller_account_id,
                            params or HandleGenerationParams(),
                            transaction_id,
                        )
                    )
                handle = issued[0]
            created = handle if issued and handle.id == issued[0].id else None
            return (
                AnonymousHandleIdentity(
                    handle_id=handle.id, owner_account_id=caller_account_id
                ),
                created,
            )

        try:
            switch = await self._stage_switch(
                resource, caller_account_id, transaction_id, PendingAction.HIDE, _target
            )
        except Exception:
            for handle in issued:
                await self.discard_handle(handle.id, transaction_id)
            raise
        # A retried attempt may have settled on another handle.
        for handle in issued:
            if switch.issued_handle is None or switch.issued_handle.id != handle.id:
                await self.discard_handle(handle.id, transaction_id)
        return switch

    async def _stage_switch(
        self,
        resource: ResourceRef,
        caller_account_id: str,
        transaction_id: str,
        action: PendingAction,
        target,
    ) -> StagedSwitch:
        log = logger.bind(
            resource=resource.key,
            action=action.value,
            transaction_id=transaction_id,
        )

        async def _stage() -> StagedSwitch:
            current = await self.get_binding(resource)
            if current.state == BindingState.ERASED:
                raise BindingErasedError(resource.key)
            if not current.is_controlled_by(caller_account_id):
                raise OwnershipError(caller_account_id, resource.key)
            if current.pending is not None:
                raise ConflictError(
                    table="identity_bindings",
                    key=resource.key,
                    expected_version=current.version,
                    message=f"Binding {resource.key} has a switch in flight",
                )
            identity, issued_handle = await target(current)
            staged = replace(
                current,
                pending=PendingChange(
                    transaction_id=transaction_id,
                    action=action,
                    account_id=caller_account_id,
                    staged_at=self._time.now(),
                    payload={"identity": identity_to_dict(identity)},
                ),
            )
            written = await self._write_binding(staged, current.version)
            return StagedSwitch(before=current, staged=written, issued_handle=issued_handle)

        switch = await self._retry.run_cas(
            f"binding_{action.value}", _stage, self._max_cas_retries
        )
        log.info("identity_switch_staged", version=switch.staged.version)
        return switch

    async def commit_binding(
        self, resource: ResourceRef, transaction_id: str
    ) -> ResourceIdentityBinding:
        """Promote the staged identity of ``transaction_id``.

        Raises:
            StaleTransactionError: The marker is gone (discarded, or the
                binding was erased meanwhile).
        """

        async def _commit() -> ResourceIdentityBinding:
            current = await self._read_binding(resource)
            if (
                current is None
                or current.pending is None
                or current.pending.transaction_id != transaction_id
            ):
                raise StaleTransactionError("identity_bindings", resource.key, transaction_id)
            identity = current.staged_identity()
            committed = replace(
                current,
                identity=identity if identity is not None else current.identity,
                pending=None,
                bound=True,
                updated_at=self._time.now(),
            )
            return await self._write_binding(committed, current.version)

        binding = await self._retry.run_cas(
            "binding_commit", _commit, self._max_cas_retries
        )
        logger.info(
            "identity_binding_committed",
            resource=resource.key,
            state=binding.state.value,
            version=binding.version,
        )
        return binding

    async def discard_binding(self, resource: ResourceRef, transaction_id: str) -> bool:
        """Drop the staged switch of ``transaction_id``; False if none."""

        async def _discard() -> bool:
            current = await self._read_binding(resource)
            if (
                current is None
                or current.pending is None
                or current.pending.transaction_id != transaction_id
            ):
                return False
            await self._write_binding(replace(current, pending=None), current.version)
            return True

        discarded = await self._retry.run_cas(
            "binding_discard", _discard, self._max_cas_retries
        )
        if discarded:
            logger.info("identity_binding_pending_discarded", resource=resource.key)
        return discarded

    async def list_pending_bindings(
        self, account_id: str | None = None
    ) -> list[ResourceIdentityBinding]:
        pending: list[ResourceIdentityBinding] = []
        for adapter in self._bindings.all():
            pending.extend(
                await self._retry.run(
                    "binding_find_pending", lambda a=adapter: a.find_pending(account_id)
                )
            )
        return pending

    async def erase_bindings_for_handles(self, handle_ids: list[str]) -> int:
        """Move every binding attributed to ``handle_ids`` to the erased
        placeholder. Idempotent: erased bindings no longer match.

        Returns:
            Number of bindings erased by this call.
        """
        erased = 0
        for adapter in self._bindings.all():
            found = await self._retry.run(
                "binding_find_by_handles",
                lambda a=adapter: a.find_bound_to_handles(handle_ids),
            )
            for binding in found:
                await self._erase_binding(binding.resource)
                erased += 1
        return erased

    async def _erase_binding(self, resource: ResourceRef) -> None:
        async def _erase() -> None:
            current = await self._read_binding(resource)
            if current is None or current.state == BindingState.ERASED:
                return
            erased = replace(
                current,
                identity=ERASED_IDENTITY,
                pending=None,
                updated_at=self._time.now(),
            )
            await self._write_binding(erased, current.version)

        await self._retry.run_cas("binding_erase", _erase, self._max_cas_retries)

    async def resolve_attribution(self, resource: ResourceRef) -> Attribution:
        """Author shown for ``resource``.

        Raises:
            NotFoundError: Resource never bound.
        """
        binding = await self.get_binding(resource)
        if isinstance(binding.identity, RealAccountIdentity):
            return Attribution(
                resource=resource,
                state=binding.state,
                account_id=binding.identity.account_id,
            )
        if isinstance(binding.identity, AnonymousHandleIdentity):
            handle = await self.get_handle(binding.identity.handle_id)
            return Attribution(
                resource=resource, state=binding.state, handle=handle.handle_string
            )
        return Attribution(resource=resource, state=binding.state)
