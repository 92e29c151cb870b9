"""Privacy configuration store service.

Owns the per-account PrivacyConfig rows. Every change goes through the
row's pending slot: ``apply_update`` validates and stages the merged
configuration in one CAS write, the policy enforcer appends the audit
entry, then ``commit_pending`` promotes the staged values.

Row layout (table ``privacy_configs``, keyed by account id):
    <every setting>, account_id, updated_at, provisioned,
    pending (PendingChange dict or None), has_pending
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import replace
from typing import Any

from structlog import get_logger

from src.application.ports.row_store import RowStoreProtocol, StoredRow
from src.application.ports.time_authority import TimeAuthorityProtocol
from src.application.services.storage_retry import StorageRetryPolicy
from src.domain.errors.concurrent_modification import (
    AccountAlreadyProvisionedError,
    ConflictError,
    StaleTransactionError,
)
from src.domain.errors.not_found import NotFoundError
from src.domain.errors.validation import ValidationError
from src.domain.models.pending_change import PendingAction, PendingChange
from src.domain.models.privacy_config import PrivacyConfig, default_privacy_config

logger = get_logger()

CONFIG_TABLE = "privacy_configs"


class PrivacyConfigService:
    """Read, stage, commit and reset per-account privacy configuration.

    Attributes:
        _store: Row store holding ``privacy_configs``.
        _time: Time authority for marker and update timestamps.
        _retry: Retry policy for storage failures and lost CAS races.
        _max_cas_retries: Retries after a lost CAS before ConflictError.
    """

    def __init__(
        self,
        store: RowStoreProtocol,
        time_authority: TimeAuthorityProtocol,
        retry: StorageRetryPolicy | None = None,
        max_cas_retries: int = 8,
    ) -> None:
        self._store = store
        self._time = time_authority
        self._retry = retry or StorageRetryPolicy()
        self._max_cas_retries = max_cas_retries

    async def _read(self, account_id: str) -> StoredRow | None:
        return await self._retry.run(
            "config_get", lambda: self._store.get(CONFIG_TABLE, account_id)
        )

    async def _write(self, account_id: str, patch: dict[str, Any], expected: int) -> int:
        return await self._retry.run(
            "config_upsert",
            lambda: self._store.upsert(CONFIG_TABLE, account_id, patch, expected),
        )

    async def get_config(self, account_id: str) -> PrivacyConfig:
        """Committed configuration of a provisioned account.

        Raises:
            NotFoundError: The account has no provisioned configuration.
        """
        row = await self._read(account_id)
        if row is None or not row.data.get("provisioned"):
            raise NotFoundError("privacy_config", account_id)
        return PrivacyConfig.from_row(row.with_version())

    async def get_pending(self, account_id: str) -> PendingChange | None:
        row = await self._read(account_id)
        if row is None:
            return None
        return PendingChange.from_dict(row.data.get("pending"))

    async def stage_provision(self, account_id: str, transaction_id: str) -> PrivacyConfig:
        """Stage the default configuration for a new account.

        Raises:
            AccountAlreadyProvisionedError: The account already exists, or
                its provisioning is in flight.
        """
        defaults = default_privacy_config(account_id)
        marker = PendingChange(
            transaction_id=transaction_id,
            action=PendingAction.PROVISION,
            account_id=account_id,
            staged_at=self._time.now(),
            payload={"settings": defaults.settings()},
        )
        row = await self._read(account_id)
        if row is not None and (row.data.get("provisioned") or row.data.get("has_pending")):
            raise AccountAlreadyProvisionedError(account_id)

        patch = {
            **defaults.to_row(),
            "provisioned": False,
            "pending": marker.to_dict(),
            "has_pending": True,
        }
        expected = row.version if row is not None else 0
        try:
            version = await self._write(account_id, patch, expected)
        except ConflictError as e:
            raise AccountAlreadyProvisionedError(account_id) from e
        logger.info("privacy_config_provision_staged", account_id=account_id)
        return replace(defaults, version=version)

    async def apply_update(
        self,
        account_id: str,
        partial: dict[str, Any],
        transaction_id: str,
        action: PendingAction = PendingAction.UPDATE,
        derive: Callable[[PrivacyConfig], dict[str, Any]] | None = None,
    ) -> tuple[PrivacyConfig, PrivacyConfig]:
        """Validate ``partial`` and stage the merged configuration.

        The merge is written in a single CAS write into the pending slot; a
        concurrent in-flight change counts as a lost race and is retried.

        Args:
            account_id: Account to update.
            partial: Settings to change.
            transaction_id: Transaction the pending marker belongs to.
            action: Marker action.
            derive: Extra settings computed from the committed config read
                in each CAS attempt, merged over ``partial``.

        Returns:
            (old, new) configurations.

        Raises:
            ValidationError: Empty patch, unknown field, bad value or broken
                field dependency.
            NotFoundError: Account not provisioned.
            ConflictError: Still racing after the CAS retry budget.
        """
        if not partial:
            raise ValidationError("No privacy settings given")

        async def _stage() -> tuple[PrivacyConfig, PrivacyConfig]:
            row = await self._read(account_id)
            if row is None or not row.data.get("provisioned"):
                raise NotFoundError("privacy_config", account_id)
            old = PrivacyConfig.from_row(row.with_version())
            patch = {**partial, **derive(old)} if derive is not None else partial
            new = old.with_updates(patch)
            if row.data.get("has_pending"):
                raise ConflictError(
                    table=CONFIG_TABLE,
                    key=account_id,
                    expected_version=row.version,
                    message=f"Privacy config of {account_id} has a change in flight",
                )
            marker = PendingChange(
                transaction_id=transaction_id,
                action=action,
                account_id=account_id,
                staged_at=self._time.now(),
                payload={"settings": new.settings()},
            )
            version = await self._write(
                account_id,
                {"pending": marker.to_dict(), "has_pending": True},
                row.version,
            )
            return old, replace(new, version=version)

        old, new = await self._retry.run_cas(
            "config_apply_update", _stage, self._max_cas_retries
        )
        logger.info(
            "privacy_config_update_staged",
            account_id=account_id,
            changed=sorted(old.changed_settings(new)),
        )
        return old, new

    async def commit_pending(self, account_id: str, transaction_id: str) -> PrivacyConfig:
        """Promote the staged values of ``transaction_id``.

        Raises:
            StaleTransactionError: No pending marker for that transaction (it
                was discarded or overwritten by erasure).
        """

        async def _commit() -> PrivacyConfig:
            row = await self._read(account_id)
            marker = PendingChange.from_dict(row.data.get("pending")) if row else None
            if row is None or marker is None or marker.transaction_id != transaction_id:
                raise StaleTransactionError(CONFIG_TABLE, account_id, transaction_id)
            now = self._time.now()
            patch = {
                **marker.payload["settings"],
                "updated_at": now.isoformat(),
                "provisioned": True,
                "pending": None,
                "has_pending": False,
            }
            version = await self._write(account_id, patch, row.version)
            committed = {**row.data, **patch, "version": version}
            return PrivacyConfig.from_row(committed)

        config = await self._retry.run_cas(
            "config_commit", _commit, self._max_cas_retries
        )
        logger.info("privacy_config_committed", account_id=account_id)
        return config

    async def discard_pending(self, account_id: str, transaction_id: str) -> bool:
        """Drop the staged change of ``transaction_id``.

        A discarded provisioning leaves an unprovisioned row behind, which
        a later provisioning attempt may reuse.

        Returns:
            False if there was nothing to discard.
        """

        async def _discard() -> bool:
            row = await self._read(account_id)
            marker = PendingChange.from_dict(row.data.get("pending")) if row else None
            if row is None or marker is None or marker.transaction_id != transaction_id:
                return False
            await self._write(
                account_id, {"pending": None, "has_pending": False}, row.version
            )
            return True

        discarded = await self._retry.run_cas(
            "config_discard", _discard, self._max_cas_retries
        )
        if discarded:
            logger.info("privacy_config_pending_discarded", account_id=account_id)
        return discarded

    async def reset_to_defaults(self, account_id: str) -> PrivacyConfig:
        """Overwrite the committed config with factory defaults.

        Used by erasure; any in-flight change on the row is dropped, so a
        late commit of it fails with ConflictError. Idempotent.
        """
        defaults = default_privacy_config(account_id)

        async def _reset() -> PrivacyConfig:
            row = await self._read(account_id)
            if row is None or not row.data.get("provisioned"):
                raise NotFoundError("privacy_config", account_id)
            current = PrivacyConfig.from_row(row.with_version())
            if current.settings() == defaults.settings() and not row.data.get("has_pending"):
                return current
            now = self._time.now()
            patch = {
                **defaults.settings(),
                "updated_at": now.isoformat(),
                "pending": None,
                "has_pending": False,
            }
            version = await self._write(account_id, patch, row.version)
            return replace(defaults, version=version, updated_at=now)

        config = await self._retry.run_cas(
            "config_reset", _reset, self._max_cas_retries
        )
        logger.info("privacy_config_reset_to_defaults", account_id=account_id)
        return config

    async def list_pending(self, account_id: str | None = None) -> list[PendingChange]:
        """Pending markers on config rows, optionally for one account."""
        filters: dict[str, Any] = {"has_pending": True}
        if account_id is not None:
            filters["account_id"] = account_id
        rows = await self._retry.run(
            "config_list_pending",
            lambda: self._store.query(CONFIG_TABLE, filters=filters),
        )
        markers = [PendingChange.from_dict(r.data.get("pending")) for r in rows]
        return [m for m in markers if m is not None]
