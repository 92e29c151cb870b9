"""Point-in-time export of an account's privacy data.

The export records the account's audit watermark (highest sequence) first,
then reads configuration and handles, then every audit entry up to the
watermark. If the watermark moved while configuration and handles were
read, the snapshot is retaken so the bundle never shows state whose audit
entry it omits.
"""

from __future__ import annotations

from structlog import get_logger

from src.application.ports.time_authority import TimeAuthorityProtocol
from src.application.services.audit_trail_service import AuditTrailService
from src.application.services.identity_vault_service import IdentityVaultService
from src.application.services.privacy_config_service import PrivacyConfigService
from src.domain.models.export_bundle import PrivacyExportBundle

logger = get_logger()

DEFAULT_SNAPSHOT_ATTEMPTS = 3


class ComplianceExportService:
    """Builds PrivacyExportBundle snapshots."""

    def __init__(
        self,
        configs: PrivacyConfigService,
        vault: IdentityVaultService,
        audit: AuditTrailService,
        time_authority: TimeAuthorityProtocol,
        snapshot_attempts: int = DEFAULT_SNAPSHOT_ATTEMPTS,
    ) -> None:
        self._configs = configs
        self._vault = vault
        self._audit = audit
        self._time = time_authority
        self._snapshot_attempts = snapshot_attempts

    async def export(self, account_id: str) -> PrivacyExportBundle:
        """Consistent snapshot of the account's privacy data.

        Raises:
            NotFoundError: Account not provisioned.
        """
        log = logger.bind(account_id=account_id)
        exported_at = self._time.now()
        watermark = await self._audit.max_sequence(account_id)

        for attempt in range(1, self._snapshot_attempts + 1):
            config = await self._configs.get_config(account_id)
            handles = await self._vault.list_handles(account_id)
            after = await self._audit.max_sequence(account_id)
            if after == watermark:
                break
            log.debug("export_watermark_moved", attempt=attempt, before=watermark, after=after)
            watermark = after
        else:
            log.warning("export_snapshot_unstable", attempts=self._snapshot_attempts)

        entries = await self._audit.all_entries(account_id, max_sequence=watermark)
        log.info(
            "privacy_export_created",
            watermark=watermark,
            handles=len(handles),
            audit_entries=len(entries),
        )
        return PrivacyExportBundle(
            account_id=account_id,
            watermark=watermark,
            exported_at=exported_at,
            config=config,
            handles=tuple(handles),
            audit_entries=tuple(entries),
        )
