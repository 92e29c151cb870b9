"""Point-in-time privacy export bundle."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from src.domain.models.anonymous_handle import AnonymousHandle
from src.domain.models.audit_entry import AuditEntry
from src.domain.models.privacy_config import PrivacyConfig


@dataclass(frozen=True)
class PrivacyExportBundle:
    """Consistent snapshot of one account's privacy data.

    Attributes:
        account_id: Exported account.
        watermark: Max audit sequence recorded when the export started;
            only entries with ``sequence <= watermark`` are included.
        exported_at: When the export started.
        config: Privacy configuration at export time.
        handles: Every handle ever issued to the account (revoked included).
        audit_entries: Audit entries up to the watermark, ascending.
    """

    account_id: str
    watermark: int
    exported_at: datetime
    config: PrivacyConfig
    handles: tuple[AnonymousHandle, ...]
    audit_entries: tuple[AuditEntry, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "account_id": self.account_id,
            "watermark": self.watermark,
            "exported_at": self.exported_at.isoformat(),
            "privacy_config": self.config.settings(),
            "anonymous_handles": [
                {
                    "id": h.id,
                    "handle_string": h.handle_string,
                    "created_at": h.created_at.isoformat(),
                    "generation_params": h.generation_params.to_dict(),
                    "revoked": h.revoked,
                    "revoked_at": h.revoked_at.isoformat() if h.revoked_at else None,
                }
                for h in self.handles
            ],
            "audit_entries": [
                {"sequence": e.sequence, **e.to_row()} for e in self.audit_entries
            ],
        }
