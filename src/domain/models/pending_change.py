"""Pending marker stored alongside a row while a change is being committed.

A mutation is staged by writing the new value into the row's pending slot
(under CAS), then the audit entry is appended, then the marker is promoted
into the committed value. A marker that outlives its request is resolved by
the recovery sweep: committed if an audit entry with the same transaction
id exists, discarded otherwise.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any


class PendingAction(str, Enum):
    """What a staged change will do once committed."""

    PROVISION = "provision"
    UPDATE = "update"
    ISSUE = "issue"
    REVOKE = "revoke"
    BIND = "bind"
    REVEAL = "reveal"
    HIDE = "hide"


@dataclass(frozen=True)
class PendingChange:
    """A staged, not yet committed change.

    Attributes:
        transaction_id: Shared by the staged row and its audit entry.
        action: Kind of staged change.
        account_id: Account on whose behalf the change was staged.
        staged_at: When the marker was written.
        payload: Action-specific data (new settings, new identity...).
    """

    transaction_id: str
    action: PendingAction
    account_id: str
    staged_at: datetime
    payload: dict[str, Any] = field(default_factory=dict)

    def is_older_than(self, grace: timedelta, now: datetime) -> bool:
        return now - self.staged_at >= grace

    def to_dict(self) -> dict[str, Any]:
        return {
            "transaction_id": self.transaction_id,
            "action": self.action.value,
            "account_id": self.account_id,
            "staged_at": self.staged_at.isoformat(),
            "payload": dict(self.payload),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> PendingChange | None:
        if not data:
            return None
        return cls(
            transaction_id=data["transaction_id"],
            action=PendingAction(data["action"]),
            account_id=data["account_id"],
            staged_at=datetime.fromisoformat(data["staged_at"]),
            payload=dict(data.get("payload") or {}),
        )
