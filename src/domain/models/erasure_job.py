"""Erasure job domain model.

An erasure job is a checkpointed, resumable workflow. Each step is
idempotent and recorded in ``completed_steps`` once done, so a restarted
worker continues from the first step not yet recorded.

Cancellation is honored only while ``point_of_no_return`` is False. The
point of no return is crossed right before the staged handle revocations
are committed.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any


class ErasureJobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ErasureStep(str, Enum):
    """Workflow steps in execution order."""

    SETTLE_PENDING = "settle_pending"
    STAGE_REVOCATIONS = "stage_revocations"
    COMMIT_REVOCATIONS = "commit_revocations"
    RESET_CONFIG = "reset_config"
    ERASE_BINDINGS = "erase_bindings"
    APPLY_RETENTION = "apply_retention"
    RECORD_COMPLETION = "record_completion"


ERASURE_STEPS: tuple[ErasureStep, ...] = tuple(ErasureStep)

# Steps that may still be compensated by a cancellation.
REVERSIBLE_STEPS: frozenset[ErasureStep] = frozenset(
    {ErasureStep.SETTLE_PENDING, ErasureStep.STAGE_REVOCATIONS}
)


@dataclass(frozen=True)
class ErasureJob:
    """State of one erasure workflow run.

    Attributes:
        job_id: Job identifier (UUIDv7); also the transaction id of every
            change the job stages.
        account_id: Account being erased.
        status: Current lifecycle status.
        completed_steps: Steps already checkpointed, in order.
        point_of_no_return: True once revocations are being committed.
        cancel_requested: Set by a cancellation before the point of no return.
        counts: Per-step counters (handles revoked, bindings erased...).
        error: Last failure message, if the job failed.
        created_at: When the job was requested.
        updated_at: Last checkpoint.
        finished_at: When the job reached done or cancelled.
        version: Store version (CAS token).
    """

    job_id: str
    account_id: str
    status: ErasureJobStatus
    created_at: datetime
    updated_at: datetime
    completed_steps: tuple[ErasureStep, ...] = ()
    point_of_no_return: bool = False
    cancel_requested: bool = False
    counts: dict[str, int] = field(default_factory=dict)
    error: str | None = None
    finished_at: datetime | None = None
    version: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in (ErasureJobStatus.DONE, ErasureJobStatus.CANCELLED)

    @property
    def blocks_mutations(self) -> bool:
        """Privacy-mutating intents are rejected while this holds."""
        return self.status in (
            ErasureJobStatus.PENDING,
            ErasureJobStatus.RUNNING,
            ErasureJobStatus.FAILED,
        )

    @property
    def next_step(self) -> ErasureStep | None:
        for step in ERASURE_STEPS:
            if step not in self.completed_steps:
                return step
        return None

    def has_completed(self, step: ErasureStep) -> bool:
        return step in self.completed_steps

    def with_step_completed(
        self, step: ErasureStep, now: datetime, **counts: int
    ) -> ErasureJob:
        merged = dict(self.counts)
        merged.update(counts)
        steps = self.completed_steps
        if step not in steps:
            steps = steps + (step,)
        return replace(self, completed_steps=steps, counts=merged, updated_at=now)

    def to_row(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "account_id": self.account_id,
            "status": self.status.value,
            "completed_steps": [step.value for step in self.completed_steps],
            "point_of_no_return": self.point_of_no_return,
            "cancel_requested": self.cancel_requested,
            "counts": dict(self.counts),
            "error": self.error,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> ErasureJob:
        finished_at = row.get("finished_at")
        return cls(
            job_id=row["job_id"],
            account_id=row["account_id"],
            status=ErasureJobStatus(row["status"]),
            completed_steps=tuple(ErasureStep(s) for s in row.get("completed_steps", [])),
            point_of_no_return=bool(row.get("point_of_no_return", False)),
            cancel_requested=bool(row.get("cancel_requested", False)),
            counts={k: int(v) for k, v in (row.get("counts") or {}).items()},
            error=row.get("error"),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
            finished_at=datetime.fromisoformat(finished_at) if finished_at else None,
            version=int(row.get("version", 0)),
        )
