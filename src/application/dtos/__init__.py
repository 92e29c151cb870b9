"""Application DTOs returned by the privacy services."""

from src.application.dtos.privacy import (
    AccountProvisioning,
    HandleRotation,
    IdentitySwitch,
    RecoveryReport,
    SettingsChange,
)

__all__ = [
    "AccountProvisioning",
    "HandleRotation",
    "IdentitySwitch",
    "RecoveryReport",
    "SettingsChange",
]
