"""Process-wide privacy core settings.

Values are read once at startup (optionally from a ``.env`` file) and
passed to the services that need them. Out-of-range values raise
ValueError so a misconfigured process fails at startup.

Environment Variables:
- PRIVACY_AUDIT_RETENTION_DAYS: Audit retention period applied by erasure (default: 365, min: 0)
- PRIVACY_MAX_CAS_RETRIES: Re-read/retry budget for a lost CAS (default: 8, min: 0, max: 1000)
- PRIVACY_MAX_HANDLE_RETRIES: Handle generation attempts before giving up (default: 10, min: 1, max: 100)
- PRIVACY_STORAGE_RETRY_ATTEMPTS: Attempts for transient storage failures (default: 3, min: 1, max: 10)
- PRIVACY_RETRY_BASE_DELAY_SECONDS: First backoff delay (default: 0.01)
- PRIVACY_RETRY_MAX_DELAY_SECONDS: Backoff ceiling (default: 0.5)
- PRIVACY_PENDING_GRACE_SECONDS: Minimum age of a pending marker before the
  recovery sweep resolves it (default: 30, min: 0)
- PRIVACY_AUDIT_SUMMARY_RECENT: Recent entries in the audit summary (default: 10, min: 1, max: 100)
- PRIVACY_STORAGE_BACKEND: "memory" or "postgres" (default: memory)
- ENVIRONMENT: development/production (default: development)
- LOG_LEVEL: Logging level name (default: INFO)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta

from dotenv import load_dotenv

DEFAULT_AUDIT_RETENTION_DAYS = 365
DEFAULT_MAX_CAS_RETRIES = 8
MAX_CAS_RETRIES_CEILING = 1000
DEFAULT_MAX_HANDLE_RETRIES = 10
MAX_HANDLE_RETRIES_CEILING = 100
DEFAULT_STORAGE_RETRY_ATTEMPTS = 3
MAX_STORAGE_RETRY_ATTEMPTS = 10
DEFAULT_RETRY_BASE_DELAY_SECONDS = 0.01
DEFAULT_RETRY_MAX_DELAY_SECONDS = 0.5
DEFAULT_PENDING_GRACE_SECONDS = 30
DEFAULT_AUDIT_SUMMARY_RECENT = 10
MAX_AUDIT_SUMMARY_RECENT = 100

STORAGE_BACKENDS = ("memory", "postgres")


def _get_int_env(key: str, default: int) -> int:
    """Get integer environment variable with default.

    Args:
        key: Environment variable name.
        default: Default value if not set or invalid.

    Returns:
        Parsed integer value or default.
    """
    value = os.environ.get(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_float_env(key: str, default: float) -> float:
    value = os.environ.get(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


@dataclass(frozen=True)
class PrivacyCoreSettings:
    """Configuration for the privacy core.

    Attributes:
        audit_retention_days: Entries older than this are purged on erasure,
            younger ones are anonymized.
        max_cas_retries: Retries after a lost compare-and-swap before
            ConflictError surfaces.
        max_handle_retries: Handle generation attempts before
            GeneratorExhaustedError.
        storage_retry_attempts: Total attempts for a transient StorageError.
        retry_base_delay_seconds: First backoff delay.
        retry_max_delay_seconds: Backoff ceiling.
        pending_grace_seconds: Recovery sweep ignores younger pending markers.
        audit_summary_recent: Number of recent entries in the audit summary.
        storage_backend: "memory" or "postgres".
        environment: Deployment environment name.
        log_level: Logging level name.
    """

    audit_retention_days: int = DEFAULT_AUDIT_RETENTION_DAYS
    max_cas_retries: int = DEFAULT_MAX_CAS_RETRIES
    max_handle_retries: int = DEFAULT_MAX_HANDLE_RETRIES
    storage_retry_attempts: int = DEFAULT_STORAGE_RETRY_ATTEMPTS
    retry_base_delay_seconds: float = DEFAULT_RETRY_BASE_DELAY_SECONDS
    retry_max_delay_seconds: float = DEFAULT_RETRY_MAX_DELAY_SECONDS
    pending_grace_seconds: int = DEFAULT_PENDING_GRACE_SECONDS
    audit_summary_recent: int = DEFAULT_AUDIT_SUMMARY_RECENT
    storage_backend: str = "memory"
    environment: str = "development"
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.audit_retention_days < 0:
            raise ValueError(
                f"audit_retention_days must be >= 0, got {self.audit_retention_days}"
            )
        if not 0 <= self.max_cas_retries <= MAX_CAS_RETRIES_CEILING:
            raise ValueError(
                f"max_cas_retries must be between 0 and {MAX_CAS_RETRIES_CEILING}, "
                f"got {self.max_cas_retries}"
            )
        if not 1 <= self.max_handle_retries <= MAX_HANDLE_RETRIES_CEILING:
            raise ValueError(
                f"max_handle_retries must be between 1 and {MAX_HANDLE_RETRIES_CEILING}, "
                f"got {self.max_handle_retries}"
            )
        if not 1 <= self.storage_retry_attempts <= MAX_STORAGE_RETRY_ATTEMPTS:
            raise ValueError(
                f"storage_retry_attempts must be between 1 and {MAX_STORAGE_RETRY_ATTEMPTS}, "
                f"got {self.storage_retry_attempts}"
            )
        if self.retry_base_delay_seconds < 0 or self.retry_max_delay_seconds < 0:
            raise ValueError("retry delays must be >= 0")
        if self.retry_base_delay_seconds > self.retry_max_delay_seconds:
            raise ValueError(
                "retry_base_delay_seconds must not exceed retry_max_delay_seconds"
            )
        if self.pending_grace_seconds < 0:
            raise ValueError(
                f"pending_grace_seconds must be >= 0, got {self.pending_grace_seconds}"
            )
        if not 1 <= self.audit_summary_recent <= MAX_AUDIT_SUMMARY_RECENT:
            raise ValueError(
                f"audit_summary_recent must be between 1 and {MAX_AUDIT_SUMMARY_RECENT}, "
                f"got {self.audit_summary_recent}"
            )
        if self.storage_backend not in STORAGE_BACKENDS:
            raise ValueError(
                f"storage_backend must be one of {STORAGE_BACKENDS}, "
                f"got {self.storage_backend!r}"
            )

    @property
    def retention_timedelta(self) -> timedelta:
        return timedelta(days=self.audit_retention_days)

    @property
    def pending_grace_timedelta(self) -> timedelta:
        return timedelta(seconds=self.pending_grace_seconds)

    @classmethod
    def from_environment(cls, dotenv: bool = True) -> PrivacyCoreSettings:
        """Create settings from environment variables with defaults.

        Args:
            dotenv: Load a ``.env`` file from the working directory first
                (existing environment variables win).

        Returns:
            PrivacyCoreSettings with values from environment or defaults.

        Raises:
            ValueError: If a value is out of range.
        """
        if dotenv:
            load_dotenv(override=False)

        return cls(
            audit_retention_days=_get_int_env(
                "PRIVACY_AUDIT_RETENTION_DAYS", DEFAULT_AUDIT_RETENTION_DAYS
            ),
            max_cas_retries=_get_int_env("PRIVACY_MAX_CAS_RETRIES", DEFAULT_MAX_CAS_RETRIES),
            max_handle_retries=_get_int_env(
                "PRIVACY_MAX_HANDLE_RETRIES", DEFAULT_MAX_HANDLE_RETRIES
            ),
            storage_retry_attempts=_get_int_env(
                "PRIVACY_STORAGE_RETRY_ATTEMPTS", DEFAULT_STORAGE_RETRY_ATTEMPTS
            ),
            retry_base_delay_seconds=_get_float_env(
                "PRIVACY_RETRY_BASE_DELAY_SECONDS", DEFAULT_RETRY_BASE_DELAY_SECONDS
            ),
            retry_max_delay_seconds=_get_float_env(
                "PRIVACY_RETRY_MAX_DELAY_SECONDS", DEFAULT_RETRY_MAX_DELAY_SECONDS
            ),
            pending_grace_seconds=_get_int_env(
                "PRIVACY_PENDING_GRACE_SECONDS", DEFAULT_PENDING_GRACE_SECONDS
            ),
            audit_summary_recent=_get_int_env(
                "PRIVACY_AUDIT_SUMMARY_RECENT", DEFAULT_AUDIT_SUMMARY_RECENT
            ),
            storage_backend=os.environ.get("PRIVACY_STORAGE_BACKEND", "memory").lower(),
            environment=os.environ.get("ENVIRONMENT", "development"),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        )


# Default production settings
DEFAULT_PRIVACY_CORE_SETTINGS = PrivacyCoreSettings()

# Testing settings: no backoff delay, no recovery grace period
TEST_PRIVACY_CORE_SETTINGS = PrivacyCoreSettings(
    retry_base_delay_seconds=0.0,
    retry_max_delay_seconds=0.0,
    pending_grace_seconds=0,
)
