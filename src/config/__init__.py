"""Configuration module for the privacy core.

Available Configurations:
- PrivacyCoreSettings: retention, retry budgets, recovery grace period,
  storage backend selection
"""

from src.config.privacy_core_config import (
    DEFAULT_PRIVACY_CORE_SETTINGS,
    TEST_PRIVACY_CORE_SETTINGS,
    PrivacyCoreSettings,
)

__all__ = [
    "PrivacyCoreSettings",
    "DEFAULT_PRIVACY_CORE_SETTINGS",
    "TEST_PRIVACY_CORE_SETTINGS",
]
