"""Unit tests for structlog configuration and privacy value redaction."""

import json

import pytest
import structlog

from src.infrastructure.observability.logging import (
    PRIVACY_VALUE_KEYS,
    REDACTED,
    configure_structlog,
    redact_privacy_values,
)


class TestRedactPrivacyValues:
    """redact_privacy_values processor."""

    @pytest.mark.parametrize("key", sorted(PRIVACY_VALUE_KEYS))
    def test_masks_privacy_keys(self, key: str) -> None:
        event = redact_privacy_values(None, "info", {"event": "x", key: "secret"})

        assert event[key] == REDACTED

    def test_keeps_ids_and_counts(self) -> None:
        """Identifiers, kinds and counts are what logs are for."""
        event = {
            "event": "identity_switched",
            "account_id": "acct-1",
            "transaction_id": "t-1",
            "sequence": 4,
        }

        assert redact_privacy_values(None, "info", dict(event)) == event


class TestConfigureStructlog:
    """End-to-end rendering."""

    @pytest.fixture(autouse=True)
    def _reset(self):
        yield
        structlog.reset_defaults()

    def test_production_renders_redacted_json(self, capsys) -> None:
        configure_structlog(environment="production", log_level="INFO")

        structlog.get_logger().info(
            "privacy_settings_changed", account_id="acct-1", new_value={"show_posts": True}
        )

        line = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert line["event"] == "privacy_settings_changed"
        assert line["account_id"] == "acct-1"
        assert line["new_value"] == REDACTED
        assert line["level"] == "info"
        assert "timestamp" in line

    def test_level_filtering(self, capsys) -> None:
        configure_structlog(environment="production", log_level="WARNING")

        structlog.get_logger().info("quiet")

        assert capsys.readouterr().out == ""
