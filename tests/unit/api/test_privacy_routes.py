"""Unit tests for the privacy API routes.

The app runs its real lifespan against a privacy core wired on the
in-memory store, so every request goes through the enforcer exactly as in
production.
"""

from __future__ import annotations

from collections.abc import Iterator

import pytest
import structlog
from fastapi.testclient import TestClient

from src.api.main import create_app
from src.bootstrap.privacy_core import PrivacyCore
from src.infrastructure.stubs.in_memory_row_store import InMemoryRowStore

ACCOUNT = "acct-1"
OTHER = "acct-2"
HEADERS = {"X-Account-ID": ACCOUNT, "X-Forwarded-For": "203.0.113.7", "User-Agent": "pytest"}
OTHER_HEADERS = {"X-Account-ID": OTHER}


@pytest.fixture
def client(core: PrivacyCore) -> Iterator[TestClient]:
    with TestClient(create_app(core=core)) as test_client:
        yield test_client
    structlog.reset_defaults()


@pytest.fixture
def provisioned(client: TestClient) -> TestClient:
    for account_id in (ACCOUNT, OTHER):
        response = client.post(
            "/privacy/accounts", json={"account_id": account_id}, headers=HEADERS
        )
        assert response.status_code == 201
    return client


class TestAccountAndSettings:
    """Provisioning and settings routes."""

    def test_provision_account(self, client: TestClient) -> None:
        response = client.post("/privacy/accounts", json={"account_id": ACCOUNT}, headers=HEADERS)

        assert response.status_code == 201
        body = response.json()
        assert body["settings"]["settings"]["is_anonymous"] is True
        assert body["handle"]["revoked"] is False
        assert body["audit_sequence"] == 1

    def test_provision_twice_conflicts(self, provisioned: TestClient) -> None:
        response = provisioned.post(
            "/privacy/accounts", json={"account_id": ACCOUNT}, headers=HEADERS
        )

        assert response.status_code == 409
        assert response.json()["detail"]["retryable"] is False

    def test_missing_account_header(self, client: TestClient) -> None:
        """Requests without a caller account are rejected."""
        response = client.get("/privacy/settings")

        assert response.status_code == 401
        assert response.json()["detail"]["title"] == "Unauthenticated"

    def test_unknown_account(self, client: TestClient) -> None:
        response = client.get("/privacy/settings", headers=HEADERS)

        assert response.status_code == 404
        assert response.json()["detail"]["status"] == 404

    def test_patch_settings(self, provisioned: TestClient) -> None:
        response = provisioned.patch(
            "/privacy/settings",
            json={"location_sharing": True, "show_posts": True},
            headers=HEADERS,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["changed"] == ["location_sharing", "show_posts"]
        assert body["audit_sequence"] == 2
        assert provisioned.get("/privacy/settings", headers=HEADERS).json()["settings"][
            "location_sharing"
        ] is True

    def test_invalid_patch_is_problem_422(self, provisioned: TestClient) -> None:
        """Dependency violations come back as a validation problem."""
        response = provisioned.patch(
            "/privacy/settings", json={"precise_location": True}, headers=HEADERS
        )

        assert response.status_code == 422
        problem = response.json()["detail"]
        assert problem["violations"] == ["precise_location requires location_sharing"]
        assert problem["instance"].endswith("/privacy/settings")

    def test_toggle_anonymous_mode(self, provisioned: TestClient) -> None:
        response = provisioned.post(
            "/privacy/anonymous-mode", json={"enabled": False}, headers=HEADERS
        )

        assert response.status_code == 200
        assert response.json()["settings"]["privacy_level"] == "private"

    def test_toggle_requires_boolean(self, provisioned: TestClient) -> None:
        response = provisioned.post(
            "/privacy/anonymous-mode", json={"enabled": "no"}, headers=HEADERS
        )

        assert response.status_code == 422

    def test_recommendations(self, provisioned: TestClient) -> None:
        provisioned.patch("/privacy/settings", json={"marketing_emails": True}, headers=HEADERS)

        response = provisioned.get("/privacy/recommendations", headers=HEADERS)

        assert [r["setting"] for r in response.json()["recommendations"]] == [
            "marketing_emails"
        ]


class TestResources:
    """Resource binding and identity switch routes."""

    def test_anonymous_post_then_reveal(self, provisioned: TestClient) -> None:
        created = provisioned.post(
            "/privacy/resources/post/p-1/anonymous-post", headers=HEADERS
        )
        assert created.status_code == 201
        assert created.json()["state"] == "anonymous_bound"

        revealed = provisioned.post("/privacy/resources/post/p-1/reveal", headers=HEADERS)

        assert revealed.status_code == 200
        assert revealed.json()["state"] == "real_bound"
        attribution = provisioned.get("/privacy/resources/post/p-1", headers=OTHER_HEADERS)
        assert attribution.json()["account_id"] == ACCOUNT

    def test_register_real_returns_empty_body(self, provisioned: TestClient) -> None:
        response = provisioned.post(
            "/privacy/resources/comment/c-1", json={"anonymous": False}, headers=HEADERS
        )

        assert response.status_code == 201
        assert response.json() is None

    def test_switch_by_other_account_is_forbidden(self, provisioned: TestClient) -> None:
        provisioned.post("/privacy/resources/post/p-1/anonymous-post", headers=HEADERS)

        response = provisioned.post("/privacy/resources/post/p-1/reveal", headers=OTHER_HEADERS)

        assert response.status_code == 403

    def test_unknown_resource_type(self, provisioned: TestClient) -> None:
        response = provisioned.post("/privacy/resources/video/v-1/reveal", headers=HEADERS)

        assert response.status_code == 422

    def test_audit_unavailable_is_retryable(
        self, provisioned: TestClient, store: InMemoryRowStore
    ) -> None:
        """A failed audit append surfaces as 503 with Retry-After."""
        provisioned.post("/privacy/resources/post/p-1/anonymous-post", headers=HEADERS)
        store.fail_next("append", times=3, table="audit_entries")

        response = provisioned.post("/privacy/resources/post/p-1/reveal", headers=HEADERS)

        assert response.status_code == 503
        assert response.headers["Retry-After"] == "1"
        assert response.json()["detail"]["retryable"] is True
        attribution = provisioned.get("/privacy/resources/post/p-1", headers=HEADERS)
        assert attribution.json()["state"] == "anonymous_bound"

    def test_record_data_access(self, provisioned: TestClient) -> None:
        response = provisioned.post(
            "/privacy/resources/post/p-1/access",
            json={"accessor_id": "support-7", "purpose": "ticket 12"},
            headers=HEADERS,
        )

        assert response.status_code == 201
        assert response.json()["action_kind"] == "data_access"


class TestHandlesAndAudit:
    """Handle and audit trail routes."""

    def test_rotate_and_list(self, provisioned: TestClient) -> None:
        rotated = provisioned.post("/privacy/handles/rotate", headers=HEADERS)

        assert rotated.status_code == 200
        handles = provisioned.get("/privacy/handles", headers=HEADERS).json()["handles"]
        assert [h["revoked"] for h in handles] == [True, False]

    def test_suggestions(self, provisioned: TestClient) -> None:
        response = provisioned.get("/privacy/handles/suggestions?count=3", headers=HEADERS)

        assert response.status_code == 200
        assert 0 < len(response.json()["suggestions"]) <= 3

    def test_audit_log_carries_actor_metadata(self, provisioned: TestClient) -> None:
        """Gateway headers and the geo lookup end up on the entry."""
        provisioned.patch("/privacy/settings", json={"show_posts": True}, headers=HEADERS)

        entries = provisioned.get("/privacy/audit?limit=1", headers=HEADERS).json()["entries"]

        assert entries[0]["sequence"] == 2
        assert entries[0]["actor_metadata"] == {
            "user_agent": "pytest",
            "network_origin": "203.0.113.7",
            "coarse_location": "NL",
        }

    def test_audit_limit_bounds(self, provisioned: TestClient) -> None:
        response = provisioned.get("/privacy/audit?limit=501", headers=HEADERS)

        assert response.status_code == 422

    def test_audit_summary(self, provisioned: TestClient) -> None:
        response = provisioned.get("/privacy/audit/summary", headers=HEADERS)

        assert response.json()["total_actions"] == 1
        assert response.json()["counts"]["privacy_setting_change"] == 1

    def test_export(self, provisioned: TestClient) -> None:
        response = provisioned.post("/privacy/export", headers=HEADERS)

        bundle = response.json()["bundle"]
        assert bundle["account_id"] == ACCOUNT
        assert bundle["watermark"] == 1


class TestErasure:
    """Erasure routes."""

    def test_erase_runs_in_background(self, core: PrivacyCore) -> None:
        """The job is accepted at once and finished by shutdown at the latest."""
        with TestClient(create_app(core=core)) as client:
            client.post("/privacy/accounts", json={"account_id": ACCOUNT}, headers=HEADERS)
            accepted = client.post("/privacy/erase", headers=HEADERS)
            again = client.post("/privacy/erase", headers=HEADERS)

        assert accepted.status_code == 202
        assert again.json()["job_id"] == accepted.json()["job_id"]

        with TestClient(create_app(core=core)) as client:
            status = client.get(f"/privacy/erase/{accepted.json()['job_id']}", headers=HEADERS)
            blocked = client.patch(
                "/privacy/settings", json={"show_posts": True}, headers=HEADERS
            )
        structlog.reset_defaults()

        assert status.json()["status"] == "done"
        assert blocked.status_code == 423

    def test_other_accounts_job_is_not_found(self, provisioned: TestClient) -> None:
        job_id = provisioned.post("/privacy/erase", headers=HEADERS).json()["job_id"]

        response = provisioned.get(f"/privacy/erase/{job_id}", headers=OTHER_HEADERS)
        cancel = provisioned.delete(f"/privacy/erase/{job_id}", headers=OTHER_HEADERS)

        assert response.status_code == 404
        assert cancel.status_code == 404


class TestHealth:
    def test_health(self, client: TestClient) -> None:
        response = client.get("/v1/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["storage_backend"] == "memory"

    def test_correlation_id_echoed(self, client: TestClient) -> None:
        response = client.get("/v1/health", headers={"X-Correlation-ID": "req-1"})

        assert response.headers["X-Correlation-ID"] == "req-1"
