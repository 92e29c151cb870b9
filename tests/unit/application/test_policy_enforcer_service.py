"""Unit tests for PolicyEnforcerService.

Covers the staged commit protocol end to end on the in-memory store:
every intent is audited exactly once, a failed audit append leaves no
trace, and interrupted transactions are settled by the recovery sweep.
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import replace
from datetime import timedelta

import pytest

from src.application.services.audit_trail_service import AUDIT_TABLE
from src.bootstrap.privacy_core import PrivacyCore, wire_privacy_core
from src.config.privacy_core_config import PrivacyCoreSettings
from src.domain.errors import (
    AccountAlreadyProvisionedError,
    AlreadyBoundError,
    AuditUnavailableError,
    ConflictError,
    NotFoundError,
    OwnershipError,
    StorageError,
    ValidationError,
)
from src.domain.models.audit_entry import ActorMetadata, AuditActionKind
from src.domain.models.privacy_config import PrivacyLevel
from src.domain.models.resource_identity import (
    BindingState,
    RealAccountIdentity,
    ResourceRef,
    ResourceType,
)
from src.domain.services.handle_generator import HandleGenerator
from src.infrastructure.stubs.follow_graph_stub import FollowGraphStub
from src.infrastructure.stubs.in_memory_row_store import InMemoryRowStore
from tests.helpers import FakeTimeAuthority

ACCOUNT = "acct-1"
OTHER = "acct-2"
POST = ResourceRef(ResourceType.POST, "p-1")
COMMENT = ResourceRef(ResourceType.COMMENT, "c-1")
ACTOR = ActorMetadata(user_agent="pytest", network_origin="203.0.113.7", coarse_location="NL")


async def _kinds(core: PrivacyCore, account_id: str = ACCOUNT) -> list[AuditActionKind]:
    return [e.action_kind for e in await core.audit.all_entries(account_id)]


async def _pending_count(core: PrivacyCore) -> int:
    return (
        len(await core.vault.list_pending_handles())
        + len(await core.vault.list_pending_bindings())
        + len(await core.configs.list_pending())
    )


class TestCreateAccount:
    """Account provisioning."""

    @pytest.mark.asyncio
    async def test_provisions_defaults_and_first_handle(self, core: PrivacyCore) -> None:
        """Defaults, an active handle and one audit entry, committed together."""
        result = await core.enforcer.create_account(ACCOUNT, actor=ACTOR)

        assert result.config.is_anonymous is True
        assert result.config.privacy_level == PrivacyLevel.ANONYMOUS
        assert result.handle.is_active is True
        assert result.audit_entry.sequence == 1
        assert result.audit_entry.new_value["handle_id"] == result.handle.id
        assert result.audit_entry.actor_metadata == ACTOR
        assert (await core.vault.active_handle(ACCOUNT)).id == result.handle.id
        assert await _pending_count(core) == 0

    @pytest.mark.asyncio
    async def test_second_create_rejected(self, core: PrivacyCore) -> None:
        """Re-provisioning fails and writes no second entry."""
        await core.enforcer.create_account(ACCOUNT)

        with pytest.raises(AccountAlreadyProvisionedError):
            await core.enforcer.create_account(ACCOUNT)

        assert await _kinds(core) == [AuditActionKind.PRIVACY_SETTING_CHANGE]

    @pytest.mark.asyncio
    async def test_audit_failure_creates_nothing(
        self, core: PrivacyCore, store: InMemoryRowStore
    ) -> None:
        """Without a durable audit entry the account does not come into existence."""
        store.fail_next("append", times=3, table=AUDIT_TABLE)

        with pytest.raises(AuditUnavailableError):
            await core.enforcer.create_account(ACCOUNT)

        with pytest.raises(NotFoundError):
            await core.configs.get_config(ACCOUNT)
        assert await core.vault.list_handles(ACCOUNT) == []
        assert await core.audit.max_sequence(ACCOUNT) == 0
        assert await _pending_count(core) == 0

    @pytest.mark.asyncio
    async def test_create_after_failed_attempt(
        self, core: PrivacyCore, store: InMemoryRowStore
    ) -> None:
        """A failed provisioning can simply be retried."""
        store.fail_next("append", times=3, table=AUDIT_TABLE)
        with pytest.raises(AuditUnavailableError):
            await core.enforcer.create_account(ACCOUNT)

        result = await core.enforcer.create_account(ACCOUNT)

        assert result.audit_entry.sequence == 1
        assert len(await core.vault.list_handles(ACCOUNT)) == 1


class TestSettings:
    """update_privacy_setting / toggle_anonymous_mode."""

    @pytest.fixture
    async def provisioned(self, core: PrivacyCore) -> PrivacyCore:
        await core.enforcer.create_account(ACCOUNT)
        return core

    @pytest.mark.asyncio
    async def test_update_is_audited_with_changed_values(
        self, provisioned: PrivacyCore
    ) -> None:
        change = await provisioned.enforcer.update_privacy_setting(
            ACCOUNT, {"location_sharing": True, "show_posts": False}, actor=ACTOR
        )

        assert change.new.location_sharing is True
        assert change.audit_entry.old_value == {"location_sharing": False}
        assert change.audit_entry.new_value == {"location_sharing": True}
        assert (await provisioned.configs.get_config(ACCOUNT)).location_sharing is True

    @pytest.mark.asyncio
    async def test_noop_patch_is_not_audited(self, provisioned: PrivacyCore) -> None:
        """Setting a value to what it already is changes and records nothing."""
        change = await provisioned.enforcer.update_privacy_setting(
            ACCOUNT, {"show_posts": False}
        )

        assert change.audit_entry is None
        assert await provisioned.audit.max_sequence(ACCOUNT) == 1
        assert await _pending_count(provisioned) == 0

    @pytest.mark.asyncio
    async def test_invalid_patch_changes_nothing(self, provisioned: PrivacyCore) -> None:
        with pytest.raises(ValidationError):
            await provisioned.enforcer.update_privacy_setting(
                ACCOUNT, {"precise_location": True}
            )

        assert await provisioned.audit.max_sequence(ACCOUNT) == 1

    @pytest.mark.asyncio
    async def test_audit_failure_rolls_back_update(
        self, provisioned: PrivacyCore, store: InMemoryRowStore
    ) -> None:
        """A failed audit append discards the staged update."""
        store.fail_next("append", times=3, table=AUDIT_TABLE)

        with pytest.raises(AuditUnavailableError):
            await provisioned.enforcer.update_privacy_setting(ACCOUNT, {"show_posts": True})

        assert (await provisioned.configs.get_config(ACCOUNT)).show_posts is False
        assert await provisioned.configs.get_pending(ACCOUNT) is None

    @pytest.mark.asyncio
    async def test_toggle_off_lowers_anonymous_level(self, provisioned: PrivacyCore) -> None:
        """Leaving anonymous mode under the anonymous level also sets private."""
        change = await provisioned.enforcer.toggle_anonymous_mode(ACCOUNT, False)

        assert change.new.is_anonymous is False
        assert change.new.privacy_level == PrivacyLevel.PRIVATE
        assert change.audit_entry.new_value == {
            "is_anonymous": False,
            "privacy_level": "private",
        }

    @pytest.mark.asyncio
    async def test_toggle_off_follows_level_set_concurrently(
        self, provisioned: PrivacyCore, monkeypatch
    ) -> None:
        """The level is lowered based on the row actually staged, even when
        a concurrent change moved it to anonymous after the toggle began."""
        await provisioned.enforcer.update_privacy_setting(ACCOUNT, {"privacy_level": "public"})
        write = provisioned.configs._write
        raced: list[int] = []

        async def write_after_concurrent_change(account_id, patch, expected):
            if not raced:
                raced.append(
                    await write(account_id, {"privacy_level": "anonymous"}, expected)
                )
            return await write(account_id, patch, expected)

        monkeypatch.setattr(provisioned.configs, "_write", write_after_concurrent_change)

        change = await provisioned.enforcer.toggle_anonymous_mode(ACCOUNT, False)

        assert change.old.privacy_level == PrivacyLevel.ANONYMOUS
        assert change.new.is_anonymous is False
        assert change.new.privacy_level == PrivacyLevel.PRIVATE

    @pytest.mark.asyncio
    async def test_toggle_on_keeps_level(self, provisioned: PrivacyCore) -> None:
        await provisioned.enforcer.toggle_anonymous_mode(ACCOUNT, False)

        change = await provisioned.enforcer.toggle_anonymous_mode(ACCOUNT, True)

        assert change.new.is_anonymous is True
        assert change.new.privacy_level == PrivacyLevel.PRIVATE

    @pytest.mark.asyncio
    async def test_toggle_requires_bool(self, provisioned: PrivacyCore) -> None:
        with pytest.raises(ValidationError):
            await provisioned.enforcer.toggle_anonymous_mode(ACCOUNT, "false")  # type: ignore[arg-type]

    @pytest.mark.asyncio
    async def test_unknown_account(self, core: PrivacyCore) -> None:
        with pytest.raises(NotFoundError):
            await core.enforcer.update_privacy_setting("ghost", {"show_posts": True})


class TestResourceIdentity:
    """register / reveal / hide / attribution."""

    @pytest.fixture
    async def provisioned(self, core: PrivacyCore) -> PrivacyCore:
        await core.enforcer.create_account(ACCOUNT)
        await core.enforcer.create_account(OTHER)
        return core

    @pytest.mark.asyncio
    async def test_register_follows_anonymous_setting(self, provisioned: PrivacyCore) -> None:
        """New accounts are anonymous, so new content goes to the handle."""
        switch = await provisioned.enforcer.register_resource(ACCOUNT, POST)

        assert switch is not None
        assert switch.binding.state == BindingState.ANONYMOUS_BOUND
        assert switch.audit_entry.action_kind == AuditActionKind.ANONYMOUS_POST
        attribution = await provisioned.vault.resolve_attribution(POST)
        handle = await provisioned.vault.active_handle(ACCOUNT)
        assert attribution.handle == handle.handle_string
        assert attribution.account_id is None

    @pytest.mark.asyncio
    async def test_real_registration_is_not_audited(self, provisioned: PrivacyCore) -> None:
        result = await provisioned.enforcer.register_resource(ACCOUNT, POST, anonymous=False)

        assert result is None
        binding = await provisioned.vault.get_binding(POST)
        assert binding.identity == RealAccountIdentity(ACCOUNT)
        assert await provisioned.audit.max_sequence(ACCOUNT) == 1

    @pytest.mark.asyncio
    async def test_register_twice_rejected(self, provisioned: PrivacyCore) -> None:
        await provisioned.enforcer.register_resource(ACCOUNT, POST)

        with pytest.raises(AlreadyBoundError):
            await provisioned.enforcer.register_resource(ACCOUNT, POST, anonymous=False)

    @pytest.mark.asyncio
    async def test_reveal_then_hide(self, provisioned: PrivacyCore) -> None:
        """Reveal shows the account, hide returns to the same active handle."""
        await provisioned.enforcer.record_anonymous_post(ACCOUNT, POST)
        handle = await provisioned.vault.active_handle(ACCOUNT)

        revealed = await provisioned.enforcer.reveal_resource_identity(
            ACCOUNT, POST, actor=ACTOR
        )

        assert revealed.binding.state == BindingState.REAL_BOUND
        assert revealed.audit_entry.action_kind == AuditActionKind.IDENTITY_REVEAL
        assert revealed.audit_entry.old_value == {"anonymous": True}
        assert revealed.audit_entry.new_value == {"anonymous": False}
        assert revealed.audit_entry.resource_id == "p-1"
        assert (await provisioned.vault.resolve_attribution(POST)).account_id == ACCOUNT

        hidden = await provisioned.enforcer.hide_resource_identity(ACCOUNT, POST)

        assert hidden.binding.state == BindingState.ANONYMOUS_BOUND
        assert hidden.binding.identity.handle_id == handle.id
        assert hidden.binding.version > revealed.binding.version
        assert hidden.issued_handle is None

    @pytest.mark.asyncio
    async def test_noop_reveal_is_still_audited(self, provisioned: PrivacyCore) -> None:
        """Revealing an already revealed resource records the request."""
        await provisioned.enforcer.register_resource(ACCOUNT, POST, anonymous=False)

        switch = await provisioned.enforcer.reveal_resource_identity(ACCOUNT, POST)

        assert switch.audit_entry.old_value == {"anonymous": False}
        assert switch.audit_entry.new_value == {"anonymous": False}

    @pytest.mark.asyncio
    async def test_only_controller_may_switch(self, provisioned: PrivacyCore) -> None:
        await provisioned.enforcer.record_anonymous_post(ACCOUNT, POST)

        with pytest.raises(OwnershipError):
            await provisioned.enforcer.reveal_resource_identity(OTHER, POST)

        assert await provisioned.audit.max_sequence(OTHER) == 1

    @pytest.mark.asyncio
    async def test_unbound_resource(self, provisioned: PrivacyCore) -> None:
        with pytest.raises(NotFoundError):
            await provisioned.enforcer.reveal_resource_identity(ACCOUNT, COMMENT)

    @pytest.mark.asyncio
    async def test_audit_failure_leaves_binding_untouched(
        self, provisioned: PrivacyCore, store: InMemoryRowStore
    ) -> None:
        """A reveal whose audit entry cannot be written changes nothing."""
        await provisioned.enforcer.record_anonymous_post(ACCOUNT, POST)
        before = await provisioned.vault.get_binding(POST)
        store.fail_next("append", times=3, table=AUDIT_TABLE)

        with pytest.raises(AuditUnavailableError):
            await provisioned.enforcer.reveal_resource_identity(ACCOUNT, POST)

        after = await provisioned.vault.get_binding(POST)
        assert after.identity == before.identity
        assert after.pending is None
        assert await provisioned.audit.max_sequence(ACCOUNT) == 2

    @pytest.mark.asyncio
    async def test_hide_issues_handle_on_demand(self, provisioned: PrivacyCore) -> None:
        """Hiding after every handle was revoked issues a fresh one in the same transaction."""
        await provisioned.enforcer.register_resource(ACCOUNT, POST, anonymous=False)
        original = await provisioned.vault.active_handle(ACCOUNT)
        await provisioned.vault.stage_revocation(original.id, "t-revoke")
        await provisioned.vault.commit_handle(original.id, "t-revoke")

        switch = await provisioned.enforcer.hide_resource_identity(ACCOUNT, POST)

        assert switch.issued_handle is not None
        assert switch.issued_handle.is_active is True
        assert switch.binding.identity.handle_id == switch.issued_handle.id


class TestConcurrentSwitches:
    """Racing reveal/hide requests on one resource."""

    @pytest.fixture
    def core(
        self,
        settings: PrivacyCoreSettings,
        store: InMemoryRowStore,
        fake_time: FakeTimeAuthority,
    ) -> PrivacyCore:
        return wire_privacy_core(
            replace(settings, max_cas_retries=1000),
            store,
            time_authority=fake_time,
            generator=HandleGenerator(random.Random(5)),
        )

    @pytest.mark.asyncio
    async def test_fifty_racers_never_lose_an_update(self, core: PrivacyCore) -> None:
        """Every successful switch is audited once, in commit order.

        Each entry's old value is the previous entry's new value and the
        final binding matches the last entry.
        """
        await core.enforcer.create_account(ACCOUNT)
        await core.enforcer.register_resource(ACCOUNT, POST, anonymous=False)

        racers = [
            core.enforcer.reveal_resource_identity(ACCOUNT, POST)
            if i % 2 == 0
            else core.enforcer.hide_resource_identity(ACCOUNT, POST)
            for i in range(50)
        ]
        results = await asyncio.gather(*racers, return_exceptions=True)

        failures = [r for r in results if isinstance(r, BaseException)]
        assert all(isinstance(f, ConflictError) for f in failures)
        successes = len(results) - len(failures)

        entries = [
            e
            for e in await core.audit.all_entries(ACCOUNT)
            if e.resource_id == POST.resource_id
        ]
        assert len(entries) == successes
        assert entries[0].old_value["anonymous"] is False
        for previous, current in zip(entries, entries[1:]):
            assert current.old_value["anonymous"] == previous.new_value["anonymous"]

        binding = await core.vault.get_binding(POST)
        assert binding.pending is None
        assert binding.is_anonymous == entries[-1].new_value["anonymous"]
        assert binding.version == 2 + 2 * successes


class TestRecoverPending:
    """recover_pending settles interrupted transactions."""

    @pytest.fixture
    async def provisioned(self, core: PrivacyCore) -> PrivacyCore:
        await core.enforcer.create_account(ACCOUNT)
        await core.enforcer.record_anonymous_post(ACCOUNT, POST)
        return core

    @pytest.mark.asyncio
    async def test_audited_marker_is_committed(self, provisioned: PrivacyCore) -> None:
        """A switch whose entry exists is completed by the sweep."""
        staged = await provisioned.vault.reveal_identity(POST, ACCOUNT, "t-crash")
        await provisioned.audit.append(
            provisioned.audit.new_entry(
                ACCOUNT,
                AuditActionKind.IDENTITY_REVEAL,
                "t-crash",
                old_value={"anonymous": staged.before.is_anonymous},
                new_value={"anonymous": False},
                resource_type="post",
                resource_id="p-1",
            )
        )

        report = await provisioned.enforcer.recover_pending()

        assert report.committed == ["t-crash"]
        assert report.discarded == []
        binding = await provisioned.vault.get_binding(POST)
        assert binding.state == BindingState.REAL_BOUND
        assert binding.pending is None

    @pytest.mark.asyncio
    async def test_unaudited_marker_is_discarded(self, provisioned: PrivacyCore) -> None:
        """A switch that never reached the audit trail is rolled back."""
        await provisioned.vault.reveal_identity(POST, ACCOUNT, "t-orphan")

        report = await provisioned.enforcer.recover_pending()

        assert report.discarded == ["t-orphan"]
        binding = await provisioned.vault.get_binding(POST)
        assert binding.state == BindingState.ANONYMOUS_BOUND
        assert binding.pending is None

    @pytest.mark.asyncio
    async def test_young_markers_are_skipped(
        self, provisioned: PrivacyCore, fake_time: FakeTimeAuthority
    ) -> None:
        """Markers younger than the grace period may belong to live requests."""
        await provisioned.vault.reveal_identity(POST, ACCOUNT, "t-live")

        report = await provisioned.enforcer.recover_pending(grace=timedelta(seconds=30))
        assert report.skipped == 1
        assert report.resolved == 0

        fake_time.advance(seconds=31)
        report = await provisioned.enforcer.recover_pending(grace=timedelta(seconds=30))
        assert report.discarded == ["t-live"]

    @pytest.mark.asyncio
    async def test_storage_failure_after_audit_is_recovered(
        self, provisioned: PrivacyCore, store: InMemoryRowStore, monkeypatch
    ) -> None:
        """A commit that fails after the entry is durable is never rolled back."""
        append = provisioned.audit.append

        async def append_then_break_bindings(entry, precondition=None):
            stored = await append(entry, precondition=precondition)
            store.fail_next("upsert", times=3, table="post_identity_bindings")
            return stored

        monkeypatch.setattr(provisioned.audit, "append", append_then_break_bindings)

        with pytest.raises(StorageError):
            await provisioned.enforcer.reveal_resource_identity(ACCOUNT, POST)

        monkeypatch.undo()
        assert (await provisioned.vault.get_binding(POST)).pending is not None
        assert await _kinds(provisioned) == [
            AuditActionKind.PRIVACY_SETTING_CHANGE,
            AuditActionKind.ANONYMOUS_POST,
            AuditActionKind.IDENTITY_REVEAL,
        ]

        report = await provisioned.enforcer.recover_pending()

        assert len(report.committed) == 1
        assert (await provisioned.vault.get_binding(POST)).state == BindingState.REAL_BOUND

    @pytest.mark.asyncio
    async def test_scoped_to_account(self, provisioned: PrivacyCore) -> None:
        await provisioned.enforcer.create_account(OTHER)
        await provisioned.vault.reveal_identity(POST, ACCOUNT, "t-mine")

        report = await provisioned.enforcer.recover_pending(account_id=OTHER)

        assert report.resolved == 0
        assert (await provisioned.vault.get_binding(POST)).pending is not None


class TestOtherIntents:
    """Data access, rotation and read-side policy."""

    @pytest.fixture
    async def provisioned(self, core: PrivacyCore) -> PrivacyCore:
        await core.enforcer.create_account(ACCOUNT)
        await core.enforcer.create_account(OTHER)
        return core

    @pytest.mark.asyncio
    async def test_record_data_access(self, provisioned: PrivacyCore) -> None:
        entry = await provisioned.enforcer.record_data_access(
            ACCOUNT, "support-agent-7", "ticket 1234", resource=POST
        )

        assert entry.action_kind == AuditActionKind.DATA_ACCESS
        assert entry.new_value == {"accessor_id": "support-agent-7", "purpose": "ticket 1234"}
        assert entry.resource_type == "post"

    @pytest.mark.asyncio
    async def test_data_access_needs_purpose(self, provisioned: PrivacyCore) -> None:
        with pytest.raises(ValidationError):
            await provisioned.enforcer.record_data_access(ACCOUNT, "someone", "  ")

    @pytest.mark.asyncio
    async def test_rotation_revokes_previous_handle(self, provisioned: PrivacyCore) -> None:
        """Old bindings keep their revoked handle; new posts use the new one."""
        await provisioned.enforcer.record_anonymous_post(ACCOUNT, POST)
        old = await provisioned.vault.active_handle(ACCOUNT)

        rotation = await provisioned.enforcer.rotate_anonymous_handle(ACCOUNT)

        assert rotation.revoked_handle_ids == (old.id,)
        assert rotation.audit_entry.new_value == {"active_handle_ids": [rotation.handle.id]}
        assert (await provisioned.vault.get_handle(old.id)).revoked is True
        assert (await provisioned.vault.active_handle(ACCOUNT)).id == rotation.handle.id
        assert (await provisioned.vault.resolve_attribution(POST)).handle == old.handle_string

        switch = await provisioned.enforcer.record_anonymous_post(ACCOUNT, COMMENT)
        assert switch.binding.identity.handle_id == rotation.handle.id

    @pytest.mark.asyncio
    async def test_handle_strings_are_unique(self, provisioned: PrivacyCore) -> None:
        """Names are never re-issued, even across rotations."""
        for _ in range(3):
            await provisioned.enforcer.rotate_anonymous_handle(ACCOUNT)
        names = [
            h.handle_string.lower()
            for account in (ACCOUNT, OTHER)
            for h in await provisioned.vault.list_handles(account)
        ]

        assert len(names) == 5
        assert len(set(names)) == 5

    @pytest.mark.asyncio
    async def test_visibility_uses_follow_graph(
        self, provisioned: PrivacyCore, follow_graph: FollowGraphStub
    ) -> None:
        await provisioned.enforcer.update_privacy_setting(
            ACCOUNT, {"profile_visibility": "friends", "allow_messages_from": "followers"}
        )

        assert await provisioned.enforcer.can_view_profile(OTHER, ACCOUNT) is False
        assert await provisioned.enforcer.can_send_message(OTHER, ACCOUNT) is False

        follow_graph.follow(OTHER, ACCOUNT)

        assert await provisioned.enforcer.can_view_profile(OTHER, ACCOUNT) is True
        assert await provisioned.enforcer.can_send_message(OTHER, ACCOUNT) is True
        assert await provisioned.enforcer.can_view_activity(OTHER, ACCOUNT) is False

    @pytest.mark.asyncio
    async def test_recommendations(self, provisioned: PrivacyCore) -> None:
        await provisioned.enforcer.update_privacy_setting(ACCOUNT, {"marketing_emails": True})

        found = await provisioned.enforcer.recommendations(ACCOUNT)

        assert [r.setting for r in found] == ["marketing_emails"]
