"""Tests for the read reconciler."""

from collections.abc import Callable
from datetime import date

import pytest

from directory_controller.desired import DesiredState
from directory_controller.merge import FIELD_POLICIES, MergePolicy, merge
from directory_controller.models import RemoteUser


def remote(**fields: object) -> RemoteUser:
    payload = {"_id": "u1", "username": "alice", "email": "alice@example.com", "state": "ACTIVATED"}
    payload.update(fields)
    return RemoteUser.model_validate(payload)


class TestPolicyTable:
    """Tests for the declarative policy table."""

    @pytest.mark.parametrize(
        "name,policy",
        [
            ("password_never_expires", MergePolicy.PREFER_LOCAL),
            ("allow_public_key", MergePolicy.PREFER_LOCAL),
            ("password_recovery_email", MergePolicy.PIN_IF_SET),
            ("local_user_account", MergePolicy.PIN_IF_SET),
            ("delegated_authority", MergePolicy.PIN_IF_SET),
            ("password_authority", MergePolicy.PIN_IF_SET),
            ("firstname", MergePolicy.PREFER_REMOTE),
            ("account_locked", MergePolicy.PREFER_REMOTE),
        ],
    )
    def test_policies(self, name: str, policy: MergePolicy) -> None:
        assert FIELD_POLICIES[name].policy == policy


class TestMerge:
    """Tests for merge()."""

    def test_echo_unstable_flag_prefers_local(self) -> None:
        """Test that a server-substituted default does not override the local value."""
        local = DesiredState({"password_never_expires": True, "allow_public_key": False})

        merged = merge(local, remote(password_never_expires=False, allow_public_key=True))

        assert merged["password_never_expires"] is True
        assert merged["allow_public_key"] is False

    def test_unset_flag_takes_server_value(self) -> None:
        merged = merge(DesiredState(), remote(externally_managed=True))

        assert merged["externally_managed"] is True

    def test_alias_group_keeps_held_names(self) -> None:
        """Test that held alias names are kept and no other name is introduced."""
        merged = merge(DesiredState({"sudo": True}), remote(sudo=False))

        assert merged["sudo"] is True
        assert not merged.is_set("enable_global_admin_sudo")

    def test_alias_group_adopts_server_under_current_name(self) -> None:
        merged = merge(DesiredState(), remote(enable_user_portal_multifactor=True))

        assert merged["require_mfa"] is True
        assert not merged.is_set("mfa_enabled")

    def test_pinned_fields_keep_local(self) -> None:
        local = DesiredState(
            {
                "password_recovery_email": "r@example.com",
                "local_user_account": "alice.local",
                "password_authority": "Scim",
            }
        )

        merged = merge(local, remote(systemUsername="", recoveryEmail=None))

        assert merged["password_recovery_email"] == "r@example.com"
        assert merged["local_user_account"] == "alice.local"
        assert merged["password_authority"] == "Scim"

    def test_pinned_fields_adopt_server_once(self) -> None:
        user = remote(
            systemUsername="alice.srv",
            recoveryEmail={"address": "srv@example.com"},
            delegatedAuthority={"name": "ActiveDirectory"},
            passwordAuthority=None,
            restrictedFields=[{"field": "password", "type": "scim", "id": None}],
        )

        merged = merge(DesiredState(), user)

        assert merged["local_user_account"] == "alice.srv"
        assert merged["password_recovery_email"] == "srv@example.com"
        assert merged["delegated_authority"] == "ActiveDirectory"
        assert merged["password_authority"] == "Scim"

    def test_password_kept_but_never_invented(self) -> None:
        assert merge(DesiredState({"password": "x"}), remote())["password"] == "x"
        assert not merge(DesiredState(), remote()).is_set("password")

    def test_attribute_names_restored(self) -> None:
        """Test that sanitized names map back to the locally held originals."""
        local = DesiredState({"attributes": {"cost-center": "42"}})
        user = remote(
            attributes=[{"name": "costcenter", "value": "42"}, {"name": "extra", "value": "1"}]
        )

        merged = merge(local, user)

        assert merged["attributes"] == {"cost-center": "42", "extra": "1"}

    def test_phone_formatting_restored(self) -> None:
        """Test that local formatting survives when the digits match."""
        local = DesiredState(
            {
                "phone_numbers": [
                    {"type": "mobile", "number": "+1 (555) 123-4567"},
                    {"type": "work", "number": "555-0000"},
                ]
            }
        )
        user = remote(
            phoneNumbers=[
                {"type": "mobile", "number": "+15551234567"},
                {"type": "work", "number": "5559999"},
            ]
        )

        merged = merge(local, user)

        assert merged["phone_numbers"] == [
            {"type": "mobile", "number": "+1 (555) 123-4567"},
            {"type": "work", "number": "5559999"},
        ]

    def test_empty_server_lists_keep_local(self) -> None:
        local = DesiredState({"ssh_keys": [{"name": "k", "public_key": "ssh-ed25519 A"}]})

        merged = merge(local, remote(ssh_keys=[]))

        assert merged["ssh_keys"] == [{"name": "k", "public_key": "ssh-ed25519 A"}]

    def test_mfa_absent_unless_reported(self) -> None:
        merged = merge(DesiredState({"mfa": {"exclusion_days": 5}}), remote(mfa={}))

        assert not merged.is_set("mfa")

    def test_mfa_staged_echo(self, today: Callable[[], date]) -> None:
        """Test the staged create scenario: echoed exclusionDays merges unchanged."""
        local = DesiredState({"mfa": {"exclusion": True, "exclusion_days": 5}, "state": "STAGED"})
        user = remote(state="STAGED", mfa={"exclusion": True, "exclusionDays": 5})

        merged = merge(local, user, today=today)

        assert merged["mfa"] == {"exclusion": True, "exclusion_days": 5, "configured": False}

    def test_mfa_activated_echo(self, today: Callable[[], date]) -> None:
        local = DesiredState({"mfa": {"exclusion": True, "exclusion_days": 5}})
        user = remote(mfa={"exclusion": True, "exclusionUntil": "2024-03-06T00:00:00Z"})

        merged = merge(local, user, today=today)

        assert merged["mfa"]["exclusion_days"] == 5

    @pytest.mark.parametrize("manager", ["m1", {"_id": "m1"}])
    def test_manager_shapes(self, manager: object) -> None:
        assert merge(DesiredState(), remote(manager=manager))["manager_id"] == "m1"

    def test_computed_fields_from_server(self) -> None:
        merged = merge(
            DesiredState(), remote(account_locked=True, security_keys=[{"name": "yubikey"}])
        )

        assert merged["id"] == "u1"
        assert merged["account_locked"] is True
        assert merged["security_keys"] == [{"name": "yubikey"}]
        assert merged["state"] == "ACTIVATED"

    def test_unknown_server_state_keeps_local(self) -> None:
        merged = merge(DesiredState({"state": "SUSPENDED"}), remote(state="ARCHIVED"))

        assert merged["state"] == "SUSPENDED"


class TestStability:
    """Tests that merging twice produces no further differences."""

    def test_merge_is_stable(self, today: Callable[[], date]) -> None:
        local = DesiredState(
            {
                "username": "alice",
                "email": "alice@example.com",
                "password_never_expires": True,
                "sudo": True,
                "attributes": {"cost-center": "42"},
                "phone_numbers": [{"type": "mobile", "number": "+1 (555) 123-4567"}],
                "mfa": {"exclusion": True, "exclusion_days": 5},
                "password_authority": "Scim",
            }
        )
        user = remote(
            password_never_expires=False,
            attributes=[{"name": "costcenter", "value": "42"}],
            phoneNumbers=[{"type": "mobile", "number": "+15551234567"}],
            mfa={"exclusion": True, "exclusionUntil": "2024-03-06T00:00:00Z"},
            manager={"_id": "m1"},
            systemUsername="alice.srv",
        )

        once = merge(local, user, today=today)
        twice = merge(once, user, today=today)

        assert twice == once
