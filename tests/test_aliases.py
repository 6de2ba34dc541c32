"""Tests for alias group resolution."""

import pytest

from directory_controller.aliases import (
    ALIAS_GROUPS,
    DEPRECATED_FIELDS,
    GLOBAL_ADMIN_SUDO,
    REQUIRE_MFA,
    deprecated_fields_in_use,
    resolve,
)
from directory_controller.desired import DesiredState


class TestResolve:
    """Tests for presence-ordered resolution."""

    @pytest.mark.parametrize("group", ALIAS_GROUPS, ids=lambda g: g.current)
    def test_explicit_false_on_current_wins(self, group) -> None:
        """Test that an explicit false on the current name beats a true alias."""
        fields = {name: True for name in group.deprecated}
        fields[group.current] = False

        assert resolve(DesiredState(fields), group) is False

    def test_first_present_alias_wins(self) -> None:
        """Test that order among deprecated aliases is respected."""
        desired = DesiredState({"mfa_enabled": False, "enable_user_portal_multifactor": True})

        assert resolve(desired, REQUIRE_MFA) is False

    def test_deprecated_used_when_current_absent(self) -> None:
        """Test that a deprecated alias supplies the value alone."""
        assert resolve(DesiredState({"sudo": True}), GLOBAL_ADMIN_SUDO) is True

    def test_none_present_gives_zero_value(self) -> None:
        """Test that absence is not an error."""
        assert resolve(DesiredState(), GLOBAL_ADMIN_SUDO) is False

    def test_plain_name_list(self) -> None:
        """Test that a plain list of names works like a group."""
        desired = DesiredState({"b": "second"})

        assert resolve(desired, ["a", "b"]) == "second"


class TestDeprecatedFields:
    """Tests for deprecated name reporting."""

    def test_mapping_points_to_current(self) -> None:
        """Test that every deprecated name maps to its replacement."""
        assert DEPRECATED_FIELDS["mfa_enabled"] == "require_mfa"
        assert DEPRECATED_FIELDS["disable_device_max_login_attempts"] == (
            "bypass_managed_device_lockout"
        )
        assert "require_mfa" not in DEPRECATED_FIELDS

    def test_in_use(self) -> None:
        """Test that explicitly present deprecated names are reported."""
        desired = DesiredState({"sudo": True, "require_mfa": True})

        assert deprecated_fields_in_use(desired) == [("sudo", "enable_global_admin_sudo")]
