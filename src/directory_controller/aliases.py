"""Alias groups for deprecated and replacement field names.

Several logical concepts can be supplied under a current name or one or
more deprecated names. The effective value is the value of the first name
in the group that is explicitly present, so an explicit ``False`` under the
current name wins over ``True`` under a deprecated alias.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .desired import DesiredState


@dataclass(frozen=True)
class AliasGroup:
    """Logical field names denoting one concept, ranked by precedence.

    Attributes:
        names: Current name first, deprecated aliases after.
    """

    names: tuple[str, ...]

    @property
    def current(self) -> str:
        return self.names[0]

    @property
    def deprecated(self) -> tuple[str, ...]:
        return self.names[1:]


REQUIRE_MFA = AliasGroup(("require_mfa", "mfa_enabled", "enable_user_portal_multifactor"))
GLOBAL_ADMIN_SUDO = AliasGroup(("enable_global_admin_sudo", "sudo"))
PASSWORDLESS_SUDO = AliasGroup(("global_passwordless_sudo", "passwordless_sudo"))
MANAGED_UID = AliasGroup(("enforce_uid_gid_consistency", "enable_managed_uid"))
DEVICE_LOCKOUT_BYPASS = AliasGroup(
    ("bypass_managed_device_lockout", "disable_device_max_login_attempts")
)

ALIAS_GROUPS: tuple[AliasGroup, ...] = (
    REQUIRE_MFA,
    GLOBAL_ADMIN_SUDO,
    PASSWORDLESS_SUDO,
    MANAGED_UID,
    DEVICE_LOCKOUT_BYPASS,
)

DEPRECATED_FIELDS: dict[str, str] = {
    alias: group.current for group in ALIAS_GROUPS for alias in group.deprecated
}


def resolve(desired: DesiredState, names: AliasGroup | tuple[str, ...] | list[str]) -> Any:
    """Pick the effective value for an aliased logical field.

    Args:
        desired: Desired state to read from.
        names: Ordered field names, current name first.

    Returns:
        The value of the first explicitly present name, or the zero value
        of the current name when none is present.
    """
    ordered = names.names if isinstance(names, AliasGroup) else tuple(names)
    for name in ordered:
        if desired.is_set(name):
            return desired[name]
    return desired.value(ordered[0], False)


def deprecated_fields_in_use(desired: DesiredState) -> list[tuple[str, str]]:
    """List (deprecated, replacement) pairs explicitly present in a desired state."""
    return [
        (alias, current)
        for alias, current in DEPRECATED_FIELDS.items()
        if desired.is_set(alias)
    ]
