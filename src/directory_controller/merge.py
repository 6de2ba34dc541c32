"""Read reconciler: merge a server read back into local state.

The server is authoritative for most fields, but not all of them:

- Several booleans are echoed unreliably (the server substitutes its own
  defaults), so an explicitly held local value wins.
- Pinned fields are not echoed at all, or only partially; the local value
  wins when it was ever set, otherwise the server's value is adopted once.
- Attribute names and phone numbers go through lossy transforms on write;
  the local spelling is restored whenever the round trip preserved it.

Every decision is driven by FIELD_POLICIES so the policy can be audited
without reading the merge routine. The merge is stable: feeding its output
back in as the local state with the same server read changes nothing.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from . import authority
from .aliases import (
    ALIAS_GROUPS,
    DEVICE_LOCKOUT_BYPASS,
    GLOBAL_ADMIN_SUDO,
    MANAGED_UID,
    PASSWORDLESS_SUDO,
    REQUIRE_MFA,
    AliasGroup,
)
from .compiler import sanitize_attribute_name, sanitize_phone_number
from .desired import DesiredState
from .lifecycle import PlanValidationError, UserState
from .mfa import Clock, decode as decode_mfa, utc_today
from .models import RemoteUser

logger = logging.getLogger(__name__)


class MergePolicy(str, Enum):
    """How a conflict between local and server values is resolved."""

    # Server value always
    PREFER_REMOTE = "prefer-remote"
    # Local value when explicitly present, else server value
    PREFER_LOCAL = "prefer-local"
    # Local value when present and non-empty, else server value
    PIN_IF_SET = "pin-if-set"


@dataclass(frozen=True)
class MergeRule:
    """Resolution policy and server-side source of one logical field."""

    policy: MergePolicy
    remote: Callable[[RemoteUser], Any]


def _attr(name: str) -> Callable[[RemoteUser], Any]:
    return lambda user: getattr(user, name)


def _recovery_email(user: RemoteUser) -> str:
    return user.recovery_email.address if user.recovery_email else ""


def _delegated_authority(user: RemoteUser) -> str:
    return authority.decode(user.delegated_authority)


def _password_authority(user: RemoteUser) -> str:
    return authority.decode(user.password_authority, user.restricted_fields)


_PROFILE = (
    "username",
    "email",
    "firstname",
    "lastname",
    "middlename",
    "description",
    "displayname",
    "alternate_email",
    "company",
    "cost_center",
    "department",
    "employee_identifier",
    "employee_type",
    "job_title",
    "location",
    "managed_apple_id",
    "unix_uid",
    "unix_guid",
    "activation_scheduled",
    "scheduled_activation_date",
)

_ECHO_UNSTABLE_FLAGS = (
    "password_never_expires",
    "ldap_binding_user",
    "externally_managed",
    "samba_service_user",
    "suspended",
    "allow_public_key",
)

# Server-computed, read-only
COMPUTED_FIELDS = (
    "id",
    "activated",
    "account_locked",
    "password_expired",
    "totp_enabled",
    "created",
    "password_date",
    "password_expiration_date",
)

FIELD_POLICIES: dict[str, MergeRule] = {
    **{name: MergeRule(MergePolicy.PREFER_REMOTE, _attr(name)) for name in _PROFILE},
    **{name: MergeRule(MergePolicy.PREFER_REMOTE, _attr(name)) for name in COMPUTED_FIELDS},
    **{name: MergeRule(MergePolicy.PREFER_LOCAL, _attr(name)) for name in _ECHO_UNSTABLE_FLAGS},
    "password_recovery_email": MergeRule(MergePolicy.PIN_IF_SET, _recovery_email),
    "local_user_account": MergeRule(MergePolicy.PIN_IF_SET, _attr("system_username")),
    "delegated_authority": MergeRule(MergePolicy.PIN_IF_SET, _delegated_authority),
    "password_authority": MergeRule(MergePolicy.PIN_IF_SET, _password_authority),
    # Write-only: never echoed
    "password": MergeRule(MergePolicy.PIN_IF_SET, lambda user: ""),
}

# Alias groups are echo-unstable as a whole; the server reports one flag
ALIAS_GROUP_SOURCES: dict[AliasGroup, str] = {
    REQUIRE_MFA: "enable_user_portal_multifactor",
    GLOBAL_ADMIN_SUDO: "sudo",
    PASSWORDLESS_SUDO: "passwordless_sudo",
    MANAGED_UID: "enable_managed_uid",
    DEVICE_LOCKOUT_BYPASS: "disable_device_max_login_attempts",
}


def resolve_field(rule: MergeRule, local: DesiredState, name: str, remote: RemoteUser) -> Any:
    """Apply one merge rule. Returns the reconciled value."""
    if rule.policy == MergePolicy.PREFER_LOCAL and local.is_set(name):
        return local[name]
    if rule.policy == MergePolicy.PIN_IF_SET and local.is_set(name) and local[name]:
        return local[name]
    return rule.remote(remote)


def merge(
    local: DesiredState,
    remote: RemoteUser,
    *,
    today: Clock = utc_today,
) -> DesiredState:
    """Merge a server read into local state.

    Args:
        local: Locally held state (the desired state, or a previous merge).
        remote: The entity as just read from the server.
        today: Clock for MFA exclusion decoding.

    Returns:
        The reconciled state.
    """
    merged: dict[str, Any] = {}

    for name, rule in FIELD_POLICIES.items():
        value = resolve_field(rule, local, name, remote)
        # Never materialize an empty password
        if name == "password" and not value:
            continue
        merged[name] = value

    for group in ALIAS_GROUPS:
        merged.update(_merge_alias_group(group, local, remote))

    state = _remote_state(remote)
    if state is not None:
        merged["state"] = state.value
    elif local.is_set("state"):
        merged["state"] = local["state"]

    if remote.manager:
        merged["manager_id"] = remote.manager
    elif local.is_set("manager_id"):
        merged["manager_id"] = local["manager_id"]

    _merge_list(merged, "attributes", local, _merge_attributes(local, remote))
    _merge_list(merged, "addresses", local, [_address(a) for a in remote.addresses])
    _merge_list(merged, "phone_numbers", local, _merge_phone_numbers(local, remote))
    _merge_list(
        merged,
        "ssh_keys",
        local,
        [{"name": k.name, "public_key": k.public_key} for k in remote.ssh_keys],
    )
    merged["security_keys"] = [{"name": k.name} for k in remote.security_keys]

    mfa = _merge_mfa(local, remote, state, today)
    if mfa is not None:
        merged["mfa"] = mfa

    logger.debug(
        "Merged server read into local state",
        extra={"user_id": remote.id, "state": merged.get("state")},
    )
    return DesiredState(merged)


def _remote_state(remote: RemoteUser) -> UserState | None:
    try:
        return UserState.parse(remote.state)
    except PlanValidationError:
        logger.warning(
            "Ignoring unknown state reported by server",
            extra={"user_id": remote.id, "state": remote.state},
        )
        return None


def _merge_alias_group(
    group: AliasGroup, local: DesiredState, remote: RemoteUser
) -> dict[str, Any]:
    held = {name: local[name] for name in group.names if local.is_set(name)}
    if held:
        return held
    return {group.current: bool(getattr(remote, ALIAS_GROUP_SOURCES[group]))}


def _merge_list(merged: dict[str, Any], name: str, local: DesiredState, remote_value: Any) -> None:
    # An empty server list never clears a locally held one
    if remote_value:
        merged[name] = remote_value
    elif local.is_set(name):
        merged[name] = local[name]


def _merge_attributes(local: DesiredState, remote: RemoteUser) -> dict[str, str]:
    originals = {sanitize_attribute_name(name): name for name in local.value("attributes") or {}}
    return {originals.get(attr.name, attr.name): attr.value for attr in remote.attributes}


def _merge_phone_numbers(local: DesiredState, remote: RemoteUser) -> list[dict[str, str]]:
    held = {
        phone.get("type", ""): phone.get("number", "")
        for phone in local.value("phone_numbers") or []
    }
    phones = []
    for phone in remote.phone_numbers:
        original = held.get(phone.type)
        if original is not None and sanitize_phone_number(original) == sanitize_phone_number(
            phone.number
        ):
            number = original
        else:
            number = phone.number
        phones.append({"type": phone.type, "number": number})
    return phones


def _address(address: Any) -> dict[str, str]:
    return {
        "type": address.type,
        "po_box": address.po_box,
        "extended_address": address.extended_address,
        "street_address": address.street_address,
        "locality": address.locality,
        "region": address.region,
        "postal_code": address.postal_code,
        "country": address.country,
    }


def _merge_mfa(
    local: DesiredState,
    remote: RemoteUser,
    state: UserState | None,
    today: Clock,
) -> dict[str, Any] | None:
    if not (remote.mfa.exclusion or remote.mfa.configured):
        return None
    pinned = (local.value("mfa") or {}).get("exclusion_days") or None
    return {
        "exclusion": remote.mfa.exclusion,
        "exclusion_days": decode_mfa(remote.mfa, state, pinned_days=pinned, today=today),
        "configured": remote.mfa.configured,
    }
