"""Desired-state compiler.

Turns a DesiredState into the two request bodies the two-phase executor
sends: the primary full-resource body and the secondary body carrying the
fields the API drops when they are bundled with the rest of the object.

Pure value transforms only. Everything that can be rejected (unknown
state, malformed timestamp) is rejected here, before any request exists.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any

from . import authority
from .aliases import (
    DEVICE_LOCKOUT_BYPASS,
    GLOBAL_ADMIN_SUDO,
    MANAGED_UID,
    PASSWORDLESS_SUDO,
    REQUIRE_MFA,
    resolve,
)
from .desired import DesiredState
from .lifecycle import UserState
from .mfa import Clock, MFAPolicy, parse_timestamp, utc_today
from .mfa import encode as encode_mfa

logger = logging.getLogger(__name__)

_ATTRIBUTE_NAME_PATTERN = re.compile(r"[^a-zA-Z0-9]")
_PHONE_NUMBER_PATTERN = re.compile(r"[^0-9+]")

# (wire key, logical field) for plain profile strings, omitted when empty
PROFILE_FIELDS: tuple[tuple[str, str], ...] = (
    ("firstname", "firstname"),
    ("lastname", "lastname"),
    ("middlename", "middlename"),
    ("description", "description"),
    ("displayname", "displayname"),
    ("alternateEmail", "alternate_email"),
    ("company", "company"),
    ("costCenter", "cost_center"),
    ("department", "department"),
    ("employeeIdentifier", "employee_identifier"),
    ("employeeType", "employee_type"),
    ("jobTitle", "job_title"),
    ("location", "location"),
    ("managedAppleId", "managed_apple_id"),
    ("scheduled_activation_date", "scheduled_activation_date"),
)

# Flags the API accepts reliably in the primary body; always sent
PRIMARY_FLAGS: tuple[str, ...] = (
    "externally_managed",
    "samba_service_user",
    "suspended",
    "allow_public_key",
    "activation_scheduled",
)

# (wire key, logical field) for address sub-records
ADDRESS_FIELDS: tuple[tuple[str, str], ...] = (
    ("poBox", "po_box"),
    ("extendedAddress", "extended_address"),
    ("streetAddress", "street_address"),
    ("locality", "locality"),
    ("region", "region"),
    ("postalCode", "postal_code"),
    ("country", "country"),
)

# Wire keys that only ever travel in the secondary body
SECONDARY_FIELDS: tuple[str, ...] = (
    "recoveryEmail",
    "systemUsername",
    "password_never_expires",
    "disableDeviceMaxLoginAttempts",
    "enable_user_portal_multifactor",
    "sudo",
    "passwordless_sudo",
    "ldap_binding_user",
    "enable_managed_uid",
    "delegatedAuthority",
    "passwordAuthority",
    "restrictedFields",
)

# Logical fields compiled into a request even at their zero value, so
# removing one from a spec clears it remotely. Alias groups are always
# sent too, under their wire flag.
ALWAYS_SENT_FIELDS: tuple[str, ...] = PRIMARY_FLAGS + (
    "password_recovery_email",
    "local_user_account",
    "password_never_expires",
    "ldap_binding_user",
    "delegated_authority",
    "password_authority",
)


@dataclass(frozen=True)
class CompiledRequest:
    """Request bodies for one create or update.

    Attributes:
        primary: Full-resource body for the first write.
        secondary: Field-subset body for the second write.
        target_state: Lifecycle state the bodies were encoded for.
    """

    primary: dict[str, Any] = field(default_factory=dict)
    secondary: dict[str, Any] = field(default_factory=dict)
    target_state: UserState | None = None


def sanitize_attribute_name(name: str) -> str:
    """Reduce an attribute name to the alphanumeric form the API accepts."""
    return _ATTRIBUTE_NAME_PATTERN.sub("", name)


def sanitize_phone_number(number: str) -> str:
    """Strip formatting characters, keeping digits and a leading plus."""
    return _PHONE_NUMBER_PATTERN.sub("", number)


def format_manager_id(value: str) -> str:
    """Normalize a manager reference to a bare id.

    Surrounding quotes, braces and whitespace are removed and only the part
    after the last colon is kept, so ``{"_id": "abc"}`` becomes ``abc``.
    """
    manager_id = value.strip().strip("\"' {}")
    if ":" in manager_id:
        manager_id = manager_id.split(":")[-1].strip().strip("\"' {}")
    return manager_id


def format_attribute_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def ensure_int(value: Any) -> int:
    """Convert ints, floats and numeric strings; anything else is 0."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return 0
    return 0


def resolve_target_state(
    desired: DesiredState, prior_state: str | UserState | None = None
) -> UserState | None:
    """The requested state, falling back to the last-known state."""
    if desired.is_set("state"):
        requested = UserState.parse(desired["state"])
        if requested is not None:
            return requested
    return UserState.parse(prior_state)


def compile_desired_state(
    desired: DesiredState,
    *,
    prior_state: str | UserState | None = None,
    include_password: bool = True,
    today: Clock = utc_today,
) -> CompiledRequest:
    """Compile a desired state into primary and secondary request bodies.

    Args:
        desired: Desired state of the user.
        prior_state: Last-known lifecycle state. Used for MFA encoding when
            no state is requested; the state itself is then omitted.
        include_password: Whether to send the password (create, or changed).
        today: Clock for MFA expiry computation.

    Returns:
        The compiled request bodies.

    Raises:
        PlanValidationError: If the state is unknown.
        MalformedTimestampError: If a timestamp field is malformed.
    """
    target_state = resolve_target_state(desired, prior_state)

    activation_date = desired.value("scheduled_activation_date")
    if activation_date:
        parse_timestamp(activation_date)

    primary = _build_primary(desired, target_state, include_password, today)
    secondary = _build_secondary(desired)

    logger.debug(
        "Compiled desired state",
        extra={
            "username": desired.value("username"),
            "target_state": target_state.value if target_state else None,
            "primary_fields": sorted(primary),
        },
    )
    return CompiledRequest(primary=primary, secondary=secondary, target_state=target_state)


def _build_primary(
    desired: DesiredState,
    target_state: UserState | None,
    include_password: bool,
    today: Clock,
) -> dict[str, Any]:
    primary: dict[str, Any] = {
        "username": desired.value("username"),
        "email": desired.value("email"),
    }

    for wire_key, name in PROFILE_FIELDS:
        value = desired.value(name)
        if value:
            primary[wire_key] = value

    for name in PRIMARY_FLAGS:
        primary[name] = bool(desired.value(name))

    password = desired.value("password")
    if include_password and password:
        primary["password"] = password

    for name in ("unix_uid", "unix_guid"):
        if desired.is_set(name):
            number = ensure_int(desired[name])
            if number > 0:
                primary[name] = number

    manager_id = desired.value("manager_id")
    if manager_id:
        primary["manager"] = format_manager_id(manager_id)

    attributes = _build_attributes(desired.value("attributes") or {})
    if attributes:
        primary["attributes"] = attributes

    addresses = [_build_address(address) for address in desired.value("addresses") or []]
    if addresses:
        primary["addresses"] = addresses

    phones = [
        {"type": phone.get("type", ""), "number": phone.get("number", "")}
        for phone in desired.value("phone_numbers") or []
    ]
    if phones:
        primary["phoneNumbers"] = phones

    keys = [
        {"name": key.get("name", ""), "public_key": key.get("public_key", "")}
        for key in desired.value("ssh_keys") or []
    ]
    if keys:
        primary["ssh_keys"] = keys

    if desired.value("mfa") is not None:
        mfa_block = encode_mfa(MFAPolicy.from_mapping(desired["mfa"]), target_state, today=today)
        if mfa_block is not None:
            primary["mfa"] = mfa_block

    # The last-known state only drives MFA encoding; it is never resent
    if desired.value("state") and target_state is not None:
        primary["state"] = target_state.value

    return primary


def _build_attributes(attributes: dict[str, Any]) -> list[dict[str, str]]:
    result: dict[str, dict[str, str]] = {}
    for name in sorted(attributes):
        sanitized = sanitize_attribute_name(name)
        if not sanitized:
            logger.warning(
                "Dropping attribute with no alphanumeric characters", extra={"attribute": name}
            )
            continue
        if sanitized in result:
            logger.warning(
                "Attribute names collide after sanitization",
                extra={"attribute": name, "sanitized": sanitized},
            )
        result[sanitized] = {"name": sanitized, "value": format_attribute_value(attributes[name])}
    return list(result.values())


def _build_address(address: dict[str, Any]) -> dict[str, str]:
    wire = {"type": address.get("type", "")}
    for wire_key, name in ADDRESS_FIELDS:
        value = address.get(name)
        if value:
            wire[wire_key] = value
    return wire


def _build_secondary(desired: DesiredState) -> dict[str, Any]:
    delegated = authority.encode(desired.value("delegated_authority"))
    password_authority = authority.encode(desired.value("password_authority"))
    restricted = (
        password_authority.restricted_fields()
        if isinstance(password_authority, authority.ScimAuthority)
        else None
    )

    return {
        "recoveryEmail": {"address": desired.value("password_recovery_email")},
        "systemUsername": desired.value("local_user_account"),
        "password_never_expires": bool(desired.value("password_never_expires")),
        "disableDeviceMaxLoginAttempts": bool(resolve(desired, DEVICE_LOCKOUT_BYPASS)),
        "enable_user_portal_multifactor": bool(resolve(desired, REQUIRE_MFA)),
        "sudo": bool(resolve(desired, GLOBAL_ADMIN_SUDO)),
        "passwordless_sudo": bool(resolve(desired, PASSWORDLESS_SUDO)),
        "ldap_binding_user": bool(desired.value("ldap_binding_user")),
        "enable_managed_uid": bool(resolve(desired, MANAGED_UID)),
        "delegatedAuthority": delegated.to_wire(),
        "passwordAuthority": password_authority.to_wire(),
        "restrictedFields": restricted,
    }
