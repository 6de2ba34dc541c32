"""Pydantic models for user spec documents and the directory wire format.

These models provide:
1. Type-safe YAML parsing of desired user state
2. Validation at the boundary (fail fast, fail loudly)
3. Tolerant parsing of server responses into a canonical remote entity
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Annotated, Any

from pydantic import BaseModel, Field, ValidationInfo, field_validator

if TYPE_CHECKING:
    from .desired import DesiredState

VALID_STATES = ("STAGED", "ACTIVATED", "SUSPENDED")

# =============================================================================
# Desired State Documents
# =============================================================================


class AddressSpec(BaseModel):
    """Postal address attached to a user."""

    model_config = {"extra": "ignore"}

    type: str = ""
    po_box: str = ""
    extended_address: str = ""
    street_address: str = ""
    locality: str = ""
    region: str = ""
    postal_code: str = ""
    country: str = ""


class PhoneNumberSpec(BaseModel):
    """Phone number attached to a user."""

    model_config = {"extra": "ignore"}

    type: str = ""
    number: Annotated[str, Field(min_length=1)]


class SSHKeySpec(BaseModel):
    """Public SSH key attached to a user."""

    model_config = {"extra": "ignore"}

    name: Annotated[str, Field(min_length=1)]
    public_key: Annotated[str, Field(min_length=1)]


class MFASpec(BaseModel):
    """MFA exclusion policy as authored.

    exclusion_days is relative; the wire representation depends on the
    user's lifecycle state (see directory_controller.mfa).
    """

    model_config = {"extra": "ignore"}

    exclusion: bool = False
    exclusion_days: Annotated[int, Field(ge=1)] | None = None
    configured: bool = False


class UserSpec(BaseModel):
    """Desired state of one directory user.

    Field names are the logical names used throughout the controller.
    Deprecated names are still accepted; see directory_controller.aliases.
    """

    model_config = {"extra": "forbid"}

    # Identity
    username: Annotated[str, Field(min_length=1)]
    email: Annotated[str, Field(min_length=1)]
    firstname: str = ""
    lastname: str = ""
    middlename: str = ""
    password: str = ""
    description: str = ""
    displayname: str = ""

    # Profile
    alternate_email: str = ""
    company: str = ""
    cost_center: str = ""
    department: str = ""
    employee_identifier: str = ""
    employee_type: str = ""
    job_title: str = ""
    location: str = ""
    managed_apple_id: str = ""
    manager_id: str = ""
    attributes: dict[str, str] = Field(default_factory=dict)

    # Flags (current names)
    require_mfa: bool = False
    password_never_expires: bool = False
    externally_managed: bool = False
    ldap_binding_user: bool = False
    samba_service_user: bool = False
    enable_global_admin_sudo: bool = False
    global_passwordless_sudo: bool = False
    enforce_uid_gid_consistency: bool = False
    bypass_managed_device_lockout: bool = False
    suspended: bool = False
    allow_public_key: bool = True
    activation_scheduled: bool = False

    # Flags (deprecated names)
    mfa_enabled: bool = False
    enable_user_portal_multifactor: bool = False
    sudo: bool = False
    passwordless_sudo: bool = False
    enable_managed_uid: bool = False
    disable_device_max_login_attempts: bool = False

    # Unix identity
    unix_uid: int | None = None
    unix_guid: int | None = None

    # Fields the API does not echo reliably
    password_recovery_email: str = ""
    local_user_account: str = ""
    delegated_authority: str = ""
    password_authority: str = ""

    # Nested records
    addresses: list[AddressSpec] = Field(default_factory=list)
    phone_numbers: list[PhoneNumberSpec] = Field(default_factory=list)
    ssh_keys: list[SSHKeySpec] = Field(default_factory=list)
    mfa: MFASpec | None = None

    # Lifecycle
    state: str | None = None
    scheduled_activation_date: str = ""

    @field_validator("state")
    @classmethod
    def validate_state(cls, v: str | None) -> str | None:
        if v is None:
            return v
        normalized = v.strip().upper()
        if normalized not in VALID_STATES:
            raise ValueError(f"state must be one of {list(VALID_STATES)} (case insensitive)")
        return normalized

    @field_validator("scheduled_activation_date")
    @classmethod
    def validate_activation_date(cls, v: str) -> str:
        if v:
            try:
                datetime.fromisoformat(v)
            except ValueError as e:
                raise ValueError(f"scheduled_activation_date must be ISO 8601: {v}") from e
        return v

    @field_validator("unix_uid", "unix_guid", mode="before")
    @classmethod
    def coerce_unix_ids(cls, v: Any) -> Any:
        # Numeric strings and floats are common in hand-written YAML
        if isinstance(v, float):
            return int(v)
        if isinstance(v, str) and v.strip().isdigit():
            return int(v.strip())
        return v

    def to_desired_state(self) -> DesiredState:
        """Convert to a DesiredState holding only explicitly present fields."""
        from .desired import DesiredState

        return DesiredState(self.model_dump(mode="json", exclude_unset=True))


def _field_defaults() -> dict[str, Any]:
    defaults: dict[str, Any] = {}
    for name, info in UserSpec.model_fields.items():
        if info.is_required():
            defaults[name] = ""
        else:
            defaults[name] = info.get_default(call_default_factory=True)
    return defaults


# Zero value of every logical field, used when a field is not present
FIELD_DEFAULTS: dict[str, Any] = _field_defaults()


# =============================================================================
# Wire Representation
# =============================================================================


class WireModel(BaseModel):
    """Base for server payloads: unknown keys ignored, null means default."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    @field_validator("*", mode="before")
    @classmethod
    def null_to_default(cls, v: Any, info: ValidationInfo) -> Any:
        if v is None and info.field_name is not None:
            field = cls.model_fields[info.field_name]
            if not field.is_required():
                return field.get_default(call_default_factory=True)
        return v


class RemoteAttribute(WireModel):
    name: str = ""
    value: str = ""

    @field_validator("value", mode="before")
    @classmethod
    def stringify(cls, v: Any) -> Any:
        if isinstance(v, bool):
            return "true" if v else "false"
        if isinstance(v, (int, float)):
            return str(v)
        return v


class RemoteAddress(WireModel):
    type: str = ""
    po_box: str = Field("", alias="poBox")
    extended_address: str = Field("", alias="extendedAddress")
    street_address: str = Field("", alias="streetAddress")
    locality: str = ""
    region: str = ""
    postal_code: str = Field("", alias="postalCode")
    country: str = ""


class RemotePhoneNumber(WireModel):
    type: str = ""
    number: str = ""


class RemoteSSHKey(WireModel):
    name: str = ""
    public_key: str = ""


class RemoteSecurityKey(WireModel):
    name: str = ""


class RemoteMFA(WireModel):
    exclusion: bool = False
    exclusion_days: int | None = Field(None, alias="exclusionDays")
    exclusion_until: str | None = Field(None, alias="exclusionUntil")
    configured: bool = False


class RemoteRecoveryEmail(WireModel):
    address: str = ""


class RemoteUser(WireModel):
    """Canonical server-side representation of a user.

    The manager reference arrives either as a bare id or as an object
    carrying the id; both decode to the same ``manager`` string.
    """

    id: str = Field("", alias="_id")
    username: str = ""
    email: str = ""
    firstname: str = ""
    lastname: str = ""
    middlename: str = ""
    description: str = ""
    displayname: str = ""
    attributes: list[RemoteAttribute] = Field(default_factory=list)

    alternate_email: str = Field("", alias="alternateEmail")
    company: str = ""
    cost_center: str = Field("", alias="costCenter")
    department: str = ""
    employee_identifier: str = Field("", alias="employeeIdentifier")
    employee_type: str = Field("", alias="employeeType")
    job_title: str = Field("", alias="jobTitle")
    location: str = ""
    managed_apple_id: str = Field("", alias="managedAppleId")
    manager: str = ""

    password_never_expires: bool = False
    enable_managed_uid: bool = False
    enable_user_portal_multifactor: bool = False
    externally_managed: bool = False
    ldap_binding_user: bool = False
    passwordless_sudo: bool = False
    samba_service_user: bool = False
    sudo: bool = False
    suspended: bool = False
    disable_device_max_login_attempts: bool = Field(False, alias="disableDeviceMaxLoginAttempts")
    allow_public_key: bool = False
    activation_scheduled: bool = False
    scheduled_activation_date: str = ""

    # Server-computed
    activated: bool = False
    account_locked: bool = False
    password_expired: bool = False
    totp_enabled: bool = False
    created: str = ""
    password_date: str = ""
    password_expiration_date: str = ""

    unix_uid: int = 0
    unix_guid: int = 0
    state: str = ""
    system_username: str = Field("", alias="systemUsername")
    recovery_email: RemoteRecoveryEmail | None = Field(None, alias="recoveryEmail")
    delegated_authority: Any = Field(None, alias="delegatedAuthority")
    password_authority: Any = Field(None, alias="passwordAuthority")
    restricted_fields: list[dict[str, Any]] = Field(default_factory=list, alias="restrictedFields")

    addresses: list[RemoteAddress] = Field(default_factory=list)
    phone_numbers: list[RemotePhoneNumber] = Field(default_factory=list, alias="phoneNumbers")
    ssh_keys: list[RemoteSSHKey] = Field(default_factory=list)
    security_keys: list[RemoteSecurityKey] = Field(default_factory=list)
    mfa: RemoteMFA = Field(default_factory=RemoteMFA)

    @field_validator("manager", mode="before")
    @classmethod
    def decode_manager(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return v.get("_id") or v.get("id") or ""
        return v

    @field_validator("state")
    @classmethod
    def normalize_state(cls, v: str) -> str:
        return v.upper()
