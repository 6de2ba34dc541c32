"""Polymorphic wire encoding for authority fields.

The API models delegated and password authority as an object, not a
string: an Active Directory authority is referenced by name, every other
authority by id, and a SCIM password authority is not sent on the
authority field at all but as a restricted-field marker on ``password``.

Unrecognized values deliberately degrade to an id reference instead of
failing. Keeping that policy in ``encode()`` means it can be tightened in
one place.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

NONE_LITERAL = "None"
ACTIVE_DIRECTORY = "ActiveDirectory"
SCIM = "Scim"

SCIM_RESTRICTED_FIELDS: tuple[dict[str, Any], ...] = (
    {"field": "password", "type": "scim", "id": None},
)


@dataclass(frozen=True)
class Unset:
    """No authority: the field is omitted (sent as null)."""

    def to_wire(self) -> dict[str, str] | None:
        return None


@dataclass(frozen=True)
class NamedReference:
    """Authority referenced by name."""

    name: str

    def to_wire(self) -> dict[str, str] | None:
        return {"name": self.name}


@dataclass(frozen=True)
class IdReference:
    """Authority referenced by id."""

    id: str

    def to_wire(self) -> dict[str, str] | None:
        return {"id": self.id}


@dataclass(frozen=True)
class ScimAuthority:
    """SCIM-managed password: nothing on the authority field, plus markers."""

    def to_wire(self) -> dict[str, str] | None:
        return None

    def restricted_fields(self) -> list[dict[str, Any]]:
        return [dict(marker) for marker in SCIM_RESTRICTED_FIELDS]


AuthorityValue = Unset | NamedReference | IdReference | ScimAuthority


def encode(raw_value: str | None) -> AuthorityValue:
    """Convert a raw authority string into its tagged wire value.

    Args:
        raw_value: Authority as written in the desired state.

    Returns:
        The tagged authority value. This function never fails.
    """
    if not raw_value or raw_value == NONE_LITERAL:
        return Unset()
    if raw_value == ACTIVE_DIRECTORY:
        return NamedReference(raw_value)
    if raw_value == SCIM:
        return ScimAuthority()
    return IdReference(raw_value)


def decode(wire_value: Any, restricted_fields: list[dict[str, Any]] | None = None) -> str:
    """Convert a server-reported authority back into its raw string.

    Args:
        wire_value: The authority object (or bare string) from the server.
        restricted_fields: Restricted-field markers, if the server echoed them.

    Returns:
        The raw authority string, or "" when unset.
    """
    if isinstance(wire_value, dict):
        return str(wire_value.get("name") or wire_value.get("id") or "")
    if isinstance(wire_value, str) and wire_value != NONE_LITERAL:
        return wire_value
    for marker in restricted_fields or []:
        if marker.get("field") == "password" and str(marker.get("type", "")).lower() == "scim":
            return SCIM
    return ""
