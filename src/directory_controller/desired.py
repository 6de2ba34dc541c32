"""Presence-aware mapping of logical user fields.

A DesiredState answers two different questions about a field: whether it
was explicitly present at all, and what its value is. The distinction is
what lets an explicit ``False`` win over a deprecated alias, and what lets
pinned fields fall back to the server's value only when never set.

The same type carries the reconciled state produced by a read-merge, so a
merge result can be fed back in as the next pass's local state.
"""

from __future__ import annotations

import copy
from collections.abc import Iterator, Mapping
from typing import Any

from .models import FIELD_DEFAULTS


class DesiredState(Mapping[str, Any]):
    """Immutable mapping of logical field name to value.

    Only explicitly present fields are stored. ``value()`` falls back to the
    field's zero value for absent fields.
    """

    __slots__ = ("_fields",)

    def __init__(self, fields: Mapping[str, Any] | None = None) -> None:
        self._fields: dict[str, Any] = copy.deepcopy(dict(fields or {}))

    def __getitem__(self, name: str) -> Any:
        return self._fields[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._fields)

    def __len__(self) -> int:
        return len(self._fields)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, DesiredState):
            return self._fields == other._fields
        if isinstance(other, Mapping):
            return self._fields == dict(other)
        return NotImplemented

    def __repr__(self) -> str:
        shown = {k: ("***" if k == "password" and v else v) for k, v in self._fields.items()}
        return f"DesiredState({shown!r})"

    def is_set(self, name: str) -> bool:
        """Check whether a field was explicitly present."""
        return name in self._fields

    def value(self, name: str, default: Any = None) -> Any:
        """Get a field's value, or its zero value when absent.

        Args:
            name: Logical field name.
            default: Fallback for names with no known zero value.

        Returns:
            A deep copy of the stored value, or the zero value.
        """
        if name in self._fields:
            return copy.deepcopy(self._fields[name])
        return copy.deepcopy(FIELD_DEFAULTS.get(name, default))

    def replace(self, **updates: Any) -> DesiredState:
        """Create a copy with the given fields set."""
        merged = dict(self._fields)
        merged.update(updates)
        return DesiredState(merged)

    def without(self, *names: str) -> DesiredState:
        """Create a copy with the given fields removed."""
        return DesiredState({k: v for k, v in self._fields.items() if k not in names})

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dictionary for serialization."""
        return copy.deepcopy(self._fields)
