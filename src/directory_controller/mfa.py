"""MFA exclusion transcoding between authored policy and wire format.

The API wants the exclusion window in a different shape per lifecycle
state:

- STAGED: ``exclusionDays`` (relative, stored as-is)
- ACTIVATED: ``exclusionUntil`` (absolute timestamp, computed here)
- SUSPENDED: no MFA block at all

The absolute expiry is computed with calendar-day arithmetic and
serialized as midnight UTC of the target date, so the same wall-clock day
always yields the same serialized value regardless of the time the
operation runs. "Today" comes from an injectable clock.

Decoding is the inverse used on read. The server counts the current day
as part of the window, so a freshly encoded value decodes to one day more
than was sent; when the previously pinned value is within that one-day
rounding window it is kept, which keeps re-applying the same desired
state a no-op.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from typing import Any

from .lifecycle import PlanValidationError, UserState
from .models import RemoteMFA

logger = logging.getLogger(__name__)

Clock = Callable[[], date]


class MalformedTimestampError(PlanValidationError):
    """Raised when a timestamp is not valid ISO 8601 / RFC 3339."""

    pass


def utc_today() -> date:
    """Default clock: the current UTC calendar date."""
    return datetime.now(UTC).date()


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO 8601 timestamp.

    Raises:
        MalformedTimestampError: If the value cannot be parsed.
    """
    try:
        return datetime.fromisoformat(value.strip())
    except (AttributeError, ValueError) as e:
        raise MalformedTimestampError(f"Malformed timestamp: {value!r}") from e


def format_exclusion_until(target: date) -> str:
    """Serialize a target date as an RFC 3339 timestamp at midnight UTC."""
    return datetime(target.year, target.month, target.day, tzinfo=UTC).isoformat().replace(
        "+00:00", "Z"
    )


@dataclass(frozen=True)
class MFAPolicy:
    """MFA exclusion policy as authored.

    Attributes:
        exclusion: Whether the user is excluded from MFA requirements.
        exclusion_days: Length of the exclusion window in days (>= 1).
        configured: Whether MFA is configured for the user.
    """

    exclusion: bool = False
    exclusion_days: int | None = None
    configured: bool = False

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> MFAPolicy:
        data = data or {}
        days = data.get("exclusion_days")
        return cls(
            exclusion=bool(data.get("exclusion", False)),
            exclusion_days=int(days) if days else None,
            configured=bool(data.get("configured", False)),
        )

    def to_mapping(self) -> dict[str, Any]:
        return {
            "exclusion": self.exclusion,
            "exclusion_days": self.exclusion_days or 0,
            "configured": self.configured,
        }


def encode(
    policy: MFAPolicy,
    state: UserState | None,
    *,
    today: Clock = utc_today,
) -> dict[str, Any] | None:
    """Build the wire MFA block for a lifecycle state.

    Args:
        policy: Authored MFA policy.
        state: Target lifecycle state. Unknown is encoded as STAGED.
        today: Clock returning the current calendar date.

    Returns:
        The wire block, or None when it must be omitted (SUSPENDED).
    """
    if state == UserState.SUSPENDED:
        logger.debug("MFA: omitting MFA block for SUSPENDED user")
        return None

    wire: dict[str, Any] = {"exclusion": policy.exclusion, "configured": policy.configured}
    days = policy.exclusion_days
    if not days or days < 1:
        return wire

    if state == UserState.ACTIVATED:
        wire["exclusionUntil"] = format_exclusion_until(today() + timedelta(days=days))
        logger.debug(
            "MFA: converted exclusion days to exclusionUntil for ACTIVATED user",
            extra={"exclusion_days": days, "exclusion_until": wire["exclusionUntil"]},
        )
    else:
        wire["exclusionDays"] = days
        logger.debug(
            "MFA: using exclusionDays for STAGED user", extra={"exclusion_days": days}
        )
    return wire


def decode(
    wire: RemoteMFA,
    state: UserState | None,
    *,
    pinned_days: int | None = None,
    today: Clock = utc_today,
) -> int | None:
    """Reconstruct ``exclusion_days`` from a server-reported MFA block.

    Args:
        wire: MFA block as returned by the server.
        state: Lifecycle state reported alongside it.
        pinned_days: Previously held exclusion_days, if any.
        today: Clock returning the current calendar date.

    Returns:
        The exclusion window in days, or the pinned value when the server
        reported nothing usable.
    """
    if wire.exclusion_days and wire.exclusion_days > 0:
        return wire.exclusion_days

    if state == UserState.ACTIVATED and wire.exclusion_until:
        try:
            until = parse_timestamp(wire.exclusion_until).date()
        except MalformedTimestampError:
            logger.warning(
                "Ignoring malformed exclusionUntil from server",
                extra={"exclusion_until": wire.exclusion_until},
            )
            return pinned_days

        remaining = (until - today()).days
        if remaining < 0:
            return pinned_days
        if pinned_days is not None and remaining <= pinned_days <= remaining + 1:
            return pinned_days
        return remaining + 1

    return pinned_days
