"""User lifecycle state machine.

States: STAGED (initial, only reachable by create), ACTIVATED, SUSPENDED.
Transitions are validated during planning, before any request is built,
so an illegal transition never leaves partial remote state behind.
"""

from __future__ import annotations

import logging
from enum import Enum

logger = logging.getLogger(__name__)


class PlanValidationError(Exception):
    """Raised when a desired state cannot be planned. No request was sent."""

    pass


class InvalidTransitionError(PlanValidationError):
    """Raised when a lifecycle transition is not in the transition table."""

    def __init__(self, from_state: UserState, to_state: UserState) -> None:
        allowed = sorted(s.value for s in ALLOWED_TRANSITIONS.get(from_state, frozenset()))
        super().__init__(
            f"cannot change user state from {from_state.value} to {to_state.value} - "
            f"allowed transitions from {from_state.value} are: {allowed}"
        )
        self.from_state = from_state
        self.to_state = to_state


class UserState(str, Enum):
    """Lifecycle states reported and accepted by the API."""

    STAGED = "STAGED"
    ACTIVATED = "ACTIVATED"
    SUSPENDED = "SUSPENDED"

    @classmethod
    def parse(cls, value: str | UserState | None) -> UserState | None:
        """Parse a state case-insensitively. Empty values mean unknown.

        Raises:
            PlanValidationError: If the value is not a known state.
        """
        if value is None or isinstance(value, UserState):
            return value
        normalized = value.strip().upper()
        if not normalized:
            return None
        try:
            return cls(normalized)
        except ValueError as e:
            valid = [s.value for s in cls]
            raise PlanValidationError(
                f"state must be one of {valid} (case insensitive), got: {value}"
            ) from e


ALLOWED_TRANSITIONS: dict[UserState, frozenset[UserState]] = {
    UserState.STAGED: frozenset({UserState.ACTIVATED, UserState.SUSPENDED}),
    UserState.ACTIVATED: frozenset({UserState.SUSPENDED}),
    UserState.SUSPENDED: frozenset({UserState.ACTIVATED}),
}


def is_allowed(from_state: UserState, to_state: UserState) -> bool:
    """Check a transition against the table. Self-transitions always pass."""
    if from_state == to_state:
        return True
    return to_state in ALLOWED_TRANSITIONS.get(from_state, frozenset())


def validate_transition(
    from_state: str | UserState | None,
    to_state: str | UserState | None,
) -> None:
    """Gate a requested state change.

    An unknown side (no prior state, or no requested state) is not a
    transition and always passes.

    Raises:
        InvalidTransitionError: If the transition is not allowed.
    """
    current = UserState.parse(from_state)
    target = UserState.parse(to_state)
    if current is None or target is None:
        return
    if not is_allowed(current, target):
        logger.warning(
            "Rejected lifecycle transition",
            extra={"from_state": current.value, "to_state": target.value},
        )
        raise InvalidTransitionError(current, target)
