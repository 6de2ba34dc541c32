"""User reconciliation: plan, write, read back, merge.

One pass for one user:
1. Plan: gate the lifecycle transition and compile the request bodies.
   Nothing is sent if planning fails.
2. Write: the two-phase executor sends the primary and secondary bodies.
3. Read back and merge: the server's answer is merged into the desired
   state, producing the state the caller persists for the next pass.

The reconciler holds no state between calls. The caller owns persistence
of the merged state and guarantees one pass per user at a time.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from .aliases import ALIAS_GROUPS, DEPRECATED_FIELDS, resolve
from .compiler import (
    ALWAYS_SENT_FIELDS,
    CompiledRequest,
    compile_desired_state,
    format_manager_id,
)
from .deletion import DeletionPreconditioner
from .desired import DesiredState
from .executor import SecondaryWriteError, TwoPhaseExecutor, WriteResult
from .lifecycle import validate_transition
from .merge import merge
from .mfa import Clock, MFAPolicy, utc_today
from .models import AddressSpec, RemoteUser
from .transport import NotFoundError, Transport

logger = logging.getLogger(__name__)


class Operation(str, Enum):
    """What a reconciliation pass does to the remote user."""

    CREATE = "create"
    UPDATE = "update"
    NO_CHANGE = "no-change"
    READ = "read"
    DELETE = "delete"


@dataclass(frozen=True)
class UserPlan:
    """Validated plan for one user. Building it sends no requests.

    Attributes:
        operation: CREATE, UPDATE or NO_CHANGE.
        request: Compiled primary and secondary bodies.
        changed_fields: Logical fields that differ from the prior state.
        user_id: Id of the existing user, None when creating.
    """

    operation: Operation
    request: CompiledRequest
    changed_fields: tuple[str, ...] = ()
    user_id: str | None = None


@dataclass
class ReconcileResult:
    """Result of a single reconciliation pass."""

    operation: Operation
    user_id: str | None = None
    state: DesiredState | None = None
    changed_fields: tuple[str, ...] = ()
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    error: Exception | None = None
    # The user was not found on a read-only pass
    absent: bool = False

    @property
    def duration_seconds(self) -> float:
        """Calculate duration in seconds."""
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def success(self) -> bool:
        """Check if reconciliation succeeded."""
        return self.error is None


def _normalize(name: str, value: Any) -> Any:
    if name == "mfa":
        policy = MFAPolicy.from_mapping(value)
        # Neither excluded nor configured reads back as no MFA block
        return policy if policy.exclusion or policy.configured else None
    if name == "addresses":
        return [AddressSpec.model_validate(a).model_dump() for a in value or []]
    if name == "phone_numbers":
        return [{"type": p.get("type", ""), "number": p.get("number", "")} for p in value or []]
    if name == "manager_id":
        return format_manager_id(value or "")
    if name == "state":
        return (value or "").upper() or None
    return value


def changed_fields(desired: DesiredState, prior: DesiredState | None) -> tuple[str, ...]:
    """List the logical fields of a desired state that differ from the prior state.

    Fields that are always sent (flags, pinned strings, alias groups) are
    compared even when absent from the desired state, so removing one from
    a spec drives it back to its zero value. Other fields are only compared
    when present, since an empty value is omitted from the request.

    Aliased fields are compared by their resolved value and reported under
    the current name.

    Args:
        desired: Desired state.
        prior: Last-known merged state, or None when the user does not exist.

    Returns:
        Sorted field names. Every present field when there is no prior state.
    """
    if prior is None:
        return tuple(sorted({DEPRECATED_FIELDS.get(name, name) for name in desired}))

    changed: set[str] = set()
    for group in ALIAS_GROUPS:
        if bool(resolve(desired, group)) != bool(resolve(prior, group)):
            changed.add(group.current)

    aliased = {name for group in ALIAS_GROUPS for name in group.names}
    for name in set(desired) | set(ALWAYS_SENT_FIELDS):
        if name in aliased:
            continue
        if _normalize(name, desired.value(name)) != _normalize(name, prior.value(name)):
            changed.add(name)
    return tuple(sorted(changed))


def plan_user(
    desired: DesiredState,
    prior: DesiredState | None = None,
    user_id: str | None = None,
    *,
    today: Clock = utc_today,
) -> UserPlan:
    """Validate and compile a desired state without sending anything.

    The password is only compiled in when creating or when it differs
    from the prior state.

    Args:
        desired: Desired state.
        prior: Last-known merged state, None when creating.
        user_id: Id of the existing user, None when creating.
        today: Clock for MFA expiry computation.

    Returns:
        The plan.

    Raises:
        PlanValidationError: If the transition or a field is invalid.
    """
    prior_state = prior.value("state") if prior is not None else None
    if desired.is_set("state"):
        validate_transition(prior_state, desired["state"])

    changed = changed_fields(desired, prior)
    include_password = prior is None or "password" in changed
    request = compile_desired_state(
        desired,
        prior_state=prior_state,
        include_password=include_password,
        today=today,
    )

    if not user_id:
        operation = Operation.CREATE
    elif changed:
        operation = Operation.UPDATE
    else:
        operation = Operation.NO_CHANGE

    logger.debug(
        "Planned user reconciliation",
        extra={
            "user_id": user_id,
            "operation": operation.value,
            "changed_fields": list(changed),
        },
    )
    return UserPlan(operation=operation, request=request, changed_fields=changed, user_id=user_id)


class UserReconciler:
    """Drives one remote user towards a desired state.

    All network access goes through the injected transport; "today" and
    sleeping come from injectable callables.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        today: Clock = utc_today,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize reconciler.

        Args:
            transport: Transport to the directory API.
            today: Clock returning the current calendar date.
            sleep: Sleeper used for the deletion settling interval.
        """
        self._today = today
        self._executor = TwoPhaseExecutor(transport)
        self._deletion = DeletionPreconditioner(transport, sleep=sleep)

    @property
    def executor(self) -> TwoPhaseExecutor:
        return self._executor

    def plan(
        self,
        desired: DesiredState,
        prior: DesiredState | None = None,
        user_id: str | None = None,
    ) -> UserPlan:
        """Validate and compile a desired state without sending anything."""
        return plan_user(desired, prior, user_id, today=self._today)

    def apply(
        self,
        desired: DesiredState,
        prior: DesiredState | None = None,
        user_id: str | None = None,
    ) -> ReconcileResult:
        """Run one reconciliation pass.

        Planning errors propagate before anything is sent. Write errors
        are recorded on the result and re-raised. When nothing changed and
        the user no longer exists, the result has no state (see
        ReconcileResult.absent).

        Raises:
            PlanValidationError: If the plan is invalid.
            PrimaryWriteError: If the primary write failed.
            SecondaryWriteError: If only the secondary write failed.
        """
        plan = self.plan(desired, prior, user_id)
        result = ReconcileResult(
            operation=plan.operation,
            user_id=user_id,
            changed_fields=plan.changed_fields,
        )

        try:
            if plan.operation == Operation.NO_CHANGE and user_id:
                remote = self._executor.read(user_id)
                if remote is None:
                    # Deleted out of band; the caller decides whether to recreate
                    logger.warning("User no longer exists", extra={"user_id": user_id})
                    result.absent = True
                    return result
            else:
                written = self._executor.apply(
                    user_id, plan.request.primary, plan.request.secondary
                )
                result.user_id = written.user_id
                remote = self._read_back(written)
            result.state = merge(desired, remote, today=self._today)
        except Exception as e:
            result.error = e
            if isinstance(e, SecondaryWriteError):
                result.user_id = e.user_id
            raise
        finally:
            result.end_time = datetime.now(UTC)
            self._log_result(result)

        return result

    def create(self, desired: DesiredState) -> ReconcileResult:
        return self.apply(desired)

    def update(
        self, user_id: str, desired: DesiredState, prior: DesiredState | None = None
    ) -> ReconcileResult:
        # An update never re-enters the create path; no prior means compare to empty
        return self.apply(desired, prior if prior is not None else DesiredState(), user_id)

    def read(self, user_id: str, local: DesiredState | None = None) -> DesiredState | None:
        """Refresh local state from the server.

        Returns:
            The merged state, or None if the user no longer exists.
        """
        remote = self._executor.read(user_id)
        if remote is None:
            return None
        return merge(local or DesiredState(), remote, today=self._today)

    def import_user(self, user_id: str) -> DesiredState:
        """Adopt an existing user by id.

        Raises:
            ValueError: If the id is empty.
            NotFoundError: If the user does not exist.
        """
        if not user_id:
            raise ValueError("user id cannot be empty")
        state = self.read(user_id)
        if state is None:
            raise NotFoundError(f"user with ID {user_id} not found", status=404)
        logger.info("Imported user", extra={"user_id": user_id})
        return state

    def delete(self, user_id: str, local: DesiredState | None = None) -> bool:
        """Delete a user. Returns False if it was already gone."""
        return self._deletion.delete(user_id, local)

    def retry_secondary(self, error: SecondaryWriteError) -> RemoteUser:
        """Resend the secondary body of a partially failed write."""
        logger.info("Retrying secondary write", extra={"user_id": error.user_id})
        return self._executor.write_secondary(error.user_id, error.request)

    def _read_back(self, written: WriteResult) -> RemoteUser:
        remote = self._executor.read(written.user_id)
        return remote if remote is not None else written.entity

    def _log_result(self, result: ReconcileResult) -> None:
        """Log reconciliation result with structured data."""
        extra: dict[str, Any] = {
            "user_id": result.user_id,
            "operation": result.operation.value,
            "duration_seconds": result.duration_seconds,
            "changed_fields": list(result.changed_fields),
        }
        if result.state is not None:
            extra["state"] = result.state.get("state")
        if result.absent:
            extra["absent"] = True

        if result.error is not None:
            extra["error"] = str(result.error)
            logger.error("Reconciliation failed", extra=extra)
        else:
            logger.info("Reconciliation result", extra=extra)
