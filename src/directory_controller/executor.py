"""Two-phase write protocol for directory users.

One logical create or update is two requests:

1. Primary: the full resource body (POST on create, PUT on update). The
   API has no partial-patch semantics; every update overwrites the fields
   it includes.
2. Secondary: a PUT carrying the fields the API silently drops when they
   are bundled with the primary body. It is sent unconditionally, not only
   when one of those fields changed, because the API also drops them when
   they are not resent.

The steps are strictly sequential. A primary failure aborts before the
secondary write. A secondary failure is reported as SecondaryWriteError:
the entity exists (or was updated) but its secondary fields are not
guaranteed applied. Resending the secondary body alone is always safe.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from .models import RemoteUser
from .transport import NotFoundError, Transport, TransportError

logger = logging.getLogger(__name__)

USERS_PATH = "/api/systemusers"

REDACTED = "***"
_SENSITIVE_KEYS = frozenset({"password"})


class WriteError(Exception):
    """Base class for failed writes."""

    def __init__(self, message: str, *, user_id: str | None = None) -> None:
        super().__init__(message)
        self.user_id = user_id


class PrimaryWriteError(WriteError):
    """The primary write failed. Nothing was changed by this operation."""

    pass


class SecondaryWriteError(WriteError):
    """The primary write succeeded but the secondary write failed.

    Attributes:
        user_id: Id of the entity that now exists remotely.
        request: The secondary body, for resending via write_secondary().
        entity: The entity as returned by the primary write.
    """

    def __init__(
        self,
        message: str,
        *,
        user_id: str,
        request: dict[str, Any],
        entity: RemoteUser | None = None,
    ) -> None:
        super().__init__(message, user_id=user_id)
        self.request = request
        self.entity = entity


class ResponseDecodeError(TransportError):
    """The server answered with a body that is not a user object."""

    pass


@dataclass(frozen=True)
class WriteResult:
    """Outcome of a completed two-phase write.

    Attributes:
        entity: Latest server representation returned by the writes.
        created: True if the primary write created the entity.
    """

    entity: RemoteUser
    created: bool = False

    @property
    def user_id(self) -> str:
        return self.entity.id


def user_path(user_id: str) -> str:
    return f"{USERS_PATH}/{user_id}"


def redact(body: dict[str, Any]) -> dict[str, Any]:
    """Copy of a request body safe for logging."""
    return {k: (REDACTED if k in _SENSITIVE_KEYS and v else v) for k, v in body.items()}


def decode_user(raw: bytes, *, method: str = "", path: str = "") -> RemoteUser:
    """Parse a response body into a RemoteUser.

    Raises:
        ResponseDecodeError: If the body is not a JSON user object.
    """
    try:
        payload = json.loads(raw) if raw else {}
    except ValueError as e:
        raise ResponseDecodeError(
            f"Response is not valid JSON: {e}", method=method, path=path
        ) from e
    if not isinstance(payload, dict):
        raise ResponseDecodeError("Response is not a JSON object", method=method, path=path)
    try:
        return RemoteUser.model_validate(payload)
    except ValidationError as e:
        raise ResponseDecodeError(
            f"Response is not a user object: {e}", method=method, path=path
        ) from e


class TwoPhaseExecutor:
    """Issues the primary and secondary writes for one user."""

    def __init__(self, transport: Transport) -> None:
        self._transport = transport

    def apply(
        self,
        user_id: str | None,
        primary: dict[str, Any],
        secondary: dict[str, Any],
    ) -> WriteResult:
        """Create (no id) or update (id) a user with both write phases.

        Args:
            user_id: Existing entity id, or None to create.
            primary: Full-resource body.
            secondary: Field-subset body.

        Returns:
            The write result.

        Raises:
            PrimaryWriteError: If the first write failed.
            SecondaryWriteError: If the second write failed.
        """
        if user_id:
            entity = self._write_primary("PUT", user_path(user_id), primary, user_id)
            created = False
        else:
            entity = self._write_primary("POST", USERS_PATH, primary, None)
            created = True
            if not entity.id:
                raise PrimaryWriteError("Create response did not include an id")
            logger.info("Created user", extra={"user_id": entity.id, "username": entity.username})

        target_id = user_id or entity.id
        try:
            latest = self.write_secondary(target_id, secondary)
        except TransportError as e:
            logger.error(
                "Secondary write failed after primary write succeeded",
                extra={"user_id": target_id, "error": str(e)},
            )
            raise SecondaryWriteError(
                f"error making secondary update for user {target_id}: {e}",
                user_id=target_id,
                request=secondary,
                entity=entity,
            ) from e

        return WriteResult(
            entity=latest if latest.id else entity.model_copy(update={"id": target_id}),
            created=created,
        )

    def write_secondary(self, user_id: str, secondary: dict[str, Any]) -> RemoteUser:
        """Send the secondary body alone.

        Safe to repeat: the body fully overwrites its field subset.

        Raises:
            TransportError: If the request fails.
        """
        path = user_path(user_id)
        logger.debug(
            "Sending secondary update",
            extra={"user_id": user_id, "body": redact(secondary)},
        )
        raw = self._transport.request("PUT", path, json.dumps(secondary).encode("utf-8"))
        return decode_user(raw, method="PUT", path=path)

    def read(self, user_id: str) -> RemoteUser | None:
        """Fetch a user. A missing entity is None, not an error."""
        path = user_path(user_id)
        try:
            raw = self._transport.request("GET", path, None)
        except NotFoundError:
            logger.warning("User not found", extra={"user_id": user_id})
            return None
        return decode_user(raw, method="GET", path=path)

    def _write_primary(
        self,
        method: str,
        path: str,
        primary: dict[str, Any],
        user_id: str | None,
    ) -> RemoteUser:
        logger.debug(
            "Sending primary write",
            extra={"method": method, "path": path, "body": redact(primary)},
        )
        try:
            raw = self._transport.request(method, path, json.dumps(primary).encode("utf-8"))
            return decode_user(raw, method=method, path=path)
        except TransportError as e:
            action = "updating" if user_id else "creating"
            raise PrimaryWriteError(
                f"error {action} user{' ' + user_id if user_id else ''}: {e}", user_id=user_id
            ) from e
