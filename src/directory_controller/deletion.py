"""Deletion preconditioner.

The API refuses to delete a user while a dependent service (the file
sharing flag) is active on it. The flag is cleared first, followed by a
fixed settling interval, and if the delete is still refused the clearing
update is broadened to every flag known to block deletion and the delete
is retried exactly once.

A not-found answer anywhere in this sequence means the user is already
gone, which is success.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable, Mapping
from typing import Any

from .executor import user_path
from .transport import NotFoundError, Transport, TransportError

logger = logging.getLogger(__name__)

SETTLE_INTERVAL_SECONDS = 2

PRIMARY_BLOCKING_FLAG = "samba_service_user"

BLOCKING_FLAGS: tuple[str, ...] = (
    "samba_service_user",
    "ldap_binding_user",
    "enable_managed_uid",
)

DEPENDENT_SERVICE_MARKERS: tuple[str, ...] = (
    "Samba service is enabled",
    "service is enabled",
)


class DeletionBlockedError(Exception):
    """Raised when a delete is still refused after clearing blocking flags."""

    def __init__(self, user_id: str, cause: TransportError) -> None:
        super().__init__(
            f"error deleting user {user_id}: {cause}. "
            f"Disable {', '.join(BLOCKING_FLAGS)} before deleting the user"
        )
        self.user_id = user_id
        self.cause = cause


def is_dependent_service_error(error: TransportError) -> bool:
    """Check whether a failed delete was refused because of an active service."""
    text = f"{error.message} {error}"
    return any(marker in text for marker in DEPENDENT_SERVICE_MARKERS)


class DeletionPreconditioner:
    """Deletes a user, clearing deletion-blocking flags first when needed."""

    def __init__(
        self,
        transport: Transport,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._transport = transport
        self._sleep = sleep

    def delete(self, user_id: str, local: Mapping[str, Any] | None = None) -> bool:
        """Delete a user.

        Args:
            user_id: Id of the user to delete.
            local: Last-known state of the user; decides whether the
                blocking flag is cleared up front.

        Returns:
            True if the user was deleted, False if it was already gone.

        Raises:
            DeletionBlockedError: If the retried delete is still refused.
            TransportError: For any other failure.
        """
        local = local or {}
        if local.get(PRIMARY_BLOCKING_FLAG):
            logger.info(
                "Disabling dependent service before deletion",
                extra={"user_id": user_id, "flags": [PRIMARY_BLOCKING_FLAG]},
            )
            if not self._clear_flags(user_id, (PRIMARY_BLOCKING_FLAG,)):
                return False

        try:
            return self._delete(user_id)
        except TransportError as e:
            if not is_dependent_service_error(e):
                raise
            logger.warning(
                "Delete refused by active dependent service, retrying",
                extra={"user_id": user_id, "flags": list(BLOCKING_FLAGS), "error": str(e)},
            )

        if not self._clear_flags(user_id, BLOCKING_FLAGS):
            return False
        try:
            return self._delete(user_id)
        except TransportError as e:
            if is_dependent_service_error(e):
                raise DeletionBlockedError(user_id, e) from e
            raise

    def _clear_flags(self, user_id: str, flags: tuple[str, ...]) -> bool:
        body = json.dumps({flag: False for flag in flags}).encode("utf-8")
        try:
            self._transport.request("PUT", user_path(user_id), body)
        except NotFoundError:
            logger.warning("User not found while clearing flags", extra={"user_id": user_id})
            return False
        self._sleep(SETTLE_INTERVAL_SECONDS)
        return True

    def _delete(self, user_id: str) -> bool:
        try:
            self._transport.request("DELETE", user_path(user_id), None)
        except NotFoundError:
            logger.warning("User not found during delete", extra={"user_id": user_id})
            return False
        logger.info("Deleted user", extra={"user_id": user_id})
        return True
