"""In-memory fake of the directory user API.

Reproduces the remote behaviours the controller has to cope with:
- secondary fields are silently dropped when bundled with a full write
- attribute names are stripped to alphanumerics, phone numbers to digits
- ACTIVATED users echo the MFA exclusion as a date-only timestamp
- deletion is refused while the file-sharing flag is active
- the password is never echoed
"""

from __future__ import annotations

import copy
import json
import re
import secrets
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import httpx

from directory_controller.transport import classify_error

USERS_PATH = "/api/systemusers"

# Only honoured on a PUT that does not carry the full resource
SECONDARY_KEYS = frozenset(
    {
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
    }
)

SAMBA_BLOCKED_MESSAGE = "Cannot delete user: Samba service is enabled for this user"


@dataclass
class RecordedRequest:
    """One request received by the fake."""

    method: str
    path: str
    body: dict[str, Any] | None


@dataclass
class InjectedFailure:
    """Failure returned instead of handling a matching request."""

    method: str
    status: int
    payload: dict[str, Any]
    path_suffix: str = ""
    remaining: int = 1


@dataclass
class FakeDirectoryAPI:
    """Fake directory API usable as a Transport or as an httpx handler.

    Attributes:
        users: Stored users by id, as the server would hold them.
        requests: Every request received, in order.
        echo_overrides: Fields forced onto every GET response, simulating
            server-side default substitution.
    """

    users: dict[str, dict[str, Any]] = field(default_factory=dict)
    requests: list[RecordedRequest] = field(default_factory=list)
    echo_overrides: dict[str, Any] = field(default_factory=dict)
    failures: list[InjectedFailure] = field(default_factory=list)
    refuse_delete_while_flag: bool = True

    # -------------------------------------------------------------------------
    # Test helpers
    # -------------------------------------------------------------------------

    def fail_next(
        self,
        method: str,
        status: int,
        message: str = "injected failure",
        *,
        code: str = "",
        path_suffix: str = "",
        times: int = 1,
    ) -> None:
        """Make the next matching request(s) fail with the given status."""
        payload = {"message": message}
        if code:
            payload["code"] = code
        self.failures.append(
            InjectedFailure(method.upper(), status, payload, path_suffix, remaining=times)
        )

    def add_user(self, **fields: Any) -> str:
        """Store a user directly, bypassing the write quirks. Returns its id."""
        user_id = fields.pop("_id", None) or secrets.token_hex(12)
        user = {"_id": user_id, "state": "STAGED", "mfa": {}, "attributes": []}
        user.update(fields)
        self.users[user_id] = user
        return user_id

    def calls(self, method: str | None = None) -> list[RecordedRequest]:
        return [r for r in self.requests if method is None or r.method == method]

    # -------------------------------------------------------------------------
    # Transport protocol
    # -------------------------------------------------------------------------

    def request(self, method: str, path: str, body: bytes | None = None) -> bytes:
        status, content = self.handle(method, path, body)
        if status >= 400:
            raise classify_error(status, content, method=method, path=path)
        return content

    def httpx_handler(self, request: httpx.Request) -> httpx.Response:
        """Handler for httpx.MockTransport."""
        status, content = self.handle(request.method, request.url.path, request.content or None)
        return httpx.Response(status, content=content)

    # -------------------------------------------------------------------------
    # Request handling
    # -------------------------------------------------------------------------

    def handle(self, method: str, path: str, body: bytes | None) -> tuple[int, bytes]:
        method = method.upper()
        payload = json.loads(body) if body else None
        self.requests.append(RecordedRequest(method, path, copy.deepcopy(payload)))

        failure = self._take_failure(method, path)
        if failure is not None:
            return failure.status, json.dumps(failure.payload).encode()

        if path == USERS_PATH and method == "POST":
            return self._create(payload or {})

        if not path.startswith(USERS_PATH + "/"):
            return _error(404, "NOT_FOUND", f"No route for {path}")
        user_id = path[len(USERS_PATH) + 1 :]
        user = self.users.get(user_id)
        if user is None:
            return _error(404, "NOT_FOUND", f"User {user_id} not found")

        if method == "GET":
            return 200, self._render(user)
        if method == "PUT":
            return self._update(user, payload or {})
        if method == "DELETE":
            if self.refuse_delete_while_flag and user.get("samba_service_user"):
                return _error(400, "INVALID_INPUT", SAMBA_BLOCKED_MESSAGE)
            del self.users[user_id]
            return 200, self._render(user)
        return _error(400, "INVALID_INPUT", f"Unsupported method {method}")

    def _take_failure(self, method: str, path: str) -> InjectedFailure | None:
        for failure in self.failures:
            if failure.method == method and path.endswith(failure.path_suffix):
                failure.remaining -= 1
                if failure.remaining <= 0:
                    self.failures.remove(failure)
                return failure
        return None

    def _create(self, payload: dict[str, Any]) -> tuple[int, bytes]:
        if not payload.get("username") or not payload.get("email"):
            return _error(400, "INVALID_INPUT", "username and email are required")
        for existing in self.users.values():
            if existing.get("username") == payload["username"]:
                return _error(409, "ALREADY_EXISTS", "username already exists")

        user_id = secrets.token_hex(12)
        user: dict[str, Any] = {
            "_id": user_id,
            "created": datetime.now(UTC).isoformat(),
            "state": "STAGED",
            "allow_public_key": True,
            "mfa": {},
            "attributes": [],
        }
        self._write_full(user, payload)
        self.users[user_id] = user
        return 201, self._render(user)

    def _update(self, user: dict[str, Any], payload: dict[str, Any]) -> tuple[int, bytes]:
        if "username" in payload:
            self._write_full(user, payload)
        else:
            self._write_partial(user, payload)
        return 200, self._render(user)

    def _write_full(self, user: dict[str, Any], payload: dict[str, Any]) -> None:
        for key, value in payload.items():
            if key in SECONDARY_KEYS:
                continue
            if key == "attributes":
                value = [
                    {"name": re.sub(r"[^a-zA-Z0-9]", "", a["name"]), "value": a["value"]}
                    for a in value
                ]
            elif key == "phoneNumbers":
                value = [
                    {"type": p["type"], "number": re.sub(r"[^0-9+]", "", p["number"])}
                    for p in value
                ]
            elif key == "manager":
                value = {"_id": value}
            elif key == "mfa":
                value = _store_mfa(value)
            user[key] = copy.deepcopy(value)
        if "state" in payload:
            user["activated"] = payload["state"] == "ACTIVATED"

    def _write_partial(self, user: dict[str, Any], payload: dict[str, Any]) -> None:
        for key, value in payload.items():
            user[key] = copy.deepcopy(value)

    def _render(self, user: dict[str, Any]) -> bytes:
        rendered = {k: v for k, v in user.items() if k != "password"}
        rendered.update(copy.deepcopy(self.echo_overrides))
        return json.dumps(rendered).encode()


def _store_mfa(value: dict[str, Any]) -> dict[str, Any]:
    stored = dict(value)
    until = stored.get("exclusionUntil")
    if until:
        # Only the calendar date survives
        stored["exclusionUntil"] = until[:10] + "T00:00:00Z"
    return stored


def _error(status: int, code: str, message: str) -> tuple[int, bytes]:
    return status, json.dumps({"code": code, "message": message}).encode()
