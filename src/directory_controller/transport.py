"""Transport boundary to the directory API.

The reconciler only needs one operation, ``request(method, path, body)``,
returning the raw response bytes or raising a classified TransportError.
Callers branch on NotFoundError in read and delete paths and treat every
other kind as fatal for the call.

HttpTransport is the default implementation on top of httpx. It does not
retry; backoff belongs to whoever wraps the transport.
"""

from __future__ import annotations

import json
import logging
from enum import Enum
from typing import Any, Protocol

import httpx

from .config import ControllerConfig

logger = logging.getLogger(__name__)

USER_AGENT = "directory-controller"


class ErrorKind(str, Enum):
    """Classification of transport failures."""

    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    BAD_REQUEST = "bad_request"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    GENERIC = "generic"


class TransportError(Exception):
    """Raised when a request to the directory API fails."""

    kind = ErrorKind.GENERIC

    def __init__(
        self,
        message: str,
        *,
        status: int = 0,
        code: str = "",
        method: str = "",
        path: str = "",
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code
        self.method = method
        self.path = path

    def __str__(self) -> str:
        prefix = f"{self.method} {self.path}".strip()
        detail = f"[{self.code or self.kind.value} - {self.status}] {self.message}"
        return f"{prefix}: {detail}" if prefix else detail


class NotFoundError(TransportError):
    """The entity does not exist (HTTP 404)."""

    kind = ErrorKind.NOT_FOUND


class ConflictError(TransportError):
    """The request conflicts with remote state (HTTP 409)."""

    kind = ErrorKind.CONFLICT


class BadRequestError(TransportError):
    """The request was rejected as invalid (HTTP 400)."""

    kind = ErrorKind.BAD_REQUEST


class UnauthorizedError(TransportError):
    """Authentication failed (HTTP 401)."""

    kind = ErrorKind.UNAUTHORIZED


class ForbiddenError(TransportError):
    """The credentials lack permission (HTTP 403)."""

    kind = ErrorKind.FORBIDDEN


_ERRORS_BY_STATUS: dict[int, type[TransportError]] = {
    400: BadRequestError,
    401: UnauthorizedError,
    403: ForbiddenError,
    404: NotFoundError,
    409: ConflictError,
}

_ERRORS_BY_CODE: dict[str, type[TransportError]] = {
    "INVALID_INPUT": BadRequestError,
    "AUTH_FAILED": UnauthorizedError,
    "PERMISSION_DENIED": ForbiddenError,
    "NOT_FOUND": NotFoundError,
    "ALREADY_EXISTS": ConflictError,
}


class Transport(Protocol):
    """Anything that can send one request to the directory API."""

    def request(self, method: str, path: str, body: bytes | None = None) -> bytes:
        """Send a request and return the raw response body.

        Raises:
            TransportError: Classified failure.
        """
        ...


def classify_error(status: int, body: bytes, *, method: str = "", path: str = "") -> TransportError:
    """Build a classified TransportError from an error response.

    The body is parsed as ``{"code": ..., "message": ...}`` when possible.
    The HTTP status takes precedence over the body's code.

    Args:
        status: HTTP status code.
        body: Raw response body.
        method: HTTP method of the failed request.
        path: Request path of the failed request.

    Returns:
        The classified error (not raised).
    """
    code = ""
    message = f"Unknown error with status code {status}"
    if body:
        try:
            payload: Any = json.loads(body)
        except (ValueError, UnicodeDecodeError):
            payload = None
        if isinstance(payload, dict):
            code = str(payload.get("code") or "")
            message = str(payload.get("message") or payload.get("error") or message)
        else:
            message = body.decode("utf-8", errors="replace")[:500] or message

    error_cls = _ERRORS_BY_STATUS.get(status) or _ERRORS_BY_CODE.get(code.upper(), TransportError)
    return error_cls(message, status=status, code=code, method=method, path=path)


class HttpTransport:
    """JSON-over-HTTP transport backed by an httpx client."""

    def __init__(self, config: ControllerConfig, *, client: httpx.Client | None = None) -> None:
        """Initialize the transport.

        Args:
            config: Validated controller configuration.
            client: Optional pre-built client (tests inject a MockTransport).
        """
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
            "x-api-key": config.api_key,
        }
        if config.org_id:
            headers["x-org-id"] = config.org_id

        self._client = client or httpx.Client(timeout=float(config.request_timeout_seconds))
        self._client.base_url = httpx.URL(config.base_url)
        self._client.headers.update(headers)

    def request(self, method: str, path: str, body: bytes | None = None) -> bytes:
        try:
            response = self._client.request(method, path, content=body)
        except httpx.HTTPError as e:
            logger.warning(
                "Request failed without response",
                extra={"method": method, "path": path, "error": str(e)},
            )
            raise TransportError(str(e), method=method, path=path) from e

        logger.debug(
            "Directory API response",
            extra={"method": method, "path": path, "status": response.status_code},
        )
        if response.is_error:
            raise classify_error(response.status_code, response.content, method=method, path=path)
        return response.content

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> HttpTransport:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
