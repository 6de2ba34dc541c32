"""Configuration management with validation.

Connection settings for the directory API are validated at load time so
that a misconfigured controller fails before the first request is sent.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum


class LogFormat(str, Enum):
    """Supported log output formats."""

    JSON = "json"
    TEXT = "text"


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_REQUEST_TIMEOUT_SECONDS = 30
MIN_REQUEST_TIMEOUT_SECONDS = 1
MAX_REQUEST_TIMEOUT_SECONDS = 300

# Spec documents are small; anything larger is almost certainly a mistake
MAX_SPEC_FILE_SIZE_BYTES = 1024 * 1024  # 1MB max spec file

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# Input validation patterns
VALID_API_URL_PATTERN = r"^https?://[^\s/$.?#][^\s]*$"
VALID_ORG_ID_PATTERN = r"^[0-9a-fA-F]{24}$"


@dataclass(frozen=True)
class ControllerConfig:
    """Controller configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing at runtime.
    """

    # Required fields
    api_url: str
    api_key: str

    # Multi-tenant administrators must scope requests to one organization
    org_id: str | None = None

    # Timing
    request_timeout_seconds: int = DEFAULT_REQUEST_TIMEOUT_SECONDS

    # Logging
    log_format: LogFormat = LogFormat.JSON
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        import re

        errors: list[str] = []

        if not self.api_url:
            errors.append("DIRECTORY_API_URL is required")
        elif not re.match(VALID_API_URL_PATTERN, self.api_url):
            errors.append(f"DIRECTORY_API_URL must be an http(s) URL: {self.api_url}")

        if not self.api_key:
            errors.append("DIRECTORY_API_KEY is required")

        if self.org_id and not re.match(VALID_ORG_ID_PATTERN, self.org_id):
            errors.append(f"DIRECTORY_ORG_ID must be a 24 character hex id: {self.org_id}")

        if not (
            MIN_REQUEST_TIMEOUT_SECONDS
            <= self.request_timeout_seconds
            <= MAX_REQUEST_TIMEOUT_SECONDS
        ):
            errors.append(
                f"DIRECTORY_REQUEST_TIMEOUT must be between {MIN_REQUEST_TIMEOUT_SECONDS} "
                f"and {MAX_REQUEST_TIMEOUT_SECONDS} seconds"
            )

        if self.log_level.upper() not in VALID_LOG_LEVELS:
            errors.append(f"LOG_LEVEL must be one of {list(VALID_LOG_LEVELS)}: {self.log_level}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @property
    def base_url(self) -> str:
        """API URL without a trailing slash."""
        return self.api_url.rstrip("/")

    @classmethod
    def from_env(cls) -> ControllerConfig:
        """Load configuration from environment variables.

        Environment Variables:
            DIRECTORY_API_URL: Base URL of the directory API (required)
            DIRECTORY_API_KEY: API key sent with every request (required)
            DIRECTORY_ORG_ID: Organization id for multi-tenant keys (optional)
            DIRECTORY_REQUEST_TIMEOUT: Per-request timeout in seconds (default: 30)
            LOG_FORMAT: "json" or "text" (default: json)
            LOG_LEVEL: Root log level (default: INFO)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_log_format(value: str | None) -> LogFormat:
            if not value:
                return LogFormat.JSON
            try:
                return LogFormat(value.lower())
            except ValueError as e:
                valid = [f.value for f in LogFormat]
                raise ConfigurationError(f"LOG_FORMAT must be one of {valid}: {value}") from e

        return cls(
            api_url=os.environ.get("DIRECTORY_API_URL", ""),
            api_key=os.environ.get("DIRECTORY_API_KEY", ""),
            org_id=os.environ.get("DIRECTORY_ORG_ID") or None,
            request_timeout_seconds=get_int(
                "DIRECTORY_REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT_SECONDS
            ),
            log_format=get_log_format(os.environ.get("LOG_FORMAT")),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        )
