"""Tests for configuration loading."""

import os
from unittest.mock import patch

import pytest

from directory_controller.config import (
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    ConfigurationError,
    ControllerConfig,
    LogFormat,
)

VALID_ORG_ID = "5f1b2c3d4e5f6a7b8c9d0e1f"


class TestControllerConfig:
    """Tests for ControllerConfig class."""

    def test_valid_config(self) -> None:
        """Test creating a valid configuration."""
        config = ControllerConfig(api_url="https://console.example.com/", api_key="key")

        assert config.request_timeout_seconds == DEFAULT_REQUEST_TIMEOUT_SECONDS
        assert config.log_format == LogFormat.JSON
        assert config.org_id is None
        assert config.base_url == "https://console.example.com"

    def test_missing_url_and_key(self) -> None:
        """Test that every validation error is reported at once."""
        with pytest.raises(ConfigurationError) as exc_info:
            ControllerConfig(api_url="", api_key="")

        assert "DIRECTORY_API_URL" in str(exc_info.value)
        assert "DIRECTORY_API_KEY" in str(exc_info.value)

    def test_invalid_url(self) -> None:
        """Test that a non-http URL is rejected."""
        with pytest.raises(ConfigurationError) as exc_info:
            ControllerConfig(api_url="ftp://example.com", api_key="key")

        assert "http(s)" in str(exc_info.value)

    def test_invalid_org_id(self) -> None:
        """Test that a malformed organization id is rejected."""
        with pytest.raises(ConfigurationError) as exc_info:
            ControllerConfig(api_url="https://example.com", api_key="key", org_id="not-hex")

        assert "DIRECTORY_ORG_ID" in str(exc_info.value)

    @pytest.mark.parametrize("timeout", [0, 301])
    def test_timeout_out_of_range(self, timeout: int) -> None:
        """Test that out-of-range timeouts raise error."""
        with pytest.raises(ConfigurationError) as exc_info:
            ControllerConfig(
                api_url="https://example.com", api_key="key", request_timeout_seconds=timeout
            )

        assert "DIRECTORY_REQUEST_TIMEOUT" in str(exc_info.value)

    def test_invalid_log_level(self) -> None:
        """Test that unknown log levels are rejected."""
        with pytest.raises(ConfigurationError):
            ControllerConfig(api_url="https://example.com", api_key="key", log_level="CHATTY")

    def test_from_env(self) -> None:
        """Test loading configuration from environment."""
        env = {
            "DIRECTORY_API_URL": "https://console.example.com",
            "DIRECTORY_API_KEY": "key",
            "DIRECTORY_ORG_ID": VALID_ORG_ID,
            "DIRECTORY_REQUEST_TIMEOUT": "60",
            "LOG_FORMAT": "TEXT",
            "LOG_LEVEL": "debug",
        }
        with patch.dict(os.environ, env, clear=True):
            config = ControllerConfig.from_env()

        assert config.org_id == VALID_ORG_ID
        assert config.request_timeout_seconds == 60
        assert config.log_format == LogFormat.TEXT
        assert config.log_level == "DEBUG"

    def test_from_env_non_integer_timeout(self) -> None:
        """Test that a non-integer timeout raises error."""
        env = {
            "DIRECTORY_API_URL": "https://console.example.com",
            "DIRECTORY_API_KEY": "key",
            "DIRECTORY_REQUEST_TIMEOUT": "soon",
        }
        with patch.dict(os.environ, env, clear=True), pytest.raises(ConfigurationError):
            ControllerConfig.from_env()

    def test_from_env_invalid_log_format(self) -> None:
        """Test that an unknown log format raises error."""
        env = {
            "DIRECTORY_API_URL": "https://console.example.com",
            "DIRECTORY_API_KEY": "key",
            "LOG_FORMAT": "xml",
        }
        with patch.dict(os.environ, env, clear=True), pytest.raises(ConfigurationError):
            ControllerConfig.from_env()
