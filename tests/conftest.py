"""Pytest configuration and fixtures."""

import sys
from collections.abc import Callable
from datetime import date
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for directory_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from directory_controller.desired import DesiredState  # noqa: E402
from directory_mock import FakeDirectoryAPI  # noqa: E402

TODAY = date(2024, 3, 1)


@pytest.fixture
def today() -> Callable[[], date]:
    """Fixed clock: 2024-03-01."""
    return lambda: TODAY


@pytest.fixture
def fake_api() -> FakeDirectoryAPI:
    return FakeDirectoryAPI()


@pytest.fixture
def sleeps() -> list[float]:
    """Records sleeps instead of sleeping."""
    return []


@pytest.fixture
def alice() -> DesiredState:
    """Minimal staged user."""
    return DesiredState(
        {
            "username": "alice",
            "email": "alice@example.com",
            "password": "S3cret!pass",
            "state": "STAGED",
        }
    )
