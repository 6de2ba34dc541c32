"""Directory API mock for integration testing.

Usage:
    from directory_mock import FakeDirectoryAPI

    api = FakeDirectoryAPI()
    reconciler = UserReconciler(api, today=lambda: date(2024, 3, 1))
    result = reconciler.create(desired)

    assert len(api.calls("PUT")) == 1
"""

from .api import (
    SAMBA_BLOCKED_MESSAGE,
    SECONDARY_KEYS,
    FakeDirectoryAPI,
    InjectedFailure,
    RecordedRequest,
)

__all__ = [
    "SAMBA_BLOCKED_MESSAGE",
    "SECONDARY_KEYS",
    "FakeDirectoryAPI",
    "InjectedFailure",
    "RecordedRequest",
]
