"""User spec file loading with validation.

SECURITY: File size is checked before reading. Input validation is
performed at the boundary by the pydantic UserSpec model.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .aliases import deprecated_fields_in_use
from .config import MAX_SPEC_FILE_SIZE_BYTES
from .desired import DesiredState
from .models import UserSpec

logger = logging.getLogger(__name__)


class SpecLoadError(Exception):
    """Raised when spec loading or validation fails."""

    pass


def parse_user(data: Any, source: str = "<spec>") -> DesiredState:
    """Validate one user mapping and convert it to a DesiredState.

    Args:
        data: Parsed YAML mapping for one user.
        source: Description of where the data came from, for messages.

    Returns:
        Desired state holding only the fields present in the document.

    Raises:
        SpecLoadError: If validation fails.
    """
    if not isinstance(data, dict):
        raise SpecLoadError(f"User spec must be a YAML mapping: {source}")
    try:
        spec = UserSpec.model_validate(data)
    except ValidationError as e:
        raise SpecLoadError(f"Spec validation failed for {source}:\n{e}") from e

    desired = spec.to_desired_state()
    for deprecated, replacement in deprecated_fields_in_use(desired):
        logger.warning(
            f"Field '{deprecated}' is deprecated, use '{replacement}' instead",
            extra={"source": source, "username": spec.username},
        )
    return desired


def load_users(spec_path: Path) -> list[DesiredState]:
    """Load and validate every user in a spec file.

    The document holds either one user mapping or a ``users:`` list.

    Args:
        spec_path: Path to the YAML spec file.

    Returns:
        Desired states in document order.

    Raises:
        SpecLoadError: If the spec cannot be loaded or fails validation.
    """
    if not spec_path.exists():
        raise SpecLoadError(f"Spec file not found: {spec_path}")

    # SECURITY: Check file size before reading
    try:
        file_size = spec_path.stat().st_size
    except OSError as e:
        raise SpecLoadError(f"Failed to stat spec file {spec_path}: {e}") from e

    if file_size > MAX_SPEC_FILE_SIZE_BYTES:
        raise SpecLoadError(
            f"Spec file exceeds maximum size of {MAX_SPEC_FILE_SIZE_BYTES} bytes: {spec_path}"
        )

    try:
        content = spec_path.read_text(encoding="utf-8")
    except OSError as e:
        raise SpecLoadError(f"Failed to read spec file {spec_path}: {e}") from e

    try:
        raw_data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise SpecLoadError(f"Invalid YAML in {spec_path}: {e}") from e

    if not isinstance(raw_data, dict):
        raise SpecLoadError(f"Spec file must contain a YAML mapping: {spec_path}")

    if "users" in raw_data:
        users = raw_data["users"]
        if not isinstance(users, list) or not users:
            raise SpecLoadError(f"'users' must be a non-empty list: {spec_path}")
        desired = [parse_user(user, f"{spec_path} users[{i}]") for i, user in enumerate(users)]
    else:
        desired = [parse_user(raw_data, str(spec_path))]

    usernames = [d["username"] for d in desired]
    duplicates = sorted({name for name in usernames if usernames.count(name) > 1})
    if duplicates:
        raise SpecLoadError(f"Duplicate usernames in {spec_path}: {duplicates}")

    logger.info("Loaded user spec", extra={"spec_path": str(spec_path), "users": len(desired)})
    return desired


def load_user(spec_path: Path) -> DesiredState:
    """Load a spec file that must describe exactly one user.

    Raises:
        SpecLoadError: If the file holds no user or more than one.
    """
    users = load_users(spec_path)
    if len(users) != 1:
        raise SpecLoadError(f"Expected exactly one user in {spec_path}, found {len(users)}")
    return users[0]
