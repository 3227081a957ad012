"""Input validation for the command gateway.

Every name that ends up on a command line or in a backup path passes
through :func:`is_safe_name` first. Validation runs before any process
is spawned and fails closed.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from enum import Enum

from devcontrol.domain.models import ContainerAction, DataAction, ErrorKind

MAX_NAME_LENGTH = 100

_NAME_RE = re.compile(r"[A-Za-z0-9._-]+")


class ValidationError(Exception):
    """Raised when a request is rejected before execution."""

    def __init__(self, message: str, kind: ErrorKind) -> None:
        super().__init__(message)
        self.kind = kind


def is_safe_name(name: str) -> bool:
    """Return True if ``name`` is safe to use as a container or file name."""
    if not name or len(name) > MAX_NAME_LENGTH:
        return False
    if not _NAME_RE.fullmatch(name):
        return False
    return ".." not in name and "/" not in name


def validate_action(action: str | Enum, allowed: Iterable[Enum]) -> str:
    """Check ``action`` against ``allowed`` and return its string value."""
    value = action.value if isinstance(action, Enum) else action
    if value not in {a.value for a in allowed}:
        raise ValidationError(f"Invalid action: {value!r}", ErrorKind.INVALID_ACTION)
    return value


def validate_target(target: str) -> None:
    if not is_safe_name(target):
        raise ValidationError(
            f"Invalid name: {target!r}", ErrorKind.INVALID_TARGET_NAME
        )


def validate(action: str | Enum, target: str) -> None:
    """Validate an action/target pair for either container or data ops.

    Raises:
        ValidationError: With ``kind`` set to InvalidAction,
            MissingFilename or InvalidTargetName.
    """
    value = action.value if isinstance(action, Enum) else action
    if value in {a.value for a in ContainerAction}:
        validate_target(target)
    elif value == DataAction.RESTORE.value:
        if not target:
            raise ValidationError(
                "Filename required for restore", ErrorKind.MISSING_FILENAME
            )
        validate_target(target)
    elif value == DataAction.BACKUP.value:
        # Backup synthesizes a name when none is given.
        if target:
            validate_target(target)
    else:
        raise ValidationError(f"Invalid action: {value!r}", ErrorKind.INVALID_ACTION)


def validate_line_count(lines: int, maximum: int) -> None:
    if not 1 <= lines <= maximum:
        raise ValidationError(
            f"Line count must be between 1 and {maximum}, got {lines}",
            ErrorKind.INVALID_LINE_COUNT,
        )
