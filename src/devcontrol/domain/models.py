"""Core domain models for the devcontrol service.

These models represent the data flowing through the command gateway:
the requested action, the normalized result of running it, backup
artifacts on disk, parsed container records, and the caller's identity.
"""

from __future__ import annotations

import enum
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class ContainerAction(str, enum.Enum):
    """Lifecycle actions accepted for a container."""

    START = "start"
    STOP = "stop"
    RESTART = "restart"


class DataAction(str, enum.Enum):
    """Database actions accepted by the backup endpoint."""

    BACKUP = "backup"
    RESTORE = "restore"


class ActionKind(str, enum.Enum):
    """Every action an ActionRequest can carry."""

    START = "start"
    STOP = "stop"
    RESTART = "restart"
    LOGS = "logs"
    BACKUP = "backup"
    RESTORE = "restore"


class ErrorKind(str, enum.Enum):
    """Why a command did not succeed. Reported in logs, not in responses."""

    INVALID_ACTION = "InvalidAction"
    INVALID_TARGET_NAME = "InvalidTargetName"
    MISSING_FILENAME = "MissingFilename"
    INVALID_LINE_COUNT = "InvalidLineCount"
    FILE_NOT_FOUND = "FileNotFound"
    SUBPROCESS_FAILED = "SubprocessFailed"
    TIMED_OUT = "TimedOut"
    PERMISSION_DENIED = "PermissionDenied"


class Capability(str, enum.Enum):
    """Permissions a caller can hold."""

    VIEW = "devcontrol:view"  # read-only: status, logs, system info
    CONTAINERS = "devcontrol:containers"  # start/stop/restart
    MANAGE = "devcontrol:manage"  # backup/restore


# ---------------------------------------------------------------------------
# Requests and results
# ---------------------------------------------------------------------------


class ActionRequest(BaseModel):
    """A single requested action, constructed per incoming call."""

    model_config = ConfigDict(frozen=True)

    action: ActionKind
    target: str = Field(default="", description="Container name or backup filename")
    options: dict[str, Any] = Field(default_factory=dict)


class CommandResult(BaseModel):
    """Normalized outcome of one external command.

    ``success`` is true exactly when the process ran and exited with 0.
    Requests rejected before a process was spawned carry ``exit_code``
    of -1. ``command_line`` is for diagnostics and must not be returned
    to callers.
    """

    model_config = ConfigDict(frozen=True)

    success: bool
    exit_code: int
    output: str = ""
    command_line: str = ""
    error: ErrorKind | None = None
    message: str = ""

    @classmethod
    def rejected(cls, kind: ErrorKind, message: str) -> CommandResult:
        return cls(success=False, exit_code=-1, error=kind, message=message)


class BackupArtifact(BaseModel):
    """A database dump file in the backup directory."""

    model_config = ConfigDict(frozen=True)

    filename: str
    path: Path
    created_at: datetime
    size_bytes: int = Field(default=0, ge=0)


class ContainerInfo(BaseModel):
    """One row of ``docker ps -a --format json`` output."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    image: str
    status: str
    ports: str = ""

    @property
    def is_running(self) -> bool:
        return self.status.lower().startswith("up")


# ---------------------------------------------------------------------------
# Caller identity
# ---------------------------------------------------------------------------


class AuthContext(BaseModel):
    """Identity and permissions of the caller, resolved per request."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    capabilities: frozenset[Capability] = Field(default_factory=frozenset)

    def has(self, capability: Capability) -> bool:
        return capability in self.capabilities
