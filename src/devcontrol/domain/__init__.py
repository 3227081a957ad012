"""Domain models for devcontrol.

This package contains the core data structures and enumerations used
throughout the service. All models use Pydantic v2 for validation and
serialization.
"""

from devcontrol.domain.models import (
    ActionKind,
    ActionRequest,
    AuthContext,
    BackupArtifact,
    Capability,
    CommandResult,
    ContainerAction,
    ContainerInfo,
    DataAction,
    ErrorKind,
)

__all__ = [
    "ActionKind",
    "ActionRequest",
    "AuthContext",
    "BackupArtifact",
    "Capability",
    "CommandResult",
    "ContainerAction",
    "ContainerInfo",
    "DataAction",
    "ErrorKind",
]
