"""Command gateway for devcontrol.

Validates requested actions, turns each into exactly one external
command, and normalizes the outcome into a CommandResult.

Public API:
    CommandGateway -- The gateway itself
    CommandExecutor -- Abstract subprocess runner
    SubprocessExecutor -- asyncio-based runner used in production
    ValidationError -- Raised by the validators
"""

from devcontrol.gateway.executor import CommandExecutor, ExecOutcome, SubprocessExecutor
from devcontrol.gateway.gateway import CommandGateway
from devcontrol.gateway.validation import ValidationError, is_safe_name, validate

__all__ = [
    "CommandExecutor",
    "CommandGateway",
    "ExecOutcome",
    "SubprocessExecutor",
    "ValidationError",
    "is_safe_name",
    "validate",
]
