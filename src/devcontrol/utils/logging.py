"""Logging setup utilities for devcontrol.

Configures logging for the entire application based on the logging
configuration settings, and provides the audit logger that records
every gateway action.
"""

from __future__ import annotations

import logging
import sys

from devcontrol.config.settings import LoggingConfig
from devcontrol.domain.models import AuthContext, CommandResult

audit_logger = logging.getLogger("devcontrol.audit")


def setup_logging(config: LoggingConfig | None = None) -> None:
    """Configure logging for the devcontrol application.

    Sets up the ``devcontrol`` logger with the specified level, format,
    and optional file handler. Calling it again replaces the handlers
    instead of stacking duplicates.

    Args:
        config: Logging configuration. If None, uses defaults
                (INFO level, stderr output).
    """
    if config is None:
        config = LoggingConfig()

    root_logger = logging.getLogger("devcontrol")
    root_logger.setLevel(getattr(logging, config.level.upper(), logging.INFO))
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(config.format)

    # Console handler
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # File handler (optional)
    if config.file:
        file_handler = logging.FileHandler(config.file)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    root_logger.info("Logging initialized at %s level", config.level)


def audit(
    auth: AuthContext,
    action: str,
    target: str,
    result: CommandResult,
    client: str | None = None,
) -> None:
    """Record one gateway action with who asked for it and how it went."""
    audit_logger.info(
        "user=%s action=%s target=%s success=%s exit=%d error=%s client=%s cmd=%s",
        auth.user_id,
        action,
        target or "-",
        result.success,
        result.exit_code,
        result.error.value if result.error else "-",
        client or "-",
        result.command_line or "-",
    )
