"""Configuration management for devcontrol.

Loads and validates YAML-based configuration with Pydantic models.
Supports environment variable overrides for sensitive values like
the database password.
"""

from devcontrol.config.settings import Settings, load_settings

__all__ = ["Settings", "load_settings"]
