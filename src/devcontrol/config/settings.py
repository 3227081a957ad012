"""Configuration management for devcontrol.

Loads settings from a YAML configuration file with environment variable
overrides for sensitive values (database password, API tokens). Supports
.env files.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, SecretStr
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config/devcontrol.yaml")


class DockerConfig(BaseModel):
    docker_path: str = Field(default="docker", description="Docker executable")
    command_timeout: float = Field(default=30.0, gt=0)
    max_log_lines: int = Field(default=10000, gt=0)
    serialize_per_target: bool = Field(default=True)


class BackupConfig(BaseModel):
    backup_dir: Path = Field(default=Path("backups"))
    mysqldump_path: str = Field(default="mysqldump")
    mysql_path: str = Field(default="mysql")
    db_host: str = Field(default="localhost")
    db_port: int = Field(default=3306, ge=1, le=65535)
    db_user: str = Field(default="root")
    db_name: str = Field(default="app")
    extra_dump_args: list[str] = Field(default_factory=list)
    timeout: float = Field(default=600.0, gt=0)


class ServerConfig(BaseModel):
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8080, ge=1, le=65535)


class TokenGrant(BaseModel):
    user_id: str
    capabilities: list[str] = Field(default_factory=list)


class AuthConfig(BaseModel):
    tokens: dict[str, TokenGrant] = Field(default_factory=dict)


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO")
    format: str = Field(
        default="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    file: str | None = Field(default=None)


class Settings(BaseSettings):
    """Root configuration for the devcontrol service.

    Loads from YAML file and supports environment variable overrides.
    Reads .env files automatically.
    """

    model_config = {
        "env_prefix": "DEVCONTROL_",
        "env_nested_delimiter": "__",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    enabled: bool = Field(default=True)
    db_password: SecretStr = Field(default=SecretStr(""))

    # Configuration sections
    docker: DockerConfig = Field(default_factory=DockerConfig)
    backup: BackupConfig = Field(default_factory=BackupConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # YAML data arrives as init kwargs; env must win over it.
        return env_settings, dotenv_settings, init_settings, file_secret_settings


def load_settings(config_path: Path | str | None = None) -> Settings:
    """Load settings from YAML + .env + environment variables.

    Priority: env vars > .env file > YAML file > defaults
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    yaml_data = {}
    if path.exists():
        with open(path) as f:
            yaml_data = yaml.safe_load(f) or {}
        logger.info("Loaded configuration from %s", path)
    else:
        logger.warning("Config file %s not found, using defaults + env vars", path)

    _apply_env_overrides(yaml_data)

    return Settings(**yaml_data)


def _apply_env_overrides(yaml_data: dict) -> None:
    """Apply environment variable overrides for non-prefixed vars.

    MYSQL_PWD is honoured the same way the mysql client tools honour it,
    so an existing database environment works without renaming.
    """
    mysql_pwd = os.environ.get("MYSQL_PWD", "")
    if mysql_pwd:
        yaml_data["db_password"] = mysql_pwd
