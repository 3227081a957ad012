"""Shared test fixtures for the devcontrol test suite.

Provides a fake command executor that records every argument vector it
is asked to run, plus gateway and settings fixtures built on it.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from devcontrol.config.settings import AuthConfig, BackupConfig, DockerConfig, Settings, TokenGrant
from devcontrol.gateway.executor import CommandExecutor, ExecOutcome
from devcontrol.gateway.gateway import CommandGateway


class FakeExecutor(CommandExecutor):
    """Records calls and replays canned outcomes.

    Outcomes are consumed in order; once exhausted, ``default`` is used.
    When a call redirects stdout to a file, ``stdout_text`` is written
    there, like the real executor would.
    """

    def __init__(self, *outcomes: ExecOutcome, default: ExecOutcome | None = None) -> None:
        self.outcomes = list(outcomes)
        self.default = default or ExecOutcome(0, "")
        self.calls: list[dict] = []
        self.stdout_text = "-- dump --\n"

    async def run(self, argv, *, timeout, stdin_path=None, stdout_path=None, env=None):  # type: ignore[no-untyped-def]
        self.calls.append({
            "argv": list(argv),
            "timeout": timeout,
            "stdin_path": stdin_path,
            "stdout_path": stdout_path,
            "env": env,
        })
        if stdout_path is not None:
            Path(stdout_path).write_text(self.stdout_text)
        if self.outcomes:
            return self.outcomes.pop(0)
        return self.default

    @property
    def argvs(self) -> list[list[str]]:
        return [c["argv"] for c in self.calls]


@pytest.fixture
def fake_executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def backup_dir(tmp_path: Path) -> Path:
    return tmp_path / "backups"


@pytest.fixture
def backup_config(backup_dir: Path) -> BackupConfig:
    return BackupConfig(
        backup_dir=backup_dir,
        db_host="db.internal",
        db_port=3307,
        db_user="app",
        db_name="appdb",
    )


@pytest.fixture
def gateway(fake_executor: FakeExecutor, backup_config: BackupConfig) -> CommandGateway:
    return CommandGateway(
        docker=DockerConfig(),
        backup=backup_config,
        db_password="s3cret",
        executor=fake_executor,
    )


ADMIN_TOKEN = "admin-token"
VIEWER_TOKEN = "viewer-token"


@pytest.fixture
def settings(backup_config: BackupConfig) -> Settings:
    return Settings(
        backup=backup_config,
        auth=AuthConfig(tokens={
            ADMIN_TOKEN: TokenGrant(
                user_id="admin",
                capabilities=["devcontrol:view", "devcontrol:containers", "devcontrol:manage"],
            ),
            VIEWER_TOKEN: TokenGrant(user_id="viewer", capabilities=["devcontrol:view"]),
        }),
    )
