"""Command gateway: validated actions in, one external command out.

Each public coroutine validates its input, builds an argument vector for
``docker``, ``mysqldump`` or ``mysql``, runs it through the configured
:class:`CommandExecutor` and returns a :class:`CommandResult`. Nothing is
retried and subprocess failures are never raised.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import secrets
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path

from devcontrol.config.settings import BackupConfig, DockerConfig
from devcontrol.domain.models import (
    ActionKind,
    ActionRequest,
    BackupArtifact,
    CommandResult,
    ContainerAction,
    ContainerInfo,
    ErrorKind,
)
from devcontrol.gateway.executor import (
    CommandExecutor,
    ExecOutcome,
    SubprocessExecutor,
    format_argv,
)
from devcontrol.gateway.validation import (
    ValidationError,
    validate,
    validate_action,
    validate_line_count,
    validate_target,
)

logger = logging.getLogger(__name__)

DEFAULT_LOG_LINES = 100
BACKUP_NAME_FORMAT = "backup_%Y-%m-%d_%H-%M-%S.sql"
PARTIAL_SUFFIX = ".partial"


def default_backup_filename(now: datetime | None = None) -> str:
    """Timestamped backup name in UTC, second precision."""
    now = now or datetime.now(timezone.utc)
    return now.strftime(BACKUP_NAME_FORMAT)


class CommandGateway:
    """Translates validated actions into external command invocations.

    Usage::

        gateway = CommandGateway(DockerConfig(), BackupConfig())
        result = await gateway.run_container_action("restart", "web-01")
        if not result.success:
            print(result.output)
    """

    def __init__(
        self,
        docker: DockerConfig | None = None,
        backup: BackupConfig | None = None,
        db_password: str = "",
        executor: CommandExecutor | None = None,
    ) -> None:
        self._docker = docker or DockerConfig()
        self._backup = backup or BackupConfig()
        self._db_password = db_password
        self._executor = executor or SubprocessExecutor()
        # Entries live only while some operation holds or awaits the lock.
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    @property
    def backup_dir(self) -> Path:
        return self._backup.backup_dir

    # -------------------------------------------------------------------
    # Container operations
    # -------------------------------------------------------------------

    async def run_container_action(
        self, action: str | ContainerAction, container_name: str
    ) -> CommandResult:
        """Run ``docker <action> <container_name>``."""
        try:
            value = validate_action(action, ContainerAction)
            validate_target(container_name)
        except ValidationError as e:
            return self._reject(e)

        async with self._target_lock(f"container:{container_name}"):
            result = await self._execute(
                [self._docker.docker_path, value, container_name],
                timeout=self._docker.command_timeout,
            )
        if result.success:
            message = f"Container {container_name}: {value} succeeded"
        else:
            message = f"Container {container_name}: {value} failed"
        return result.model_copy(update={"message": message})

    async def fetch_logs(
        self, container_name: str, line_count: int = DEFAULT_LOG_LINES
    ) -> CommandResult:
        """Run ``docker logs --tail <line_count> <container_name>``."""
        try:
            validate_target(container_name)
            validate_line_count(line_count, self._docker.max_log_lines)
        except ValidationError as e:
            return self._reject(e)

        return await self._execute(
            [self._docker.docker_path, "logs", "--tail", str(line_count), container_name],
            timeout=self._docker.command_timeout,
        )

    async def list_containers(self) -> tuple[CommandResult, list[ContainerInfo]]:
        """List all containers via ``docker ps -a --format json``.

        Each output line is one JSON record. Lines that do not parse, or
        that lack the expected fields, are skipped.
        """
        result = await self._execute(
            [self._docker.docker_path, "ps", "-a", "--format", "json"],
            timeout=self._docker.command_timeout,
        )
        if not result.success:
            return result, []
        return result, parse_container_lines(result.output)

    async def docker_version(self) -> CommandResult:
        return await self._execute(
            [self._docker.docker_path, "version", "--format", "{{.Server.Version}}"],
            timeout=self._docker.command_timeout,
        )

    # -------------------------------------------------------------------
    # Database operations
    # -------------------------------------------------------------------

    async def run_backup(self, filename: str | None = None) -> CommandResult:
        """Dump the configured database to ``<backup_dir>/<filename>``."""
        if filename:
            try:
                validate_target(filename)
            except ValidationError as e:
                return self._reject(e)
        else:
            filename = default_backup_filename()

        backup_dir = self._backup.backup_dir
        try:
            backup_dir.mkdir(mode=0o755, parents=True, exist_ok=True)
        except OSError as e:
            logger.error("Cannot create backup dir %s: %s", backup_dir, e)
            return CommandResult(
                success=False,
                exit_code=-1,
                output=str(e),
                error=ErrorKind.SUBPROCESS_FAILED,
                message="Backup failed",
            )
        path = backup_dir / filename

        b = self._backup
        argv = [
            b.mysqldump_path,
            "--host", b.db_host,
            "--port", str(b.db_port),
            "--user", b.db_user,
            *b.extra_dump_args,
            b.db_name,
        ]
        # Dump into a temp file so an existing artifact is only replaced by a
        # complete dump, and a restore never sees a half-written file.
        partial = backup_dir / f".{filename}.{secrets.token_hex(4)}{PARTIAL_SUFFIX}"
        moved = False
        async with self._target_lock(f"backup:{filename}"):
            try:
                result = await self._execute(
                    argv, timeout=b.timeout, stdout_path=partial, env=self._db_env()
                )
                if result.success:
                    try:
                        os.replace(partial, path)
                        moved = True
                    except OSError as e:
                        logger.error("Cannot move dump into place at %s: %s", path, e)
                        result = result.model_copy(update={
                            "success": False,
                            "output": f"{result.output}\n{e}".strip(),
                            "error": ErrorKind.SUBPROCESS_FAILED,
                        })
            finally:
                if not moved:
                    partial.unlink(missing_ok=True)
        if result.success:
            message = f"Backup created: {filename}"
        else:
            message = "Backup failed"
        return result.model_copy(update={"message": message})

    async def run_restore(self, filename: str) -> CommandResult:
        """Load ``<backup_dir>/<filename>`` into the configured database."""
        try:
            validate("restore", filename)
        except ValidationError as e:
            return self._reject(e)

        path = self._resolve_backup(filename)
        if path is None:
            return self._reject(
                ValidationError(
                    f"Backup file not found: {filename}", ErrorKind.FILE_NOT_FOUND
                )
            )

        b = self._backup
        argv = [
            b.mysql_path,
            "--host", b.db_host,
            "--port", str(b.db_port),
            "--user", b.db_user,
            b.db_name,
        ]
        # Restores overwrite the whole database, so they share one lock.
        async with self._target_lock(f"database:{b.db_name}"):
            result = await self._execute(
                argv, timeout=b.timeout, stdin_path=path, env=self._db_env()
            )
        if result.success:
            message = f"Restore completed: {filename}"
        else:
            message = "Restore failed"
        return result.model_copy(update={"message": message})

    def list_backups(self) -> list[BackupArtifact]:
        """Backup files in the backup directory, newest first."""
        backup_dir = self._backup.backup_dir
        if not backup_dir.is_dir():
            return []
        artifacts = []
        for entry in backup_dir.iterdir():
            if not entry.is_file() or _is_partial(entry.name):
                continue
            st = entry.stat()
            artifacts.append(
                BackupArtifact(
                    filename=entry.name,
                    path=entry,
                    created_at=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
                    size_bytes=st.st_size,
                )
            )
        artifacts.sort(key=lambda a: a.created_at, reverse=True)
        return artifacts

    # -------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------

    async def execute(self, request: ActionRequest) -> CommandResult:
        """Dispatch an :class:`ActionRequest` to the matching operation."""
        action = request.action
        if action in (ActionKind.START, ActionKind.STOP, ActionKind.RESTART):
            return await self.run_container_action(action.value, request.target)
        if action is ActionKind.LOGS:
            lines = request.options.get("lines", DEFAULT_LOG_LINES)
            try:
                count = int(lines)
            except (TypeError, ValueError):
                return self._reject(
                    ValidationError(
                        f"Invalid line count: {lines!r}", ErrorKind.INVALID_LINE_COUNT
                    ),
                )
            return await self.fetch_logs(request.target, count)
        if action is ActionKind.BACKUP:
            return await self.run_backup(request.target or None)
        return await self.run_restore(request.target)

    # -------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------

    def _resolve_backup(self, filename: str) -> Path | None:
        """Return the backup path if it is an existing file inside backup_dir."""
        root = self._backup.backup_dir.resolve()
        candidate = (root / filename).resolve()
        if not candidate.is_relative_to(root) or candidate == root:
            logger.warning("Rejected restore path outside backup dir: %s", filename)
            return None
        if not candidate.is_file() or _is_partial(candidate.name):
            return None
        return candidate

    def _db_env(self) -> dict[str, str]:
        # mysql clients read MYSQL_PWD, keeping the password out of argv.
        return {"MYSQL_PWD": self._db_password} if self._db_password else {}

    @asynccontextmanager
    async def _target_lock(self, key: str) -> AsyncIterator[None]:
        if not self._docker.serialize_per_target:
            yield
            return
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        if lock.locked():
            logger.debug("Waiting for in-flight operation on %s", key)
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]

    async def _execute(
        self,
        argv: list[str],
        *,
        timeout: float,
        stdin_path: Path | None = None,
        stdout_path: Path | None = None,
        env: dict[str, str] | None = None,
    ) -> CommandResult:
        command_line = format_argv(argv)
        logger.debug("Executing: %s", command_line)
        try:
            outcome = await self._executor.run(
                argv,
                timeout=timeout,
                stdin_path=stdin_path,
                stdout_path=stdout_path,
                env=env,
            )
        except OSError as e:
            # Opening the redirect files failed; nothing was spawned.
            outcome = ExecOutcome(-1, f"I/O error: {e}")
        return _normalize(outcome, command_line)

    @staticmethod
    def _reject(error: ValidationError) -> CommandResult:
        logger.info("Rejected request (%s): %s", error.kind.value, error)
        return CommandResult.rejected(error.kind, str(error))


def _is_partial(name: str) -> bool:
    return name.startswith(".") and name.endswith(PARTIAL_SUFFIX)


def _normalize(outcome: ExecOutcome, command_line: str) -> CommandResult:
    success = outcome.exit_code == 0
    if success:
        error = None
    elif outcome.timed_out:
        error = ErrorKind.TIMED_OUT
    else:
        error = ErrorKind.SUBPROCESS_FAILED
    if not success:
        logger.warning(
            "Command failed (%s, exit=%d): %s", error.value, outcome.exit_code, command_line
        )
    return CommandResult(
        success=success,
        exit_code=outcome.exit_code,
        output=outcome.output,
        command_line=command_line,
        error=error,
    )


def parse_container_lines(output: str) -> list[ContainerInfo]:
    """Parse line-delimited ``docker ps`` JSON, skipping bad lines."""
    containers = []
    for line in output.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            record = json.loads(line)
            containers.append(
                ContainerInfo(
                    id=str(record["ID"]),
                    name=str(record["Names"]),
                    image=str(record["Image"]),
                    status=str(record["Status"]),
                    ports=str(record.get("Ports") or ""),
                )
            )
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            logger.debug("Skipping unparseable container line: %s (%s)", line[:200], e)
    return containers
