"""Subprocess execution for the command gateway.

The gateway never builds shell strings. It hands an argument vector to a
:class:`CommandExecutor`, which runs it and reports the exit code and the
merged stdout/stderr. Swapping the executor is how tests observe exactly
which commands would run.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shlex
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

EXIT_TIMED_OUT = 124
EXIT_NOT_EXECUTABLE = 126
EXIT_NOT_FOUND = 127


@dataclass(frozen=True)
class ExecOutcome:
    exit_code: int
    output: str
    timed_out: bool = False


def format_argv(argv: list[str]) -> str:
    """Render an argument vector for log lines."""
    return shlex.join(argv)


class CommandExecutor(ABC):
    """Runs one external command and waits for it to finish."""

    @abstractmethod
    async def run(
        self,
        argv: list[str],
        *,
        timeout: float,
        stdin_path: Path | None = None,
        stdout_path: Path | None = None,
        env: dict[str, str] | None = None,
    ) -> ExecOutcome:
        """Run ``argv`` and capture its combined output.

        Args:
            argv: Program and arguments. Never passed through a shell.
            timeout: Seconds before the process is killed.
            stdin_path: File to feed on stdin.
            stdout_path: File that receives stdout. When set, only stderr
                is captured as output.
            env: Extra environment variables for the child.

        Returns:
            The exit code and captured output. Failures to spawn are
            reported as exit codes, never raised.
        """
        ...


class SubprocessExecutor(CommandExecutor):
    """Runs commands with :func:`asyncio.create_subprocess_exec`.

    The child is killed if the timeout expires or if the awaiting task is
    cancelled, so an abandoned request never leaves an orphaned process.
    """

    async def run(
        self,
        argv: list[str],
        *,
        timeout: float,
        stdin_path: Path | None = None,
        stdout_path: Path | None = None,
        env: dict[str, str] | None = None,
    ) -> ExecOutcome:
        child_env = None
        if env:
            child_env = os.environ.copy()
            child_env.update(env)

        stdin_file = open(stdin_path, "rb") if stdin_path is not None else None
        try:
            stdout_file = open(stdout_path, "wb") if stdout_path is not None else None
        except OSError:
            if stdin_file is not None:
                stdin_file.close()
            raise
        try:
            try:
                proc = await asyncio.create_subprocess_exec(
                    *argv,
                    stdin=stdin_file if stdin_file is not None else asyncio.subprocess.DEVNULL,
                    stdout=stdout_file if stdout_file is not None else asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE if stdout_file is not None else asyncio.subprocess.STDOUT,
                    env=child_env,
                )
            except FileNotFoundError:
                return ExecOutcome(EXIT_NOT_FOUND, f"Command not found: {argv[0]}")
            except PermissionError as e:
                return ExecOutcome(EXIT_NOT_EXECUTABLE, f"Cannot execute {argv[0]}: {e}")

            logger.debug("Started pid=%d: %s", proc.pid, format_argv(argv))
            try:
                out, err = await asyncio.wait_for(proc.communicate(), timeout=timeout)
            except asyncio.TimeoutError:
                await _kill(proc)
                logger.warning("Timed out after %.1fs: %s", timeout, format_argv(argv))
                return ExecOutcome(
                    EXIT_TIMED_OUT,
                    f"Timed out after {timeout:g}s: {format_argv(argv)}",
                    timed_out=True,
                )
            except asyncio.CancelledError:
                await _kill(proc)
                logger.info("Cancelled, killed pid=%d", proc.pid)
                raise

            captured = out if stdout_file is None else err
            text = (captured or b"").decode("utf-8", errors="replace").strip()
            return ExecOutcome(proc.returncode, text)
        finally:
            if stdin_file is not None:
                stdin_file.close()
            if stdout_file is not None:
                stdout_file.close()


async def _kill(proc: asyncio.subprocess.Process) -> None:
    try:
        proc.kill()
    except ProcessLookupError:
        return
    await proc.wait()
