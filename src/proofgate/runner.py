from __future__ import annotations

import asyncio
import logging
import os
import signal
import time
from typing import Protocol

from .models import CommandResult
from .sandbox import SandboxPath, Workspace
from .settings import RuntimeSettings

logger = logging.getLogger(__name__)

_KILL_GRACE_SECONDS = 2.0
_MAX_CAPTURE_CHARS = 10 * 1024 * 1024


class CommandExecutor(Protocol):
    async def run(
        self,
        project_id: str,
        command: str,
        *,
        timeout_ms: int | None = None,
        env: dict[str, str] | None = None,
        working_dir: str = ".",
    ) -> CommandResult: ...


class CommandRunner:
    """Run shell commands with the working directory bound to a project sandbox.

    The runner never raises for tool failures: a non-zero exit, a timeout, or an
    OS-level spawn error all come back as a ``CommandResult`` with
    ``success=False``. Only an invalid ``working_dir`` raises, before anything
    is spawned.
    """

    def __init__(self, workspace: Workspace, settings: RuntimeSettings | None = None) -> None:
        self.workspace = workspace
        self.settings = settings if settings is not None else RuntimeSettings.from_env()

    async def run(
        self,
        project_id: str,
        command: str,
        *,
        timeout_ms: int | None = None,
        env: dict[str, str] | None = None,
        working_dir: str = ".",
    ) -> CommandResult:
        cwd = self.workspace.resolve(project_id, working_dir)
        effective_timeout = timeout_ms if timeout_ms is not None else self.settings.default_command_timeout_ms
        return await run_in_sandbox(
            cwd,
            command,
            timeout_ms=effective_timeout,
            env={**self.settings.extra_env, **(env or {})},
            label=project_id,
        )


async def run_in_sandbox(
    cwd: SandboxPath,
    command: str,
    *,
    timeout_ms: int,
    env: dict[str, str] | None = None,
    label: str = "",
) -> CommandResult:
    """Execute ``command`` through the shell inside ``cwd``.

    The child runs in its own session so that a timeout can take down the whole
    process group (npm, node, and any browsers it spawned) rather than only the
    shell.
    """
    logger.info("Executing command in %s (%s): %s", label or cwd.root.name, cwd, command)
    started = time.monotonic()
    proc_env = {**os.environ, **(env or {})}
    try:
        proc = await asyncio.create_subprocess_shell(
            command,
            cwd=str(cwd.absolute),
            env=proc_env,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=True,
        )
    except OSError as exc:
        logger.error("Failed to spawn %r: %s", command, exc)
        return CommandResult(
            stdout="",
            stderr=str(exc),
            exit_code=127 if isinstance(exc, FileNotFoundError) else 1,
            success=False,
            duration_ms=_elapsed_ms(started),
        )

    try:
        stdout_raw, stderr_raw = await asyncio.wait_for(proc.communicate(), timeout=timeout_ms / 1000)
    except asyncio.TimeoutError:
        await _kill_process_group(proc)
        logger.warning("Command timed out after %dms: %s", timeout_ms, command)
        return CommandResult(
            stdout="",
            stderr=f"Command timed out after {timeout_ms}ms",
            exit_code=124,
            success=False,
            timed_out=True,
            duration_ms=_elapsed_ms(started),
        )

    exit_code = proc.returncode if proc.returncode is not None else 1
    stdout = _decode(stdout_raw)
    stderr = _decode(stderr_raw)
    if exit_code != 0:
        logger.warning("Command exited with %d: %s", exit_code, command)
    return CommandResult(
        stdout=stdout,
        stderr=stderr,
        exit_code=exit_code,
        success=exit_code == 0,
        duration_ms=_elapsed_ms(started),
    )


async def _kill_process_group(proc: asyncio.subprocess.Process) -> None:
    for sig in (signal.SIGTERM, signal.SIGKILL):
        if proc.returncode is not None:
            return
        try:
            os.killpg(proc.pid, sig)
        except ProcessLookupError:
            return
        except PermissionError:
            proc.kill()
        try:
            await asyncio.wait_for(proc.wait(), timeout=_KILL_GRACE_SECONDS)
        except asyncio.TimeoutError:
            continue


def _decode(raw: bytes | None) -> str:
    if not raw:
        return ""
    return raw.decode("utf-8", errors="replace")[-_MAX_CAPTURE_CHARS:]


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
