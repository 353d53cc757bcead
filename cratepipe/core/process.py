"""Async subprocess helpers shared by every workflow."""

from __future__ import annotations

import asyncio
import os
from collections.abc import Mapping
from pathlib import Path

import structlog

from cratepipe.exceptions import CommandError

log = structlog.get_logger("cratepipe.process")


def child_env(overrides: Mapping[str, str | None] | None = None) -> dict[str, str]:
    """Return a copy of the current environment with *overrides* applied.

    A ``None`` value removes the variable from the child environment.
    """
    env = dict(os.environ)
    for key, value in (overrides or {}).items():
        if value is None:
            env.pop(key, None)
        else:
            env[key] = value
    return env


async def run(
    cmd: list[str],
    *,
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
    capture: bool = False,
) -> str:
    """Run *cmd* and return its stdout when *capture* is set.

    Without *capture* the child inherits stdout/stderr so its output lands in
    the CI log as it is produced. Raises :class:`CommandError` on non-zero
    exit. The child is killed if the awaiting task is cancelled.
    """
    log.info("process.run", cmd=cmd, cwd=str(cwd) if cwd else None)
    proc = await asyncio.create_subprocess_exec(
        *cmd,
        cwd=cwd,
        env=dict(env) if env is not None else None,
        stdout=asyncio.subprocess.PIPE if capture else None,
        stderr=asyncio.subprocess.PIPE if capture else None,
    )
    stdout, stderr = await _communicate(proc)
    if proc.returncode != 0:
        raise CommandError(cmd, proc.returncode, stderr.decode(errors="replace") if stderr else "")
    return stdout.decode(errors="replace") if stdout else ""


async def run_shell(
    command: str,
    *,
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> None:
    """Run an operator-supplied shell command, raising on non-zero exit."""
    log.info("process.run_shell", command=command, cwd=str(cwd) if cwd else None)
    proc = await asyncio.create_subprocess_shell(
        command,
        cwd=cwd,
        env=dict(env) if env is not None else None,
    )
    await _communicate(proc)
    if proc.returncode != 0:
        raise CommandError(command, proc.returncode)


async def terminate(proc: asyncio.subprocess.Process, *, timeout: float = 10.0) -> None:
    """Terminate *proc*, escalating to SIGKILL after *timeout* seconds."""
    if proc.returncode is not None:
        return
    try:
        proc.terminate()
    except ProcessLookupError:
        return
    try:
        await asyncio.wait_for(proc.wait(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()


async def _communicate(proc: asyncio.subprocess.Process) -> tuple[bytes | None, bytes | None]:
    try:
        return await proc.communicate()
    except asyncio.CancelledError:
        await terminate(proc)
        raise
