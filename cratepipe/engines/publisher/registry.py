"""Ephemeral local crates.io instance for publish dry runs.

Expects an already prepared crates.io checkout (migrated database, local
index). :class:`LocalRegistry` starts the web server and the background
worker, waits for the server's auth token and the worker's readiness line,
and records every crate the worker commits to the index.

If either process fails at any point the registry tears everything down:
both processes are terminated, the coroutine running under
:meth:`LocalRegistry.supervise` is cancelled, and :class:`RegistryError`
propagates to the caller.
"""

from __future__ import annotations

import asyncio
import os
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TypeVar

import structlog

from cratepipe.core.process import child_env, terminate
from cratepipe.exceptions import RegistryError

log = structlog.get_logger("cratepipe.registry")

T = TypeVar("T")

WORKER_READY_LINE = "Runner booted, running jobs"

# e.g. Commit and push finished for "Updating crate `foo#0.1.0`"
CRATE_COMMITTED_PREFIX = 'Commit and push finished for "Updating crate `'
_COMMITTED_NAME_RE = re.compile(r"^([^#]+)#")

DEFAULT_SERVER_CMD = ["cargo", "run", "--quiet", "--bin", "server"]
DEFAULT_WORKER_CMD = ["cargo", "run", "--quiet", "--bin", "background-worker"]
LOCAL_API_URL = "http://localhost:8888/api/v1"


def parse_committed_line(line: str) -> str | None:
    """Crate name from a worker completion line, None for unrelated lines."""
    if not line.startswith(CRATE_COMMITTED_PREFIX):
        return None
    m = _COMMITTED_NAME_RE.match(line[len(CRATE_COMMITTED_PREFIX) :])
    if not m:
        raise RegistryError(f"background-worker line had unexpected format: {line}")
    return m.group(1)


@dataclass
class RegistryConfig:
    checkout_dir: Path
    committed_file: Path
    local_crates: list[str] = field(default_factory=list)
    server_cmd: list[str] = field(default_factory=lambda: list(DEFAULT_SERVER_CMD))
    worker_cmd: list[str] = field(default_factory=lambda: list(DEFAULT_WORKER_CMD))
    api_url: str = LOCAL_API_URL

    @property
    def index_dir(self) -> Path:
        return self.checkout_dir / "tmp" / "index-bare"


class LocalRegistry:
    """Supervise the crates.io server and background worker."""

    def __init__(self, config: RegistryConfig, *, token_prefix: str | None = None) -> None:
        self.config = config
        self.token_prefix = token_prefix or f"--{os.getpid()}--"
        self.token: str | None = None
        self._server: asyncio.subprocess.Process | None = None
        self._worker: asyncio.subprocess.Process | None = None
        self._tasks: list[asyncio.Task[None]] = []
        self._token_future: asyncio.Future[str] | None = None
        self._ready_future: asyncio.Future[str] | None = None
        self._failed = asyncio.Event()
        self._error: RegistryError | None = None
        self._stopping = False

    # ── lifecycle ──────────────────────────────────────────────────────────

    async def __aenter__(self) -> LocalRegistry:
        try:
            await self.start()
        except BaseException:
            await self.stop()
            raise
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.stop()

    async def start(self) -> str:
        """Start both processes and block until the registry is usable.

        Returns the auth token.
        """
        cfg = self.config
        loop = asyncio.get_running_loop()
        self._token_future = loop.create_future()
        self._ready_future = loop.create_future()

        cfg.committed_file.parent.mkdir(parents=True, exist_ok=True)
        cfg.committed_file.touch()

        env = self._server_env()
        self._server = await asyncio.create_subprocess_exec(
            *cfg.server_cmd,
            cwd=cfg.checkout_dir,
            env=env,
            stdout=asyncio.subprocess.PIPE,
        )
        self._tasks.append(
            asyncio.create_task(self._supervise("server", self._server, self._on_server_line))
        )

        log.info("registry.waiting_for_token")
        self.token = await self._rendezvous(self._token_future)
        log.info("registry.token_received")

        # The index is too big for a tmpfs TMPDIR.
        worker_tmp = cfg.checkout_dir / "tmp" / "worker-tmp"
        worker_tmp.mkdir(parents=True, exist_ok=True)
        self._worker = await asyncio.create_subprocess_exec(
            *cfg.worker_cmd,
            cwd=cfg.checkout_dir,
            env={**env, "TMPDIR": str(worker_tmp)},
            stdout=asyncio.subprocess.PIPE,
        )
        self._tasks.append(
            asyncio.create_task(self._supervise("background-worker", self._worker, self._on_worker_line))
        )

        log.info("registry.waiting_for_worker")
        await self._rendezvous(self._ready_future)
        log.info("registry.ready")
        return self.token

    async def stop(self) -> None:
        self._stopping = True
        for proc in (self._worker, self._server):
            if proc is not None:
                await terminate(proc)
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

    # ── public ─────────────────────────────────────────────────────────────

    def publish_env(self) -> dict[str, str]:
        """Environment for subpub to publish into this registry."""
        if self.token is None:
            raise RegistryError("local registry has not been started")
        return child_env(
            {
                "SPUB_REGISTRY": "local",
                "SPUB_CRATES_API": self.config.api_url,
                "CARGO_REGISTRIES_LOCAL_INDEX": f"file://{self.config.index_dir}",
                "SPUB_REGISTRY_TOKEN": self.token,
                "SPUB_CRATES_COMMITTED_FILE": str(self.config.committed_file),
            }
        )

    async def supervise(self, work: Awaitable[T] | Callable[[], Awaitable[T]]) -> T:
        """Run *work* while watching the registry; cancel it if the registry fails."""
        coro = work() if callable(work) else work
        task = asyncio.ensure_future(coro)
        failed = asyncio.ensure_future(self._failed.wait())
        try:
            await asyncio.wait({task, failed}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            failed.cancel()

        if task.done():
            return task.result()

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise self._failure()

    # ── internal ───────────────────────────────────────────────────────────

    def _server_env(self) -> dict[str, str]:
        cfg = self.config
        return child_env(
            {
                "GIT_REPO_URL": f"file://{cfg.index_dir}",
                "GH_CLIENT_ID": "",
                "GH_CLIENT_SECRET": "",
                "WEB_ALLOWED_ORIGINS": "http://localhost:8888,http://localhost:4200",
                "SESSION_KEY": "badkeyabcdefghijklmnopqrstuvwxyzabcdef",
                "CRATESIO_TOKEN_PREFIX": self.token_prefix,
                "WEB_NEW_PKG_RATE_LIMIT_BURST": "10248",
                "CRATESIO_LOCAL_CRATES": " ".join(cfg.local_crates),
            }
        )

    async def _rendezvous(self, future: asyncio.Future[str]) -> str:
        failed = asyncio.ensure_future(self._failed.wait())
        try:
            await asyncio.wait({future, failed}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            failed.cancel()
        if future.done():
            return future.result()
        raise self._failure()

    def _failure(self) -> RegistryError:
        return self._error or RegistryError("local registry failed")

    def _fail(self, message: str) -> None:
        if self._error is not None:
            return
        log.error("registry.failed", reason=message)
        self._error = RegistryError(message)
        self._failed.set()

    async def _supervise(
        self,
        name: str,
        proc: asyncio.subprocess.Process,
        on_line: Callable[[str], None],
    ) -> None:
        rendezvous = self._token_future if name == "server" else self._ready_future
        if proc.stdout is None or rendezvous is None:
            self._fail(f"Crates.io {name} was started without an output pipe")
            await terminate(proc)
            return

        try:
            async for raw in proc.stdout:
                on_line(raw.decode(errors="replace").rstrip("\r\n"))
        except RegistryError as exc:
            self._fail(str(exc))
            await terminate(proc)
            return
        except Exception as exc:
            self._fail(f"Failed to process output of crates.io {name}: {exc}")
            await terminate(proc)
            return

        returncode = await proc.wait()
        if self._stopping:
            return
        if returncode != 0:
            self._fail(f"Crates.io {name} failed (exit {returncode})")
        elif not rendezvous.done():
            what = "emitting a token" if name == "server" else "it was ready"
            self._fail(f"Crates.io {name} exited before {what}")

    def _on_server_line(self, line: str) -> None:
        marker = f"{self.token_prefix}="
        if line.startswith(marker):
            if not self._token_future.done():
                self._token_future.set_result(line[len(marker) :])
            return
        log.info("registry.server", line=line)

    def _on_worker_line(self, line: str) -> None:
        log.info("registry.worker", line=line)
        if line == WORKER_READY_LINE:
            if not self._ready_future.done():
                self._ready_future.set_result(line)
            return
        crate = parse_committed_line(line)
        if crate is not None:
            with self.config.committed_file.open("a", encoding="utf-8") as f:
                f.write(f"{crate}\n")
            log.info("registry.crate_committed", crate=crate)
