"""Tests for LocalRegistry, using small Python scripts as server and worker."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import pytest

from cratepipe.engines.publisher.registry import (
    CRATE_COMMITTED_PREFIX,
    WORKER_READY_LINE,
    LocalRegistry,
    RegistryConfig,
    parse_committed_line,
)
from cratepipe.exceptions import RegistryError

PREFIX = "--4242--"


def _script(*lines: str, exit_code: int | None = None, linger: float = 60.0) -> list[str]:
    body = ["import sys, time"]
    body += [f"print({line!r}, flush=True)" for line in lines]
    if exit_code is not None:
        body.append(f"sys.exit({exit_code})")
    else:
        body.append(f"time.sleep({linger})")
    return [sys.executable, "-c", "\n".join(body)]


def _committed(name: str) -> str:
    return f'{CRATE_COMMITTED_PREFIX}{name}#0.1.0`"'


def _config(tmp_path: Path, server: list[str], worker: list[str]) -> RegistryConfig:
    return RegistryConfig(
        checkout_dir=tmp_path / "crates.io",
        committed_file=tmp_path / ".tmp" / "crates-committed",
        local_crates=["foo", "bar"],
        server_cmd=server,
        worker_cmd=worker,
    )


@pytest.fixture
def checkout(tmp_path):
    (tmp_path / "crates.io").mkdir()
    return tmp_path


class TestParseCommittedLine:
    def test_crate_name(self):
        assert parse_committed_line(_committed("sp-core")) == "sp-core"

    def test_unrelated_line(self):
        assert parse_committed_line("Running job") is None

    def test_malformed(self):
        with pytest.raises(RegistryError, match="unexpected format"):
            parse_committed_line(f"{CRATE_COMMITTED_PREFIX}no-version`\"")


class TestLocalRegistry:
    @pytest.mark.anyio
    async def test_start_collects_token_and_commits(self, checkout):
        config = _config(
            checkout,
            server=_script("Listening at 127.0.0.1:8888", f"{PREFIX}=tok123"),
            worker=_script(_committed("foo"), WORKER_READY_LINE, _committed("bar")),
        )
        async with LocalRegistry(config, token_prefix=PREFIX) as registry:
            assert registry.token == "tok123"
            env = registry.publish_env()
            for _ in range(50):
                if config.committed_file.read_text().count("\n") == 2:
                    break
                await asyncio.sleep(0.05)

        assert env["SPUB_REGISTRY"] == "local"
        assert env["SPUB_REGISTRY_TOKEN"] == "tok123"
        assert env["SPUB_CRATES_API"] == "http://localhost:8888/api/v1"
        assert env["CARGO_REGISTRIES_LOCAL_INDEX"] == f"file://{config.index_dir}"
        assert env["SPUB_CRATES_COMMITTED_FILE"] == str(config.committed_file)
        assert config.committed_file.read_text().splitlines() == ["foo", "bar"]
        assert (config.checkout_dir / "tmp" / "worker-tmp").is_dir()

    @pytest.mark.anyio
    async def test_supervise_returns_work_result(self, checkout):
        config = _config(
            checkout,
            server=_script(f"{PREFIX}=t"),
            worker=_script(WORKER_READY_LINE),
        )

        async def work() -> str:
            await asyncio.sleep(0.01)
            return "published"

        async with LocalRegistry(config, token_prefix=PREFIX) as registry:
            assert await registry.supervise(work()) == "published"

    @pytest.mark.anyio
    async def test_server_exits_before_token(self, checkout):
        config = _config(
            checkout,
            server=_script("boom", exit_code=1),
            worker=_script(WORKER_READY_LINE),
        )
        with pytest.raises(RegistryError, match="server failed"):
            async with LocalRegistry(config, token_prefix=PREFIX):
                pass

    @pytest.mark.anyio
    async def test_server_clean_exit_without_token(self, checkout):
        config = _config(
            checkout,
            server=_script("nothing here", exit_code=0),
            worker=_script(WORKER_READY_LINE),
        )
        with pytest.raises(RegistryError, match="before emitting a token"):
            async with LocalRegistry(config, token_prefix=PREFIX):
                pass

    @pytest.mark.anyio
    async def test_worker_exits_before_ready(self, checkout):
        config = _config(
            checkout,
            server=_script(f"{PREFIX}=t"),
            worker=_script("starting", exit_code=0),
        )
        with pytest.raises(RegistryError, match="before it was ready"):
            async with LocalRegistry(config, token_prefix=PREFIX):
                pass

    @pytest.mark.anyio
    async def test_malformed_worker_line_is_fatal(self, checkout):
        config = _config(
            checkout,
            server=_script(f"{PREFIX}=t"),
            worker=_script(f"{CRATE_COMMITTED_PREFIX}garbage`\"", WORKER_READY_LINE),
        )
        with pytest.raises(RegistryError, match="unexpected format"):
            async with LocalRegistry(config, token_prefix=PREFIX):
                pass

    @pytest.mark.anyio
    async def test_oversized_worker_line_is_fatal(self, checkout):
        worker = [
            sys.executable,
            "-c",
            "import time\nprint('x' * 200000, flush=True)\ntime.sleep(60)",
        ]
        config = _config(checkout, server=_script(f"{PREFIX}=t"), worker=worker)

        async def start() -> None:
            async with LocalRegistry(config, token_prefix=PREFIX):
                pass

        with pytest.raises(RegistryError, match="Failed to process output of crates.io background-worker"):
            await asyncio.wait_for(start(), timeout=10)

    @pytest.mark.anyio
    async def test_unwritable_committed_file_is_fatal(self, checkout):
        config = _config(
            checkout,
            server=_script(f"{PREFIX}=t"),
            worker=_script(_committed("foo"), WORKER_READY_LINE),
        )
        # a directory where the committed-crates file should be
        config.committed_file = checkout / "committed-dir"
        config.committed_file.mkdir()

        async def start() -> None:
            async with LocalRegistry(config, token_prefix=PREFIX):
                pass

        with pytest.raises(RegistryError, match="Failed to process output"):
            await asyncio.wait_for(start(), timeout=10)

    @pytest.mark.anyio
    async def test_worker_crash_cancels_work(self, checkout):
        worker = [
            sys.executable,
            "-c",
            "import sys, time\n"
            f"print({WORKER_READY_LINE!r}, flush=True)\n"
            "time.sleep(0.3)\n"
            "sys.exit(3)",
        ]
        config = _config(checkout, server=_script(f"{PREFIX}=t"), worker=worker)
        cancelled = asyncio.Event()

        async def work() -> None:
            try:
                await asyncio.sleep(30)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        async with LocalRegistry(config, token_prefix=PREFIX) as registry:
            with pytest.raises(RegistryError, match="exit 3"):
                await registry.supervise(work)
        assert cancelled.is_set()

    def test_publish_env_requires_start(self, checkout):
        registry = LocalRegistry(_config(checkout, server=[], worker=[]))
        with pytest.raises(RegistryError):
            registry.publish_env()
