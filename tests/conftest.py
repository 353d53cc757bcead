"""Shared pytest fixtures for cratepipe tests."""

from __future__ import annotations

from pathlib import Path

import pytest


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


def _write_manifest(path: Path, name: str | None, *, publish: str | None = None) -> Path:
    """Write a minimal Cargo.toml; *publish* is inserted verbatim as TOML."""
    path.parent.mkdir(parents=True, exist_ok=True)
    lines = ["[package]"]
    if name is not None:
        lines.append(f'name = "{name}"')
    lines.append('version = "0.1.0"')
    if publish is not None:
        lines.append(f"publish = {publish}")
    path.write_text("\n".join(lines) + "\n")
    return path


@pytest.fixture
def make_manifest():
    return _write_manifest


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """A virtual workspace root with no member crates yet."""
    (tmp_path / "Cargo.toml").write_text('[workspace]\nmembers = ["crates/*"]\n')
    return tmp_path
