"""Git helpers for cloning companions and preparing the PR branch."""

from __future__ import annotations

from pathlib import Path

import structlog

from cratepipe.core.process import run

log = structlog.get_logger("cratepipe.git")


def repo_url(org: str, repo: str) -> str:
    return f"https://github.com/{org}/{repo}.git"


async def configure_identity(name: str = "CI system", email: str = "<>") -> None:
    """Set the global identity so that merges can be committed on CI."""
    await _git(["config", "--global", "user.name", name])
    await _git(["config", "--global", "user.email", email])
    await _git(["config", "--global", "pull.rebase", "false"])


async def shallow_clone(url: str, target: Path) -> Path:
    """Clone *url* into *target* with depth 1 and return *target*.

    Raises ``CommandError`` on non-zero exit.
    """
    target.parent.mkdir(parents=True, exist_ok=True)
    await _git(["clone", "--depth=1", "--", url, str(target)])
    return target


async def checkout_pull_request(path: Path, pr_number: int, ref: str) -> None:
    """Fetch only the head of PR *pr_number* as local branch *ref* and check it out."""
    await _git(["fetch", "--depth=1", "origin", f"pull/{pr_number}/head:{ref}"], cwd=path)
    await _git(["checkout", ref], cwd=path)


async def merge_base_into_ref(path: Path, *, base: str, ref: str, message: str) -> None:
    """Merge *base* into *ref* so checks see the code as it would land."""
    await _git(["fetch", "origin", f"+{base}:{base}"], cwd=path)
    await _git(["fetch", "origin", f"+{ref}:{ref}"], cwd=path)
    await _git(["checkout", ref], cwd=path)
    await _git(["merge", base, "--verbose", "--no-edit", "-m", message], cwd=path)


async def _git(args: list[str], *, cwd: Path | None = None) -> str:
    out = await run(["git", *args], cwd=cwd, capture=True)
    if out.strip():
        log.debug("git.output", args=args, output=out.strip())
    return out
