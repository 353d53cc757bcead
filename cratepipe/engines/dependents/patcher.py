"""Patch a dependent onto local checkouts and run its check command."""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path

import structlog

from cratepipe.cargo.metadata import CargoWorkspace
from cratepipe.core.process import run, run_shell
from cratepipe.engines.dependents.companions import Companion
from cratepipe.engines.dependents.matching import match_their_crates

log = structlog.get_logger("cratepipe.patcher")

# Repositories diener knows how to patch with --<name>.
# FIXME: query the diener CLI for this list once it exposes one.
DIENER_PATCH_TARGETS = ("substrate", "polkadot", "cumulus")

DEFAULT_CHECK_COMMAND = "cargo check --all-targets --workspace"


def diener_patch_cmd(*crates_to_patch: str) -> list[str]:
    """``diener patch`` of the dependent's Cargo.toml; arguments are passed verbatim."""
    return ["diener", "patch", "--crates-to-patch", *crates_to_patch, "--path", "Cargo.toml"]


async def update_crates(dependent_dir: Path, names: Iterable[str]) -> None:
    """``cargo update -p`` each name so the lockfile follows the upstream branch."""
    for name in names:
        await run(["cargo", "update", "-p", name], cwd=dependent_dir)


async def patch_companions(dependent_dir: Path, companions: Iterable[Companion]) -> list[str]:
    """Patch supported companions into the dependent; return the patched repos."""
    patched: list[str] = []
    for companion in companions:
        if companion.repo not in DIENER_PATCH_TARGETS:
            log.warning(
                "patcher.companion_unsupported",
                companion=companion.repo,
                note="specified but not patched through diener; perhaps diener does not support it",
            )
            continue
        log.info("patcher.patch_companion", companion=companion.repo, dependent=str(dependent_dir))
        await run(diener_patch_cmd(f"--{companion.repo}", str(companion.path)), cwd=dependent_dir)
        patched.append(companion.repo)
    return patched


async def patch_and_check(
    dependent_dir: Path,
    *,
    target_name: str,
    owned: list[str],
    our_source: str,
    companions: Iterable[Companion],
    this_repo_dir: Path,
    this_repo_diener_arg: str,
    update: Iterable[str] = (),
    check_command: str | None = None,
    match_crates: bool = True,
) -> None:
    """Run the full patch-and-check sequence inside *dependent_dir*.

    Raises CrateMatchError before touching the dependent when it references
    crates we do not own, and CommandError when any step (including the
    check command itself) fails.
    """
    if match_crates:
        await match_their_crates(
            CargoWorkspace(dependent_dir),
            target_name=target_name,
            owned=owned,
            our_source=our_source,
        )
    else:
        log.warning("patcher.matching_disabled", target=target_name)

    await update_crates(dependent_dir, update)
    await patch_companions(dependent_dir, companions)
    await run(diener_patch_cmd(str(this_repo_dir), this_repo_diener_arg), cwd=dependent_dir)

    command = check_command or DEFAULT_CHECK_COMMAND
    log.info("patcher.check", dependent=target_name, command=command)
    await run_shell(command, cwd=dependent_dir)
