"""Decide which crates a publish run covers.

Pull-request builds (the CI ref is a PR number) select crates from the PR's
changed files; every other ref selects the whole workspace.
"""

from __future__ import annotations

from collections.abc import Collection
from dataclasses import dataclass, field
from pathlib import Path

import structlog

from cratepipe.cargo.manifest import MANIFEST_NAME, find_owning_crate, read_crate
from cratepipe.cargo.metadata import CargoWorkspace
from cratepipe.cargo.models import Crate
from cratepipe.core.github import GitHubClient
from cratepipe.exceptions import SelectionError

log = structlog.get_logger("cratepipe.selection")


@dataclass
class PublishSelection:
    crates: list[str] = field(default_factory=list)
    manifests: dict[str, Path] = field(default_factory=dict)
    verify_dependents: bool = False
    short_circuit: bool = False

    def add(self, crate: Crate) -> bool:
        if crate.name in self.manifests:
            return False
        self.crates.append(crate.name)
        self.manifests[crate.name] = crate.manifest_path
        return True


def is_pull_request(ref: str) -> bool:
    return ref.isdigit()


def parse_crate_list(value: str | None, *, variable: str) -> list[str]:
    """Split an operator-supplied crate list (newline and space delimited).

    Unset or empty means no crates. A line without any non-whitespace
    content is a format error.
    """
    if not value:
        return []
    text = value[:-1] if value.endswith("\n") else value
    if not text:
        return []

    names: list[str] = []
    for line in text.split("\n"):
        tokens = line.split()
        if not tokens:
            raise SelectionError(f"Crate name had unexpected format in {variable}: {line!r}")
        names.extend(tokens)
    return names


def select_from_changed_files(
    root: Path,
    changed_files: list[str],
    *,
    removed: Collection[str] = (),
) -> PublishSelection:
    """Select crates from a PR's changed files (paths relative to *root*).

    Changed manifests are selected unless ``publish = false``. When no
    manifest qualifies, each changed file's nearest package manifest is
    used instead and dependents get verified as well. Paths in *removed*
    no longer exist: they are skipped as manifests but still walked.
    """
    selection = PublishSelection()

    for rel in changed_files:
        path = Path(rel)
        if path.name != MANIFEST_NAME or len(path.parts) < 2 or rel in removed:
            continue
        crate = read_crate(root / path)
        if crate is None:
            log.debug("selection.virtual_manifest", manifest=rel)
            continue
        if not crate.publish.publishable:
            log.info("selection.not_publishable", crate=crate.name, manifest=rel)
            continue
        selection.add(crate)

    if selection.crates:
        return selection

    # Only code changed: fall back to the crates that contain it.
    for rel in changed_files:
        crate = find_owning_crate(root / rel, root)
        if crate is None or not crate.publish.publishable:
            continue
        if selection.add(crate):
            log.info("selection.inferred", crate=crate.name, changed_file=rel)

    if selection.crates:
        selection.verify_dependents = True
    else:
        selection.short_circuit = True
    return selection


async def select_crates(
    root: Path,
    *,
    ref: str,
    workspace: CargoWorkspace,
    github: GitHubClient | None = None,
    owner: str | None = None,
    repo: str | None = None,
) -> PublishSelection:
    """Pull-request mode for numeric refs, whole-workspace mode otherwise."""
    if not is_pull_request(ref):
        selection = PublishSelection()
        for crate in await workspace.owned_crates():
            selection.add(crate)
        log.info("selection.workspace", crates=selection.crates)
        return selection

    if github is None or not owner or not repo:
        raise SelectionError(
            f"Pull request {ref} needs the repository owner, name and a GitHub token "
            "to list its changed files"
        )

    files = await github.list_pull_request_files(owner, repo, ref)
    changed = [f.filename for f in files]
    removed = {f.filename for f in files if f.status == "removed"}
    log.info("selection.changed_files", pr_number=ref, count=len(changed), removed=len(removed))

    selection = select_from_changed_files(root, changed, removed=removed)
    if selection.short_circuit:
        log.info("selection.nothing_to_publish", pr_number=ref)
    else:
        log.info(
            "selection.pull_request",
            pr_number=ref,
            crates=selection.crates,
            verify_dependents=selection.verify_dependents,
        )
    return selection
