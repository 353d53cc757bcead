"""Crate discovery from ``cargo metadata`` JSON."""

from __future__ import annotations

import json
from pathlib import Path

import structlog
from pydantic import ValidationError

from cratepipe.cargo.models import CargoMetadata, Crate
from cratepipe.core.process import run
from cratepipe.exceptions import DiscoveryError

log = structlog.get_logger("cratepipe.cargo")


def owned_crates_from(metadata: CargoMetadata) -> list[Crate]:
    """Packages whose source is null, first occurrence wins."""
    seen: set[str] = set()
    crates: list[Crate] = []
    for package in metadata.packages:
        crate = package.to_crate()
        if not crate.owned or crate.name in seen:
            continue
        seen.add(crate.name)
        crates.append(crate)
    return crates


def crate_sources_from(metadata: CargoMetadata) -> list[tuple[str, str]]:
    """Every ``(name, source)`` the graph declares, packages and dependencies alike."""
    pairs: list[tuple[str, str]] = []
    for package in metadata.packages:
        if package.source is not None:
            pairs.append((package.name, package.source))
        for dep in package.dependencies:
            if dep.source is not None:
                pairs.append((dep.name, dep.source))
    return pairs


async def load_metadata(root: Path) -> CargoMetadata:
    out = await run(
        ["cargo", "metadata", "--quiet", "--format-version=1"],
        cwd=root,
        capture=True,
    )
    try:
        return CargoMetadata.model_validate(json.loads(out))
    except (json.JSONDecodeError, ValidationError) as exc:
        raise DiscoveryError(f"Failed to parse cargo metadata of {root}: {exc}") from exc


class CargoWorkspace:
    """A cargo workspace on disk, queried through ``cargo metadata``."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self._owned: list[Crate] | None = None

    async def owned_crates(self) -> list[Crate]:
        """Crates defined in this workspace; computed once per instance."""
        if self._owned is not None:
            return self._owned

        metadata = await load_metadata(self.root)
        crates = owned_crates_from(metadata)
        if not crates:
            raise DiscoveryError(
                f"No crates were discovered from cargo metadata of {self.root} "
                "(some error probably occurred)"
            )
        log.info("cargo.owned_crates", root=str(self.root), crates=[c.name for c in crates])
        self._owned = crates
        return crates

    async def owned_crate_names(self) -> list[str]:
        return [crate.name for crate in await self.owned_crates()]

    async def crate_sources(self) -> list[tuple[str, str]]:
        """Fresh query of every declared ``(name, source)`` pair."""
        metadata = await load_metadata(self.root)
        if not metadata.packages:
            raise DiscoveryError(
                f"No packages were read from cargo metadata of {self.root} "
                "(some error probably occurred)"
            )
        return crate_sources_from(metadata)
