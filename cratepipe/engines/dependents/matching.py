"""Crate-source matching between this workspace and a dependent."""

from __future__ import annotations

from collections.abc import Iterable, Mapping

import structlog

from cratepipe.cargo.metadata import CargoWorkspace
from cratepipe.exceptions import CrateMatchError

log = structlog.get_logger("cratepipe.matching")


def our_crates_source(org: str, repo: str) -> str:
    return f"git+https://github.com/{org}/{repo}"


def points_at(source: str, base: str) -> bool:
    """True when *source* is *base* itself or *base* plus a query/fragment."""
    return source == base or source.startswith((f"{base}?", f"{base}#"))


def find_unowned_crates(
    owned: Iterable[str],
    their_crates: Mapping[str, str] | Iterable[tuple[str, str]],
    our_source: str,
) -> list[str]:
    """Crates the dependent pulls from our source that we do not own.

    Each offending name is reported once, in first-seen order.
    """
    owned_names = set(owned)
    pairs = their_crates.items() if isinstance(their_crates, Mapping) else their_crates

    not_found: list[str] = []
    for name, source in pairs:
        if not points_at(source, our_source):
            continue
        if name in owned_names or name in not_found:
            continue
        not_found.append(name)
    return not_found


async def match_their_crates(
    dependent: CargoWorkspace,
    *,
    target_name: str,
    owned: Iterable[str],
    our_source: str,
) -> None:
    """Raise CrateMatchError if *dependent* references crates we do not own."""
    their_crates = await dependent.crate_sources()
    not_found = find_unowned_crates(owned, their_crates, our_source)
    if not_found:
        log.error("matching.crates_not_found", target=target_name, crates=not_found)
        raise CrateMatchError(target_name, not_found)
    log.info("matching.ok", target=target_name)
