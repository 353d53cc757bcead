"""Crate publisher: select workspace crates and publish them through subpub."""

from cratepipe.engines.publisher.runner import PublishConfig, PublishRunner
from cratepipe.engines.publisher.selection import PublishSelection, parse_crate_list, select_crates

__all__ = [
    "PublishConfig",
    "PublishRunner",
    "PublishSelection",
    "parse_crate_list",
    "select_crates",
]
