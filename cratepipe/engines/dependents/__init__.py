"""Dependent checker: build downstream repos against this PR and its companions."""

from cratepipe.engines.dependents.companions import (
    Companion,
    CompanionRef,
    CompanionResolver,
    CompanionSet,
    parse_companion_expr,
)
from cratepipe.engines.dependents.matching import find_unowned_crates
from cratepipe.engines.dependents.runner import DependentCheckConfig, DependentCheckRunner

__all__ = [
    "Companion",
    "CompanionRef",
    "CompanionResolver",
    "CompanionSet",
    "DependentCheckConfig",
    "DependentCheckRunner",
    "find_unowned_crates",
    "parse_companion_expr",
]
