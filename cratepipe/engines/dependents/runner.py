"""DependentCheckRunner: the check-dependent workflow end to end."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import structlog

from cratepipe.cargo.metadata import CargoWorkspace
from cratepipe.core import git
from cratepipe.core.github import GitHubClient
from cratepipe.engines.dependents.companions import CompanionResolver, CompanionSet
from cratepipe.engines.dependents.matching import our_crates_source
from cratepipe.engines.dependents.patcher import patch_and_check

log = structlog.get_logger("cratepipe.dependents")


@dataclass
class DependentCheckConfig:
    org: str
    this_repo: str
    this_repo_diener_arg: str
    dependent_repo: str
    ref: str
    this_repo_dir: Path
    update_crates: list[str] = field(default_factory=list)
    job_name: str | None = None
    check_command: str | None = None
    base_branch: str = "master"
    merge_base: bool = True
    match_crates: bool = True

    @property
    def companions_dir(self) -> Path:
        return self.this_repo_dir / "companions"


class DependentCheckRunner:
    """Merge base → discover crates → resolve companions → patch → check."""

    def __init__(self, config: DependentCheckConfig, github: GitHubClient) -> None:
        self.config = config
        self._github = github
        self.workspace = CargoWorkspace(config.this_repo_dir)

    async def run(self) -> None:
        """Execute the workflow; raises CheckSkipped or a CratePipeError subclass."""
        cfg = self.config

        if cfg.merge_base:
            await git.configure_identity()
            log.info("dependents.merge_base", base=cfg.base_branch, ref=cfg.ref)
            await git.merge_base_into_ref(
                cfg.this_repo_dir,
                base=cfg.base_branch,
                ref=cfg.ref,
                message=f"{cfg.base_branch} was merged into the pr by cratepipe check-dependent",
            )

        owned = await self.workspace.owned_crate_names()

        resolver = CompanionResolver(
            self._github,
            org=cfg.org,
            this_repo=cfg.this_repo,
            companions_dir=cfg.companions_dir,
            dependent_repo=cfg.dependent_repo,
            job_name=cfg.job_name,
        )
        companions = await resolver.resolve(cfg.ref)

        dependent_dir = await self.locate_dependent(companions)
        await patch_and_check(
            dependent_dir,
            target_name=cfg.dependent_repo,
            owned=owned,
            our_source=our_crates_source(cfg.org, cfg.this_repo),
            companions=companions,
            this_repo_dir=cfg.this_repo_dir,
            this_repo_diener_arg=cfg.this_repo_diener_arg,
            update=cfg.update_crates,
            check_command=cfg.check_command,
            match_crates=cfg.match_crates,
        )
        log.info("dependents.check_passed", dependent=cfg.dependent_repo)

    async def locate_dependent(self, companions: CompanionSet) -> Path:
        """Companion checkout, else an existing ``./<dependent>``, else a fresh clone."""
        cfg = self.config
        companion = companions.get(cfg.dependent_repo)
        if companion is not None:
            return companion.path

        existing = cfg.this_repo_dir / cfg.dependent_repo
        if existing.is_dir():
            return existing

        target = cfg.companions_dir / cfg.dependent_repo
        log.info("dependents.clone_default_branch", dependent=cfg.dependent_repo)
        return await git.shallow_clone(git.repo_url(cfg.org, cfg.dependent_repo), target)
