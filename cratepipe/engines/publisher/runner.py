"""PublishRunner: the publish workflow end to end."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import structlog

from cratepipe.cargo.metadata import CargoWorkspace
from cratepipe.core.github import GitHubClient
from cratepipe.core.process import child_env
from cratepipe.engines.publisher.ownership import check_ownership
from cratepipe.engines.publisher.registry import LocalRegistry, RegistryConfig
from cratepipe.engines.publisher.selection import PublishSelection, select_crates
from cratepipe.engines.publisher.subpub import build_publish_args, run_subpub
from cratepipe.exceptions import SelectionError

log = structlog.get_logger("cratepipe.publisher")

TARGET_INSTANCES = ("local", "default")
DEFAULT_CRATES_API = "http://crates.io/api/v1"


@dataclass
class PublishConfig:
    root: Path
    target_instance: str
    ref: str
    repo_owner: str | None = None
    repo: str | None = None
    crates_owner: str | None = None
    cratesio_api: str = "https://crates.io/api"
    start_from: str | None = None
    verify_from: str | None = None
    after_publish_delay: int | None = None
    include: list[str] = field(default_factory=list)
    exclude: list[str] = field(default_factory=list)
    check_ownership: bool = False
    registry_dir: Path | None = None

    @property
    def tmp_dir(self) -> Path:
        return self.root / ".tmp"

    @property
    def committed_file(self) -> Path:
        return self.tmp_dir / "crates-committed"


class PublishRunner:
    """Select → (ownership check) → (local registry) → subpub publish."""

    def __init__(self, config: PublishConfig, github: GitHubClient | None = None) -> None:
        self.config = config
        self._github = github
        self.workspace = CargoWorkspace(config.root)

    async def run(self) -> PublishSelection:
        cfg = self.config
        if cfg.target_instance not in TARGET_INSTANCES:
            raise SelectionError(f"Invalid target: {cfg.target_instance}")

        self._prepare_tmp_dir()

        selection = await select_crates(
            cfg.root,
            ref=cfg.ref,
            workspace=self.workspace,
            github=self._github,
            owner=cfg.repo_owner,
            repo=cfg.repo,
        )
        if selection.short_circuit:
            log.info("publisher.no_relevant_changes", ref=cfg.ref)
            return selection

        if cfg.check_ownership:
            if not cfg.crates_owner:
                raise SelectionError("The crates.io ownership check needs the expected crates owner")
            await check_ownership(
                dict(selection.manifests),
                api_url=cfg.cratesio_api,
                expected_owner=cfg.crates_owner,
            )

        args = build_publish_args(
            cfg.root,
            selection,
            include=cfg.include,
            exclude=cfg.exclude,
            start_from=cfg.start_from,
            verify_from=cfg.verify_from,
            after_publish_delay=cfg.after_publish_delay,
        )

        if cfg.target_instance == "local":
            await self._publish_locally(args)
        else:
            env = child_env({"SPUB_CRATES_API": DEFAULT_CRATES_API})
            await run_subpub(args, cwd=cfg.root, env=env)
        return selection

    async def _publish_locally(self, args: list[str]) -> None:
        cfg = self.config
        registry_config = RegistryConfig(
            checkout_dir=cfg.registry_dir or cfg.tmp_dir / "crates.io",
            committed_file=cfg.committed_file,
            local_crates=await self.workspace.owned_crate_names(),
        )
        async with LocalRegistry(registry_config) as registry:
            await registry.supervise(run_subpub(args, cwd=cfg.root, env=registry.publish_env()))

    def _prepare_tmp_dir(self) -> None:
        tmp = self.config.tmp_dir
        tmp.mkdir(parents=True, exist_ok=True)
        (tmp / ".gitignore").write_text("*\n", encoding="utf-8")
