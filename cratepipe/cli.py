"""CLI entry point: cratepipe.

Subcommands:
    cratepipe publish                                   # env-driven, see --help
    cratepipe check-dependent ORG REPO DIENER_ARG DEPENDENT TOKEN [UPDATE_CRATES]
"""

from __future__ import annotations

import asyncio
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path

import click

from cratepipe.core.github import DEFAULT_API_URL, GitHubClient
from cratepipe.core.logging import bind_job_context, setup_logging
from cratepipe.engines.dependents.runner import DependentCheckConfig, DependentCheckRunner
from cratepipe.engines.publisher.runner import PublishConfig, PublishRunner
from cratepipe.engines.publisher.selection import parse_crate_list
from cratepipe.exceptions import CheckSkipped, CommandError, CratePipeError

_PUBLISH_BANNER = """
publish
========================

Publishes workspace crates to the target crates.io instance of choice: either a
local crates.io instance supervised by this command or the official registry.
"""

_CHECK_DEPENDENT_BANNER = """
check-dependent
========================

This check ensures that this project's dependents do not suffer downstream
breakages from new code changes.
"""


def _execute(make: Callable[[], Awaitable[object]]) -> None:
    """Run a workflow coroutine and translate errors into exit codes."""
    try:
        asyncio.run(make())
    except CheckSkipped as e:
        click.echo(str(e))
    except CommandError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(e.returncode or 1)
    except CratePipeError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Verbose logging")
def main(verbose: bool) -> None:
    """cratepipe: CI orchestration for Rust workspaces."""
    setup_logging(verbose=verbose)


# ── publish ──


@main.command("publish")
@click.option("--root", type=click.Path(file_okay=False, path_type=Path), default=".", help="Workspace root")
@click.option("--target-instance", envvar="CRATESIO_TARGET_INSTANCE", required=True, help="local | default")
@click.option("--ref", "ref", envvar="CI_COMMIT_REF_NAME", required=True, help="Branch name or PR number")
@click.option("--repo-owner", envvar="REPO_OWNER", default=None, help="GitHub owner of this repository")
@click.option("--repo", envvar="REPO", default=None, help="GitHub name of this repository")
@click.option("--github-token", envvar="GITHUB_PR_TOKEN", default=None, help="Token for the PR files API")
@click.option("--github-api", envvar="GH_API", default=DEFAULT_API_URL, help="GitHub API base URL")
@click.option("--crates-owner", envvar="CRATESIO_CRATES_OWNER", default=None, help="Expected crates.io owner")
@click.option("--cratesio-api", envvar="CRATESIO_API", default="https://crates.io/api", help="crates.io API base URL")
@click.option("--start-from", envvar="SPUB_START_FROM", default=None)
@click.option("--publish", "publish_list", envvar="SPUB_PUBLISH", default=None, help="Extra crates to publish")
@click.option("--exclude", "exclude_list", envvar="SPUB_EXCLUDE", default=None, help="Crates to exclude")
@click.option("--verify-from", envvar="SPUB_VERIFY_FROM", default=None)
@click.option("--after-publish-delay", envvar="SPUB_AFTER_PUBLISH_DELAY", type=int, default=None)
@click.option(
    "--check-ownership/--no-check-ownership",
    envvar="CRATEPIPE_CHECK_OWNERSHIP",
    default=False,
    help="Verify crates.io ownership before publishing",
)
@click.option(
    "--registry-dir",
    envvar="CRATEPIPE_REGISTRY_DIR",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Prepared crates.io checkout (local target; default: <root>/.tmp/crates.io)",
)
def publish(
    root: Path,
    target_instance: str,
    ref: str,
    repo_owner: str | None,
    repo: str | None,
    github_token: str | None,
    github_api: str,
    crates_owner: str | None,
    cratesio_api: str,
    start_from: str | None,
    publish_list: str | None,
    exclude_list: str | None,
    verify_from: str | None,
    after_publish_delay: int | None,
    check_ownership: bool,
    registry_dir: Path | None,
) -> None:
    """Publish workspace crates through subpub."""
    click.echo(_PUBLISH_BANNER)
    bind_job_context(command="publish", ref=ref, target=target_instance)
    try:
        include = parse_crate_list(publish_list, variable="SPUB_PUBLISH")
        exclude = parse_crate_list(exclude_list, variable="SPUB_EXCLUDE")
    except CratePipeError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    config = PublishConfig(
        root=root.resolve(),
        target_instance=target_instance,
        ref=ref,
        repo_owner=repo_owner,
        repo=repo,
        crates_owner=crates_owner,
        cratesio_api=cratesio_api,
        start_from=start_from,
        verify_from=verify_from,
        after_publish_delay=after_publish_delay,
        include=include,
        exclude=exclude,
        check_ownership=check_ownership,
        registry_dir=registry_dir.resolve() if registry_dir else None,
    )

    async def _run() -> None:
        async with GitHubClient(github_token, base_url=github_api) as github:
            selection = await PublishRunner(config, github).run()
        if selection.short_circuit:
            click.echo("No changes relevant to publishing were detected; nothing to do.")

    _execute(_run)


# ── check-dependent ──


@main.command(
    "check-dependent",
    context_settings={"ignore_unknown_options": True},
)
@click.argument("org")
@click.argument("this_repo")
@click.argument("this_repo_diener_arg")
@click.argument("dependent_repo")
@click.argument("github_token")
@click.argument("update_crates", required=False, default="")
@click.option("--ref", "ref", envvar="CI_COMMIT_REF_NAME", required=True, help="Branch name or PR number")
@click.option("--job-name", envvar="CI_JOB_NAME", default=None, help="CI job name for skip directives")
@click.option("--check-command", envvar="COMPANION_CHECK_COMMAND", default=None, help="Override the check command")
@click.option("--github-api", envvar="GH_API", default=DEFAULT_API_URL, help="GitHub API base URL")
@click.option("--repo-dir", type=click.Path(file_okay=False, path_type=Path), default=".", help="This repository's checkout")
@click.option("--base-branch", default="master", show_default=True, help="Branch merged into the PR first")
@click.option("--merge-base/--no-merge-base", default=True, help="Merge the base branch before checking")
@click.option(
    "--match-crates/--no-match-crates",
    envvar="CRATEPIPE_MATCH_CRATES",
    default=True,
    help="Fail when the dependent references crates this repo no longer owns",
)
def check_dependent(
    org: str,
    this_repo: str,
    this_repo_diener_arg: str,
    dependent_repo: str,
    github_token: str,
    update_crates: str,
    ref: str,
    job_name: str | None,
    check_command: str | None,
    github_api: str,
    repo_dir: Path,
    base_branch: str,
    merge_base: bool,
    match_crates: bool,
) -> None:
    """Check that DEPENDENT_REPO still builds against this PR and its companions."""
    click.echo(_CHECK_DEPENDENT_BANNER)
    bind_job_context(command="check-dependent", ref=ref, dependent=dependent_repo, job=job_name)
    config = DependentCheckConfig(
        org=org,
        this_repo=this_repo,
        this_repo_diener_arg=this_repo_diener_arg,
        dependent_repo=dependent_repo,
        ref=ref,
        this_repo_dir=repo_dir.resolve(),
        update_crates=update_crates.split(),
        job_name=job_name,
        check_command=check_command,
        base_branch=base_branch,
        merge_base=merge_base,
        match_crates=match_crates,
    )

    async def _run() -> None:
        async with GitHubClient(github_token, base_url=github_api) as github:
            await DependentCheckRunner(config, github).run()

    _execute(_run)
