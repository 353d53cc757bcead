"""Companion pull request discovery from PR descriptions.

A description line of the form ``companion: <ref>`` names a pull request in a
sibling repository that must be built together with this one. Supported refs:

    companion: https://github.com/org/repo/pull/123
    companion: org/repo#123
    companion: repo#123

Companions are resolved recursively: each companion's own description is
scanned for further companions. The :class:`CompanionSet` doubles as the
visited set, so two PRs that reference each other terminate.
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

import structlog

from cratepipe.core import git
from cratepipe.core.github import GitHubClient, PullRequest
from cratepipe.exceptions import CheckSkipped, CompanionFormatError

log = structlog.get_logger("cratepipe.companions")

COMPANION_LINE_PATTERN = re.compile(r"companion:\s*(\S+)", re.IGNORECASE)

# "skip check-dependent-polkadot", "skip: continuous-integration/gitlab-<job>"
SKIP_PATTERN = re.compile(r"skip[^A-Za-z0-9]+(\S+)")


@dataclass(frozen=True)
class CompanionRef:
    repo: str
    pr_number: int


@dataclass(frozen=True)
class Companion:
    """A companion PR checked out locally."""

    repo: str
    pr_number: int
    branch: str
    path: Path


class CompanionSet:
    """Ordered, append-only companions keyed by repository name."""

    def __init__(self) -> None:
        self._registered: list[str] = []
        self._resolved: dict[str, Companion] = {}

    def register(self, repo: str) -> bool:
        """Claim *repo*; False if it was already claimed earlier in the run."""
        if repo in self._registered:
            return False
        self._registered.append(repo)
        return True

    def add(self, companion: Companion) -> None:
        self._resolved[companion.repo] = companion

    def get(self, repo: str) -> Companion | None:
        return self._resolved.get(repo)

    @property
    def names(self) -> list[str]:
        return list(self._registered)

    def __contains__(self, repo: object) -> bool:
        return repo in self._registered

    def __iter__(self) -> Iterator[Companion]:
        return (self._resolved[name] for name in self._registered if name in self._resolved)

    def __len__(self) -> int:
        return len(self._registered)


def parse_companion_expr(expr: str, org: str) -> CompanionRef:
    """Parse one companion token into a :class:`CompanionRef`.

    Raises CompanionFormatError for any shape outside the three supported ones
    or for references to another organization.
    """
    org_re = re.escape(org)
    patterns = (
        rf"^https://github\.com/{org_re}/([^/\s]+)/pull/(\d+)",
        rf"^{org_re}/([^#/\s]+)#(\d+)",
        r"^([^#/\s]+)#(\d+)",
    )
    for pattern in patterns:
        m = re.match(pattern, expr)
        if m:
            return CompanionRef(repo=m.group(1), pr_number=int(m.group(2)))
    raise CompanionFormatError(
        "Companion PR description had invalid format or did not belong to "
        f"organization {org}: {expr}"
    )


def find_companion_exprs(description: str) -> list[str]:
    """Return the companion token of every matching line, in order."""
    exprs: list[str] = []
    for line in description.splitlines():
        m = COMPANION_LINE_PATTERN.search(line)
        if m:
            exprs.append(m.group(1))
    return exprs


def find_skip_directive(description: str, job_name: str) -> str | None:
    """Return the first ``skip`` target addressed to *job_name*, if any."""
    accepted = {job_name, f"continuous-integration/gitlab-{job_name}"}
    for line in description.splitlines():
        m = SKIP_PATTERN.search(line)
        if m and m.group(1) in accepted:
            return m.group(1)
    return None


class CompanionResolver:
    """Recursively resolve and check out the companions of a pull request."""

    def __init__(
        self,
        github: GitHubClient,
        *,
        org: str,
        this_repo: str,
        companions_dir: Path,
        dependent_repo: str | None = None,
        job_name: str | None = None,
    ) -> None:
        self._github = github
        self.org = org
        self.this_repo = this_repo
        self.companions_dir = companions_dir
        self.dependent_repo = dependent_repo
        self.job_name = job_name

    async def resolve(self, pr_ref: str) -> CompanionSet:
        """Resolve every companion reachable from ``this_repo#pr_ref``.

        A non-numeric *pr_ref* (a branch build) has no description and
        resolves to an empty set. Raises CheckSkipped when the description
        opts the current job out.
        """
        companions = CompanionSet()
        if not pr_ref.isdigit():
            log.info("companions.not_a_pull_request", ref=pr_ref)
            return companions

        await self._process_description(self.this_repo, int(pr_ref), companions, root=True)
        log.info("companions.resolved", companions=companions.names)
        return companions

    # ── internal ───────────────────────────────────────────────────────────

    async def _process_description(
        self,
        repo: str,
        pr_number: int,
        companions: CompanionSet,
        *,
        root: bool = False,
        pull: PullRequest | None = None,
    ) -> None:
        log.info("companions.processing", repo=repo, pr_number=pr_number)
        if pull is None:
            pull = await self._github.get_pull_request(self.org, repo, pr_number)
        description = pull.body or ""

        # The escape hatch must win before any companion is cloned.
        if self.job_name and (root or repo == self.dependent_repo):
            directive = find_skip_directive(description, self.job_name)
            if directive is not None:
                raise CheckSkipped(f"Skipping {self.job_name} as specified in the PR description")

        for expr in find_companion_exprs(description):
            log.info("companions.detected", repo=repo, pr_number=pr_number, expr=expr)
            await self._process_expr(expr, companions)

    async def _process_expr(self, expr: str, companions: CompanionSet) -> None:
        ref = parse_companion_expr(expr, self.org)
        log.info("companions.parsed", repo=ref.repo, pr_number=ref.pr_number, expr=expr)

        if ref.repo == self.this_repo:
            log.info("companions.skip_self", expr=expr)
            return
        if not companions.register(ref.repo):
            log.info("companions.skip_registered", expr=expr, repo=ref.repo)
            return

        pull = await self._github.get_pull_request(self.org, ref.repo, ref.pr_number)
        path = self.companions_dir / ref.repo
        await git.shallow_clone(git.repo_url(self.org, ref.repo), path)
        await git.checkout_pull_request(path, ref.pr_number, pull.head.ref)
        companions.add(
            Companion(repo=ref.repo, pr_number=ref.pr_number, branch=pull.head.ref, path=path)
        )

        # companions of companions
        await self._process_description(ref.repo, ref.pr_number, companions, pull=pull)
