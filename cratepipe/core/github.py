"""Async GitHub API client for pull request metadata."""

from __future__ import annotations

import re
from collections.abc import AsyncGenerator
from typing import Any

import httpx
import structlog
from pydantic import BaseModel, ValidationError

from cratepipe.exceptions import GitHubError, NotFoundError

log = structlog.get_logger("cratepipe.github")

DEFAULT_API_URL = "https://api.github.com"

_NEXT_LINK_RE = re.compile(r'<([^>]+)>;\s*rel="next"')


class PullRequestHead(BaseModel):
    ref: str


class PullRequest(BaseModel):
    number: int
    body: str | None = None
    head: PullRequestHead


class PullRequestFile(BaseModel):
    filename: str
    status: str = "modified"


class GitHubClient:
    """Thin async wrapper around the GitHub REST API.

    Failures are not retried: callers treat any error other than a 404 as
    fatal for the run.
    """

    def __init__(self, token: str | None = None, *, base_url: str = DEFAULT_API_URL) -> None:
        headers: dict[str, str] = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if token:
            headers["Authorization"] = f"token {token}"
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=30.0,
            follow_redirects=True,
        )

    # ── lifecycle ──────────────────────────────────────────────────────────

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> GitHubClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # ── pull requests ──────────────────────────────────────────────────────

    async def get_pull_request(self, owner: str, repo: str, number: int | str) -> PullRequest:
        """Fetch a pull request; ``head.ref`` is required."""
        data = await self.get(f"/repos/{owner}/{repo}/pulls/{number}")
        try:
            return PullRequest.model_validate(data)
        except ValidationError as exc:
            raise GitHubError(f"{repo}#{number} is missing head.ref: {exc}") from exc

    async def list_pull_request_files(
        self, owner: str, repo: str, number: int | str
    ) -> list[PullRequestFile]:
        """List every file touched by a pull request (follows pagination)."""
        files: list[PullRequestFile] = []
        async for item in self.get_paginated(f"/repos/{owner}/{repo}/pulls/{number}/files"):
            try:
                files.append(PullRequestFile.model_validate(item))
            except ValidationError as exc:
                raise GitHubError(f"{repo}#{number} listed a malformed file entry: {exc}") from exc
        return files

    # ── generic ────────────────────────────────────────────────────────────

    async def get_paginated(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        *,
        max_pages: int = 30,
    ) -> AsyncGenerator[dict[str, Any], None]:
        """Yield JSON items from a paginated GitHub API endpoint.

        Follows ``Link: <...>; rel="next"`` headers. Stops after
        *max_pages* pages (GitHub caps PR file listings at 3000 entries).
        """
        url: str | None = path
        params = dict(params or {})
        params.setdefault("per_page", 100)
        page = 0

        while url and page < max_pages:
            response = await self._request(url, params if page == 0 else None)
            data = self._json(response)
            if isinstance(data, list):
                for item in data:
                    yield item
            else:
                yield data

            url = self._parse_next_link(response.headers.get("Link", ""))
            page += 1

    async def get(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """Single-resource GET, returns parsed JSON."""
        response = await self._request(path, params)
        return self._json(response)

    # ── internal ───────────────────────────────────────────────────────────

    async def _request(self, url: str, params: dict[str, Any] | None = None) -> httpx.Response:
        """GET *url*; 404 raises NotFoundError, every other failure GitHubError."""
        try:
            resp = await self._client.get(url, params=params)
        except httpx.HTTPError as exc:
            raise GitHubError(f"request to {url} failed: {exc}") from exc

        if resp.status_code == 404:
            raise NotFoundError(f"{url} was not found")
        if resp.status_code >= 400:
            log.warning("github.request_failed", url=url, status=resp.status_code)
            raise GitHubError(f"request to {url} failed with HTTP {resp.status_code}")
        return resp

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise GitHubError(f"{response.request.url} returned invalid JSON: {exc}") from exc

    @staticmethod
    def _parse_next_link(link_header: str) -> str | None:
        """Extract the ``next`` URL from a GitHub ``Link`` header."""
        match = _NEXT_LINK_RE.search(link_header)
        return match.group(1) if match else None
