"""crates.io ownership check for crates about to be published."""

from __future__ import annotations

from pathlib import Path

import httpx
import structlog

from cratepipe.exceptions import OwnershipError

log = structlog.get_logger("cratepipe.ownership")


class CratesIoClient:
    """Minimal async client for the crates.io owners endpoint."""

    def __init__(self, api_url: str) -> None:
        self.api_url = api_url.rstrip("/")
        self._client = httpx.AsyncClient(
            timeout=30.0,
            headers={"User-Agent": "cratepipe/0.1"},
            follow_redirects=True,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> CratesIoClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    def owners_url(self, crate: str) -> str:
        return f"{self.api_url}/v1/crates/{crate}/owners"

    async def get_owners(self, crate: str) -> httpx.Response:
        return await self._client.get(self.owners_url(crate))


async def check_crate_owner(
    client: CratesIoClient,
    crate: str,
    *,
    expected_owner: str,
    manifest: Path | None = None,
) -> str | None:
    """Return a problem description, or None when *expected_owner* owns *crate*.

    A crate that does not exist yet (404) is an expected-absence problem; it
    is reported, never raised.
    """
    log.info("ownership.check", crate=crate)
    url = client.owners_url(crate)
    try:
        resp = await client.get_owners(crate)
    except httpx.HTTPError as exc:
        return f"Request to {url} failed: {exc}"

    if resp.status_code == 404:
        return (
            f"Crate {crate} does not yet exist on crates.io. Please contact "
            "release-engineering to reserve the name in advance."
        )
    if resp.status_code >= 400:
        return f"Request to {url} failed with HTTP {resp.status_code}"

    try:
        logins = [user.get("login") for user in resp.json().get("users", [])]
    except (ValueError, AttributeError, TypeError) as exc:
        return f"Request to {url} returned an unexpected response: {exc}"
    if expected_owner in logins:
        return None

    origin = f"Crate {crate} was detected from {manifest}.\n\n" if manifest else ""
    return (
        f"{origin}Upon querying {url}, we found the following owners:\n"
        + "\n".join(str(login) for login in logins)
        + f"\n\nFailed to find owner {expected_owner} among the above owners.\n\n"
        f"Those owners were extracted from the following response:\n{resp.text}"
    )


async def check_ownership(
    crates: dict[str, Path | None],
    *,
    api_url: str,
    expected_owner: str,
    client: CratesIoClient | None = None,
) -> None:
    """Check every crate, then raise OwnershipError with all problems at once."""
    own_client = client is None
    client = client or CratesIoClient(api_url)
    problems: list[str] = []
    try:
        for crate, manifest in crates.items():
            problem = await check_crate_owner(
                client, crate, expected_owner=expected_owner, manifest=manifest
            )
            if problem is not None:
                log.warning("ownership.problem", crate=crate)
                problems.append(problem)
    finally:
        if own_client:
            await client.close()

    if problems:
        raise OwnershipError(problems)
