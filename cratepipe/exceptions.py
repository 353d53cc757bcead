"""Custom exceptions for cratepipe."""

from __future__ import annotations


class CratePipeError(Exception):
    """Base exception for all cratepipe errors."""


class DiscoveryError(CratePipeError):
    """Raised when the workspace yields no crates (broken environment)."""


class ManifestError(CratePipeError):
    """Raised when a Cargo.toml cannot be interpreted."""


class SelectionError(CratePipeError):
    """Raised when operator-supplied crate lists are malformed."""


class CompanionFormatError(CratePipeError):
    """Raised when a companion line does not match any supported shape."""


class CrateMatchError(CratePipeError):
    """Raised when a dependent references crates we no longer own."""

    def __init__(self, target: str, crates: list[str]):
        self.target = target
        self.crates = crates
        lines = [f'Failed to detect our crate "{crate}" referenced in {target}' for crate in crates]
        super().__init__(
            "Errors during crate matching\n\n"
            + "\n".join(lines)
            + "\n\nNote: this error generally happens if you have deleted or renamed a crate "
            f"and did not update it in {target}. Consider opening a companion pull request on "
            f"{target} and referencing it in this pull request's description like:\n"
            f"{target} companion: [your companion PR here]"
        )


class OwnershipError(CratePipeError):
    """Raised when crates.io ownership checks report problems."""

    def __init__(self, problems: list[str]):
        self.problems = problems
        super().__init__("\n\n".join(problems))


class RegistryError(CratePipeError):
    """Raised when the local registry server or worker fails."""


class CommandError(CratePipeError):
    """Raised when an external command exits with a non-zero status."""

    def __init__(self, cmd: list[str] | str, returncode: int, stderr: str = ""):
        self.cmd = cmd
        self.returncode = returncode
        self.stderr = stderr
        shown = cmd if isinstance(cmd, str) else " ".join(cmd)
        detail = f": {stderr.strip()}" if stderr.strip() else ""
        super().__init__(f"command failed (exit {returncode}): {shown}{detail}")


class GitHubError(CratePipeError):
    """Raised when a GitHub API request fails."""


class NotFoundError(GitHubError):
    """GitHub resource not found (HTTP 404)."""


class CheckSkipped(CratePipeError):
    """Raised when a PR description opts the current job out of the check."""
