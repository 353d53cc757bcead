"""``subpub publish`` invocation."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from pathlib import Path

from cratepipe.core.process import run
from cratepipe.engines.publisher.selection import PublishSelection


def build_publish_args(
    root: Path,
    selection: PublishSelection,
    *,
    include: Sequence[str] = (),
    exclude: Sequence[str] = (),
    start_from: str | None = None,
    verify_from: str | None = None,
    after_publish_delay: int | None = None,
) -> list[str]:
    args = ["publish", "--post-check", "--root", str(root)]

    if start_from:
        args += ["--start-from", start_from]

    seen: set[str] = set()
    for crate in [*selection.crates, *include]:
        if crate in seen:
            continue
        seen.add(crate)
        args += ["-c", crate]

    for crate in exclude:
        args += ["-e", crate]

    if verify_from:
        args += ["-v", verify_from]

    if after_publish_delay is not None:
        args += ["--after-publish-delay", str(after_publish_delay)]

    if selection.verify_dependents:
        args.append("--verify-dependents")

    return args


async def run_subpub(args: list[str], *, cwd: Path, env: Mapping[str, str]) -> None:
    await run(["subpub", *args], cwd=cwd, env=env)
