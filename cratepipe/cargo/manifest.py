"""Cargo.toml reading: package name, publish policy and owning-manifest lookup."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from cratepipe.cargo.models import Crate, PublishPolicy
from cratepipe.exceptions import ManifestError

MANIFEST_NAME = "Cargo.toml"


def load_manifest(path: Path) -> dict[str, Any]:
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except (OSError, tomllib.TOMLDecodeError) as exc:
        raise ManifestError(f"Failed to parse {path}: {exc}") from exc


def publish_policy(value: object, manifest_path: Path) -> PublishPolicy:
    """Map a raw ``package.publish`` value onto :class:`PublishPolicy`.

    Only absent/null, ``true`` and ``false`` are accepted.
    """
    if value is None:
        return PublishPolicy.DEFAULT
    if value is True:
        return PublishPolicy.ALWAYS
    if value is False:
        return PublishPolicy.NEVER
    raise ManifestError(
        f"Unexpected value for .package.publish of {manifest_path}: {value!r} "
        "(expected true, false or nothing)"
    )


def read_crate(manifest_path: Path) -> Crate | None:
    """Read the ``[package]`` table of *manifest_path*.

    Returns None for virtual manifests (no ``[package]`` table).
    """
    data = load_manifest(manifest_path)
    package = data.get("package")
    if package is None:
        return None
    if not isinstance(package, dict):
        raise ManifestError(f"Failed to parse .package of {manifest_path}")
    name = package.get("name")
    if not isinstance(name, str) or not name:
        raise ManifestError(f"Failed to parse .package.name of {manifest_path}")
    return Crate(
        name=name,
        manifest_path=manifest_path,
        publish=publish_policy(package.get("publish"), manifest_path),
    )


def find_owning_crate(file_path: Path, root: Path) -> Crate | None:
    """Walk up from *file_path*'s directory to the nearest package manifest.

    The walk never leaves *root*; virtual manifests are passed over.
    """
    root = root.resolve()
    directory = file_path.resolve().parent
    if directory != root and root not in directory.parents:
        return None

    while True:
        candidate = directory / MANIFEST_NAME
        if candidate.is_file():
            crate = read_crate(candidate)
            if crate is not None:
                return crate
        if directory == root:
            return None
        directory = directory.parent
