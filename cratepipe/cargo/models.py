"""Data models for cargo workspaces."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from pathlib import Path

from pydantic import BaseModel


class PublishPolicy(enum.Enum):
    """Tri-state ``package.publish``: true / false / absent-or-null."""

    ALWAYS = "always"
    NEVER = "never"
    DEFAULT = "default"

    @property
    def publishable(self) -> bool:
        return self is not PublishPolicy.NEVER


@dataclass(frozen=True)
class Crate:
    """A workspace package, immutable for the duration of a run."""

    name: str
    manifest_path: Path
    publish: PublishPolicy = PublishPolicy.DEFAULT
    source: str | None = None  # None when defined in this workspace

    @property
    def owned(self) -> bool:
        return self.source is None


# ── cargo metadata --format-version=1 ─────────────────────────────────────


class MetadataDependency(BaseModel):
    name: str
    source: str | None = None


class MetadataPackage(BaseModel):
    name: str
    version: str
    source: str | None = None
    manifest_path: str
    publish: list[str] | None = None
    dependencies: list[MetadataDependency] = []

    def to_crate(self) -> Crate:
        if self.publish is None:
            policy = PublishPolicy.DEFAULT
        elif not self.publish:
            policy = PublishPolicy.NEVER
        else:
            policy = PublishPolicy.ALWAYS
        return Crate(
            name=self.name,
            manifest_path=Path(self.manifest_path),
            publish=policy,
            source=self.source,
        )


class CargoMetadata(BaseModel):
    packages: list[MetadataPackage] = []
