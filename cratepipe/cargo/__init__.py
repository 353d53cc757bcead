"""Cargo workspace introspection: manifests and ``cargo metadata``."""

from cratepipe.cargo.metadata import CargoWorkspace
from cratepipe.cargo.models import Crate, PublishPolicy

__all__ = ["CargoWorkspace", "Crate", "PublishPolicy"]
