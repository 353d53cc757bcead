"""cratepipe: CI orchestration for multi-crate Rust workspaces.

Two workflows are exposed through ``cratepipe.cli:main``:

- ``publish``: select workspace crates and hand them to ``subpub``, optionally
  against an ephemeral local crates.io instance.
- ``check-dependent``: resolve companion pull requests, patch a dependent
  repository onto local checkouts and run its check command.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
