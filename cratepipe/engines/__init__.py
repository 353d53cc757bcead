"""Workflow engines: crate publishing and dependent checks."""
