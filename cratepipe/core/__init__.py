"""Shared infrastructure: logging, subprocesses, git and the GitHub API."""
