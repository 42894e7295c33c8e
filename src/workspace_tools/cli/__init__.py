"""
CLI module for workspace-tools.

Provides a command-line interface for inspecting configuration, checking
paths, running searches and managing backups.
"""

from workspace_tools.cli.main import cli

__all__ = ["cli"]
