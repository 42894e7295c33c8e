"""
Settings and configuration for workspace tools.

Example:
    ```python
    from workspace_tools.settings import load_config

    # Defaults <- .workspace-tools.yaml <- environment variables
    config = load_config()
    print(config.workspace.dir)

    # Explicit file
    config = WorkspaceToolsConfig.from_file("/etc/workspace-tools.yaml")
    ```
"""

from workspace_tools.settings.config import (
    FilesConfig,
    LoggingConfig,
    RateLimit,
    RateLimitsConfig,
    SearchConfig,
    WorkspaceConfig,
    WorkspaceToolsConfig,
    load_config,
)

__all__ = [
    "WorkspaceToolsConfig",
    "WorkspaceConfig",
    "SearchConfig",
    "FilesConfig",
    "RateLimit",
    "RateLimitsConfig",
    "LoggingConfig",
    "load_config",
]
