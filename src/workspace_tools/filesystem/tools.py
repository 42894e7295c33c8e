"""
Unified workspace tools interface.

Exposes every workspace operation by name so agents can call them through
function calling (OpenAI function calling format).
"""

import logging
from typing import Any, Awaitable, Callable

from pydantic import ValidationError

from workspace_tools.filesystem.audit import OperationLogger
from workspace_tools.filesystem.backup import BackupManager
from workspace_tools.filesystem.cache import SearchCache
from workspace_tools.filesystem.directories import DirectoryOperations
from workspace_tools.filesystem.files import FileOperations
from workspace_tools.filesystem.models import (
    CopyFileParams,
    CreateDirectoryParams,
    DeleteDirectoryParams,
    DeleteFileParams,
    FileExistsParams,
    FindDuplicatesParams,
    GetFileInfoParams,
    ListDirectoryParams,
    MoveDirectoryParams,
    OperationParams,
    RenameFileParams,
    SearchContentParams,
    SearchFilesParams,
    ToolResult,
    utc_timestamp,
)
from workspace_tools.filesystem.rate_limiter import RateLimiter
from workspace_tools.filesystem.search import SearchOperations
from workspace_tools.settings.config import WorkspaceToolsConfig

logger = logging.getLogger(__name__)

TOOL_DESCRIPTIONS: dict[str, str] = {
    "rename_file": "Rename or move a file inside the workspace. "
    "An existing destination is only replaced with overwrite: true (a backup is taken first).",
    "delete_file": "Delete a file. Requires confirm: true. A backup is taken unless create_backup is false.",
    "copy_file": "Copy a file to a new location inside the workspace.",
    "file_exists": "Check whether a path exists and whether it is a file or a directory.",
    "get_file_info": "Get size, timestamps, permissions and MIME type of a file or directory.",
    "list_directory": "List the contents of a directory. Use this to explore the workspace structure.",
    "create_directory": "Create a directory, including missing parents by default.",
    "delete_directory": "Delete a directory. Requires confirm: true; non-empty directories "
    "also need recursive: true and force: true. The directory is archived first.",
    "move_directory": "Move or rename a directory. Use overwrite or merge when the destination exists.",
    "search_files": "Find files by name using a substring, glob (e.g. '*.py') or regular expression. "
    "Results are ranked by relevance.",
    "search_content": "Search file contents for text or a regular expression. "
    "Returns matching lines with line numbers and surrounding context.",
    "find_duplicates": "Find duplicate files by content hash, name, or size and name.",
}


class WorkspaceTools:
    """
    Unified workspace interface for agent function calling.

    All operation groups share one rate limiter, one backup manager and
    one audit logger, so budgets and backups are consistent no matter
    which group serves a call.

    Usage:
        config = load_config()
        tools = WorkspaceTools(config)

        # Get tool schemas for the model
        schemas = tools.get_tool_schemas()

        # Execute tool call
        result = await tools.execute_tool(
            tool_name="search_content",
            arguments={"agent": "agent-1", "query": "TODO", "file_types": ["py"]},
        )
    """

    def __init__(self, config: WorkspaceToolsConfig):
        """
        Initialize workspace tools.

        Args:
            config: Complete configuration
        """
        self.config = config
        self.rate_limiter = RateLimiter(config.rate_limits)
        self.backups = BackupManager(config.files)
        self.audit = OperationLogger()
        self.cache = SearchCache(config.search.cache_ttl_ms)

        self.files = FileOperations(config, self.rate_limiter, self.audit, self.backups)
        self.directories = DirectoryOperations(
            config, self.rate_limiter, self.audit, self.backups
        )
        self.search = SearchOperations(
            config, self.rate_limiter, self.audit, cache=self.cache
        )

        self._tools: dict[
            str, tuple[type[OperationParams], Callable[[Any], Awaitable[ToolResult]]]
        ] = {
            # File operations
            "rename_file": (RenameFileParams, self.files.rename_file),
            "delete_file": (DeleteFileParams, self.files.delete_file),
            "copy_file": (CopyFileParams, self.files.copy_file),
            "file_exists": (FileExistsParams, self.files.file_exists),
            "get_file_info": (GetFileInfoParams, self.files.get_file_info),
            # Directory operations
            "list_directory": (ListDirectoryParams, self.directories.list_directory),
            "create_directory": (CreateDirectoryParams, self.directories.create_directory),
            "delete_directory": (DeleteDirectoryParams, self.directories.delete_directory),
            "move_directory": (MoveDirectoryParams, self.directories.move_directory),
            # Search operations
            "search_files": (SearchFilesParams, self.search.search_files),
            "search_content": (SearchContentParams, self.search.search_content),
            "find_duplicates": (FindDuplicatesParams, self.search.find_duplicates),
        }

    @property
    def tool_names(self) -> list[str]:
        return list(self._tools)

    def get_tool_schemas(self) -> list[dict[str, Any]]:
        """
        Get OpenAI function calling schemas for all available tools.

        Parameter schemas are generated from the parameter models, so
        they always match what execute_tool accepts.

        Returns:
            List of tool schemas in OpenAI format
        """
        schemas = []
        for name, (params_cls, _) in self._tools.items():
            parameters = params_cls.model_json_schema()
            parameters.pop("title", None)
            schemas.append(
                {
                    "type": "function",
                    "function": {
                        "name": name,
                        "description": TOOL_DESCRIPTIONS[name],
                        "parameters": parameters,
                    },
                }
            )
        return schemas

    async def execute_tool(self, tool_name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        """
        Execute a tool by name.

        Args:
            tool_name: Name of the tool to execute
            arguments: Tool arguments (from the function call)

        Returns:
            Tool execution result as a dict

        Raises:
            ValueError: If tool name is unknown
        """
        if tool_name not in self._tools:
            raise ValueError(f"Unknown tool: {tool_name}")

        params_cls, operation = self._tools[tool_name]
        try:
            params = params_cls.model_validate(arguments or {})
        except ValidationError as e:
            logger.warning(f"Tool {tool_name} called with invalid arguments: {e}")
            return {
                "success": False,
                "timestamp": utc_timestamp(),
                "error": _describe_validation_error(e),
                "error_type": "InvalidParameterError",
            }

        result = await operation(params)
        if not result.success:
            logger.debug(f"Tool {tool_name} failed: {result.error_type}: {result.error}")
        return result.model_dump(mode="json")

    def cleanup(self) -> dict[str, int]:
        """
        Drop expired rate windows and cache entries.

        Returns:
            Number of removed items per store
        """
        return {
            "rate_windows": self.rate_limiter.cleanup(),
            "cache_entries": self.cache.cleanup(),
        }

    def get_summary(self) -> dict[str, Any]:
        """
        Get a summary of the workspace tools configuration.

        Returns:
            Dict with configuration summary
        """
        return {
            "workspace": str(self.config.workspace.dir),
            "protected_paths": list(self.config.workspace.protected_paths),
            "tools": self.tool_names,
            "backup_enabled": self.config.files.backup_enabled,
            "backup_dir": str(self.config.files.backup_dir),
            "backup_retention_days": self.config.files.backup_retention_days,
            "rate_limiting_enabled": self.config.rate_limits.enabled,
            "max_search_results": self.config.search.max_results,
            "max_file_size_mb": self.config.search.max_file_size / (1024 * 1024),
            "cache_enabled": self.config.search.cache_enabled,
            "cache_ttl_ms": self.config.search.cache_ttl_ms,
        }


def _describe_validation_error(error: ValidationError) -> str:
    problems = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "arguments"
        problems.append(f"{location}: {item['msg']}")
    return "Invalid arguments: " + "; ".join(problems)
