"""
Tests for guarded directory operations.
"""

import os
import stat
import tarfile
import tempfile
from pathlib import Path

import pytest
from pydantic import ValidationError

from workspace_tools.filesystem import DirectoryOperations
from workspace_tools.filesystem.models import (
    CreateDirectoryParams,
    DeleteDirectoryParams,
    ListDirectoryParams,
    MoveDirectoryParams,
)
from workspace_tools.settings import FilesConfig, WorkspaceConfig, WorkspaceToolsConfig


@pytest.fixture
def temp_dir():
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir).resolve()


@pytest.fixture
def workspace(temp_dir):
    """Create a project tree with nested directories."""
    root = temp_dir / "workspace"
    (root / "src" / "pkg").mkdir(parents=True)
    (root / "docs").mkdir()
    (root / "src" / "main.py").write_text("print('main')\n")
    (root / "src" / "pkg" / "util.py").write_text("VALUE = 1\n")
    (root / "docs" / "guide.md").write_text("# Guide\n" * 20)
    (root / "README.md").write_text("readme\n")
    (root / ".hidden").write_text("hidden\n")
    return root


@pytest.fixture
def directories(temp_dir, workspace):
    """Create a DirectoryOperations instance."""
    return DirectoryOperations(
        WorkspaceToolsConfig(
            workspace=WorkspaceConfig(dir=workspace, protected_paths=(".git", "secrets")),
            files=FilesConfig(backup_dir=temp_dir / "backups"),
        )
    )


class TestListDirectory:
    """Test DirectoryOperations.list_directory."""

    @pytest.mark.asyncio
    async def test_list_root(self, directories):
        """Test a non-recursive listing with directories first."""
        result = await directories.list_directory(ListDirectoryParams(agent="a"))

        assert result.success is True
        assert [(e.type, e.name) for e in result.files] == [
            ("directory", "docs"),
            ("directory", "src"),
            ("file", "README.md"),
        ]
        assert result.total_files == 1
        assert result.total_directories == 2
        assert result.total_size == len("readme\n")
        assert result.depth == 1

    @pytest.mark.asyncio
    async def test_hidden_files(self, directories):
        """Test that dot-files are only listed on request."""
        result = await directories.list_directory(
            ListDirectoryParams(agent="a", include_hidden=True)
        )
        assert ".hidden" in [e.name for e in result.files]

    @pytest.mark.asyncio
    async def test_recursive(self, directories):
        """Test a recursive listing with depths and relative paths."""
        result = await directories.list_directory(
            ListDirectoryParams(agent="a", path="src", recursive=True)
        )

        entries = {e.path: e for e in result.files}
        assert set(entries) == {"pkg", "main.py", "pkg/util.py"}
        assert entries["main.py"].depth == 0
        assert entries["pkg/util.py"].depth == 1
        assert result.depth == 10

    @pytest.mark.asyncio
    async def test_max_depth(self, directories):
        """Test limiting recursion depth."""
        result = await directories.list_directory(
            ListDirectoryParams(agent="a", recursive=True, max_depth=2)
        )
        paths = [e.path for e in result.files]
        assert "src/main.py" in paths
        assert "src/pkg" in paths
        assert "src/pkg/util.py" not in paths

    @pytest.mark.asyncio
    async def test_pattern_and_file_types(self, directories):
        """Test glob and extension filters."""
        by_pattern = await directories.list_directory(
            ListDirectoryParams(agent="a", recursive=True, pattern="*.py")
        )
        assert sorted(e.path for e in by_pattern.files) == ["src/main.py", "src/pkg/util.py"]

        by_type = await directories.list_directory(
            ListDirectoryParams(agent="a", recursive=True, file_types=["md"])
        )
        assert sorted(e.path for e in by_type.files if e.type == "file") == [
            "README.md",
            "docs/guide.md",
        ]

    @pytest.mark.asyncio
    async def test_sort_by_size_desc(self, directories):
        """Test sorting files by size, largest first."""
        result = await directories.list_directory(
            ListDirectoryParams(agent="a", path="docs", sort_by="size", sort_order="desc")
        )
        assert result.files[0].name == "guide.md"

    @pytest.mark.asyncio
    async def test_protected_entries_hidden(self, workspace, directories):
        """Test that protected directories never appear in listings."""
        (workspace / "secrets").mkdir()
        (workspace / "secrets" / "key.pem").write_text("-----BEGIN")

        result = await directories.list_directory(
            ListDirectoryParams(agent="a", recursive=True, include_hidden=True)
        )
        assert all(not e.path.startswith("secrets") for e in result.files)

    @pytest.mark.asyncio
    async def test_list_missing_directory(self, directories):
        """Test listing a directory that does not exist."""
        result = await directories.list_directory(ListDirectoryParams(agent="a", path="nope"))
        assert result.success is False
        assert result.error_type == "SourceNotFoundError"

    @pytest.mark.asyncio
    async def test_list_file_rejected(self, directories):
        """Test that listing a file fails."""
        result = await directories.list_directory(ListDirectoryParams(agent="a", path="README.md"))
        assert result.success is False


class TestCreateDirectory:
    """Test DirectoryOperations.create_directory."""

    @pytest.mark.asyncio
    async def test_create_nested(self, workspace, directories):
        """Test that missing parents are created and reported."""
        result = await directories.create_directory(
            CreateDirectoryParams(agent="a", path="build_out/a/b")
        )

        assert result.success is True
        assert result.created == ["build_out", "build_out/a", "build_out/a/b"]
        assert (workspace / "build_out" / "a" / "b").is_dir()

    @pytest.mark.asyncio
    async def test_create_reports_only_new_parents(self, directories):
        """Test that existing parents are not listed as created."""
        result = await directories.create_directory(
            CreateDirectoryParams(agent="a", path="src/pkg/sub")
        )
        assert result.created == ["src/pkg/sub"]

    @pytest.mark.asyncio
    async def test_create_existing(self, directories):
        """Test that an existing path is a conflict."""
        result = await directories.create_directory(CreateDirectoryParams(agent="a", path="src"))
        assert result.error_type == "DestinationExistsError"

    @pytest.mark.asyncio
    async def test_non_recursive_needs_parent(self, workspace, directories):
        """Test that recursive=False requires the parent to exist."""
        result = await directories.create_directory(
            CreateDirectoryParams(agent="a", path="missing/child", recursive=False)
        )
        assert result.error_type == "SourceNotFoundError"
        assert not (workspace / "missing").exists()

    @pytest.mark.asyncio
    async def test_mode(self, workspace, directories):
        """Test explicit permissions."""
        result = await directories.create_directory(
            CreateDirectoryParams(agent="a", path="private", mode="700")
        )
        assert result.permissions == "700"
        assert stat.S_IMODE((workspace / "private").stat().st_mode) == 0o700

    def test_invalid_mode(self):
        """Test that non-octal modes are rejected."""
        with pytest.raises(ValidationError):
            CreateDirectoryParams(agent="a", path="x", mode="rwx")

    @pytest.mark.asyncio
    async def test_create_in_protected_path(self, directories):
        """Test that protected paths cannot be created."""
        result = await directories.create_directory(
            CreateDirectoryParams(agent="a", path=".git/hooks")
        )
        assert result.error_type == "PathValidationError"


class TestDeleteDirectory:
    """Test DirectoryOperations.delete_directory."""

    @pytest.mark.asyncio
    async def test_requires_confirmation(self, workspace, directories):
        """Test that confirm=True is required."""
        result = await directories.delete_directory(DeleteDirectoryParams(agent="a", path="docs"))
        assert result.error_type == "ConfirmationRequiredError"
        assert (workspace / "docs").is_dir()

    @pytest.mark.asyncio
    async def test_delete_empty(self, workspace, directories):
        """Test that an empty directory only needs confirmation."""
        (workspace / "empty").mkdir()
        result = await directories.delete_directory(
            DeleteDirectoryParams(agent="a", path="empty", confirm=True)
        )
        assert result.success is True
        assert result.backup_path is None
        assert not (workspace / "empty").exists()

    @pytest.mark.asyncio
    async def test_non_empty_needs_recursive(self, workspace, directories):
        """Test that a non-empty directory needs recursive=True."""
        result = await directories.delete_directory(
            DeleteDirectoryParams(agent="a", path="src", confirm=True)
        )
        assert result.error_type == "InvalidParameterError"
        assert "recursive" in result.error
        assert (workspace / "src").is_dir()

    @pytest.mark.asyncio
    async def test_non_empty_needs_force(self, workspace, directories):
        """Test that deleting contents needs force=True."""
        result = await directories.delete_directory(
            DeleteDirectoryParams(agent="a", path="src", confirm=True, recursive=True)
        )
        assert result.error_type == "ConfirmationRequiredError"
        assert result.error == "Directory contains 3 items. Use force: true to confirm deletion"
        assert (workspace / "src").is_dir()

    @pytest.mark.asyncio
    async def test_delete_recursive_with_archive(self, temp_dir, workspace, directories):
        """Test recursive deletion with an archive backup."""
        result = await directories.delete_directory(
            DeleteDirectoryParams(agent="a", path="src", confirm=True, recursive=True, force=True)
        )

        assert result.success is True
        assert not (workspace / "src").exists()
        assert result.files_deleted == 2
        assert result.directories_deleted == 1
        assert result.backup_path.endswith(".tgz.backup")

        with tarfile.open(result.backup_path, "r:gz") as archive:
            names = {os.path.normpath(name) for name in archive.getnames()}
        assert {"main.py", os.path.join("pkg", "util.py")} <= names

    @pytest.mark.asyncio
    async def test_delete_root_refused(self, workspace, directories):
        """Test that the workspace root itself cannot be deleted."""
        result = await directories.delete_directory(
            DeleteDirectoryParams(agent="a", path=".", confirm=True, recursive=True, force=True)
        )
        assert result.error_type == "InvalidParameterError"
        assert workspace.is_dir()


class TestMoveDirectory:
    """Test DirectoryOperations.move_directory."""

    @pytest.mark.asyncio
    async def test_move(self, workspace, directories):
        """Test moving a directory to a new location."""
        result = await directories.move_directory(
            MoveDirectoryParams(agent="a", source_path="src/pkg", dest_path="lib/pkg")
        )

        assert result.success is True
        assert result.files_moved == 1
        assert result.merged is False
        assert (workspace / "lib" / "pkg" / "util.py").exists()
        assert not (workspace / "src" / "pkg").exists()

    @pytest.mark.asyncio
    async def test_move_into_itself(self, directories):
        """Test that a directory cannot be moved beneath itself."""
        result = await directories.move_directory(
            MoveDirectoryParams(agent="a", source_path="src", dest_path="src/pkg/src")
        )
        assert result.error_type == "InvalidParameterError"

    @pytest.mark.asyncio
    async def test_destination_exists(self, directories):
        """Test that an existing destination needs overwrite or merge."""
        result = await directories.move_directory(
            MoveDirectoryParams(agent="a", source_path="src", dest_path="docs")
        )
        assert result.error_type == "DestinationExistsError"

    @pytest.mark.asyncio
    async def test_merge(self, workspace, directories):
        """Test merging into an existing directory."""
        result = await directories.move_directory(
            MoveDirectoryParams(agent="a", source_path="src", dest_path="docs", merge=True)
        )

        assert result.success is True
        assert result.merged is True
        assert (workspace / "docs" / "guide.md").exists()
        assert (workspace / "docs" / "main.py").exists()
        assert (workspace / "docs" / "pkg" / "util.py").exists()
        assert not (workspace / "src").exists()

    @pytest.mark.asyncio
    async def test_overwrite_backs_up_destination(self, workspace, directories):
        """Test that a replaced destination is archived first."""
        result = await directories.move_directory(
            MoveDirectoryParams(agent="a", source_path="src", dest_path="docs", overwrite=True)
        )

        assert result.success is True
        assert result.backup_path.endswith(".tgz.backup")
        assert not (workspace / "docs" / "guide.md").exists()
        assert (workspace / "docs" / "main.py").exists()

    @pytest.mark.asyncio
    async def test_move_missing_source(self, directories):
        """Test moving a directory that does not exist."""
        result = await directories.move_directory(
            MoveDirectoryParams(agent="a", source_path="nope", dest_path="other")
        )
        assert result.error_type == "SourceNotFoundError"


class TestProtectedContents:
    """Test that directories holding a protected path are never removed or replaced."""

    @pytest.fixture
    def workspace(self, temp_dir):
        root = temp_dir / "workspace"
        (root / "config" / "secrets").mkdir(parents=True)
        (root / "config" / "cache").mkdir()
        (root / "src").mkdir()
        (root / "config" / "secrets" / "key.pem").write_text("private")
        (root / "config" / "app.yaml").write_text("debug: false\n")
        (root / "src" / "main.py").write_text("print('main')\n")
        return root

    @pytest.fixture
    def directories(self, temp_dir, workspace):
        return DirectoryOperations(
            WorkspaceToolsConfig(
                workspace=WorkspaceConfig(dir=workspace, protected_paths=("config/secrets",)),
                files=FilesConfig(backup_dir=temp_dir / "backups"),
            )
        )

    @pytest.mark.asyncio
    async def test_delete_parent_refused(self, temp_dir, workspace, directories):
        """Test that deleting a parent of a protected path fails before any effect."""
        result = await directories.delete_directory(
            DeleteDirectoryParams(agent="a", path="config", confirm=True, recursive=True, force=True)
        )

        assert result.success is False
        assert result.error_type == "FileAccessDeniedError"
        assert (workspace / "config" / "secrets" / "key.pem").read_text() == "private"
        assert not (temp_dir / "backups").exists()

    @pytest.mark.asyncio
    async def test_delete_unrelated_sibling_allowed(self, workspace, directories):
        result = await directories.delete_directory(
            DeleteDirectoryParams(agent="a", path="config/cache", confirm=True)
        )
        assert result.success is True
        assert not (workspace / "config" / "cache").exists()

    @pytest.mark.asyncio
    async def test_move_parent_refused(self, workspace, directories):
        """Test that a protected path cannot be carried away by moving its parent."""
        result = await directories.move_directory(
            MoveDirectoryParams(agent="a", source_path="config", dest_path="elsewhere")
        )

        assert result.error_type == "FileAccessDeniedError"
        assert (workspace / "config" / "secrets" / "key.pem").exists()
        assert not (workspace / "elsewhere").exists()

    @pytest.mark.asyncio
    async def test_overwrite_parent_refused(self, temp_dir, workspace, directories):
        """Test that a destination holding a protected path is not replaced."""
        result = await directories.move_directory(
            MoveDirectoryParams(agent="a", source_path="src", dest_path="config", overwrite=True)
        )

        assert result.error_type == "FileAccessDeniedError"
        assert (workspace / "config" / "secrets" / "key.pem").exists()
        assert (workspace / "src" / "main.py").exists()
        assert not (temp_dir / "backups").exists()

    @pytest.mark.asyncio
    async def test_merge_into_parent_refused(self, workspace, directories):
        result = await directories.move_directory(
            MoveDirectoryParams(agent="a", source_path="src", dest_path="config", merge=True)
        )

        assert result.error_type == "FileAccessDeniedError"
        assert (workspace / "src" / "main.py").exists()
        assert not (workspace / "config" / "main.py").exists()
