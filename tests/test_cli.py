"""
Tests for the workspace-tools CLI.
"""

import logging
import tempfile
from pathlib import Path

import pytest
import yaml
from click.testing import CliRunner

from workspace_tools.cli.main import cli
from workspace_tools.filesystem.backup import BackupManager
from workspace_tools.settings import FilesConfig, WorkspaceToolsConfig


@pytest.fixture(autouse=True)
def restore_logging():
    """The CLI reconfigures the root logger; put it back afterwards."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def temp_dir(monkeypatch):
    """Create a temporary directory and make it the working directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir).resolve()
        monkeypatch.chdir(path)
        yield path


@pytest.fixture
def workspace(temp_dir):
    root = temp_dir / "workspace"
    (root / "src").mkdir(parents=True)
    (root / "src" / "main.py").write_text("def main():\n    return 'needle'\n")
    return root


@pytest.fixture
def env(temp_dir, workspace):
    return {"WORKSPACE_DIR": str(workspace), "BACKUP_DIR": str(temp_dir / "backups")}


@pytest.fixture
def runner():
    return CliRunner()


class TestConfigCommands:
    """Test config show/init."""

    def test_show_json(self, runner, env):
        result = runner.invoke(cli, ["config", "show", "--json"], env=env)
        assert result.exit_code == 0, result.output
        assert '"max_results": 100' in result.output

    def test_init_writes_loadable_file(self, runner, env, temp_dir, workspace):
        target = temp_dir / "generated.yaml"
        result = runner.invoke(cli, ["config", "init", str(target)], env=env)
        assert result.exit_code == 0, result.output

        config = WorkspaceToolsConfig.from_file(target)
        assert config.workspace.dir == workspace

    def test_init_refuses_existing_file(self, runner, env, temp_dir):
        target = temp_dir / "existing.yaml"
        target.write_text("{}")

        result = runner.invoke(cli, ["config", "init", str(target)], env=env)
        assert result.exit_code == 1
        assert "already exists" in result.output
        assert target.read_text() == "{}"

    def test_invalid_config_file(self, runner, env, temp_dir):
        path = temp_dir / "bad.yaml"
        path.write_text(yaml.dump({"search": {"unknown_option": 1}}))

        result = runner.invoke(cli, ["-c", str(path), "config", "show"], env=env)
        assert result.exit_code == 1
        assert "Configuration error" in result.output


class TestCheckPath:
    """Test check-path."""

    def test_allowed(self, runner, env):
        result = runner.invoke(cli, ["check-path", "src/main.py"], env=env)
        assert result.exit_code == 0, result.output
        assert "allowed" in result.output

    def test_rejected(self, runner, env):
        result = runner.invoke(cli, ["check-path", "src/main.py", "../outside"], env=env)
        assert result.exit_code == 1
        assert "rejected" in result.output

    def test_workspace_option(self, runner, env, temp_dir):
        other = temp_dir / "other"
        other.mkdir()
        result = runner.invoke(cli, ["-w", str(other), "check-path", ".git/config"], env=env)
        assert result.exit_code == 1


class TestSearchCommands:
    """Test search-files, search-content and duplicates."""

    def test_search_files(self, runner, env):
        result = runner.invoke(cli, ["search-files", "*.py"], env=env)
        assert result.exit_code == 0, result.output
        assert "1 of 1 files" in result.output

    def test_search_content(self, runner, env):
        result = runner.invoke(cli, ["search-content", "needle", "-C", "0"], env=env)
        assert result.exit_code == 0, result.output
        assert "1 matches in 1 of 1 files" in result.output

    def test_search_outside_workspace(self, runner, env):
        result = runner.invoke(cli, ["search-content", "needle", "-p", ".."], env=env)
        assert result.exit_code == 1
        assert "PathValidationError" in result.output

    def test_search_files_prints_bracketed_names(self, runner, env, workspace):
        """Test that file names are not interpreted as console markup."""
        (workspace / "src" / "[red]tagged.py").write_text("x")

        result = runner.invoke(cli, ["search-files", "tagged"], env=env)
        assert result.exit_code == 0, result.output
        assert "[red]tagged.py" in result.output

    def test_duplicates_prints_bracketed_names(self, runner, env, workspace):
        (workspace / "a").mkdir()
        (workspace / "b").mkdir()
        (workspace / "a" / "[bold]dup.txt").write_text("same")
        (workspace / "b" / "[bold]dup.txt").write_text("same")

        result = runner.invoke(cli, ["duplicates", "--min-size", "0"], env=env)
        assert result.exit_code == 0, result.output
        assert "[bold]dup.txt" in result.output

    def test_no_duplicates(self, runner, env):
        result = runner.invoke(cli, ["duplicates", "--min-size", "0"], env=env)
        assert result.exit_code == 0, result.output
        assert "No duplicates found" in result.output


class TestBackupCommands:
    """Test backups list/restore/clean."""

    def test_list_empty(self, runner, env):
        result = runner.invoke(cli, ["backups", "list"], env=env)
        assert result.exit_code == 0, result.output
        assert "No backups" in result.output

    def test_restore(self, runner, env, temp_dir, workspace):
        manager = BackupManager(FilesConfig(backup_dir=temp_dir / "backups"))
        backup = manager.create_backup(workspace / "src" / "main.py")

        result = runner.invoke(
            cli, ["backups", "restore", Path(backup.backup_path).name, "restored/main.py"], env=env
        )
        assert result.exit_code == 0, result.output
        assert (workspace / "restored" / "main.py").read_text() == (
            workspace / "src" / "main.py"
        ).read_text()

    def test_restore_outside_workspace(self, runner, env, temp_dir, workspace):
        manager = BackupManager(FilesConfig(backup_dir=temp_dir / "backups"))
        backup = manager.create_backup(workspace / "src" / "main.py")

        result = runner.invoke(
            cli, ["backups", "restore", Path(backup.backup_path).name, "../escaped.py"], env=env
        )
        assert result.exit_code == 1
        assert not (temp_dir / "escaped.py").exists()

    def test_clean(self, runner, env):
        result = runner.invoke(cli, ["backups", "clean"], env=env)
        assert result.exit_code == 0, result.output
        assert "Removed" in result.output
