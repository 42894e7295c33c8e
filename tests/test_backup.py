"""
Tests for the backup manager.
"""

import tarfile
import tempfile
from pathlib import Path

import pytest

from workspace_tools.filesystem import BackupError, BackupManager
from workspace_tools.filesystem.backup import parse_backup_name
from workspace_tools.settings import FilesConfig

DAY = 24 * 60 * 60


class FakeClock:
    """Manually advanced wall clock (seconds)."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def temp_dir():
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir).resolve()


@pytest.fixture
def workspace(temp_dir):
    root = temp_dir / "workspace"
    root.mkdir()
    return root


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def manager(temp_dir, clock):
    """Create a BackupManager with 7-day retention."""
    return BackupManager(
        FilesConfig(backup_dir=temp_dir / "backups", backup_retention_days=7),
        clock=clock,
    )


class TestParseBackupName:
    """Test backup file name parsing."""

    def test_file_backup(self):
        assert parse_backup_name("report.txt.1700000000000.backup") == (
            "report.txt",
            1700000000000,
            False,
        )

    def test_directory_backup(self):
        assert parse_backup_name("src.1700000000000.tgz.backup") == ("src", 1700000000000, True)

    @pytest.mark.parametrize("name", ["report.txt", "report.backup", "report.txt.abc.backup", ".123.backup"])
    def test_not_a_backup(self, name):
        assert parse_backup_name(name) is None


class TestCreateBackup:
    """Test BackupManager.create_backup."""

    def test_backup_round_trip(self, workspace, manager):
        """Test that a backup holds the original bytes and can be restored."""
        original = workspace / "report.txt"
        original.write_bytes(b"quarterly numbers\n")

        result = manager.create_backup(original)
        assert result.success is True
        assert result.timestamp == 1_700_000_000_000

        backup = Path(result.backup_path)
        assert backup.parent == manager.backup_dir
        assert backup.name == "report.txt.1700000000000.backup"
        assert backup.read_bytes() == b"quarterly numbers\n"

        original.write_bytes(b"overwritten")
        manager.restore_backup(backup, original)
        assert original.read_bytes() == b"quarterly numbers\n"

    def test_same_millisecond_backups_do_not_collide(self, workspace, manager):
        """Test that two backups in one millisecond get distinct names."""
        original = workspace / "a.txt"
        original.write_text("one")
        first = manager.create_backup(original)
        original.write_text("two")
        second = manager.create_backup(original)

        assert first.backup_path != second.backup_path
        assert Path(first.backup_path).read_text() == "one"
        assert Path(second.backup_path).read_text() == "two"

    def test_disabled(self, temp_dir, workspace, clock):
        """Test that a disabled manager reports failure and writes nothing."""
        manager = BackupManager(
            FilesConfig(backup_enabled=False, backup_dir=temp_dir / "backups"),
            clock=clock,
        )
        original = workspace / "a.txt"
        original.write_text("data")

        result = manager.create_backup(original)
        assert result.success is False
        assert result.backup_path is None
        assert not (temp_dir / "backups").exists()

    def test_missing_source(self, workspace, manager):
        """Test that a failed backup is reported, not raised."""
        result = manager.create_backup(workspace / "missing.txt")
        assert result.success is False
        assert result.error
        assert manager.list_all_backups() == []

    def test_directory_archive(self, temp_dir, workspace, manager):
        """Test archiving and restoring a directory tree."""
        source = workspace / "src"
        (source / "pkg").mkdir(parents=True)
        (source / "main.py").write_text("print('main')")
        (source / "pkg" / "util.py").write_text("VALUE = 1")

        result = manager.create_backup(source)
        assert result.success is True
        assert result.backup_path.endswith(".tgz.backup")

        restored = temp_dir / "restored"
        manager.restore_backup(result.backup_path, restored)
        assert (restored / "main.py").read_text() == "print('main')"
        assert (restored / "pkg" / "util.py").read_text() == "VALUE = 1"

    def test_archive_restore_without_extraction_filters(
        self, temp_dir, workspace, manager, monkeypatch
    ):
        """Test that interpreters lacking tar filters report a BackupError."""
        source = workspace / "src"
        source.mkdir()
        (source / "main.py").write_text("print('main')")
        result = manager.create_backup(source)

        def extractall(self, path=".", members=None, *, numeric_owner=False):
            """TarFile.extractall as it was before the filter argument."""

        monkeypatch.setattr(tarfile.TarFile, "extractall", extractall)

        with pytest.raises(BackupError, match="Failed to restore backup"):
            manager.restore_backup(result.backup_path, temp_dir / "restored")


class TestListAndRetention:
    """Test listing, deletion and retention sweeps."""

    def test_list_newest_first(self, workspace, manager, clock):
        """Test that backups are listed newest first."""
        original = workspace / "notes.md"
        original.write_text("v1")
        manager.create_backup(original)
        clock.advance(60)
        manager.create_backup(original)

        records = manager.list_backups("notes.md")
        assert len(records) == 2
        assert records[0].timestamp > records[1].timestamp
        assert records[0].original_name == "notes.md"

    def test_list_matches_exact_name(self, workspace, manager):
        """Test that listing one original ignores similarly named files."""
        (workspace / "a.txt").write_text("a")
        (workspace / "a.txt.old").write_text("old")
        manager.create_backup(workspace / "a.txt")
        manager.create_backup(workspace / "a.txt.old")

        assert [r.original_name for r in manager.list_backups("a.txt")] == ["a.txt"]
        assert len(manager.list_all_backups()) == 2

    def test_list_ignores_foreign_files(self, manager):
        """Test that non-backup files in the backup root are ignored."""
        manager.backup_dir.mkdir(parents=True)
        (manager.backup_dir / "README").write_text("not a backup")
        assert manager.list_all_backups() == []

    def test_clean_all_old_backups(self, workspace, manager, clock):
        """Test that backups older than the retention period are removed."""
        (workspace / "a.txt").write_text("a")
        (workspace / "b.txt").write_text("b")
        manager.create_backup(workspace / "a.txt")
        clock.advance(6 * DAY)
        manager.create_backup(workspace / "b.txt")
        clock.advance(2 * DAY)

        assert manager.clean_all_old_backups() == 1
        assert [r.original_name for r in manager.list_all_backups()] == ["b.txt"]

    def test_create_sweeps_expired_backups_of_same_name(self, workspace, manager, clock):
        """Test that creating a backup expires old backups of that original."""
        original = workspace / "a.txt"
        original.write_text("a")
        manager.create_backup(original)
        clock.advance(8 * DAY)
        manager.create_backup(original)

        assert len(manager.list_backups("a.txt")) == 1

    def test_retention_uses_name_timestamp(self, workspace, manager, clock):
        """Test that file modification times do not affect retention."""
        original = workspace / "a.txt"
        original.write_text("a")
        result = manager.create_backup(original)

        # copystat carried over the original's mtime; age comes from the name
        clock.advance(3 * DAY)
        assert manager.clean_all_old_backups() == 0
        assert Path(result.backup_path).exists()

    def test_delete_backup(self, workspace, manager):
        """Test deleting one backup."""
        (workspace / "a.txt").write_text("a")
        result = manager.create_backup(workspace / "a.txt")

        manager.delete_backup(result.backup_path)
        assert manager.list_all_backups() == []

    def test_delete_outside_backup_dir_rejected(self, workspace, manager):
        """Test that only files directly in the backup root can be deleted."""
        victim = workspace / "a.txt.1700000000000.backup"
        victim.write_text("looks like a backup")

        with pytest.raises(BackupError):
            manager.delete_backup(victim)
        assert victim.exists()

    def test_restore_rejects_non_backup(self, workspace, manager):
        """Test that restoring a file that is not a backup fails."""
        manager.backup_dir.mkdir(parents=True)
        stray = manager.backup_dir / "notes.txt"
        stray.write_text("x")

        with pytest.raises(BackupError):
            manager.restore_backup(stray, workspace / "notes.txt")

    def test_get_backup_size(self, workspace, manager):
        """Test total backup size."""
        (workspace / "a.txt").write_bytes(b"x" * 100)
        (workspace / "b.txt").write_bytes(b"y" * 50)
        manager.create_backup(workspace / "a.txt")
        manager.create_backup(workspace / "b.txt")

        assert manager.get_backup_size() == 150
