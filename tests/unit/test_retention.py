"""
Unit tests for retention policy management (piholevault/backup/retention.py).

Tests RetentionManager for cleaning up old archives.
"""

from unittest.mock import patch

import pytest

from piholevault.backup.retention import RetentionManager
from piholevault.backup.errors import PersistenceError
from piholevault.backup.storage import LocalStorage


class TestRetentionManager:
    """Test RetentionManager basic functionality."""

    def test_retention_manager_initialization(self):
        manager = RetentionManager()

        assert manager.logs == []

    def test_keeps_newest(self, tmp_path, make_archives):
        """Test only the newest max_count archives survive."""
        archives = make_archives(tmp_path, 5)

        manager = RetentionManager()
        result = manager.enforce(str(tmp_path), 3)

        assert result == {'kept': 3, 'deleted': 2, 'errors': []}
        remaining = sorted(p.name for p in tmp_path.iterdir())
        assert remaining == sorted(p.name for p in archives[2:])
        assert any('Old backup file removed' in line for line in manager.logs)

    def test_under_limit_is_noop(self, tmp_path, make_archives):
        make_archives(tmp_path, 2)

        manager = RetentionManager()
        result = manager.enforce(str(tmp_path), 10)

        assert result['deleted'] == 0
        assert result['kept'] == 2
        assert manager.logs == []

    def test_exact_limit(self, tmp_path, make_archives):
        make_archives(tmp_path, 4)

        result = RetentionManager().enforce(str(tmp_path), 4)

        assert result['deleted'] == 0
        assert len(list(tmp_path.iterdir())) == 4

    def test_ignores_foreign_files(self, tmp_path, make_archives):
        """Test files that are not Pi-hole archives are never deleted."""
        make_archives(tmp_path, 3)
        (tmp_path / 'notes.txt').write_text('keep me')
        (tmp_path / 'other.zip').write_bytes(b'PK')

        RetentionManager().enforce(str(tmp_path), 1)

        names = {p.name for p in tmp_path.iterdir()}
        assert 'notes.txt' in names
        assert 'other.zip' in names
        assert len(names) == 3

    def test_zero_removes_everything(self, tmp_path, make_archives):
        make_archives(tmp_path, 3)

        result = RetentionManager().enforce(str(tmp_path), 0)

        assert result['deleted'] == 3
        assert list(tmp_path.iterdir()) == []

    def test_deletion_failure_continues(self, tmp_path, make_archives):
        """Test a failing delete is reported and the rest are still removed."""
        archives = make_archives(tmp_path, 4)
        oldest = archives[0].name

        original_delete = LocalStorage.delete

        def flaky_delete(storage, filename):
            if filename == oldest:
                raise PersistenceError('Permission denied')
            return original_delete(storage, filename)

        with patch('piholevault.backup.storage.LocalStorage.delete', flaky_delete):
            result = RetentionManager().enforce(str(tmp_path), 1)

        assert result['deleted'] == 2
        assert len(result['errors']) == 1
        assert oldest in result['errors'][0]
        assert (tmp_path / oldest).exists()

    def test_missing_directory_created(self, tmp_path):
        target = tmp_path / 'new'

        result = RetentionManager().enforce(str(target), 5)

        assert result == {'kept': 0, 'deleted': 0, 'errors': []}
        assert target.is_dir()

    @pytest.mark.parametrize('max_count', [-1, '2'])
    def test_max_count_coerced(self, tmp_path, make_archives, max_count):
        make_archives(tmp_path, 3)

        result = RetentionManager().enforce(str(tmp_path), max_count)

        assert result['kept'] == max(int(max_count), 0)

    def test_custom_prefix(self, tmp_path, make_archives):
        """Test the limit applies to archives carrying the configured prefix only."""
        custom = make_archives(tmp_path, 4, prefix='home_backup')
        default = make_archives(tmp_path, 2)

        result = RetentionManager(prefix='home_backup').enforce(str(tmp_path), 2)

        assert result['deleted'] == 2
        names = {p.name for p in tmp_path.iterdir()}
        assert names == {p.name for p in custom[2:]} | {p.name for p in default}
