"""
Unit tests for local archive storage (piholevault/backup/storage.py).
"""

import os
from datetime import datetime, timezone, timedelta
from unittest.mock import patch

import pytest
from freezegun import freeze_time

from piholevault.backup.storage import (
    LocalStorage,
    generate_archive_filename,
    is_archive_filename,
    is_safe_filename
)
from piholevault.backup.errors import PersistenceError


class TestArchiveFilenames:
    """Test archive naming helpers."""

    def test_explicit_timestamp(self):
        now = datetime(2024, 1, 15, 3, 0, 0, 123456, tzinfo=timezone.utc)

        assert generate_archive_filename(now=now) == 'pi-hole_backup_2024-01-15T03-00-00-123Z.zip'

    def test_converts_to_utc(self):
        now = datetime(2024, 1, 15, 5, 30, 0, tzinfo=timezone(timedelta(hours=2)))

        assert generate_archive_filename('pi-hole_home', now) == 'pi-hole_home_2024-01-15T03-30-00-000Z.zip'

    def test_naive_treated_as_utc(self):
        assert generate_archive_filename(now=datetime(2024, 6, 1, 12, 0)) == 'pi-hole_backup_2024-06-01T12-00-00-000Z.zip'

    @freeze_time("2024-01-15 03:00:00")
    def test_defaults_to_now(self):
        assert generate_archive_filename() == 'pi-hole_backup_2024-01-15T03-00-00-000Z.zip'

    def test_no_colons_or_dots_in_stem(self):
        filename = generate_archive_filename()
        stem = filename[:-len('.zip')]

        assert ':' not in stem
        assert '.' not in stem

    @pytest.mark.parametrize('filename,expected', [
        ('pi-hole_backup_2024-01-15T03-00-00-000Z.zip', True),
        ('pi-hole_home_x.zip', False),
        ('pi-hole_backup.tar.gz', False),
        ('other.zip', False),
    ])
    def test_is_archive_filename(self, filename, expected):
        assert is_archive_filename(filename) is expected

    @pytest.mark.parametrize('filename,expected', [
        ('home_backup_2024-01-15T03-00-00-000Z.zip', True),
        ('home_backup.zip', False),
        ('pi-hole_backup_2024-01-15T03-00-00-000Z.zip', False),
    ])
    def test_is_archive_filename_custom_prefix(self, filename, expected):
        assert is_archive_filename(filename, 'home_backup') is expected

    @pytest.mark.parametrize('filename,expected', [
        ('pi-hole_backup.zip', True),
        ('../etc/passwd', False),
        ('dir/pi-hole.zip', False),
        ('dir\\pi-hole.zip', False),
        ('', False),
    ])
    def test_is_safe_filename(self, filename, expected):
        assert is_safe_filename(filename) is expected


class TestLocalStorage:
    """Test LocalStorage for the backup directory."""

    def test_creates_directory(self, tmp_path):
        target = tmp_path / 'a' / 'b'

        LocalStorage(str(target))

        assert target.is_dir()

    def test_directory_creation_failure(self, tmp_path):
        blocker = tmp_path / 'file'
        blocker.write_text('x')

        with pytest.raises(PersistenceError):
            LocalStorage(str(blocker / 'backups'))

    def test_write_returns_size(self, tmp_path):
        storage = LocalStorage(str(tmp_path))

        size = storage.write('pi-hole_backup_1.zip', b'PK' + b'\x00' * 98)

        assert size == 100
        assert (tmp_path / 'pi-hole_backup_1.zip').read_bytes()[:2] == b'PK'
        assert storage.size_of('pi-hole_backup_1.zip') == 100

    def test_write_failure_removes_partial_file(self, tmp_path):
        """Test a failed write leaves nothing behind."""
        storage = LocalStorage(str(tmp_path))

        with patch('piholevault.backup.storage.os.fsync', side_effect=OSError('disk full')):
            with pytest.raises(PersistenceError, match='disk full'):
                storage.write('pi-hole_backup_1.zip', b'data')

        assert not (tmp_path / 'pi-hole_backup_1.zip').exists()

    def test_size_of_missing(self, tmp_path):
        with pytest.raises(PersistenceError):
            LocalStorage(str(tmp_path)).size_of('missing.zip')

    def test_delete(self, tmp_path):
        storage = LocalStorage(str(tmp_path))
        storage.write('pi-hole_backup_1.zip', b'data')

        storage.delete('pi-hole_backup_1.zip')
        storage.delete('pi-hole_backup_1.zip')

        assert not (tmp_path / 'pi-hole_backup_1.zip').exists()

    def test_list_archives_newest_first(self, tmp_path, make_archives):
        archives = make_archives(tmp_path, 3)
        (tmp_path / 'readme.txt').write_text('x')
        os.mkdir(tmp_path / 'pi-hole_backup_dir.zip')

        listed = LocalStorage(str(tmp_path)).list_archives()

        assert [a['filename'] for a in listed] == [p.name for p in reversed(archives)]
        assert listed[0]['size'] == 202
        assert listed[0]['modified'].tzinfo is not None

    def test_list_archives_custom_prefix(self, tmp_path, make_archives):
        archives = make_archives(tmp_path, 2, prefix='home_backup')
        make_archives(tmp_path, 1)

        listed = LocalStorage(str(tmp_path), prefix='home_backup').list_archives()

        assert [a['filename'] for a in listed] == [p.name for p in reversed(archives)]

    def test_statistics(self, tmp_path, make_archives):
        archives = make_archives(tmp_path, 2)
        storage = LocalStorage(str(tmp_path))

        stats = storage.statistics()

        assert stats['totalFiles'] == 2
        assert stats['totalSize'] == 404
        assert stats['averageSize'] == 202
        newest = datetime.fromtimestamp(archives[1].stat().st_mtime, tz=timezone.utc)
        assert stats['newestBackup'] == newest.isoformat()

    def test_statistics_empty(self, tmp_path):
        stats = LocalStorage(str(tmp_path)).statistics()

        assert stats == {
            'totalFiles': 0,
            'totalSize': 0,
            'oldestBackup': None,
            'newestBackup': None,
            'averageSize': 0
        }
