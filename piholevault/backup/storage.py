"""
Local archive storage.

Archives live flat in one backup directory and are named
{prefix}_{ISO-8601 timestamp with ':' and '.' replaced by '-'}.zip
"""

import os
import logging
from pathlib import Path
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any

from .errors import PersistenceError


logger = logging.getLogger(__name__)

ARCHIVE_EXTENSION = '.zip'
DEFAULT_PREFIX = 'pi-hole_backup'


def generate_archive_filename(prefix: str = DEFAULT_PREFIX, now: Optional[datetime] = None) -> str:
    """
    Generate a timestamped archive filename.

    Format: {prefix}_{YYYY-MM-DDTHH-MM-SS-mmmZ}.zip

    Args:
        prefix: Filename prefix
        now: Timestamp to use (default: current UTC time)

    Returns:
        Filename (without path)
    """
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    now = now.astimezone(timezone.utc)
    iso = now.strftime('%Y-%m-%dT%H:%M:%S') + f".{now.microsecond // 1000:03d}Z"
    timestamp = iso.replace(':', '-').replace('.', '-')

    return f"{prefix}_{timestamp}{ARCHIVE_EXTENSION}"


def is_archive_filename(filename: str, prefix: str = DEFAULT_PREFIX) -> bool:
    """Return True for archives named with the given prefix."""
    return filename.startswith(f"{prefix}_") and filename.endswith(ARCHIVE_EXTENSION)


def is_safe_filename(filename: str) -> bool:
    """Reject names that could escape the backup directory."""
    return bool(filename) and '..' not in filename and '/' not in filename and '\\' not in filename


class LocalStorage:
    """
    Handler for archives in the local backup directory.
    """

    def __init__(self, base_path: str, prefix: str = DEFAULT_PREFIX):
        """
        Initialize local storage handler.

        Args:
            base_path: Backup directory
            prefix: Filename prefix of managed archives

        Raises:
            PersistenceError: If the directory cannot be created
        """
        self.base_path = Path(base_path)
        self.prefix = prefix

        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceError(f"Failed to create backup directory {self.base_path}: {e}") from e

    def write(self, filename: str, data: bytes) -> int:
        """
        Write archive bytes to the backup directory.

        Args:
            filename: Archive filename
            data: Archive content

        Returns:
            Size of the written file in bytes

        Raises:
            PersistenceError: If the write or stat fails
        """
        dest_path = self.base_path / filename

        try:
            with open(dest_path, 'wb') as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            return dest_path.stat().st_size
        except PermissionError as e:
            self._discard(dest_path)
            raise PersistenceError(f"Permission denied writing to {dest_path}: {e}") from e
        except OSError as e:
            self._discard(dest_path)
            raise PersistenceError(f"Failed to store backup {filename}: {e}") from e

    def size_of(self, filename: str) -> int:
        """
        Stat an archive.

        Raises:
            PersistenceError: If the file cannot be stat'ed
        """
        try:
            return (self.base_path / filename).stat().st_size
        except OSError as e:
            raise PersistenceError(f"Failed to stat backup {filename}: {e}") from e

    def delete(self, filename: str):
        """
        Delete an archive.

        Args:
            filename: Archive filename

        Raises:
            PersistenceError: If deletion fails
        """
        full_path = self.base_path / filename

        try:
            if full_path.exists():
                full_path.unlink()
        except PermissionError as e:
            raise PersistenceError(f"Permission denied deleting {full_path}: {e}") from e
        except OSError as e:
            raise PersistenceError(f"Failed to delete {full_path}: {e}") from e

    def list_archives(self) -> List[Dict[str, Any]]:
        """
        List archives carrying this storage's prefix.

        Returns:
            List of dicts with 'filename', 'path', 'modified' and 'size' keys,
            newest first

        Raises:
            PersistenceError: If listing fails
        """
        try:
            archives = []

            for entry in os.scandir(self.base_path):
                if not entry.is_file() or not is_archive_filename(entry.name, self.prefix):
                    continue
                stat = entry.stat()
                archives.append({
                    'filename': entry.name,
                    'path': entry.path,
                    'modified': datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                    'size': stat.st_size
                })

            archives.sort(key=lambda a: a['modified'], reverse=True)
            return archives

        except OSError as e:
            raise PersistenceError(f"Failed to list backups: {e}") from e

    def statistics(self) -> Dict[str, Any]:
        """Aggregate size and age information over stored archives."""
        archives = self.list_archives()
        total_size = sum(a['size'] for a in archives)

        return {
            'totalFiles': len(archives),
            'totalSize': total_size,
            'oldestBackup': archives[-1]['modified'].isoformat() if archives else None,
            'newestBackup': archives[0]['modified'].isoformat() if archives else None,
            'averageSize': total_size / len(archives) if archives else 0
        }

    def get_full_path(self, filename: str) -> str:
        return str(self.base_path / filename)

    def _discard(self, path: Path):
        try:
            if path.exists():
                path.unlink()
        except OSError as e:
            logger.warning(f"Failed to remove partial file {path}: {e}")
