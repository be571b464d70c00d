"""
Retention policy enforcement for backups.

Keeps the newest N archives in the backup directory and removes the rest.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Any

from .storage import LocalStorage, DEFAULT_PREFIX
from .errors import PersistenceError


logger = logging.getLogger(__name__)


class RetentionManager:
    """
    Enforces a maximum archive count on the local backup directory.

    Ordering is by modification time, newest first. Deletion is best-effort:
    a file that cannot be removed is logged and the rest are still processed.
    """

    def __init__(self, prefix: str = DEFAULT_PREFIX):
        """
        Initialize retention manager.

        Args:
            prefix: Filename prefix of the archives the limit applies to
        """
        self.prefix = prefix
        self.logs = []

    def enforce(self, directory: str, max_count: int) -> Dict[str, Any]:
        """
        Delete every archive beyond the newest max_count.

        Args:
            directory: Backup directory
            max_count: Number of archives to keep

        Returns:
            Dict with summary of cleanup operations:
            {
                'kept': int,
                'deleted': int,
                'errors': List[str]
            }
        """
        max_count = max(int(max_count), 0)
        summary = {
            'kept': 0,
            'deleted': 0,
            'errors': []
        }

        try:
            storage = LocalStorage(directory, self.prefix)
            archives = storage.list_archives()
        except PersistenceError as e:
            error_msg = f"Failed to list backups for retention: {e}"
            self._log(error_msg, logging.ERROR)
            summary['errors'].append(error_msg)
            return summary

        to_keep = archives[:max_count]
        to_delete = archives[max_count:]
        summary['kept'] = len(to_keep)

        for archive in to_delete:
            try:
                storage.delete(archive['filename'])
                summary['deleted'] += 1
                self._log(f"Old backup file removed: {archive['filename']}")
            except PersistenceError as e:
                error_msg = f"Failed to delete {archive['filename']}: {e}"
                self._log(error_msg, logging.WARNING)
                summary['errors'].append(error_msg)

        if to_delete:
            self._log(f"Cleanup completed. Kept: {summary['kept']}, removed: {summary['deleted']}")

        return summary

    def _log(self, message: str, level: int = logging.INFO):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
            level: Logging level for the module logger
        """
        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')
        self.logs.append(f"[{timestamp}] {message}")
        logger.log(level, message)
