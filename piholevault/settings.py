"""
Persisted runtime settings (config.json in the data directory).

Holds the Pi-hole target, backup destination and retention, schedule and
notification settings. Flask config (config.py) covers process settings;
this file covers what the user edits at runtime.
"""

import os
import copy
import json
import logging
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Any, Optional


logger = logging.getLogger(__name__)

CONFIG_FILENAME = 'config.json'
REDACTED = '***'
SECRET_FIELDS = ('password', 'webPassword')

DEFAULT_SETTINGS = {
    'pihole': {'host': '', 'username': '', 'port': 22, 'connectionMethod': 'ssh'},
    'backup': {'destinationPath': '', 'maxBackups': 10},
    'schedule': {'enabled': False, 'cronExpression': '0 3 * * *', 'timezone': 'UTC'},
    'discord': {'enabled': False, 'webhookUrl': '', 'notifyOnSuccess': True, 'notifyOnFailure': True}
}


class SettingsValidationError(ValueError):
    """Raised when settings fail the save-time checks."""
    pass


def validate_settings(settings: Dict[str, Any]):
    """
    Check the fields a backup needs for the chosen connection method.

    Raises:
        SettingsValidationError: With a user-facing message
    """
    pihole = (settings or {}).get('pihole') or {}

    if not pihole.get('host'):
        raise SettingsValidationError('Missing required Pi-hole host configuration')

    method = pihole.get('connectionMethod') or 'ssh'
    if method not in ('ssh', 'web', 'hybrid'):
        raise SettingsValidationError(f'Unknown connection method: {method}')

    if method in ('ssh', 'hybrid') and not pihole.get('username'):
        raise SettingsValidationError('Username is required for SSH and hybrid connection methods')

    if method in ('web', 'hybrid') and not pihole.get('webPassword'):
        raise SettingsValidationError('Web password is required for web-only and hybrid connection methods')

    max_backups = ((settings or {}).get('backup') or {}).get('maxBackups')
    if max_backups not in (None, ''):
        try:
            count = int(max_backups)
        except (TypeError, ValueError):
            count = 0
        if count < 1:
            raise SettingsValidationError('maxBackups must be a positive integer')


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z')


class SettingsStore:
    """
    Reads and writes config.json.

    Writes go through a temporary file and an atomic rename.
    """

    def __init__(self, data_dir: str):
        self.path = Path(data_dir) / CONFIG_FILENAME
        self._lock = threading.Lock()

    def exists(self) -> bool:
        return self.path.exists()

    def mtime(self) -> Optional[float]:
        """Modification time of the settings file, or None when it is missing."""
        try:
            return self.path.stat().st_mtime
        except FileNotFoundError:
            return None

    def load(self) -> Dict[str, Any]:
        """
        Load settings.

        Returns:
            Stored settings, or a copy of DEFAULT_SETTINGS when the file is
            missing or unreadable
        """
        if not self.path.exists():
            return copy.deepcopy(DEFAULT_SETTINGS)

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Error reading config file {self.path}: {e}")
            return copy.deepcopy(DEFAULT_SETTINGS)

        if not isinstance(data, dict):
            logger.error(f"Config file {self.path} does not hold a JSON object, using defaults")
            return copy.deepcopy(DEFAULT_SETTINGS)
        return data

    def save(self, settings: Dict[str, Any]) -> Dict[str, Any]:
        """
        Validate and replace the stored settings.

        Raises:
            SettingsValidationError: If validation fails
            OSError: If the file cannot be written
        """
        validate_settings(settings)

        settings = copy.deepcopy(settings)
        now = _now()
        settings.setdefault('createdAt', now)
        settings['updatedAt'] = now

        with self._lock:
            self._write(settings)

        logger.info("Configuration saved successfully")
        return settings

    def update(self, partial: Dict[str, Any]) -> Dict[str, Any]:
        """
        Merge top-level keys into the stored settings.

        Secrets sent back in redacted form keep their stored value. The
        merged result is validated before it is written.

        Raises:
            FileNotFoundError: If no settings have been saved yet
            SettingsValidationError: If the merged settings are invalid
        """
        with self._lock:
            if not self.path.exists():
                raise FileNotFoundError('Configuration not found')

            existing = self.load()
            updated = {**existing, **copy.deepcopy(partial or {})}

            pihole = updated.get('pihole')
            stored_pihole = existing.get('pihole') or {}
            if isinstance(pihole, dict):
                for key in SECRET_FIELDS:
                    if pihole.get(key) == REDACTED:
                        pihole[key] = stored_pihole.get(key)

            validate_settings(updated)
            updated['updatedAt'] = _now()
            self._write(updated)

        logger.info("Configuration updated successfully")
        return updated

    def redacted(self) -> Dict[str, Any]:
        """Return settings with secrets masked for display."""
        settings = copy.deepcopy(self.load())
        pihole = settings.get('pihole') or {}
        for key in SECRET_FIELDS:
            if pihole.get(key):
                pihole[key] = REDACTED
        return settings

    def status(self) -> Dict[str, bool]:
        settings = self.load() if self.exists() else {}
        return {
            'configured': bool((settings.get('pihole') or {}).get('host')),
            'hasSSHKey': bool(settings.get('sshKeyDeployed'))
        }

    def _write(self, settings: Dict[str, Any]):
        self.path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(prefix='.config-', suffix='.json', dir=str(self.path.parent))
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(settings, f, indent=2)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
