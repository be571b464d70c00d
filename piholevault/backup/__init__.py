"""
Backup module for PiHoleVault.

This module handles the core backup functionality including:
- Web API acquisition (modern session and legacy token APIs)
- SSH acquisition (pihole-FTL --teleporter over SSH/SFTP)
- Local archive storage and retention
- Job ledger
- Execution orchestration
"""

from .errors import (
    BackupError, ConnectionFailedError, AuthenticationError, CommandError,
    ProtocolValidationError, ArchiveValidationError, AcquisitionError, PersistenceError, ScheduleConfigError
)
from .web import WebAcquisitionClient, AuthSession, validate_archive_payload, select_first_valid
from .ssh import ShellAcquisitionClient
from .storage import LocalStorage
from .retention import RetentionManager
from .ledger import JobLedger
from .orchestrator import BackupOrchestrator

__all__ = [
    'BackupError',
    'ConnectionFailedError',
    'AuthenticationError',
    'CommandError',
    'ProtocolValidationError',
    'ArchiveValidationError',
    'AcquisitionError',
    'PersistenceError',
    'ScheduleConfigError',
    'WebAcquisitionClient',
    'AuthSession',
    'validate_archive_payload',
    'select_first_valid',
    'ShellAcquisitionClient',
    'LocalStorage',
    'RetentionManager',
    'JobLedger',
    'BackupOrchestrator'
]
