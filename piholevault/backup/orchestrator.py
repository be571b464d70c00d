"""
Backup orchestrator - drives one backup attempt end to end.

Workflow:
1. Record the job as running in the ledger
2. Resolve the connection strategy from settings (ssh, web or hybrid)
3. Acquire the Teleporter archive and write it to the backup directory
4. Reject empty archives
5. Enforce retention
6. Record the job as success/error and notify hooks
"""

import time
import uuid
import logging
import threading
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any

from piholevault.models import (
    Connection, SSHConnection, WebConnection, HybridConnection, BackupArtifact, BackupOutcome,
    JobStatus, connection_from_settings
)
from .errors import BackupError, ArchiveValidationError
from .ledger import JobLedger
from .retention import RetentionManager
from .ssh import ShellAcquisitionClient
from .storage import LocalStorage, generate_archive_filename, DEFAULT_PREFIX
from .web import WebAcquisitionClient


logger = logging.getLogger(__name__)

DEFAULT_MAX_BACKUPS = 10


def generate_job_id() -> str:
    """Time-derived id, unique per attempt."""
    return f"backup_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}"


class BackupOrchestrator:
    """
    Runs backup attempts against the configured Pi-hole.

    Attempts are serialized: a second caller blocks until the running
    attempt has finished. run_backup() never raises; every failure is
    reported through the returned BackupOutcome and the job ledger.
    """

    def __init__(
        self,
        backup_dir: str,
        ledger: JobLedger,
        settings_store=None,
        web_client: Optional[WebAcquisitionClient] = None,
        shell_client: Optional[ShellAcquisitionClient] = None,
        hooks: Optional[List[Any]] = None,
        filename_prefix: str = DEFAULT_PREFIX
    ):
        """
        Initialize backup orchestrator.

        Args:
            backup_dir: Default backup directory (overridden by backup.destinationPath)
            ledger: Job ledger receiving running/success/error records
            settings_store: SettingsStore used by run_persisted_backup()
            web_client: Web acquisition client
            shell_client: SSH acquisition client
            hooks: Objects with on_success(payload) and on_failure(payload)
            filename_prefix: Archive filename prefix
        """
        self.backup_dir = backup_dir
        self.ledger = ledger
        self.settings_store = settings_store
        self.web_client = web_client or WebAcquisitionClient()
        self.shell_client = shell_client or ShellAcquisitionClient()
        self.hooks = list(hooks or [])
        self.filename_prefix = filename_prefix
        self.logs = []
        self._lock = threading.Lock()

    def run_persisted_backup(self) -> BackupOutcome:
        """Run a backup with the settings currently on disk."""
        settings = self.settings_store.load() if self.settings_store else {}
        return self.run_backup(settings)

    def run_backup_with_connection(
        self,
        connection: Dict[str, Any],
        name: Optional[str] = None,
        description: Optional[str] = None
    ) -> BackupOutcome:
        """
        Run a backup against an ad-hoc connection.

        The connection fields are laid over the persisted 'pihole' settings;
        retention and destination still come from the persisted settings.

        Args:
            connection: Partial 'pihole' settings object
            name: Optional label stored with the job
            description: Optional description stored with the job
        """
        settings = dict(self.settings_store.load()) if self.settings_store else {}
        settings['pihole'] = {**(settings.get('pihole') or {}), **(connection or {})}
        return self.run_backup(settings, name=name, description=description)

    def run_backup(
        self,
        settings: Dict[str, Any],
        name: Optional[str] = None,
        description: Optional[str] = None
    ) -> BackupOutcome:
        """
        Execute one backup attempt.

        Args:
            settings: Settings dict with 'pihole', 'backup', 'sshKeyDeployed'
                and 'sshKeyPath'
            name: Optional label stored with the job
            description: Optional description stored with the job

        Returns:
            BackupOutcome
        """
        with self._lock:
            return self._run(settings or {}, name, description)

    def _run(self, settings: Dict[str, Any], name: Optional[str], description: Optional[str]) -> BackupOutcome:
        self.logs = []
        job_id = generate_job_id()
        started = time.monotonic()
        host = (settings.get('pihole') or {}).get('host')

        self._log(f"Starting backup job: {job_id}" + (f" ({name})" if name else ''))

        try:
            self.ledger.upsert(job_id, JobStatus.RUNNING, 'Backup started', name=name, description=description)
        except OSError as e:
            logger.error(f"Failed to record job {job_id} start: {e}")

        try:
            artifact = self._execute_workflow(settings)
            duration = round(time.monotonic() - started, 3)

            self._record(
                job_id, JobStatus.SUCCESS, f"Backup completed successfully: {artifact.filename}",
                filename=artifact.filename, size=artifact.size, method=artifact.method, duration=duration,
                name=name, description=description
            )
            self._log(f"Backup completed successfully ({artifact.filename}, {artifact.size} bytes)")

            self._notify('on_success', {
                'filename': artifact.filename,
                'size': artifact.size,
                'durationSeconds': duration,
                'host': host,
                'jobId': job_id
            })

            return BackupOutcome(
                success=True,
                job_id=job_id,
                filename=artifact.filename,
                size=artifact.size,
                method=artifact.method,
                duration_seconds=duration
            )

        except Exception as e:
            duration = round(time.monotonic() - started, 3)
            error = str(e) or e.__class__.__name__

            if not isinstance(e, (BackupError, ValueError)):
                logger.exception(f"Unexpected error in backup job {job_id}")
            self._log(f"Backup failed: {error}", logging.ERROR)

            self._record(
                job_id, JobStatus.ERROR, f"Backup failed: {error}",
                duration=duration, name=name, description=description
            )
            self._notify('on_failure', {'error': error, 'host': host, 'jobId': job_id})

            return BackupOutcome(success=False, job_id=job_id, duration_seconds=duration, error=error)

    def _execute_workflow(self, settings: Dict[str, Any]) -> BackupArtifact:
        """Execute the acquisition, persistence and retention steps."""
        key_path = settings.get('sshKeyPath') if settings.get('sshKeyDeployed') else None
        connection = connection_from_settings(settings.get('pihole') or {}, ssh_key_path=key_path)
        self._log(f"Connection method: {connection.strategy.value} (host: {connection.host})")

        backup_settings = settings.get('backup') or {}
        backup_dir = backup_directory_of(settings, self.backup_dir)
        storage = LocalStorage(backup_dir, self.filename_prefix)

        filename = generate_archive_filename(self.filename_prefix)
        artifact = self._acquire(connection, storage, filename)

        retention = RetentionManager(self.filename_prefix)
        summary = retention.enforce(backup_dir, self._retention_limit(backup_settings))
        self.logs.extend(retention.logs)
        if summary['errors']:
            self._log(f"Retention finished with {len(summary['errors'])} errors", logging.WARNING)

        return artifact

    def _retention_limit(self, backup_settings: Dict[str, Any]) -> int:
        """Read maxBackups, falling back to the default when it is unusable."""
        max_backups = backup_settings.get('maxBackups')
        if max_backups in (None, ''):
            return DEFAULT_MAX_BACKUPS

        try:
            limit = int(max_backups)
        except (TypeError, ValueError):
            limit = 0

        if limit < 1:
            self._log(f"Invalid maxBackups {max_backups!r}, keeping {DEFAULT_MAX_BACKUPS}", logging.WARNING)
            return DEFAULT_MAX_BACKUPS
        return limit

    def _acquire(self, connection: Connection, storage: LocalStorage, filename: str) -> BackupArtifact:
        """
        Dispatch acquisition by strategy.

        Hybrid tries the web API first and falls back to SSH when the web
        path fails with a BackupError.
        """
        if isinstance(connection, WebConnection):
            return self._acquire_web(connection, storage, filename, 'web')

        if isinstance(connection, SSHConnection):
            return self._acquire_ssh(connection, storage, filename, 'ssh')

        if isinstance(connection, HybridConnection):
            try:
                return self._acquire_web(connection.web, storage, filename, 'hybrid-web')
            except BackupError as e:
                self._log(f"Web acquisition failed, falling back to SSH: {e}", logging.WARNING)
            return self._acquire_ssh(connection.ssh, storage, filename, 'hybrid-ssh')

        raise ValueError(f"Unsupported connection type: {type(connection).__name__}")

    def _acquire_web(self, connection: WebConnection, storage: LocalStorage, filename: str, method: str) -> BackupArtifact:
        self._log(f"Retrieving Teleporter archive via web API from {connection.host}")
        payload = self.web_client.acquire(connection)
        self._log(f"Archive received from {payload.endpoint} ({len(payload.content)} bytes, {payload.format})")

        size = storage.write(filename, payload.content)
        return self._artifact(storage, filename, size, method)

    def _acquire_ssh(self, connection: SSHConnection, storage: LocalStorage, filename: str, method: str) -> BackupArtifact:
        self._log(f"Running Teleporter over SSH on {connection.host}:{connection.port}")
        destination = storage.get_full_path(filename)
        self.shell_client.acquire(connection, destination)

        size = storage.size_of(filename)
        return self._artifact(storage, filename, size, method)

    def _artifact(self, storage: LocalStorage, filename: str, size: int, method: str) -> BackupArtifact:
        if size == 0:
            storage.delete(filename)
            raise ArchiveValidationError("Backup file is empty")

        self._log(f"Archive stored: {filename} ({size / 1024:.1f} KB)")
        return BackupArtifact(
            filename=filename,
            size=size,
            local_path=storage.get_full_path(filename),
            created_at=datetime.now(timezone.utc),
            method=method
        )

    def _record(self, job_id: str, status: JobStatus, message: str, **extra):
        try:
            self.ledger.upsert(job_id, status, message, **extra)
        except OSError as e:
            logger.error(f"Failed to record job {job_id} as {status.value}: {e}")

    def _notify(self, event: str, payload: Dict[str, Any]):
        """Call every hook; hook failures never affect the outcome."""
        for hook in self.hooks:
            handler = getattr(hook, event, None)
            if handler is None:
                continue
            try:
                handler(payload)
            except Exception as e:
                logger.warning(f"Notification hook {type(hook).__name__}.{event} failed: {e}")

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


def backup_directory_of(settings: Dict[str, Any], default: str) -> str:
    """Resolve the directory archives are written to."""
    return (settings.get('backup') or {}).get('destinationPath') or default


