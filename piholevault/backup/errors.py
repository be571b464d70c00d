"""
Exception hierarchy for backup acquisition and persistence.

Every error raised below the orchestrator derives from BackupError so the
orchestrator can turn it into a failed outcome without guessing.
"""

from typing import List, Optional


class BackupError(Exception):
    """Base class for recoverable backup failures."""
    pass


class ConnectionFailedError(BackupError):
    """Raised on transport failures (DNS, TCP, TLS, SSH handshake)."""
    pass


class AuthenticationError(BackupError):
    """Raised when credentials are rejected or no endpoint accepted them."""

    def __init__(self, message: str, method: Optional[str] = None, failures: Optional[List[str]] = None):
        super().__init__(message)
        self.method = method
        self.failures = failures or []


class CommandError(BackupError):
    """Raised when a remote command exits non-zero."""

    def __init__(self, message: str, exit_status: Optional[int] = None):
        super().__init__(message)
        self.exit_status = exit_status


class ProtocolValidationError(BackupError):
    """Raised when a response arrived but is not a usable archive."""
    pass


class ArchiveValidationError(ProtocolValidationError):
    """Raised when an archive is empty or its remote path is missing."""
    pass


class AcquisitionError(ProtocolValidationError):
    """Raised when every archive endpoint failed or returned invalid data."""

    def __init__(self, message: str, failures: Optional[List[str]] = None):
        super().__init__(message)
        self.failures = failures or []

    def __str__(self):
        message = super().__str__()
        if self.failures:
            return f"{message}: {'; '.join(self.failures)}"
        return message


class PersistenceError(BackupError):
    """Raised when writing or stating the local archive fails."""
    pass


class ScheduleConfigError(Exception):
    """Raised when the cron expression or timezone cannot be used."""
    pass
