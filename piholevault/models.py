"""
Data model for PiHoleVault.

Connection variants are validated when they are built from persisted
settings so the acquisition clients never see a half-configured target.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Union, Dict, Any


class ConfigurationError(ValueError):
    """Raised when persisted settings cannot describe a usable connection."""
    pass


class Strategy(str, Enum):
    SSH = 'ssh'
    WEB = 'web'
    HYBRID = 'hybrid'


class JobStatus(str, Enum):
    """Closed set of ledger statuses."""
    RUNNING = 'running'
    SUCCESS = 'success'
    ERROR = 'error'

    @classmethod
    def normalize(cls, value: str) -> 'JobStatus':
        """
        Map a stored status onto the enum.

        Older ledgers used 'completed' and 'failed' for the same outcomes.

        Raises:
            ValueError: If the value is not a known status
        """
        legacy = {'completed': cls.SUCCESS, 'failed': cls.ERROR}
        if value in legacy:
            return legacy[value]
        return cls(value)


@dataclass(frozen=True)
class SSHConnection:
    host: str
    username: str
    password: Optional[str] = None
    port: int = 22
    key_path: Optional[str] = None

    strategy = Strategy.SSH

    def __post_init__(self):
        if not self.host:
            raise ConfigurationError("Pi-hole host is required")
        if not self.username:
            raise ConfigurationError("Username is required for SSH connections")
        if not self.password and not self.key_path:
            raise ConfigurationError("Either an SSH password or a deployed SSH key is required")


@dataclass(frozen=True)
class WebConnection:
    host: str
    web_password: str
    web_port: int = 80
    use_https: bool = False

    strategy = Strategy.WEB

    def __post_init__(self):
        if not self.host:
            raise ConfigurationError("Pi-hole host is required")
        if not self.web_password:
            raise ConfigurationError("Web password is required for web connections")


@dataclass(frozen=True)
class HybridConnection:
    """Web API for the archive, SSH as the fallback path."""

    ssh: SSHConnection
    web: WebConnection

    strategy = Strategy.HYBRID

    @property
    def host(self) -> str:
        return self.web.host


Connection = Union[SSHConnection, WebConnection, HybridConnection]


def _flag(value: Any) -> bool:
    """Interpret a settings flag that may arrive as a string from a form."""
    if isinstance(value, str):
        return value.strip().lower() in ('true', '1', 'yes', 'on')
    return bool(value)


def _port(value: Any, default: int) -> int:
    if value in (None, ''):
        return default
    try:
        port = int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Invalid port: {value!r}")
    if port <= 0 or port > 65535:
        raise ConfigurationError(f"Port must be between 1 and 65535: {port}")
    return port


def connection_from_settings(pihole: Dict[str, Any], ssh_key_path: Optional[str] = None) -> Connection:
    """
    Build a connection variant from the persisted 'pihole' settings object.

    Args:
        pihole: Dict with host, connectionMethod, username, password, port,
            webPort, useHttps and webPassword
        ssh_key_path: Path of a deployed private key, if any

    Returns:
        SSHConnection, WebConnection or HybridConnection

    Raises:
        ConfigurationError: If the method is unknown or required fields are missing
    """
    if not pihole:
        raise ConfigurationError("Pi-hole configuration not found")

    method = pihole.get('connectionMethod') or Strategy.SSH.value
    try:
        strategy = Strategy(method)
    except ValueError:
        raise ConfigurationError(f"Unknown connection method: {method}")

    host = (pihole.get('host') or '').strip()

    def build_ssh():
        return SSHConnection(
            host=host,
            username=pihole.get('username') or '',
            password=pihole.get('password') or None,
            port=_port(pihole.get('port'), 22),
            key_path=ssh_key_path
        )

    def build_web():
        return WebConnection(
            host=host,
            web_password=pihole.get('webPassword') or '',
            web_port=_port(pihole.get('webPort'), 80),
            use_https=_flag(pihole.get('useHttps', False))
        )

    if strategy is Strategy.SSH:
        return build_ssh()
    if strategy is Strategy.WEB:
        return build_web()
    return HybridConnection(ssh=build_ssh(), web=build_web())


@dataclass(frozen=True)
class ScheduleConfig:
    enabled: bool = False
    cron_expression: Optional[str] = None
    timezone: Optional[str] = None
    paused: bool = False

    @classmethod
    def from_settings(cls, schedule: Optional[Dict[str, Any]]) -> 'ScheduleConfig':
        schedule = schedule or {}
        return cls(
            enabled=_flag(schedule.get('enabled', False)),
            cron_expression=(schedule.get('cronExpression') or '').strip() or None,
            timezone=schedule.get('timezone') or None,
            paused=_flag(schedule.get('paused', False))
        )


@dataclass(frozen=True)
class BackupArtifact:
    filename: str
    size: int
    local_path: str
    created_at: datetime
    method: str


@dataclass
class BackupOutcome:
    """Result of one backup attempt as reported to callers."""

    success: bool
    job_id: str
    filename: Optional[str] = None
    size: Optional[int] = None
    method: Optional[str] = None
    duration_seconds: Optional[float] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'success': self.success,
            'jobId': self.job_id,
            'filename': self.filename,
            'size': self.size,
            'method': self.method,
            'durationSeconds': self.duration_seconds,
        }
        if self.error is not None:
            data['error'] = self.error
        return data


@dataclass
class JobRecord:
    id: str
    status: JobStatus
    message: str
    timestamp: str
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'id': self.id,
            'timestamp': self.timestamp,
            'status': self.status.value,
            'message': self.message,
        }
        data.update(self.extra)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'JobRecord':
        extra = {k: v for k, v in data.items() if k not in ('id', 'timestamp', 'status', 'message')}
        return cls(
            id=data['id'],
            status=JobStatus.normalize(data.get('status', JobStatus.ERROR.value)),
            message=data.get('message', ''),
            timestamp=data.get('timestamp', ''),
            extra=extra
        )

