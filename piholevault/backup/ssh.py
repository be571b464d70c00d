"""
SSH acquisition of Teleporter archives.

Runs 'pihole-FTL --teleporter' on the appliance, downloads the archive it
writes over SFTP and removes the remote copy. Also generates and deploys the
key pair used for password-less logins.
"""

import os
import stat
import socket
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, List, Tuple, Dict, Any

import paramiko
from paramiko import SSHClient, AutoAddPolicy, RSAKey

from piholevault.models import SSHConnection
from .errors import (
    BackupError, ConnectionFailedError, AuthenticationError, CommandError, ArchiveValidationError, PersistenceError
)


logger = logging.getLogger(__name__)

TELEPORTER_COMMAND = 'pihole-FTL --teleporter'
KEY_BITS = 4096
KEY_COMMENT = 'piholevault'
AUTHORIZED_KEYS = '.ssh/authorized_keys'


@dataclass(frozen=True)
class ShellAcquisitionResult:
    local_path: str
    size: int
    remote_path: str


def password_prompt_handler(password: Optional[str]):
    """
    Build a keyboard-interactive handler that answers every prompt with the password.

    paramiko calls the handler synchronously with (title, instructions,
    prompt_list) and expects one response per prompt.
    """
    def handler(title: str, instructions: str, prompt_list: List[Tuple[str, bool]]) -> List[str]:
        return [password or '' for _prompt, _echo in prompt_list]

    return handler


def ensure_key_pair(key_path: str, bits: int = KEY_BITS) -> str:
    """
    Load the private key at key_path, generating it first if it does not exist.

    The private key is written with mode 0600 and the public key next to it
    as '<key_path>.pub'.

    Args:
        key_path: Private key file
        bits: RSA key size for a new key

    Returns:
        Public key line in authorized_keys format

    Raises:
        PersistenceError: If the key cannot be read or written
    """
    path = Path(key_path)
    try:
        if path.is_file():
            key = RSAKey.from_private_key_file(str(path))
            logger.info(f"Using existing SSH key {path}")
        else:
            path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
            key = RSAKey.generate(bits=bits)
            key.write_private_key_file(str(path))
            os.chmod(path, 0o600)
            logger.info(f"Generated {bits}-bit RSA key {path}")

        public_key = f"{key.get_name()} {key.get_base64()} {KEY_COMMENT}"
        Path(f"{path}.pub").write_text(public_key + '\n')
    except (OSError, paramiko.SSHException) as e:
        raise PersistenceError(f"Failed to prepare SSH key {path}: {e}") from e

    return public_key


class ShellAcquisitionClient:
    """
    Retrieves Teleporter archives over SSH/SFTP.
    """

    def __init__(self, timeout: float = 30.0):
        """
        Initialize shell acquisition client.

        Args:
            timeout: Connect and command timeout in seconds
        """
        self.timeout = timeout

    def _connect(self, connection: SSHConnection) -> SSHClient:
        """
        Establish an authenticated SSH session.

        The deployed key is offered first when it is readable, then the
        password. If the server still wants more, keyboard-interactive
        authentication answers its prompts with the password.

        Raises:
            ConnectionFailedError: If the host cannot be reached
            AuthenticationError: If no credential was accepted
        """
        client = SSHClient()
        client.set_missing_host_key_policy(AutoAddPolicy())

        connect_kwargs = {
            'hostname': connection.host,
            'port': connection.port,
            'username': connection.username,
            'timeout': self.timeout,
            'banner_timeout': self.timeout,
            'auth_timeout': self.timeout,
            'look_for_keys': False,
            'allow_agent': False
        }

        if connection.key_path:
            key_path = Path(connection.key_path).expanduser()
            if key_path.is_file() and os.access(key_path, os.R_OK):
                connect_kwargs['key_filename'] = str(key_path)
            else:
                logger.error(f"Failed to read SSH key {key_path}, falling back to password")

        if connection.password:
            connect_kwargs['password'] = connection.password

        if 'key_filename' not in connect_kwargs and 'password' not in connect_kwargs:
            client.close()
            raise AuthenticationError("No usable SSH credential: key is unreadable and no password is set", method='ssh')

        try:
            client.connect(**connect_kwargs)
        except paramiko.AuthenticationException as e:
            if not self._keyboard_interactive(client, connection):
                client.close()
                raise AuthenticationError(f"SSH authentication failed: {e}", method='ssh') from e
        except (paramiko.SSHException, socket.error) as e:
            client.close()
            raise ConnectionFailedError(f"Failed to connect to {connection.host}:{connection.port}: {e}") from e

        return client

    def _keyboard_interactive(self, client: SSHClient, connection: SSHConnection) -> bool:
        transport = client.get_transport()
        if not connection.password or transport is None or not transport.is_active():
            return False

        try:
            transport.auth_interactive(connection.username, password_prompt_handler(connection.password))
        except (paramiko.AuthenticationException, paramiko.SSHException) as e:
            logger.debug(f"Keyboard-interactive authentication rejected: {e}")
            return False

        if transport.is_authenticated():
            logger.info("Authenticated with keyboard-interactive")
            return True
        return False

    def _run(self, client: SSHClient, command: str) -> Tuple[int, str, str]:
        """
        Run a command and wait at most self.timeout seconds for its exit status.

        Raises:
            CommandError: If the command has not exited before the timeout
        """
        _stdin, stdout, stderr = client.exec_command(command, timeout=self.timeout)
        channel = stdout.channel
        if not channel.status_event.wait(self.timeout):
            channel.close()
            raise CommandError(f"Command '{command}' did not finish within {self.timeout:g}s")

        exit_status = channel.recv_exit_status()
        out = stdout.read().decode('utf-8', errors='replace')
        err = stderr.read().decode('utf-8', errors='replace')
        return exit_status, out, err

    def _run_session(self, connection: SSHConnection, *commands: str) -> List[Tuple[int, str, str]]:
        """
        Connect, run commands in order and disconnect.

        Raises:
            ConnectionFailedError: If the host cannot be reached or the session breaks
            AuthenticationError: If no credential was accepted
            CommandError: If a command does not finish in time
        """
        client = self._connect(connection)
        try:
            return [self._run(client, command) for command in commands]
        except (paramiko.SSHException, socket.error) as e:
            raise ConnectionFailedError(f"SSH command failed: {e}") from e
        finally:
            client.close()

    def test_connection(self, connection: SSHConnection) -> Dict[str, Any]:
        """
        Log in and check that pihole-FTL is installed.

        Returns:
            Dict with 'success' and 'message' or 'error'
        """
        try:
            [(exit_status, out, _err)] = self._run_session(connection, 'which pihole-FTL')
        except BackupError as e:
            return {'success': False, 'error': str(e)}

        if exit_status != 0 or not out.strip():
            return {'success': False, 'error': 'pihole-FTL not found on target host'}
        return {'success': True, 'message': f"SSH connection successful, pihole-FTL at {out.strip()}"}

    def test_key(self, connection: SSHConnection) -> Dict[str, Any]:
        """
        Log in with the deployed key only.

        Args:
            connection: SSH connection settings; the password is ignored

        Returns:
            Dict with 'success' and 'message' or 'error'
        """
        try:
            key_only = SSHConnection(
                host=connection.host, username=connection.username, port=connection.port, key_path=connection.key_path
            )
            [(exit_status, out, _err)] = self._run_session(key_only, 'echo "SSH key authentication successful"')
        except (BackupError, ValueError) as e:
            return {'success': False, 'error': f"SSH key authentication failed: {e}"}

        if exit_status != 0:
            return {'success': False, 'error': f"SSH key test command exited with {exit_status}"}
        return {'success': True, 'message': out.strip() or 'SSH key authentication successful'}

    def pihole_status(self, connection: SSHConnection) -> Dict[str, Any]:
        """
        Read 'pihole status' and 'pihole version' from the appliance.

        Returns:
            Dict with 'success', 'connected' and 'status'/'version' or 'error'
        """
        try:
            (_s, status, _e), (_v, version, _e2) = self._run_session(connection, 'pihole status', 'pihole version')
        except BackupError as e:
            return {'success': False, 'connected': False, 'error': str(e)}

        return {'success': True, 'connected': True, 'status': status.strip(), 'version': version.strip()}

    def deploy_public_key(self, connection: SSHConnection, public_key: str) -> bool:
        """
        Append public_key to the remote ~/.ssh/authorized_keys over SFTP.

        ~/.ssh is created with mode 0700 when missing and authorized_keys is
        kept at 0600. A key that is already listed is not appended again.

        Args:
            connection: SSH connection settings with the password
            public_key: Public key line

        Returns:
            True if the key was appended, False if it was already present

        Raises:
            ConnectionFailedError: If the host cannot be reached or SFTP fails
            AuthenticationError: If the password is rejected
        """
        client = self._connect(connection)
        sftp = None
        try:
            sftp = client.open_sftp()
            try:
                sftp.stat('.ssh')
            except FileNotFoundError:
                sftp.mkdir('.ssh', mode=0o700)

            try:
                with sftp.open(AUTHORIZED_KEYS, 'r') as existing:
                    current = existing.read().decode('utf-8', errors='replace')
            except FileNotFoundError:
                current = ''

            if public_key.strip() in (line.strip() for line in current.splitlines()):
                logger.info(f"SSH key already authorized on {connection.host}")
                return False

            prefix = '' if not current or current.endswith('\n') else '\n'
            with sftp.open(AUTHORIZED_KEYS, 'a') as authorized:
                authorized.write(f"{prefix}{public_key.strip()}\n")
            sftp.chmod(AUTHORIZED_KEYS, stat.S_IRUSR | stat.S_IWUSR)
            logger.info(f"SSH key deployed to {connection.username}@{connection.host}")
            return True

        except (paramiko.SSHException, OSError) as e:
            raise ConnectionFailedError(f"Failed to deploy SSH key to {connection.host}: {e}") from e
        finally:
            if sftp is not None:
                sftp.close()
            client.close()

    def acquire(self, connection: SSHConnection, destination: str) -> ShellAcquisitionResult:
        """
        Create a Teleporter archive on the appliance and download it.

        Once the command has printed the archive path, the remote file is
        removed whether or not the download succeeds.

        Args:
            connection: SSH connection settings
            destination: Local path the archive is written to

        Returns:
            ShellAcquisitionResult

        Raises:
            ConnectionFailedError: If the host cannot be reached or the transfer breaks
            AuthenticationError: If no credential was accepted
            CommandError: If the teleporter command exits non-zero or hangs
            ArchiveValidationError: If no archive path is printed or the download is empty
            PersistenceError: If the local file cannot be stat'ed
        """
        client = self._connect(connection)
        sftp = None
        remote_path = None
        logger.info(f"Connected to Pi-hole server {connection.host}:{connection.port}")

        try:
            exit_status, out, err = self._run(client, TELEPORTER_COMMAND)
            if exit_status != 0:
                raise CommandError(f"Pi-hole backup failed: {err.strip() or out.strip()}", exit_status=exit_status)

            remote_path = out.strip()
            if not remote_path:
                raise ArchiveValidationError("No backup file generated")

            logger.info(f"Pi-hole backup created: {remote_path}")

            sftp = client.open_sftp()
            try:
                sftp.get(remote_path, destination)
            except FileNotFoundError as e:
                raise ArchiveValidationError(f"Remote backup file not found: {remote_path}") from e
            except PermissionError as e:
                raise CommandError(f"Permission denied reading remote backup: {remote_path}") from e

            logger.info(f"Backup file downloaded to {destination}")

            try:
                size = os.path.getsize(destination)
            except OSError as e:
                raise PersistenceError(f"Failed to stat downloaded backup {destination}: {e}") from e

            if size == 0:
                self._discard(destination)
                raise ArchiveValidationError("Downloaded backup file is empty")

            return ShellAcquisitionResult(local_path=destination, size=size, remote_path=remote_path)

        except (paramiko.SSHException, socket.error) as e:
            self._discard(destination)
            raise ConnectionFailedError(f"SSH transfer from {connection.host} failed: {e}") from e
        finally:
            if remote_path:
                self._remove_remote(sftp, remote_path)
            if sftp is not None:
                sftp.close()
            client.close()

    @staticmethod
    def _remove_remote(sftp, remote_path: str):
        if sftp is None:
            logger.warning(f"Remote backup {remote_path} left in place: no SFTP session")
            return
        try:
            sftp.remove(remote_path)
        except FileNotFoundError:
            pass
        except (OSError, paramiko.SSHException) as e:
            logger.warning(f"Failed to remove remote backup {remote_path}: {e}")

    @staticmethod
    def _discard(path: str):
        try:
            if os.path.exists(path):
                os.remove(path)
        except OSError as e:
            logger.warning(f"Failed to remove {path}: {e}")
