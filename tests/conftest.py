"""
Shared pytest fixtures for PiHoleVault tests.

This module provides fixtures for:
- Flask app and test client with isolated data directories
- Settings dicts for each connection method
- Job ledger and settings store on tmp_path
- Fake Pi-hole HTTP API built on httpx.MockTransport
- Mock paramiko SSHClient
- Archive files with controlled modification times
"""

import os
import json
import time
from pathlib import Path
from unittest.mock import MagicMock, patch

import httpx
import pytest

from piholevault import create_app
from piholevault.settings import SettingsStore
from piholevault.backup.ledger import JobLedger


GZIP_MAGIC = b'\x1f\x8b'


@pytest.fixture(scope='function')
def app(tmp_path):
    """
    Create Flask app with test configuration.

    Data and backups live under tmp_path; the scheduler is not started.
    """
    data_dir = tmp_path / 'data'

    app = create_app('development', test_config={
        'TESTING': True,
        'DATA_DIR': str(data_dir),
        'BACKUP_DIR': str(data_dir / 'backups'),
        'SCHEDULER_ENABLED': False,
    })

    yield app


@pytest.fixture(scope='function')
def client(app):
    """Flask test client for making HTTP requests."""
    return app.test_client()


@pytest.fixture(scope='function')
def ledger(tmp_path):
    """Job ledger stored in tmp_path."""
    return JobLedger(str(tmp_path))


@pytest.fixture(scope='function')
def settings_store(tmp_path):
    """Settings store in tmp_path (no config.json yet)."""
    return SettingsStore(str(tmp_path))


@pytest.fixture
def web_settings():
    """Settings for a web-only Pi-hole at 10.0.0.5."""
    return {
        'pihole': {
            'host': '10.0.0.5',
            'connectionMethod': 'web',
            'webPassword': 'secret',
            'webPort': 80,
            'useHttps': False
        },
        'backup': {'maxBackups': 10},
        'schedule': {'enabled': False, 'cronExpression': '0 3 * * *', 'timezone': 'UTC'}
    }


@pytest.fixture
def ssh_settings():
    """Settings for an SSH Pi-hole at 192.168.1.2."""
    return {
        'pihole': {
            'host': '192.168.1.2',
            'connectionMethod': 'ssh',
            'username': 'pi',
            'password': 'raspberry',
            'port': 22
        },
        'backup': {'maxBackups': 10},
        'schedule': {'enabled': False, 'cronExpression': '0 3 * * *', 'timezone': 'UTC'}
    }


@pytest.fixture
def hybrid_settings(web_settings, ssh_settings):
    """Settings combining web and SSH credentials."""
    pihole = {**ssh_settings['pihole'], **web_settings['pihole'], 'connectionMethod': 'hybrid'}
    return {**web_settings, 'pihole': pihole}


@pytest.fixture
def gzip_archive():
    """5000-byte payload starting with the gzip magic."""
    return GZIP_MAGIC + b'\x00' * 4998


@pytest.fixture
def pihole_api():
    """
    Factory for a fake Pi-hole HTTP API.

    Usage:
        transport, seen = pihole_api({('POST', '/api/auth'): httpx.Response(200, json=...)})

    Routes map (method, path) to an httpx.Response, an exception instance to
    raise, or a callable taking the request. Unknown routes answer 404.
    'seen' collects every request in order.
    """
    def factory(routes):
        seen = []

        def handler(request):
            seen.append(request)
            route = routes.get((request.method, request.url.path))
            if route is None:
                return httpx.Response(404, text='Not found')
            if isinstance(route, Exception):
                raise route
            if callable(route):
                return route(request)
            return route

        return httpx.MockTransport(handler), seen

    return factory


@pytest.fixture
def modern_session_response():
    """Successful modern API login with sid and csrf in the body."""
    return httpx.Response(200, json={
        'session': {'valid': True, 'totp': False, 'sid': 'sid-abc123', 'csrf': 'csrf-xyz789', 'validity': 300}
    })


@pytest.fixture
def mock_ssh_client():
    """
    Mock paramiko SSHClient used by the shell acquisition client.

    Yields the SSHClient instance mock; its SFTP client is
    instance.open_sftp.return_value.
    """
    with patch('piholevault.backup.ssh.SSHClient') as mock_ssh_class:
        mock_ssh = MagicMock()
        mock_ssh_class.return_value = mock_ssh
        mock_ssh.connect.return_value = None
        yield mock_ssh


@pytest.fixture
def exec_result():
    """Factory for the (stdin, stdout, stderr) triple returned by exec_command."""
    def build(exit_status=0, out=b'', err=b''):
        stdout = MagicMock()
        stdout.channel.recv_exit_status.return_value = exit_status
        stdout.read.return_value = out
        stderr = MagicMock()
        stderr.read.return_value = err
        return MagicMock(), stdout, stderr

    return build


@pytest.fixture
def make_archives():
    """
    Create archive files with increasing modification times.

    Returns a function (directory, count, prefix) -> list of paths, oldest first.
    """
    def factory(directory, count, prefix='pi-hole_backup'):
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        base = time.time() - 86400 * (count + 1)
        paths = []
        for index in range(count):
            path = directory / f"{prefix}_2024-01-{index + 1:02d}T03-00-00-000Z.zip"
            path.write_bytes(b'PK' + b'\x00' * 200)
            mtime = base + index * 3600
            os.utime(path, (mtime, mtime))
            paths.append(path)
        return paths

    return factory


@pytest.fixture
def write_jobs_file(tmp_path):
    """Write a raw jobs.json into tmp_path."""
    def writer(records):
        (tmp_path / 'jobs.json').write_text(json.dumps(records))
    return writer


@pytest.fixture
def html_page():
    """Large login page served with HTTP 200."""
    return (
        b'<!DOCTYPE html><html><head><title>Pi-hole</title></head><body>'
        + b'<p>Please log in</p>' * 500
        + b'</body></html>'
    )
