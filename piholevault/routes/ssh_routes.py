"""
SSH routes - password checks and key-based login setup.
"""

import os
import logging
from flask import Blueprint, jsonify, request, current_app

from piholevault.models import ConfigurationError, SSHConnection, connection_from_settings
from piholevault.settings import SettingsValidationError
from piholevault.backup.errors import BackupError, PersistenceError
from piholevault.backup.ssh import ensure_key_pair


logger = logging.getLogger(__name__)

bp = Blueprint('ssh', __name__, url_prefix='/api/ssh')


def _shell_client():
    return current_app.extensions['shell_client']


def _key_path() -> str:
    return os.path.join(current_app.config['DATA_DIR'], 'ssh', 'id_rsa')


def _password_connection(data) -> SSHConnection:
    """
    Build an SSH connection from a request body.

    Raises:
        ConfigurationError: If host, username or password is missing or the port is invalid
    """
    if not data.get('host') or not data.get('username') or not data.get('password'):
        raise ConfigurationError('Missing required connection parameters')
    return connection_from_settings({
        'connectionMethod': 'ssh',
        'host': data['host'],
        'username': data['username'],
        'password': data['password'],
        'port': data.get('port')
    })


@bp.route('/test', methods=['POST'])
def test_ssh():
    """
    Test password login and the presence of pihole-FTL.

    Request body:
        - host, username, password (required)
        - port (default: 22)
    """
    try:
        connection = _password_connection(request.get_json(silent=True) or {})
    except ConfigurationError as e:
        return jsonify({'success': False, 'error': str(e)}), 400

    return jsonify(_shell_client().test_connection(connection))


@bp.route('/setup-key', methods=['POST'])
def setup_key():
    """
    Generate the service key pair and authorize it on the Pi-hole.

    The password is used once to append the public key to
    ~/.ssh/authorized_keys. After a successful key-only login the saved
    settings are marked with sshKeyDeployed and sshKeyPath.

    Request body:
        - host, username, password (required)
        - port (default: 22)
    """
    try:
        connection = _password_connection(request.get_json(silent=True) or {})
    except ConfigurationError as e:
        return jsonify({'success': False, 'error': str(e)}), 400

    key_path = _key_path()
    try:
        public_key = ensure_key_pair(key_path)
    except PersistenceError as e:
        logger.error(f"SSH key generation failed: {e}")
        return jsonify({'success': False, 'error': str(e)}), 500

    client = _shell_client()
    try:
        client.deploy_public_key(connection, public_key)
    except BackupError as e:
        logger.error(f"SSH key deployment to {connection.host} failed: {e}")
        return jsonify({'success': False, 'error': str(e)})

    result = client.test_key(SSHConnection(
        host=connection.host, username=connection.username, port=connection.port, key_path=key_path
    ))
    if not result['success']:
        return jsonify({'success': False, 'error': f"SSH key deployed but login failed: {result['error']}"})

    store = current_app.extensions['settings_store']
    config_updated = False
    if store.exists():
        try:
            store.update({'sshKeyDeployed': True, 'sshKeyPath': key_path})
            config_updated = True
        except (SettingsValidationError, OSError) as e:
            logger.warning(f"SSH key deployed but settings were not updated: {e}")

    logger.info(f"SSH key authentication set up for {connection.username}@{connection.host}")
    return jsonify({
        'success': True,
        'message': 'SSH key generated and deployed successfully',
        'keyPath': key_path,
        'publicKey': public_key,
        'configUpdated': config_updated
    })


@bp.route('/test-key', methods=['POST'])
def test_key():
    """Log in to the configured Pi-hole with the deployed key only."""
    store = current_app.extensions['settings_store']
    if not store.exists():
        return jsonify({'success': False, 'error': 'Configuration not found'}), 404

    settings = store.load()
    pihole = settings.get('pihole') or {}
    if not pihole or not settings.get('sshKeyDeployed'):
        return jsonify({'success': False, 'error': 'SSH key not configured'}), 400

    try:
        connection = connection_from_settings(
            {**pihole, 'connectionMethod': 'ssh'},
            ssh_key_path=settings.get('sshKeyPath') or _key_path()
        )
    except ConfigurationError as e:
        return jsonify({'success': False, 'error': str(e)}), 400

    return jsonify(_shell_client().test_key(connection))
