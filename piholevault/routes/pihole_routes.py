"""
Pi-hole routes - connection checks against the appliance.
"""

import logging
from flask import Blueprint, jsonify, request, current_app

from piholevault.models import (
    ConfigurationError, SSHConnection, WebConnection, HybridConnection, connection_from_settings
)
from piholevault.backup.errors import AuthenticationError


logger = logging.getLogger(__name__)

bp = Blueprint('pihole', __name__, url_prefix='/api/pihole')


def _web_client():
    return current_app.extensions['web_client']


def _shell_client():
    return current_app.extensions['shell_client']


def _check_web(connection: WebConnection):
    result = _web_client().test_connection(connection)
    if not result['success']:
        return result

    try:
        session = _web_client().authenticate(connection)
        result['authenticated'] = True
        result['authMethod'] = session.method
    except AuthenticationError as e:
        result['authenticated'] = False
        result['authError'] = str(e)
    return result


@bp.route('/test-connection', methods=['POST'])
def test_connection():
    """
    Test a Pi-hole connection without saving it.

    Request body:
        - host: Pi-hole host (required)
        - connectionMethod: 'ssh', 'web' or 'hybrid' (default: 'ssh')
        - username, password, port: SSH credentials
        - webPassword, webPort, useHttps: Web API credentials
    """
    data = request.get_json(silent=True) or {}
    if not data.get('host'):
        return jsonify({'success': False, 'error': 'Host is required'}), 400

    try:
        connection = connection_from_settings(data)
    except ConfigurationError as e:
        return jsonify({'success': False, 'error': str(e)}), 400

    logger.info(f"Testing {connection.strategy.value} connection to {connection.host}")

    if isinstance(connection, SSHConnection):
        result = _shell_client().test_connection(connection)
    elif isinstance(connection, WebConnection):
        result = _check_web(connection)
    else:
        web = _check_web(connection.web)
        ssh = _shell_client().test_connection(connection.ssh)
        result = {'success': web['success'] or ssh['success'], 'details': {'web': web, 'ssh': ssh}}
        if not result['success']:
            result['error'] = 'Neither the web API nor SSH is reachable'

    result['method'] = connection.strategy.value
    return jsonify(result)


@bp.route('/status', methods=['GET'])
def pihole_status():
    """
    Report whether the configured Pi-hole answers.

    SSH and hybrid targets also return the output of 'pihole status' and
    'pihole version'.
    """
    store = current_app.extensions['settings_store']
    if not store.exists():
        return jsonify({'success': False, 'error': 'Configuration not found'}), 404

    settings = store.load()
    pihole = settings.get('pihole') or {}
    if not pihole.get('host'):
        return jsonify({'success': False, 'error': 'Pi-hole not configured'}), 400

    key_path = settings.get('sshKeyPath') if settings.get('sshKeyDeployed') else None
    try:
        connection = connection_from_settings(pihole, ssh_key_path=key_path)
    except ConfigurationError as e:
        return jsonify({'success': False, 'error': str(e)}), 400

    if isinstance(connection, HybridConnection):
        connection = connection.ssh

    if isinstance(connection, SSHConnection):
        return jsonify(_shell_client().pihole_status(connection))

    result = _web_client().test_connection(connection)
    result['connected'] = result['success']
    return jsonify(result)
