"""
Configuration routes - read and write persisted settings.

Every write re-initializes the backup schedule.
"""

import logging
from flask import Blueprint, jsonify, request, current_app

from piholevault.settings import SettingsValidationError
from piholevault.scheduler import initialize_scheduled_jobs


logger = logging.getLogger(__name__)

bp = Blueprint('config', __name__, url_prefix='/api/config')


def _store():
    return current_app.extensions['settings_store']


@bp.route('/status', methods=['GET'])
def config_status():
    return jsonify(_store().status())


@bp.route('/', methods=['GET'])
def get_config():
    """
    Get configuration with secrets masked.

    Returns:
        JSON settings object
    """
    return jsonify(_store().redacted())


@bp.route('/save', methods=['POST'])
def save_config():
    """
    Replace the configuration.

    Request body:
        Full settings object (pihole, backup, schedule, discord)
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({'success': False, 'error': 'Request body must be a JSON object'}), 400

    try:
        _store().save(data)
    except SettingsValidationError as e:
        return jsonify({'success': False, 'error': str(e)}), 400
    except OSError as e:
        logger.error(f"Error saving config: {e}")
        return jsonify({'success': False, 'error': str(e)}), 500

    initialize_scheduled_jobs()
    return jsonify({'success': True})


@bp.route('/', methods=['PUT'])
def update_config():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({'success': False, 'error': 'Request body must be a JSON object'}), 400

    try:
        _store().update(data)
    except FileNotFoundError:
        return jsonify({'success': False, 'error': 'Configuration not found'}), 404
    except SettingsValidationError as e:
        return jsonify({'success': False, 'error': str(e)}), 400
    except OSError as e:
        logger.error(f"Error updating config: {e}")
        return jsonify({'success': False, 'error': str(e)}), 500

    initialize_scheduled_jobs()
    return jsonify({'success': True})
