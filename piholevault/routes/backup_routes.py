"""
Backup routes - run backups and manage stored archives.
"""

import logging
from flask import Blueprint, jsonify, request, current_app, send_file

from piholevault.backup.errors import PersistenceError
from piholevault.backup.orchestrator import backup_directory_of
from piholevault.backup.storage import LocalStorage, is_safe_filename, is_archive_filename


logger = logging.getLogger(__name__)

bp = Blueprint('backups', __name__, url_prefix='/api/backups')


def _orchestrator():
    return current_app.extensions['backup_orchestrator']


def _prefix() -> str:
    return current_app.config['BACKUP_FILENAME_PREFIX']


def _storage() -> LocalStorage:
    settings = current_app.extensions['settings_store'].load()
    return LocalStorage(backup_directory_of(settings, current_app.config['BACKUP_DIR']), _prefix())


def _outcome_response(outcome):
    return jsonify(outcome.to_dict()), (200 if outcome.success else 500)


@bp.route('/run', methods=['POST'])
def run_backup():
    """
    Run a backup with the persisted settings.

    Returns:
        JSON outcome (HTTP 500 when the backup failed)
    """
    logger.info("Manual backup requested")
    return _outcome_response(_orchestrator().run_persisted_backup())


@bp.route('/', methods=['POST'])
def run_backup_with_connection():
    """
    Run a backup, optionally against an ad-hoc connection.

    Request body:
        - connection: Partial 'pihole' settings laid over the persisted ones (optional)
        - name: Label stored with the job (optional)
        - description: Description stored with the job (optional)
    """
    data = request.get_json(silent=True) or {}
    connection = data.get('connection')

    if connection is not None and not isinstance(connection, dict):
        return jsonify({'success': False, 'error': 'connection must be an object'}), 400

    if connection:
        outcome = _orchestrator().run_backup_with_connection(
            connection, name=data.get('name'), description=data.get('description')
        )
    else:
        outcome = _orchestrator().run_persisted_backup()

    return _outcome_response(outcome)


@bp.route('/', methods=['GET'])
def list_backups():
    """
    List stored archives, newest first.

    Returns:
        JSON array of {filename, size, created}
    """
    try:
        archives = _storage().list_archives()
    except PersistenceError as e:
        logger.error(f"Error listing backups: {e}")
        return jsonify({'success': False, 'error': str(e)}), 500

    return jsonify([
        {
            'filename': archive['filename'],
            'size': archive['size'],
            'created': archive['modified'].isoformat()
        }
        for archive in archives
    ])


@bp.route('/stats', methods=['GET'])
def backup_stats():
    try:
        return jsonify(_storage().statistics())
    except PersistenceError as e:
        logger.error(f"Error getting backup statistics: {e}")
        return jsonify({'success': False, 'error': str(e)}), 500


@bp.route('/<filename>/download', methods=['GET'])
def download_backup(filename):
    if not is_safe_filename(filename) or not is_archive_filename(filename, _prefix()):
        return jsonify({'success': False, 'error': 'Invalid filename'}), 400

    storage = _storage()
    path = storage.get_full_path(filename)

    try:
        storage.size_of(filename)
    except PersistenceError:
        return jsonify({'success': False, 'error': 'Backup file not found'}), 404

    return send_file(path, as_attachment=True, download_name=filename)


@bp.route('/<filename>', methods=['DELETE'])
def delete_backup(filename):
    """
    Delete a stored archive.

    Args:
        filename: Archive filename (no path components)
    """
    if not is_safe_filename(filename) or not is_archive_filename(filename, _prefix()):
        return jsonify({'success': False, 'error': 'Invalid filename'}), 400

    storage = _storage()

    try:
        storage.size_of(filename)
    except PersistenceError:
        return jsonify({'success': False, 'error': 'Backup file not found'}), 404

    try:
        storage.delete(filename)
    except PersistenceError as e:
        logger.error(f"Error deleting backup {filename}: {e}")
        return jsonify({'success': False, 'error': str(e)}), 500

    logger.info(f"Backup file deleted: {filename}")
    return jsonify({'success': True, 'message': 'Backup deleted successfully'})
