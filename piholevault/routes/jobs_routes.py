"""
Job history routes.
"""

from flask import Blueprint, jsonify, current_app


bp = Blueprint('jobs', __name__, url_prefix='/api/jobs')


def _ledger():
    return current_app.extensions['job_ledger']


@bp.route('/', methods=['GET'])
def list_jobs():
    """
    Get job history.

    Returns:
        JSON array of job records, newest first
    """
    return jsonify([record.to_dict() for record in _ledger().list_recent()])


@bp.route('/', methods=['DELETE'])
def clear_jobs():
    _ledger().clear()
    return jsonify({'success': True, 'message': 'Job history cleared'})


@bp.route('/stats', methods=['GET'])
def job_stats():
    return jsonify(_ledger().statistics())
