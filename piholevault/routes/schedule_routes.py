"""
Schedule routes - status, validation and control of scheduled backups.
"""

import logging
from flask import Blueprint, jsonify, request, current_app

from piholevault.models import ScheduleConfig
from piholevault.settings import SettingsValidationError
from piholevault.backup.errors import ScheduleConfigError
from piholevault.scheduler import (
    get_backup_scheduler, initialize_scheduled_jobs, start_scheduled_backups, stop_scheduled_backups,
    validate_schedule, preview_next_runs
)


logger = logging.getLogger(__name__)

bp = Blueprint('schedule', __name__, url_prefix='/api/schedule')


def _persisted_schedule() -> ScheduleConfig:
    settings = current_app.extensions['settings_store'].load()
    return ScheduleConfig.from_settings(settings.get('schedule'))


def _status():
    schedule = _persisted_schedule()
    backup_scheduler = get_backup_scheduler()

    status = {
        'enabled': schedule.enabled,
        'cronExpression': schedule.cron_expression,
        'timezone': schedule.timezone,
        'paused': schedule.paused,
        'schedulerOwner': backup_scheduler is not None
    }
    if backup_scheduler is not None:
        status['scheduler'] = backup_scheduler.describe()
    return status


@bp.route('/status', methods=['GET'])
def schedule_status():
    return jsonify(_status())


@bp.route('/validate', methods=['POST'])
def validate():
    """
    Validate a cron expression and timezone.

    Request body:
        - cronExpression: 5-field cron expression (required)
        - timezone: IANA name or 'GMT+N' (optional)
    """
    data = request.get_json(silent=True) or {}
    cron_expression = (data.get('cronExpression') or '').strip()

    if not cron_expression:
        return jsonify({'valid': False, 'error': 'cronExpression is required'}), 400

    result = validate_schedule(cron_expression, data.get('timezone'))
    return jsonify(result), (200 if result['valid'] else 400)


@bp.route('/next-runs', methods=['GET'])
def next_runs():
    count = request.args.get('count', 5, type=int)
    count = min(max(count, 1), 50)

    try:
        runs = preview_next_runs(_persisted_schedule(), count)
    except ScheduleConfigError as e:
        return jsonify({'success': False, 'error': str(e)}), 400

    return jsonify({'nextRuns': runs})


@bp.route('/toggle', methods=['POST'])
def toggle():
    """
    Enable or disable scheduled backups and persist the choice.

    Enabling clears a previous pause.

    Request body:
        - enabled: New state (default: flip the persisted one)
    """
    data = request.get_json(silent=True) or {}
    store = current_app.extensions['settings_store']
    settings = store.load()

    schedule = dict(settings.get('schedule') or {})
    enabled = data.get('enabled')
    schedule['enabled'] = (not ScheduleConfig.from_settings(schedule).enabled) if enabled is None else bool(enabled)
    schedule.pop('paused', None)

    try:
        store.update({'schedule': schedule})
    except FileNotFoundError:
        return jsonify({'success': False, 'error': 'Configuration not found'}), 404
    except SettingsValidationError as e:
        return jsonify({'success': False, 'error': str(e)}), 400

    initialize_scheduled_jobs()
    logger.info(f"Scheduled backups {'enabled' if schedule['enabled'] else 'disabled'}")
    return jsonify({'success': True, 'enabled': schedule['enabled'], 'status': _status()})


@bp.route('/start', methods=['POST'])
def start():
    """
    Resume scheduled backups.

    The choice is persisted, so the process owning the scheduler applies it
    even when this request is served elsewhere.
    """
    try:
        started = start_scheduled_backups()
    except FileNotFoundError:
        return jsonify({'success': False, 'error': 'Configuration not found'}), 404
    except SettingsValidationError as e:
        return jsonify({'success': False, 'error': str(e)}), 400

    if not started:
        return jsonify({'success': False, 'error': 'No schedule to start', 'status': _status()}), 409
    return jsonify({'success': True, 'status': _status()})


@bp.route('/stop', methods=['POST'])
def stop():
    try:
        stopped = stop_scheduled_backups()
    except FileNotFoundError:
        return jsonify({'success': False, 'error': 'Configuration not found'}), 404
    except SettingsValidationError as e:
        return jsonify({'success': False, 'error': str(e)}), 400

    if not stopped:
        return jsonify({'success': False, 'error': 'No active schedule', 'status': _status()}), 409
    return jsonify({'success': True, 'status': _status()})
