"""
Discord routes - webhook test message.
"""

from flask import Blueprint, jsonify, request, current_app


bp = Blueprint('discord', __name__, url_prefix='/api/discord')


@bp.route('/test', methods=['POST'])
def test_webhook():
    """
    Post a test message to a webhook.

    Request body:
        - webhookUrl: Discord webhook URL (required)
    """
    data = request.get_json(silent=True) or {}
    webhook_url = (data.get('webhookUrl') or '').strip()
    if not webhook_url:
        return jsonify({'success': False, 'error': 'Webhook URL is required'}), 400

    result = current_app.extensions['discord_notifier'].test_webhook(webhook_url)
    if not result['success']:
        return jsonify(result), 400
    return jsonify({'success': True, 'message': 'Discord webhook test successful'})
