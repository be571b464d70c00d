"""
Unit tests for Discord notifications (piholevault/notifications.py).

Webhook calls go through httpx.MockTransport.
"""

import json

import httpx
import pytest

from piholevault.notifications import DiscordNotifier, COLOR_SUCCESS, COLOR_FAILURE


WEBHOOK_URL = 'https://discord.com/api/webhooks/123/abc'


@pytest.fixture
def discord_settings():
    return {
        'discord': {
            'enabled': True,
            'webhookUrl': WEBHOOK_URL,
            'notifyOnSuccess': True,
            'notifyOnFailure': True
        }
    }


@pytest.fixture
def webhook():
    """Recording webhook transport answering 204."""
    posted = []

    def handler(request):
        posted.append(json.loads(request.content))
        return httpx.Response(204)

    return httpx.MockTransport(handler), posted


SUCCESS_PAYLOAD = {
    'filename': 'pi-hole_backup_2024-01-15T03-00-00-000Z.zip',
    'size': 2 * 1024 * 1024,
    'durationSeconds': 3.2,
    'host': '192.168.1.2',
    'jobId': 'backup_1'
}


class TestDiscordHooks:
    """Test the orchestrator hook entry points."""

    def test_success_notification(self, discord_settings, webhook):
        transport, posted = webhook
        notifier = DiscordNotifier(lambda: discord_settings, transport=transport)

        notifier.on_success(SUCCESS_PAYLOAD)

        assert len(posted) == 1
        message = posted[0]
        assert message['username'] == 'PiHoleVault'
        embed = message['embeds'][0]
        assert embed['title'] == 'Pi-hole Backup Successful'
        assert embed['color'] == COLOR_SUCCESS
        values = {f['name']: f['value'] for f in embed['fields']}
        assert values['File Size'] == '2.00 MB'
        assert values['Pi-hole Server'] == '192.168.1.2'
        assert values['Duration'] == '3.2s'
        assert 'backup_1' in values['Job ID']

    def test_failure_notification(self, discord_settings, webhook):
        transport, posted = webhook
        notifier = DiscordNotifier(lambda: discord_settings, transport=transport)

        notifier.on_failure({'error': 'Connection refused', 'host': None, 'jobId': 'backup_2'})

        embed = posted[0]['embeds'][0]
        assert embed['color'] == COLOR_FAILURE
        values = {f['name']: f['value'] for f in embed['fields']}
        assert 'Connection refused' in values['Error Details']
        assert values['Pi-hole Server'] == 'Unknown'

    def test_disabled(self, discord_settings, webhook):
        transport, posted = webhook
        discord_settings['discord']['enabled'] = False
        notifier = DiscordNotifier(lambda: discord_settings, transport=transport)

        notifier.on_success(SUCCESS_PAYLOAD)
        notifier.on_failure({'error': 'x'})

        assert posted == []

    def test_per_event_flags(self, discord_settings, webhook):
        """Test notifyOnSuccess=False only silences success events."""
        transport, posted = webhook
        discord_settings['discord']['notifyOnSuccess'] = False
        notifier = DiscordNotifier(lambda: discord_settings, transport=transport)

        notifier.on_success(SUCCESS_PAYLOAD)
        notifier.on_failure({'error': 'x', 'jobId': 'backup_3'})

        assert len(posted) == 1
        assert posted[0]['embeds'][0]['title'] == 'Pi-hole Backup Failed'

    def test_settings_read_per_event(self, discord_settings, webhook):
        transport, posted = webhook
        current = {}
        notifier = DiscordNotifier(lambda: current, transport=transport)

        notifier.on_success(SUCCESS_PAYLOAD)
        current.update(discord_settings)
        notifier.on_success(SUCCESS_PAYLOAD)

        assert len(posted) == 1


class TestSend:
    """Test webhook delivery results."""

    def test_missing_url(self):
        result = DiscordNotifier(dict).send('', {'content': 'x'})

        assert result == {'success': False, 'error': 'Webhook URL not configured'}

    def test_http_error_status(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(404))

        result = DiscordNotifier(dict, transport=transport).send(WEBHOOK_URL, {'content': 'x'})

        assert result == {'success': False, 'error': 'Discord webhook failed: 404 Not Found'}

    def test_network_error_not_raised(self):
        def handler(request):
            raise httpx.ConnectError('Name or service not known', request=request)

        result = DiscordNotifier(dict, transport=httpx.MockTransport(handler)).send(WEBHOOK_URL, {'content': 'x'})

        assert result['success'] is False
        assert 'Name or service not known' in result['error']

    def test_test_webhook(self, webhook):
        transport, posted = webhook

        result = DiscordNotifier(dict, transport=transport).test_webhook(WEBHOOK_URL)

        assert result == {'success': True}
        assert posted[0]['embeds'][0]['title'] == 'Discord Integration Test'
