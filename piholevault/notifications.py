"""
Discord webhook notifications for backup outcomes.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Any, Optional, Callable

import httpx


logger = logging.getLogger(__name__)

BOT_NAME = 'PiHoleVault'
FOOTER = 'PiHoleVault - Pi-hole Backup Manager'
COLOR_SUCCESS = 0x00ff00
COLOR_FAILURE = 0xff0000
COLOR_TEST = 0x0099ff


class DiscordNotifier:
    """
    Orchestrator hook posting embeds to a Discord webhook.

    Settings are read on every event so changes apply without a restart.
    """

    def __init__(self, settings_loader: Callable[[], Dict[str, Any]], timeout: float = 10.0,
                 transport: Optional[httpx.BaseTransport] = None):
        """
        Args:
            settings_loader: Returns the current settings dict
            timeout: Webhook request timeout in seconds
            transport: Optional httpx transport (tests pass httpx.MockTransport)
        """
        self.settings_loader = settings_loader
        self.timeout = timeout
        self.transport = transport

    def _discord_settings(self) -> Dict[str, Any]:
        return (self.settings_loader() or {}).get('discord') or {}

    def on_success(self, payload: Dict[str, Any]):
        discord = self._discord_settings()
        if not discord.get('enabled') or not discord.get('notifyOnSuccess', True):
            return
        self.send(discord.get('webhookUrl'), self.success_embed(payload))

    def on_failure(self, payload: Dict[str, Any]):
        discord = self._discord_settings()
        if not discord.get('enabled') or not discord.get('notifyOnFailure', True):
            return
        self.send(discord.get('webhookUrl'), self.failure_embed(payload))

    def send(self, webhook_url: Optional[str], message: Dict[str, Any]) -> Dict[str, Any]:
        """
        POST a message to the webhook.

        Returns:
            Dict with 'success' and optional 'error'; never raises
        """
        if not webhook_url:
            logger.warning("Discord webhook URL not configured, skipping notification")
            return {'success': False, 'error': 'Webhook URL not configured'}

        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.post(webhook_url, json=message)
        except httpx.HTTPError as e:
            logger.error(f"Failed to send Discord notification: {e}")
            return {'success': False, 'error': str(e)}

        if 200 <= response.status_code < 300:
            logger.info("Discord notification sent successfully")
            return {'success': True}

        error = f"Discord webhook failed: {response.status_code} {response.reason_phrase}"
        logger.error(error)
        return {'success': False, 'error': error}

    def test_webhook(self, webhook_url: str) -> Dict[str, Any]:
        return self.send(webhook_url, self._message(
            'Discord Integration Test',
            'This is a test message to verify your Discord webhook is working correctly.',
            COLOR_TEST,
            [{'name': 'Status', 'value': 'Discord notifications are configured and working!', 'inline': False}]
        ))

    def success_embed(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        size_mb = (payload.get('size') or 0) / (1024 * 1024)
        return self._message(
            'Pi-hole Backup Successful',
            'Your Pi-hole configuration has been successfully backed up!',
            COLOR_SUCCESS,
            [
                {'name': 'Backup File', 'value': f"`{payload.get('filename')}`", 'inline': True},
                {'name': 'File Size', 'value': f"{size_mb:.2f} MB", 'inline': True},
                {'name': 'Pi-hole Server', 'value': payload.get('host') or 'Unknown', 'inline': True},
                {'name': 'Duration', 'value': f"{payload.get('durationSeconds') or 0:.1f}s", 'inline': True},
                {'name': 'Job ID', 'value': f"`{payload.get('jobId')}`", 'inline': False},
            ]
        )

    def failure_embed(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._message(
            'Pi-hole Backup Failed',
            'There was an error during the backup process.',
            COLOR_FAILURE,
            [
                {'name': 'Error Details', 'value': f"```{payload.get('error')}```", 'inline': False},
                {'name': 'Pi-hole Server', 'value': payload.get('host') or 'Unknown', 'inline': True},
                {'name': 'Job ID', 'value': f"`{payload.get('jobId')}`", 'inline': True},
            ]
        )

    @staticmethod
    def _message(title: str, description: str, color: int, fields) -> Dict[str, Any]:
        return {
            'username': BOT_NAME,
            'embeds': [{
                'title': title,
                'description': description,
                'color': color,
                'fields': fields,
                'footer': {'text': FOOTER},
                'timestamp': datetime.now(timezone.utc).isoformat()
            }]
        }
