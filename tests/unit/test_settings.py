"""
Unit tests for persisted settings (piholevault/settings.py).
"""

import json

import pytest

from piholevault.settings import (
    SettingsStore, SettingsValidationError, DEFAULT_SETTINGS, CONFIG_FILENAME, validate_settings
)


class TestValidateSettings:
    """Test save-time validation messages."""

    def test_valid(self, ssh_settings, web_settings, hybrid_settings):
        validate_settings(ssh_settings)
        validate_settings(web_settings)
        validate_settings(hybrid_settings)

    @pytest.mark.parametrize('pihole,message', [
        ({}, 'Missing required Pi-hole host configuration'),
        ({'host': 'pihole', 'connectionMethod': 'telnet'}, 'Unknown connection method'),
        ({'host': 'pihole', 'connectionMethod': 'ssh'}, 'Username is required'),
        ({'host': 'pihole', 'connectionMethod': 'hybrid', 'webPassword': 'x'}, 'Username is required'),
        ({'host': 'pihole', 'connectionMethod': 'web'}, 'Web password is required'),
    ])
    def test_invalid_pihole(self, pihole, message):
        with pytest.raises(SettingsValidationError, match=message):
            validate_settings({'pihole': pihole})

    @pytest.mark.parametrize('max_backups', [0, -2, 'many'])
    def test_invalid_max_backups(self, ssh_settings, max_backups):
        ssh_settings['backup']['maxBackups'] = max_backups

        with pytest.raises(SettingsValidationError, match='maxBackups'):
            validate_settings(ssh_settings)

    def test_validation_error_is_value_error(self):
        assert issubclass(SettingsValidationError, ValueError)


class TestSettingsStore:
    """Test loading, saving and merging config.json."""

    def test_defaults_when_missing(self, settings_store):
        settings = settings_store.load()

        assert settings == DEFAULT_SETTINGS
        assert settings is not DEFAULT_SETTINGS
        assert settings_store.exists() is False

    def test_defaults_are_copies(self, settings_store):
        settings_store.load()['pihole']['host'] = 'changed'

        assert DEFAULT_SETTINGS['pihole']['host'] == ''

    def test_corrupt_file(self, settings_store, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text('{broken')

        assert settings_store.load() == DEFAULT_SETTINGS

    def test_save_and_load(self, settings_store, ssh_settings, tmp_path):
        saved = settings_store.save(ssh_settings)

        assert 'createdAt' in saved
        assert saved['updatedAt'].endswith('Z')
        assert settings_store.load() == saved
        assert json.loads((tmp_path / CONFIG_FILENAME).read_text())['pihole']['host'] == '192.168.1.2'
        assert 'createdAt' not in ssh_settings

    def test_save_rejects_invalid(self, settings_store):
        with pytest.raises(SettingsValidationError):
            settings_store.save({'pihole': {}})

        assert settings_store.exists() is False

    def test_save_keeps_created_at(self, settings_store, ssh_settings):
        first = settings_store.save(ssh_settings)
        second = settings_store.save(first)

        assert second['createdAt'] == first['createdAt']

    def test_update_requires_file(self, settings_store):
        with pytest.raises(FileNotFoundError):
            settings_store.update({'backup': {'maxBackups': 3}})

    def test_update_merges_top_level(self, settings_store, ssh_settings):
        """Test unrelated sections survive a partial update."""
        settings_store.save(ssh_settings)

        updated = settings_store.update({'backup': {'maxBackups': 3}})

        assert updated['backup'] == {'maxBackups': 3}
        assert updated['pihole']['host'] == '192.168.1.2'
        assert settings_store.load()['backup']['maxBackups'] == 3

    @pytest.mark.parametrize('partial,message', [
        ({'backup': {'maxBackups': 'abc'}}, 'maxBackups'),
        ({'pihole': {'host': ''}}, 'host'),
    ])
    def test_update_rejects_invalid_merge(self, settings_store, ssh_settings, partial, message):
        """Test an update producing invalid settings leaves the file untouched."""
        settings_store.save(ssh_settings)
        before = settings_store.path.read_text()

        with pytest.raises(SettingsValidationError, match=message):
            settings_store.update(partial)

        assert settings_store.path.read_text() == before

    def test_mtime(self, settings_store, ssh_settings):
        assert settings_store.mtime() is None

        settings_store.save(ssh_settings)

        assert settings_store.mtime() == settings_store.path.stat().st_mtime

    def test_update_keeps_redacted_secrets(self, settings_store, hybrid_settings):
        """Test '***' placeholders do not overwrite stored secrets."""
        settings_store.save(hybrid_settings)
        pihole = dict(settings_store.redacted()['pihole'], host='10.0.0.6')

        settings_store.update({'pihole': pihole})

        stored = settings_store.load()['pihole']
        assert stored['host'] == '10.0.0.6'
        assert stored['password'] == 'raspberry'
        assert stored['webPassword'] == 'secret'

    def test_redacted(self, settings_store, hybrid_settings):
        settings_store.save(hybrid_settings)

        pihole = settings_store.redacted()['pihole']

        assert pihole['password'] == '***'
        assert pihole['webPassword'] == '***'
        assert settings_store.load()['pihole']['password'] == 'raspberry'

    def test_status(self, settings_store, ssh_settings):
        assert settings_store.status() == {'configured': False, 'hasSSHKey': False}

        ssh_settings['sshKeyDeployed'] = True
        settings_store.save(ssh_settings)

        assert settings_store.status() == {'configured': True, 'hasSSHKey': True}
