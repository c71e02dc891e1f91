"""
Unit tests for the web surface (httpbackup/routes/).

Tests the JSON API over the config file and the event channel.
"""

import json
import os
from unittest.mock import MagicMock

from httpbackup import create_app
from httpbackup.events import EventChannel, EventType


def drain(events):
    out = []
    while True:
        event = events.get(timeout=0.01)
        if event is None:
            return out
        out.append(event.type)


class TestHealth:

    def test_health(self, client):
        response = client.get('/health')

        assert response.status_code == 200
        assert response.get_json() == {'status': 'healthy'}


class TestSettingsRoutes:
    """Test /api/settings."""

    def test_get_settings(self, client, sample_config):
        response = client.get('/api/settings')

        assert response.status_code == 200
        assert response.get_json() == sample_config.to_dict()

    def test_get_settings_invalid_file(self, client, config_path):
        config_path.write_text('{oops', encoding='utf-8')

        response = client.get('/api/settings')

        assert response.status_code == 500
        assert 'parse' in response.get_json()['error']

    def test_update_settings_saves_and_notifies(self, app, client, config_path):
        payload = {
            'WebListenAddr': '127.0.0.1:8123',
            'IntervalMinutes': -2,
            'BackupFolder': ' /srv/backups ',
            'Retention': 3,
            'Sites': [
                {'Enabled': True, 'Name': 'shop', 'Url': 'http://shop/backup.zip'},
                {'Enabled': True, 'Name': 'SHOP', 'Url': 'http://dup/backup.zip'},
                {'Enabled': False, 'Name': '', 'Url': ''}
            ]
        }

        response = client.post('/api/settings', json=payload)

        assert response.status_code == 200
        body = response.get_json()
        assert body['notified'] is True
        assert body['config']['IntervalMinutes'] == 1
        assert body['config']['BackupFolder'] == '/srv/backups'
        assert [s['Name'] for s in body['config']['Sites']] == ['shop']

        saved = json.loads(config_path.read_text(encoding='utf-8'))
        assert saved == body['config']
        assert drain(app.extensions['httpbackup.events']) == [EventType.CONFIG_CHANGED]

    def test_partial_update_keeps_other_fields(self, client, config_path, sample_config):
        payload = {
            'IntervalMinutes': '15',
            'Sites': [{'Enabled': True, 'Name': 'c', 'Url': 'http://c/backup.zip'}]
        }

        response = client.post('/api/settings', json=payload)

        assert response.status_code == 200
        saved = json.loads(config_path.read_text(encoding='utf-8'))
        assert saved['IntervalMinutes'] == 15
        assert saved['Retention'] == 2
        assert saved['BackupFolder'] == sample_config.backup_folder
        assert [s['Name'] for s in saved['Sites']] == ['c']

    def test_unparseable_interval_keeps_current(self, client, config_path):
        response = client.post('/api/settings', json={'IntervalMinutes': 'soon'})

        assert response.status_code == 200
        assert response.get_json()['config']['IntervalMinutes'] == 5
        saved = json.loads(config_path.read_text(encoding='utf-8'))
        assert saved['IntervalMinutes'] == 5

    def test_malformed_site_rejected(self, client, config_path):
        before = config_path.read_text(encoding='utf-8')

        response = client.post('/api/settings', json={'Sites': ['not-an-object']})

        assert response.status_code == 400
        assert config_path.read_text(encoding='utf-8') == before

    def test_update_settings_rejects_non_object(self, client):
        response = client.post('/api/settings', data='[1, 2]', content_type='application/json')

        assert response.status_code == 400

    def test_update_settings_rejects_missing_body(self, client):
        response = client.post('/api/settings')

        assert response.status_code == 400

    def test_update_settings_full_channel(self, app, client, sample_config):
        events = app.extensions['httpbackup.events']
        while events.notify_config_changed():
            pass

        response = client.post('/api/settings', json=sample_config.to_dict())

        assert response.status_code == 200
        assert response.get_json()['notified'] is False


class TestDashboardRoutes:
    """Test /api/dashboard."""

    def test_run_now_queues_event(self, app, client):
        response = client.post('/api/dashboard/run')

        assert response.status_code == 202
        assert drain(app.extensions['httpbackup.events']) == [EventType.RUN_NOW]

    def test_run_now_when_channel_full(self, app, client):
        events = app.extensions['httpbackup.events']
        while events.request_run():
            pass

        response = client.post('/api/dashboard/run')

        assert response.status_code == 503

    def test_status_lists_sites(self, client, backup_folder):
        site_dir = backup_folder / 'a'
        site_dir.mkdir()
        for i, name in enumerate(['backup_a_01-01-2024_00-00-00.zip', 'backup_a_02-01-2024_00-00-00.zip']):
            path = site_dir / name
            path.write_bytes(b'x' * 10)
            os.utime(path, (1_700_000_000 + i, 1_700_000_000 + i))
        (site_dir / 'backup_a_03-01-2024_00-00-00.zip.tmp').write_bytes(b'partial')

        response = client.get('/api/dashboard/status')

        assert response.status_code == 200
        body = response.get_json()
        assert body['scheduler'] is None
        sites = {s['name']: s for s in body['sites']}
        assert sites['a']['archives'] == 2
        assert sites['a']['latest']['name'] == 'backup_a_02-01-2024_00-00-00.zip'
        assert sites['b']['archives'] == 0
        assert sites['b']['latest'] is None

    def test_status_includes_orchestrator(self, config_path):
        orchestrator = MagicMock()
        orchestrator.events = EventChannel()
        orchestrator.status.return_value = {'state': 'idle', 'interval_minutes': 5}
        app = create_app('testing', orchestrator=orchestrator, config_overrides={'CONFIG_PATH': str(config_path)})

        response = app.test_client().get('/api/dashboard/status')

        assert response.get_json()['scheduler'] == {'state': 'idle', 'interval_minutes': 5}
        assert app.extensions['httpbackup.events'] is orchestrator.events
