"""
Shared pytest fixtures for httpbackup tests.

This module provides fixtures for:
- Config files in a temporary directory
- Flask app and test client
- Fake HTTP responses and sessions (no network)
- Mocked APScheduler
"""

import json
from unittest.mock import MagicMock

import pytest

from httpbackup import create_app
from httpbackup.events import EventChannel
from httpbackup.settings import Config, Site


def make_response(status_code=200, chunks=(b'PK\x03\x04archive-bytes',)):
    """
    Build a fake streamed requests.Response.

    iter_content() yields the given chunks; an Exception instance in chunks is
    raised when reached (simulates a connection dropped mid-body).
    """
    response = MagicMock()
    response.status_code = status_code

    def iter_content(chunk_size=None):
        for chunk in chunks:
            if isinstance(chunk, Exception):
                raise chunk
            yield chunk

    response.iter_content.side_effect = iter_content
    return response


@pytest.fixture
def backup_folder(tmp_path):
    folder = tmp_path / 'Backups'
    folder.mkdir()
    return folder


@pytest.fixture
def sample_config(backup_folder):
    """
    Config with one enabled and one disabled site.
    """
    return Config(
        web_listen_addr='127.0.0.1:8123',
        interval_minutes=5,
        backup_folder=str(backup_folder),
        retention=2,
        sites=[
            Site(enabled=True, name='a', url='http://x/backup.zip'),
            Site(enabled=False, name='b', url='http://y/backup.zip'),
        ]
    )


@pytest.fixture
def config_path(tmp_path, sample_config):
    """Path of a config.json holding sample_config."""
    path = tmp_path / 'config.json'
    path.write_text(json.dumps(sample_config.to_dict(), indent=2) + '\n', encoding='utf-8')
    return path


@pytest.fixture
def write_config(config_path):
    """Overwrite the config file with a raw dict."""
    def _write(data):
        config_path.write_text(json.dumps(data, indent=2) + '\n', encoding='utf-8')
        return config_path
    return _write


@pytest.fixture
def mock_session():
    """
    Mock requests.Session whose get() returns a 200 response by default.

    Set mock_session.responses = {url: response} to vary per URL.
    """
    session = MagicMock()
    session.responses = {}

    def get(url, **kwargs):
        if url in session.responses:
            return session.responses[url]
        return make_response()

    session.get.side_effect = get
    return session


@pytest.fixture
def mock_scheduler():
    """
    Mock APScheduler for testing orchestrator timer handling.
    """
    scheduler_instance = MagicMock()
    scheduler_instance.running = False
    scheduler_instance.get_job.return_value = None
    return scheduler_instance


@pytest.fixture
def events():
    return EventChannel(maxsize=8)


@pytest.fixture(scope='function')
def app(config_path):
    """
    Create Flask app with test configuration.
    """
    app = create_app('testing', config_overrides={'CONFIG_PATH': str(config_path)})
    yield app


@pytest.fixture(scope='function')
def client(app):
    """Flask test client for making HTTP requests."""
    return app.test_client()
