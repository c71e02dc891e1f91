import os


def _data_dir():
    """Directory holding config, logs and backups by default.

    On Windows this is %ProgramData%\\httpBackup, elsewhere the working directory.
    """
    program_data = os.environ.get('ProgramData')
    if program_data:
        return os.path.join(program_data, 'httpBackup')
    return '.'


def default_config_path():
    return os.environ.get('HTTPBACKUP_CONFIG') or os.path.join(_data_dir(), 'config.json')


def default_backup_folder():
    if os.environ.get('ProgramData'):
        return os.path.join(_data_dir(), 'Backups')
    return 'Backups'


def default_log_dir():
    return os.environ.get('HTTPBACKUP_LOG_DIR') or os.path.join(_data_dir(), 'logs')


def max_parallel_from_env(default=5):
    """
    Resolve the download concurrency limit from HTTPBACKUP_MAX_PARALLEL.

    Non-positive or unparseable values are ignored.
    """
    value = os.environ.get('HTTPBACKUP_MAX_PARALLEL', '').strip()
    if not value:
        return default
    try:
        parsed = int(value)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


class Config:
    """Base configuration"""

    # Config file (JSON) edited by the web surface and re-read by the orchestrator
    CONFIG_PATH = default_config_path()

    # Logging
    LOG_DIR = default_log_dir()

    # Downloads (concurrency comes from HTTPBACKUP_MAX_PARALLEL, read per run)
    HTTP_TIMEOUT = 120
    USER_AGENT = 'httpbackup/1.0'

    # Event channel between web surface and orchestrator
    EVENT_QUEUE_SIZE = 8


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    DEBUG = False


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': ProductionConfig
}
