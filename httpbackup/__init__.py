import os
import logging
from logging.handlers import RotatingFileHandler
from flask import Flask


__version__ = '1.0.0'


def configure_logging(app):
    """Configure application logging"""

    # Create logs directory if it doesn't exist
    log_dir = app.config['LOG_DIR']
    os.makedirs(log_dir, exist_ok=True)

    # Set log level based on environment
    log_level = logging.DEBUG if app.config.get('DEBUG', False) else logging.INFO

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )
    console_handler.setFormatter(console_formatter)

    # File handler
    file_handler = RotatingFileHandler(
        os.path.join(log_dir, 'httpbackup.log'),
        maxBytes=10485760,  # 10MB
        backupCount=10
    )
    file_handler.setLevel(log_level)
    file_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
    )
    file_handler.setFormatter(file_formatter)

    # Configure root logger
    logging.basicConfig(level=log_level, handlers=[console_handler, file_handler])

    # Configure Flask app logger
    app.logger.setLevel(log_level)
    app.logger.addHandler(console_handler)
    app.logger.addHandler(file_handler)

    app.logger.info(f"Logging configured (level: {logging.getLevelName(log_level)})")


def create_app(config_name=None, orchestrator=None, config_overrides=None):
    """
    Flask application factory for the web surface.

    Args:
        config_name: Key into httpbackup.config.config (default: FLASK_ENV or production)
        orchestrator: Running Orchestrator to report status from and publish events to;
            when omitted the app gets its own event channel (useful for tests)
        config_overrides: Dict applied on top of the config class
    """
    app = Flask(__name__)

    # Load configuration
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'production')

    from httpbackup.config import config
    app.config.from_object(config.get(config_name, config['default']))
    if config_overrides:
        app.config.update(config_overrides)

    # Keep the config file's key order in API responses
    app.json.sort_keys = False

    # Tests configure log capture through pytest instead
    if not app.config.get('TESTING', False):
        configure_logging(app)

    from httpbackup.events import EventChannel
    events = orchestrator.events if orchestrator is not None else EventChannel(app.config['EVENT_QUEUE_SIZE'])
    app.extensions['httpbackup.events'] = events
    app.extensions['httpbackup.orchestrator'] = orchestrator

    from httpbackup.routes import dashboard_routes, settings_routes
    app.register_blueprint(dashboard_routes.bp)
    app.register_blueprint(settings_routes.bp)

    # Health check endpoint
    @app.route('/health')
    def health():
        return {'status': 'healthy'}, 200

    return app
