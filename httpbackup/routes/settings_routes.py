"""
Settings routes - read and update the backup config file.
"""

import logging
from flask import Blueprint, jsonify, request, current_app

from httpbackup.settings import ConfigError, load_or_create, save


bp = Blueprint('settings', __name__, url_prefix='/api/settings')
logger = logging.getLogger(__name__)


@bp.route('', methods=['GET'])
def get_settings():
    """
    Get the current (normalized) config.

    Returns:
        JSON with the config file fields
    """
    try:
        cfg = load_or_create(current_app.config['CONFIG_PATH'])
    except ConfigError as e:
        logger.error(f"Failed to load config: {e}")
        return jsonify({'error': str(e)}), 500

    return jsonify(cfg.to_dict())


@bp.route('', methods=['POST'])
def update_settings():
    """
    Update the config.

    Request body: any subset of the config document (WebListenAddr,
    IntervalMinutes, BackupFolder, Retention, Sites). Fields left out, or
    values that can't be used, keep their current setting; numeric strings
    are accepted for IntervalMinutes and Retention. WebListenAddr changes
    apply after a restart.

    Returns:
        JSON with the saved config and whether the orchestrator was notified
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({'error': 'Request body must be a JSON object'}), 400

    config_path = current_app.config['CONFIG_PATH']
    try:
        current = load_or_create(config_path)
    except ConfigError as e:
        logger.error(f"Failed to load config: {e}")
        return jsonify({'error': str(e)}), 500

    try:
        cfg = current.merged_with(data)
    except ConfigError as e:
        return jsonify({'error': str(e)}), 400

    try:
        save(config_path, cfg)
    except ConfigError as e:
        logger.error(f"Failed to save config: {e}")
        return jsonify({'error': str(e)}), 500

    notified = current_app.extensions['httpbackup.events'].notify_config_changed()
    logger.info(f"Config saved ({len(cfg.sites)} site(s), interval={cfg.interval_minutes} min)")

    return jsonify({
        'message': 'Settings saved',
        'notified': notified,
        'config': cfg.to_dict()
    })
