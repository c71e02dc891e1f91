"""
Dashboard routes - scheduler status and manual runs.
"""

import logging
from flask import Blueprint, jsonify, current_app

from httpbackup.backup.storage import LocalStorage, StorageError
from httpbackup.settings import ConfigError, load_or_create


bp = Blueprint('dashboard', __name__, url_prefix='/api/dashboard')
logger = logging.getLogger(__name__)


@bp.route('/status', methods=['GET'])
def get_status():
    """
    Get scheduler status and per-site archive overview.

    Returns:
        JSON with:
        - scheduler: orchestrator status (None when running without one)
        - sites: list of {name, enabled, archives, latest}
    """
    orchestrator = current_app.extensions.get('httpbackup.orchestrator')
    scheduler_status = orchestrator.status() if orchestrator is not None else None

    try:
        cfg = load_or_create(current_app.config['CONFIG_PATH'])
    except ConfigError as e:
        logger.error(f"Failed to load config: {e}")
        return jsonify({'scheduler': scheduler_status, 'error': str(e)}), 500

    storage = LocalStorage(cfg.backup_folder)
    sites = []
    for site in cfg.sites:
        info = {
            'name': site.name,
            'enabled': site.enabled,
            'archives': 0,
            'latest': None
        }
        try:
            archives = storage.list_archives(site.name)
        except StorageError as e:
            info['error'] = str(e)
            archives = []
        if archives:
            info['archives'] = len(archives)
            info['latest'] = {
                'name': archives[0]['name'],
                'modified': archives[0]['modified'].isoformat(),
                'size_mb': round(archives[0]['size'] / 1024 / 1024, 2)
            }
        sites.append(info)

    return jsonify({
        'scheduler': scheduler_status,
        'backup_folder': cfg.backup_folder,
        'sites': sites
    })


@bp.route('/run', methods=['POST'])
def run_now():
    """
    Request an immediate backup run.

    Returns:
        202 if the request was queued, 503 if the event channel was full
    """
    if current_app.extensions['httpbackup.events'].request_run():
        return jsonify({'message': 'Backup run requested'}), 202
    return jsonify({'error': 'Orchestrator busy, try again shortly'}), 503
