"""
Retention policy enforcement for site backups.

Keeps at most N archives per site, deleting the oldest first. Retention is
always best-effort: problems are collected into a RetentionResult and logged,
never raised to the caller, so a cleanup failure can't turn a successful
download into a failed one.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List

from .storage import LocalStorage, StorageError, is_archive_for


logger = logging.getLogger(__name__)


class RetentionError(Exception):
    """Describes a listing, stat or delete failure during cleanup."""
    pass


@dataclass
class RetentionResult:
    """Outcome of one cleanup_site() call."""
    site_name: str
    kept: int = 0
    deleted: List[str] = field(default_factory=list)
    errors: List[RetentionError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def cleanup_site(site_dir: str, site_name: str, keep: int) -> RetentionResult:
    """
    Keep at most `keep` backup archives in site_dir, removing the oldest.

    Only regular files named backup_<site_name>_*.zip are considered; anything
    else in the directory is never touched. keep <= 0 is a no-op.

    Args:
        site_dir: The site's backup directory
        site_name: Site name used in archive filenames
        keep: Number of newest archives to keep

    Returns:
        RetentionResult (never raises)
    """
    result = RetentionResult(site_name=site_name)

    if keep <= 0:
        return result

    try:
        entries = list(os.scandir(site_dir))
    except OSError as e:
        error = RetentionError(f"Failed to list {site_dir}: {e}")
        logger.error(str(error))
        result.errors.append(error)
        return result

    archives = []
    for entry in entries:
        if not is_archive_for(entry.name, site_name):
            continue
        try:
            if not entry.is_file(follow_symlinks=False):
                continue
            mtime = entry.stat(follow_symlinks=False).st_mtime
        except OSError as e:
            error = RetentionError(f"Failed to stat {entry.name}: {e}")
            logger.warning(str(error))
            result.errors.append(error)
            continue
        archives.append((mtime, entry.name, entry.path))

    if len(archives) <= keep:
        result.kept = len(archives)
        return result

    # Oldest first; sort is stable so equal mtimes keep listing order
    archives.sort(key=lambda a: a[0])
    to_delete = archives[:len(archives) - keep]
    result.kept = keep

    for _, name, path in to_delete:
        try:
            os.remove(path)
            result.deleted.append(name)
            logger.info(f"Retention: removed old backup {name}")
        except OSError as e:
            error = RetentionError(f"Failed to remove {path}: {e}")
            logger.warning(str(error))
            result.errors.append(error)

    return result


def enforce_retention(config) -> Dict[str, Any]:
    """
    Apply the retention policy to every configured site with a backup directory.

    Args:
        config: settings.Config

    Returns:
        Summary dict:
        {
            'sites_processed': int,
            'deleted': int,
            'errors': List[str]
        }
    """
    storage = LocalStorage(config.backup_folder)
    summary = {
        'sites_processed': 0,
        'deleted': 0,
        'errors': []
    }

    for site in config.sites:
        if not site.name:
            continue
        try:
            site_dir = storage.site_dir(site.name)
        except StorageError as e:
            summary['errors'].append(str(e))
            continue
        if not site_dir.is_dir():
            continue

        result = cleanup_site(str(site_dir), site.name, config.retention)
        summary['sites_processed'] += 1
        summary['deleted'] += len(result.deleted)
        summary['errors'].extend(str(e) for e in result.errors)

    logger.info(
        f"Retention enforcement complete. "
        f"Sites: {summary['sites_processed']}, "
        f"Deleted: {summary['deleted']}, "
        f"Errors: {len(summary['errors'])}"
    )
    return summary
