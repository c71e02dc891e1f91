"""
Local storage for downloaded backup archives.

Layout:
    {backup_folder}/{site_name}/backup_{site_name}_{DD-MM-YYYY_HH-mm-ss}.zip

Archives are written to "<final path>.tmp" and renamed into place only after
the body has been fully written and flushed, so a directory listing never
shows a truncated archive under its final name.
"""

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, List, Optional


logger = logging.getLogger(__name__)

ARCHIVE_PREFIX = 'backup_'
ARCHIVE_SUFFIX = '.zip'
TEMP_SUFFIX = '.tmp'
TIMESTAMP_FORMAT = '%d-%m-%Y_%H-%M-%S'


class StorageError(Exception):
    """Raised when a storage operation fails."""
    pass


def archive_prefix(site_name: str) -> str:
    return f"{ARCHIVE_PREFIX}{site_name}_"


def generate_archive_filename(site_name: str, when: Optional[datetime] = None) -> str:
    """
    Generate the archive filename for a site.

    Format: backup_{site_name}_{DD-MM-YYYY_HH-mm-ss}.zip

    Args:
        site_name: Name of the site
        when: Timestamp to use (default: now, local time)

    Returns:
        Filename (without path)
    """
    timestamp = (when or datetime.now()).strftime(TIMESTAMP_FORMAT)
    return f"{archive_prefix(site_name)}{timestamp}{ARCHIVE_SUFFIX}"


def is_archive_for(filename: str, site_name: str) -> bool:
    """Strict match on our own naming convention."""
    return filename.startswith(archive_prefix(site_name)) and filename.endswith(ARCHIVE_SUFFIX)


class LocalStorage:
    """
    Handler for the per-site backup directories under the backup folder.

    Each site owns its own subdirectory; nothing here is shared between sites,
    so concurrent downloads for different sites need no locking.
    """

    def __init__(self, base_path: str):
        """
        Args:
            base_path: Backup folder from the config
        """
        self.base_path = Path(base_path)

    def site_dir(self, site_name: str) -> Path:
        if not site_name or site_name in ('.', '..') or '/' in site_name or '\\' in site_name:
            raise StorageError(f"Site name is not usable as a directory name: {site_name!r}")
        return self.base_path / site_name

    def ensure_site_dir(self, site_name: str) -> Path:
        """
        Create the site's backup directory (and parents) if needed.

        Raises:
            StorageError: If the directory cannot be created
        """
        path = self.site_dir(site_name)
        try:
            path.mkdir(parents=True, exist_ok=True)
        except PermissionError as e:
            raise StorageError(f"Permission denied creating {path}: {e}")
        except OSError as e:
            raise StorageError(f"Failed to create {path}: {e}")
        return path

    def archive_path(self, site_name: str, when: Optional[datetime] = None) -> Path:
        return self.site_dir(site_name) / generate_archive_filename(site_name, when)

    def write_atomic(
        self,
        final_path: Path,
        chunks: Iterable[bytes],
        cancellation_check: Optional[Callable[[], None]] = None
    ) -> int:
        """
        Stream chunks to a temp file beside final_path, then rename into place.

        Args:
            final_path: Destination archive path
            chunks: Iterable of byte chunks (e.g. a streamed HTTP body)
            cancellation_check: Optional function called before each chunk;
                it raises to abort the write

        Returns:
            Number of bytes written

        Raises:
            StorageError: If writing, flushing or renaming fails. Any exception
                raised by chunks or cancellation_check is propagated unchanged.
                In every failure case the temp file is removed and final_path
                is left untouched.
        """
        final_path = Path(final_path)
        tmp_path = final_path.with_name(final_path.name + TEMP_SUFFIX)
        written = 0

        try:
            tmp_file = open(tmp_path, 'wb')
        except OSError as e:
            raise StorageError(f"Failed to create {tmp_path}: {e}")

        try:
            with tmp_file as f:
                for chunk in chunks:
                    if cancellation_check:
                        cancellation_check()
                    if not chunk:
                        continue
                    try:
                        f.write(chunk)
                    except OSError as e:
                        raise StorageError(f"Failed to write {tmp_path}: {e}")
                    written += len(chunk)

                try:
                    f.flush()
                    os.fsync(f.fileno())
                except OSError as e:
                    raise StorageError(f"Failed to flush {tmp_path}: {e}")

            try:
                os.replace(tmp_path, final_path)
            except OSError as e:
                raise StorageError(f"Failed to rename {tmp_path} to {final_path.name}: {e}")

        except BaseException:
            self._discard(tmp_path)
            raise

        return written

    def list_archives(self, site_name: str) -> List[dict]:
        """
        List finished archives for a site, newest first.

        Returns:
            List of dicts with 'name', 'path', 'modified' and 'size' keys
        """
        path = self.site_dir(site_name)
        if not path.is_dir():
            return []

        archives = []
        try:
            for entry in os.scandir(path):
                if not entry.is_file(follow_symlinks=False) or not is_archive_for(entry.name, site_name):
                    continue
                stat = entry.stat(follow_symlinks=False)
                archives.append({
                    'name': entry.name,
                    'path': entry.path,
                    'modified': datetime.fromtimestamp(stat.st_mtime),
                    'size': stat.st_size
                })
        except OSError as e:
            raise StorageError(f"Failed to list {path}: {e}")

        archives.sort(key=lambda a: a['modified'], reverse=True)
        return archives

    @staticmethod
    def _discard(tmp_path: Path):
        try:
            if tmp_path.exists():
                tmp_path.unlink()
        except OSError as e:
            logger.warning(f"Failed to remove temp file {tmp_path}: {e}")
