"""
Download runner - executes one backup pass over a config snapshot.

Workflow per enabled site:
1. Validate name and URL
2. Ensure the site's backup directory exists
3. Stream the archive over HTTP into "<final>.tmp"
4. Flush, then rename the temp file to its final name
5. Apply the retention policy for the site (best-effort)

Sites are downloaded concurrently. A counting gate bounds how many downloads
are in flight at once, and one site's failure never affects another.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Optional

import requests

from httpbackup.settings import Config, Site
from .retention import cleanup_site
from .storage import LocalStorage, StorageError


logger = logging.getLogger(__name__)

DEFAULT_MAX_PARALLEL = 5
DEFAULT_TIMEOUT = 120
DEFAULT_USER_AGENT = 'httpbackup/1.0'
CHUNK_SIZE = 64 * 1024
SNIPPET_LIMIT = 512


class SiteValidationError(Exception):
    """Raised when a site has an empty name or URL."""
    pass


class NetworkError(Exception):
    """Raised when the HTTP request fails or returns a non-2xx status."""

    def __init__(self, message: str, status_code: Optional[int] = None, snippet: str = ''):
        super().__init__(message)
        self.status_code = status_code
        self.snippet = snippet


class BackupCancelled(Exception):
    """Raised at a checkpoint when the run's cancellation token is set."""
    pass


@dataclass
class SiteResult:
    """Outcome of one site's download."""
    site_name: str
    success: bool = False
    path: Optional[str] = None
    bytes_written: int = 0
    error: Optional[str] = None
    cancelled: bool = False


class Runner:
    """
    Runs backups for all enabled sites in a config snapshot.
    """

    def __init__(
        self,
        max_parallel: int = DEFAULT_MAX_PARALLEL,
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT,
        user_agent: str = DEFAULT_USER_AGENT
    ):
        """
        Args:
            max_parallel: Maximum concurrent downloads (<= 0 means default)
            session: requests session to use (default: a new one)
            timeout: Total time allowed per download in seconds
            user_agent: User-Agent header sent with every request
        """
        if max_parallel is None or max_parallel <= 0:
            max_parallel = DEFAULT_MAX_PARALLEL

        self.max_parallel = max_parallel
        self.timeout = timeout
        self.user_agent = user_agent
        self.session = session or requests.Session()
        self._gate = threading.BoundedSemaphore(max_parallel)

    def run_all(self, snapshot: Config, cancel_event: Optional[threading.Event] = None) -> List[SiteResult]:
        """
        Download every enabled site in the snapshot.

        Args:
            snapshot: Config snapshot taken when the run started
            cancel_event: Cancellation token; tasks that have not started yet
                exit without work once it is set

        Returns:
            List of SiteResult, one per enabled site, in config order
        """
        sites = snapshot.enabled_sites()
        if not sites:
            logger.info("Backup: no enabled sites")
            return []

        logger.info(f"Backup: starting run for {len(sites)} site(s) (max_parallel={self.max_parallel})")

        with ThreadPoolExecutor(max_workers=min(len(sites), self.max_parallel), thread_name_prefix='backup-site') as pool:
            futures = [
                pool.submit(self._run_gated, snapshot, site, cancel_event)
                for site in sites
            ]
            results = [f.result() for f in futures]

        succeeded = sum(1 for r in results if r.success)
        logger.info(f"Backup: run finished ({succeeded}/{len(results)} succeeded)")
        return results

    def _run_gated(self, snapshot: Config, site: Site, cancel_event: Optional[threading.Event]) -> SiteResult:
        """Acquire an admission slot, run one site, always release the slot."""
        if cancel_event is not None and cancel_event.is_set():
            logger.info(f"Backup: site={site.name} skipped (cancelled)")
            return SiteResult(site_name=site.name, cancelled=True, error="cancelled")

        self._gate.acquire()
        try:
            if cancel_event is not None and cancel_event.is_set():
                logger.info(f"Backup: site={site.name} skipped (cancelled)")
                return SiteResult(site_name=site.name, cancelled=True, error="cancelled")
            return self.run_one(snapshot, site, cancel_event)
        finally:
            self._gate.release()

    def run_one(self, snapshot: Config, site: Site, cancel_event: Optional[threading.Event] = None) -> SiteResult:
        """
        Download one site's archive and apply retention.

        Never raises for per-site problems; they are logged and reported in
        the returned SiteResult.
        """
        name = (site.name or '').strip()
        result = SiteResult(site_name=name or site.name)

        try:
            result.path, result.bytes_written = self._download(snapshot, site, cancel_event)
            result.success = True
        except BackupCancelled:
            result.cancelled = True
            result.error = "cancelled"
            logger.info(f"Backup: site={result.site_name} cancelled")
            return result
        except (NetworkError, SiteValidationError, StorageError) as e:
            result.error = str(e)
            logger.error(f"Backup: site={result.site_name} failed: {e}")
            return result
        except Exception as e:
            result.error = f"unexpected error: {e}"
            logger.exception(f"Backup: site={result.site_name} failed unexpectedly")
            return result

        logger.info(f"Backup: site={name} saved {result.path} ({result.bytes_written} bytes)")

        retention = cleanup_site(
            str(LocalStorage(snapshot.backup_folder).site_dir(name)),
            name,
            snapshot.retention
        )
        if not retention.ok:
            logger.warning(
                f"Retention: site={name} finished with {len(retention.errors)} error(s), "
                f"removed {len(retention.deleted)}"
            )

        return result

    def _download(self, snapshot: Config, site: Site, cancel_event: Optional[threading.Event]):
        """
        Perform the download for one site.

        Returns:
            Tuple of (final path, bytes written)

        Raises:
            SiteValidationError, NetworkError, StorageError, BackupCancelled
        """
        name = (site.name or '').strip()
        if not name:
            raise SiteValidationError("site name is empty")
        url = (site.url or '').strip()
        if not url:
            raise SiteValidationError("site url is empty")

        storage = LocalStorage(snapshot.backup_folder)
        storage.ensure_site_dir(name)
        final_path = storage.archive_path(name)

        started = time.monotonic()

        def checkpoint():
            if cancel_event is not None and cancel_event.is_set():
                raise BackupCancelled()
            # requests only bounds connect and each read, not the whole body
            if time.monotonic() - started > self.timeout:
                raise NetworkError(f"timeout: download exceeded {self.timeout}s")

        checkpoint()

        try:
            response = self.session.get(
                url,
                stream=True,
                timeout=self.timeout,
                headers={'User-Agent': self.user_agent}
            )
        except requests.RequestException as e:
            raise NetworkError(f"http get: {e}")

        try:
            if not 200 <= response.status_code < 300:
                snippet = _read_snippet(response)
                raise NetworkError(
                    f"http status {response.status_code}: {snippet}",
                    status_code=response.status_code,
                    snippet=snippet
                )

            try:
                written = storage.write_atomic(
                    final_path,
                    response.iter_content(chunk_size=CHUNK_SIZE),
                    cancellation_check=checkpoint
                )
            except requests.RequestException as e:
                raise NetworkError(f"read body: {e}")
        finally:
            response.close()

        return str(final_path), written


def _read_snippet(response) -> str:
    """Read at most SNIPPET_LIMIT bytes of an error body for diagnostics."""
    try:
        data = b''
        for chunk in response.iter_content(chunk_size=SNIPPET_LIMIT):
            data += chunk
            if len(data) >= SNIPPET_LIMIT:
                break
        return data[:SNIPPET_LIMIT].decode('utf-8', errors='replace').strip()
    except requests.RequestException:
        return ''
