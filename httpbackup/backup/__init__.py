"""
Backup module for httpbackup.

This module handles the core backup functionality:
- Concurrent HTTP downloads with a bounded admission gate
- Atomic (temp file + rename) storage of archives
- Per-site retention by archive count
"""

from .runner import Runner, SiteResult, SiteValidationError, NetworkError
from .storage import LocalStorage, StorageError
from .retention import cleanup_site, enforce_retention, RetentionResult, RetentionError

__all__ = [
    'Runner',
    'SiteResult',
    'SiteValidationError',
    'NetworkError',
    'LocalStorage',
    'StorageError',
    'cleanup_site',
    'enforce_retention',
    'RetentionResult',
    'RetentionError'
]
