"""
Unit tests for local archive storage (httpbackup/backup/storage.py).

Tests naming, site directories and the temp-file-then-rename write.
"""

import os
from datetime import datetime

import pytest
from freezegun import freeze_time

from httpbackup.backup.storage import (
    LocalStorage,
    StorageError,
    generate_archive_filename,
    is_archive_for
)


class TestArchiveNaming:
    """Test archive filename helpers."""

    def test_generate_archive_filename_format(self):
        when = datetime(2024, 3, 7, 14, 5, 9)

        assert generate_archive_filename('shop', when) == 'backup_shop_07-03-2024_14-05-09.zip'

    @freeze_time("2024-12-31 23:59:58")
    def test_generate_archive_filename_uses_now(self):
        assert generate_archive_filename('a') == 'backup_a_31-12-2024_23-59-58.zip'

    def test_is_archive_for(self):
        assert is_archive_for('backup_a_01-01-2024_00-00-00.zip', 'a')
        assert not is_archive_for('backup_a_01-01-2024_00-00-00.zip.tmp', 'a')
        assert not is_archive_for('backup_ab_01-01-2024_00-00-00.zip', 'a')
        assert not is_archive_for('a_01-01-2024.zip', 'a')


class TestLocalStorage:
    """Test LocalStorage."""

    def test_ensure_site_dir_creates_nested(self, tmp_path):
        storage = LocalStorage(str(tmp_path / 'deep' / 'Backups'))

        path = storage.ensure_site_dir('site one')

        assert path.is_dir()
        assert path == tmp_path / 'deep' / 'Backups' / 'site one'

    @pytest.mark.parametrize('name', ['..', 'a/b', 'a\\b', ''])
    def test_site_dir_rejects_path_like_names(self, tmp_path, name):
        storage = LocalStorage(str(tmp_path))

        with pytest.raises(StorageError, match="not usable"):
            storage.site_dir(name)

    def test_ensure_site_dir_failure(self, tmp_path):
        blocker = tmp_path / 'Backups'
        blocker.write_text('not a directory')
        storage = LocalStorage(str(blocker))

        with pytest.raises(StorageError):
            storage.ensure_site_dir('a')

    def test_write_atomic_success(self, tmp_path):
        storage = LocalStorage(str(tmp_path))
        final = tmp_path / 'backup_a_01-01-2024_00-00-00.zip'

        written = storage.write_atomic(final, [b'abc', b'', b'defg'])

        assert written == 7
        assert final.read_bytes() == b'abcdefg'
        assert os.listdir(tmp_path) == [final.name]

    def test_write_atomic_source_failure_leaves_nothing(self, tmp_path):
        storage = LocalStorage(str(tmp_path))
        final = tmp_path / 'backup_a_01-01-2024_00-00-00.zip'

        def broken_body():
            yield b'partial'
            raise ConnectionError("reset by peer")

        with pytest.raises(ConnectionError):
            storage.write_atomic(final, broken_body())

        assert os.listdir(tmp_path) == []

    def test_write_atomic_cancellation_leaves_nothing(self, tmp_path):
        storage = LocalStorage(str(tmp_path))
        final = tmp_path / 'backup_a_01-01-2024_00-00-00.zip'
        calls = []

        def check():
            calls.append(1)
            if len(calls) > 1:
                raise KeyboardInterrupt()

        with pytest.raises(KeyboardInterrupt):
            storage.write_atomic(final, [b'one', b'two'], cancellation_check=check)

        assert os.listdir(tmp_path) == []

    def test_write_atomic_missing_directory(self, tmp_path):
        storage = LocalStorage(str(tmp_path))

        with pytest.raises(StorageError, match="Failed to create"):
            storage.write_atomic(tmp_path / 'missing' / 'x.zip', [b'a'])

    def test_write_atomic_keeps_existing_final_on_failure(self, tmp_path):
        storage = LocalStorage(str(tmp_path))
        final = tmp_path / 'backup_a_01-01-2024_00-00-00.zip'
        final.write_bytes(b'old')

        def broken_body():
            yield b'new'
            raise IOError("disk gone")

        with pytest.raises(IOError):
            storage.write_atomic(final, broken_body())

        assert final.read_bytes() == b'old'
        assert os.listdir(tmp_path) == [final.name]

    def test_list_archives_newest_first(self, tmp_path):
        storage = LocalStorage(str(tmp_path))
        site_dir = storage.ensure_site_dir('a')
        for i, name in enumerate(['backup_a_1.zip', 'backup_a_2.zip']):
            path = site_dir / name
            path.write_bytes(b'x' * (i + 1))
            os.utime(path, (1_700_000_000 + i, 1_700_000_000 + i))
        (site_dir / 'backup_a_3.zip.tmp').write_bytes(b'partial')
        (site_dir / 'notes.txt').write_text('hi')

        archives = storage.list_archives('a')

        assert [a['name'] for a in archives] == ['backup_a_2.zip', 'backup_a_1.zip']
        assert archives[0]['size'] == 2

    def test_list_archives_missing_site(self, tmp_path):
        assert LocalStorage(str(tmp_path)).list_archives('nobody') == []
