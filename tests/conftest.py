"""
Shared pytest fixtures for rotabackup tests.

This module provides fixtures for:
- Flask app and CLI runner with a test configuration
- BackupSettings pointing at temporary directories
- Notifier mocks
- Source trees and archive files
"""

import tarfile
from datetime import datetime, timedelta
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from rotabackup import create_app
from rotabackup.backup.checksum import write_checksum_file
from rotabackup.backup.compression import generate_archive_filename
from rotabackup.config import BackupSettings


@pytest.fixture
def backup_paths(tmp_path):
    """Paths used by a test run (nothing is created except the base dir)."""
    return {
        'destination': tmp_path / 'backups',
        'snapshot_file': tmp_path / 'state' / 'backup.snar',
        'lock_file': tmp_path / 'backup.lock',
        'email_file': tmp_path / 'email.txt',
        'log_file': tmp_path / 'logs' / 'backup.log',
    }


@pytest.fixture
def settings(backup_paths):
    """BackupSettings with default retention and no free space requirement."""
    return BackupSettings(
        destination=backup_paths['destination'],
        snapshot_file=backup_paths['snapshot_file'],
        lock_file=backup_paths['lock_file'],
        email_file=backup_paths['email_file'],
        exclude_patterns=('*.pyc', '__pycache__', '.git'),
        daily_keep=7,
        weekly_keep=4,
        monthly_keep=3,
        min_space_mb=0,
        email_recipient='ops@example.com'
    )


@pytest.fixture
def app(backup_paths):
    """
    Create Flask app with test configuration.

    No backup.config file is read; all paths live under tmp_path.
    """
    app = create_app('testing', overrides={
        'BACKUP_DESTINATION': str(backup_paths['destination']),
        'SNAPSHOT_FILE': str(backup_paths['snapshot_file']),
        'LOCK_FILE': str(backup_paths['lock_file']),
        'EMAIL_FILE': str(backup_paths['email_file']),
        'LOG_FILE': str(backup_paths['log_file']),
        'EXCLUDE_PATTERNS': '*.pyc, __pycache__, .git',
        'MIN_SPACE_MB': 0,
        'EMAIL_RECIPIENT': 'ops@example.com',
    })
    yield app


@pytest.fixture
def runner(app):
    """Flask CLI test runner."""
    return app.test_cli_runner()


@pytest.fixture
def notifier():
    """Notifier mock recording send(subject, body) calls."""
    return MagicMock()


@pytest.fixture
def temp_files(tmp_path):
    """
    Create a source tree to back up.

    Creates:
    - source/test_file1.txt
    - source/test_file2.log
    - source/nested/test_file3.txt
    - source/test_file.pyc (excluded)
    - source/__pycache__/cached.bin (excluded)
    - source/.git/HEAD (excluded)
    """
    source = tmp_path / 'source'
    source.mkdir()

    (source / 'test_file1.txt').write_text('Test content 1')
    (source / 'test_file2.log').write_text('Test log content')

    nested_dir = source / 'nested'
    nested_dir.mkdir()
    (nested_dir / 'test_file3.txt').write_text('Nested test content')

    # Files that should be excluded
    (source / 'test_file.pyc').write_bytes(b'compiled python')
    (source / '__pycache__').mkdir()
    (source / '__pycache__' / 'cached.bin').write_bytes(b'cache')
    (source / '.git').mkdir()
    (source / '.git' / 'HEAD').write_text('ref: refs/heads/main')

    return source


@pytest.fixture
def sample_archive(tmp_path):
    """
    Create a sample archive with a valid checksum sidecar in the destination.
    """
    test_dir = tmp_path / 'test_data'
    test_dir.mkdir()
    (test_dir / 'file1.txt').write_text('Content 1')
    (test_dir / 'file2.txt').write_text('Content 2')

    destination = tmp_path / 'backups'
    destination.mkdir(exist_ok=True)

    archive_path = destination / generate_archive_filename(datetime(2024, 1, 15, 12, 0))
    with tarfile.open(archive_path, 'w:gz') as tar:
        tar.add(test_dir, arcname='test_data')

    write_checksum_file(archive_path)
    return archive_path


@pytest.fixture
def make_archives(tmp_path):
    """
    Factory creating placeholder archives (with sidecars) in the destination.

    Usage: make_archives(datetime(2024, 3, 1, 2, 0), days=40)
    """
    destination = tmp_path / 'backups'

    def _make(newest: datetime, days: int = 1, step: timedelta = timedelta(days=1), checksum: bool = True):
        destination.mkdir(exist_ok=True)
        paths = []
        for i in range(days):
            path = destination / generate_archive_filename(newest - step * i)
            path.write_bytes(b'archive')
            if checksum:
                write_checksum_file(path)
            paths.append(path)
        return paths

    return _make


@pytest.fixture
def tree_contents():
    """Function mapping every file under a root to its bytes, keyed by relative path."""
    def _contents(root: Path) -> dict:
        return {
            p.relative_to(root).as_posix(): p.read_bytes()
            for p in sorted(root.rglob('*'))
            if p.is_file()
        }

    return _contents
