"""
Unit tests for run orchestration (rotabackup/backup/runner.py).

Tests the execution guard lifecycle, failure notifications and the
backup-then-rotate sequence.
"""

from dataclasses import replace
from datetime import datetime
from unittest.mock import patch

import pytest
from freezegun import freeze_time

from rotabackup.backup.compression import CompressionError
from rotabackup.backup.errors import (
    AlreadyRunning,
    ArchiveCreationFailed,
    ArchiveNotFound,
    LockUnavailable,
    SourceNotFound
)
from rotabackup.backup.runner import BackupRunner
from rotabackup.models import BackupMode, PipelineState
from rotabackup.notifications import EmailFileNotifier


class TestBackupRunner:
    """Test BackupRunner backup runs."""

    def test_runner_default_notifier(self, settings):
        runner = BackupRunner(settings)

        assert isinstance(runner.notifier, EmailFileNotifier)
        assert runner.notifier.email_file == settings.email_file

    def test_backup_releases_guard_on_success(self, settings, notifier, temp_files):
        result, rotation = BackupRunner(settings, notifier).backup(temp_files)

        assert result.state is PipelineState.SUCCEEDED
        assert rotation is not None
        assert not settings.lock_file.exists()

    def test_backup_releases_guard_on_failure(self, settings, notifier, tmp_path):
        with pytest.raises(SourceNotFound):
            BackupRunner(settings, notifier).backup(tmp_path / 'missing')

        assert not settings.lock_file.exists()

    def test_backup_failure_notifies_with_subject(self, settings, notifier, tmp_path):
        with pytest.raises(SourceNotFound):
            BackupRunner(settings, notifier).backup(tmp_path / 'missing')

        notifier.send.assert_called_once()
        subject, body = notifier.send.call_args[0]
        assert subject == SourceNotFound.subject
        assert 'Source folder not found' in body

    @patch('rotabackup.backup.executor.create_archive', side_effect=CompressionError("boom"))
    def test_backup_failure_skips_rotation(self, mock_create, settings, notifier, temp_files, make_archives):
        make_archives(datetime(2024, 3, 10, 2, 0), days=20)

        with pytest.raises(ArchiveCreationFailed):
            BackupRunner(settings, notifier).backup(temp_files)

        assert len(list(settings.destination.glob('backup-*.tar.gz'))) == 20

    def test_already_running(self, settings, notifier, temp_files):
        """Test a second run is refused and the holder's token survives."""
        settings.lock_file.write_text('4242\n')

        with pytest.raises(AlreadyRunning):
            BackupRunner(settings, notifier).backup(temp_files)

        assert settings.lock_file.read_text() == '4242\n'
        assert not settings.destination.exists()
        assert notifier.send.call_args[0][0] == AlreadyRunning.subject

    def test_missing_lock_directory_notifies(self, settings, notifier, temp_files, tmp_path):
        settings = replace(settings, lock_file=tmp_path / 'no-such-dir' / 'backup.lock')

        with pytest.raises(LockUnavailable):
            BackupRunner(settings, notifier).backup(temp_files)

        notifier.send.assert_called_once()
        assert notifier.send.call_args[0][0] == LockUnavailable.subject

    @patch('rotabackup.backup.runner.BackupExecutor.create', side_effect=KeyboardInterrupt())
    def test_interrupted_backup_notifies_and_releases(self, mock_create, settings, notifier, temp_files):
        with pytest.raises(KeyboardInterrupt):
            BackupRunner(settings, notifier).backup(temp_files)

        notifier.send.assert_called_once()
        assert notifier.send.call_args[0][0] == 'Backup Interrupted'
        assert not settings.lock_file.exists()

    @patch('rotabackup.backup.runner.BackupExecutor.create', side_effect=SystemExit(143))
    def test_terminated_backup_notifies(self, mock_create, settings, notifier, temp_files):
        with pytest.raises(SystemExit):
            BackupRunner(settings, notifier).backup(temp_files)

        assert notifier.send.call_args[0][0] == 'Backup Interrupted'
        assert not settings.lock_file.exists()

    @patch('rotabackup.backup.runner.BackupExecutor.create', side_effect=RuntimeError("unexpected"))
    def test_unexpected_error_notifies(self, mock_create, settings, notifier, temp_files):
        with pytest.raises(RuntimeError):
            BackupRunner(settings, notifier).backup(temp_files)

        subject, body = notifier.send.call_args[0]
        assert subject == 'Backup Failed'
        assert 'unexpected' in body
        assert not settings.lock_file.exists()

    def test_backup_rotates_after_success(self, settings, notifier, temp_files, make_archives):
        make_archives(datetime(2024, 3, 10, 2, 0), days=40)

        with freeze_time("2024-03-11 02:00:00"):
            result, rotation = BackupRunner(settings, notifier).backup(temp_files)

        assert result.archive_path.name == 'backup-2024-03-11-0200.tar.gz'
        assert result.archive_path.exists()
        assert len(rotation.kept) + len(rotation.deleted) == 41
        assert result.archive_path.name in {a.filename for a in rotation.kept}
        assert len(rotation.kept) <= 14

    def test_dry_run_skips_rotation(self, settings, notifier, temp_files, make_archives):
        make_archives(datetime(2024, 3, 10, 2, 0), days=40)

        result, rotation = BackupRunner(settings, notifier).backup(temp_files, BackupMode.DRY_RUN)

        assert result.is_dry_run
        assert rotation is None
        assert len(list(settings.destination.glob('backup-*.tar.gz'))) == 40


class TestRunnerCommands:
    """Test restore, rotate, verify and list runs."""

    def test_restore(self, settings, notifier, sample_archive, tmp_path):
        result = BackupRunner(settings, notifier).restore(sample_archive.name, tmp_path / 'out')

        assert result.checksum_verified
        assert not settings.lock_file.exists()

    def test_restore_missing_archive_notifies(self, settings, notifier, tmp_path):
        with pytest.raises(ArchiveNotFound):
            BackupRunner(settings, notifier).restore('backup-1999-01-01-0000', tmp_path / 'out')

        assert notifier.send.call_args[0][0] == 'Restore Failed'
        assert not settings.lock_file.exists()

    def test_rotate(self, settings, notifier, make_archives):
        make_archives(datetime(2024, 3, 10, 2, 0), days=40)

        rotation = BackupRunner(settings, notifier).rotate()

        assert len(rotation.kept) == 14
        assert len(rotation.deleted) == 26

    def test_verify(self, settings, notifier, sample_archive):
        size = BackupRunner(settings, notifier).verify('backup-2024-01-15-1200')

        assert size == sample_archive.stat().st_size
        subject, body = notifier.send.call_args[0]
        assert subject == 'Backup Verified'
        assert body.startswith('Backup verified successfully.')

    def test_verify_missing_archive(self, settings, notifier):
        with pytest.raises(ArchiveNotFound):
            BackupRunner(settings, notifier).verify('backup-1999-01-01-0000')

    def test_list_archives_newest_first(self, settings, notifier, make_archives):
        make_archives(datetime(2024, 3, 10, 2, 0), days=3)
        (settings.destination / 'backup-manual.tar.gz').write_bytes(b'x')

        archives, unrecognized = BackupRunner(settings, notifier).list_archives()

        assert [a['name'] for a in archives] == [
            'backup-2024-03-10-0200.tar.gz',
            'backup-2024-03-09-0200.tar.gz',
            'backup-2024-03-08-0200.tar.gz',
        ]
        assert unrecognized == ['backup-manual.tar.gz']

    def test_list_archives_empty(self, settings, notifier):
        assert BackupRunner(settings, notifier).list_archives() == ([], [])
