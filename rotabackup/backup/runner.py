"""
Run orchestration.

Every command runs under the execution guard. Failures are logged, reported
through the notifier once, and re-raised; the guard is released on every exit
path including interruption.
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, List, Optional, Tuple

from rotabackup.models import BackupMode, BackupResult, RestoreResult, RotationResult
from rotabackup.notifications import EmailFileNotifier
from .errors import ArchiveNotFound, BackupError, DestinationUnwritable
from .executor import BackupExecutor
from .lock import ExecutionGuard
from .restore import RestoreExecutor
from .retention import RetentionManager
from .storage import LocalStorage, StorageError


logger = logging.getLogger(__name__)

INTERRUPTED_SUBJECT = 'Backup Interrupted'
VERIFIED_SUBJECT = 'Backup Verified'


class BackupRunner:
    """
    Entry point for backup, restore, rotation and listing runs.
    """

    def __init__(self, settings, notifier=None):
        """
        Args:
            settings: BackupSettings for this run
            notifier: Object with send(subject, body) (default: EmailFileNotifier
                writing to settings.email_file)
        """
        self.settings = settings
        self.notifier = notifier or EmailFileNotifier(settings.email_file, settings.email_recipient)
        self.storage = LocalStorage(settings.destination)
        self.guard = ExecutionGuard(settings.lock_file)

    def backup(self, source_dir, mode: BackupMode = BackupMode.FULL) -> Tuple[BackupResult, Optional[RotationResult]]:
        """
        Create an archive and, unless this is a dry run, rotate old ones.

        Returns:
            Tuple of (BackupResult, RotationResult or None for dry runs)
        """
        with self._guarded(f"{mode.value} backup of {source_dir}"):
            executor = BackupExecutor(self.settings, self.notifier, storage=self.storage)
            result = executor.create(source_dir, mode)

            if result.is_dry_run:
                return result, None

            return result, self._rotate()

    def restore(self, archive_ref: str, target_dir) -> RestoreResult:
        """Restore an archive. Restore is terminal: no rotation follows."""
        with self._guarded(f"restore of {archive_ref}"):
            executor = RestoreExecutor(self.settings, self.notifier, storage=self.storage)
            return executor.restore(archive_ref, target_dir)

    def rotate(self) -> RotationResult:
        """Run rotation on its own."""
        with self._guarded("cleanup"):
            return self._rotate()

    def verify(self, archive_ref: str) -> int:
        """
        Re-verify an existing archive without modifying it.

        Returns:
            Archive size in bytes
        """
        with self._guarded(f"verification of {archive_ref}"):
            archive_path = self.storage.resolve(archive_ref)
            if archive_path is None:
                raise ArchiveNotFound(f"Backup file not found: {archive_ref}")
            executor = BackupExecutor(self.settings, self.notifier, storage=self.storage)
            return executor.verify(
                archive_path, subject=VERIFIED_SUBJECT, summary="Backup verified successfully."
            )

    def list_archives(self) -> Tuple[List[Dict[str, Any]], List[str]]:
        """
        Describe the archives in the destination, newest first.

        Returns:
            Tuple of (archive detail dicts, unrecognized filenames)
        """
        with self._guarded("listing"):
            try:
                archives, unrecognized = self.storage.scan()
                archives.sort(key=lambda a: (a.created_at, a.name), reverse=True)
                return [self.storage.describe(a) for a in archives], unrecognized
            except (StorageError, OSError) as e:
                raise DestinationUnwritable(f"Cannot access backup destination: {e}")

    def _rotate(self) -> RotationResult:
        try:
            return RetentionManager(self.storage).enforce(self.settings)
        except StorageError as e:
            raise DestinationUnwritable(f"Cannot access backup destination: {e}")

    @contextmanager
    def _guarded(self, operation: str):
        try:
            with self.guard:
                logger.info(f"Starting {operation}")
                yield
                logger.info(f"Finished {operation}")
        except BackupError as e:
            logger.error(f"{operation} failed: {e}")
            self.notifier.send(e.subject, str(e))
            raise
        except (KeyboardInterrupt, SystemExit) as e:
            logger.error(f"{operation} interrupted ({type(e).__name__})")
            self.notifier.send(INTERRUPTED_SUBJECT, f"The {operation} was interrupted before it finished.")
            raise
        except Exception as e:
            logger.exception(f"{operation} failed unexpectedly: {e}")
            self.notifier.send(BackupError.subject, f"Unexpected error during {operation}: {e}")
            raise
