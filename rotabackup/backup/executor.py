"""
Backup executor - the archive creation and verification pipeline.

Workflow:
1. Validate the source directory
2. Check free space at the destination
3. Compute the archive name (dry runs stop here)
4. Create the compressed archive (full or incremental)
5. Write the SHA-256 sidecar
6. Verify the digest and read back every entry
7. Commit the incremental snapshot state

Any failure after step 4 starts removes the archive and its sidecar, so a
later restore never picks up an unverified backup.
"""

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Optional

from rotabackup.models import BackupMode, BackupResult, DigestStatus, PipelineState
from .checksum import checksum_path_for, verify_checksum_file, write_checksum_file
from .compression import (
    create_archive,
    generate_archive_filename,
    get_archive_size,
    list_archive_entries,
    save_snapshot_state,
    CompressionError
)
from .errors import (
    ArchiveCorrupted,
    ArchiveCreationFailed,
    ChecksumMismatch,
    ChecksumWriteFailed,
    DestinationUnwritable,
    SourceNotFound,
    SourceUnreadable
)
from .space import SpaceChecker
from .storage import LocalStorage, StorageError


logger = logging.getLogger(__name__)


class BackupExecutor:
    """
    Creates and verifies one backup archive.
    """

    def __init__(self, settings, notifier, storage: Optional[LocalStorage] = None,
                 space_checker: Optional[SpaceChecker] = None):
        """
        Initialize backup executor.

        Args:
            settings: BackupSettings for this run
            notifier: Object with a send(subject, body) method
            storage: Destination storage (default: LocalStorage on settings.destination)
            space_checker: Free space checker (default: SpaceChecker on settings.destination)
        """
        self.settings = settings
        self.notifier = notifier
        self.storage = storage or LocalStorage(settings.destination)
        self.space_checker = space_checker or SpaceChecker(settings.destination)
        self.state = None
        self.archive_path = None
        self.logs = []

    def create(self, source_dir, mode: BackupMode = BackupMode.FULL) -> BackupResult:
        """
        Run the pipeline for a source directory.

        Returns:
            BackupResult in state SUCCEEDED (mode DRY_RUN when nothing was written)

        Raises:
            BackupError: Any pipeline failure; the state is left at FAILED
        """
        self.state = PipelineState.VALIDATING
        try:
            source = self._validate_source(source_dir)

            self.space_checker.ensure(self.settings.min_space_mb)
            self.state = PipelineState.SPACE_CHECKED

            filename = generate_archive_filename(datetime.now())
            self.archive_path = self.storage.archive_path(filename)

            if mode is BackupMode.DRY_RUN:
                return self._dry_run(source)

            return self._create_and_verify(source, mode)

        except BaseException:
            self.state = PipelineState.FAILED
            raise

    def verify(self, archive_path, subject: str = "Backup Success",
               summary: str = "Backup completed successfully.") -> int:
        """
        Verify an archive against its sidecar and read back its entries.

        Args:
            archive_path: Archive to check
            subject: Notification subject sent when verification passes
            summary: First line of the notification body

        Returns:
            Archive size in bytes

        Raises:
            ChecksumMismatch: If the sidecar is missing, unreadable or doesn't match
            ArchiveCorrupted: If the archive's entries cannot be read
        """
        archive_path = Path(archive_path)
        self.state = PipelineState.VERIFYING

        self._log("Verifying checksum...")
        status = verify_checksum_file(archive_path)
        if status is not DigestStatus.MATCH:
            self._log(f"Checksum verification FAILED ({status.value})", logging.ERROR)
            raise ChecksumMismatch(f"Checksum {status.value} for {archive_path}")
        self._log("Checksum verified")

        try:
            entries = list_archive_entries(str(archive_path))
            size = get_archive_size(str(archive_path))
        except CompressionError as e:
            self._log("Backup test extract FAILED - archive might be broken", logging.ERROR)
            raise ArchiveCorrupted(f"Backup test extract failed for {archive_path}: {e}")

        self._log(f"Backup test extract successful - {len(entries)} entries, archive is not corrupted")
        self.notifier.send(
            subject,
            f"{summary}\nFile: {archive_path}\nSize: {size / 1024 / 1024:.2f} MB"
        )
        return size

    def _validate_source(self, source_dir) -> Path:
        source = Path(source_dir)

        if not source.is_dir():
            raise SourceNotFound(f"Source folder not found: {source_dir}")

        if not os.access(source, os.R_OK | os.X_OK):
            raise SourceUnreadable(f"Source folder is not readable: {source_dir}")

        return source

    def _dry_run(self, source: Path) -> BackupResult:
        patterns = ', '.join(self.settings.exclude_patterns) or 'none'
        self._log(f"DRY RUN: Would backup folder {source} to {self.archive_path} (exclusions: {patterns})")
        self.notifier.send("Backup Dry Run", f"Dry run completed for folder: {source}")

        self.state = PipelineState.SUCCEEDED
        return BackupResult(
            mode=BackupMode.DRY_RUN,
            state=self.state,
            archive_path=self.archive_path,
            logs=self.logs
        )

    def _create_and_verify(self, source: Path, mode: BackupMode) -> BackupResult:
        try:
            self.storage.ensure_destination()
        except StorageError as e:
            raise DestinationUnwritable(str(e))

        committed = False
        self.state = PipelineState.ARCHIVING
        try:
            self._log(f"Starting backup of {source}")
            if mode is BackupMode.INCREMENTAL:
                snapshot_file = str(self.settings.snapshot_file)
                self._log(f"Performing incremental backup using snapshot: {snapshot_file}")
            else:
                snapshot_file = None
                self._log("Performing full backup")

            try:
                snapshot = create_archive(
                    str(self.archive_path),
                    str(source),
                    self.settings.exclude_patterns,
                    snapshot_file=snapshot_file
                )
            except CompressionError as e:
                self._log("Backup creation failed!", logging.ERROR)
                raise ArchiveCreationFailed(f"Backup creation failed for folder {source}: {e}")
            self._log(f"Backup created: {self.archive_path}")

            self.state = PipelineState.CHECKSUMMING
            try:
                write_checksum_file(self.archive_path)
            except OSError as e:
                raise ChecksumWriteFailed(f"Failed to write checksum for {self.archive_path}: {e}")
            self._log("Checksum file created")

            size = self.verify(self.archive_path)

            if snapshot_file:
                try:
                    save_snapshot_state(snapshot_file, snapshot)
                except CompressionError as e:
                    raise ArchiveCreationFailed(str(e))

            committed = True
        finally:
            if not committed:
                self._remove_artifacts()

        self.state = PipelineState.SUCCEEDED
        return BackupResult(
            mode=mode,
            state=self.state,
            archive_path=self.archive_path,
            size_bytes=size,
            logs=self.logs
        )

    def _remove_artifacts(self):
        """Remove a partially written archive and its sidecar."""
        for path in (self.archive_path, checksum_path_for(self.archive_path)):
            try:
                path.unlink()
                self._log(f"Removed incomplete backup artifact: {path}", logging.WARNING)
            except FileNotFoundError:
                pass
            except OSError as e:
                self._log(f"Warning: Failed to remove {path}: {e}", logging.ERROR)

    def _log(self, message: str, level: int = logging.INFO):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
            level: logging level for the module logger
        """
        timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')
        self.logs.append(f"[{timestamp}] {logging.getLevelName(level)}: {message}")
        logger.log(level, message)
