"""
Restore pipeline: locate an archive, verify its digest and extract it.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from rotabackup.models import DigestStatus, RestoreResult
from .checksum import checksum_path_for, verify_checksum_file
from .compression import extract_archive, CompressionError
from .errors import ArchiveNotFound, CorruptArchive, DestinationUnwritable, ExtractionFailed
from .storage import LocalStorage


logger = logging.getLogger(__name__)


class RestoreExecutor:
    """
    Restores one archive into a target directory.
    """

    def __init__(self, settings, notifier, storage: Optional[LocalStorage] = None):
        self.settings = settings
        self.notifier = notifier
        self.storage = storage or LocalStorage(settings.destination)
        self.logs = []

    def restore(self, archive_ref: str, target_dir) -> RestoreResult:
        """
        Restore an archive.

        Args:
            archive_ref: Path to an archive, or an archive name in the destination
            target_dir: Directory to extract into (created if missing)

        Returns:
            RestoreResult

        Raises:
            ArchiveNotFound: If the reference cannot be resolved
            CorruptArchive: If the digest sidecar does not verify
            DestinationUnwritable: If the target directory cannot be created
            ExtractionFailed: If extraction fails (partial output is kept)
        """
        archive_path = self.storage.resolve(archive_ref)
        if archive_path is None:
            raise ArchiveNotFound(f"Backup file not found: {archive_ref}")

        checksum_verified = self._verify(archive_path)

        target = Path(target_dir)
        try:
            target.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise DestinationUnwritable(f"Cannot create restore folder {target}: {e}")

        self._log(f"Restoring {archive_path} to {target}...")
        try:
            extract_archive(str(archive_path), str(target))
        except CompressionError as e:
            self._log("Backup restore failed!", logging.ERROR)
            raise ExtractionFailed(f"Error occurred while restoring {archive_path}: {e}")

        self._log(f"Backup restored successfully to {target}")
        self.notifier.send("Restore Successful", f"Backup {archive_path.name} restored successfully to {target}")

        return RestoreResult(
            archive_path=archive_path,
            target_dir=target,
            checksum_verified=checksum_verified,
            logs=self.logs
        )

    def _verify(self, archive_path: Path) -> bool:
        checksum_path = checksum_path_for(archive_path)

        if not checksum_path.exists():
            self._log(f"No checksum file for {archive_path.name}; restoring without integrity check",
                      logging.WARNING)
            return False

        status = verify_checksum_file(archive_path, checksum_path)
        if status is not DigestStatus.MATCH:
            self._log(f"Checksum verification FAILED ({status.value}) for {archive_path.name}", logging.ERROR)
            raise CorruptArchive(f"Checksum {status.value} for {archive_path}; refusing to restore")

        self._log("Checksum verified")
        return True

    def _log(self, message: str, level: int = logging.INFO):
        timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')
        self.logs.append(f"[{timestamp}] {logging.getLevelName(level)}: {message}")
        logger.log(level, message)
