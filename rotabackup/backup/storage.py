"""
Local storage for backup archives.

The destination is a flat directory holding ``backup-YYYY-MM-DD-HHMM.tar.gz``
archives next to their ``.sha256`` sidecars.
"""

import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from rotabackup.models import ArchiveRecord
from .checksum import checksum_path_for
from .compression import (
    ARCHIVE_EXTENSION,
    ARCHIVE_PREFIX,
    parse_archive_timestamp,
    strip_archive_extension
)


class StorageError(Exception):
    """Raised when storage operation fails."""
    pass


class LocalStorage:
    """
    Handler for archives stored in the backup destination directory.
    """

    def __init__(self, base_path):
        """
        Initialize local storage handler.

        The directory is not created here; see ensure_destination().

        Args:
            base_path: Backup destination directory
        """
        self.base_path = Path(base_path)

    def ensure_destination(self) -> Path:
        """
        Create the destination directory if it doesn't exist.

        Raises:
            StorageError: If the directory cannot be created or written to
        """
        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to create backup destination {self.base_path}: {e}")

        if not os.access(self.base_path, os.W_OK | os.X_OK):
            raise StorageError(f"Backup destination is not writable: {self.base_path}")

        return self.base_path

    def archive_path(self, filename: str) -> Path:
        """Full path of an archive filename inside the destination."""
        return self.base_path / filename

    def scan(self) -> Tuple[List[ArchiveRecord], List[str]]:
        """
        List the destination once.

        Returns:
            Tuple of (archive records, unrecognized filenames). Unrecognized
            names look like archives (``backup-*.tar.gz``) but carry no valid
            timestamp.

        Raises:
            StorageError: If the destination cannot be listed
        """
        if not self.base_path.exists():
            return [], []

        suffix = f".{ARCHIVE_EXTENSION}"
        records = []
        unrecognized = []

        try:
            filenames = sorted(os.listdir(self.base_path))
        except OSError as e:
            raise StorageError(f"Failed to list backup destination {self.base_path}: {e}")

        for filename in filenames:
            if not (filename.startswith(ARCHIVE_PREFIX) and filename.endswith(suffix)):
                continue

            path = self.base_path / filename
            if not path.is_file():
                continue

            created_at = parse_archive_timestamp(filename)
            if created_at is None:
                unrecognized.append(filename)
                continue

            records.append(self._record(path, created_at))

        return records, unrecognized

    def resolve(self, archive_ref: str) -> Optional[Path]:
        """
        Resolve an archive reference to a file.

        An existing file path wins; otherwise the whole reference is looked up
        relative to the destination. Both lookups also try the reference with
        the archive extension appended. An absolute reference is only ever
        looked up as given.

        Returns:
            Path of the archive, or None if it cannot be found
        """
        refs = [archive_ref]
        if not archive_ref.endswith(f".{ARCHIVE_EXTENSION}"):
            refs.append(f"{archive_ref}.{ARCHIVE_EXTENSION}")

        for ref in refs:
            if os.path.isfile(ref):
                return Path(ref)

        if os.path.isabs(archive_ref):
            return None

        for ref in refs:
            candidate = self.base_path / ref
            if candidate.is_file():
                return candidate

        return None

    def delete_archive(self, record: ArchiveRecord):
        """
        Delete an archive and its digest sidecar.

        Raises:
            StorageError: If either file exists and cannot be removed
        """
        for path in (record.path, checksum_path_for(record.path)):
            try:
                path.unlink()
            except FileNotFoundError:
                pass
            except PermissionError as e:
                raise StorageError(f"Permission denied deleting {path}: {e}")
            except OSError as e:
                raise StorageError(f"Failed to delete {path}: {e}")

    def describe(self, record: ArchiveRecord) -> Dict[str, Any]:
        """
        File details for display.

        Returns:
            Dict with 'name', 'size', 'modified' and 'has_checksum' keys
        """
        stat = record.path.stat()
        return {
            'name': record.filename,
            'size': stat.st_size,
            'modified': datetime.fromtimestamp(stat.st_mtime),
            'has_checksum': record.digest_path is not None
        }

    def _record(self, path: Path, created_at: datetime) -> ArchiveRecord:
        checksum_path = checksum_path_for(path)
        return ArchiveRecord(
            name=strip_archive_extension(path.name),
            path=path,
            created_at=created_at,
            digest_path=checksum_path if checksum_path.exists() else None
        )
