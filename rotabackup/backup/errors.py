"""
Error taxonomy for backup, restore and rotation runs.

Every error carries a ``subject`` used for the failure notification sent by
the run orchestrator.
"""


class BackupError(Exception):
    """Base class for all run-level failures."""
    subject = 'Backup Failed'


class ConfigurationError(BackupError):
    """Raised when a configuration value cannot be used."""
    subject = 'Backup Failed - Invalid Configuration'


class AlreadyRunning(BackupError):
    """Raised when the execution guard token already exists."""
    subject = 'Backup Skipped - Already Running'


class LockUnavailable(BackupError):
    """Raised when the lock token cannot be created for a reason other than contention."""
    subject = 'Backup Failed - Lock Unavailable'


class InsufficientSpace(BackupError):
    """Raised when the destination has less free space than required."""
    subject = 'Backup Failed - Low Disk Space'

    def __init__(self, required_mb: int, available_mb: int):
        self.required_mb = required_mb
        self.available_mb = available_mb
        super().__init__(
            f"Not enough disk space. Required: {required_mb}MB, Available: {available_mb}MB"
        )


class SpaceUnknown(BackupError):
    """Raised when free space at the destination cannot be determined."""
    subject = 'Backup Failed - Disk Space Unknown'


class SourceNotFound(BackupError):
    subject = 'Backup Failed - Source Missing'


class SourceUnreadable(BackupError):
    subject = 'Backup Failed - Source Unreadable'


class DestinationUnwritable(BackupError):
    subject = 'Backup Failed - Destination Unwritable'


class ArchiveCreationFailed(BackupError):
    subject = 'Backup Failed'


class ChecksumWriteFailed(BackupError):
    subject = 'Backup Failed - Checksum Not Written'


class ChecksumMismatch(BackupError):
    """Raised when an archive does not match its digest sidecar."""
    subject = 'Backup Verification Failed'


class CorruptArchive(ChecksumMismatch):
    """Raised by restore when the digest check fails before extraction."""
    subject = 'Restore Failed - Corrupt Archive'


class ArchiveCorrupted(BackupError):
    """Raised when an archive's entries cannot be read back."""
    subject = 'Backup May Be Corrupted'


class ArchiveNotFound(BackupError):
    subject = 'Restore Failed'


class ExtractionFailed(BackupError):
    subject = 'Restore Failed'
