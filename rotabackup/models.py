from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, FrozenSet, List, Optional, Tuple


class BackupMode(Enum):
    """How an archive is produced"""
    FULL = 'full'
    INCREMENTAL = 'incremental'
    DRY_RUN = 'dry-run'


class PipelineState(Enum):
    """Archive pipeline progress"""
    VALIDATING = 'validating'
    SPACE_CHECKED = 'space_checked'
    ARCHIVING = 'archiving'
    CHECKSUMMING = 'checksumming'
    VERIFYING = 'verifying'
    SUCCEEDED = 'succeeded'
    FAILED = 'failed'


class RetentionTag(Enum):
    """Rotation tier, in priority order"""
    RECENT = 'recent'
    WEEKLY = 'weekly'
    MONTHLY = 'monthly'
    UNRETAINED = 'unretained'


class DigestStatus(Enum):
    MATCH = 'match'
    MISMATCH = 'mismatch'
    UNREADABLE = 'unreadable'


@dataclass(frozen=True)
class ArchiveRecord:
    """A backup archive found in the destination directory"""
    name: str
    path: Path
    created_at: datetime
    digest_path: Optional[Path] = None

    @property
    def filename(self) -> str:
        return self.path.name

    def __repr__(self):
        return f'<ArchiveRecord {self.name}>'


@dataclass
class RotationResult:
    """Outcome of one rotation pass"""
    classification: Dict[ArchiveRecord, RetentionTag] = field(default_factory=dict)
    kept: FrozenSet[ArchiveRecord] = frozenset()
    deleted: FrozenSet[ArchiveRecord] = frozenset()
    failed: Tuple[ArchiveRecord, ...] = ()
    skipped: Tuple[str, ...] = ()

    def tagged(self, tag: RetentionTag) -> List[ArchiveRecord]:
        """Archives carrying ``tag``, newest first."""
        return sorted(
            (archive for archive, t in self.classification.items() if t is tag),
            key=lambda a: (a.created_at, a.name),
            reverse=True
        )


@dataclass
class BackupResult:
    """Outcome of an archive pipeline run"""
    mode: BackupMode
    state: PipelineState
    archive_path: Optional[Path] = None
    size_bytes: Optional[int] = None
    logs: List[str] = field(default_factory=list)

    @property
    def is_dry_run(self) -> bool:
        return self.mode is BackupMode.DRY_RUN


@dataclass
class RestoreResult:
    archive_path: Path
    target_dir: Path
    checksum_verified: bool
    logs: List[str] = field(default_factory=list)
