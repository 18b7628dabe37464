"""
Retention policy enforcement for backups.

Grandfather-father-son rotation: keep the newest N archives, then the newest
archive of each of the last N ISO weeks, then the newest archive of each of the
last N calendar months. Everything else is deleted together with its sidecar.
"""

import logging
from typing import Callable, Dict, Hashable, Iterable, List, Sequence

from rotabackup.models import ArchiveRecord, RetentionTag, RotationResult
from .storage import LocalStorage, StorageError


logger = logging.getLogger(__name__)


def week_key(archive: ArchiveRecord) -> str:
    year, week, _ = archive.created_at.isocalendar()
    return f"{year}-W{week:02d}"


def month_key(archive: ArchiveRecord) -> str:
    return archive.created_at.strftime('%Y-%m')


def sort_newest_first(archives: Iterable[ArchiveRecord]) -> List[ArchiveRecord]:
    """Order by embedded timestamp, newest first; ties broken by name."""
    return sorted(archives, key=lambda a: (a.created_at, a.name), reverse=True)


def _tag_periodic(
    ordered: Sequence[ArchiveRecord],
    tags: Dict[ArchiveRecord, RetentionTag],
    tag: RetentionTag,
    keep: int,
    period_key: Callable[[ArchiveRecord], Hashable]
):
    """Tag the newest untagged archive of each period until ``keep`` are tagged."""
    consumed = set()
    count = 0

    for archive in ordered:
        if count >= keep:
            break
        if archive in tags:
            continue

        key = period_key(archive)
        if key in consumed:
            continue

        tags[archive] = tag
        consumed.add(key)
        count += 1


def classify_archives(
    archives: Iterable[ArchiveRecord],
    daily_keep: int,
    weekly_keep: int,
    monthly_keep: int
) -> Dict[ArchiveRecord, RetentionTag]:
    """
    Assign exactly one retention tag to every archive.

    Tiers run in priority order (recent, weekly, monthly) and an archive
    tagged by an earlier tier is invisible to later ones. A count of zero
    disables its tier.

    Args:
        archives: Archive records (any order)
        daily_keep: Number of most recent archives to keep
        weekly_keep: Number of distinct ISO weeks to keep one archive from
        monthly_keep: Number of distinct calendar months to keep one archive from

    Returns:
        Dict mapping each archive to its RetentionTag

    Raises:
        ValueError: If a count is negative
    """
    for label, value in (('daily', daily_keep), ('weekly', weekly_keep), ('monthly', monthly_keep)):
        if value < 0:
            raise ValueError(f"{label} keep count must not be negative: {value}")

    ordered = sort_newest_first(archives)
    tags = {}

    for archive in ordered[:daily_keep]:
        tags[archive] = RetentionTag.RECENT

    _tag_periodic(ordered, tags, RetentionTag.WEEKLY, weekly_keep, week_key)
    _tag_periodic(ordered, tags, RetentionTag.MONTHLY, monthly_keep, month_key)

    for archive in ordered:
        tags.setdefault(archive, RetentionTag.UNRETAINED)

    return tags


class RetentionManager:
    """
    Applies the rotation policy to the backup destination.
    """

    def __init__(self, storage: LocalStorage):
        """
        Initialize retention manager.

        Args:
            storage: Storage holding the archives
        """
        self.storage = storage

    def enforce(self, settings) -> RotationResult:
        """
        Rotate the archives in the destination using the configured counts.

        The destination is listed once; rotation works on that snapshot.
        Files named like archives but without a valid timestamp are reported
        and left alone.

        Args:
            settings: BackupSettings providing the keep counts

        Raises:
            StorageError: If the destination cannot be listed
        """
        logger.info("Cleaning up old backups using rotation policy...")

        archives, unrecognized = self.storage.scan()

        for filename in unrecognized:
            logger.warning(f"Skipping unrecognized backup file (no valid timestamp): {filename}")

        result = self.rotate(archives, settings.daily_keep, settings.weekly_keep, settings.monthly_keep)
        result.skipped = tuple(unrecognized)
        return result

    def rotate(
        self,
        archives: Sequence[ArchiveRecord],
        daily_keep: int,
        weekly_keep: int,
        monthly_keep: int
    ) -> RotationResult:
        """
        Classify archives and delete the unretained ones.

        Deletion is best-effort: a failure on one archive is logged and the
        remaining deletions still run.

        Returns:
            RotationResult with the classification, kept, deleted and failed archives
        """
        if not archives:
            logger.info("No backups found to clean up.")
            return RotationResult()

        logger.info(f"Found {len(archives)} total backups")
        logger.info(f"Retention: {daily_keep} recent, {weekly_keep} weekly, {monthly_keep} monthly")

        tags = classify_archives(archives, daily_keep, weekly_keep, monthly_keep)

        kept = set()
        deleted = set()
        failed = []

        for archive in sort_newest_first(tags):
            tag = tags[archive]

            if tag is not RetentionTag.UNRETAINED:
                kept.add(archive)
                logger.info(f"  Keeping {tag.value} backup: {archive.filename} "
                            f"(week {week_key(archive)}, month {month_key(archive)})")
                continue

            try:
                self.storage.delete_archive(archive)
                deleted.add(archive)
                logger.info(f"  Deleted old backup: {archive.filename}")
            except StorageError as e:
                failed.append(archive)
                logger.error(f"  Failed to delete {archive.filename}: {e}")

        logger.info(
            f"Cleanup complete. Kept {len(kept)} backups, deleted {len(deleted)} old backup(s), "
            f"failed {len(failed)}."
        )

        return RotationResult(
            classification=tags,
            kept=frozenset(kept),
            deleted=frozenset(deleted),
            failed=tuple(failed)
        )
