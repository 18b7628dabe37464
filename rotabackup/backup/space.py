"""
Pre-flight free space check for the backup destination.
"""

import logging
import shutil
from pathlib import Path

from .errors import InsufficientSpace, SpaceUnknown


logger = logging.getLogger(__name__)

BYTES_PER_MB = 1024 * 1024


class SpaceChecker:
    """Asserts the destination filesystem has enough free space."""

    def __init__(self, destination):
        self.destination = Path(destination)

    def available_mb(self) -> int:
        """
        Free space in MB on the filesystem holding the destination.

        The nearest existing ancestor is queried when the destination has not
        been created yet.

        Raises:
            SpaceUnknown: If the filesystem cannot be queried
        """
        path = self.destination.absolute()
        while not path.exists() and path != path.parent:
            path = path.parent

        try:
            usage = shutil.disk_usage(path)
        except OSError as e:
            raise SpaceUnknown(f"Cannot determine free space at {self.destination}: {e}")

        return usage.free // BYTES_PER_MB

    def ensure(self, min_mb: int) -> int:
        """
        Check free space against a minimum (inclusive).

        Returns:
            Available space in MB

        Raises:
            InsufficientSpace: If available < min_mb
            SpaceUnknown: If free space cannot be determined
        """
        available = self.available_mb()

        if available < min_mb:
            raise InsufficientSpace(min_mb, available)

        logger.info(f"Sufficient disk space available: {available}MB (required: {min_mb}MB)")
        return available
