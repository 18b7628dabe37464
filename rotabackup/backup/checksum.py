"""
SHA-256 digest sidecars for backup archives.

Sidecar files use the ``sha256sum`` text format (``<hex>  <filename>``) and
name the archive by its basename, so ``sha256sum -c`` works from inside the
backup destination.
"""

import hmac
from pathlib import Path
from typing import Optional

from cryptography.hazmat.primitives import hashes

from rotabackup.models import DigestStatus


CHECKSUM_EXTENSION = 'sha256'

# Hex digest length for SHA-256
DIGEST_LENGTH = 64

CHUNK_SIZE = 1024 * 1024


def checksum_path_for(archive_path) -> Path:
    """Sidecar path for an archive: ``<archive>.sha256``."""
    archive_path = Path(archive_path)
    return archive_path.with_name(f"{archive_path.name}.{CHECKSUM_EXTENSION}")


def compute_digest(file_path) -> str:
    """
    Compute the SHA-256 digest of a file.

    Returns:
        Lowercase hex digest

    Raises:
        OSError: If the file cannot be read
    """
    digest = hashes.Hash(hashes.SHA256())
    with open(file_path, 'rb') as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b''):
            digest.update(chunk)
    return digest.finalize().hex()


def write_checksum_file(archive_path) -> Path:
    """
    Write the digest sidecar for an archive.

    Returns:
        Path of the sidecar file

    Raises:
        OSError: If the archive cannot be read or the sidecar cannot be written
    """
    archive_path = Path(archive_path)
    checksum_path = checksum_path_for(archive_path)
    checksum_path.write_text(f"{compute_digest(archive_path)}  {archive_path.name}\n")
    return checksum_path


def read_checksum_file(checksum_path) -> Optional[str]:
    """
    Read the expected digest from a sidecar.

    Returns:
        The hex digest, or None if the sidecar is missing, unreadable or malformed
    """
    try:
        content = Path(checksum_path).read_text()
    except (OSError, UnicodeDecodeError):
        return None

    fields = content.split()
    if not fields:
        return None

    expected = fields[0].lower()
    if len(expected) != DIGEST_LENGTH or any(c not in '0123456789abcdef' for c in expected):
        return None

    return expected


def verify_checksum_file(archive_path, checksum_path=None) -> DigestStatus:
    """
    Verify an archive against its digest sidecar.

    Args:
        archive_path: Archive to check
        checksum_path: Sidecar to check against (default: ``<archive>.sha256``)

    Returns:
        DigestStatus.MATCH, MISMATCH, or UNREADABLE when either the sidecar or
        the archive cannot be read
    """
    if checksum_path is None:
        checksum_path = checksum_path_for(archive_path)

    expected = read_checksum_file(checksum_path)
    if expected is None:
        return DigestStatus.UNREADABLE

    try:
        actual = compute_digest(archive_path)
    except OSError:
        return DigestStatus.UNREADABLE

    if hmac.compare_digest(actual, expected):
        return DigestStatus.MATCH
    return DigestStatus.MISMATCH
