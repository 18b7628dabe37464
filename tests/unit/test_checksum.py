"""
Unit tests for digest sidecars (rotabackup/backup/checksum.py).
"""

import hashlib

import pytest

from rotabackup.backup.checksum import (
    checksum_path_for,
    compute_digest,
    read_checksum_file,
    verify_checksum_file,
    write_checksum_file
)
from rotabackup.models import DigestStatus


@pytest.fixture
def archive_file(tmp_path):
    path = tmp_path / 'backup-2024-01-15-1200.tar.gz'
    path.write_bytes(b'archive bytes' * 1000)
    return path


class TestComputeDigest:
    def test_compute_digest_matches_sha256(self, archive_file):
        assert compute_digest(archive_file) == hashlib.sha256(archive_file.read_bytes()).hexdigest()

    def test_compute_digest_missing_file(self, tmp_path):
        with pytest.raises(OSError):
            compute_digest(tmp_path / 'missing')


class TestChecksumFile:
    def test_checksum_path_for(self, archive_file):
        assert checksum_path_for(archive_file).name == 'backup-2024-01-15-1200.tar.gz.sha256'

    def test_write_checksum_file_sha256sum_format(self, archive_file):
        checksum_path = write_checksum_file(archive_file)

        content = checksum_path.read_text()
        digest = hashlib.sha256(archive_file.read_bytes()).hexdigest()
        assert content == f"{digest}  backup-2024-01-15-1200.tar.gz\n"

    def test_read_checksum_file_rejects_malformed(self, tmp_path):
        bad = tmp_path / 'bad.sha256'
        bad.write_text('not-a-digest  file\n')
        empty = tmp_path / 'empty.sha256'
        empty.write_text('')

        assert read_checksum_file(bad) is None
        assert read_checksum_file(empty) is None
        assert read_checksum_file(tmp_path / 'missing.sha256') is None


class TestVerifyChecksumFile:
    def test_verify_matches_after_write(self, archive_file):
        write_checksum_file(archive_file)

        assert verify_checksum_file(archive_file) is DigestStatus.MATCH

    def test_verify_detects_single_byte_corruption(self, archive_file):
        write_checksum_file(archive_file)

        data = bytearray(archive_file.read_bytes())
        data[len(data) // 2] ^= 0xFF
        archive_file.write_bytes(bytes(data))

        assert verify_checksum_file(archive_file) is DigestStatus.MISMATCH

    def test_verify_missing_sidecar_is_unreadable(self, archive_file):
        assert verify_checksum_file(archive_file) is DigestStatus.UNREADABLE

    def test_verify_missing_archive_is_unreadable(self, archive_file):
        write_checksum_file(archive_file)
        archive_file.unlink()

        assert verify_checksum_file(archive_file) is DigestStatus.UNREADABLE

    def test_verify_explicit_sidecar_path(self, archive_file, tmp_path):
        other = tmp_path / 'elsewhere.sha256'
        other.write_text(f"{compute_digest(archive_file)}  whatever\n")

        assert verify_checksum_file(archive_file, other) is DigestStatus.MATCH
