"""
Archive codec for backup archives.

Archives are gzip compressed tar files named ``backup-YYYY-MM-DD-HHMM.tar.gz``.
Supports:
- Exclusion globs (matched like GNU tar's unanchored ``--exclude``)
- Incremental archives driven by a snapshot state file
- Structural checks that read every entry without extracting
- Extraction into a target directory
"""

import json
import os
import re
import tarfile
import zlib
from datetime import datetime
from fnmatch import fnmatch
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Tuple


ARCHIVE_PREFIX = 'backup-'
ARCHIVE_EXTENSION = 'tar.gz'
TIMESTAMP_FORMAT = '%Y-%m-%d-%H%M'

ARCHIVE_NAME_RE = re.compile(r'^backup-(\d{4}-\d{2}-\d{2}-\d{4})$')

SNAPSHOT_VERSION = 1

# Read buffer used when walking entry data
CHUNK_SIZE = 1024 * 1024


class CompressionError(Exception):
    """Raised when an archive cannot be created, read or extracted."""
    pass


def parse_exclude_patterns(patterns: str) -> List[str]:
    """
    Split a comma-separated exclusion list.

    Each element is stripped of surrounding whitespace and empty elements are
    dropped, so ``"*.log, .git,,"`` yields ``['*.log', '.git']``.
    """
    if not patterns:
        return []
    return [p.strip() for p in patterns.split(',') if p.strip()]


def generate_archive_filename(now: Optional[datetime] = None) -> str:
    """
    Generate the archive filename for a backup taken at ``now``.

    Format: backup-{YYYY-MM-DD-HHMM}.tar.gz (local time, minute granularity).
    Two backups in the same minute get the same name.
    """
    if now is None:
        now = datetime.now()
    return f"{ARCHIVE_PREFIX}{now.strftime(TIMESTAMP_FORMAT)}.{ARCHIVE_EXTENSION}"


def strip_archive_extension(filename: str) -> str:
    """Strip the ``.tar.gz`` extension if present."""
    suffix = f".{ARCHIVE_EXTENSION}"
    if filename.endswith(suffix):
        return filename[:-len(suffix)]
    return filename


def parse_archive_timestamp(name: str) -> Optional[datetime]:
    """
    Extract the creation time encoded in an archive name.

    Args:
        name: Archive name, with or without the ``.tar.gz`` extension

    Returns:
        datetime (minute granularity) or None if the name does not follow
        the ``backup-YYYY-MM-DD-HHMM`` pattern or encodes an invalid date
    """
    match = ARCHIVE_NAME_RE.match(strip_archive_extension(name))
    if not match:
        return None
    try:
        return datetime.strptime(match.group(1), TIMESTAMP_FORMAT)
    except ValueError:
        return None


def is_excluded(relative_path: str, patterns: Sequence[str]) -> bool:
    """
    Check a ``/`` separated archive path against exclusion globs.

    A pattern matches when it matches the whole relative path or any trailing
    run of its components, so ``*.log`` matches ``a/b/app.log`` and
    ``cache/tmp`` matches ``x/cache/tmp``.
    """
    if not patterns:
        return False

    parts = relative_path.split('/')
    candidates = ['/'.join(parts[i:]) for i in range(len(parts))]

    for pattern in patterns:
        pattern = pattern.rstrip('/')
        if pattern.startswith('./'):
            pattern = pattern[2:]
        for candidate in candidates:
            if fnmatch(candidate, pattern):
                return True

    return False


def _iter_source_entries(
    source_dir: Path,
    root_name: str,
    exclude_patterns: Sequence[str],
    skip_paths: Sequence[Path] = ()
) -> Iterator[Tuple[Path, str, os.stat_result]]:
    """
    Walk a source tree yielding (path, relative_path, lstat) for every entry
    that is not excluded. Patterns are matched against the stored name
    (``root_name/relative_path``) and its trailing components. Excluded
    directories are not descended into.
    """
    skip = {os.path.realpath(p) for p in skip_paths}

    def _onerror(error):
        raise error

    for dirpath, dirnames, filenames in os.walk(source_dir, onerror=_onerror):
        dirnames.sort()
        kept_dirs = []

        for name in dirnames:
            path = Path(dirpath) / name
            relative = path.relative_to(source_dir).as_posix()
            if is_excluded(f"{root_name}/{relative}", exclude_patterns):
                continue
            kept_dirs.append(name)
            yield path, relative, path.lstat()

        # Prune excluded subtrees
        dirnames[:] = kept_dirs

        for name in sorted(filenames):
            path = Path(dirpath) / name
            if os.path.realpath(path) in skip:
                continue
            relative = path.relative_to(source_dir).as_posix()
            if is_excluded(f"{root_name}/{relative}", exclude_patterns):
                continue
            yield path, relative, path.lstat()


def load_snapshot_state(snapshot_file: str) -> Dict[str, List[int]]:
    """
    Load incremental snapshot state.

    Returns an empty state (meaning: archive everything) when the file is
    missing or cannot be parsed.
    """
    try:
        with open(snapshot_file, 'r') as f:
            data = json.load(f)
    except (OSError, ValueError):
        return {}

    if not isinstance(data, dict) or data.get('version') != SNAPSHOT_VERSION:
        return {}

    entries = data.get('entries')
    return entries if isinstance(entries, dict) else {}


def save_snapshot_state(snapshot_file: str, state: Dict[str, List[int]]):
    """
    Atomically write incremental snapshot state.

    Raises:
        CompressionError: If the state file cannot be written
    """
    snapshot_path = Path(snapshot_file)
    tmp_path = snapshot_path.with_name(snapshot_path.name + '.tmp')

    try:
        snapshot_path.parent.mkdir(parents=True, exist_ok=True)
        with open(tmp_path, 'w') as f:
            json.dump({'version': SNAPSHOT_VERSION, 'entries': state}, f)
        os.replace(tmp_path, snapshot_path)
    except OSError as e:
        if tmp_path.exists():
            tmp_path.unlink()
        raise CompressionError(f"Failed to write snapshot state {snapshot_file}: {e}")


def create_archive(
    output_path: str,
    source_dir: str,
    exclude_patterns: Sequence[str] = (),
    snapshot_file: Optional[str] = None
) -> Dict[str, List[int]]:
    """
    Create a gzip compressed tar archive of a directory.

    Entries are stored under the source directory's basename. When
    ``snapshot_file`` is given, regular files whose modification time and size
    match the saved state are left out; directories are always stored. The
    snapshot file itself is not modified here (see save_snapshot_state).

    Args:
        output_path: Full path of the archive to write
        source_dir: Directory to archive
        exclude_patterns: Exclusion globs
        snapshot_file: Incremental state to diff against, or None for a full archive

    Returns:
        The new snapshot state describing every archived-or-unchanged file

    Raises:
        CompressionError: If archive creation fails (partial output is removed)
    """
    source = Path(source_dir).resolve()
    if not source.is_dir():
        raise CompressionError(f"Source is not a directory: {source_dir}")

    previous = load_snapshot_state(snapshot_file) if snapshot_file else {}
    root_name = source.name or 'root'
    state = {}

    try:
        with tarfile.open(output_path, 'w:gz') as tar:
            # An excluded root leaves an empty archive
            if is_excluded(root_name, exclude_patterns):
                return state

            tar.add(source, arcname=root_name, recursive=False)

            entries = _iter_source_entries(source, root_name, exclude_patterns, skip_paths=[output_path])
            for path, relative, st in entries:
                if not os.path.isdir(path) or os.path.islink(path):
                    signature = [st.st_mtime_ns, st.st_size]
                    state[relative] = signature
                    if previous.get(relative) == signature:
                        continue

                tar.add(path, arcname=f"{root_name}/{relative}", recursive=False)

        return state

    except Exception as e:
        # Clean up partial archive on failure
        if os.path.exists(output_path):
            os.remove(output_path)
        raise CompressionError(f"Failed to create archive: {e}")


def list_archive_entries(archive_path: str) -> List[str]:
    """
    List an archive's entries without extracting it.

    Every member's data is read through the compressed stream so truncated or
    corrupted archives are detected, not only broken headers.

    Returns:
        List of member names

    Raises:
        CompressionError: If the archive cannot be read
    """
    names = []

    try:
        with tarfile.open(archive_path, 'r:gz') as tar:
            for member in tar:
                names.append(member.name)
                if member.isfile():
                    stream = tar.extractfile(member)
                    while stream.read(CHUNK_SIZE):
                        pass
    except (tarfile.TarError, OSError, EOFError, zlib.error) as e:
        raise CompressionError(f"Failed to read archive {archive_path}: {e}")

    return names


def extract_archive(archive_path: str, target_dir: str):
    """
    Extract an archive into a directory.

    Uses tarfile's ``data`` filter, which refuses absolute paths and members
    escaping the target directory.

    Raises:
        CompressionError: If extraction fails (partial output is left in place)
    """
    try:
        with tarfile.open(archive_path, 'r:gz') as tar:
            tar.extractall(target_dir, filter='data')
    except (tarfile.TarError, OSError, EOFError, zlib.error) as e:
        raise CompressionError(f"Failed to extract archive {archive_path}: {e}")


def get_archive_size(archive_path: str) -> int:
    """
    Get the size of an archive file in bytes.

    Raises:
        CompressionError: If file doesn't exist or cannot be accessed
    """
    try:
        return os.path.getsize(archive_path)
    except FileNotFoundError:
        raise CompressionError(f"Archive not found: {archive_path}")
    except OSError as e:
        raise CompressionError(f"Failed to get archive size: {e}")
