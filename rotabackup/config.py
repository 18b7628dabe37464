import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from rotabackup.backup.compression import parse_exclude_patterns
from rotabackup.backup.errors import ConfigurationError


# Keys read from the backup.config file
BACKUP_KEYS = (
    'BACKUP_DESTINATION',
    'EXCLUDE_PATTERNS',
    'DAILY_KEEP',
    'WEEKLY_KEEP',
    'MONTHLY_KEEP',
    'MIN_SPACE_MB',
    'EMAIL_RECIPIENT',
    'SNAPSHOT_FILE',
    'LOCK_FILE',
    'LOG_FILE',
    'EMAIL_FILE',
)


class Config:
    """Base configuration"""

    # Location of the key/value backup.config file
    CONFIG_FILE = os.environ.get('ROTABACKUP_CONFIG') or './backup.config'

    # Backup destination and archive contents
    BACKUP_DESTINATION = os.environ.get('BACKUP_DESTINATION') or './backups'
    EXCLUDE_PATTERNS = os.environ.get('EXCLUDE_PATTERNS', '')
    SNAPSHOT_FILE = os.environ.get('SNAPSHOT_FILE') or './backup.snar'

    # Rotation (grandfather-father-son)
    DAILY_KEEP = os.environ.get('DAILY_KEEP', 7)
    WEEKLY_KEEP = os.environ.get('WEEKLY_KEEP', 4)
    MONTHLY_KEEP = os.environ.get('MONTHLY_KEEP', 3)

    # Pre-flight checks
    MIN_SPACE_MB = os.environ.get('MIN_SPACE_MB', 100)

    # Run plumbing
    LOCK_FILE = os.environ.get('LOCK_FILE') or '/tmp/backup.lock'
    LOG_FILE = os.environ.get('LOG_FILE') or './backup.log'
    EMAIL_FILE = os.environ.get('EMAIL_FILE') or './email.txt'
    EMAIL_RECIPIENT = os.environ.get('EMAIL_RECIPIENT', '')


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True

    # Use local data directory for development
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    DATA_DIR = os.path.join(BASE_DIR, 'data')
    BACKUP_DESTINATION = os.path.join(DATA_DIR, 'backups')
    SNAPSHOT_FILE = os.path.join(DATA_DIR, 'backup.snar')
    LOCK_FILE = os.path.join(DATA_DIR, 'backup.lock')
    LOG_FILE = os.path.join(DATA_DIR, 'logs', 'backup.log')
    EMAIL_FILE = os.path.join(DATA_DIR, 'email.txt')


class TestingConfig(Config):
    """Testing configuration (paths are overridden by the test fixtures)"""
    TESTING = True
    DEBUG = False
    CONFIG_FILE = None


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': ProductionConfig
}


def load_config_file(path: str) -> Dict[str, str]:
    """
    Parse a shell-style ``KEY=value`` configuration file.

    Blank lines and ``#`` comments are ignored, an optional ``export`` prefix
    is accepted and matching surrounding quotes are stripped from values.

    Args:
        path: Path to the configuration file

    Returns:
        Dict of recognized keys to raw string values

    Raises:
        FileNotFoundError: If the file does not exist
        ConfigurationError: If a line is not a ``KEY=value`` assignment
    """
    values = {}

    with open(path, 'r') as f:
        for lineno, raw_line in enumerate(f, start=1):
            line = raw_line.strip()
            if not line or line.startswith('#'):
                continue

            if line.startswith('export '):
                line = line[len('export '):].strip()

            key, sep, value = line.partition('=')
            key = key.strip()
            if not sep or not key:
                raise ConfigurationError(f"{path}:{lineno}: expected KEY=value, got {raw_line.rstrip()!r}")

            value = value.strip()
            if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
                value = value[1:-1]

            if key in BACKUP_KEYS:
                values[key] = value

    return values


def _as_count(mapping: Mapping[str, Any], key: str) -> int:
    raw = mapping.get(key)
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}")
    if value < 0:
        raise ConfigurationError(f"{key} must not be negative, got {value}")
    return value


def _as_path(mapping: Mapping[str, Any], key: str) -> Path:
    raw = mapping.get(key)
    if not raw:
        raise ConfigurationError(f"{key} is not configured")
    return Path(str(raw)).expanduser()


@dataclass(frozen=True)
class BackupSettings:
    """
    Read-only configuration for one run.

    Built once from the application config and passed explicitly to every
    component.
    """

    destination: Path
    snapshot_file: Path
    lock_file: Path
    email_file: Path
    exclude_patterns: Tuple[str, ...] = ()
    daily_keep: int = 7
    weekly_keep: int = 4
    monthly_keep: int = 3
    min_space_mb: int = 100
    email_recipient: str = ''

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> 'BackupSettings':
        """
        Build settings from a Flask config (or any mapping of config keys).

        Raises:
            ConfigurationError: If a value is missing or invalid
        """
        patterns = mapping.get('EXCLUDE_PATTERNS') or ''
        if isinstance(patterns, str):
            patterns = parse_exclude_patterns(patterns)

        return cls(
            destination=_as_path(mapping, 'BACKUP_DESTINATION'),
            snapshot_file=_as_path(mapping, 'SNAPSHOT_FILE'),
            lock_file=_as_path(mapping, 'LOCK_FILE'),
            email_file=_as_path(mapping, 'EMAIL_FILE'),
            exclude_patterns=tuple(patterns),
            daily_keep=_as_count(mapping, 'DAILY_KEEP'),
            weekly_keep=_as_count(mapping, 'WEEKLY_KEEP'),
            monthly_keep=_as_count(mapping, 'MONTHLY_KEEP'),
            min_space_mb=_as_count(mapping, 'MIN_SPACE_MB'),
            email_recipient=str(mapping.get('EMAIL_RECIPIENT') or '')
        )
