"""
Backup module for rotabackup.

This module handles the backup lifecycle including:
- Single-instance execution guard
- Free space pre-flight check
- Archive creation and verification
- Grandfather-father-son rotation
- Restore
"""

from .executor import BackupExecutor
from .lock import ExecutionGuard
from .space import SpaceChecker
from .compression import create_archive
from .storage import LocalStorage
from .retention import RetentionManager, classify_archives
from .restore import RestoreExecutor
from .runner import BackupRunner

__all__ = [
    'BackupExecutor',
    'ExecutionGuard',
    'SpaceChecker',
    'create_archive',
    'LocalStorage',
    'RetentionManager',
    'classify_archives',
    'RestoreExecutor',
    'BackupRunner'
]
