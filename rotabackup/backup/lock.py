"""
Execution guard: a lock file allowing one backup, restore or cleanup run at a
time across the whole system.

The token is created atomically and holds the owner's PID. There is no stale
token detection: a token left behind by a host crash has to be removed by hand.
"""

import atexit
import logging
import os
import signal
import threading
from pathlib import Path

from .errors import AlreadyRunning, LockUnavailable


logger = logging.getLogger(__name__)

# Signals turned into SystemExit so cleanup runs before the process exits.
# SIGINT already raises KeyboardInterrupt.
EXIT_SIGNALS = tuple(
    getattr(signal, name) for name in ('SIGTERM', 'SIGHUP') if hasattr(signal, name)
)


def _raise_system_exit(signum, frame):
    raise SystemExit(128 + signum)


class ExecutionGuard:
    """
    Lock file guarding a run.

    Use as a context manager so the token is released on every exit path:

        with ExecutionGuard('/tmp/backup.lock'):
            ...
    """

    def __init__(self, lock_file):
        self.lock_file = Path(lock_file)
        self._owned = False
        self._previous_handlers = {}

    @property
    def is_held(self) -> bool:
        return self._owned

    def acquire(self):
        """
        Create the lock token.

        Raises:
            AlreadyRunning: If the token already exists
            LockUnavailable: If the token cannot be created
        """
        try:
            fd = os.open(str(self.lock_file), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            holder = self._read_holder()
            message = "Another backup process is already running!"
            if holder:
                message += f" (lock {self.lock_file} held by PID {holder})"
            raise AlreadyRunning(message)
        except OSError as e:
            raise LockUnavailable(f"Cannot create lock file {self.lock_file}: {e}")

        try:
            os.write(fd, f"{os.getpid()}\n".encode())
        finally:
            os.close(fd)

        self._owned = True
        atexit.register(self.release)
        logger.debug(f"Acquired lock {self.lock_file}")

    def release(self):
        """Remove the lock token if this guard holds it. Never raises."""
        if not self._owned:
            return

        self._owned = False
        atexit.unregister(self.release)

        try:
            self.lock_file.unlink()
            logger.debug(f"Released lock {self.lock_file}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"Failed to remove lock file {self.lock_file}: {e}")

    def __enter__(self):
        # Installed before the token exists
        self._install_signal_handlers()
        try:
            self.acquire()
        except BaseException:
            self._restore_signal_handlers()
            raise
        return self

    def __exit__(self, exc_type, exc_value, tb):
        self._restore_signal_handlers()
        self.release()
        return False

    def _read_holder(self) -> str:
        try:
            return self.lock_file.read_text().strip()
        except OSError:
            return ''

    def _install_signal_handlers(self):
        # signal.signal only works from the main thread
        if threading.current_thread() is not threading.main_thread():
            return
        for signum in EXIT_SIGNALS:
            self._previous_handlers[signum] = signal.signal(signum, _raise_system_exit)

    def _restore_signal_handlers(self):
        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler)
        self._previous_handlers = {}
