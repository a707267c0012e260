"""Per-key locks serializing mutations of a single reminder."""
from contextlib import contextmanager
from typing import Dict, Iterator
import logging
import threading

from vaccine_reminders.config import settings
from vaccine_reminders.exceptions import ConcurrencyConflictError


logger = logging.getLogger(__name__)


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.RLock()
        self.users = 0


class KeyedLockRegistry:
    """Registry handing out one re-entrant lock per key.

    Different keys never contend with each other; there is no global lock
    held while a keyed lock is in use. A key's lock is dropped as soon as
    no thread holds or waits for it, so the registry only keeps keys that
    are in use.

    These locks serialize threads of one process. Across processes the
    row lock taken by ``ReminderService`` serializes writers.
    """

    def __init__(self, timeout: float = 5.0):
        """
        Initialize lock registry.

        Args:
            timeout: Seconds to wait for a lock before raising a conflict
        """
        self.timeout = timeout
        self._guard = threading.Lock()
        self._entries: Dict[str, _Entry] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)

    def _checkout(self, key: str) -> _Entry:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _Entry()
            entry.users += 1
            return entry

    def _checkin(self, key: str, entry: _Entry) -> None:
        with self._guard:
            entry.users -= 1
            if entry.users == 0 and self._entries.get(key) is entry:
                del self._entries[key]

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        """
        Hold the lock for a key for the duration of the block.

        Raises:
            ConcurrencyConflictError: If the lock is not acquired in time
        """
        entry = self._checkout(key)
        try:
            if not entry.lock.acquire(timeout=self.timeout):
                logger.warning(f"Timed out waiting for lock on {key}")
                raise ConcurrencyConflictError(key, self.timeout)
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            self._checkin(key, entry)


# Process-wide registry shared by every service instance
reminder_locks = KeyedLockRegistry(timeout=settings.lock_timeout_seconds)
