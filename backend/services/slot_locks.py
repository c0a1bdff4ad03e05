import logging
from contextlib import ExitStack, contextmanager
from threading import Lock
from typing import Iterable, Iterator

from backend.core import config
from backend.services.errors import LockTimeoutError
from backend.services.slot_calendar import SlotKey

logger = logging.getLogger(__name__)


class _Entry:
    __slots__ = ('lock', 'users')

    def __init__(self) -> None:
        self.lock = Lock()
        self.users = 0


class SlotLockRegistry:
    """Per-slot mutual exclusion keyed by (doctor_id, date, time).

    Entries are created on first use and dropped once no thread holds or
    waits on them, so the registry only grows with concurrently used keys.
    """

    def __init__(self, default_timeout: float | None = None):
        self.default_timeout = default_timeout
        self._guard = Lock()
        self._entries: dict[SlotKey, _Entry] = {}

    def _checkout(self, key: SlotKey) -> _Entry:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _Entry()
            entry.users += 1
            return entry

    def _checkin(self, key: SlotKey, entry: _Entry) -> None:
        with self._guard:
            entry.users -= 1
            if entry.users == 0 and self._entries.get(key) is entry:
                del self._entries[key]

    def _timeout(self, timeout: float | None) -> float:
        if timeout is not None:
            return timeout
        if self.default_timeout is not None:
            return self.default_timeout
        return config.SLOT_LOCK_TIMEOUT_SECONDS

    @contextmanager
    def hold(self, key: SlotKey, timeout: float | None = None) -> Iterator[SlotKey]:
        wait = self._timeout(timeout)
        entry = self._checkout(key)
        try:
            if not entry.lock.acquire(timeout=wait):
                logger.warning('Timed out after %.1fs waiting for slot lock %s', wait, key)
                raise LockTimeoutError()
            try:
                yield key
            finally:
                entry.lock.release()
        finally:
            self._checkin(key, entry)

    @contextmanager
    def hold_many(self, keys: Iterable[SlotKey], timeout: float | None = None) -> Iterator[list[SlotKey]]:
        ordered = sorted(set(keys))
        with ExitStack() as stack:
            for key in ordered:
                stack.enter_context(self.hold(key, timeout))
            yield ordered

    def active_keys(self) -> list[SlotKey]:
        with self._guard:
            return list(self._entries)


slot_locks = SlotLockRegistry()
