import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.RLock()
        self.users = 0


class KeyedLocks:
    """One re-entrant lock per key, kept only while someone holds or waits on it.

    The registry lock only guards the dict; callers hold the per-key lock,
    so work on different conversations never serializes.
    """

    def __init__(self):
        self._registry_lock = threading.Lock()
        self._entries: Dict[str, _Entry] = {}

    def _acquire_entry(self, key: str) -> _Entry:
        with self._registry_lock:
            entry = self._entries.get(key)
            if entry is None:
                entry = _Entry()
                self._entries[key] = entry
            entry.users += 1
            return entry

    def _release_entry(self, key: str, entry: _Entry) -> None:
        with self._registry_lock:
            entry.users -= 1
            if entry.users == 0:
                del self._entries[key]

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        entry = self._acquire_entry(key)
        try:
            with entry.lock:
                yield
        finally:
            self._release_entry(key, entry)

    def keys(self) -> List[str]:
        with self._registry_lock:
            return list(self._entries)
