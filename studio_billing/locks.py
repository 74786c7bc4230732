"""
Write boundary for record-level critical sections.

Check-then-write sequences (one deposit per quote, one late fee per invoice)
run while holding the lock of the record they guard.
"""

from contextlib import contextmanager
from threading import Lock, RLock


class KeyedLocks:
    """
    One re-entrant lock per record key.

    A key's lock exists only while someone holds or waits on it; the entry
    is dropped when the last holder leaves, so the table stays as large as
    the number of records currently being written.
    """

    def __init__(self):
        self._guard = Lock()
        # key -> [lock, number of holders and waiters]
        self._entries: dict[str, list] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._guard:
            return key in self._entries

    @contextmanager
    def hold(self, key: str):
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = [RLock(), 0]
            entry[1] += 1
        try:
            with entry[0]:
                yield entry[0]
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._entries[key]
