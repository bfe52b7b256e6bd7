"""
Keyed locks for per-auction serialization of writes.

Bids serialize on (auction_id, participant_id, round) and take the
(auction_id,) key only to store. Claim payments, entries and cancellation
serialize on (auction_id,). The bid key is always taken first.
"""

import threading
from contextlib import contextmanager
from typing import Callable, Dict, Hashable, Iterator, Tuple


class KeyedLocks:
    """Lazily created re-entrant lock per key."""

    def __init__(self):
        self._locks: Dict[Tuple[Hashable, ...], threading.RLock] = {}
        self._guard = threading.Lock()

    def get(self, *key: Hashable) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, *key: Hashable) -> Iterator[None]:
        """Hold the lock for `key` for the duration of the block."""
        lock = self.get(*key)
        with lock:
            yield

    def discard_where(self, predicate: Callable[[Tuple[Hashable, ...]], bool]) -> int:
        """
        Forget every lock whose key matches `predicate`.

        Only for keys that will not be written under again, e.g. bids of
        a completed or cancelled auction. Returns the number dropped.
        """
        with self._guard:
            stale = [key for key in self._locks if predicate(key)]
            for key in stale:
                del self._locks[key]
        return len(stale)

    def __len__(self) -> int:
        return len(self._locks)
