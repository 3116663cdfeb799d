from collections import defaultdict
from contextlib import contextmanager
from threading import Lock, RLock
from typing import Dict, Hashable


class KeyedLocks:
    """
    One re-entrant lock per key (client id, invoice id, ...).

    Holding ``hold(key)`` serializes every writer for that key inside this
    process; different keys never block each other.
    """

    def __init__(self, name: str):
        self.name = name
        self._guard = Lock()
        self._locks: Dict[Hashable, RLock] = defaultdict(RLock)

    def _lock_for(self, key: Hashable) -> RLock:
        with self._guard:
            return self._locks[key]

    @contextmanager
    def hold(self, key: Hashable):
        lock = self._lock_for(key)
        with lock:
            yield

    def __repr__(self) -> str:
        return f"KeyedLocks({self.name}, keys={len(self._locks)})"


# Acquire in this order when more than one is needed: order -> invoice -> client
order_locks = KeyedLocks("order")
invoice_locks = KeyedLocks("invoice")
client_locks = KeyedLocks("client")
