import threading
import time
from collections import deque
from typing import Callable, Optional, Sequence

from resqueue.store.base import QueueStore


class InMemoryStore(QueueStore):
    """
    Process-local QueueStore.

    Lists, sets and strings share one keyspace like Redis does. Expiry is
    evaluated lazily against `clock`, so tests can move time forward.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._data: dict[str, object] = {}
        self._expires: dict[str, float] = {}
        self._cond = threading.Condition()

    def _purge(self, key: str) -> None:
        deadline = self._expires.get(key)
        if deadline is not None and self._clock() >= deadline:
            self._data.pop(key, None)
            self._expires.pop(key, None)

    def _lookup(self, key: str, kind: type):
        self._purge(key)
        value = self._data.get(key)
        if value is not None and not isinstance(value, kind):
            raise TypeError(f"WRONGTYPE key {key} holds a {type(value).__name__}")
        return value

    def _list(self, key: str, create: bool = False) -> Optional[deque]:
        value = self._lookup(key, deque)
        if value is None and create:
            value = self._data[key] = deque()
        return value

    def _set(self, key: str, create: bool = False) -> Optional[set]:
        value = self._lookup(key, set)
        if value is None and create:
            value = self._data[key] = set()
        return value

    def _drop_if_empty(self, key: str) -> None:
        if not self._data.get(key):
            self._data.pop(key, None)
            self._expires.pop(key, None)

    # Lists

    def rpush(self, key, value):
        with self._cond:
            items = self._list(key, create=True)
            items.append(value)
            self._cond.notify_all()
            return len(items)

    def lpop(self, key):
        with self._cond:
            items = self._list(key)
            if not items:
                return None
            value = items.popleft()
            self._drop_if_empty(key)
            return value

    def blpop(self, keys: Sequence[str], timeout: float) -> Optional[tuple[str, str]]:
        deadline = time.monotonic() + timeout
        with self._cond:
            while True:
                for key in keys:
                    items = self._list(key)
                    if items:
                        value = items.popleft()
                        self._drop_if_empty(key)
                        return key, value
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None
                self._cond.wait(remaining)

    def llen(self, key):
        with self._cond:
            items = self._list(key)
            return len(items) if items else 0

    def lrange(self, key, start, end):
        with self._cond:
            items = list(self._list(key) or ())
            if end == -1:
                return items[start:]
            return items[start:end + 1]

    def rpoplpush(self, source, destination):
        with self._cond:
            items = self._list(source)
            if not items:
                return None
            value = items.pop()
            self._drop_if_empty(source)
            self._list(destination, create=True).appendleft(value)
            self._cond.notify_all()
            return value

    # Sets

    def sadd(self, key, member):
        with self._cond:
            members = self._set(key, create=True)
            if member in members:
                return 0
            members.add(member)
            return 1

    def srem(self, key, member):
        with self._cond:
            members = self._set(key)
            if not members or member not in members:
                return 0
            members.discard(member)
            self._drop_if_empty(key)
            return 1

    def sismember(self, key, member):
        with self._cond:
            return member in (self._set(key) or ())

    def smembers(self, key):
        with self._cond:
            return set(self._set(key) or ())

    def scard(self, key):
        with self._cond:
            return len(self._set(key) or ())

    # Strings / keys

    def get(self, key):
        with self._cond:
            return self._lookup(key, str)

    def set(self, key, value):
        with self._cond:
            self._data[key] = str(value)
            self._expires.pop(key, None)
            return True

    def delete(self, *keys):
        removed = 0
        with self._cond:
            for key in keys:
                self._purge(key)
                if key in self._data:
                    del self._data[key]
                    self._expires.pop(key, None)
                    removed += 1
        return removed

    def exists(self, key):
        with self._cond:
            self._purge(key)
            return key in self._data

    def expire(self, key, seconds):
        with self._cond:
            self._purge(key)
            if key not in self._data:
                return False
            self._expires[key] = self._clock() + seconds
            return True

    def ttl(self, key):
        with self._cond:
            self._purge(key)
            if key not in self._data:
                return -2
            deadline = self._expires.get(key)
            if deadline is None:
                return -1
            return int(round(deadline - self._clock()))

    def incrby(self, key, amount=1):
        with self._cond:
            value = int(self._lookup(key, str) or 0) + amount
            self._data[key] = str(value)
            return value
